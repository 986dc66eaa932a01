"""EmoteSystem - wires cache, providers, orchestrator, and parser together."""

import logging

from ..api.base import EmoteApiClient
from ..core.models import StreamPlatform
from ..core.settings import EmoteSettings
from .cache import EmoteCache
from .models import EmoteOccurrence, LoadSummary, PlatformEmoteMetadata
from .orchestrator import EmoteFetchOrchestrator
from .parser import EmoteParser
from .provider import create_providers
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


class EmoteSystem:
    """Entry point for chat transports.

    Typical lifecycle: ``preload_globals()`` at startup, ``join_channel()``
    and ``leave_channel()`` as channels come and go, ``parse()`` per
    incoming message, ``close()`` on shutdown.
    """

    def __init__(
        self,
        settings: EmoteSettings | None = None,
        client: EmoteApiClient | None = None,
        policy: RetryPolicy | None = None,
    ):
        self.settings = settings or EmoteSettings()
        self.client = client or EmoteApiClient(timeout=self.settings.attempt_timeout_ms / 1000)
        self.cache = EmoteCache(
            ttl_hours=self.settings.cache_ttl_hours,
            max_entries=self.settings.cache_max_entries,
        )
        # Every registered provider; settings decide which are enabled
        providers = create_providers(
            self.settings, self.client, names=list(self.settings.provider_priority)
        )
        self.orchestrator = EmoteFetchOrchestrator(
            self.cache, providers, settings=self.settings, policy=policy
        )
        self.parser = EmoteParser(self.orchestrator)

    async def preload_globals(self) -> LoadSummary:
        return await self.orchestrator.preload_globals()

    async def join_channel(
        self, channel_id: str, platform: StreamPlatform = StreamPlatform.TWITCH
    ) -> LoadSummary:
        """Preload a channel's catalogs (counts as that channel's one lazy load)."""
        return await self.orchestrator.ensure_channel_loaded(channel_id, platform=platform)

    def leave_channel(self, channel_id: str) -> int:
        return self.orchestrator.leave_channel(channel_id)

    async def parse(
        self,
        text: str,
        metadata: PlatformEmoteMetadata | None = None,
        channel_id: str | None = None,
    ) -> list[EmoteOccurrence]:
        return await self.parser.parse(text, metadata, channel_id)

    async def close(self) -> None:
        await self.orchestrator.close()
