"""Message parser - turns chat text into positioned emote occurrences."""

import logging

from .cache import EmoteCache
from .models import EmoteOccurrence, PlatformEmoteMetadata
from .orchestrator import EmoteFetchOrchestrator

logger = logging.getLogger(__name__)


def resolve_overlaps(
    candidates: list[EmoteOccurrence], priority: dict[str, int]
) -> list[EmoteOccurrence]:
    """Keep a non-overlapping subset of candidates.

    Longer matches win; equal lengths go to the higher-priority provider
    (lower rank), then the earlier position.
    """
    fallback = len(priority)
    ranked = sorted(
        candidates,
        key=lambda occ: (
            -occ.length,
            priority.get(occ.provider, fallback),
            occ.start,
            occ.emote_id,
        ),
    )
    kept: list[EmoteOccurrence] = []
    for occ in ranked:
        if any(occ.overlaps(other) for other in kept):
            continue
        kept.append(occ)
    return kept


def cap_occurrences(
    occurrences: list[EmoteOccurrence], limit: int, priority: dict[str, int]
) -> list[EmoteOccurrence]:
    """Drop the lowest-priority matches beyond ``limit``; return in text order."""
    if len(occurrences) > limit:
        fallback = len(priority)
        by_priority = sorted(
            occurrences, key=lambda occ: (priority.get(occ.provider, fallback), occ.start)
        )
        occurrences = by_priority[:limit]
    return sorted(occurrences, key=lambda occ: occ.start)


class EmoteParser:
    """Resolves emote codes in chat messages against the shared cache.

    The only state it touches is the cache (read) and, once per channel,
    the orchestrator's lazy channel preload.
    """

    def __init__(self, orchestrator: EmoteFetchOrchestrator):
        self.orchestrator = orchestrator

    @property
    def cache(self) -> EmoteCache:
        return self.orchestrator.cache

    def _priority(self) -> dict[str, int]:
        order = self.orchestrator.settings.provider_priority
        return {name: rank for rank, name in enumerate(order)}

    async def parse(
        self,
        text: str,
        metadata: PlatformEmoteMetadata | None = None,
        channel_id: str | None = None,
    ) -> list[EmoteOccurrence]:
        """Return the emote occurrences in ``text`` in ascending position order.

        The first message seen for a channel waits for that channel's
        catalogs to load so its channel emotes are not missed.
        """
        metadata = metadata or PlatformEmoteMetadata()
        if channel_id:
            await self.orchestrator.ensure_channel_loaded(channel_id, platform=metadata.platform)
        return self.parse_cached(text, metadata, channel_id)

    @staticmethod
    def extract_plain_text(
        text: str, occurrences: list[EmoteOccurrence], placeholder: str = ":{code}"
    ) -> str:
        """Replace each occurrence in text with ``placeholder`` (formatted with ``code``).

        Occurrences that overlap an earlier one or fall outside text are left as-is.
        """
        parts: list[str] = []
        cursor = 0
        for occ in sorted(occurrences, key=lambda o: o.start):
            if occ.start < cursor or occ.end > len(text) or occ.start >= occ.end:
                continue
            parts.append(text[cursor : occ.start])
            parts.append(placeholder.format(code=occ.code))
            cursor = occ.end
        parts.append(text[cursor:])
        return "".join(parts)

    def parse_cached(
        self,
        text: str,
        metadata: PlatformEmoteMetadata | None = None,
        channel_id: str | None = None,
    ) -> list[EmoteOccurrence]:
        """Synchronous parse against the current cache contents only."""
        if not text:
            return []
        metadata = metadata or PlatformEmoteMetadata()

        candidates: list[EmoteOccurrence] = []
        for provider in self.orchestrator.enabled_providers():

            def lookup(code: str, name: str = provider.name):
                return self.cache.find_code(name, code, channel_id)

            candidates.extend(provider.recognize(text, metadata, lookup))

        priority = self._priority()
        resolved = resolve_overlaps(candidates, priority)
        limit = self.orchestrator.settings.max_emotes_per_message
        occurrences = cap_occurrences(resolved, limit, priority)
        if len(occurrences) < len(resolved):
            logger.debug(f"Truncated {len(resolved) - len(occurrences)} emotes (max {limit})")
        return occurrences

