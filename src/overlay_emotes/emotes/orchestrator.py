"""Fetch orchestrator - concurrent, retried catalog preloads into the cache."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable

from ..core.models import StreamPlatform
from ..core.settings import EmoteSettings
from .cache import EmoteCache
from .errors import FetchTimeoutError, ProviderDisabled
from .models import GLOBAL_SCOPE, EmoteScope, LoadSummary, ProviderResult
from .provider import BaseEmoteProvider
from .retry import RetryPolicy, Sleep, Success

logger = logging.getLogger(__name__)


class EmoteFetchOrchestrator:
    """Loads global and channel catalogs from every enabled provider.

    One task per provider per preload; tasks report back through a gather
    point and only touch shared state through the cache. A provider that
    keeps failing ends up in ``LoadSummary.failures`` without affecting
    its siblings.
    """

    def __init__(
        self,
        cache: EmoteCache,
        providers: Iterable[BaseEmoteProvider],
        settings: EmoteSettings | None = None,
        policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache = cache
        self.settings = settings or EmoteSettings()
        self.policy = policy or RetryPolicy()
        self._providers = {provider.name: provider for provider in providers}
        self._sleep = sleep
        self._clock = clock
        # channel_id -> in-flight per-provider fetch tasks
        self._channel_tasks: dict[str, set[asyncio.Task]] = {}
        # channel_id -> the one lazy preload allowed per channel
        self._channel_loads: dict[str, asyncio.Task] = {}

    @property
    def providers(self) -> list[BaseEmoteProvider]:
        """Registered providers in priority order."""
        order = self.settings.provider_priority
        ranked = sorted(
            self._providers.values(),
            key=lambda p: order.index(p.name) if p.name in order else len(order),
        )
        return ranked

    def enabled_providers(self) -> list[BaseEmoteProvider]:
        return [p for p in self.providers if self.settings.is_enabled(p.name)]

    @property
    def _entry_ttl(self) -> float:
        return self.settings.cache_ttl_hours * 3600

    async def preload_globals(
        self, providers: Iterable[BaseEmoteProvider] | None = None
    ) -> LoadSummary:
        """Fetch every provider's global catalog concurrently."""
        summary = LoadSummary()
        active = self._filter_enabled(providers, summary)
        if active:
            results = await asyncio.gather(
                *(self._load(p, GLOBAL_SCOPE, p.fetch_global) for p in active)
            )
            self._summarize(summary, results)
        self._log_summary("global", summary)
        return summary

    async def preload_channel(
        self,
        channel_id: str,
        providers: Iterable[BaseEmoteProvider] | None = None,
        platform: StreamPlatform = StreamPlatform.TWITCH,
    ) -> LoadSummary:
        """Fetch every provider's catalog for one channel concurrently.

        Tasks are tracked per channel so ``leave_channel`` can cancel them;
        cancelled providers are left out of the summary.
        """
        summary = LoadSummary()
        active = self._filter_enabled(providers, summary)
        scope = EmoteScope.channel(channel_id)
        tasks = [
            asyncio.ensure_future(
                self._load(p, scope, lambda p=p: p.fetch_channel(channel_id, platform))
            )
            for p in active
        ]
        tracked = self._channel_tasks.setdefault(channel_id, set())
        tracked.update(tasks)
        try:
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            tracked.difference_update(tasks)
            if not tracked and self._channel_tasks.get(channel_id) is tracked:
                del self._channel_tasks[channel_id]

        results: list[ProviderResult] = []
        for provider, outcome in zip(active, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                logger.debug(f"{provider.name} channel {channel_id} preload cancelled")
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(outcome)
        self._summarize(summary, results)
        self._log_summary(scope.key, summary)
        return summary

    async def ensure_channel_loaded(
        self, channel_id: str, platform: StreamPlatform = StreamPlatform.TWITCH
    ) -> LoadSummary:
        """Run the channel preload at most once per channel.

        Concurrent callers share the same load. Later calls return the
        first load's summary without refetching.
        """
        task = self._channel_loads.get(channel_id)
        if task is None:
            logger.debug(f"Lazy preload for channel {channel_id}")
            task = asyncio.ensure_future(self.preload_channel(channel_id, platform=platform))
            self._channel_loads[channel_id] = task
        if not task.done():
            # wait() leaves the shared task running if this caller is cancelled
            await asyncio.wait({task})
        if task.cancelled():
            return LoadSummary()
        return task.result()

    def is_channel_loaded(self, channel_id: str) -> bool:
        """Whether the one-shot channel preload has finished."""
        task = self._channel_loads.get(channel_id)
        return task is not None and task.done() and not task.cancelled()

    def leave_channel(self, channel_id: str) -> int:
        """Cancel in-flight loads for a channel and drop its cached catalog.

        Global preloads are untouched. Returns the number of cache entries
        removed.
        """
        for task in self._channel_tasks.pop(channel_id, set()):
            task.cancel()
        load = self._channel_loads.pop(channel_id, None)
        if load is not None and not load.done():
            load.cancel()
        removed = self.cache.invalidate_channel(channel_id)
        logger.info(f"Left channel {channel_id}: dropped {removed} cached emotes")
        return removed

    async def close(self) -> None:
        """Cancel outstanding loads and close provider HTTP sessions."""
        for channel_id in list(self._channel_tasks):
            for task in self._channel_tasks.pop(channel_id):
                task.cancel()
        for task in self._channel_loads.values():
            if not task.done():
                task.cancel()
        self._channel_loads.clear()
        clients = {id(p.client): p.client for p in self._providers.values()}
        for client in clients.values():
            await client.close()

    # -- internals --

    def _filter_enabled(
        self, providers: Iterable[BaseEmoteProvider] | None, summary: LoadSummary
    ) -> list[BaseEmoteProvider]:
        if providers is None:
            providers = self.providers
        active: list[BaseEmoteProvider] = []
        for provider in providers:
            if self.settings.is_enabled(provider.name):
                active.append(provider)
            else:
                summary.skipped[provider.name] = ProviderDisabled(provider.name)
        return active

    async def _load(
        self,
        provider: BaseEmoteProvider,
        scope: EmoteScope,
        fetch: Callable[[], Awaitable[ProviderResult]],
    ) -> ProviderResult:
        """Fetch with retries under the preload deadline, then merge on success."""
        started = self._clock()
        attempts = 0
        attempt_timeout = self.settings.attempt_timeout_ms / 1000

        async def attempt(n: int) -> ProviderResult:
            nonlocal attempts
            attempts = n
            attempt_started = self._clock()
            try:
                result = await asyncio.wait_for(fetch(), timeout=attempt_timeout)
            except asyncio.TimeoutError:
                elapsed_ms = int((self._clock() - attempt_started) * 1000)
                return ProviderResult(
                    provider=provider.name,
                    scope=scope,
                    error=FetchTimeoutError(attempt=n, elapsed_ms=elapsed_ms),
                )
            if isinstance(result.error, FetchTimeoutError):
                result.error.attempt = n
            return result

        label = f"{provider.name} {scope.key}"
        try:
            outcome = await asyncio.wait_for(
                self.policy.run(attempt, sleep=self._sleep, label=label),
                timeout=self.settings.preload_timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            elapsed_ms = int((self._clock() - started) * 1000)
            logger.warning(f"{label}: preload deadline exceeded after {elapsed_ms}ms")
            return ProviderResult(
                provider=provider.name,
                scope=scope,
                error=FetchTimeoutError(attempt=attempts, elapsed_ms=elapsed_ms),
            )

        result = outcome.result
        if isinstance(outcome, Success):
            self.cache.put_many(result.emotes, ttl=self._entry_ttl)
        return result

    def _summarize(self, summary: LoadSummary, results: Iterable[ProviderResult]) -> None:
        for result in results:
            if result.error is None:
                summary.record_success(result.provider, len(result.emotes))
            else:
                summary.record_failure(result.provider, result.error)

    def _log_summary(self, what: str, summary: LoadSummary) -> None:
        logger.info(
            f"Loaded {summary.total_loaded} {what} emotes from {len(summary.loaded)} providers"
        )
        for name, error in summary.failures.items():
            logger.warning(f"Failed to load {what} emotes from {name}: {error}")
