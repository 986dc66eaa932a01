"""Shared test fixtures for overlay_emotes tests."""

import asyncio

import pytest

from overlay_emotes.api.base import EmoteApiClient
from overlay_emotes.core.settings import EmoteSettings
from overlay_emotes.emotes.cache import EmoteCache
from overlay_emotes.emotes.models import GLOBAL_SCOPE, EmoteData, EmoteScope, ImageVariant
from overlay_emotes.emotes.provider import ThirdPartyEmoteProvider


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays instead of waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _make_emote(code: str, provider: str = "bttv", scope: EmoteScope = GLOBAL_SCOPE, emote_id=None):
    emote_id = emote_id or f"{provider}-{code}"
    return EmoteData(
        id=emote_id,
        code=code,
        provider=provider,
        scope=scope,
        images=(ImageVariant("png", "1x", f"https://cdn.example/{emote_id}/1x"),),
    )


class StubProvider(ThirdPartyEmoteProvider):
    """Third-party provider with scripted fetch outcomes.

    Each script item is either a list of codes (success) or an EmoteError
    (raised). The last item repeats once the script runs out.
    """

    def __init__(self, name, global_script=(), channel_script=(), gate=None, hang=False):
        super().__init__(client=EmoteApiClient())
        self._name = name
        self.global_script = list(global_script)
        self.channel_script = list(channel_script)
        self.global_calls = 0
        self.channel_calls = 0
        self.gate = gate
        self.hang = hang
        self.started = asyncio.Event()

    @property
    def name(self) -> str:
        return self._name

    def _parse_emote(self, data, scope):
        return _make_emote(data["code"], self.name, scope, data.get("id"))

    async def _fetch_global(self):
        self.global_calls += 1
        if self.hang:
            await asyncio.Event().wait()
        return self._next(self.global_script, self.global_calls, GLOBAL_SCOPE)

    async def _fetch_channel(self, channel_id, platform):
        self.channel_calls += 1
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        return self._next(self.channel_script, self.channel_calls, EmoteScope.channel(channel_id))

    def _next(self, script, calls, scope):
        if not script:
            return []
        step = script[min(calls, len(script)) - 1]
        if isinstance(step, Exception):
            raise step
        return self._parse_all([{"code": code} for code in step], scope)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return EmoteCache(ttl_hours=1, max_entries=100, clock=clock)


@pytest.fixture
def settings():
    return EmoteSettings()


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


@pytest.fixture
def make_emote():
    return _make_emote


@pytest.fixture
def stub_provider():
    return StubProvider
