"""Emote providers for Twitch, Kick, 7TV, BTTV, and FFZ."""

import logging
import re
from abc import ABC, abstractmethod
from contextlib import contextmanager

from ..api.base import EmoteApiClient
from ..core.models import StreamPlatform
from ..core.settings import EmoteSettings
from .errors import EmoteError, ParseError
from .matcher import CodeLookup, find_token_emotes, parse_emotes_tag
from .models import (
    GLOBAL_SCOPE,
    EmoteData,
    EmoteOccurrence,
    EmoteScope,
    ImageVariant,
    PlatformEmoteMetadata,
    ProviderResult,
)

logger = logging.getLogger(__name__)

# Default Twitch client ID for unauthenticated requests
_DEFAULT_TWITCH_CLIENT_ID = "kimne78kx3ncx6brgo4mv6wki5h1ko"

TWITCH_CDN_URL = "https://static-cdn.jtvnw.net/emoticons/v2/{id}/{format}/dark/{scale}"
KICK_EMOTE_URL = "https://files.kick.com/emotes/{id}/fullsize"

# Matches [emote:ID:name] in Kick message content
KICK_EMOTE_RE = re.compile(r"\[emote:(\d+):([^\]]+)\]")


def _require(data, expected: type, url: str, what: str):
    """Return data if it has the expected JSON shape, else raise ParseError."""
    if not isinstance(data, expected):
        raise ParseError(url, f"{what}: expected {expected.__name__}, got {type(data).__name__}")
    return data


@contextmanager
def _payload(url: str):
    """Report shape surprises while walking a payload as ParseError for url."""
    try:
        yield
    except (KeyError, TypeError, AttributeError, ValueError) as e:
        raise ParseError(url, repr(e)) from e


def _https(url: str) -> str:
    return "https:" + url if url.startswith("//") else url


class BaseEmoteProvider(ABC):
    """Base class for emote providers.

    ``fetch_global``/``fetch_channel`` never raise: every failure comes back
    as ``ProviderResult.error``. Subclasses implement the raising
    ``_fetch_global``/``_fetch_channel`` halves.
    """

    #: Native providers resolve positions from platform metadata
    native: bool = False

    def __init__(self, client: EmoteApiClient | None = None):
        self.client = client or EmoteApiClient()

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name, used as cache discriminator and tie-break key."""

    @abstractmethod
    async def _fetch_global(self) -> list[EmoteData]:
        """Fetch the global catalog, raising EmoteError on failure."""

    @abstractmethod
    async def _fetch_channel(self, channel_id: str, platform: StreamPlatform) -> list[EmoteData]:
        """Fetch one channel's catalog, raising EmoteError on failure."""

    @abstractmethod
    def recognize(
        self,
        text: str,
        metadata: PlatformEmoteMetadata,
        lookup: CodeLookup,
    ) -> list[EmoteOccurrence]:
        """Return candidate occurrences in text.

        Args:
            text: The chat message.
            metadata: Platform-supplied emote positions.
            lookup: Resolves a code to this provider's cached emote.
        """

    async def fetch_global(self) -> ProviderResult:
        """Fetch global emotes for this provider."""
        return await self._run(GLOBAL_SCOPE, self._fetch_global())

    async def fetch_channel(
        self, channel_id: str, platform: StreamPlatform = StreamPlatform.TWITCH
    ) -> ProviderResult:
        """Fetch channel-specific emotes.

        Args:
            channel_id: The channel/user ID on the platform.
            platform: Platform the channel lives on.
        """
        scope = EmoteScope.channel(channel_id)
        return await self._run(scope, self._fetch_channel(channel_id, platform))

    async def _run(self, scope: EmoteScope, fetch) -> ProviderResult:
        try:
            emotes = await fetch
        except EmoteError as e:
            logger.debug(f"{self.name} {scope.key} emotes failed: {e}")
            return ProviderResult(provider=self.name, scope=scope, error=e)
        logger.debug(f"Fetched {len(emotes)} {scope.key} emotes from {self.name}")
        return ProviderResult(provider=self.name, scope=scope, emotes=emotes)

    def _parse_all(self, items: list, scope: EmoteScope) -> list[EmoteData]:
        """Parse a list of raw emote dicts, skipping malformed entries."""
        emotes: list[EmoteData] = []
        for item in items:
            if not isinstance(item, dict):
                logger.debug(f"{self.name}: skipping non-object emote entry {item!r}")
                continue
            try:
                emote = self._parse_emote(item, scope)
            except (KeyError, TypeError, AttributeError, ValueError) as e:
                logger.debug(f"{self.name}: skipping malformed emote entry {item!r}: {e!r}")
                continue
            if emote:
                emotes.append(emote)
        return emotes

    @abstractmethod
    def _parse_emote(self, data: dict, scope: EmoteScope) -> EmoteData | None:
        """Parse one catalog entry; None when required fields are missing."""


class NativeEmoteProvider(BaseEmoteProvider):
    """Shared recognition for platforms that mark emote positions themselves."""

    native = True
    platform: StreamPlatform = StreamPlatform.TWITCH

    def recognize(
        self,
        text: str,
        metadata: PlatformEmoteMetadata,
        lookup: CodeLookup,
    ) -> list[EmoteOccurrence]:
        if metadata.platform != self.platform or not metadata.emotes_tag:
            return []
        occurrences: list[EmoteOccurrence] = []
        for start, end, emote_id in parse_emotes_tag(metadata.emotes_tag, text):
            code = text[start:end]
            emote = lookup(code)
            if emote is None or emote.id != emote_id:
                emote = self._native_emote(emote_id, code)
            occurrences.append(
                EmoteOccurrence(
                    code=code,
                    start=start,
                    end=end,
                    emote_id=emote_id,
                    provider=self.name,
                    emote=emote,
                )
            )
        return occurrences

    @abstractmethod
    def _native_emote(self, emote_id: str, code: str) -> EmoteData:
        """Build emote data for an uncached native emote."""


class TwitchProvider(NativeEmoteProvider):
    """Native Twitch emote provider using Helix API."""

    BASE_URL = "https://api.twitch.tv/helix"
    platform = StreamPlatform.TWITCH

    def __init__(
        self,
        client: EmoteApiClient | None = None,
        oauth_token: str = "",
        client_id: str = "",
    ):
        super().__init__(client)
        self.oauth_token = oauth_token
        self.client_id = client_id or _DEFAULT_TWITCH_CLIENT_ID

    @property
    def name(self) -> str:
        return "twitch"

    def _get_headers(self) -> dict:
        """Get headers for Twitch API requests."""
        headers = {"Client-Id": self.client_id}
        if self.oauth_token:
            headers["Authorization"] = f"Bearer {self.oauth_token}"
        return headers

    async def _fetch_global(self) -> list[EmoteData]:
        url = f"{self.BASE_URL}/chat/emotes/global"
        data = await self.client.get_json(url, headers=self._get_headers())
        return self._parse_helix(data, url, GLOBAL_SCOPE)

    async def _fetch_channel(self, channel_id: str, platform: StreamPlatform) -> list[EmoteData]:
        if platform != StreamPlatform.TWITCH:
            return []
        url = f"{self.BASE_URL}/chat/emotes"
        data = await self.client.get_json(
            url, params={"broadcaster_id": channel_id}, headers=self._get_headers()
        )
        return self._parse_helix(data, url, EmoteScope.channel(channel_id))

    def _parse_helix(self, data, url: str, scope: EmoteScope) -> list[EmoteData]:
        payload = _require(data, dict, url, "response")
        items = _require(payload.get("data"), list, url, "data")
        return self._parse_all(items, scope)

    def _parse_emote(self, data: dict, scope: EmoteScope) -> EmoteData | None:
        """Parse a Twitch emote from Helix API data."""
        emote_id = str(data.get("id", ""))
        name = data.get("name", "")

        if not emote_id or not name:
            return None

        animated = "animated" in (data.get("format") or [])
        images = data.get("images") or {}
        variants = [
            ImageVariant("png", res, _https(images[key]))
            for res, key in (("1x", "url_1x"), ("2x", "url_2x"), ("4x", "url_4x"))
            if images.get(key)
        ]
        if not variants:
            # Fallback to template format
            variants = self._cdn_variants(emote_id, animated=False)
        if animated:
            variants.extend(self._cdn_variants(emote_id, animated=True))

        return EmoteData(
            id=emote_id,
            code=name,
            provider=self.name,
            scope=scope,
            images=tuple(variants),
            animated=animated,
        )

    def _cdn_variants(self, emote_id: str, animated: bool) -> list[ImageVariant]:
        fmt = "animated" if animated else "static"
        return [
            ImageVariant(
                "gif" if animated else "png",
                res,
                TWITCH_CDN_URL.format(id=emote_id, format=fmt, scale=scale),
            )
            for res, scale in (("1x", "1.0"), ("2x", "2.0"), ("3x", "3.0"))
        ]

    def _native_emote(self, emote_id: str, code: str) -> EmoteData:
        return EmoteData(
            id=emote_id,
            code=code,
            provider=self.name,
            images=tuple(self._cdn_variants(emote_id, animated=False)),
        )


class KickProvider(NativeEmoteProvider):
    """Native Kick emote provider.

    Kick has no standalone global catalog; channel emote sets come from
    the public ``/emotes/<slug>`` endpoint.
    """

    BASE_URL = "https://kick.com"
    platform = StreamPlatform.KICK

    @property
    def name(self) -> str:
        return "kick"

    async def _fetch_global(self) -> list[EmoteData]:
        return []

    async def _fetch_channel(self, channel_id: str, platform: StreamPlatform) -> list[EmoteData]:
        if platform != StreamPlatform.KICK:
            return []
        url = f"{self.BASE_URL}/emotes/{channel_id}"
        data = await self.client.get_json(url)
        scope = EmoteScope.channel(channel_id)
        emotes: list[EmoteData] = []
        with _payload(url):
            for emote_set in _require(data, list, url, "response"):
                if not isinstance(emote_set, dict):
                    continue
                emotes.extend(self._parse_all(emote_set.get("emotes") or [], scope))
        return emotes

    def _parse_emote(self, data: dict, scope: EmoteScope) -> EmoteData | None:
        emote_id = str(data.get("id", ""))
        name = data.get("name", "")
        if not emote_id or not name:
            return None
        return EmoteData(
            id=emote_id,
            code=name,
            provider=self.name,
            scope=scope,
            images=(ImageVariant("png", "4x", KICK_EMOTE_URL.format(id=emote_id)),),
        )

    def _native_emote(self, emote_id: str, code: str) -> EmoteData:
        return EmoteData(
            id=emote_id,
            code=code,
            provider=self.name,
            images=(ImageVariant("png", "4x", KICK_EMOTE_URL.format(id=emote_id)),),
        )


def split_kick_content(content: str) -> tuple[str, PlatformEmoteMetadata]:
    """Turn raw Kick content into plain text plus native emote metadata.

    ``[emote:ID:name]`` markers are replaced by ``name`` and their positions
    recorded in the IRC tag layout so KickProvider can recognize them.
    """
    text_parts: list[str] = []
    positions: dict[str, list[str]] = {}
    pos = 0
    last_end = 0
    for match in KICK_EMOTE_RE.finditer(content):
        emote_id = match.group(1)
        emote_name = match.group(2)
        # Add text before this emote
        before = content[last_end : match.start()]
        text_parts.append(before)
        pos += len(before)
        text_parts.append(emote_name)
        positions.setdefault(emote_id, []).append(f"{pos}-{pos + len(emote_name) - 1}")
        pos += len(emote_name)
        last_end = match.end()
    text_parts.append(content[last_end:])

    tag = "/".join(f"{emote_id}:{','.join(ranges)}" for emote_id, ranges in positions.items())
    return "".join(text_parts), PlatformEmoteMetadata(platform=StreamPlatform.KICK, emotes_tag=tag)


class ThirdPartyEmoteProvider(BaseEmoteProvider):
    """Shared recognition for providers matched by text code."""

    def recognize(
        self,
        text: str,
        metadata: PlatformEmoteMetadata,
        lookup: CodeLookup,
    ) -> list[EmoteOccurrence]:
        return find_token_emotes(text, lookup)


class SevenTVProvider(ThirdPartyEmoteProvider):
    """7TV emote provider."""

    BASE_URL = "https://7tv.io/v3"

    @property
    def name(self) -> str:
        return "7tv"

    async def _fetch_global(self) -> list[EmoteData]:
        url = f"{self.BASE_URL}/emote-sets/global"
        payload = _require(await self.client.get_json(url), dict, url, "response")
        items = _require(payload.get("emotes", []), list, url, "emotes")
        return self._parse_all(items, GLOBAL_SCOPE)

    async def _fetch_channel(self, channel_id: str, platform: StreamPlatform) -> list[EmoteData]:
        url = f"{self.BASE_URL}/users/{platform.value}/{channel_id}"
        payload = _require(await self.client.get_json(url), dict, url, "response")
        with _payload(url):
            emote_set = payload.get("emote_set") or {}
            items = _require(emote_set.get("emotes") or [], list, url, "emote_set.emotes")
        return self._parse_all(items, EmoteScope.channel(channel_id))

    def _parse_emote(self, data: dict, scope: EmoteScope) -> EmoteData | None:
        """Parse a 7TV emote from API data."""
        emote_data = data.get("data") or data
        emote_id = emote_data.get("id", data.get("id", ""))
        name = data.get("name", emote_data.get("name", ""))

        if not emote_id or not name:
            return None

        # 7TV CDN URL format
        host = emote_data.get("host") or {}
        base_url = _https(host.get("url", f"//cdn.7tv.app/emote/{emote_id}"))
        files = [f.get("name", "") for f in host.get("files") or [] if isinstance(f, dict)]
        webp = [f for f in files if f.endswith(".webp")] or [f"{n}x.webp" for n in range(1, 5)]
        variants = tuple(
            ImageVariant("webp", filename.split(".", 1)[0], f"{base_url}/{filename}")
            for filename in webp
        )

        # ZeroWidth: bit 0 on the active emote, bit 8 on the emote itself
        zero_width = bool(data.get("flags", 0) & 1) or bool(emote_data.get("flags", 0) & (1 << 8))

        return EmoteData(
            id=emote_id,
            code=name,
            provider=self.name,
            scope=scope,
            images=variants,
            animated=bool(emote_data.get("animated", False)),
            zero_width=zero_width,
        )


class BTTVProvider(ThirdPartyEmoteProvider):
    """BetterTTV emote provider."""

    BASE_URL = "https://api.betterttv.net/3"
    CDN_URL = "https://cdn.betterttv.net/emote"

    @property
    def name(self) -> str:
        return "bttv"

    async def _fetch_global(self) -> list[EmoteData]:
        url = f"{self.BASE_URL}/cached/emotes/global"
        items = _require(await self.client.get_json(url), list, url, "response")
        return self._parse_all(items, GLOBAL_SCOPE)

    async def _fetch_channel(self, channel_id: str, platform: StreamPlatform) -> list[EmoteData]:
        # BTTV uses Twitch user IDs for channel lookup
        if platform != StreamPlatform.TWITCH:
            return []
        url = f"{self.BASE_URL}/cached/users/twitch/{channel_id}"
        payload = _require(await self.client.get_json(url), dict, url, "response")
        scope = EmoteScope.channel(channel_id)
        channel = _require(payload.get("channelEmotes", []), list, url, "channelEmotes")
        shared = _require(payload.get("sharedEmotes", []), list, url, "sharedEmotes")
        return self._parse_all(channel, scope) + self._parse_all(shared, scope)

    def _parse_emote(self, data: dict, scope: EmoteScope) -> EmoteData | None:
        """Parse a BTTV emote from API data."""
        emote_id = data.get("id", "")
        code = data.get("code", "")

        if not emote_id or not code:
            return None

        # BTTV CDN: https://cdn.betterttv.net/emote/{id}/{size}x
        image_type = data.get("imageType") or "png"
        variants = tuple(
            ImageVariant(image_type, f"{n}x", f"{self.CDN_URL}/{emote_id}/{n}x") for n in (1, 2, 3)
        )

        return EmoteData(
            id=emote_id,
            code=code,
            provider=self.name,
            scope=scope,
            images=variants,
            animated=bool(data.get("animated", image_type == "gif")),
        )


class FFZProvider(ThirdPartyEmoteProvider):
    """FrankerFaceZ emote provider."""

    BASE_URL = "https://api.frankerfacez.com/v1"

    @property
    def name(self) -> str:
        return "ffz"

    async def _fetch_global(self) -> list[EmoteData]:
        url = f"{self.BASE_URL}/set/global"
        payload = _require(await self.client.get_json(url), dict, url, "response")
        sets = _require(payload.get("sets"), dict, url, "sets")
        emotes: list[EmoteData] = []
        with _payload(url):
            for set_id in payload.get("default_sets") or list(sets):
                emote_set = sets.get(str(set_id)) or {}
                emotes.extend(self._parse_all(emote_set.get("emoticons") or [], GLOBAL_SCOPE))
        return emotes

    async def _fetch_channel(self, channel_id: str, platform: StreamPlatform) -> list[EmoteData]:
        # FFZ uses Twitch user IDs
        if platform != StreamPlatform.TWITCH:
            return []
        url = f"{self.BASE_URL}/room/id/{channel_id}"
        payload = _require(await self.client.get_json(url), dict, url, "response")
        sets = _require(payload.get("sets"), dict, url, "sets")
        scope = EmoteScope.channel(channel_id)
        emotes: list[EmoteData] = []
        with _payload(url):
            for set_data in sets.values():
                emotes.extend(self._parse_all((set_data or {}).get("emoticons") or [], scope))
        return emotes

    def _parse_emote(self, data: dict, scope: EmoteScope) -> EmoteData | None:
        """Parse an FFZ emote from API data."""
        emote_id = str(data.get("id", ""))
        name = data.get("name", "")

        if not emote_id or not name:
            return None

        # Animated sets, when present, supersede the static ones
        animated_urls = data.get("animated") or {}
        urls = animated_urls or data.get("urls") or {}
        fmt = "webp" if animated_urls else "png"
        variants = tuple(
            ImageVariant(fmt, f"{scale}x", _https(urls[scale]))
            for scale in sorted(urls)
            if urls[scale]
        )

        if not variants:
            return None

        return EmoteData(
            id=emote_id,
            code=name,
            provider=self.name,
            scope=scope,
            images=variants,
            animated=bool(animated_urls),
        )


PROVIDER_CLASSES: dict[str, type[BaseEmoteProvider]] = {
    "twitch": TwitchProvider,
    "kick": KickProvider,
    "7tv": SevenTVProvider,
    "bttv": BTTVProvider,
    "ffz": FFZProvider,
}


def create_provider(
    name: str, settings: EmoteSettings, client: EmoteApiClient
) -> BaseEmoteProvider:
    """Instantiate one registered provider by name."""
    if name == "twitch":
        return TwitchProvider(
            client,
            oauth_token=settings.twitch_oauth_token,
            client_id=settings.twitch_client_id,
        )
    try:
        provider_cls = PROVIDER_CLASSES[name]
    except KeyError:
        raise ValueError(f"Unknown emote provider: {name}") from None
    return provider_cls(client)


def create_providers(
    settings: EmoteSettings,
    client: EmoteApiClient,
    names: list[str] | None = None,
) -> list[BaseEmoteProvider]:
    """Instantiate providers in priority order.

    Args:
        settings: Supplies priority order and Twitch credentials.
        client: Shared HTTP client.
        names: Restrict to these names; defaults to the enabled providers.
    """
    if names is None:
        names = settings.enabled_providers()
    order = [name for name in settings.provider_priority if name in names]
    return [create_provider(name, settings, client) for name in order]
