"""Data models for emote catalogs and parse results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NamedTuple

from ..core.models import StreamPlatform
from .errors import EmoteError

GLOBAL_SCOPE_KEY = "global"


@dataclass(frozen=True)
class EmoteScope:
    """Where an emote is valid: platform-wide, or inside one channel."""

    channel_id: str | None = None

    @property
    def is_global(self) -> bool:
        return self.channel_id is None

    @property
    def key(self) -> str:
        """Stable string used in cache keys and log lines."""
        if self.channel_id is None:
            return GLOBAL_SCOPE_KEY
        return f"channel:{self.channel_id}"

    @classmethod
    def channel(cls, channel_id: str) -> EmoteScope:
        return cls(channel_id=channel_id)


GLOBAL_SCOPE = EmoteScope()


@dataclass(frozen=True)
class ImageVariant:
    """One renderable image of an emote (format + resolution)."""

    format: str  # "png", "gif", "webp"
    resolution: str  # "1x", "2x", "3x", "4x"
    url: str


@dataclass(frozen=True)
class EmoteData:
    """Represents a catalog emote from any provider."""

    id: str
    code: str  # Text code (e.g., "KEKW")
    provider: str  # "twitch", "kick", "7tv", "bttv", "ffz"
    scope: EmoteScope = GLOBAL_SCOPE
    images: tuple[ImageVariant, ...] = ()
    animated: bool = False
    zero_width: bool = False  # 7TV overlay emotes

    def image_url(self, resolution: str = "2x") -> str:
        """Pick the URL for a resolution, falling back to the closest smaller one."""
        if not self.images:
            return ""
        by_res = {img.resolution: img.url for img in self.images}
        if resolution in by_res:
            return by_res[resolution]
        smaller = sorted(r for r in by_res if r < resolution)
        if smaller:
            return by_res[smaller[-1]]
        return self.images[0].url

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "provider": self.provider,
            "channel_id": self.scope.channel_id,
            "images": [
                {"format": img.format, "resolution": img.resolution, "url": img.url}
                for img in self.images
            ],
            "animated": self.animated,
            "zero_width": self.zero_width,
        }

    @classmethod
    def from_dict(cls, data: dict) -> EmoteData:
        """Inverse of ``to_dict``. Raises KeyError/TypeError on bad input."""
        channel_id = data.get("channel_id")
        return cls(
            id=str(data["id"]),
            code=str(data["code"]),
            provider=str(data["provider"]),
            scope=EmoteScope.channel(str(channel_id)) if channel_id else GLOBAL_SCOPE,
            images=tuple(
                ImageVariant(img["format"], img["resolution"], img["url"])
                for img in data.get("images") or []
            ),
            animated=bool(data.get("animated", False)),
            zero_width=bool(data.get("zero_width", False)),
        )


@dataclass(frozen=True)
class PlatformEmoteMetadata:
    """Native emote data delivered alongside a chat message.

    ``emotes_tag`` uses the IRC tag layout
    ``emote_id:start-end,start-end/emote_id:start-end`` with inclusive ends.
    """

    platform: StreamPlatform = StreamPlatform.TWITCH
    emotes_tag: str = ""


class CacheKey(NamedTuple):
    """Unique cache key: (provider, scope, emote id)."""

    provider: str
    scope: EmoteScope
    emote_id: str


@dataclass(frozen=True)
class EmoteOccurrence:
    """A resolved emote at a position inside one message.

    ``start``/``end`` are string offsets with an exclusive end.
    """

    code: str
    start: int
    end: int
    emote_id: str
    provider: str = ""
    emote: EmoteData | None = field(default=None, compare=False, repr=False)

    @property
    def length(self) -> int:
        return self.end - self.start

    def overlaps(self, other: EmoteOccurrence) -> bool:
        return self.start < other.end and self.end > other.start


@dataclass
class ProviderResult:
    """Outcome of one catalog fetch from one provider."""

    provider: str
    scope: EmoteScope = GLOBAL_SCOPE
    emotes: list[EmoteData] = field(default_factory=list)
    error: EmoteError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class LoadSummary:
    """Aggregated result of a preload across providers."""

    total_loaded: int = 0
    loaded: dict[str, int] = field(default_factory=dict)  # provider -> count
    failures: dict[str, EmoteError] = field(default_factory=dict)  # provider -> error
    skipped: dict[str, EmoteError] = field(default_factory=dict)  # provider -> ProviderDisabled

    @property
    def all_failed(self) -> bool:
        return not self.loaded and bool(self.failures)

    def record_success(self, provider: str, count: int) -> None:
        self.loaded[provider] = count
        self.total_loaded += count

    def record_failure(self, provider: str, error: EmoteError) -> None:
        self.failures[provider] = error
