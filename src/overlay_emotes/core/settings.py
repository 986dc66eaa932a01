"""Settings management for Overlay Emotes."""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from appdirs import user_config_dir

logger = logging.getLogger(__name__)

APP_NAME = "overlay-emotes"
APP_AUTHOR = "overlay-emotes"

# Registration order doubles as the default tie-break priority
DEFAULT_PROVIDER_ORDER = ["twitch", "kick", "7tv", "bttv", "ffz"]


def get_config_dir() -> Path:
    """Get the configuration directory."""
    path = Path(user_config_dir(APP_NAME, APP_AUTHOR))
    path.mkdir(parents=True, exist_ok=True)
    return path


@dataclass
class EmoteSettings:
    """Emote resolution settings."""

    # Providers
    enable_twitch: bool = True
    enable_kick: bool = True
    enable_7tv: bool = True
    enable_bttv: bool = True
    enable_ffz: bool = True
    provider_priority: list[str] = field(default_factory=lambda: list(DEFAULT_PROVIDER_ORDER))

    # Cache
    cache_ttl_hours: int = 24
    cache_max_entries: int = 10000

    # Parsing / fetching
    max_emotes_per_message: int = 50
    preload_timeout_ms: int = 15000  # Whole preload deadline
    attempt_timeout_ms: int = 10000  # Single HTTP attempt

    # Twitch Helix credentials (supplied, never acquired here)
    twitch_client_id: str = ""
    twitch_oauth_token: str = ""

    def is_enabled(self, provider: str) -> bool:
        """Whether a provider is switched on. Unknown names are off."""
        return bool(getattr(self, f"enable_{provider}", False))

    def enabled_providers(self) -> list[str]:
        """Enabled provider names in priority order."""
        return [name for name in self.provider_priority if self.is_enabled(name)]

    @classmethod
    def load(cls, path: Path | None = None) -> "EmoteSettings":
        """Load settings from file, falling back to defaults."""
        if path is None:
            path = get_config_dir() / "settings.json"

        if not path.exists():
            return cls()

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return cls._from_dict(data)
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable settings file {path}: {e}")
            return cls()

    def save(self, path: Path | None = None) -> None:
        """Save settings to file atomically."""
        if path is None:
            path = get_config_dir() / "settings.json"
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp", prefix="settings_")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._to_dict(), f, indent=2)
            os.replace(tmp_path, path)  # Atomic on POSIX
        except Exception:
            # Clean up temp file on error
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    @staticmethod
    def _validate_int(value, default: int, min_val: int = 0, max_val: int | None = None) -> int:
        """Validate and constrain an integer value."""
        if not isinstance(value, int) or isinstance(value, bool):
            return default
        if value < min_val:
            return min_val
        if max_val is not None and value > max_val:
            return max_val
        return value

    @staticmethod
    def _validate_priority(value) -> list[str]:
        """Keep known provider names once each, then append any missing ones."""
        if not isinstance(value, list):
            return list(DEFAULT_PROVIDER_ORDER)
        order: list[str] = []
        for name in value:
            if name in DEFAULT_PROVIDER_ORDER and name not in order:
                order.append(name)
        order.extend(name for name in DEFAULT_PROVIDER_ORDER if name not in order)
        return order

    @classmethod
    def _from_dict(cls, data: dict) -> "EmoteSettings":
        """Create EmoteSettings from a dictionary with validation."""
        settings = cls()

        for name in DEFAULT_PROVIDER_ORDER:
            key = f"enable_{name}"
            value = data.get(key, getattr(settings, key))
            setattr(settings, key, value if isinstance(value, bool) else True)
        settings.provider_priority = cls._validate_priority(data.get("provider_priority"))

        settings.cache_ttl_hours = cls._validate_int(
            data.get("cache_ttl_hours"), 24, min_val=1, max_val=720
        )
        settings.cache_max_entries = cls._validate_int(
            data.get("cache_max_entries"), 10000, min_val=100, max_val=1_000_000
        )
        settings.max_emotes_per_message = cls._validate_int(
            data.get("max_emotes_per_message"), 50, min_val=1, max_val=500
        )
        settings.preload_timeout_ms = cls._validate_int(
            data.get("preload_timeout_ms"), 15000, min_val=500, max_val=120000
        )
        settings.attempt_timeout_ms = cls._validate_int(
            data.get("attempt_timeout_ms"), 10000, min_val=250, max_val=60000
        )
        settings.twitch_client_id = str(data.get("twitch_client_id", "") or "")
        settings.twitch_oauth_token = str(data.get("twitch_oauth_token", "") or "")
        return settings

    def _to_dict(self) -> dict:
        return {
            "enable_twitch": self.enable_twitch,
            "enable_kick": self.enable_kick,
            "enable_7tv": self.enable_7tv,
            "enable_bttv": self.enable_bttv,
            "enable_ffz": self.enable_ffz,
            "provider_priority": list(self.provider_priority),
            "cache_ttl_hours": self.cache_ttl_hours,
            "cache_max_entries": self.cache_max_entries,
            "max_emotes_per_message": self.max_emotes_per_message,
            "preload_timeout_ms": self.preload_timeout_ms,
            "attempt_timeout_ms": self.attempt_timeout_ms,
            "twitch_client_id": self.twitch_client_id,
            "twitch_oauth_token": self.twitch_oauth_token,
        }
