"""Core models and settings for Overlay Emotes."""

from .models import StreamPlatform
from .settings import EmoteSettings

__all__ = ["EmoteSettings", "StreamPlatform"]
