"""Core data models for Overlay Emotes."""

from enum import Enum


class StreamPlatform(str, Enum):
    """Supported streaming platforms."""

    TWITCH = "twitch"
    KICK = "kick"
