"""Emote resolution core for chat overlays."""

from .__version__ import __version__

__all__ = ["__version__"]
