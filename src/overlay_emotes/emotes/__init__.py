"""Emote catalogs, caching, and message parsing."""
