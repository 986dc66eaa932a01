"""Emote code matchers (native tag positions + third-party tokens)."""

from __future__ import annotations

from collections.abc import Callable, Iterator

from .models import EmoteData, EmoteOccurrence

TRIM_CHARS = "[](){}<>\"'`"

CodeLookup = Callable[[str], "EmoteData | None"]


def iter_tokens(text: str) -> Iterator[tuple[int, int]]:
    """Yield (start, end) of each whitespace-delimited run in text."""
    i = 0
    n = len(text)
    while i < n:
        if text[i].isspace():
            i += 1
            continue
        start = i
        while i < n and not text[i].isspace():
            i += 1
        yield start, i


def _best_trimmed_match(token: str, lookup: CodeLookup) -> tuple[int, int, EmoteData] | None:
    """Longest known code left after trimming wrapping punctuation."""
    left_max = 0
    right_max = 0
    while left_max < len(token) and token[left_max] in TRIM_CHARS:
        left_max += 1
    while right_max < len(token) - left_max and token[len(token) - 1 - right_max] in TRIM_CHARS:
        right_max += 1
    best: tuple[int, int, EmoteData] | None = None
    best_len = 0
    for left in range(left_max + 1):
        for right in range(right_max + 1):
            if left == 0 and right == 0:
                continue
            if left + right >= len(token):
                continue
            candidate = token[left : len(token) - right]
            if len(candidate) <= best_len:
                continue
            emote = lookup(candidate)
            if emote is not None:
                best_len = len(candidate)
                best = (left, len(token) - right, emote)
    return best


def find_token_emotes(text: str, lookup: CodeLookup) -> list[EmoteOccurrence]:
    """Return third-party emote occurrences within text.

    Tokens match case-sensitively as a whole; failing that, wrapping
    punctuation is trimmed. Tokens that look like URLs never match.
    """
    if not text:
        return []

    found: list[EmoteOccurrence] = []
    for start, end in iter_tokens(text):
        token = text[start:end]
        if "http://" in token or "https://" in token:
            continue
        emote = lookup(token)
        if emote is not None:
            found.append(_occurrence(emote, start, end))
            continue
        trimmed = _best_trimmed_match(token, lookup)
        if trimmed:
            left, right, emote = trimmed
            found.append(_occurrence(emote, start + left, start + right))
    return found


def parse_emotes_tag(emotes_tag: str, text: str) -> list[tuple[int, int, str]]:
    """Parse native emote positions from an IRC-style tag.

    Format: emote_id:start-end,start-end/emote_id:start-end (inclusive end).
    Returns sorted (start, end_exclusive, emote_id); malformed or
    out-of-range positions are dropped.
    """
    positions: list[tuple[int, int, str]] = []
    if not emotes_tag:
        return positions

    for emote_section in emotes_tag.split("/"):
        if ":" not in emote_section:
            continue
        emote_id, ranges = emote_section.split(":", 1)
        if not emote_id:
            continue
        for range_str in ranges.split(","):
            if "-" not in range_str:
                continue
            start_str, end_str = range_str.split("-", 1)
            try:
                start = int(start_str)
                end = int(end_str) + 1  # Tag uses inclusive end
            except ValueError:
                continue
            if start < 0 or end <= start or end > len(text):
                continue
            positions.append((start, end, emote_id))

    return sorted(positions)


def _occurrence(emote: EmoteData, start: int, end: int) -> EmoteOccurrence:
    return EmoteOccurrence(
        code=emote.code,
        start=start,
        end=end,
        emote_id=emote.id,
        provider=emote.provider,
        emote=emote,
    )
