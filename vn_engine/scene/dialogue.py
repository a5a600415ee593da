"""Splitting model output into revealable dialogue chunks."""

import re

_SENTENCE = re.compile(r"[^.!?]+[.!?]+")


def split_sentences(text: str) -> list[str]:
    """Split narrative text into sentence-like chunks, in order.

    A chunk runs up to and including a run of terminal punctuation (. ! ?).
    Trailing text without terminal punctuation becomes a final chunk.
    Whitespace-only chunks are dropped; text with no punctuation at all is
    returned as a single chunk.
    """
    if not text or not text.strip():
        return []

    chunks: list[str] = []
    end = 0
    for match in _SENTENCE.finditer(text):
        chunks.append(match.group(0).strip())
        end = match.end()
    tail = text[end:].strip()
    if tail:
        chunks.append(tail)
    return [c for c in chunks if c and not _is_punctuation_only(c)] or [text.strip()]


def _is_punctuation_only(chunk: str) -> bool:
    return not chunk.strip(".!? ")


def reveal_duration_ms(text: str, ms_per_char: int) -> int:
    """How long a typewriter reveal of *text* takes."""
    return len(text) * ms_per_char
