"""Transcript cleaning and chunking (no network calls)."""

from __future__ import annotations

import hashlib
import re

# Caption markers auto-generated transcripts insert for non-speech audio.
_NOISE_TOKENS: frozenset[str] = frozenset({
    "[music]",
    "[applause]",
    "[laughter]",
    "[silence]",
    "[inaudible]",
    "[noise]",
    "[cheering]",
    "[foreign]",
    "(music)",
    "(applause)",
    "(laughter)",
    "♪",
})

_WHITESPACE = re.compile(r"\s+")


def clean_segments(segments: tuple[str, ...] | list[str]) -> str:
    """Return the transcript as one normalized string.

    Noise markers are removed, whitespace is collapsed, and segments that end
    up empty are dropped. The result depends only on the input text, so the
    same transcript always cleans to the same string.
    """
    cleaned: list[str] = []
    for segment in segments:
        text = segment
        for token in _NOISE_TOKENS:
            text = _remove_case_insensitive(text, token)
        text = _WHITESPACE.sub(" ", text).strip()
        if text:
            cleaned.append(text)
    return " ".join(cleaned)


def chunk_text(text: str, max_chars: int) -> list[str]:
    """Split text into word-bounded chunks of at most max_chars characters.

    A single word longer than max_chars becomes its own chunk.
    """
    chunks: list[str] = []
    current: list[str] = []
    length = 0
    for word in text.split():
        extra = len(word) if not current else len(word) + 1
        if current and length + extra > max_chars:
            chunks.append(" ".join(current))
            current, length = [word], len(word)
            continue
        current.append(word)
        length += extra
    if current:
        chunks.append(" ".join(current))
    return chunks


def text_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _remove_case_insensitive(text: str, token: str) -> str:
    lowered = text.lower()
    if token not in lowered:
        return text
    return re.sub(re.escape(token), " ", text, flags=re.IGNORECASE)
