from __future__ import annotations

import re

from kbchat.services.rag.types import Chunk

SENTENCE_BREAKS = (".", "!", "?", "\n")
CHUNKS_PER_PAGE = 3

_WHITESPACE_RUN = re.compile(r"\s+")


def _validate(target_size: int, overlap: int) -> None:
    if target_size <= 0:
        raise ValueError("target_size must be > 0")
    if overlap < 0:
        raise ValueError("overlap must be >= 0")
    if overlap >= target_size:
        raise ValueError("overlap must be smaller than target_size")


def _break_point(text: str, start: int, end: int, target_size: int) -> int:
    window = text[start:end]
    position = max(window.rfind(marker) for marker in SENTENCE_BREAKS)
    if position > target_size * 0.5:
        return start + position + 1
    return end


def chunk_spans(text: str, target_size: int = 1000, overlap: int = 200) -> list[tuple[int, int]]:
    """Return the ``(start, end)`` windows the text is cut into.

    Consecutive windows overlap by up to ``overlap`` characters and together
    cover every index of ``text``.
    """
    _validate(target_size, overlap)

    spans: list[tuple[int, int]] = []
    cursor = 0
    text_length = len(text)

    while cursor < text_length:
        end = min(text_length, cursor + target_size)
        if end < text_length:
            end = _break_point(text, cursor, end, target_size)
        spans.append((cursor, end))

        if end >= text_length:
            break

        next_cursor = max(0, end - overlap)
        cursor = next_cursor if next_cursor > cursor else end

    return spans


def split_into_chunks(text: str, target_size: int = 1000, overlap: int = 200) -> list[str]:
    chunks: list[str] = []
    for start, end in chunk_spans(text, target_size, overlap):
        chunk = text[start:end].strip()
        if chunk:
            chunks.append(chunk)
    return chunks


def clean_text(text: str) -> str:
    return _WHITESPACE_RUN.sub(" ", text).strip()


def build_chunks(
    text: str,
    *,
    target_size: int,
    overlap: int,
    min_length: int = 0,
    paginated: bool = False,
) -> list[Chunk]:
    chunks: list[Chunk] = []
    for index, chunk_text in enumerate(split_into_chunks(text, target_size, overlap)):
        if len(chunk_text) < min_length:
            continue
        chunks.append(
            Chunk(
                text=chunk_text,
                index=index,
                page=index // CHUNKS_PER_PAGE + 1 if paginated else None,
            )
        )
    return chunks
