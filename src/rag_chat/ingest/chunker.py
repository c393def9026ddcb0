"""Word-window chunking with fixed overlap."""

from __future__ import annotations

import re

from rag_chat.config import ChunkingConfig
from rag_chat.types import Chunk, ParsedDocument

_WHITESPACE = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    """Collapse every whitespace run to one space and trim both ends."""

    return _WHITESPACE.sub(" ", text).strip()


def chunk_words(text: str, max_words: int = 1000, overlap: int = 80) -> list[str]:
    """Split text into overlapping windows of at most `max_words` words.

    Windows start every `step = max(1, max_words - overlap)` words, so two
    neighbours share `overlap` words. The step is clamped to 1 when
    `overlap >= max_words`. The last window ends at the final word; no
    window is emitted past it.
    """

    if max_words <= 0:
        raise ValueError("max_words must be > 0")

    words = normalize_whitespace(text).split(" ")
    if words == [""]:
        return []

    step = max(1, max_words - overlap)
    chunks: list[str] = []
    for start in range(0, len(words), step):
        window = " ".join(words[start : start + max_words]).strip()
        if window:
            chunks.append(window)
        if start + max_words >= len(words):
            break
    return chunks


class WordWindowChunker:
    """Turns parsed documents into `Chunk` records."""

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk_document(self, document: ParsedDocument) -> list[Chunk]:
        texts = chunk_words(
            document.text,
            max_words=self.config.max_words,
            overlap=self.config.overlap,
        )
        return [
            Chunk(filename=document.filename, text=text, position=position)
            for position, text in enumerate(texts)
        ]
