"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class ParsedDocument:
    """A source document read from disk, whitespace-normalized."""

    path: str
    filename: str
    text: str


@dataclass(slots=True, frozen=True)
class Chunk:
    """A word-bounded slice of a document, ready to be embedded."""

    filename: str
    text: str
    position: int


@dataclass(slots=True, frozen=True)
class IndexRecord:
    """One persisted retrieval unit."""

    id: int
    vector: tuple[float, ...]
    filename: str
    text: str


@dataclass(slots=True, frozen=True)
class RankedResult:
    """A similarity score paired with a row position in the loaded index."""

    score: float
    row: int


@dataclass(slots=True, frozen=True)
class BuildSummary:
    """Aggregate counts reported after an index build."""

    files_processed: int
    chunks_written: int
    output_path: str
