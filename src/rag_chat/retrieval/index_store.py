"""Flat tab-separated vector index: line codec, writer, and loader.

Each line holds one record::

    <id>\\t<v0,v1,...,vN-1>\\t<filename>\\t<chunk text>

Vector components are written with 7 decimal places. Chunk text is the
remainder of the line and never contains a tab or newline because chunks
are whitespace-normalized before they reach the index.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from pathlib import Path
from typing import TextIO, overload

from rag_chat.obs.log import get_logger
from rag_chat.types import IndexRecord

logger = get_logger(__name__)


class IndexLoadError(RuntimeError):
    pass


def format_vector(vector: Iterable[float]) -> str:
    return ",".join(f"{value:.7f}" for value in vector)


def format_record(record: IndexRecord) -> str:
    return f"{record.id}\t{format_vector(record.vector)}\t{record.filename}\t{record.text}\n"


def parse_vector_csv(field: str) -> list[float]:
    """Parse comma-separated floats; a token that does not parse becomes 0.0."""

    values: list[float] = []
    for token in field.split(","):
        token = token.strip(" \t")
        if not token:
            continue
        try:
            values.append(float(token))
        except ValueError:
            values.append(0.0)
    return values


def parse_index_line(line: str) -> IndexRecord | None:
    """Parse one index line, or return None when it is malformed."""

    parts = line.rstrip("\r\n").split("\t", 3)
    if len(parts) < 4:
        return None

    raw_id, raw_vector, raw_filename, text = parts
    raw_id, raw_vector, raw_filename = raw_id.strip(), raw_vector.strip(), raw_filename.strip()
    if not raw_id or not raw_vector or not raw_filename:
        return None

    try:
        record_id = int(raw_id)
    except ValueError:
        return None
    if record_id < 0:
        return None

    vector = parse_vector_csv(raw_vector)
    if not vector:
        return None

    return IndexRecord(id=record_id, vector=tuple(vector), filename=raw_filename, text=text)


def write_record(handle: TextIO, record: IndexRecord) -> None:
    for name, value in (("filename", record.filename), ("text", record.text)):
        if "\t" in value or "\n" in value:
            raise ValueError(f"Record {record.id} {name} contains a tab or newline")
    handle.write(format_record(record))


def write_index(records: Iterable[IndexRecord], path: str | Path) -> int:
    """Write records to `path`, replacing any existing file. Returns the count."""

    count = 0
    with open(path, "w", encoding="utf-8", newline="\n") as handle:
        for record in records:
            write_record(handle, record)
            count += 1
    return count


class FlatIndex(Sequence[IndexRecord]):
    """Immutable in-memory collection of index records, in file order."""

    def __init__(self, records: Iterable[IndexRecord], *, source: str | None = None) -> None:
        self._records: tuple[IndexRecord, ...] = tuple(records)
        self.source = source

    @overload
    def __getitem__(self, position: int) -> IndexRecord: ...

    @overload
    def __getitem__(self, position: slice) -> Sequence[IndexRecord]: ...

    def __getitem__(self, position: int | slice) -> IndexRecord | Sequence[IndexRecord]:
        return self._records[position]

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[IndexRecord]:
        return iter(self._records)

    @property
    def dimension(self) -> int:
        """Vector length of the first record, 0 for an empty index."""
        return len(self._records[0].vector) if self._records else 0


def load_index(path: str | Path) -> FlatIndex:
    """Load an index file, discarding malformed lines.

    Raises:
        IndexLoadError: the file cannot be opened, or no line survives parsing.
    """

    index_path = Path(path)
    records: list[IndexRecord] = []
    discarded = 0
    try:
        with open(index_path, encoding="utf-8", errors="replace") as handle:
            for line_no, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                record = parse_index_line(line)
                if record is None:
                    discarded += 1
                    logger.debug("Discarding malformed index line %d in %s", line_no, index_path)
                    continue
                records.append(record)
    except OSError as exc:
        raise IndexLoadError(f"Cannot open index file {index_path}: {exc}") from exc

    if discarded:
        logger.warning("Discarded %d malformed line(s) while loading %s", discarded, index_path)
    if not records:
        raise IndexLoadError(f"Index file {index_path} contains no valid records")

    logger.info("Loaded %d index record(s) from %s", len(records), index_path)
    return FlatIndex(records, source=str(index_path))
