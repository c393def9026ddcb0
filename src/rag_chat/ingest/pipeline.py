"""Offline index build: discover -> parse -> chunk -> embed -> write."""

from __future__ import annotations

from pathlib import Path

from rag_chat.config import ChunkingConfig
from rag_chat.ingest.chunker import WordWindowChunker
from rag_chat.ingest.embedder import Embedder, EmbeddingError
from rag_chat.ingest.parser import ParserRegistry
from rag_chat.obs.log import get_logger
from rag_chat.retrieval.index_store import write_record
from rag_chat.types import BuildSummary, IndexRecord

logger = get_logger(__name__)


class IndexBuildError(RuntimeError):
    pass


class IndexBuilder:
    """Coordinates parser/chunker/embedder stages into a flat index file.

    The build is best-effort, not transactional: records are appended as
    they are produced, so a failure part-way leaves the lines written so far
    on disk.
    """

    def __init__(
        self,
        embedder: Embedder,
        *,
        chunker: WordWindowChunker | None = None,
        parser_registry: ParserRegistry | None = None,
    ) -> None:
        self._embedder = embedder
        self._chunker = chunker or WordWindowChunker()
        self._parser_registry = parser_registry or ParserRegistry()

    def build(self, doc_root: str | Path, output_path: str | Path) -> BuildSummary:
        """Index every supported document under `doc_root` into `output_path`.

        Ids start at 0 and increase across all files. Documents that
        normalize to empty text are skipped and not counted.

        Raises:
            IndexBuildError: output cannot be opened, the tree cannot be
                read, or an embedding call fails.
        """

        out_path = Path(output_path)
        try:
            handle = open(out_path, "w", encoding="utf-8", newline="\n")
        except OSError as exc:
            raise IndexBuildError(f"Cannot open index output {out_path}: {exc}") from exc

        next_id = 0
        file_count = 0
        with handle:
            try:
                for path in self._parser_registry.discover(doc_root):
                    document = self._parser_registry.parse_path(path)
                    if not document.text:
                        logger.debug("Skipping empty document %s", path)
                        continue
                    if "\t" in document.filename or "\n" in document.filename:
                        logger.warning("Skipping %s: name cannot be stored in the index", path)
                        continue

                    file_count += 1
                    chunks = self._chunker.chunk_document(document)
                    logger.debug("Indexing %s (%d chunk(s))", path, len(chunks))
                    for chunk in chunks:
                        try:
                            vector = self._embedder.embed_passage(chunk.text)
                        except EmbeddingError as exc:
                            raise IndexBuildError(
                                f"Embedding failed for a chunk of {path}: {exc}"
                            ) from exc
                        write_record(
                            handle,
                            IndexRecord(
                                id=next_id,
                                vector=tuple(vector),
                                filename=chunk.filename,
                                text=chunk.text,
                            ),
                        )
                        next_id += 1
            except OSError as exc:
                raise IndexBuildError(f"Cannot read documents under {doc_root}: {exc}") from exc

        summary = BuildSummary(
            files_processed=file_count,
            chunks_written=next_id,
            output_path=str(out_path),
        )
        logger.info(
            "Wrote %d chunk(s) from %d file(s) -> %s",
            summary.chunks_written,
            summary.files_processed,
            summary.output_path,
        )
        return summary


def build_index(
    doc_root: str | Path,
    output_path: str | Path,
    embedder: Embedder,
    *,
    chunking: ChunkingConfig | None = None,
) -> BuildSummary:
    """Function form of `IndexBuilder.build`."""

    builder = IndexBuilder(embedder, chunker=WordWindowChunker(chunking))
    return builder.build(doc_root, output_path)
