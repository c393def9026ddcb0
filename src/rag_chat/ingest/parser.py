"""Parsers and discovery for source document trees."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from pathlib import Path

from rag_chat.ingest.chunker import normalize_whitespace
from rag_chat.types import ParsedDocument


class Parser(ABC):
    """Base parser interface used by the index builder."""

    extensions: tuple[str, ...] = ()

    @abstractmethod
    def parse(self, path: Path) -> ParsedDocument:
        """Parse a file into normalized single-line text."""


class TextParser(Parser):
    """Parser for plain text documents."""

    extensions = (".txt",)

    def parse(self, path: Path) -> ParsedDocument:
        text = path.read_text(encoding="utf-8", errors="replace")
        return ParsedDocument(
            path=str(path),
            filename=path.name,
            text=normalize_whitespace(text),
        )


class MarkdownParser(TextParser):
    """Parser for markdown documents; markup is kept as plain text."""

    extensions = (".md",)


class ParserRegistry:
    """Maps file extension to parser implementation."""

    def __init__(self, parsers: list[Parser] | None = None) -> None:
        self._parsers: dict[str, Parser] = {}
        for parser in parsers or [TextParser(), MarkdownParser()]:
            self.register(parser)

    def register(self, parser: Parser) -> None:
        for extension in parser.extensions:
            self._parsers[extension.lower()] = parser

    def supports(self, path: str | Path) -> bool:
        return Path(path).suffix.lower() in self._parsers

    def parse_path(self, path: str | Path) -> ParsedDocument:
        file_path = Path(path)
        parser = self._parsers.get(file_path.suffix.lower())
        if parser is None:
            raise ValueError(f"No parser registered for extension: {file_path.suffix}")
        return parser.parse(file_path)

    def discover(self, root: str | Path) -> Iterator[Path]:
        """Yield supported regular files under `root`, recursively, sorted."""

        root_path = Path(root)
        if not root_path.exists():
            raise FileNotFoundError(f"Document root not found: {root_path}")
        if not root_path.is_dir():
            raise NotADirectoryError(f"Document root is not a directory: {root_path}")

        yield from sorted(
            path for path in root_path.rglob("*") if path.is_file() and self.supports(path)
        )
