"""RAG chat package."""

from .config import RagConfig

__all__ = ["RagConfig"]
