"""Configuration models for the RAG system."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_SYSTEM_PROMPT = (
    "You are a retrieval-augmented assistant. Answer only from the provided "
    "context. If the context does not contain the answer, say that you do not know."
)


def _blank_to_none(value: Any) -> Any:
    # An empty threshold or seed in the environment means "disabled".
    if isinstance(value, str) and not value.strip():
        return None
    return value


class ChunkingConfig(BaseModel):
    """Configures word-window chunking."""

    model_config = ConfigDict(frozen=True)

    max_words: int = Field(default=1000, ge=1)
    overlap: int = Field(default=80, ge=0)


class EmbeddingConfig(BaseModel):
    """Configures prefixes and vector normalization for the embedder.

    `normalize` follows the usual embedding-tool convention: -1 disables
    normalization, 0 scales by max-abs into the int16 range, 2 is L2 and any
    other positive value is the matching p-norm.
    """

    model_config = ConfigDict(frozen=True)

    query_prefix: str = ""
    passage_prefix: str = ""
    normalize: int = Field(default=2, ge=-1)
    dimension: int = Field(default=256, ge=1)


class RetrievalConfig(BaseModel):
    """Configures ranking and context assembly."""

    model_config = ConfigDict(frozen=True)

    top_k: int = Field(default=8, ge=1)
    context_budget: int = Field(default=3500, ge=1)
    min_score_keep: float | None = None

    @field_validator("min_score_keep", mode="before")
    @classmethod
    def _blank_disables(cls, v: Any) -> Any:
        return _blank_to_none(v)


class GenerationConfig(BaseModel):
    """Configures the sampler chain and context window."""

    model_config = ConfigDict(frozen=True)

    context_size: int = Field(default=4096, ge=1)
    min_p: float = Field(default=0.05, ge=0.0, le=1.0)
    temperature: float = Field(default=0.3, ge=0.0)
    seed: int | None = None
    reset_memory_per_turn: bool = True

    @field_validator("seed", mode="before")
    @classmethod
    def _blank_seed(cls, v: Any) -> Any:
        return _blank_to_none(v)


class PromptConfig(BaseModel):
    """Natural-language prompt fragments; data, not logic."""

    model_config = ConfigDict(frozen=True)

    system_prompt: str = _DEFAULT_SYSTEM_PROMPT
    context_label: str = "Context:"
    question_label: str = "Question:"
    answer_instructions: str = (
        "Answer requirements:\n- Answer concisely and clearly.\n"
    )


class RagConfig(BaseSettings):
    """Root configuration snapshot, read-only once a session starts.

    Values come from keyword arguments, then `RAG_*` environment variables
    (or `.env`), then defaults. Nested sections use a double underscore,
    e.g. `RAG_RETRIEVAL__TOP_K=3` or `RAG_GENERATION__SEED=7`.
    """

    model_config = SettingsConfigDict(
        env_prefix="RAG_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    index_path: str = "./rag/index.tsv"
    docs_path: str = "./rag/docs"
    stream_tokens: bool = True
    log_level: str = "INFO"

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    prompts: PromptConfig = Field(default_factory=PromptConfig)

    @model_validator(mode="after")
    def _check_log_level(self) -> "RagConfig":
        if self.log_level.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {self.log_level}")
        return self


