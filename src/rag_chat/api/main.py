"""FastAPI entrypoint for index build, question answering and traces."""

from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from rag_chat.agent.assistant import RagAssistant
from rag_chat.chat.fallback import ExtractiveEngine
from rag_chat.chat.generation import GenerationEngine
from rag_chat.config import RagConfig
from rag_chat.ingest.chunker import WordWindowChunker
from rag_chat.ingest.embedder import Embedder, HashingEmbedder
from rag_chat.ingest.pipeline import IndexBuildError, IndexBuilder
from rag_chat.obs.log import configure_logging, get_logger
from rag_chat.retrieval.index_store import IndexLoadError

logger = get_logger(__name__)


class BuildIndexRequest(BaseModel):
    doc_root: str = Field(min_length=1)
    output_path: str | None = None


class AskRequest(BaseModel):
    question: str = Field(min_length=1)
    top_k: int | None = Field(default=None, ge=1, le=64)


def create_app(
    config: RagConfig | None = None,
    *,
    embedder: Embedder | None = None,
    engine: GenerationEngine | None = None,
) -> FastAPI:
    """Build an app around one assistant.

    Without explicit collaborators the hashing embedder and the extractive
    fallback engine are used. The configured index is loaded when present.
    """

    config = config or RagConfig()
    embedder = embedder or HashingEmbedder(config.embedding)
    engine = engine or ExtractiveEngine(context_size=config.generation.context_size)
    assistant = RagAssistant(config, embedder, engine)
    builder = IndexBuilder(embedder, chunker=WordWindowChunker(config.chunking))

    if Path(config.index_path).is_file():
        try:
            assistant.load_index()
        except IndexLoadError as exc:
            logger.warning("Index not loaded at startup: %s", exc)

    app = FastAPI(title="RAG Chat", version="0.1.0")
    app.state.assistant = assistant

    @app.get("/health")
    def health() -> dict[str, Any]:
        index = assistant.index
        return {
            "status": "ok",
            "models_ready": assistant.ready,
            "index_size": len(index) if index is not None else 0,
            "index_source": index.source if index is not None else None,
        }

    @app.post("/index/build")
    def build_index(request: BuildIndexRequest) -> dict[str, Any]:
        output_path = request.output_path or config.index_path
        try:
            summary = builder.build(request.doc_root, output_path)
            index = assistant.load_index(output_path)
        except (IndexBuildError, IndexLoadError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {**asdict(summary), "index_size": len(index)}

    @app.post("/ask")
    def ask(request: AskRequest) -> dict[str, Any]:
        result = assistant.answer(request.question, top_k=request.top_k)
        return {
            "answer": result.answer,
            "status": result.status,
            "sources": result.sources,
            "trace_id": result.trace_id,
        }

    @app.post("/ask/stream")
    def ask_stream(request: AskRequest) -> StreamingResponse:
        return StreamingResponse(
            assistant.stream(request.question, top_k=request.top_k),
            media_type="text/plain; charset=utf-8",
        )

    @app.post("/session/reset")
    def reset_session() -> dict[str, Any]:
        assistant.reset_conversation()
        return {"status": "ok"}

    @app.get("/traces")
    def traces(limit: int = 20) -> dict[str, Any]:
        records = [asdict(record) for record in assistant.trace_store.list_recent(limit=limit)]
        return {"items": records}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = assistant.trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return assistant.trace_store.summary()

    return app


_config = RagConfig()
configure_logging(_config.log_level)
app = create_app(_config)
