"""End-to-end question answering: retrieve, prompt, converse, stream."""

from __future__ import annotations

import threading
from collections.abc import Callable, Generator, Iterator
from dataclasses import dataclass, field
from pathlib import Path

from rag_chat.chat.generation import (
    ContextOverflowError,
    GenerationEngine,
    GenerationError,
    GenerationLoop,
    SamplingParams,
)
from rag_chat.chat.session import ChatTemplateError, ConversationSession
from rag_chat.config import RagConfig
from rag_chat.ingest.embedder import Embedder, EmbeddingError
from rag_chat.obs.log import get_logger
from rag_chat.obs.tracing import Timer, TraceStore, estimate_token_count
from rag_chat.retrieval.index_store import FlatIndex, load_index
from rag_chat.retrieval.retriever import Retriever, format_context_entry, select_context

logger = get_logger(__name__)

MODELS_NOT_LOADED = "[ERROR] models not loaded"
INDEX_EMPTY = "[ERROR] index is empty"
EMBED_FAILED = "[ERROR] failed to embed question"
NO_CONTEXT = "[WARN] no relevant context found"
TEMPLATE_FAILED = "[ERROR] failed to apply the chat template"
CONTEXT_EXCEEDED = "[ERROR] context window exceeded"
GENERATION_FAILED = "[ERROR] generation failed"


@dataclass(slots=True)
class AskResult:
    answer: str
    status: str
    sources: list[str] = field(default_factory=list)
    prompt: str = ""
    trace_id: str = ""

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class RagAssistant:
    """Wires retriever, conversation session and generation loop together.

    One assistant owns one session and one engine handle. Calls to `ask`
    are serialized with a lock because the engine's sequence memory cannot
    be mutated concurrently.
    """

    def __init__(
        self,
        config: RagConfig,
        embedder: Embedder | None,
        engine: GenerationEngine | None,
        *,
        index: FlatIndex | None = None,
        trace_store: TraceStore | None = None,
    ) -> None:
        self.config = config
        self.embedder = embedder
        self.engine = engine
        self.trace_store = trace_store or TraceStore()
        self._lock = threading.Lock()
        self._index: FlatIndex | None = None
        self._retriever: Retriever | None = None

        self.session: ConversationSession | None = None
        self._loop: GenerationLoop | None = None
        if engine is not None:
            self.session = ConversationSession(engine)
            self.session.set_system_prompt(config.prompts.system_prompt)
            self._loop = GenerationLoop(
                engine,
                SamplingParams.from_config(config.generation),
                reset_memory=config.generation.reset_memory_per_turn,
            )

        if index is not None:
            self.set_index(index)

    @property
    def ready(self) -> bool:
        return self.embedder is not None and self._loop is not None

    @property
    def index(self) -> FlatIndex | None:
        return self._index

    def set_index(self, index: FlatIndex) -> None:
        with self._lock:
            self._index = index
            self._retriever = (
                Retriever(index, self.embedder, self.config.retrieval)
                if self.embedder is not None
                else None
            )

    def load_index(self, path: str | Path | None = None) -> FlatIndex:
        """Load an index file (default: `config.index_path`) and use it."""
        index = load_index(path or self.config.index_path)
        self.set_index(index)
        return index

    def reset_conversation(self) -> None:
        with self._lock:
            if self.session is not None:
                self.session.reset()

    def build_prompt(self, question: str, context: str) -> str:
        prompts = self.config.prompts
        return (
            f"{prompts.system_prompt}\n\n"
            f"{prompts.context_label}\n{context}\n"
            f"{prompts.question_label} {question}\n\n"
            f"{prompts.answer_instructions}"
        )

    def ask(
        self,
        question: str,
        top_k: int | None = None,
        on_token: Callable[[str], None] | None = None,
    ) -> str:
        """Answer a question, or return a bracketed marker explaining why not."""
        return self.answer(question, top_k=top_k, on_token=on_token).answer

    def answer(
        self,
        question: str,
        *,
        top_k: int | None = None,
        on_token: Callable[[str], None] | None = None,
    ) -> AskResult:
        """Like `ask`, but also returns status, sources and the trace id."""

        sink = on_token if self.config.stream_tokens else None
        with self._lock:
            with Timer() as timer:
                result = self._consume(self._run_turn(question, top_k), sink)
            self._record(question, result, timer.elapsed_ms)
        return result

    def stream(self, question: str, top_k: int | None = None) -> Iterator[str]:
        """Yield the answer piece by piece.

        A failure is yielded as its marker, after any pieces already
        produced. With `stream_tokens` off the whole answer is yielded once.
        The lock is held until the iterator is exhausted or closed; closing
        it early withdraws the turn.
        """

        with self._lock:
            with Timer() as timer:
                if self.config.stream_tokens:
                    result = yield from self._run_turn(question, top_k)
                else:
                    result = self._consume(self._run_turn(question, top_k), None)
            self._record(question, result, timer.elapsed_ms)
        if not result.ok or not self.config.stream_tokens:
            yield result.answer

    @staticmethod
    def _consume(
        turn: Generator[str, None, AskResult], sink: Callable[[str], None] | None
    ) -> AskResult:
        try:
            while True:
                piece = next(turn)
                if sink is not None:
                    sink(piece)
        except StopIteration as stop:
            return stop.value
        finally:
            turn.close()

    def _record(self, question: str, result: AskResult, latency_ms: float) -> None:
        record = self.trace_store.create_record(
            question=question,
            answer=result.answer,
            sources=result.sources,
            status=result.status,
            prompt_tokens=estimate_token_count(result.prompt),
            output_tokens=estimate_token_count(result.answer) if result.ok else 0,
            latency_ms=latency_ms,
        )
        result.trace_id = record.trace_id
        if not result.ok:
            logger.warning("ask returned %s for question %r", result.answer, question)

    def _run_turn(self, question: str, top_k: int | None) -> Generator[str, None, AskResult]:
        """One question: yields generated pieces, returns the outcome.

        If the generator is closed or anything raises while the turn is open,
        the pending user message is withdrawn before the error propagates.
        """

        session, loop = self.session, self._loop
        if self.embedder is None or session is None or loop is None:
            return AskResult(answer=MODELS_NOT_LOADED, status="not_ready")
        index, retriever = self._index, self._retriever
        if index is None or retriever is None or len(index) == 0:
            return AskResult(answer=INDEX_EMPTY, status="empty_index")

        try:
            ranked = retriever.rank_question(question)
        except EmbeddingError:
            logger.exception("Question embedding failed")
            return AskResult(answer=EMBED_FAILED, status="embed_failed")
        if not ranked:
            return AskResult(answer=NO_CONTEXT, status="no_context")

        selected = select_context(
            ranked,
            index,
            top_k or self.config.retrieval.top_k,
            self.config.retrieval.context_budget,
        )
        context = "".join(format_context_entry(index[item.row]) for item in selected)
        sources = list(dict.fromkeys(index[item.row].filename for item in selected))
        prompt = self.build_prompt(question, context)

        try:
            delta = session.begin_turn(prompt)
        except ChatTemplateError:
            logger.exception("Chat template rendering failed")
            return AskResult(answer=TEMPLATE_FAILED, status="template_failed", prompt=prompt)

        pieces: list[str] = []
        try:
            for piece in loop.stream(delta):
                pieces.append(piece)
                yield piece
        except ContextOverflowError as exc:
            session.abort_turn()
            logger.error("Generation aborted: %s", exc)
            return AskResult(
                answer=CONTEXT_EXCEEDED, status="context_exceeded", sources=sources, prompt=prompt
            )
        except GenerationError:
            session.abort_turn()
            logger.exception("Generation failed")
            return AskResult(
                answer=GENERATION_FAILED, status="generation_failed", sources=sources, prompt=prompt
            )
        except BaseException:
            session.abort_turn()
            raise

        answer = "".join(pieces)
        try:
            session.end_turn(answer)
        except ChatTemplateError:
            logger.exception("Could not advance the conversation cursor")

        return AskResult(answer=answer, status="ok", sources=sources, prompt=prompt)
