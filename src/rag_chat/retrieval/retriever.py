"""Brute-force dot-product ranking and budgeted context assembly."""

from __future__ import annotations

from collections.abc import Sequence
from math import fsum

from rag_chat.config import RetrievalConfig
from rag_chat.ingest.embedder import Embedder
from rag_chat.types import IndexRecord, RankedResult


def dot(a: Sequence[float], b: Sequence[float]) -> float:
    """Dot product over the shorter of the two vectors."""

    n = min(len(a), len(b))
    return fsum(a[i] * b[i] for i in range(n))


def rank(
    query_vector: Sequence[float],
    index: Sequence[IndexRecord],
    min_score: float | None = None,
) -> list[RankedResult]:
    """Score every record against the query, best first.

    A threshold is active only when it is not None and >= 0. Python's sort
    is stable, so equal scores keep their index order.
    """

    threshold_active = min_score is not None and min_score >= 0.0
    ranked: list[RankedResult] = []
    for row, record in enumerate(index):
        score = dot(query_vector, record.vector)
        if threshold_active and score < min_score:  # type: ignore[operator]
            continue
        ranked.append(RankedResult(score=score, row=row))

    ranked.sort(key=lambda item: item.score, reverse=True)
    return ranked


def format_context_entry(record: IndexRecord) -> str:
    return f"- [{record.filename}] {record.text}\n\n"


def select_context(
    ranked: Sequence[RankedResult],
    index: Sequence[IndexRecord],
    top_k: int,
    char_budget: int,
) -> list[RankedResult]:
    """Pick the ranked entries that go into the context block.

    Greedy and order-preserving: the first entry is always taken, even when
    it alone exceeds the budget, and selection stops at the first later
    entry that would overflow. Smaller entries after it are not considered.
    """

    selected: list[RankedResult] = []
    used = 0
    for item in ranked:
        if len(selected) >= top_k:
            break
        size = len(format_context_entry(index[item.row]))
        if selected and used + size > char_budget:
            break
        selected.append(item)
        used += size
    return selected


def build_context(
    ranked: Sequence[RankedResult],
    index: Sequence[IndexRecord],
    top_k: int,
    char_budget: int,
) -> str:
    """Concatenate up to `top_k` bullet entries within `char_budget`."""

    selected = select_context(ranked, index, top_k, char_budget)
    return "".join(format_context_entry(index[item.row]) for item in selected)


class Retriever:
    """Embeds a question and turns the ranking into a context block."""

    def __init__(
        self,
        index: Sequence[IndexRecord],
        embedder: Embedder,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.index = index
        self.embedder = embedder
        self.config = config or RetrievalConfig()

    def rank_question(self, question: str) -> list[RankedResult]:
        query_vector = self.embedder.embed_query(question)
        return rank(query_vector, self.index, self.config.min_score_keep)

    def retrieve(
        self, question: str, *, top_k: int | None = None
    ) -> tuple[list[RankedResult], str]:
        ranked = self.rank_question(question)
        context = build_context(
            ranked,
            self.index,
            top_k=top_k or self.config.top_k,
            char_budget=self.config.context_budget,
        )
        return ranked, context
