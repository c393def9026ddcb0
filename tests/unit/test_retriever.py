from rag_chat.config import EmbeddingConfig, RetrievalConfig
from rag_chat.ingest.embedder import Embedder
from rag_chat.retrieval.index_store import FlatIndex
from rag_chat.retrieval.retriever import (
    Retriever,
    build_context,
    dot,
    format_context_entry,
    rank,
    select_context,
)
from rag_chat.types import IndexRecord, RankedResult


def _scenario_index() -> FlatIndex:
    return FlatIndex(
        [
            IndexRecord(id=0, vector=(1.0, 0.0), filename="a.txt", text="cats are mammals"),
            IndexRecord(id=1, vector=(0.0, 1.0), filename="b.txt", text="dogs bark"),
        ]
    )


class _FixedEmbedder(Embedder):
    def __init__(self, vector: list[float]) -> None:
        super().__init__(EmbeddingConfig(normalize=-1))
        self._vector = vector

    def _embed_raw(self, text: str) -> list[float]:
        return list(self._vector)


def test_end_to_end_rank_and_context() -> None:
    index = _scenario_index()

    ranked = rank([1.0, 0.0], index)

    assert ranked == [RankedResult(score=1.0, row=0), RankedResult(score=0.0, row=1)]
    assert build_context(ranked, index, top_k=1, char_budget=1000) == "- [a.txt] cats are mammals\n\n"


def test_scores_non_increasing_and_ties_keep_index_order() -> None:
    index = FlatIndex(
        [
            IndexRecord(id=0, vector=(0.5, 0.0), filename="a.txt", text="a"),
            IndexRecord(id=1, vector=(0.9, 0.0), filename="b.txt", text="b"),
            IndexRecord(id=2, vector=(0.5, 0.0), filename="c.txt", text="c"),
            IndexRecord(id=3, vector=(0.9, 0.0), filename="d.txt", text="d"),
        ]
    )

    ranked = rank([1.0, 0.0], index)

    scores = [item.score for item in ranked]
    assert scores == sorted(scores, reverse=True)
    assert [item.row for item in ranked] == [1, 3, 0, 2]


def test_threshold_excludes_low_scores() -> None:
    index = FlatIndex(
        [
            IndexRecord(id=0, vector=(0.4,), filename="low.txt", text="low"),
            IndexRecord(id=1, vector=(0.7,), filename="high.txt", text="high"),
        ]
    )

    ranked = rank([1.0], index, min_score=0.5)

    assert [item.row for item in ranked] == [1]


def test_negative_threshold_is_disabled() -> None:
    index = _scenario_index()

    assert len(rank([-1.0, 0.0], index, min_score=-1.0)) == 2
    assert len(rank([-1.0, 0.0], index, min_score=None)) == 2


def test_dot_truncates_to_shorter_vector() -> None:
    assert dot([1.0, 2.0, 3.0], [4.0, 5.0]) == 14.0
    assert dot([], [1.0]) == 0.0


def test_first_entry_kept_even_when_over_budget() -> None:
    index = _scenario_index()
    ranked = rank([1.0, 0.0], index)

    context = build_context(ranked, index, top_k=8, char_budget=5)

    assert context == "- [a.txt] cats are mammals\n\n"


def test_greedy_stop_skips_later_smaller_entries() -> None:
    index = FlatIndex(
        [
            IndexRecord(id=0, vector=(3.0,), filename="a.txt", text="first"),
            IndexRecord(id=1, vector=(2.0,), filename="b.txt", text="x" * 100),
            IndexRecord(id=2, vector=(1.0,), filename="c.txt", text="y"),
        ]
    )
    ranked = rank([1.0], index)
    budget = len(format_context_entry(index[0])) + len(format_context_entry(index[2]))

    selected = select_context(ranked, index, top_k=8, char_budget=budget)

    assert [item.row for item in selected] == [0]


def test_context_respects_top_k_and_empty_ranking() -> None:
    index = _scenario_index()
    ranked = rank([1.0, 1.0], index)

    assert build_context(ranked, index, top_k=2, char_budget=1000) == (
        "- [a.txt] cats are mammals\n\n- [b.txt] dogs bark\n\n"
    )
    assert build_context([], index, top_k=2, char_budget=1000) == ""


def test_retriever_uses_configured_threshold_and_top_k() -> None:
    retriever = Retriever(
        _scenario_index(),
        _FixedEmbedder([0.9, 0.3]),
        RetrievalConfig(top_k=1, context_budget=1000, min_score_keep=0.5),
    )

    ranked, context = retriever.retrieve("what are cats?")

    assert [item.row for item in ranked] == [0]
    assert context == "- [a.txt] cats are mammals\n\n"
