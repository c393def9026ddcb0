from pathlib import Path

import pytest

from rag_chat.retrieval.index_store import (
    FlatIndex,
    IndexLoadError,
    format_record,
    load_index,
    parse_index_line,
    parse_vector_csv,
    write_index,
)
from rag_chat.types import IndexRecord


def _records() -> list[IndexRecord]:
    return [
        IndexRecord(id=0, vector=(0.12345678, -1.0, 0.0), filename="a.txt", text="cats are mammals"),
        IndexRecord(id=1, vector=(0.5, 0.25, -0.125), filename="b.md", text="dogs bark, loudly"),
        IndexRecord(id=2, vector=(1e-8, 2.0, 3.5), filename="c.txt", text="x"),
    ]


def test_record_line_format() -> None:
    line = format_record(_records()[0])

    assert line == "0\t0.1234568,-1.0000000,0.0000000\ta.txt\tcats are mammals\n"


def test_write_then_load_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "index.tsv"
    records = _records()

    assert write_index(records, path) == 3
    loaded = load_index(path)

    assert len(loaded) == 3
    assert loaded.source == str(path)
    for original, restored in zip(records, loaded, strict=True):
        assert restored.id == original.id
        assert restored.filename == original.filename
        assert restored.text == original.text
        assert restored.vector == pytest.approx(original.vector, abs=1e-7)


def test_line_missing_a_tab_is_discarded(tmp_path: Path) -> None:
    path = tmp_path / "index.tsv"
    path.write_text(
        "0\t1.0,0.0\ta.txt\tcats are mammals\n"
        "1\t0.0,1.0\tb.txt dogs bark\n",
        encoding="utf-8",
    )

    loaded = load_index(path)

    assert len(loaded) == 1
    assert loaded[0].filename == "a.txt"


def test_blank_and_malformed_lines_are_skipped(tmp_path: Path) -> None:
    path = tmp_path / "index.tsv"
    path.write_text(
        "\n"
        "abc\t1.0\ta.txt\tbad id\n"
        "-3\t1.0\ta.txt\tnegative id\n"
        "4\t \ta.txt\tempty vector\n"
        "5\t1.0\t  \tempty filename\n"
        "6\t,,,\ta.txt\tno components\n"
        "7\t1.0,2.0\tok.txt\tkept\n"
        "   \n",
        encoding="utf-8",
    )

    loaded = load_index(path)

    assert [record.id for record in loaded] == [7]


def test_bad_vector_token_becomes_zero() -> None:
    assert parse_vector_csv(" 1.5, nope ,\t-2 ,,3") == [1.5, 0.0, -2.0, 3.0]

    record = parse_index_line("9\t1.0,oops,2.0\tf.txt\ttext\n")
    assert record is not None
    assert record.vector == (1.0, 0.0, 2.0)


def test_text_field_keeps_remaining_tabs_verbatim() -> None:
    record = parse_index_line("3\t1.0\t f.txt \tleft\tright\r\n")

    assert record is not None
    assert record.filename == "f.txt"
    assert record.text == "left\tright"


def test_missing_file_fails(tmp_path: Path) -> None:
    with pytest.raises(IndexLoadError):
        load_index(tmp_path / "missing.tsv")


def test_file_without_valid_lines_fails(tmp_path: Path) -> None:
    path = tmp_path / "index.tsv"
    path.write_text("garbage\n\nmore garbage\n", encoding="utf-8")

    with pytest.raises(IndexLoadError):
        load_index(path)


def test_writer_rejects_text_with_tabs(tmp_path: Path) -> None:
    record = IndexRecord(id=0, vector=(1.0,), filename="a.txt", text="has\ttab")

    with pytest.raises(ValueError):
        write_index([record], tmp_path / "index.tsv")


@pytest.mark.parametrize("filename", ["a\tb.txt", "a\nb.txt"])
def test_writer_rejects_filenames_that_break_the_line_format(tmp_path: Path, filename: str) -> None:
    record = IndexRecord(id=0, vector=(1.0,), filename=filename, text="cats are mammals")

    with pytest.raises(ValueError):
        write_index([record], tmp_path / "index.tsv")


def test_flat_index_sequence_behaviour() -> None:
    index = FlatIndex(_records())

    assert len(index) == 3
    assert index.dimension == 3
    assert index[1].filename == "b.md"
    assert [record.id for record in index] == [0, 1, 2]
    assert FlatIndex([]).dimension == 0
