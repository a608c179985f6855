"""Unit tests for the SQLite index store."""

import pytest

from record_search.errors import ConcurrentWriterError, NotInitializedError
from record_search.search.documents import IndexDocument, TermGenerator
from record_search.search.index_store import (
    SENTINEL_FILENAME,
    ReadableIndex,
    WritableIndex,
    WriterGuard,
    is_index_dir,
    lock_path_for,
    open_writer_paths,
)


def _document(key, text, values=None):
    document = IndexDocument(key=key)
    document.add_boolean_term("M" + key.split("-")[0])
    document.add_boolean_term(document.id_term)
    TermGenerator(document).index_text(text)
    document.values.update(values or {})
    return document


def test_writer_creates_sentinel_and_lock_beside_directory(tmp_path):
    path = tmp_path / "index"

    with WritableIndex(path):
        assert is_index_dir(path)
        assert (path / SENTINEL_FILENAME).is_file()
        assert lock_path_for(path) == tmp_path / "index.lock"
        assert str(path.resolve()) in open_writer_paths()

    assert str(path.resolve()) not in open_writer_paths()


def test_second_writer_fails_fast(tmp_path):
    path = tmp_path / "index"

    with WritableIndex(path):
        with pytest.raises(ConcurrentWriterError):
            WritableIndex(path)

    # released again after close
    with WritableIndex(path):
        pass


def test_writer_guard_blocks_writable_index(tmp_path):
    path = tmp_path / "index"

    with WriterGuard(path) as guard:
        assert guard.held
        with pytest.raises(ConcurrentWriterError):
            WritableIndex(path)
        with WritableIndex(path, guard=guard) as writer:
            writer.replace_document(_document("Article-1", "red car"))
        assert guard.held

    assert not guard.held


def test_reader_requires_an_initialised_index(tmp_path):
    with pytest.raises(NotInitializedError):
        ReadableIndex(tmp_path / "missing")

    (tmp_path / "plain").mkdir()
    with pytest.raises(NotInitializedError):
        ReadableIndex(tmp_path / "plain")


def test_replace_and_delete_documents(tmp_path):
    path = tmp_path / "index"
    with WritableIndex(path) as writer:
        writer.replace_document(_document("Article-1", "red car", {0: "20240101"}))
        writer.replace_document(_document("Article-2", "blue car"))
        writer.replace_document(_document("Article-1", "green bike", {0: "20240202"}))
        writer.delete_document("Article-2")
        writer.delete_document("Article-99")
        assert writer.doc_count() == 1

    with ReadableIndex(path) as reader:
        assert reader.all_doc_keys() == ["Article-1"]
        assert not reader.has_term("red")
        assert reader.has_term("green")
        assert reader.values_for(["Article-1", "Article-2"], 0) == {"Article-1": "20240202"}
        assert [posting.doc_length for posting in reader.postings("green")] == [2]
        assert reader.stats.document_count == 1


def test_failed_replace_leaves_no_partial_document(tmp_path):
    path = tmp_path / "index"
    with WritableIndex(path) as writer:
        writer.replace_document(_document("Article-1", "red car"))
        broken = _document("Article-2", "blue car", {0: object()})
        with pytest.raises(Exception):
            writer.replace_document(broken)

    with ReadableIndex(path) as reader:
        assert reader.all_doc_keys() == ["Article-1"]
        assert not reader.has_term("blue")


def test_exception_inside_writer_discards_uncommitted_changes(tmp_path):
    path = tmp_path / "index"
    with WritableIndex(path) as writer:
        writer.replace_document(_document("Article-1", "red car"))

    with pytest.raises(RuntimeError):
        with WritableIndex(path) as writer:
            writer.replace_document(_document("Article-2", "blue car"))
            raise RuntimeError("boom")

    with ReadableIndex(path) as reader:
        assert reader.all_doc_keys() == ["Article-1"]


def test_reader_keeps_its_snapshot_until_reopen(tmp_path):
    path = tmp_path / "index"
    with WritableIndex(path) as writer:
        writer.replace_document(_document("Article-1", "red car"))

    reader = ReadableIndex(path)
    try:
        with WritableIndex(path) as writer:
            writer.replace_document(_document("Article-2", "blue car"))

        assert reader.doc_count() == 1
        assert not reader.has_term("blue")

        reader.reopen()

        assert reader.doc_count() == 2
        assert reader.has_term("blue")
    finally:
        reader.close()


def test_postings_carry_positions_on_request(tmp_path):
    path = tmp_path / "index"
    with WritableIndex(path) as writer:
        writer.replace_document(_document("Article-1", "red car red"))

    with ReadableIndex(path) as reader:
        (posting,) = reader.postings("red", include_positions=True)
        assert posting.doc_key == "Article-1"
        assert posting.wdf == 2
        assert list(posting.positions) == [1, 3]
        assert posting.doc_length == 3
        (bare,) = reader.postings("red")
        assert list(bare.positions) == []


def test_term_listing_and_spelling_candidates(tmp_path):
    path = tmp_path / "index"
    with WritableIndex(path) as writer:
        document = _document("Article-1", "red car bicycle")
        TermGenerator(document).index_text("alice", prefix="A")
        writer.replace_document(document)

    with ReadableIndex(path) as reader:
        assert reader.terms_with_prefix("A") == ["Aalice"]
        assert reader.terms_with_prefix("MA") == ["MArticle"]
        assert reader.spelling_candidates(3, 1) == ["car", "red"]
        assert reader.spelling_candidates(7, 2) == ["bicycle"]
        assert reader.has_term("car")
        assert not reader.has_term("Aalic")


def test_spelling_candidates_are_cached_per_snapshot(tmp_path):
    path = tmp_path / "index"
    with WritableIndex(path) as writer:
        writer.replace_document(_document("Article-1", "red car"))

    reader = ReadableIndex(path)
    try:
        assert reader.spelling_candidates(3, 1) == ["car", "red"]
        with WritableIndex(path) as writer:
            writer.replace_document(_document("Article-2", "rad bus"))

        assert reader.spelling_candidates(3, 1) == ["car", "red"]

        reader.reopen()

        assert reader.spelling_candidates(3, 1) == ["bus", "car", "rad", "red"]
    finally:
        reader.close()


def test_closed_reader_raises(tmp_path):
    path = tmp_path / "index"
    with WritableIndex(path) as writer:
        writer.replace_document(_document("Article-1", "red car"))

    reader = ReadableIndex(path)
    reader.close()

    with pytest.raises(RuntimeError, match="closed"):
        reader.doc_count()
    with pytest.raises(RuntimeError, match="closed"):
        reader.has_term("red")


def test_value_ranges_are_inclusive_and_open_ended(tmp_path):
    path = tmp_path / "index"
    with WritableIndex(path) as writer:
        for number, day in enumerate(("20240101", "20240115", "20240201"), start=1):
            writer.replace_document(_document(f"Article-{number}", "x", {0: day}))

    with ReadableIndex(path) as reader:
        assert sorted(reader.docs_in_value_range(0, "20240101", "20240115")) == ["Article-1", "Article-2"]
        assert sorted(reader.docs_in_value_range(0, "20240110", None)) == ["Article-2", "Article-3"]
        assert sorted(reader.docs_in_value_range(0, None, None)) == ["Article-1", "Article-2", "Article-3"]
        assert reader.docs_in_value_range(1, None, None) == []
