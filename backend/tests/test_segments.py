"""Tests for single-segment maintenance."""

from __future__ import annotations

import pytest

from knowledge_index.core.errors import BadRequestError, InternalError, NotFoundError

TEXT = "Expense reports are due on the fifth of each month."


@pytest.fixture
def document_id(stack, dataset_id):
    [document_id] = stack.ingest(dataset_id, {"expenses.txt": TEXT})
    return document_id


def test_create_appends_and_indexes(stack, dataset_id, document_id) -> None:
    segment = stack.segments.create_segment(dataset_id, document_id, "Receipts must be attached to every claim.")
    assert segment.position == 2
    assert segment.status.value == "completed"
    assert segment.enabled is True
    assert segment.node_id in stack.vector_index
    assert segment.id in stack.keyword_index(dataset_id)["receipts"]
    assert stack.keyword_index(dataset_id) == stack.expected_index(dataset_id)
    results = stack.retriever.search("receipts", [dataset_id], strategy="full_text")
    assert [result.segment_id for result in results] == [segment.id]
    row = stack.document_row(document_id)
    assert row["character_count"] == len(TEXT) + len(segment.content)


def test_create_uses_given_keywords(stack, dataset_id, document_id) -> None:
    segment = stack.segments.create_segment(dataset_id, document_id, "Mileage is paid per kilometre.", ["travel"])
    assert segment.keywords == ["travel"]
    assert stack.keyword_index(dataset_id)["travel"] == {segment.id}


def test_create_under_disabled_document_stays_hidden(stack, dataset_id, document_id) -> None:
    stack.toggler.set_enabled(document_id, False)
    segment = stack.segments.create_segment(dataset_id, document_id, "Receipts must be attached.")
    assert segment.enabled is False
    _, metadata = stack.vector_index.get(segment.node_id)
    assert metadata["document_enabled"] is False
    assert stack.keyword_index(dataset_id) == {}


def test_create_rejects_bad_content(make_stack) -> None:
    stack = make_stack(max_segment_tokens=5)
    dataset_id = stack.documents.create_dataset("Handbook").id
    [document_id] = stack.ingest(dataset_id, {"short.txt": "Short note."})
    with pytest.raises(BadRequestError):
        stack.segments.create_segment(dataset_id, document_id, "   ")
    with pytest.raises(BadRequestError):
        stack.segments.create_segment(dataset_id, document_id, "one two three four five six")
    assert len(stack.segment_rows(document_id)) == 1


def test_create_on_unknown_document(stack, dataset_id) -> None:
    with pytest.raises(NotFoundError):
        stack.segments.create_segment(dataset_id, "missing", "Some content.")


def test_vector_failure_marks_segment_error(make_stack, failing_index) -> None:
    stack = make_stack(vector_index=failing_index(fail_marker="BOOM"))
    dataset_id = stack.documents.create_dataset("Handbook").id
    [document_id] = stack.ingest(dataset_id, {"expenses.txt": TEXT})
    with pytest.raises(InternalError):
        stack.segments.create_segment(dataset_id, document_id, "BOOM goes the store.")
    rows = stack.segment_rows(document_id)
    assert [row["status"] for row in rows] == ["completed", "error"]
    assert rows[1]["error"] == "vector store unavailable"
    assert rows[1]["enabled"] == 0
    assert stack.keyword_index(dataset_id) == stack.expected_index(dataset_id)


def test_update_replaces_content_and_keywords(stack, dataset_id, document_id) -> None:
    [row] = stack.segment_rows(document_id)
    updated = stack.segments.update_segment(dataset_id, row["id"], "Travel claims need manager approval.")
    assert updated.content == "Travel claims need manager approval."
    assert updated.hash != row["hash"]
    assert "travel" in updated.keywords
    text, _ = stack.vector_index.get(row["node_id"])
    assert text == updated.content
    index = stack.keyword_index(dataset_id)
    assert "expense" not in index
    assert index == stack.expected_index(dataset_id)


def test_delete_removes_everywhere(stack, dataset_id, document_id) -> None:
    [row] = stack.segment_rows(document_id)
    stack.segments.delete_segment(dataset_id, row["id"])
    assert stack.segment_rows(document_id) == []
    assert row["node_id"] not in stack.vector_index
    assert stack.keyword_index(dataset_id) == {}
    assert stack.document_row(document_id)["token_count"] == 0
    with pytest.raises(NotFoundError):
        stack.segments.delete_segment(dataset_id, row["id"])


def test_segment_toggle(stack, dataset_id, document_id) -> None:
    [row] = stack.segment_rows(document_id)
    disabled = stack.segments.set_segment_enabled(dataset_id, row["id"], False)
    assert disabled.enabled is False
    _, metadata = stack.vector_index.get(row["node_id"])
    assert metadata["segment_enabled"] is False
    assert stack.keyword_index(dataset_id) == {}
    assert stack.retriever.search("expense reports", [dataset_id], strategy="semantic") == []
    with pytest.raises(BadRequestError):
        stack.segments.set_segment_enabled(dataset_id, row["id"], False)

    enabled = stack.segments.set_segment_enabled(dataset_id, row["id"], True)
    assert enabled.enabled is True
    assert stack.keyword_index(dataset_id) == stack.expected_index(dataset_id)


def test_cannot_enable_segment_of_disabled_document(stack, dataset_id, document_id) -> None:
    [row] = stack.segment_rows(document_id)
    stack.toggler.set_enabled(document_id, False)
    with pytest.raises(BadRequestError):
        stack.segments.set_segment_enabled(dataset_id, row["id"], True)


def test_segment_of_other_dataset_is_not_found(stack, dataset_id, document_id) -> None:
    other = stack.documents.create_dataset("Other").id
    [row] = stack.segment_rows(document_id)
    with pytest.raises(NotFoundError):
        stack.segments.update_segment(other, row["id"], "New content.")
