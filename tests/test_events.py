"""Tests for the workflow event model and stream id ordering."""

from __future__ import annotations

import pytest

from approval_engine.errors import DecodeError
from approval_engine.events import (
    CallerStatus,
    DocumentApproved,
    DocumentSubmitted,
    EventKind,
    caller_status,
    compare_ids,
    decode_event,
    encode_fields,
    id_after,
    normalize_fields,
    parse_stream_id,
)


class TestEncode:
    def test_encode_submission_adds_tag_and_timestamp(self):
        fields = encode_fields(EventKind.DOCUMENT_SUBMITTED, docId="D1", userId="U1")
        assert fields["event"] == "DOCUMENT_SUBMITTED"
        assert fields["docId"] == "D1"
        assert fields["userId"] == "U1"
        assert fields["timestamp"].endswith("Z")

    def test_encode_keeps_supplied_timestamp(self):
        fields = encode_fields(
            EventKind.DOCUMENT_APPROVED,
            docId="D1",
            approverId="A1",
            timestamp="2024-01-01T00:00:00.000Z",
        )
        assert fields["timestamp"] == "2024-01-01T00:00:00.000Z"

    def test_caller_status(self):
        assert caller_status(EventKind.DOCUMENT_SUBMITTED) is CallerStatus.PENDING
        assert caller_status(EventKind.DOCUMENT_APPROVED) is CallerStatus.APPROVED


class TestDecode:
    def test_decode_submission(self):
        event = decode_event(
            {"event": "DOCUMENT_SUBMITTED", "docId": "D1", "userId": "U1", "timestamp": "t"}
        )
        assert event == DocumentSubmitted(doc_id="D1", user_id="U1", timestamp="t")
        assert event.kind is EventKind.DOCUMENT_SUBMITTED

    def test_decode_approval_from_bytes(self):
        event = decode_event(
            {b"event": b"DOCUMENT_APPROVED", b"docId": b"D1", b"approverId": b"A1", b"timestamp": b"t"}
        )
        assert isinstance(event, DocumentApproved)
        assert event.approver_id == "A1"

    def test_decode_fails_without_tag(self):
        with pytest.raises(DecodeError, match="missing event tag"):
            decode_event({"docId": "D1"})

    def test_decode_fails_on_unknown_tag(self):
        with pytest.raises(DecodeError, match="unknown event tag"):
            decode_event({"event": "DOCUMENT_SHREDDED", "docId": "D1", "timestamp": "t"})

    def test_decode_fails_closed_on_missing_variant_field(self):
        # An approval carries approverId, not userId.
        with pytest.raises(DecodeError) as exc_info:
            decode_event(
                {"event": "DOCUMENT_APPROVED", "docId": "D1", "userId": "U1", "timestamp": "t"},
                event_id="5-0",
            )
        assert "approverId" in exc_info.value.message
        assert exc_info.value.context.event_id == "5-0"

    def test_decode_rejects_empty_field(self):
        with pytest.raises(DecodeError):
            decode_event({"event": "DOCUMENT_SUBMITTED", "docId": "", "userId": "U1", "timestamp": "t"})

    def test_normalize_flat_list(self):
        assert normalize_fields(["event", "DOCUMENT_SUBMITTED", "docId", "D1"]) == {
            "event": "DOCUMENT_SUBMITTED",
            "docId": "D1",
        }


class TestStreamIds:
    def test_parse(self):
        assert parse_stream_id("1700000000000-3") == (1700000000000, 3)
        assert parse_stream_id("42") == (42, 0)
        assert parse_stream_id("abc") is None
        assert parse_stream_id("1-x") is None

    def test_numeric_comparison_differs_from_lexicographic(self):
        # "9-0" > "10-0" as strings, but 10-0 was issued later.
        assert compare_ids("10-0", "9-0") > 0
        assert id_after("10-0", "9-0")
        assert not id_after("9-0", "10-0")

    def test_sequence_breaks_ties(self):
        assert compare_ids("5-2", "5-10") < 0
        assert compare_ids("5-2", "5-2") == 0

    def test_cursor_zero(self):
        assert id_after("1-0", "0-0")
        assert not id_after("0-0", "0-0")

    def test_non_standard_ids_fall_back_to_string_order(self):
        assert compare_ids("b", "a") > 0
