"""Tests for client-side ordering and read-state."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from pharmachat.sync.reconciler import (
    EPOCH,
    ReadMarker,
    as_timestamp,
    materialize_conversations,
    materialize_messages,
    needs_read_mark,
    preview_text,
)


T0 = datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)


class TestMaterializeMessages:
    """SUT: materialize_messages"""

    def test_oldest_first(self):
        msgs = [
            {"content": "Hello", "created_at": T0 + timedelta(minutes=1)},
            {"content": "Hi", "created_at": T0},
        ]
        assert [m["content"] for m in materialize_messages(msgs)] == ["Hi", "Hello"]

    def test_missing_timestamp_sorts_first(self):
        msgs = [
            {"content": "a", "created_at": T0},
            {"content": "pending", "created_at": None},
            {"content": "b", "created_at": T0 + timedelta(seconds=5)},
        ]
        assert [m["content"] for m in materialize_messages(msgs)] == ["pending", "a", "b"]

    def test_non_decreasing(self):
        stamps = [T0 + timedelta(seconds=s) for s in (9, 3, 7, 3, 0, 12)]
        msgs = [{"created_at": s} for s in stamps] + [{}]
        ordered = [as_timestamp(m.get("created_at")) for m in materialize_messages(msgs)]
        assert ordered == sorted(ordered)

    def test_does_not_mutate_input(self):
        msgs = [{"created_at": T0 + timedelta(seconds=1)}, {"created_at": T0}]
        materialize_messages(msgs)
        assert msgs[0]["created_at"] == T0 + timedelta(seconds=1)


class TestMaterializeConversations:
    """SUT: materialize_conversations"""

    def test_most_recent_first(self):
        convs = [
            {"_id": "ten", "last_message_at": T0},
            {"_id": "five-past", "last_message_at": T0 + timedelta(minutes=5)},
        ]
        assert [c["_id"] for c in materialize_conversations(convs)] == ["five-past", "ten"]

    def test_ties_keep_snapshot_order(self):
        convs = [{"_id": x, "last_message_at": T0} for x in ("a", "b", "c")]
        assert [c["_id"] for c in materialize_conversations(convs)] == ["a", "b", "c"]

    def test_never_messaged_last(self):
        convs = [{"_id": "empty", "last_message_at": None}, {"_id": "busy", "last_message_at": T0}]
        assert [c["_id"] for c in materialize_conversations(convs)] == ["busy", "empty"]

    def test_non_increasing(self):
        convs = [{"last_message_at": T0 + timedelta(minutes=m)} for m in (4, 1, 9, 9, 0)]
        ordered = [c["last_message_at"] for c in materialize_conversations(convs)]
        assert ordered == sorted(ordered, reverse=True)


class TestAsTimestamp:
    """SUT: as_timestamp"""

    def test_none_is_epoch(self):
        assert as_timestamp(None) == EPOCH

    def test_iso_string(self):
        assert as_timestamp("2025-03-01T10:00:00Z") == T0

    def test_naive_datetime_is_utc(self):
        assert as_timestamp(datetime(2025, 3, 1, 10, 0)) == T0

    def test_epoch_millis(self):
        assert as_timestamp(int(T0.timestamp() * 1000)) == T0

    def test_garbage_is_epoch(self):
        assert as_timestamp("not a date") == EPOCH


class TestReadState:
    """SUT: needs_read_mark, preview_text"""

    def test_needs_read_mark(self):
        assert needs_read_mark({"unread_count_pharmacy_owner": 3})
        assert not needs_read_mark({"unread_count_pharmacy_owner": 0})
        assert not needs_read_mark({})

    def test_customer_reader(self):
        conv = {"unread_count_pharmacy_owner": 0, "unread_count_customer": 2}
        assert needs_read_mark(conv, "customer")

    def test_preview_text(self):
        assert preview_text({"last_message_type": "image", "last_message": None}) == "📷 Image"
        assert preview_text({"last_message_type": "text", "last_message": "Do you have aspirin?"}) == "Do you have aspirin?"
        assert preview_text({}) == "No messages yet"


class _Writer:

    def __init__(self, fail: bool = False) -> None:
        self.calls = []
        self.fail = fail

    async def mark_read(self, conversation_id, reader_id, reader_type):
        self.calls.append((conversation_id, reader_id, reader_type))
        if self.fail:
            raise RuntimeError("store down")
        return True


class TestReadMarker:
    """SUT: ReadMarker"""

    async def test_marks_unread_conversation_once(self):
        writer = _Writer()
        marker = ReadMarker(writer, "owner-1")
        task = marker.maybe_mark({"_id": "c1", "unread_count_pharmacy_owner": 3})
        await task
        assert writer.calls == [("c1", "owner-1", "pharmacy-owner")]

    async def test_skips_read_conversation(self):
        writer = _Writer()
        marker = ReadMarker(writer, "owner-1")
        assert marker.maybe_mark({"_id": "c1", "unread_count_pharmacy_owner": 0}) is None
        await asyncio.sleep(0)
        assert writer.calls == []

    async def test_failure_is_logged_not_raised(self, caplog):
        marker = ReadMarker(_Writer(fail=True), "owner-1")
        with caplog.at_level(logging.WARNING, logger="pharmachat.sync.reconciler"):
            await marker.maybe_mark({"_id": "c1", "unread_count_pharmacy_owner": 1})
        assert "Read-mark failed" in caplog.text
