"""Tests del consumer de persistencia de eventos crudos."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from common.stream import ItemStatus
from persistence_service.consumer import EventPersistenceHandler
from persistence_service.repository import EventRepository


@pytest.fixture
def repo(engine):
    r = EventRepository(engine)
    r.create_schema()
    return r


class TestEventRepository:

    def test_save_is_idempotent(self, repo, make_event):
        event = make_event(session_id="S", ts=1000)

        assert repo.save(event, saved_timestamp_ms=5000) is True
        assert repo.save(event, saved_timestamp_ms=6000) is False
        assert repo.count_by_session_id("S") == 1

    def test_saved_row_contents(self, repo, make_event):
        repo.save(make_event(session_id="S", ts=1000, line=7), saved_timestamp_ms=5000)

        (row,) = repo.find_by_session_id("S")

        assert row["client_timestamp_ms"] == 1000
        assert row["server_timestamp_ms"] == 1005
        assert row["line_number"] == 7
        assert row["file_name"] == "A.java"
        assert row["saved_timestamp_ms"] == 5000

    def test_find_by_session_orders_by_client_time(self, repo, make_event):
        for ts in (3000, 1000, 2000):
            repo.save(make_event(session_id="S", ts=ts), saved_timestamp_ms=ts)
        repo.save(make_event(session_id="other", ts=500), saved_timestamp_ms=500)

        rows = repo.find_by_session_id("S")

        assert [r["client_timestamp_ms"] for r in rows] == [1000, 2000, 3000]

    def test_find_by_session_and_file(self, repo, make_event):
        repo.save(make_event(session_id="S", ts=1000, file_name="A.java"), saved_timestamp_ms=1)
        repo.save(make_event(session_id="S", ts=2000, file_name="B.java"), saved_timestamp_ms=1)

        rows = repo.find_by_session_id_and_file_uri("S", "file:///repo/B.java")

        assert [r["file_name"] for r in rows] == ["B.java"]

    def test_distinct_events_same_timestamp(self, repo, make_event):
        repo.save(make_event(session_id="S", ts=1000, line=1), saved_timestamp_ms=1)
        repo.save(make_event(session_id="S", ts=1000, line=2), saved_timestamp_ms=1)

        assert repo.count_by_session_id("S") == 2


class TestEventPersistenceHandler:

    def test_saves_stream_entry(self, repo, make_event):
        handler = EventPersistenceHandler(repo, clock=lambda: 1_700_000_000.0)
        fields = make_event(session_id="S").to_stream_fields()

        result = handler(fields)

        assert result.status is ItemStatus.OK
        (row,) = repo.find_by_session_id("S")
        assert row["saved_timestamp_ms"] == 1_700_000_000_000

    def test_redelivery_is_ok_and_not_duplicated(self, repo, make_event):
        handler = EventPersistenceHandler(repo)
        fields = make_event(session_id="S").to_stream_fields()

        assert handler(fields).status is ItemStatus.OK
        assert handler(fields).status is ItemStatus.OK
        assert repo.count_by_session_id("S") == 1

    def test_malformed_entry_skipped(self, repo):
        handler = EventPersistenceHandler(repo)

        assert handler({b"event": b"not json"}).status is ItemStatus.SKIPPED
        assert handler({b"other": b"{}"}).status is ItemStatus.SKIPPED
        assert handler({b"event": b'{"sessionId": "S"}'}).status is ItemStatus.SKIPPED

    def test_missing_session_skipped(self, repo, make_event):
        result = EventPersistenceHandler(repo)(make_event(session_id=None).to_stream_fields())

        assert result.status is ItemStatus.SKIPPED
        assert result.reason == "empty_session_id"

    def test_db_error_is_failure(self, make_event):
        store = MagicMock()
        store.save.side_effect = OperationalError("INSERT", {}, Exception("db down"))

        result = EventPersistenceHandler(store)(make_event().to_stream_fields())

        assert result.status is ItemStatus.FAILED
        assert result.reason == "db_error:OperationalError"
