"""Tests del log particionado (Redis Streams) con un cliente Redis mockeado."""

from unittest.mock import MagicMock

import pytest
import redis

from common.events import CodeEvent
from common.stream import (
    ConsumerWorkerPool,
    EventLogProducer,
    ItemResult,
    StreamGroupConsumer,
    partition_for,
    stream_name,
    stream_names,
)


def _response(stream, *entries):
    return [[stream.encode(), [(eid.encode(), fields) for eid, fields in entries]]]


# =============================================================================
# PARTICIONADO
# =============================================================================

class TestPartitioning:

    def test_same_session_same_partition(self):
        assert partition_for("session-1", 6) == partition_for("session-1", 6)

    def test_partition_in_range(self):
        for i in range(100):
            assert 0 <= partition_for(f"s{i}", 6) < 6

    def test_sessions_spread_over_partitions(self):
        assert len({partition_for(f"s{i}", 6) for i in range(200)}) == 6

    def test_single_partition_and_empty_key(self):
        assert partition_for("anything", 1) == 0
        assert partition_for("", 6) == 0
        assert partition_for(None, 6) == 0

    def test_stream_names(self):
        assert stream_name("code_events", 3) == "code_events:3"
        assert stream_names("p", 3) == ["p:0", "p:1", "p:2"]
        assert stream_names("p", 6, assigned=[4, 1, 4]) == ["p:1", "p:4"]


# =============================================================================
# PRODUCER
# =============================================================================

class TestProducer:

    @pytest.fixture
    def connection(self):
        conn = MagicMock()
        conn.is_connected = True
        conn.client.xadd.return_value = b"1700000000000-0"
        return conn

    def test_append_routes_by_session(self, connection, make_event):
        producer = EventLogProducer(connection, prefix="code_events", partitions=6, max_len=1000)
        event = make_event(session_id="abc")

        result = producer.append(event)

        expected = partition_for("abc", 6)
        assert result.partition == expected
        assert result.stream == f"code_events:{expected}"
        assert result.entry_id == "1700000000000-0"
        args, kwargs = connection.client.xadd.call_args
        assert args[0] == f"code_events:{expected}"
        assert kwargs == {"maxlen": 1000, "approximate": True}

    def test_payload_round_trips(self, connection, make_event):
        producer = EventLogProducer(connection)
        event = make_event(session_id="abc", ts=4242)

        producer.append(event)

        fields = connection.client.xadd.call_args[0][1]
        assert CodeEvent.from_stream_fields(fields) == event

    def test_not_connected_returns_none(self, connection, make_event):
        connection.is_connected = False

        assert EventLogProducer(connection).append(make_event()) is None
        connection.client.xadd.assert_not_called()

    def test_redis_error_returns_none(self, connection, make_event):
        connection.client.xadd.side_effect = redis.ConnectionError("boom")

        assert EventLogProducer(connection).append(make_event()) is None


# =============================================================================
# CONSUMER
# =============================================================================

class TestStreamGroupConsumer:

    @pytest.fixture
    def client(self):
        return MagicMock()

    @pytest.fixture
    def handler(self):
        return MagicMock(return_value=ItemResult.ok())

    def _consumer(self, client, handler, **kwargs):
        return StreamGroupConsumer(client, "g", ["s:0"], handler, consumer_name="c-0", **kwargs)

    def test_requires_streams(self, client, handler):
        with pytest.raises(ValueError):
            StreamGroupConsumer(client, "g", [], handler)

    def test_ensure_groups_ignores_busygroup(self, client, handler):
        client.xgroup_create.side_effect = redis.ResponseError("BUSYGROUP Consumer Group name already exists")

        self._consumer(client, handler).ensure_groups()

        client.xgroup_create.assert_called_once_with("s:0", "g", id="0", mkstream=True)

    def test_ensure_groups_propagates_other_errors(self, client, handler):
        client.xgroup_create.side_effect = redis.ResponseError("WRONGTYPE")

        with pytest.raises(redis.ResponseError):
            self._consumer(client, handler).ensure_groups()

    def test_reads_own_pending_first_then_new(self, client, handler):
        client.xreadgroup.side_effect = [[], []]
        consumer = self._consumer(client, handler, block_ms=1500, batch_size=10)

        consumer.poll_once()
        consumer.poll_once()

        first, second = client.xreadgroup.call_args_list
        assert first.args == ("g", "c-0", {"s:0": "0"})
        assert first.kwargs == {"count": 10, "block": None}
        assert second.args == ("g", "c-0", {"s:0": ">"})
        assert second.kwargs == {"count": 10, "block": 1500}

    def test_ok_entry_is_acked(self, client, handler):
        client.xreadgroup.side_effect = [[], _response("s:0", ("1-0", {b"event": b"{}"}))]
        consumer = self._consumer(client, handler)

        consumer.poll_once()
        handled = consumer.poll_once()

        assert handled == 1
        handler.assert_called_once_with({b"event": b"{}"})
        client.xack.assert_called_once_with("s:0", "g", "1-0")
        assert consumer.stats.processed == 1

    def test_skipped_entry_is_acked(self, client, handler):
        handler.return_value = ItemResult.skipped("malformed_event")
        client.xreadgroup.side_effect = [_response("s:0", ("1-0", {b"x": b"y"}))]
        consumer = self._consumer(client, handler)

        consumer.poll_once()

        client.xack.assert_called_once_with("s:0", "g", "1-0")
        assert consumer.stats.to_dict()["reasons"] == {"malformed_event": 1}

    def test_failed_entry_stays_pending_and_is_reread(self, client, handler):
        handler.return_value = ItemResult.failed("db_error")
        client.xreadgroup.side_effect = [[], _response("s:0", ("1-0", {b"e": b"1"})), []]
        consumer = self._consumer(client, handler)

        consumer.poll_once()
        consumer.poll_once()
        consumer.poll_once()

        client.xack.assert_not_called()
        assert client.xreadgroup.call_args_list[2].args[2] == {"s:0": "0"}
        assert consumer.stats.failed == 1

    def test_entry_dropped_after_max_attempts(self, client, handler):
        handler.return_value = ItemResult.failed("db_error")
        entry = _response("s:0", ("1-0", {b"e": b"1"}))
        client.xreadgroup.side_effect = [entry, entry, entry]
        consumer = self._consumer(client, handler, max_attempts=3)

        consumer.poll_once()
        consumer.poll_once()
        client.xack.assert_not_called()
        consumer.poll_once()

        client.xack.assert_called_once_with("s:0", "g", "1-0")
        assert consumer.stats.dropped == 1

    def test_handler_exception_counts_as_failure(self, client, handler):
        handler.side_effect = RuntimeError("boom")
        client.xreadgroup.side_effect = [_response("s:0", ("1-0", {b"e": b"1"}))]
        consumer = self._consumer(client, handler)

        consumer.poll_once()

        client.xack.assert_not_called()
        assert consumer.stats.failed == 1

    def test_trimmed_pending_entry_is_acked(self, client, handler):
        client.xreadgroup.side_effect = [_response("s:0", ("1-0", None))]
        consumer = self._consumer(client, handler)

        consumer.poll_once()

        handler.assert_not_called()
        client.xack.assert_called_once_with("s:0", "g", "1-0")


class TestConsumerWorkerPool:

    def test_partitions_are_disjoint(self):
        streams = stream_names("p", 6)
        pool = ConsumerWorkerPool(MagicMock(), "g", streams, MagicMock(), workers=4)

        owned = [c.streams for c in pool.consumers]

        assert len(owned) == 4
        flat = [s for group in owned for s in group]
        assert sorted(flat) == sorted(streams)
        assert len(flat) == len(set(flat))

    def test_workers_capped_by_streams(self):
        pool = ConsumerWorkerPool(MagicMock(), "g", ["p:0", "p:1"], MagicMock(), workers=5)
        assert len(pool.consumers) == 2

    def test_consumers_share_stats(self):
        pool = ConsumerWorkerPool(MagicMock(), "g", stream_names("p", 4), MagicMock(), workers=2)
        assert all(c.stats is pool.stats for c in pool.consumers)

    def test_invalid_worker_count(self):
        with pytest.raises(ValueError):
            ConsumerWorkerPool(MagicMock(), "g", ["p:0"], MagicMock(), workers=0)

    def test_start_and_stop(self):
        client = MagicMock()
        client.xreadgroup.return_value = []
        pool = ConsumerWorkerPool(client, "g", stream_names("p", 2), MagicMock(), workers=2, block_ms=10)

        pool.start()
        assert pool.running
        pool.stop(timeout=5.0)

        assert not pool.running
        assert client.xgroup_create.call_count == 2
