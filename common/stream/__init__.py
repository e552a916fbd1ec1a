"""Log particionado sobre Redis Streams."""

from .connection import RedisConnection
from .consumer import ConsumerWorkerPool, StreamGroupConsumer
from .partitioning import partition_for, stream_name, stream_names
from .producer import AppendResult, EventLogProducer
from .results import ItemResult, ItemStatus
from .stats import ConsumerStats

__all__ = [
    "AppendResult",
    "ConsumerStats",
    "ConsumerWorkerPool",
    "EventLogProducer",
    "ItemResult",
    "ItemStatus",
    "RedisConnection",
    "StreamGroupConsumer",
    "partition_for",
    "stream_name",
    "stream_names",
]
