"""Publicador de eventos al log particionado."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import redis

from ..events import CodeEvent
from .connection import RedisConnection
from .partitioning import partition_for, stream_name

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "code_events"
DEFAULT_PARTITIONS = 6
DEFAULT_MAX_LEN = 1_000_000


@dataclass(frozen=True)
class AppendResult:
    stream: str
    partition: int
    entry_id: str


class EventLogProducer:
    """Escribe eventos en ``{prefix}:{partition}`` con la sesión como clave.

    Responsabilidades:
    - Elegir la partición por sessionId (orden por sesión)
    - Gestionar retención (MAXLEN aproximado)
    """

    def __init__(
        self,
        connection: RedisConnection,
        prefix: str = DEFAULT_PREFIX,
        partitions: int = DEFAULT_PARTITIONS,
        max_len: int = DEFAULT_MAX_LEN,
    ):
        self._conn = connection
        self._prefix = prefix
        self._partitions = partitions
        self._max_len = max_len

    def append(self, event: CodeEvent) -> Optional[AppendResult]:
        """Añade el evento al log.

        Returns:
            AppendResult con la posición asignada, o None si Redis no está
            disponible o el XADD falló.
        """
        client = self._conn.client
        if not self._conn.is_connected or client is None:
            logger.warning("[STREAM] Append skipped, not connected session=%s", event.session_id)
            return None

        partition = partition_for(event.session_id, self._partitions)
        stream = stream_name(self._prefix, partition)
        try:
            entry_id = client.xadd(
                stream,
                event.to_stream_fields(),
                maxlen=self._max_len,
                approximate=True,
            )
        except redis.RedisError as e:
            logger.error(
                "[STREAM] Append failed session=%s file=%s err=%s",
                event.session_id, event.file_name, e,
            )
            return None

        if isinstance(entry_id, bytes):
            entry_id = entry_id.decode()
        logger.debug(
            "[STREAM] Appended session=%s line=%s partition=%d id=%s",
            event.session_id, event.line_number, partition, entry_id,
        )
        return AppendResult(stream=stream, partition=partition, entry_id=entry_id)
