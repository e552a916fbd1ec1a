"""Consumer groups sobre los streams particionados.

Cada consumer group lleva su propio offset (el PEL de Redis), así que la
persistencia y la agregación leen el mismo log a su ritmo.

GARANTÍAS:
- At-least-once: XACK solo después de que el handler devuelve ok/skipped
- Un stream (partición) lo lee un único worker, nunca dos
- Una entrada que falla ``max_attempts`` veces se confirma y se descarta
"""

from __future__ import annotations

import logging
import socket
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import redis

from .results import ItemResult
from .stats import ConsumerStats

logger = logging.getLogger(__name__)

# Handler por entrada. Recibe los campos crudos de la entrada del stream.
EntryHandler = Callable[[Mapping[Any, Any]], ItemResult]

DEFAULT_BLOCK_MS = 2000
DEFAULT_BATCH_SIZE = 100
DEFAULT_MAX_ATTEMPTS = 3
ERROR_BACKOFF_SECONDS = 5.0
RETRY_BACKOFF_SECONDS = 1.0


def _decode(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


class StreamGroupConsumer:
    """Lee un conjunto fijo de streams como un consumer de un grupo.

    Uso:
        consumer = StreamGroupConsumer(client, "analytics", ["code_events:0"], handler)
        consumer.ensure_groups()
        while running:
            consumer.poll_once()
    """

    def __init__(
        self,
        client: redis.Redis,
        group: str,
        streams: Sequence[str],
        handler: EntryHandler,
        consumer_name: Optional[str] = None,
        block_ms: int = DEFAULT_BLOCK_MS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        stats: Optional[ConsumerStats] = None,
    ):
        if not streams:
            raise ValueError("consumer needs at least one stream")
        self._client = client
        self._group = group
        self._streams = list(streams)
        self._handler = handler
        self._name = consumer_name or f"{group}-{socket.gethostname()}"
        self._block_ms = block_ms
        self._batch_size = batch_size
        self._max_attempts = max_attempts
        self._stats = stats or ConsumerStats()

        # Al arrancar se releen las entradas propias sin XACK (crash previo).
        self._read_pending = True
        self._retry_requested = False
        self._attempts: Dict[Tuple[str, str], int] = {}

    @property
    def name(self) -> str:
        return self._name

    @property
    def streams(self) -> List[str]:
        return list(self._streams)

    @property
    def stats(self) -> ConsumerStats:
        return self._stats

    def ensure_groups(self) -> None:
        """Crea el grupo en cada stream (desde el principio) si no existe."""
        for stream in self._streams:
            try:
                self._client.xgroup_create(stream, self._group, id="0", mkstream=True)
                logger.info("[STREAM] Group created stream=%s group=%s", stream, self._group)
            except redis.ResponseError as e:
                if "BUSYGROUP" not in str(e):
                    raise

    def poll_once(self) -> int:
        """Lee y procesa un lote.

        Returns:
            Número de entradas entregadas al handler.
        """
        pending = self._read_pending
        self._retry_requested = False
        read_id = "0" if pending else ">"
        response = self._client.xreadgroup(
            self._group,
            self._name,
            {stream: read_id for stream in self._streams},
            count=self._batch_size,
            block=None if pending else self._block_ms,
        )

        handled = 0
        for stream, entries in self._iter_response(response):
            for entry_id, fields in entries:
                handled += 1
                self._process_entry(stream, _decode(entry_id), fields)

        if pending and handled == 0:
            # PEL propio vacío: a partir de ahora solo entradas nuevas.
            self._read_pending = False
        return handled

    @staticmethod
    def _iter_response(response: Any) -> List[Tuple[str, list]]:
        # Formato RESP2: [[stream, [(id, fields), ...]], ...]
        if not response:
            return []
        return [(_decode(stream), entries or []) for stream, entries in response]

    def _process_entry(self, stream: str, entry_id: str, fields: Optional[Mapping[Any, Any]]) -> None:
        if fields is None:
            # Entrada pendiente que ya fue recortada por MAXLEN.
            logger.warning("[STREAM] Pending entry trimmed stream=%s id=%s", stream, entry_id)
            self._ack(stream, entry_id)
            return

        try:
            result = self._handler(fields)
        except Exception as e:
            logger.exception(
                "[STREAM] Handler error group=%s stream=%s id=%s", self._group, stream, entry_id
            )
            result = ItemResult.failed(f"handler_error:{type(e).__name__}")

        self._stats.record(result)

        if result.should_ack:
            self._ack(stream, entry_id)
            self._attempts.pop((stream, entry_id), None)
            return

        key = (stream, entry_id)
        attempts = self._attempts.get(key, 0) + 1
        if attempts >= self._max_attempts:
            logger.error(
                "[STREAM] Dropping entry after %d attempts group=%s stream=%s id=%s reason=%s",
                attempts, self._group, stream, entry_id, result.reason,
            )
            self._ack(stream, entry_id)
            self._attempts.pop(key, None)
            self._stats.record_dropped()
            return

        self._attempts[key] = attempts
        self._read_pending = True
        self._retry_requested = True
        logger.warning(
            "[STREAM] Entry left pending group=%s stream=%s id=%s attempt=%d reason=%s",
            self._group, stream, entry_id, attempts, result.reason,
        )

    def _ack(self, stream: str, entry_id: str) -> None:
        self._client.xack(stream, self._group, entry_id)

    def run(self, stop_event: threading.Event) -> None:
        """Bucle bloqueante hasta que ``stop_event`` se activa."""
        logger.info(
            "[STREAM] Consumer running group=%s name=%s streams=%s",
            self._group, self._name, ",".join(self._streams),
        )
        while not stop_event.is_set():
            try:
                self.poll_once()
                if self._retry_requested:
                    stop_event.wait(RETRY_BACKOFF_SECONDS)
            except redis.RedisError as e:
                logger.warning("[STREAM] Read error group=%s name=%s err=%s", self._group, self._name, e)
                stop_event.wait(ERROR_BACKOFF_SECONDS)
            except Exception:
                logger.exception("[STREAM] Consumer loop error group=%s name=%s", self._group, self._name)
                stop_event.wait(ERROR_BACKOFF_SECONDS)
        logger.info("[STREAM] Consumer stopped name=%s %s", self._name, self._stats)


class ConsumerWorkerPool:
    """N threads de un mismo consumer group, cada uno con sus particiones.

    La partición p se asigna al worker ``i = posición(p) % workers``. Con
    eso nunca hay dos workers leyendo la misma sesión.
    """

    def __init__(
        self,
        client: redis.Redis,
        group: str,
        streams: Sequence[str],
        handler: EntryHandler,
        workers: int = 1,
        block_ms: int = DEFAULT_BLOCK_MS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        name_prefix: Optional[str] = None,
    ):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._group = group
        self._stats = ConsumerStats()
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

        workers = min(workers, len(streams))
        prefix = name_prefix or f"{group}-{socket.gethostname()}"
        self._consumers = [
            StreamGroupConsumer(
                client,
                group,
                [s for idx, s in enumerate(streams) if idx % workers == i],
                handler,
                consumer_name=f"{prefix}-{i}",
                block_ms=block_ms,
                batch_size=batch_size,
                max_attempts=max_attempts,
                stats=self._stats,
            )
            for i in range(workers)
        ]

    @property
    def consumers(self) -> List[StreamGroupConsumer]:
        return list(self._consumers)

    @property
    def stats(self) -> ConsumerStats:
        return self._stats

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        for consumer in self._consumers:
            consumer.ensure_groups()
        for consumer in self._consumers:
            t = threading.Thread(
                target=consumer.run,
                args=(self._stop_event,),
                daemon=True,
                name=consumer.name,
            )
            t.start()
            self._threads.append(t)
        logger.info("[STREAM] Started group=%s workers=%d", self._group, len(self._threads))

    def stop(self, timeout: float = 10.0) -> None:
        self._stop_event.set()
        for t in self._threads:
            t.join(timeout=timeout)
        self._threads.clear()
        logger.info("[STREAM] Stopped group=%s %s", self._group, self._stats)
