"""Servicio de analytics: consumo del log + working set + flush periódico."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional

from common.events import CodeEvent
from common.stream import ConsumerWorkerPool, ItemResult

from .flush import DEFAULT_FLUSH_INTERVAL_SECONDS, FlushScheduler, SessionFlusher
from .metrics import ANALYTICS_ACTIVE_SESSIONS, ANALYTICS_EVENTS
from .models import FlushCycleResult
from .repository import SessionAnalyticsRepository
from .working_set import SessionWorkingSet

logger = logging.getLogger(__name__)


class AnalyticsService:
    """Une las piezas del agregador.

    - ``handle_entry`` es el handler del consumer group (una entrada del stream)
    - ``consume_event`` aplica un evento ya decodificado
    - el ``FlushScheduler`` vacía el working set cada ``flush_interval`` segundos
    """

    def __init__(
        self,
        repository: SessionAnalyticsRepository,
        working_set: Optional[SessionWorkingSet] = None,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.repository = repository
        self.working_set = working_set or SessionWorkingSet()
        self.flusher = SessionFlusher(self.working_set, repository, clock=clock)
        self.scheduler = FlushScheduler(self.flusher, interval=flush_interval)
        self._consumer_pool: Optional[ConsumerWorkerPool] = None

    def attach_consumer(self, pool: ConsumerWorkerPool) -> None:
        self._consumer_pool = pool

    @property
    def consumer_pool(self) -> Optional[ConsumerWorkerPool]:
        return self._consumer_pool

    def handle_entry(self, fields: Mapping[Any, Any]) -> ItemResult:
        try:
            event = CodeEvent.from_stream_fields(fields)
        except ValueError as e:
            logger.warning("[ANALYTICS] Malformed stream entry err=%s", e)
            ANALYTICS_EVENTS.labels(status="skipped").inc()
            return ItemResult.skipped("malformed_event")
        return self.consume_event(event)

    def consume_event(self, event: CodeEvent) -> ItemResult:
        """Aplica un evento al working set. Nunca propaga errores del fold."""
        try:
            result = self.working_set.fold(event)
        except Exception as e:
            logger.error(
                "[ANALYTICS] Error processing event session=%s err=%s",
                event.session_id, e, exc_info=True,
            )
            result = ItemResult.skipped(f"fold_error:{type(e).__name__}")

        ANALYTICS_EVENTS.labels(status=result.status.value).inc()
        ANALYTICS_ACTIVE_SESSIONS.set(len(self.working_set))
        return result

    def flush(self, trigger: str = "manual") -> FlushCycleResult:
        return self.flusher.flush(trigger=trigger)

    def start(self) -> None:
        self.scheduler.start()
        if self._consumer_pool is not None:
            self._consumer_pool.start()
        logger.info(
            "[ANALYTICS] Service started consumer=%s flush_interval=%.1fs",
            self._consumer_pool is not None, self.scheduler.interval,
        )

    def stop(self) -> None:
        # Primero dejar de consumir; luego el último flush recoge lo que quede.
        if self._consumer_pool is not None:
            self._consumer_pool.stop()
        self.scheduler.stop(flush_remaining=True)
        logger.info("[ANALYTICS] Service stopped")

    def get_state(self) -> Dict[str, dict]:
        return self.working_set.peek()

    def get_stats(self) -> dict:
        pool = self._consumer_pool
        return {
            "active_sessions": len(self.working_set),
            "consumer": {
                "running": pool.running if pool else False,
                "workers": len(pool.consumers) if pool else 0,
                "stats": pool.stats.to_dict() if pool else None,
            },
            "flush": {
                "interval_seconds": self.scheduler.interval,
                "running": self.scheduler.running,
                **self.flusher.get_stats(),
            },
        }
