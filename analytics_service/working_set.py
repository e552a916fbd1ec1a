"""Working set concurrente de agregados por sesión.

Disciplina de locks:
- ``_lock`` (del mapa) solo protege lookup/alta y el swap del mapa; nunca
  se mantiene mientras se aplica un evento.
- Cada entrada tiene su propio lock: los folds de una misma sesión se
  serializan y los de sesiones distintas no se bloquean entre sí.
- ``snapshot_and_clear`` cambia el mapa por uno vacío y luego sella cada
  entrada capturada tomando su lock. Un fold que ya tenía la entrada
  antes del swap o termina antes del sellado (queda en el snapshot) o ve
  la entrada sellada y reintenta contra el mapa nuevo (siguiente ciclo).
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List

from common.events import CodeEvent
from common.stream.results import ItemResult

from .aggregate import SessionAggregate

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("aggregate", "lock", "sealed")

    def __init__(self, session_id: str):
        self.aggregate = SessionAggregate(session_id=session_id)
        self.lock = threading.Lock()
        self.sealed = False


class SessionWorkingSet:
    """Un ``SessionAggregate`` vivo por sesión activa.

    Uso:
        working_set = SessionWorkingSet()
        working_set.fold(event)                  # workers de consumo
        captured = working_set.snapshot_and_clear()  # worker de flush
        working_set.peek()                       # observabilidad
    """

    def __init__(self):
        self._sessions: Dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def fold(self, event: CodeEvent) -> ItemResult:
        session_id = event.session_id
        if not (session_id or "").strip():
            logger.warning(
                "[ANALYTICS] Rejected event without session id file=%s ts=%s",
                event.file_name, event.client_timestamp_ms,
            )
            return ItemResult.skipped("empty_session_id")

        while True:
            with self._lock:
                entry = self._sessions.get(session_id)
                if entry is None:
                    entry = _Entry(session_id)
                    self._sessions[session_id] = entry

            with entry.lock:
                if entry.sealed:
                    # Capturada por un snapshot mientras esperábamos: va al ciclo siguiente.
                    continue
                entry.aggregate.add_event(event)
                total = entry.aggregate.total_events

            logger.debug("[ANALYTICS] Folded session=%s total_events=%d", session_id, total)
            return ItemResult.ok()

    def snapshot_and_clear(self) -> List[SessionAggregate]:
        with self._lock:
            captured = self._sessions
            self._sessions = {}

        aggregates = []
        for entry in captured.values():
            # Espera a que termine un fold en curso sobre esta entrada.
            with entry.lock:
                entry.sealed = True
            aggregates.append(entry.aggregate)

        if aggregates:
            logger.info("[ANALYTICS] Snapshot taken sessions=%d", len(aggregates))
        return aggregates

    def peek(self) -> Dict[str, dict]:
        """Vista de solo lectura del estado actual (no participa en el snapshot)."""
        with self._lock:
            entries = list(self._sessions.values())

        state = {}
        for entry in entries:
            with entry.lock:
                if entry.sealed:
                    continue
                state[entry.aggregate.session_id] = entry.aggregate.to_dict()
        return state

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
