"""Modelos del agregado persistido y del ciclo de flush."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set


@dataclass
class SessionAnalytics:
    """Estadísticas fusionadas de una sesión (tabla ``session_analytics``).

    Tiempos en epoch ms. ``first_observed_time``/``last_observed_time`` son
    el primer y último timestamp en orden de llegada; con ellos el gap
    medio se puede recalcular al fusionar sin guardar la secuencia.
    """

    session_id: str
    session_start: Optional[int] = None
    session_end: Optional[int] = None
    last_updated: Optional[int] = None
    duration_seconds: Optional[int] = None

    total_events: int = 0
    total_lines: int = 0

    files_modified: Set[str] = field(default_factory=set)
    unique_files_count: int = 0

    lines_per_minute: Optional[float] = None
    events_per_minute: Optional[float] = None
    average_inter_event_gap_ms: Optional[float] = None

    lines_per_file: Dict[str, int] = field(default_factory=dict)
    most_edited_file: Optional[str] = None
    most_edited_file_lines: Optional[int] = None

    events_by_source: Dict[str, int] = field(default_factory=dict)

    first_observed_time: Optional[int] = None
    last_observed_time: Optional[int] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["files_modified"] = sorted(self.files_modified)
        return data


class MergeOutcome(str, Enum):
    INSERTED = "inserted"
    MERGED = "merged"


@dataclass
class FlushCycleResult:
    """Resultado de un ciclo de flush (snapshot + merge-upsert por sesión)."""

    started_at: float
    finished_at: Optional[float] = None
    captured: int = 0
    inserted: int = 0
    merged: int = 0
    failed: int = 0
    failed_sessions: List[str] = field(default_factory=list)

    @property
    def saved(self) -> int:
        return self.inserted + self.merged

    @property
    def duration_ms(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return round((self.finished_at - self.started_at) * 1000, 2)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_ms": self.duration_ms,
            "captured": self.captured,
            "saved": self.saved,
            "inserted": self.inserted,
            "merged": self.merged,
            "failed": self.failed,
            "failed_sessions": list(self.failed_sessions),
        }
