"""Agregado en memoria por sesión y derivación de métricas."""

from __future__ import annotations

from dataclasses import dataclass, field
from statistics import mean
from typing import Dict, List, Mapping, Optional, Set, Tuple

from common.events import CodeEvent


@dataclass(frozen=True)
class SessionMetrics:
    """Métricas derivadas de un agregado (o de un registro ya fusionado)."""

    duration_seconds: Optional[int]
    lines_per_minute: Optional[float]
    events_per_minute: Optional[float]
    average_inter_event_gap_ms: Optional[float]
    most_edited_file: Optional[str]
    most_edited_file_lines: Optional[int]


def duration_and_rates(
    start_ms: Optional[int],
    end_ms: Optional[int],
    total_lines: int,
    total_events: int,
) -> Tuple[Optional[int], Optional[float], Optional[float]]:
    """Duración en segundos (mínimo 1) y tasas por minuto.

    La duración se mide en segundos de época completos. Las tasas solo
    existen si la duración real es > 0: una sesión de un único segundo
    tiene ``duration_seconds == 1`` pero no tiene tasas.
    """
    if start_ms is None or end_ms is None:
        return None, None, None

    raw_seconds = end_ms // 1000 - start_ms // 1000
    duration = max(1, raw_seconds)

    if raw_seconds <= 0:
        return duration, None, None
    # x / (s / 60) escrito como x * 60 / s para no perder precisión.
    return duration, total_lines * 60.0 / raw_seconds, total_events * 60.0 / raw_seconds


def most_edited(lines_per_file: Mapping[str, int]) -> Tuple[Optional[str], Optional[int]]:
    """Archivo con más líneas; empate → nombre lexicográficamente menor."""
    if not lines_per_file:
        return None, None
    name, count = min(lines_per_file.items(), key=lambda kv: (-kv[1], kv[0]))
    return name, count


@dataclass
class SessionAggregate:
    """Estadísticas acumuladas de una sesión entre dos flushes."""

    session_id: str
    first_event_time: Optional[int] = None  # epoch ms
    last_event_time: Optional[int] = None  # epoch ms

    total_events: int = 0
    total_lines: int = 0

    files_modified: Set[str] = field(default_factory=set)
    lines_per_file: Dict[str, int] = field(default_factory=dict)
    events_by_source: Dict[str, int] = field(default_factory=dict)

    # Orden de llegada, solo para el gap medio entre eventos. Sin límite.
    event_timestamps: List[int] = field(default_factory=list)

    def add_event(self, event: CodeEvent) -> None:
        ts = event.client_timestamp_ms

        self.total_events += 1
        if self.first_event_time is None or ts < self.first_event_time:
            self.first_event_time = ts
        if self.last_event_time is None or ts > self.last_event_time:
            self.last_event_time = ts
        self.event_timestamps.append(ts)

        if event.file_name:
            self.files_modified.add(event.file_name)
            self.lines_per_file[event.file_name] = self.lines_per_file.get(event.file_name, 0) + 1
            self.total_lines += 1

        if event.source:
            self.events_by_source[event.source] = self.events_by_source.get(event.source, 0) + 1

    @property
    def first_observed_time(self) -> Optional[int]:
        return self.event_timestamps[0] if self.event_timestamps else None

    @property
    def last_observed_time(self) -> Optional[int]:
        return self.event_timestamps[-1] if self.event_timestamps else None

    def average_inter_event_gap_ms(self) -> Optional[float]:
        ts = self.event_timestamps
        if len(ts) < 2:
            return None
        return float(mean(b - a for a, b in zip(ts, ts[1:])))

    def calculate_metrics(self) -> SessionMetrics:
        duration, lpm, epm = duration_and_rates(
            self.first_event_time, self.last_event_time, self.total_lines, self.total_events
        )
        top_file, top_lines = most_edited(self.lines_per_file)
        return SessionMetrics(
            duration_seconds=duration,
            lines_per_minute=lpm,
            events_per_minute=epm,
            average_inter_event_gap_ms=self.average_inter_event_gap_ms(),
            most_edited_file=top_file,
            most_edited_file_lines=top_lines,
        )

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "first_event_time": self.first_event_time,
            "last_event_time": self.last_event_time,
            "total_events": self.total_events,
            "total_lines": self.total_lines,
            "files_modified": sorted(self.files_modified),
            "lines_per_file": dict(self.lines_per_file),
            "events_by_source": dict(self.events_by_source),
            "buffered_timestamps": len(self.event_timestamps),
        }
