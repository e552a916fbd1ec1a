"""Construcción y fusión de ``SessionAnalytics``.

Las sesiones abarcan muchos ciclos de flush, así que cada flush se fusiona
con lo ya guardado en lugar de reemplazarlo:

- contadores: se suman
- ``files_modified``: unión
- ``lines_per_file`` / ``events_by_source``: suma por clave
- ``session_start``: fijo desde la primera escritura
- ``session_end``: solo avanza
- duración, tasas, gap medio y archivo más editado: se recalculan a partir
  de los valores fusionados (las tasas no son sumables)
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional

from .aggregate import SessionAggregate, duration_and_rates, most_edited
from .models import SessionAnalytics


def _sum_counts(a: Mapping[str, int], b: Mapping[str, int]) -> Dict[str, int]:
    merged = dict(a)
    for key, count in b.items():
        merged[key] = merged.get(key, 0) + count
    return merged


def build_analytics(aggregate: SessionAggregate, now_ms: int) -> SessionAnalytics:
    metrics = aggregate.calculate_metrics()
    return SessionAnalytics(
        session_id=aggregate.session_id,
        session_start=aggregate.first_event_time,
        session_end=aggregate.last_event_time,
        last_updated=now_ms,
        duration_seconds=metrics.duration_seconds,
        total_events=aggregate.total_events,
        total_lines=aggregate.total_lines,
        files_modified=set(aggregate.files_modified),
        unique_files_count=len(aggregate.files_modified),
        lines_per_minute=metrics.lines_per_minute,
        events_per_minute=metrics.events_per_minute,
        average_inter_event_gap_ms=metrics.average_inter_event_gap_ms,
        lines_per_file=dict(aggregate.lines_per_file),
        most_edited_file=metrics.most_edited_file,
        most_edited_file_lines=metrics.most_edited_file_lines,
        events_by_source=dict(aggregate.events_by_source),
        first_observed_time=aggregate.first_observed_time,
        last_observed_time=aggregate.last_observed_time,
    )


def _later(a: Optional[int], b: Optional[int]) -> Optional[int]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def _merged_gap(existing: SessionAnalytics, new: SessionAnalytics, total_events: int) -> Optional[float]:
    # La suma de diferencias consecutivas es telescópica: último - primero.
    first = existing.first_observed_time if existing.first_observed_time is not None else new.first_observed_time
    last = new.last_observed_time if new.last_observed_time is not None else existing.last_observed_time
    if first is None or last is None:
        return existing.average_inter_event_gap_ms
    if total_events < 2:
        return None
    return (last - first) / (total_events - 1)


def merge_analytics(existing: SessionAnalytics, new: SessionAnalytics, now_ms: int) -> SessionAnalytics:
    """Fusiona un flush parcial (``new``) sobre el registro guardado."""
    session_start = existing.session_start if existing.session_start is not None else new.session_start
    session_end = _later(existing.session_end, new.session_end)

    total_events = existing.total_events + new.total_events
    total_lines = existing.total_lines + new.total_lines
    files = set(existing.files_modified) | set(new.files_modified)
    lines_per_file = _sum_counts(existing.lines_per_file, new.lines_per_file)
    events_by_source = _sum_counts(existing.events_by_source, new.events_by_source)

    duration, lpm, epm = duration_and_rates(session_start, session_end, total_lines, total_events)
    top_file, top_lines = most_edited(lines_per_file)

    return SessionAnalytics(
        session_id=existing.session_id,
        session_start=session_start,
        session_end=session_end,
        last_updated=now_ms,
        duration_seconds=duration,
        total_events=total_events,
        total_lines=total_lines,
        files_modified=files,
        unique_files_count=len(files),
        lines_per_minute=lpm,
        events_per_minute=epm,
        average_inter_event_gap_ms=_merged_gap(existing, new, total_events),
        lines_per_file=lines_per_file,
        most_edited_file=top_file,
        most_edited_file_lines=top_lines,
        events_by_source=events_by_source,
        first_observed_time=(
            existing.first_observed_time
            if existing.first_observed_time is not None
            else new.first_observed_time
        ),
        last_observed_time=(
            new.last_observed_time
            if new.last_observed_time is not None
            else existing.last_observed_time
        ),
    )
