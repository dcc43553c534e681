# reparto/events.py
"""Eventos estructurados de cada fase (movimientos, conflictos, avisos)."""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlacementEvent:
    phase: str                  # "dispatch", "resolve", "balance", "optimize"
    kind: str                   # "place", "move", "swap", "conflict", "warning"...
    student_id: Optional[str] = None
    source: Optional[str] = None
    target: Optional[str] = None
    detail: str = ""


EventSink = Callable[[PlacementEvent], None]


class EventLog:
    """Guarda el historial en memoria y lo reenvía al sink opcional del llamador."""

    def __init__(self, sink: Optional[EventSink] = None):
        self.sink = sink
        self.events: List[PlacementEvent] = []

    def emit(self, phase: str, kind: str, **fields) -> PlacementEvent:
        event = PlacementEvent(phase=phase, kind=kind, **fields)
        self.events.append(event)
        if kind in ("conflict", "warning"):
            logger.warning("[%s] %s %s", phase, kind, event.detail or event.student_id)
        else:
            logger.debug(
                "[%s] %s %s %s -> %s",
                phase, kind, event.student_id, event.source, event.target,
            )
        if self.sink is not None:
            self.sink(event)
        return event

    def count(self, phase: Optional[str] = None, kind: Optional[str] = None) -> int:
        return sum(
            1
            for e in self.events
            if (phase is None or e.phase == phase) and (kind is None or e.kind == kind)
        )
