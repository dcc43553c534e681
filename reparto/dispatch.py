# reparto/dispatch.py
"""
Fase 1: reparto por cuotas.

Recorre las clases en el orden de configuración y, para cada atributo con
cuota, coloca a los alumnos sin clase que lo portan (en orden del roster).
Los idiomas universales no guían esta fase. Los alumnos sin idioma ni
opción quedan libres para la fase 3.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .config import EngineConfig
from .events import EventLog
from .mobility import MobilityResult, classify_mobility
from .model import Roster

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    placed: int = 0
    per_attribute: Dict[str, int] = field(default_factory=dict)
    truncated: List[Tuple[str, str]] = field(default_factory=list)  # (clase, atributo)
    mobility: Optional[MobilityResult] = None


def dispatch(roster: Roster, cfg: EngineConfig, events: Optional[EventLog] = None) -> DispatchResult:
    universal = roster.universal_languages(cfg.languages)
    counts = roster.class_counts()
    carried: Counter = Counter()
    for s in roster.students:
        if s.assigned is not None:
            for attr in s.attributes:
                carried[(s.assigned, attr)] += 1

    result = DispatchResult()
    placed_by_attr: Counter = Counter()

    for slot in roster.classes:
        limit = min(slot.target_size, slot.limit)
        for attr, quota in slot.quotas.items():
            if quota <= 0 or attr in universal:
                continue
            for idx in roster.unplaced():
                if carried[(slot.name, attr)] >= quota:
                    break
                s = roster.students[idx]
                if attr not in s.attributes:
                    continue
                if counts[slot.name] >= limit:
                    result.truncated.append((slot.name, attr))
                    logger.warning(
                        "Clase %s llena (%d) con cuota %s incompleta (%d/%d)",
                        slot.name, counts[slot.name], attr, carried[(slot.name, attr)], quota,
                    )
                    if events is not None:
                        events.emit("dispatch", "warning", target=slot.name,
                                    detail=f"cuota {attr} incompleta en {slot.name}")
                    break
                # El otro atributo también debe tener sitio en esta clase
                if not slot.accepts(s, universal):
                    continue
                if any(
                    carried[(slot.name, a)] >= slot.quota(a)
                    for a in s.attributes
                    if a not in universal
                ):
                    continue
                roster.move(idx, slot.name)
                counts[slot.name] += 1
                for a in s.attributes:
                    carried[(slot.name, a)] += 1
                placed_by_attr[attr] += 1
                result.placed += 1
                if events is not None:
                    events.emit("dispatch", "place", student_id=s.student_id,
                                target=slot.name, detail=attr)

    result.per_attribute = dict(placed_by_attr)
    logger.info("Fase 1: %d alumnos colocados por cuota", result.placed)
    result.mobility = classify_mobility(roster, cfg, events)
    return result
