# reparto/mobility.py
"""
Clasificador de movilidad.

Para cada alumno (o cohorte de agrupación) calcula el dominio de clases que
puede ocupar según su idioma, su opción y las separaciones vigentes, y le
asigna una etiqueta: FIXED (1 clase), SWAPPABLE_PAIR (2), FREE (3+) o
INFEASIBLE (ninguna). Las fases siguientes consultan este dominio antes de
mover a nadie.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Collection, Dict, Iterable, List, Optional, Set

from .config import EngineConfig
from .errors import InfeasibleStudent
from .events import EventLog
from .model import ClassName, Mobility, Roster, Student, StudentIdx

logger = logging.getLogger(__name__)


@dataclass
class MobilityResult:
    counts: Dict[str, int] = field(default_factory=dict)
    infeasible: List[InfeasibleStudent] = field(default_factory=list)


def label_for(domain_size: int) -> Mobility:
    if domain_size <= 0:
        return Mobility.INFEASIBLE
    if domain_size == 1:
        return Mobility.FIXED
    if domain_size == 2:
        return Mobility.SWAPPABLE_PAIR
    return Mobility.FREE


def attribute_domain(roster: Roster, student: Student, universal: Collection[str]) -> List[ClassName]:
    return [c.name for c in roster.classes if c.accepts(student, universal)]


def can_host(roster: Roster, student: Student, class_name: ClassName, universal: Collection[str]) -> bool:
    """La clase acepta los atributos del alumno y respeta su dominio si es fijo o de par."""
    if not roster.slot(class_name).accepts(student, universal):
        return False
    if student.mobility in (Mobility.FIXED, Mobility.SWAPPABLE_PAIR) and student.domain:
        return class_name in student.domain
    return True


def separation_safe(
    roster: Roster,
    idx: StudentIdx,
    class_name: ClassName,
    ignore: Iterable[StudentIdx] = (),
) -> bool:
    """Ningún otro portador del código de separación del alumno está en la clase."""
    code = roster.students[idx].separation_code
    if not code:
        return True
    skip = set(ignore)
    skip.add(idx)
    for j, other in enumerate(roster.students):
        if j in skip:
            continue
        if other.separation_code == code and other.assigned == class_name:
            return False
    return True


def _blocked_classes(
    roster: Roster,
    codes: Set[str],
    members: Set[StudentIdx],
) -> Set[ClassName]:
    """Clases que ya alojan a un no-miembro con alguno de los códigos dados."""
    blocked: Set[ClassName] = set()
    if not codes:
        return blocked
    for j, other in enumerate(roster.students):
        if j in members or other.assigned is None:
            continue
        if other.separation_code in codes:
            blocked.add(other.assigned)
    # La clase actual no cuenta: ese conflicto se resuelve moviendo, no fijando
    blocked -= {roster.students[i].assigned for i in members}
    return blocked


def classify_mobility(
    roster: Roster,
    cfg: EngineConfig,
    events: Optional[EventLog] = None,
    phase: str = "classify",
) -> MobilityResult:
    universal = roster.universal_languages(cfg.languages)
    cohorts = roster.cohorts()
    in_cohort = {i for idxs in cohorts.values() for i in idxs}
    result = MobilityResult()

    def _label(idxs: List[StudentIdx], domain: List[ClassName]) -> None:
        label = label_for(len(domain))
        for i in idxs:
            s = roster.students[i]
            s.domain = tuple(domain)
            s.mobility = label
            if label == Mobility.INFEASIBLE:
                result.infeasible.append(
                    InfeasibleStudent(s.student_id, "sin clase compatible", s.assigned)
                )
                if events is not None:
                    events.emit(phase, "conflict", student_id=s.student_id,
                                source=s.assigned, detail="sin clase compatible")

    for i, s in enumerate(roster.students):
        if i in in_cohort:
            continue
        domain = attribute_domain(roster, s, universal)
        codes = {s.separation_code} if s.separation_code else set()
        blocked = _blocked_classes(roster, codes, {i})
        _label([i], [c for c in domain if c not in blocked])

    for code, idxs in cohorts.items():
        members = [roster.students[i] for i in idxs]
        domain = [
            c.name for c in roster.classes
            if all(c.accepts(m, universal) for m in members)
        ]
        codes = {m.separation_code for m in members if m.separation_code}
        blocked = _blocked_classes(roster, codes, set(idxs))
        _label(list(idxs), [c for c in domain if c not in blocked])

    counts = Counter(s.mobility.value for s in roster.students)
    result.counts = {m.value: counts.get(m.value, 0) for m in Mobility}
    logger.info("Movilidad: %s", result.counts)
    return result
