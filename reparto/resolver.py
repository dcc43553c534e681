# reparto/resolver.py
"""
Fase 2: agrupaciones y separaciones.

1) Cada cohorte de agrupación se reúne en una sola clase (la de un miembro
   fijo si existe; si no, la que ya tiene más miembros).
2) Cada código de separación se reparte para que no haya dos portadores en
   la misma clase. Si el segundo portador pertenece a una cohorte, sale el
   primero o la cohorte entera. Solo un portador fijo, o la falta de
   destino, deja el conflicto aceptado e informado.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Collection, Dict, List, Optional, Tuple

from .config import EngineConfig
from .errors import UnresolvedSeparation
from .events import EventLog
from .mobility import can_host
from .model import ClassName, Roster, StudentIdx

logger = logging.getLogger(__name__)


@dataclass
class ResolveResult:
    grouping_moves: int = 0
    separation_moves: int = 0
    unresolved: List[UnresolvedSeparation] = field(default_factory=list)


def grouping_target(roster: Roster, idxs: List[StudentIdx], universal: Collection[str]) -> ClassName:
    """Clase destino de una cohorte."""
    members = [roster.students[i] for i in idxs]
    for m in members:
        if m.is_locked:
            return m.assigned
    counts = roster.class_counts()
    order = {name: k for k, name in enumerate(roster.class_names)}
    eligible = [
        c.name for c in roster.classes if all(c.accepts(m, universal) for m in members)
    ]
    present = Counter(m.assigned for m in members if m.assigned in eligible)
    if present:
        # mayoría; empate -> la menos poblada
        return min(present, key=lambda c: (-present[c], counts[c], order[c]))
    pool = eligible or roster.class_names
    return min(pool, key=lambda c: (counts[c], order[c]))


def _resolve_groupings(roster: Roster, universal, result: ResolveResult, events: Optional[EventLog]) -> None:
    for code, idxs in roster.cohorts().items():
        target = grouping_target(roster, idxs, universal)
        locked_elsewhere = [
            roster.students[i].student_id
            for i in idxs
            if roster.students[i].is_locked and roster.students[i].assigned != target
        ]
        if locked_elsewhere:
            logger.warning("Cohorte %s con miembros fijos en clases distintas: %s", code, locked_elsewhere)
            if events is not None:
                events.emit("resolve", "conflict", target=target,
                            detail=f"cohorte {code} dividida por miembros fijos")
        for i in idxs:
            s = roster.students[i]
            if s.assigned == target or s.is_locked:
                continue
            source = s.assigned
            roster.move(i, target)
            result.grouping_moves += 1
            if events is not None:
                events.emit("resolve", "group", student_id=s.student_id,
                            source=source, target=target, detail=code)


def relocation_target(
    roster: Roster,
    idx: StudentIdx,
    code: str,
    universal: Collection[str],
) -> Optional[ClassName]:
    """La clase menos cargada que acepta al alumno, tiene sitio y no aloja el código."""
    s = roster.students[idx]
    counts = roster.class_counts()
    holding = {
        other.assigned
        for j, other in enumerate(roster.students)
        if j != idx and other.separation_code == code and other.assigned is not None
    }
    candidates = [
        c.name for c in roster.classes
        if c.name != s.assigned
        and c.name not in holding
        and counts[c.name] < c.limit
        and can_host(roster, s, c.name, universal)
    ]
    if not candidates:
        return None
    order = {name: k for k, name in enumerate(roster.class_names)}
    return min(candidates, key=lambda c: (counts[c], order[c]))


def cohort_relocation_target(
    roster: Roster,
    idxs: List[StudentIdx],
    universal: Collection[str],
) -> Optional[ClassName]:
    """Clase que recibe a la cohorte entera sin juntarla con portadores de sus códigos."""
    members = [roster.students[i] for i in idxs]
    if any(m.is_locked for m in members):
        return None
    inside = set(idxs)
    codes = {m.separation_code for m in members if m.separation_code}
    holding = {
        other.assigned
        for j, other in enumerate(roster.students)
        if j not in inside and other.separation_code in codes and other.assigned is not None
    }
    current = {m.assigned for m in members}
    counts = roster.class_counts()
    candidates = [
        c.name for c in roster.classes
        if c.name not in current
        and c.name not in holding
        and counts[c.name] + len(idxs) <= c.limit
        and all(can_host(roster, m, c.name, universal) for m in members)
    ]
    if not candidates:
        return None
    order = {name: k for k, name in enumerate(roster.class_names)}
    return min(candidates, key=lambda c: (counts[c], order[c]))


def _separate(
    roster: Roster,
    keep: StudentIdx,
    other: StudentIdx,
    code: str,
    cohorts: Dict[str, List[StudentIdx]],
    cohort_of: Dict[StudentIdx, str],
    universal: Collection[str],
) -> Tuple[List[StudentIdx], Optional[ClassName], str]:
    """
    Elige quién sale de la clase para separar a `keep` y `other`.

    Sale `other` si está libre; si no, `keep`; si no, la cohorte de `other`
    entera (o la de `keep`). Un `other` fijo nunca se resuelve: ambos se
    quedan y el conflicto se acepta.
    Devuelve (alumnos a mover, destino, motivo si no hay destino).
    """
    if roster.students[other].is_locked:
        return [], None, "alumno fijo"
    tries = []
    for i in (other, keep):
        if not roster.students[i].is_locked and i not in cohort_of:
            tries.append([i])
    if cohort_of.get(other) != cohort_of.get(keep):
        for i in (other, keep):
            if i in cohort_of:
                tries.append(list(cohorts[cohort_of[i]]))
    for moving in tries:
        if len(moving) == 1:
            target = relocation_target(roster, moving[0], code, universal)
        else:
            target = cohort_relocation_target(roster, moving, universal)
        if target is not None:
            return moving, target, ""
    return [], None, "alumno agrupado" if other in cohort_of else "sin clase destino"


def _resolve_separations(roster: Roster, universal, result: ResolveResult, events: Optional[EventLog]) -> None:
    cohorts = roster.cohorts()
    cohort_of = {i: code for code, idxs in cohorts.items() for i in idxs}
    codes = sorted(roster.separations().items(), key=lambda kv: -len(kv[1]))
    for code, idxs in codes:
        for class_name in roster.class_names:
            carriers = [i for i in idxs if roster.students[i].assigned == class_name]
            if len(carriers) < 2:
                continue
            keep = carriers[0]
            for i in carriers[1:]:
                if roster.students[i].assigned != class_name:
                    continue  # salió con su cohorte
                if roster.students[keep].assigned != class_name:
                    keep = i
                    continue
                moving, target, reason = _separate(roster, keep, i, code, cohorts, cohort_of, universal)
                if target is None:
                    s = roster.students[i]
                    conflict = UnresolvedSeparation(
                        code=code,
                        class_name=class_name,
                        student_ids=(roster.students[keep].student_id, s.student_id),
                        reason=reason,
                    )
                    result.unresolved.append(conflict)
                    if events is not None:
                        events.emit("resolve", "conflict", student_id=s.student_id,
                                    source=class_name, detail=f"separación {code}: {reason}")
                    continue
                for j in moving:
                    source = roster.students[j].assigned
                    roster.move(j, target)
                    result.separation_moves += 1
                    if events is not None:
                        events.emit("resolve", "separate", student_id=roster.students[j].student_id,
                                    source=source, target=target, detail=code)
                if keep in moving:
                    keep = i


def resolve_constraints(roster: Roster, cfg: EngineConfig, events: Optional[EventLog] = None) -> ResolveResult:
    universal = roster.universal_languages(cfg.languages)
    result = ResolveResult()
    _resolve_groupings(roster, universal, result, events)
    _resolve_separations(roster, universal, result, events)
    logger.info(
        "Fase 2: %d movimientos por agrupación, %d por separación, %d conflictos",
        result.grouping_moves, result.separation_moves, len(result.unresolved),
    )
    return result
