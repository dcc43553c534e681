# reparto/balancer.py
"""
Fase 3: capacidad y paridad.

(a) Reequilibrado: se pasan alumnos movibles de las clases por encima de su
    efectivo objetivo a las que están por debajo.
(b) Completado: cada alumno sin clase va a la clase que mejor acerca su
    media académica y su paridad a las globales; primero los perfiles
    extremos, mientras quedan más opciones. Si ninguna clase segura tiene
    sitio, se hace hueco desplazando a un alumno movible antes de forzar.
(c) Paridad: intercambios chica/chico entre clases con desequilibrios
    opuestos hasta quedar dentro de la tolerancia.
"""
import logging
from dataclasses import dataclass, field
from typing import Collection, Dict, List, Optional, Tuple

import numpy as np

from .config import CRITERIA, EngineConfig
from .errors import InfeasibleStudent, UnresolvedSeparation
from .events import EventLog
from .mobility import can_host, separation_safe
from .model import ClassName, ClassSlot, Roster, StudentIdx

logger = logging.getLogger(__name__)

PROFILE_MIDPOINT = 2.5


@dataclass
class BalanceResult:
    rebalanced: int = 0
    completed: int = 0
    forced: List[InfeasibleStudent] = field(default_factory=list)
    unresolved: List[UnresolvedSeparation] = field(default_factory=list)
    parity_swaps: int = 0
    parity_gaps: Dict[str, int] = field(default_factory=dict)


def _movable(roster: Roster, idx: StudentIdx, grouped) -> bool:
    s = roster.students[idx]
    return not s.is_locked and idx not in grouped


def gender_gaps(roster: Roster) -> Dict[ClassName, int]:
    """F - M por clase."""
    gaps = {name: 0 for name in roster.class_names}
    for s in roster.students:
        if s.assigned in gaps:
            if s.gender == "F":
                gaps[s.assigned] += 1
            elif s.gender == "M":
                gaps[s.assigned] -= 1
    return gaps


def rebalance(roster: Roster, universal: Collection[str], events: Optional[EventLog] = None) -> int:
    grouped = {i for idxs in roster.cohorts().values() for i in idxs}
    moves = 0
    while True:
        counts = roster.class_counts()
        excess = {c.name: counts[c.name] - c.target_size for c in roster.classes}
        over = sorted((n for n in excess if excess[n] > 0), key=lambda n: -excess[n])
        under = sorted((n for n in excess if excess[n] < 0), key=lambda n: excess[n])
        moved = None
        for src in over:
            for dst in under:
                for i in roster.members(src):
                    s = roster.students[i]
                    if not _movable(roster, i, grouped):
                        continue
                    if can_host(roster, s, dst, universal) and separation_safe(roster, i, dst):
                        moved = (i, src, dst)
                        break
                if moved:
                    break
            if moved:
                break
        if not moved:
            return moves
        i, src, dst = moved
        roster.move(i, dst)
        moves += 1
        if events is not None:
            events.emit("balance", "move", student_id=roster.students[i].student_id,
                        source=src, target=dst, detail="reequilibrado")


class _ClassTotals:
    """Sumas por clase de los criterios y del género, para puntuar inserciones."""

    def __init__(self, roster: Roster, cfg: EngineConfig):
        self.features = np.array([s.scores for s in roster.students], dtype=float)
        self.weights = np.array([cfg.criterion_weights.get(k, 0.0) for k in CRITERIA], dtype=float)
        if not self.weights.any():
            self.weights = np.ones(len(CRITERIA))
        self.global_mean = self.features.mean(axis=0)
        female = sum(1 for s in roster.students if s.gender == "F")
        gendered = sum(1 for s in roster.students if s.gender in ("F", "M"))
        self.global_female = female / gendered if gendered else 0.5
        self.sums = {n: np.zeros(len(CRITERIA)) for n in roster.class_names}
        self.size = {n: 0 for n in roster.class_names}
        self.female = {n: 0 for n in roster.class_names}
        self.gendered = {n: 0 for n in roster.class_names}
        for i, s in enumerate(roster.students):
            if s.assigned in self.sums:
                self.add(i, s.assigned, s.gender)

    def add(self, idx: StudentIdx, name: ClassName, gender: str, sign: int = 1) -> None:
        self.sums[name] = self.sums[name] + sign * self.features[idx]
        self.size[name] += sign
        if gender in ("F", "M"):
            self.gendered[name] += sign
            if gender == "F":
                self.female[name] += sign

    def remove(self, idx: StudentIdx, name: ClassName, gender: str) -> None:
        self.add(idx, name, gender, sign=-1)

    def insertion_deviation(self, idx: StudentIdx, name: ClassName) -> float:
        mean = (self.sums[name] + self.features[idx]) / (self.size[name] + 1)
        return float(np.sum(np.abs(mean - self.global_mean) * self.weights))

    def insertion_parity(self, name: ClassName, gender: str) -> float:
        gendered = self.gendered[name] + (1 if gender in ("F", "M") else 0)
        if not gendered:
            return 0.0
        female = self.female[name] + (1 if gender == "F" else 0)
        return abs(female / gendered - self.global_female)


def _has_room(totals: _ClassTotals, slot: ClassSlot) -> bool:
    return totals.size[slot.name] < slot.limit


def _shift(
    roster: Roster,
    totals: _ClassTotals,
    idx: StudentIdx,
    dst: ClassName,
    events: Optional[EventLog],
) -> None:
    s = roster.students[idx]
    src = s.assigned
    totals.remove(idx, src, s.gender)
    roster.move(idx, dst)
    totals.add(idx, dst, s.gender)
    if events is not None:
        events.emit("balance", "move", student_id=s.student_id, source=src, target=dst,
                     detail="hueco para un alumno sin clase")


def _room_elsewhere(
    roster: Roster,
    totals: _ClassTotals,
    idx: StudentIdx,
    universal: Collection[str],
    exclude: ClassName,
) -> Optional[ClassName]:
    """Primera clase con sitio que puede recibir al alumno ya colocado."""
    s = roster.students[idx]
    for c in roster.classes:
        if c.name == exclude or not _has_room(totals, c):
            continue
        if can_host(roster, s, c.name, universal) and separation_safe(roster, idx, c.name):
            return c.name
    return None


def _make_room(
    roster: Roster,
    totals: _ClassTotals,
    idx: StudentIdx,
    universal: Collection[str],
    grouped,
    events: Optional[EventLog],
) -> Optional[ClassName]:
    """
    Hace sitio a un alumno que no cabe en ninguna clase segura.

    1) Una clase segura pero llena cede un alumno movible a otra con sitio.
    2) Una clase con sitio bloqueada por un único portador movible de su
       código de separación envía a ese portador a otra clase con sitio.

    Devuelve la clase liberada, o None si no hay forma de evitar forzar.
    """
    s = roster.students[idx]
    hosts = [c for c in roster.classes if can_host(roster, s, c.name, universal)]
    for c in hosts:
        if _has_room(totals, c) or not separation_safe(roster, idx, c.name):
            continue
        for j in roster.members(c.name):
            if not _movable(roster, j, grouped):
                continue
            dst = _room_elsewhere(roster, totals, j, universal, exclude=c.name)
            if dst is not None:
                _shift(roster, totals, j, dst, events)
                return c.name
    if not s.separation_code:
        return None
    for c in hosts:
        if not _has_room(totals, c):
            continue
        blockers = [j for j in roster.members(c.name)
                    if roster.students[j].separation_code == s.separation_code]
        if len(blockers) != 1 or not _movable(roster, blockers[0], grouped):
            continue
        dst = _room_elsewhere(roster, totals, blockers[0], universal, exclude=c.name)
        if dst is not None:
            _shift(roster, totals, blockers[0], dst, events)
            return c.name
    return None


def complete(
    roster: Roster,
    cfg: EngineConfig,
    universal: Collection[str],
    events: Optional[EventLog] = None,
) -> Tuple[int, List[InfeasibleStudent], List[UnresolvedSeparation]]:
    """Coloca a los alumnos sin clase. Devuelve (colocados, forzados, separaciones forzadas)."""
    pool = roster.unplaced()
    if not pool:
        return 0, [], []
    totals = _ClassTotals(roster, cfg)
    order = {name: k for k, name in enumerate(roster.class_names)}
    grouped = {i for idxs in roster.cohorts().values() for i in idxs}
    # Perfiles extremos primero; sorted es estable
    pool.sort(key=lambda i: -abs(roster.students[i].profile - PROFILE_MIDPOINT))
    placed = 0
    forced: List[InfeasibleStudent] = []
    unresolved: List[UnresolvedSeparation] = []

    for i in pool:
        s = roster.students[i]
        hostable = [
            c for c in roster.classes
            if can_host(roster, s, c.name, universal) and separation_safe(roster, i, c.name)
        ]
        candidates = [c for c in hostable if totals.size[c.name] < c.target_size]
        if not candidates:
            candidates = [c for c in hostable if totals.size[c.name] < c.limit]
        if candidates:
            def _score(c):
                remaining = (c.target_size - totals.size[c.name]) / max(c.target_size, 1)
                return (
                    cfg.completion_capacity_weight * remaining
                    - cfg.completion_profile_weight * totals.insertion_deviation(i, c.name)
                    - cfg.completion_parity_weight * totals.insertion_parity(c.name, s.gender)
                )
            target = max(candidates, key=lambda c: (_score(c), -order[c.name])).name
        else:
            target = _make_room(roster, totals, i, universal, grouped, events)
        if target is not None:
            placed += 1
            if events is not None:
                events.emit("balance", "place", student_id=s.student_id, target=target)
        else:
            accepting = [c.name for c in roster.classes if c.accepts(s, universal)]
            pool_names = accepting or roster.class_names
            # Entre las forzadas, mejor una sin otro portador de su código
            target = min(
                pool_names,
                key=lambda n: (not separation_safe(roster, i, n), totals.size[n], order[n]),
            )
            record = InfeasibleStudent(s.student_id, "sin clase con sitio compatible", target)
            forced.append(record)
            logger.warning("Alumno %s colocado a la fuerza en %s", s.student_id, target)
            if events is not None:
                events.emit("balance", "conflict", student_id=s.student_id, target=target,
                            detail=record.reason)
            if not separation_safe(roster, i, target):
                holders = [
                    o.student_id for o in roster.students
                    if o.separation_code == s.separation_code and o.assigned == target
                ]
                conflict = UnresolvedSeparation(
                    code=s.separation_code,
                    class_name=target,
                    student_ids=tuple(sorted(holders + [s.student_id])),
                    reason="colocación forzada",
                )
                unresolved.append(conflict)
                logger.warning("Separación %s forzada en %s: %s", conflict.code, target, conflict.student_ids)
                if events is not None:
                    events.emit("balance", "conflict", student_id=s.student_id, target=target,
                                detail=f"separación {conflict.code}: {conflict.reason}")
        roster.move(i, target)
        totals.add(i, target, s.gender)
    return placed, forced, unresolved


def _parity_pair(
    roster: Roster,
    src: ClassName,
    dst: ClassName,
    give: str,
    grouped,
    universal: Collection[str],
) -> Optional[Tuple[StudentIdx, StudentIdx]]:
    """Alumno de género `give` en src y del opuesto en dst, intercambiables."""
    take = "M" if give == "F" else "F"
    outgoing = [i for i in roster.members(src)
                if roster.students[i].gender == give and _movable(roster, i, grouped)]
    incoming = [j for j in roster.members(dst)
                if roster.students[j].gender == take and _movable(roster, j, grouped)]
    best = None
    for i in outgoing:
        a = roster.students[i]
        if not can_host(roster, a, dst, universal):
            continue
        for j in incoming:
            b = roster.students[j]
            if not can_host(roster, b, src, universal):
                continue
            if not separation_safe(roster, i, dst, ignore=(j,)):
                continue
            if not separation_safe(roster, j, src, ignore=(i,)):
                continue
            # El par más parecido académicamente altera menos las medias
            diff = abs(a.profile - b.profile)
            if best is None or diff < best[0]:
                best = (diff, i, j)
    return (best[1], best[2]) if best else None


def parity_loop(
    roster: Roster,
    cfg: EngineConfig,
    universal: Collection[str],
    events: Optional[EventLog] = None,
) -> int:
    grouped = {i for idxs in roster.cohorts().values() for i in idxs}
    swaps = 0
    for _ in range(cfg.parity_max_passes):
        gaps = gender_gaps(roster)
        bad = sorted(
            (n for n in gaps if abs(gaps[n]) > cfg.parity_tolerance),
            key=lambda n: -abs(gaps[n]),
        )
        if not bad:
            break
        pair = None
        for src in bad:
            give = "F" if gaps[src] > 0 else "M"
            partners = sorted(
                (n for n in gaps if n != src and gaps[n] * gaps[src] < 0),
                key=lambda n: -abs(gaps[n]),
            )
            for dst in partners:
                pair = _parity_pair(roster, src, dst, give, grouped, universal)
                if pair:
                    break
            if pair:
                break
        if not pair:
            break
        i, j = pair
        src, dst = roster.students[i].assigned, roster.students[j].assigned
        roster.move(i, dst)
        roster.move(j, src)
        swaps += 1
        if events is not None:
            events.emit("balance", "swap", student_id=roster.students[i].student_id,
                        source=src, target=dst, detail=roster.students[j].student_id)
    return swaps


def balance(roster: Roster, cfg: EngineConfig, events: Optional[EventLog] = None) -> BalanceResult:
    universal = roster.universal_languages(cfg.languages)
    result = BalanceResult()
    result.rebalanced = rebalance(roster, universal, events)
    result.completed, result.forced, result.unresolved = complete(roster, cfg, universal, events)
    result.parity_swaps = parity_loop(roster, cfg, universal, events)
    result.parity_gaps = gender_gaps(roster)
    logger.info(
        "Fase 3: %d reequilibrados, %d completados, %d forzados, %d intercambios de paridad",
        result.rebalanced, result.completed, len(result.forced), result.parity_swaps,
    )
    return result
