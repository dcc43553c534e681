# reparto/pipeline.py
"""
Orquestación de las cuatro fases.

    run_placement(roster, cfg) -> PlacementResult

Los problemas de configuración se devuelven en el resultado (ok=False) sin
ejecutar ninguna fase; solo un roster vacío o sin clases se lanza como
RosterError. Entre fase y fase se comprueba que ningún alumno se pierda.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .balancer import BalanceResult, balance
from .config import EngineConfig
from .dispatch import DispatchResult, dispatch
from .errors import (
    ConfigurationError,
    InfeasibleStudent,
    PlacementError,
    RosterError,
    UnresolvedSeparation,
)
from .events import EventLog, EventSink, PlacementEvent
from .mobility import classify_mobility
from .model import Roster
from .optimizer import OptimizeResult, SwapOptimizer
from .resolver import ResolveResult, resolve_constraints
from .validation import ValidationReport, check_setup, setup_warnings, validate_roster

logger = logging.getLogger(__name__)


@dataclass
class PlacementResult:
    ok: bool
    assignment: Dict[str, Optional[str]]
    configuration_errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    dispatch: Optional[DispatchResult] = None
    resolve: Optional[ResolveResult] = None
    balance: Optional[BalanceResult] = None
    optimize: Optional[OptimizeResult] = None
    report: Optional[ValidationReport] = None
    infeasible: List[InfeasibleStudent] = field(default_factory=list)
    unresolved: List[UnresolvedSeparation] = field(default_factory=list)
    events: List[PlacementEvent] = field(default_factory=list)

    @property
    def phase_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        if self.dispatch is not None:
            counts["placed_by_quota"] = self.dispatch.placed
        if self.resolve is not None:
            counts["grouping_moves"] = self.resolve.grouping_moves
            counts["separation_moves"] = self.resolve.separation_moves
        if self.balance is not None:
            counts["rebalanced"] = self.balance.rebalanced
            counts["completed"] = self.balance.completed
            counts["forced"] = len(self.balance.forced)
            counts["parity_swaps"] = self.balance.parity_swaps
        if self.optimize is not None:
            counts["optimizer_swaps"] = self.optimize.swaps
            counts["optimizer_three_way"] = self.optimize.three_way
        return counts


def check_no_loss(roster: Roster, expected: int, phase: str, require_all: bool = False) -> None:
    placed = sum(roster.class_counts().values())
    unplaced = len(roster.unplaced())
    if placed + unplaced != expected:
        raise PlacementError(
            f"Tras {phase}: {placed} colocados + {unplaced} sin clase != {expected} alumnos"
        )
    if require_all and unplaced:
        raise PlacementError(f"Tras {phase}: {unplaced} alumnos siguen sin clase")


def _merge_infeasible(records: List[InfeasibleStudent], new: List[InfeasibleStudent]) -> None:
    seen = {r.student_id for r in records}
    for r in new:
        if r.student_id not in seen:
            records.append(r)
            seen.add(r.student_id)


def run_placement(
    roster: Roster,
    cfg: Optional[EngineConfig] = None,
    sink: Optional[EventSink] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> PlacementResult:
    cfg = cfg or EngineConfig()
    if not roster.students:
        raise RosterError("El roster no tiene alumnos")
    if not roster.classes:
        raise RosterError("No hay clases definidas")

    try:
        check_setup(roster, cfg)
    except ConfigurationError as exc:
        logger.error("Configuración inválida: %s", exc)
        return PlacementResult(
            ok=False,
            assignment=roster.assignment(),
            configuration_errors=exc.problems,
        )

    events = EventLog(sink)
    warnings = setup_warnings(roster, cfg)
    for w in warnings:
        events.emit("setup", "warning", detail=w)

    total = len(roster.students)
    result = PlacementResult(ok=True, assignment={}, warnings=warnings)

    result.dispatch = dispatch(roster, cfg, events)
    _merge_infeasible(result.infeasible, result.dispatch.mobility.infeasible)
    check_no_loss(roster, total, "fase 1")

    result.resolve = resolve_constraints(roster, cfg, events)
    result.unresolved = list(result.resolve.unresolved)
    check_no_loss(roster, total, "fase 2")

    _merge_infeasible(result.infeasible, classify_mobility(roster, cfg, events, phase="resolve").infeasible)
    result.balance = balance(roster, cfg, events)
    _merge_infeasible(result.infeasible, result.balance.forced)
    result.unresolved.extend(result.balance.unresolved)
    check_no_loss(roster, total, "fase 3", require_all=True)

    _merge_infeasible(result.infeasible, classify_mobility(roster, cfg, events, phase="optimize").infeasible)
    optimizer = SwapOptimizer(roster, cfg, events, should_stop)
    result.optimize = optimizer.run()
    check_no_loss(roster, total, "fase 4", require_all=True)
    if result.optimize.status == "failed":
        result.ok = False

    result.report = validate_roster(roster)
    result.assignment = roster.assignment()
    result.events = list(events.events)
    logger.info(
        "Reparto terminado: ok=%s, %d separaciones violadas, %d conflictos aceptados, %d eventos de conflicto",
        result.ok, len(result.report.separation_violations), len(result.unresolved),
        events.count(kind="conflict"),
    )
    return result
