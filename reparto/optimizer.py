# reparto/optimizer.py
"""
Fase 4: optimización por intercambios con reinicios múltiples.

Cada reinicio parte de una copia de las listas de alumnos por clase y usa
su propio random.Random(seed + r * seed_spacing):

    búsqueda voraz (+ recocido) -> voraz post-recocido -> ciclos a 3 -> fin

Una iteración toma la peor clase, le busca una clase compañera
(complementaria o al azar) y evalúa los pares de alumnos más "disruptivos"
de ambas. Tras todos los reinicios se descartan los que terminan con alguna
separación violada; se aplica el válido de menor puntaje y, si no queda
ninguno, se conserva el reparto previo a la fase.
"""
import logging
import math
import random
import time
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .config import EngineConfig
from .errors import NoValidRestart
from .events import EventLog
from .mobility import can_host
from .model import ClassName, Roster, StudentIdx
from .scoring import ClassProfile, ScoreModel
from .validation import SeparationViolation, separation_violations

logger = logging.getLogger(__name__)


@dataclass
class RestartOutcome:
    restart: int
    seed: int
    by_class: Dict[ClassName, List[StudentIdx]]
    score: float
    swaps: int = 0
    annealed: int = 0
    three_way: int = 0
    iterations: int = 0
    violations: List[SeparationViolation] = field(default_factory=list)
    valid: bool = True


@dataclass
class OptimizeResult:
    status: str                     # "ok", "failed", "cancelled", "skipped"
    initial_score: float
    final_score: float
    best_restart: Optional[int] = None
    swaps: int = 0
    three_way: int = 0
    restarts: int = 0
    history: List[Dict] = field(default_factory=list)

    @property
    def improvement(self) -> float:
        return self.initial_score - self.final_score


class _SearchState:
    """Reparto en curso de un reinicio: listas por clase, perfiles y puntajes."""

    def __init__(self, model: ScoreModel, by_class: Dict[ClassName, List[StudentIdx]]):
        self.model = model
        self.by_class = OrderedDict((n, list(m)) for n, m in by_class.items())
        self.location: Dict[StudentIdx, ClassName] = {
            i: n for n, members in self.by_class.items() for i in members
        }
        self.profiles: Dict[ClassName, ClassProfile] = {}
        self.splits: Dict[ClassName, int] = {}
        self.scores: Dict[ClassName, float] = {}
        for name in self.by_class:
            self._rescore(name)
        self.history: Counter = Counter()
        self.best_score = self.total
        self.best_by_class = self.copy()

    @property
    def total(self) -> float:
        return sum(self.scores.values())

    def copy(self) -> Dict[ClassName, List[StudentIdx]]:
        return OrderedDict((n, list(m)) for n, m in self.by_class.items())

    def _rescore(self, name: ClassName) -> None:
        members = self.by_class[name]
        self.profiles[name] = self.model.profile(members)
        self.splits[name] = self.model.split_members(name, members, self.location)
        self.scores[name] = self.model.score_profile(name, self.profiles[name], self.splits[name])

    def _score_with(self, name: ClassName, prof: ClassProfile) -> float:
        # Los miembros de cohortes no se mueven en esta fase: el recuento de
        # divididos de cada clase no cambia con un intercambio
        return self.model.score_profile(name, prof, self.splits[name])

    def swap_gain(self, a: StudentIdx, b: StudentIdx) -> float:
        ca, cb = self.location[a], self.location[b]
        new_a = self._score_with(ca, self.model.exchange(self.profiles[ca], a, b))
        new_b = self._score_with(cb, self.model.exchange(self.profiles[cb], b, a))
        return (self.scores[ca] + self.scores[cb]) - (new_a + new_b)

    def rotation_gain(self, a: StudentIdx, b: StudentIdx, c: StudentIdx) -> float:
        # a: c1 -> c2, b: c2 -> c3, c: c3 -> c1
        c1, c2, c3 = self.location[a], self.location[b], self.location[c]
        new1 = self._score_with(c1, self.model.exchange(self.profiles[c1], a, c))
        new2 = self._score_with(c2, self.model.exchange(self.profiles[c2], b, a))
        new3 = self._score_with(c3, self.model.exchange(self.profiles[c3], c, b))
        return (self.scores[c1] + self.scores[c2] + self.scores[c3]) - (new1 + new2 + new3)

    def _relocate(self, idx: StudentIdx, src: ClassName, dst: ClassName) -> None:
        self.by_class[src].remove(idx)
        self.by_class[dst].append(idx)
        self.location[idx] = dst

    def apply_swap(self, a: StudentIdx, b: StudentIdx) -> None:
        ca, cb = self.location[a], self.location[b]
        self._relocate(a, ca, cb)
        self._relocate(b, cb, ca)
        self._rescore(ca)
        self._rescore(cb)
        self.history[a] += 1
        self.history[b] += 1

    def apply_rotation(self, a: StudentIdx, b: StudentIdx, c: StudentIdx) -> None:
        c1, c2, c3 = self.location[a], self.location[b], self.location[c]
        self._relocate(a, c1, c2)
        self._relocate(b, c2, c3)
        self._relocate(c, c3, c1)
        for name in (c1, c2, c3):
            self._rescore(name)
        for i in (a, b, c):
            self.history[i] += 1

    def remember_if_best(self, min_gain: float) -> bool:
        total = self.total
        if total < self.best_score - min_gain:
            self.best_score = total
            self.best_by_class = self.copy()
            return True
        return False


class SwapOptimizer:
    def __init__(
        self,
        roster: Roster,
        cfg: EngineConfig,
        events: Optional[EventLog] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ):
        self.roster = roster
        self.cfg = cfg
        self.events = events
        self.should_stop = should_stop
        self.model = ScoreModel(roster, cfg)
        self.universal = roster.universal_languages(cfg.languages)
        cohorts = roster.cohorts()
        self.grouped = {i for idxs in cohorts.values() for i in idxs}
        self.class_order = roster.class_names
        self.history: List[Dict] = []
        self._cancelled = False

    def _stopped(self) -> bool:
        if self.should_stop is not None and self.should_stop():
            self._cancelled = True
        return self._cancelled

    # ------------------------------------------------------------------
    # Reglas de intercambio
    # ------------------------------------------------------------------
    def movable(self, idx: StudentIdx) -> bool:
        s = self.roster.students[idx]
        return not s.is_locked and idx not in self.grouped

    def _separation_ok(
        self,
        state: _SearchState,
        idx: StudentIdx,
        dst: ClassName,
        leaving: StudentIdx,
    ) -> bool:
        code = self.roster.students[idx].separation_code
        if not code:
            return True
        for j in state.by_class[dst]:
            if j != leaving and self.roster.students[j].separation_code == code:
                return False
        return True

    def _accepts(self, idx: StudentIdx, dst: ClassName) -> bool:
        return can_host(self.roster, self.roster.students[idx], dst, self.universal)

    def can_swap(self, state: _SearchState, a: StudentIdx, b: StudentIdx) -> bool:
        ca, cb = state.location[a], state.location[b]
        if ca == cb or not (self.movable(a) and self.movable(b)):
            return False
        if not (self._accepts(a, cb) and self._accepts(b, ca)):
            return False
        return self._separation_ok(state, a, cb, b) and self._separation_ok(state, b, ca, a)

    def can_rotate(self, state: _SearchState, a: StudentIdx, b: StudentIdx, c: StudentIdx) -> bool:
        c1, c2, c3 = state.location[a], state.location[b], state.location[c]
        if len({c1, c2, c3}) < 3:
            return False
        if not all(self.movable(i) for i in (a, b, c)):
            return False
        if not (self._accepts(a, c2) and self._accepts(b, c3) and self._accepts(c, c1)):
            return False
        return (
            self._separation_ok(state, a, c2, b)
            and self._separation_ok(state, b, c3, c)
            and self._separation_ok(state, c, c1, a)
        )

    def best_rotation(
        self,
        state: _SearchState,
        a: StudentIdx,
        b: StudentIdx,
        c: StudentIdx,
    ) -> Optional[Tuple[Tuple[StudentIdx, StudentIdx, StudentIdx], float]]:
        """El mejor de los dos sentidos del ciclo entre las clases de a, b y c."""
        best = None
        for cycle in ((a, b, c), (a, c, b)):
            if not self.can_rotate(state, *cycle):
                continue
            gain = state.rotation_gain(*cycle)
            if best is None or gain > best[1]:
                best = (cycle, gain)
        return best

    # ------------------------------------------------------------------
    # Selección de clases y candidatos
    # ------------------------------------------------------------------
    def _complementarity(self, worst: ClassProfile, other: ClassProfile) -> float:
        cfg = self.cfg
        score = 0.0
        if worst.heads < cfg.head_min and other.heads > cfg.head_min:
            score += (other.heads - cfg.head_min) * 3
        if worst.heads > cfg.head_max and other.heads < cfg.head_max:
            score += (cfg.head_max - other.heads) * 3
        if worst.lows > cfg.low_max and other.lows < cfg.low_max:
            score += (cfg.low_max - other.lows) * 3
        if worst.gap * other.gap < 0:
            score += 2
        means = self.model.stats.means
        dw, do = worst.means - means, other.means - means
        for k in (0, 2):  # com, part
            if dw[k] * do[k] < 0:
                score += abs(dw[k] - do[k])
        return score

    def pick_partner(self, state: _SearchState, worst: ClassName, rng: random.Random) -> Optional[ClassName]:
        others = [n for n in self.class_order if n != worst and state.by_class[n]]
        if not others:
            return None
        if rng.random() < self.cfg.partner_random_ratio:
            return rng.choice(others)
        wp = state.profiles[worst]
        ranked = [(self._complementarity(wp, state.profiles[n]), n) for n in others]
        best_score = max(s for s, _ in ranked)
        if best_score <= 0:
            return rng.choice(others)
        return next(n for s, n in ranked if s == best_score)

    def candidates(self, state: _SearchState, name: ClassName) -> List[StudentIdx]:
        """Los alumnos movibles más alejados del perfil medio de su clase."""
        members = [i for i in state.by_class[name] if self.movable(i)]
        if not members:
            return []
        prof = state.profiles[name]
        feats = self.model.features[members]
        disruption = np.sum(np.abs(feats - prof.means) * (self.model.weights + 1e-9), axis=1)
        order = sorted(range(len(members)), key=lambda k: (-disruption[k], members[k]))
        cfg = self.cfg
        k = max(cfg.min_candidates, int(math.ceil(len(members) * cfg.candidate_ratio)))
        k = min(k, cfg.max_candidates, len(members))
        return [members[j] for j in order[:k]]

    def best_pair_swap(
        self,
        state: _SearchState,
        worst: ClassName,
        partner: ClassName,
    ) -> Optional[Tuple[StudentIdx, StudentIdx, float]]:
        """Mejor intercambio (o el menos malo) entre dos clases, con su ganancia ajustada."""
        best = None
        for a in self.candidates(state, worst):
            for b in self.candidates(state, partner):
                if not self.can_swap(state, a, b):
                    continue
                gain = state.swap_gain(a, b)
                repeats = state.history[a] + state.history[b]
                adjusted = gain / (1 + repeats) if gain > 0 else gain * (1 + repeats)
                if best is None or adjusted > best[2]:
                    best = (a, b, adjusted)
        return best

    # ------------------------------------------------------------------
    # Bucles de búsqueda
    # ------------------------------------------------------------------
    def _search(
        self,
        state: _SearchState,
        rng: random.Random,
        iterations: int,
        anneal: bool,
    ) -> Tuple[int, int, int]:
        """Devuelve (intercambios, degradaciones aceptadas, iteraciones)."""
        cfg = self.cfg
        temperature = cfg.sa_initial_temp
        swaps = annealed = stagnation = failures = 0
        it = 0
        for it in range(1, iterations + 1):
            if self._stopped():
                break
            worst = max(self.class_order, key=lambda n: state.scores[n])
            partner = self.pick_partner(state, worst, rng)
            move = self.best_pair_swap(state, worst, partner) if partner else None
            if move is None:
                failures += 1
                stagnation += 1
                if failures > cfg.max_partner_failures or stagnation >= cfg.stagnation_limit:
                    break
                continue

            failures = 0
            a, b, gain = move
            if gain > cfg.min_gain:
                state.apply_swap(a, b)
                swaps += 1
            elif (
                anneal
                and temperature > cfg.sa_min_temp
                and -cfg.sa_max_degradation < gain < 0
                and rng.random() < math.exp(gain / temperature)
            ):
                state.apply_swap(a, b)
                annealed += 1
            if anneal:
                temperature *= cfg.sa_cooling_rate

            if state.remember_if_best(cfg.min_gain):
                stagnation = 0
            else:
                stagnation += 1
                if stagnation >= cfg.stagnation_limit:
                    break
        return swaps, annealed, it

    def _three_way(self, state: _SearchState, rng: random.Random) -> int:
        cfg = self.cfg
        names = [n for n in self.class_order if state.by_class[n]]
        if len(names) < 3:
            return 0
        applied = 0
        for _ in range(cfg.three_way_rounds):
            if self._stopped():
                break
            for _ in range(cfg.three_way_triples):
                c1, c2, c3 = rng.sample(names, 3)
                pools = [[i for i in state.by_class[n] if self.movable(i)] for n in (c1, c2, c3)]
                if not all(pools):
                    continue
                for _ in range(cfg.three_way_samples):
                    move = self.best_rotation(state, *(rng.choice(p) for p in pools))
                    if move is None:
                        continue
                    cycle, gain = move
                    if gain > cfg.three_way_min_gain:
                        state.apply_rotation(*cycle)
                        applied += 1
                        break
        state.remember_if_best(0.0)
        return applied

    def _run_restart(
        self,
        restart: int,
        seed: int,
        start: Dict[ClassName, List[StudentIdx]],
    ) -> RestartOutcome:
        cfg = self.cfg
        rng = random.Random(seed)
        state = _SearchState(self.model, start)

        swaps, annealed, iterations = self._search(state, rng, cfg.max_iterations, cfg.annealing)
        if annealed:
            extra = int(cfg.max_iterations * cfg.post_anneal_ratio)
            more, _, it2 = self._search(state, rng, extra, anneal=False)
            swaps += more
            iterations += it2
        if state.best_score < state.total:
            state = _SearchState(self.model, state.best_by_class)
        three_way = self._three_way(state, rng)

        return RestartOutcome(
            restart=restart,
            seed=seed,
            by_class=state.best_by_class,
            score=state.best_score,
            swaps=swaps,
            annealed=annealed,
            three_way=three_way,
            iterations=iterations,
        )

    # ------------------------------------------------------------------
    # Reinicios y selección
    # ------------------------------------------------------------------
    @staticmethod
    def select_best(outcomes: Sequence[RestartOutcome]) -> RestartOutcome:
        valid = [o for o in outcomes if o.valid]
        if not valid:
            raise NoValidRestart(len(outcomes))
        return min(valid, key=lambda o: (o.score, o.restart))

    def _commit(self, by_class: Dict[ClassName, List[StudentIdx]]) -> None:
        for name, members in by_class.items():
            for i in members:
                self.roster.move(i, name)

    def run(self) -> OptimizeResult:
        cfg = self.cfg
        baseline = self.roster.snapshot()
        start = baseline.by_class()
        initial = self.model.total_score(start)
        result = OptimizeResult(status="skipped", initial_score=initial, final_score=initial)
        if cfg.max_restarts <= 0:
            return result

        outcomes: List[RestartOutcome] = []
        for r in range(cfg.max_restarts):
            if self._stopped():
                break
            seed = cfg.restart_seed(r)
            t0 = time.perf_counter()
            outcome = self._run_restart(r, seed, start)
            outcome.violations = separation_violations(self.roster.students, outcome.by_class)
            outcome.valid = not outcome.violations
            outcomes.append(outcome)
            self.history.append(
                {
                    "restart": r,
                    "seed": seed,
                    "score": outcome.score,
                    "valid": outcome.valid,
                    "swaps": outcome.swaps,
                    "annealed": outcome.annealed,
                    "three_way": outcome.three_way,
                    "iterations": outcome.iterations,
                    "time_sec": time.perf_counter() - t0,
                }
            )
            logger.info(
                "Reinicio %d (semilla %d): puntaje=%.2f válido=%s intercambios=%d",
                r, seed, outcome.score, outcome.valid, outcome.swaps,
            )
        result.history = self.history
        result.restarts = len(outcomes)

        if not outcomes:
            result.status = "cancelled"
            return result
        try:
            best = self.select_best(outcomes)
        except NoValidRestart as exc:
            logger.warning("%s; se conserva el reparto previo a la fase 4", exc)
            self.roster.restore(baseline)
            result.status = "failed"
            if self.events is not None:
                self.events.emit("optimize", "conflict", detail=str(exc))
            return result

        self._commit(best.by_class)
        result.status = "cancelled" if self._cancelled else "ok"
        result.final_score = best.score
        result.best_restart = best.restart
        result.swaps = best.swaps
        result.three_way = best.three_way
        if self.events is not None:
            self.events.emit(
                "optimize", "commit",
                detail=f"reinicio {best.restart}: {initial:.2f} -> {best.score:.2f}",
            )
        return result


def optimize(
    roster: Roster,
    cfg: EngineConfig,
    events: Optional[EventLog] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> OptimizeResult:
    return SwapOptimizer(roster, cfg, events, should_stop).run()
