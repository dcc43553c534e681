# reparto/scoring.py
"""
Puntaje de una clase y del reparto completo (menor es mejor).

Por clase:
    (efectivo - objetivo)^2 * weight_size
  + penalizaciones de perfil (cabezas por debajo/encima, nivel 1 en exceso)
  + |ratio F de la clase - ratio F global| * 1000 * weight_parity
  + sum(peso_criterio * |media de la clase - media global|) * 100 * weight_distribution
  + weight_grouping por cada miembro cuya cohorte está dividida
Una clase vacía vale EMPTY_CLASS_SCORE.

Las sumas de cada clase se guardan en un ClassProfile para que evaluar un
intercambio cueste O(1) en lugar de recorrer a todos los miembros.
"""
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Sequence

import numpy as np

from .config import CRITERIA, EngineConfig
from .model import ClassName, Roster, StudentIdx

EMPTY_CLASS_SCORE = 10000.0


@dataclass(frozen=True)
class GlobalStats:
    female_ratio: float
    means: np.ndarray


@dataclass(frozen=True)
class ClassProfile:
    size: int
    female: int
    male: int
    heads: int
    lows: int
    sums: np.ndarray

    @property
    def means(self) -> np.ndarray:
        return self.sums / self.size if self.size else np.zeros_like(self.sums)

    @property
    def gap(self) -> int:
        return self.female - self.male


class ScoreModel:
    def __init__(self, roster: Roster, cfg: EngineConfig):
        self.cfg = cfg
        students = roster.students
        self.features = np.array([s.scores for s in students], dtype=float).reshape(-1, len(CRITERIA))
        self.female = np.array([s.gender == "F" for s in students], dtype=int)
        self.male = np.array([s.gender == "M" for s in students], dtype=int)
        self.heads = np.array([s.is_head for s in students], dtype=int)
        self.lows = np.array([s.is_low for s in students], dtype=int)
        self.weights = np.array([cfg.criterion_weights.get(k, 0.0) for k in CRITERIA], dtype=float)
        self.targets: Dict[ClassName, int] = {c.name: c.target_size for c in roster.classes}

        # Miembros de cada cohorte, para la penalización de agrupación
        self.cohort_of: Dict[StudentIdx, str] = {}
        self.cohort_members: Dict[str, Sequence[StudentIdx]] = {}
        for code, idxs in roster.cohorts().items():
            self.cohort_members[code] = tuple(idxs)
            for i in idxs:
                self.cohort_of[i] = code

        gendered = int(self.female.sum() + self.male.sum())
        self.stats = GlobalStats(
            female_ratio=float(self.female.sum()) / gendered if gendered else 0.5,
            means=self.features.mean(axis=0) if len(students) else np.zeros(len(CRITERIA)),
        )

    def profile(self, members: Sequence[StudentIdx]) -> ClassProfile:
        idx = np.fromiter(members, dtype=int, count=len(members))
        return ClassProfile(
            size=len(members),
            female=int(self.female[idx].sum()),
            male=int(self.male[idx].sum()),
            heads=int(self.heads[idx].sum()),
            lows=int(self.lows[idx].sum()),
            sums=self.features[idx].sum(axis=0),
        )

    def exchange(self, prof: ClassProfile, out_idx: StudentIdx, in_idx: StudentIdx) -> ClassProfile:
        """Perfil de la clase tras sacar out_idx y meter in_idx."""
        return ClassProfile(
            size=prof.size,
            female=prof.female - int(self.female[out_idx]) + int(self.female[in_idx]),
            male=prof.male - int(self.male[out_idx]) + int(self.male[in_idx]),
            heads=prof.heads - int(self.heads[out_idx]) + int(self.heads[in_idx]),
            lows=prof.lows - int(self.lows[out_idx]) + int(self.lows[in_idx]),
            sums=prof.sums - self.features[out_idx] + self.features[in_idx],
        )

    def split_members(
        self,
        name: ClassName,
        members: Sequence[StudentIdx],
        location: Optional[Mapping[StudentIdx, ClassName]] = None,
    ) -> int:
        if not self.cohort_of:
            return 0
        inside = set(members)
        split = 0
        for i in members:
            code = self.cohort_of.get(i)
            if code is None:
                continue
            for j in self.cohort_members[code]:
                where = location.get(j) if location is not None else (name if j in inside else None)
                if where != name:
                    split += 1
                    break
        return split

    def score_profile(self, name: ClassName, prof: ClassProfile, split: int = 0) -> float:
        if prof.size == 0:
            return EMPTY_CLASS_SCORE
        cfg = self.cfg
        score = (prof.size - self.targets[name]) ** 2 * cfg.weight_size

        if prof.heads < cfg.head_min:
            score += (cfg.head_min - prof.heads) ** 2 * cfg.head_deficit_penalty * cfg.weight_profiles
        elif prof.heads > cfg.head_max:
            score += (prof.heads - cfg.head_max) * cfg.head_excess_penalty * cfg.weight_profiles
        if prof.lows > cfg.low_max:
            score += (prof.lows - cfg.low_max) ** 3 * cfg.low_excess_penalty * cfg.weight_profiles

        gendered = prof.female + prof.male
        if gendered:
            ratio = prof.female / gendered
            score += abs(ratio - self.stats.female_ratio) * 1000 * cfg.weight_parity

        deviation = np.abs(prof.means - self.stats.means) * self.weights
        score += float(deviation.sum()) * 100 * cfg.weight_distribution
        score += split * cfg.weight_grouping
        return float(score)

    def class_score(
        self,
        name: ClassName,
        members: Sequence[StudentIdx],
        location: Optional[Mapping[StudentIdx, ClassName]] = None,
    ) -> float:
        if not members:
            return EMPTY_CLASS_SCORE
        return self.score_profile(name, self.profile(members), self.split_members(name, members, location))

    def total_score(self, by_class: Mapping[ClassName, Sequence[StudentIdx]]) -> float:
        location = {i: name for name, members in by_class.items() for i in members}
        return sum(self.class_score(name, members, location) for name, members in by_class.items())
