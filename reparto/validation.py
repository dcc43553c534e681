# reparto/validation.py
"""
Comprobaciones antes y después del reparto.

- setup_problems / check_setup: errores de configuración que impiden
  arrancar la fase 1 (cuotas imposibles, vocabulario desconocido...).
- setup_warnings: avisos de datos que no bloquean.
- validate_roster: informe final de separaciones violadas y cohortes
  divididas; nunca vacío por error, o vacío o explícito.
- class_statistics: tabla por clase para el informe.
"""
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

import pandas as pd

from .config import EngineConfig
from .errors import ConfigurationError
from .model import ClassName, Roster, Student, StudentIdx


@dataclass(frozen=True)
class SeparationViolation:
    code: str
    class_name: ClassName
    student_ids: Tuple[str, ...]


@dataclass
class ValidationReport:
    separation_violations: List[SeparationViolation] = field(default_factory=list)
    split_cohorts: Dict[str, List[ClassName]] = field(default_factory=dict)
    unplaced: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not (self.separation_violations or self.split_cohorts or self.unplaced)


def setup_problems(roster: Roster, cfg: EngineConfig) -> List[str]:
    problems = list(cfg.problems())
    if not roster.classes:
        problems.append("No hay clases definidas")
    vocabulary = set(cfg.vocabulary)
    for c in roster.classes:
        if c.target_size <= 0:
            problems.append(f"Clase {c.name}: efectivo objetivo debe ser positivo")
        if c.capacity is not None and c.capacity < c.target_size:
            problems.append(f"Clase {c.name}: capacidad {c.capacity} menor que el objetivo {c.target_size}")
        for attr, quota in c.quotas.items():
            if attr not in vocabulary:
                problems.append(f"Clase {c.name}: atributo de cuota desconocido {attr}")
            if quota < 0:
                problems.append(f"Clase {c.name}: cuota negativa para {attr}")

    for s in roster.students:
        if s.language and s.language not in cfg.languages:
            problems.append(f"Alumno {s.student_id}: idioma desconocido {s.language}")
        if s.option and s.option not in cfg.options:
            problems.append(f"Alumno {s.student_id}: opción desconocida {s.option}")
        if s.assigned is not None and not roster.has_class(s.assigned):
            problems.append(f"Alumno {s.student_id}: clase inicial desconocida {s.assigned}")

    universal = roster.universal_languages(cfg.languages)
    for attr in cfg.vocabulary:
        if attr in universal:
            continue
        total = sum(c.quota(attr) for c in roster.classes)
        carriers = roster.carriers(attr)
        if total > carriers:
            problems.append(f"Cuotas de {attr} suman {total} pero solo hay {carriers} portadores")
    return problems


def check_setup(roster: Roster, cfg: EngineConfig) -> None:
    problems = setup_problems(roster, cfg)
    if problems:
        raise ConfigurationError(problems)


def setup_warnings(roster: Roster, cfg: EngineConfig) -> List[str]:
    warnings: List[str] = []
    n_classes = len(roster.classes)
    for code, idxs in roster.separations().items():
        if len(idxs) > n_classes:
            warnings.append(
                f"Separación {code}: {len(idxs)} portadores para {n_classes} clases, imposible de cumplir"
            )
    largest = max((c.limit for c in roster.classes), default=0)
    for code, idxs in roster.cohorts().items():
        if len(idxs) > largest:
            warnings.append(f"Agrupación {code}: {len(idxs)} miembros superan la mayor capacidad ({largest})")
    no_gender = sum(1 for s in roster.students if s.gender not in ("F", "M"))
    if no_gender:
        warnings.append(f"{no_gender} alumnos sin sexo informado")
    no_name = sum(1 for s in roster.students if not (s.last_name or s.first_name))
    if no_name:
        warnings.append(f"{no_name} alumnos sin nombre")
    capacity = sum(c.limit for c in roster.classes)
    if capacity < len(roster.students):
        warnings.append(f"Capacidad total {capacity} menor que el número de alumnos {len(roster.students)}")
    return warnings


def separation_violations(
    students: Sequence[Student],
    by_class: Mapping[ClassName, Iterable[StudentIdx]],
) -> List[SeparationViolation]:
    found: List[SeparationViolation] = []
    for name, members in by_class.items():
        holders: Dict[str, List[str]] = {}
        for i in members:
            code = students[i].separation_code
            if code:
                holders.setdefault(code, []).append(students[i].student_id)
        for code, ids in holders.items():
            if len(ids) >= 2:
                found.append(SeparationViolation(code, name, tuple(sorted(ids))))
    return found


def validate_roster(roster: Roster) -> ValidationReport:
    report = ValidationReport()
    report.separation_violations = separation_violations(roster.students, roster.by_class())
    for code, idxs in roster.cohorts().items():
        classes = sorted({roster.students[i].assigned for i in idxs if roster.students[i].assigned})
        if len(classes) > 1:
            report.split_cohorts[code] = classes
    report.unplaced = [roster.students[i].student_id for i in roster.unplaced()]
    return report


def class_statistics(roster: Roster, cfg: EngineConfig) -> pd.DataFrame:
    rows = []
    for name, members in roster.by_class().items():
        slot = roster.slot(name)
        group = [roster.students[i] for i in members]
        attrs = Counter(a for s in group for a in s.attributes)
        row = {
            "clase": name,
            "efectivo": len(group),
            "objetivo": slot.target_size,
            "F": sum(1 for s in group if s.gender == "F"),
            "M": sum(1 for s in group if s.gender == "M"),
            "cabezas": sum(1 for s in group if s.is_head),
            "nivel1": sum(1 for s in group if s.is_low),
        }
        for crit in ("com", "work", "part", "absence"):
            values = [getattr(s, crit) for s in group]
            row[f"media_{crit}"] = round(sum(values) / len(values), 2) if values else None
        for attr in cfg.vocabulary:
            row[attr] = attrs.get(attr, 0)
        rows.append(row)
    return pd.DataFrame(rows)
