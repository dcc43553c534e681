# reparto/model.py
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .errors import RosterError

ClassName = str
StudentIdx = int


class Mobility(str, Enum):
    FIXED = "FIXED"                    # una sola clase compatible
    SWAPPABLE_PAIR = "SWAPPABLE_PAIR"  # exactamente dos
    FREE = "FREE"                      # tres o más
    INFEASIBLE = "INFEASIBLE"          # ninguna


@dataclass
class Student:
    student_id: str
    last_name: str = ""
    first_name: str = ""
    gender: str = ""                   # "F", "M" o "" si se desconoce
    com: float = 2.5
    work: float = 2.5
    part: float = 2.5
    absence: float = 2.5
    language: Optional[str] = None
    option: Optional[str] = None
    group_code: Optional[str] = None
    separation_code: Optional[str] = None
    assigned: Optional[ClassName] = None
    mobility: Optional[Mobility] = None
    domain: Tuple[ClassName, ...] = ()

    @property
    def attributes(self) -> Tuple[str, ...]:
        return tuple(a for a in (self.language, self.option) if a)

    @property
    def scores(self) -> Tuple[float, float, float, float]:
        return (self.com, self.work, self.part, self.absence)

    @property
    def profile(self) -> float:
        return sum(self.scores) / 4.0

    @property
    def is_head(self) -> bool:
        return (
            self.com >= 4
            or self.work >= 4
            or (self.com + self.work + self.part) / 3.0 >= 3.5
        )

    @property
    def is_low(self) -> bool:
        return self.com <= 1 or self.work <= 1

    @property
    def is_locked(self) -> bool:
        # Un alumno FIJO en su única clase, o sin clase compatible, no se mueve
        if self.assigned is None:
            return False
        if self.mobility == Mobility.INFEASIBLE:
            return True
        if self.mobility == Mobility.FIXED:
            return not self.domain or self.assigned in self.domain
        return False


@dataclass(frozen=True)
class ClassSlot:
    name: ClassName
    target_size: int
    capacity: Optional[int] = None     # techo duro; por defecto = target_size
    quotas: Dict[str, int] = field(default_factory=dict)

    @property
    def limit(self) -> int:
        return self.capacity if self.capacity is not None else self.target_size

    def quota(self, attribute: str) -> int:
        return int(self.quotas.get(attribute, 0))

    def offers(self, attribute: str) -> bool:
        return self.quota(attribute) > 0

    def accepts(self, student: Student, universal: Iterable[str] = ()) -> bool:
        """La clase ofrece el idioma (salvo universal) y la opción del alumno."""
        if student.language and student.language not in universal:
            if not self.offers(student.language):
                return False
        if student.option and not self.offers(student.option):
            return False
        return True


@dataclass(frozen=True)
class RosterSnapshot:
    members: Tuple[Tuple[ClassName, Tuple[StudentIdx, ...]], ...]
    unplaced: Tuple[StudentIdx, ...]

    def by_class(self) -> Dict[ClassName, List[StudentIdx]]:
        return OrderedDict((name, list(idx)) for name, idx in self.members)


class Roster:
    """Alumnos + clases de una ejecución. El único estado que muta es `assigned`."""

    def __init__(self, students: List[Student], classes: List[ClassSlot]):
        self.students = students
        self.classes = classes
        self._index: Dict[str, StudentIdx] = {}
        for i, s in enumerate(students):
            if s.student_id in self._index:
                raise RosterError(f"Identificador de alumno repetido: {s.student_id}")
            self._index[s.student_id] = i
        self._slots: Dict[ClassName, ClassSlot] = {}
        for c in classes:
            if c.name in self._slots:
                raise RosterError(f"Clase repetida: {c.name}")
            self._slots[c.name] = c

    def __len__(self) -> int:
        return len(self.students)

    @property
    def class_names(self) -> List[ClassName]:
        return [c.name for c in self.classes]

    def has_class(self, name: Optional[str]) -> bool:
        return name in self._slots

    def slot(self, name: ClassName) -> ClassSlot:
        return self._slots[name]

    def index_of(self, student_id: str) -> StudentIdx:
        return self._index[student_id]

    def student(self, student_id: str) -> Student:
        return self.students[self._index[student_id]]

    def move(self, idx: StudentIdx, class_name: Optional[ClassName]) -> None:
        if class_name is not None and class_name not in self._slots:
            raise RosterError(f"Clase desconocida: {class_name}")
        self.students[idx].assigned = class_name

    def by_class(self) -> Dict[ClassName, List[StudentIdx]]:
        groups: Dict[ClassName, List[StudentIdx]] = OrderedDict((n, []) for n in self.class_names)
        for i, s in enumerate(self.students):
            if s.assigned in groups:
                groups[s.assigned].append(i)
        return groups

    def members(self, class_name: ClassName) -> List[StudentIdx]:
        return [i for i, s in enumerate(self.students) if s.assigned == class_name]

    def class_counts(self) -> Dict[ClassName, int]:
        counts = OrderedDict((n, 0) for n in self.class_names)
        for s in self.students:
            if s.assigned in counts:
                counts[s.assigned] += 1
        return counts

    def unplaced(self) -> List[StudentIdx]:
        return [i for i, s in enumerate(self.students) if s.assigned is None]

    def _codes(self, attr: str) -> Dict[str, List[StudentIdx]]:
        found: Dict[str, List[StudentIdx]] = OrderedDict()
        for i, s in enumerate(self.students):
            code = getattr(s, attr)
            if code:
                found.setdefault(code, []).append(i)
        # Un código con un solo portador no obliga a nada
        return OrderedDict((k, v) for k, v in found.items() if len(v) >= 2)

    def cohorts(self) -> Dict[str, List[StudentIdx]]:
        """Códigos de agrupación con dos o más portadores."""
        return self._codes("group_code")

    def separations(self) -> Dict[str, List[StudentIdx]]:
        """Códigos de separación con dos o más portadores."""
        return self._codes("separation_code")

    def carriers(self, attribute: str) -> int:
        return sum(1 for s in self.students if attribute in s.attributes)

    def universal_languages(self, languages: Iterable[str]) -> Set[str]:
        """
        Idiomas ofrecidos por todas las clases cuyas cuotas suman más que
        sus portadores: la cuota nunca se agota, así que no aportan señal
        de ubicación en la fase 1 y son siempre compatibles.
        """
        universal: Set[str] = set()
        if not self.classes:
            return universal
        for lang in languages:
            if all(c.offers(lang) for c in self.classes):
                if sum(c.quota(lang) for c in self.classes) > self.carriers(lang):
                    universal.add(lang)
        return universal

    def assignment(self) -> Dict[str, Optional[ClassName]]:
        return OrderedDict((s.student_id, s.assigned) for s in self.students)

    def snapshot(self) -> RosterSnapshot:
        return RosterSnapshot(
            members=tuple((n, tuple(ix)) for n, ix in self.by_class().items()),
            unplaced=tuple(self.unplaced()),
        )

    def restore(self, snap: RosterSnapshot) -> None:
        for s in self.students:
            s.assigned = None
        for name, idxs in snap.members:
            for i in idxs:
                self.students[i].assigned = name
