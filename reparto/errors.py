# reparto/errors.py
"""
Errores del motor y registros de conflicto.

Las excepciones cubren lo que corta una ejecución (roster vacío, invariante
roto). Los conflictos esperables (alumno sin clase compatible, separación
imposible) no se lanzan: se registran y viajan en el resultado final.
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple


class RepartoError(Exception):
    """Base de las excepciones del motor."""


class ConfigurationError(RepartoError, ValueError):
    def __init__(self, problems: Iterable[str]):
        self.problems: List[str] = list(problems)
        super().__init__("; ".join(self.problems) or "configuración inválida")


class RosterError(RepartoError, ValueError):
    """El roster no permite reconstruir un reparto (vacío, ids repetidos)."""


class PlacementError(RepartoError, RuntimeError):
    """Un invariante interno se rompió (alumno perdido o duplicado)."""


class NoValidRestart(RepartoError):
    def __init__(self, restarts: int):
        self.restarts = restarts
        super().__init__(
            f"Ninguno de los {restarts} reinicios terminó sin violar una separación"
        )


@dataclass(frozen=True)
class InfeasibleStudent:
    student_id: str
    reason: str
    placed_in: Optional[str] = None


@dataclass(frozen=True)
class UnresolvedSeparation:
    code: str
    class_name: str
    student_ids: Tuple[str, ...]
    reason: str
