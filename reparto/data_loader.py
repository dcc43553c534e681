# reparto/data_loader.py
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from .config import EngineConfig
from .model import ClassSlot, Roster, Student
from .validation import class_statistics

# Columnas de alumnos.csv -> campos de Student
STUDENT_COLUMNS: Dict[str, str] = {
    "id": "student_id",
    "apellido": "last_name",
    "nombre": "first_name",
    "sexo": "gender",
    "com": "com",
    "tra": "work",
    "part": "part",
    "abs": "absence",
    "idioma": "language",
    "opcion": "option",
    "agrupacion": "group_code",
    "separacion": "separation_code",
    "clase": "assigned",
}

# Columnas fijas de clases.csv; el resto son cuotas por atributo
CLASS_COLUMNS = ("clase", "objetivo", "capacidad")

DEFAULT_SCORE = 2.5


@dataclass(frozen=True)
class DataBundle:
    alumnos: pd.DataFrame
    clases: pd.DataFrame


def load_data(data_dir: str) -> DataBundle:
    alumnos = pd.read_csv(f"{data_dir}/alumnos.csv", dtype={"id": str})
    clases = pd.read_csv(f"{data_dir}/clases.csv", dtype={"clase": str})
    # Cabeceras sin espacios y en minúscula (las de cuotas, en mayúscula)
    alumnos.columns = [str(c).strip().lower() for c in alumnos.columns]
    clases.columns = [
        c.lower() if c.lower() in CLASS_COLUMNS else c.upper()
        for c in (str(c).strip() for c in clases.columns)
    ]
    return DataBundle(alumnos=alumnos, clases=clases)


def _text(value, upper: bool = True) -> Optional[str]:
    if value is None or pd.isna(value):
        return None
    text = str(value).strip()
    if not text:
        return None
    return text.upper() if upper else text


def _score(value) -> float:
    if value is None or pd.isna(value):
        return DEFAULT_SCORE
    return float(value)


def build_students(df: pd.DataFrame) -> List[Student]:
    students: List[Student] = []
    for _, r in df.iterrows():
        students.append(
            Student(
                student_id=_text(r.get("id"), upper=False) or "",
                last_name=_text(r.get("apellido"), upper=False) or "",
                first_name=_text(r.get("nombre"), upper=False) or "",
                gender=_text(r.get("sexo")) or "",
                com=_score(r.get("com")),
                work=_score(r.get("tra")),
                part=_score(r.get("part")),
                absence=_score(r.get("abs")),
                language=_text(r.get("idioma")),
                option=_text(r.get("opcion")),
                group_code=_text(r.get("agrupacion")),
                separation_code=_text(r.get("separacion")),
                assigned=_text(r.get("clase"), upper=False),
            )
        )
    return students


def build_classes(df: pd.DataFrame) -> List[ClassSlot]:
    quota_cols = [c for c in df.columns if c not in CLASS_COLUMNS]
    classes: List[ClassSlot] = []
    for _, r in df.iterrows():
        capacity = r.get("capacidad")
        quotas = {
            col: int(r[col]) for col in quota_cols if not pd.isna(r[col]) and int(r[col]) > 0
        }
        classes.append(
            ClassSlot(
                name=str(r["clase"]).strip(),
                target_size=int(r["objetivo"]),
                capacity=None if capacity is None or pd.isna(capacity) else int(capacity),
                quotas=quotas,
            )
        )
    return classes


def load_roster(data_dir: str) -> Roster:
    bundle = load_data(data_dir)
    return Roster(build_students(bundle.alumnos), build_classes(bundle.clases))


def assignment_to_dataframe(roster: Roster) -> pd.DataFrame:
    inverse = {v: k for k, v in STUDENT_COLUMNS.items()}
    rows = []
    for s in roster.students:
        rows.append(
            {
                inverse["student_id"]: s.student_id,
                inverse["last_name"]: s.last_name,
                inverse["first_name"]: s.first_name,
                inverse["gender"]: s.gender,
                inverse["language"]: s.language,
                inverse["option"]: s.option,
                inverse["group_code"]: s.group_code,
                inverse["separation_code"]: s.separation_code,
                inverse["assigned"]: s.assigned,
                "movilidad": s.mobility.value if s.mobility else None,
            }
        )
    return pd.DataFrame(rows)


def conflicts_to_dataframe(result) -> pd.DataFrame:
    rows = []
    for r in result.infeasible:
        rows.append({"tipo": "alumno_inviable", "codigo": None, "clase": r.placed_in,
                     "alumnos": r.student_id, "motivo": r.reason})
    for u in result.unresolved:
        rows.append({"tipo": "separacion_aceptada", "codigo": u.code, "clase": u.class_name,
                     "alumnos": " ".join(u.student_ids), "motivo": u.reason})
    if result.report is not None:
        for v in result.report.separation_violations:
            rows.append({"tipo": "separacion_violada", "codigo": v.code, "clase": v.class_name,
                         "alumnos": " ".join(v.student_ids), "motivo": ""})
        for code, classes in result.report.split_cohorts.items():
            rows.append({"tipo": "agrupacion_dividida", "codigo": code, "clase": " ".join(classes),
                         "alumnos": "", "motivo": ""})
    for msg in result.configuration_errors:
        rows.append({"tipo": "configuracion", "codigo": None, "clase": None, "alumnos": "", "motivo": msg})
    return pd.DataFrame(rows, columns=["tipo", "codigo", "clase", "alumnos", "motivo"])


def export_outputs(roster: Roster, result, cfg: EngineConfig, out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    assignment_to_dataframe(roster).to_csv(out_dir / "reparto.csv", index=False)
    class_statistics(roster, cfg).to_csv(out_dir / "estadisticas_clases.csv", index=False)
    conflicts_to_dataframe(result).to_csv(out_dir / "conflictos.csv", index=False)
    if result.optimize is not None and result.optimize.history:
        pd.DataFrame(result.optimize.history).to_csv(out_dir / "historial.csv", index=False)
