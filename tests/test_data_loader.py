import tempfile
import unittest
from pathlib import Path

import pandas as pd

from reparto.config import EngineConfig
from reparto.data_loader import assignment_to_dataframe, export_outputs, load_roster
from reparto.pipeline import run_placement
from reparto.validation import class_statistics


def _write_inputs(data_dir: Path) -> None:
    pd.DataFrame(
        [
            {"id": "001", "apellido": "Alonso", "nombre": "Ana", "sexo": "f", "com": 4, "tra": 3,
             "part": 3, "abs": None, "idioma": "ita", "opcion": None, "agrupacion": None,
             "separacion": None, "clase": None},
            {"id": "002", "apellido": "Blanco", "nombre": "Bruno", "sexo": "M", "com": None, "tra": 2,
             "part": 2, "abs": 3, "idioma": None, "opcion": "Latin", "agrupacion": "g1",
             "separacion": None, "clase": None},
            {"id": "003", "apellido": "Castro", "nombre": "Carla", "sexo": "F", "com": 2, "tra": 2,
             "part": 3, "abs": 2, "idioma": None, "opcion": None, "agrupacion": "g1",
             "separacion": "d1", "clase": "5B"},
            {"id": "004", "apellido": "Díaz", "nombre": "David", "sexo": "M", "com": 3, "tra": 3,
             "part": 3, "abs": 3, "idioma": None, "opcion": None, "agrupacion": None,
             "separacion": "d1", "clase": None},
        ]
    ).to_csv(data_dir / "alumnos.csv", index=False)
    pd.DataFrame(
        [
            {"clase": "5A", "objetivo": 2, "capacidad": 3, "ITA": 1, "LATIN": 1},
            {"clase": "5B", "objetivo": 2, "capacidad": None, "ITA": 0, "LATIN": None},
        ]
    ).to_csv(data_dir / "clases.csv", index=False)


class DataLoaderTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.data_dir = Path(self._tmp.name)
        _write_inputs(self.data_dir)

    def tearDown(self):
        self._tmp.cleanup()

    def test_load_roster_normalizes_values(self):
        roster = load_roster(str(self.data_dir))
        self.assertEqual(len(roster.students), 4)
        ana = roster.student("001")
        self.assertEqual(ana.gender, "F")
        self.assertEqual(ana.language, "ITA")
        self.assertIsNone(ana.option)
        self.assertEqual(ana.absence, 2.5)
        bruno = roster.student("002")
        self.assertEqual(bruno.option, "LATIN")
        self.assertEqual(bruno.group_code, "G1")
        self.assertEqual(bruno.com, 2.5)
        self.assertEqual(roster.student("003").assigned, "5B")
        self.assertEqual(roster.student("004").separation_code, "D1")

    def test_load_classes_with_wide_quotas(self):
        roster = load_roster(str(self.data_dir))
        a, b = roster.classes
        self.assertEqual(a.name, "5A")
        self.assertEqual(a.quotas, {"ITA": 1, "LATIN": 1})
        self.assertEqual(a.limit, 3)
        self.assertEqual(b.quotas, {})
        self.assertIsNone(b.capacity)
        self.assertEqual(b.limit, 2)

    def test_end_to_end_export(self):
        roster = load_roster(str(self.data_dir))
        cfg = EngineConfig(max_iterations=50, max_restarts=2, three_way_rounds=5)
        result = run_placement(roster, cfg)
        self.assertTrue(result.ok, result.configuration_errors)

        out_dir = self.data_dir / "outputs"
        export_outputs(roster, result, cfg, out_dir)
        for name in ("reparto.csv", "estadisticas_clases.csv", "conflictos.csv", "historial.csv"):
            self.assertTrue((out_dir / name).exists(), name)

        df = pd.read_csv(out_dir / "reparto.csv", dtype={"id": str})
        self.assertEqual(list(df["id"]), ["001", "002", "003", "004"])
        self.assertFalse(df["clase"].isna().any())

    def test_assignment_and_statistics_frames(self):
        roster = load_roster(str(self.data_dir))
        df = assignment_to_dataframe(roster)
        self.assertIn("movilidad", df.columns)
        self.assertEqual(len(df), 4)
        stats = class_statistics(roster, EngineConfig())
        self.assertEqual(list(stats["clase"]), ["5A", "5B"])
        self.assertEqual(int(stats.loc[stats["clase"] == "5B", "efectivo"].iloc[0]), 1)


if __name__ == "__main__":
    unittest.main()
