import tempfile
import unittest
from pathlib import Path

from reparto.config import EngineConfig, load_config
from reparto.errors import ConfigurationError


class ConfigTests(unittest.TestCase):
    def test_defaults(self):
        cfg = EngineConfig()
        self.assertEqual(cfg.max_restarts, 5)
        self.assertEqual(cfg.max_iterations, 2000)
        self.assertEqual(cfg.parity_tolerance, 2)
        self.assertEqual(cfg.problems(), [])

    def test_restart_seed_spacing(self):
        cfg = EngineConfig(seed=10)
        self.assertEqual(cfg.restart_seed(0), 10)
        self.assertEqual(cfg.restart_seed(3), 10 + 3 * 7919)

    def test_from_dict_ignores_unknown_and_normalizes_vocabulary(self):
        cfg = EngineConfig.from_dict({"seed": 7, "no_existe": 1, "languages": ["ita", " esp"]})
        self.assertEqual(cfg.seed, 7)
        self.assertEqual(cfg.languages, ["ITA", "ESP"])
        self.assertFalse(hasattr(cfg, "no_existe"))

    def test_load_missing_file_gives_defaults(self):
        cfg = load_config("/no/existe/config.yaml")
        self.assertEqual(cfg, EngineConfig())

    def test_load_yaml(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.yaml"
            path.write_text("max_restarts: 2\nsa_cooling_rate: 0.9\noptions: [latin]\n", encoding="utf-8")
            cfg = load_config(str(path))
        self.assertEqual(cfg.max_restarts, 2)
        self.assertAlmostEqual(cfg.sa_cooling_rate, 0.9)
        self.assertEqual(cfg.options, ["LATIN"])

    def test_load_non_mapping_raises(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.yaml"
            path.write_text("- 1\n- 2\n", encoding="utf-8")
            with self.assertRaises(ConfigurationError):
                load_config(str(path))
            with self.assertRaises(ValueError):
                load_config(str(path))

    def test_problems_detects_out_of_range_values(self):
        cfg = EngineConfig(sa_cooling_rate=1.5, head_min=6, head_max=5, options=["ITA"])
        issues = cfg.problems()
        self.assertTrue(any("sa_cooling_rate" in p for p in issues))
        self.assertTrue(any("head_min" in p for p in issues))
        self.assertTrue(any("comparten" in p for p in issues))


if __name__ == "__main__":
    unittest.main()
