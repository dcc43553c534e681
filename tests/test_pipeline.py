import unittest

from reparto.config import EngineConfig
from reparto.errors import PlacementError, RosterError
from reparto.events import EventLog
from reparto.model import ClassSlot, Roster, Student
from reparto.pipeline import check_no_loss, run_placement


def _cfg(**overrides):
    params = dict(max_iterations=150, stagnation_limit=30, max_restarts=2, three_way_rounds=10)
    params.update(overrides)
    return EngineConfig(**params)


def _school():
    classes = [
        ClassSlot("5A", 8, capacity=9, quotas={"ITA": 2, "LATIN": 2}),
        ClassSlot("5B", 8, capacity=9, quotas={"ITA": 1, "GREC": 1}),
        ClassSlot("5C", 8, capacity=9, quotas={"CHAV": 2}),
    ]
    students = []
    for i in range(24):
        s = Student(
            f"e{i:02d}",
            last_name=f"Apellido{i}",
            first_name=f"Nombre{i}",
            gender="F" if i % 2 == 0 else "M",
            com=1 + (i * 7) % 4,
            work=1 + (i * 5) % 4,
            part=1 + (i * 3) % 4,
        )
        if i in (0, 1, 2):
            s.language = "ITA"
        if i in (1, 3):
            s.option = "LATIN"
        if i == 4:
            s.option = "GREC"
        if i in (5, 6):
            s.option = "CHAV"
        if i in (10, 11):
            s.group_code = "G1"
        if i in (12, 13, 14):
            s.group_code = "G2"
        if i in (15, 16, 17):
            s.separation_code = "S1"
        students.append(s)
    return Roster(students, classes)


class PipelineTests(unittest.TestCase):
    def test_empty_roster_is_a_hard_failure(self):
        with self.assertRaises(RosterError):
            run_placement(Roster([], [ClassSlot("A", 2)]), _cfg())
        with self.assertRaises(RosterError):
            run_placement(Roster([Student("a")], []), _cfg())

    def test_duplicate_ids_rejected(self):
        with self.assertRaises(RosterError):
            Roster([Student("a"), Student("a")], [ClassSlot("A", 2)])

    def test_quota_sum_above_carriers_is_reported(self):
        roster = Roster(
            [Student("a", option="LATIN"), Student("b")],
            [ClassSlot("A", 2, quotas={"LATIN": 1}), ClassSlot("B", 2, quotas={"LATIN": 1})],
        )
        result = run_placement(roster, _cfg())
        self.assertFalse(result.ok)
        self.assertTrue(any("LATIN" in p for p in result.configuration_errors))
        self.assertIsNone(result.dispatch)
        self.assertEqual(set(result.assignment.values()), {None})

    def test_unknown_vocabulary_is_reported(self):
        roster = Roster([Student("a", language="RU")], [ClassSlot("A", 2)])
        result = run_placement(roster, _cfg())
        self.assertFalse(result.ok)
        self.assertTrue(any("RU" in p for p in result.configuration_errors))

    def test_vocabulary_comes_from_config(self):
        roster = Roster([Student("a", language="RU"), Student("b")], [ClassSlot("A", 2)])
        result = run_placement(roster, _cfg(languages=["RU"]))
        self.assertTrue(result.ok)

    def test_full_run_places_everybody_and_respects_constraints(self):
        roster = _school()
        result = run_placement(roster, _cfg())
        self.assertTrue(result.ok)
        self.assertEqual(result.configuration_errors, [])
        self.assertNotIn(None, result.assignment.values())
        self.assertEqual(result.report.separation_violations, [])
        self.assertEqual(result.report.split_cohorts, {})
        self.assertEqual(result.report.unplaced, [])
        self.assertEqual(result.unresolved, [])
        # idioma y opción siempre en una clase que los ofrece
        for s in roster.students:
            slot = roster.slot(s.assigned)
            for attr in s.attributes:
                self.assertTrue(slot.offers(attr), (s.student_id, attr, s.assigned))
        self.assertEqual(sum(roster.class_counts().values()), 24)
        self.assertEqual(result.phase_counts["placed_by_quota"], 7)

    def test_full_run_is_deterministic(self):
        first, second = _school(), _school()
        r1 = run_placement(first, _cfg())
        r2 = run_placement(second, _cfg())
        self.assertEqual(r1.assignment, r2.assignment)
        self.assertEqual(r1.optimize.final_score, r2.optimize.final_score)

    def test_sink_receives_events(self):
        seen = []
        result = run_placement(_school(), _cfg(), sink=seen.append)
        self.assertTrue(seen)
        self.assertEqual(len(seen), len(result.events))
        self.assertIn("dispatch", {e.phase for e in seen})

    def test_impossible_separation_is_warned(self):
        roster = Roster(
            [Student(f"s{i}", separation_code="S1") for i in range(3)] + [Student("x")],
            [ClassSlot("A", 2), ClassSlot("B", 2)],
        )
        result = run_placement(roster, _cfg())
        self.assertTrue(any("S1" in w for w in result.warnings))
        self.assertTrue(result.report.separation_violations)

    def test_separation_kept_when_completion_runs_out_of_room(self):
        roster = Roster(
            [
                Student("x1", com=4, work=4, part=4, absence=4),
                Student("x2", com=1, work=1, part=1, absence=1),
                Student("s1", separation_code="D1"),
                Student("s2", separation_code="D1"),
            ],
            [ClassSlot("A", 2), ClassSlot("B", 2)],
        )
        result = run_placement(roster, _cfg())
        self.assertTrue(result.ok)
        self.assertEqual(result.unresolved, [])
        self.assertEqual(result.report.separation_violations, [])
        self.assertEqual(result.optimize.status, "ok")

    def test_fixed_separation_conflict_fails_phase_four(self):
        # s1 y s2 solo caben en A (LATIN): el conflicto se acepta y ningún reinicio es válido
        roster = Roster(
            [
                Student("s1", option="LATIN", separation_code="D1"),
                Student("s2", option="LATIN", separation_code="D1"),
            ]
            + [Student(f"x{i}", gender="FM"[i % 2]) for i in range(4)],
            [ClassSlot("A", 3, quotas={"LATIN": 2}), ClassSlot("B", 3)],
        )
        result = run_placement(roster, _cfg())
        self.assertFalse(result.ok)
        self.assertEqual(result.optimize.status, "failed")
        self.assertEqual([(u.code, u.reason) for u in result.unresolved], [("D1", "alumno fijo")])
        self.assertEqual(len(result.report.separation_violations), 1)
        self.assertEqual(roster.student("s1").assigned, "A")
        self.assertEqual(roster.student("s2").assigned, "A")
        self.assertNotIn(None, result.assignment.values())

    def test_infeasible_student_recorded_once_across_reclassifications(self):
        roster = Roster([Student("g", option="GREC"), Student("x")], [ClassSlot("A", 2), ClassSlot("B", 2)])
        result = run_placement(roster, _cfg())
        self.assertEqual([r.student_id for r in result.infeasible], ["g"])
        late = [e for e in result.events if e.phase == "optimize" and e.kind == "conflict"]
        self.assertEqual([e.student_id for e in late], ["g"])

    def test_event_log_counts_by_phase_and_kind(self):
        log = EventLog()
        log.emit("balance", "move", student_id="a")
        log.emit("balance", "conflict", student_id="b")
        log.emit("resolve", "conflict", student_id="c")
        self.assertEqual(log.count(), 3)
        self.assertEqual(log.count(kind="conflict"), 2)
        self.assertEqual(log.count(phase="balance", kind="conflict"), 1)

    def test_no_loss_check(self):
        roster = Roster([Student("a", assigned="A"), Student("b")], [ClassSlot("A", 2)])
        check_no_loss(roster, 2, "prueba")
        with self.assertRaises(PlacementError):
            check_no_loss(roster, 3, "prueba")
        with self.assertRaises(PlacementError):
            check_no_loss(roster, 2, "prueba", require_all=True)


if __name__ == "__main__":
    unittest.main()
