import unittest

from reparto.config import EngineConfig
from reparto.mobility import can_host, classify_mobility, label_for, separation_safe
from reparto.model import ClassSlot, Mobility, Roster, Student


def _classes():
    return [
        ClassSlot("A", 5, quotas={"LATIN": 1, "ITA": 1}),
        ClassSlot("B", 5, quotas={"LATIN": 1}),
        ClassSlot("C", 5),
    ]


class LabelTests(unittest.TestCase):
    def test_label_by_domain_size(self):
        self.assertEqual(label_for(0), Mobility.INFEASIBLE)
        self.assertEqual(label_for(1), Mobility.FIXED)
        self.assertEqual(label_for(2), Mobility.SWAPPABLE_PAIR)
        self.assertEqual(label_for(3), Mobility.FREE)
        self.assertEqual(label_for(7), Mobility.FREE)


class ClassifierTests(unittest.TestCase):
    def test_attribute_domains(self):
        roster = Roster(
            [
                Student("plain"),
                Student("latin", option="LATIN"),
                Student("ita_latin", language="ITA", option="LATIN"),
                Student("grec", option="GREC"),
            ],
            _classes(),
        )
        result = classify_mobility(roster, EngineConfig())
        self.assertEqual(roster.student("plain").mobility, Mobility.FREE)
        self.assertEqual(roster.student("latin").mobility, Mobility.SWAPPABLE_PAIR)
        self.assertEqual(roster.student("latin").domain, ("A", "B"))
        self.assertEqual(roster.student("ita_latin").mobility, Mobility.FIXED)
        self.assertEqual(roster.student("ita_latin").domain, ("A",))
        self.assertEqual(roster.student("grec").mobility, Mobility.INFEASIBLE)
        self.assertEqual([r.student_id for r in result.infeasible], ["grec"])
        self.assertEqual(result.counts["FREE"], 1)

    def test_separation_excludes_classes_holding_other_carrier(self):
        roster = Roster(
            [Student("s1", separation_code="D1", assigned="A"), Student("s2", separation_code="D1")],
            _classes(),
        )
        classify_mobility(roster, EngineConfig())
        self.assertEqual(roster.student("s2").domain, ("B", "C"))
        self.assertEqual(roster.student("s2").mobility, Mobility.SWAPPABLE_PAIR)
        self.assertEqual(roster.student("s1").mobility, Mobility.FREE)

    def test_current_class_conflict_does_not_fix_student(self):
        roster = Roster(
            [
                Student("s1", separation_code="D1", assigned="A"),
                Student("s2", separation_code="D1", assigned="A"),
            ],
            _classes(),
        )
        classify_mobility(roster, EngineConfig())
        self.assertEqual(roster.student("s1").mobility, Mobility.FREE)
        self.assertEqual(roster.student("s2").mobility, Mobility.FREE)

    def test_cohort_shares_intersection_label(self):
        roster = Roster(
            [
                Student("g1", option="LATIN", group_code="G1"),
                Student("g2", group_code="G1"),
                Student("solo", group_code="G9"),
            ],
            _classes(),
        )
        classify_mobility(roster, EngineConfig())
        for sid in ("g1", "g2"):
            self.assertEqual(roster.student(sid).mobility, Mobility.SWAPPABLE_PAIR)
            self.assertEqual(roster.student(sid).domain, ("A", "B"))
        # Un código con un solo portador no forma cohorte
        self.assertEqual(roster.student("solo").mobility, Mobility.FREE)

    def test_can_host_respects_pair_domain(self):
        roster = Roster([Student("g1", option="LATIN", group_code="G1"), Student("g2", group_code="G1")], _classes())
        classify_mobility(roster, EngineConfig())
        g2 = roster.student("g2")
        self.assertTrue(roster.slot("C").accepts(g2))
        self.assertFalse(can_host(roster, g2, "C", set()))
        self.assertTrue(can_host(roster, g2, "B", set()))

    def test_locked_only_inside_domain(self):
        s = Student("s", option="LATIN", assigned="A", mobility=Mobility.FIXED, domain=("A",))
        self.assertTrue(s.is_locked)
        s.assigned = "C"
        self.assertFalse(s.is_locked)
        s.assigned = None
        self.assertFalse(s.is_locked)

    def test_separation_safe_ignores_partner(self):
        roster = Roster(
            [
                Student("s1", separation_code="D1", assigned="A"),
                Student("s2", separation_code="D1", assigned="B"),
            ],
            _classes(),
        )
        self.assertFalse(separation_safe(roster, 0, "B"))
        self.assertTrue(separation_safe(roster, 0, "B", ignore=(1,)))
        self.assertTrue(separation_safe(roster, 0, "C"))


if __name__ == "__main__":
    unittest.main()
