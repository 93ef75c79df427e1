import os
import sys
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from errors import IncompleteWorkout, ValidationError
from plan import PLAN
from workout_wizard import RestPolicy, WorkoutWizard, parse_weight


class WorkoutWizardTest(unittest.TestCase):
    def setUp(self) -> None:
        self.day = PLAN[1]
        self.wizard = WorkoutWizard(self.day)

    def fill_all(self, weight: float = 100.0) -> None:
        for _ in range(len(self.wizard.steps) - 1):
            self.wizard.enter_weight(weight)
            self.wizard.advance()
        self.wizard.enter_weight(weight)

    def test_steps_follow_plan_order(self) -> None:
        self.assertEqual(len(self.wizard.steps), self.day.total_sets)
        first = self.wizard.current
        self.assertEqual(first.exercise.name, "Barbell Bench Press")
        self.assertEqual(first.set_number, 1)
        self.assertEqual(self.wizard.steps[4].exercise.name, "Incline DB Press")
        self.assertEqual(self.wizard.target_reps, 6)

    def test_advance_requires_positive_weight(self) -> None:
        with self.assertRaises(ValidationError):
            self.wizard.advance()
        for bad in ["", "abc", "0", "-5", "nan", "inf", None, True]:
            with self.assertRaises(ValidationError):
                self.wizard.enter_weight(bad)
        self.wizard.enter_weight("135")
        self.assertEqual(self.wizard.advance(), 120)
        self.assertEqual(self.wizard.position, 1)

    def test_rest_suggestion_for_isolation_exercise(self) -> None:
        wizard = WorkoutWizard(PLAN[1], rest_policy=RestPolicy(isolation_seconds=45, compound_seconds=90))
        wizard.go_to(len(wizard.steps) - 2)
        self.assertEqual(wizard.current.exercise.name, "Lateral Raises")
        wizard.enter_weight(20)
        self.assertEqual(wizard.advance(), 45)

    def test_suggestion_prefills_only_empty_steps(self) -> None:
        wizard = WorkoutWizard(
            self.day,
            suggestions={"Barbell Bench Press": {1: 135.0, 2: 140.0}},
        )
        view = wizard.view()
        self.assertEqual(view["weight"], 135.0)
        self.assertTrue(view["autofilled"])
        wizard.enter_weight(150)
        wizard.advance()
        wizard.back()
        self.assertEqual(wizard.view()["weight"], 150.0)
        self.assertFalse(wizard.view()["autofilled"])
        wizard.advance()
        self.assertEqual(wizard.view()["weight"], 140.0)
        wizard.advance()
        self.assertIsNone(wizard.view()["weight"])

    def test_back_keeps_values(self) -> None:
        self.wizard.enter_weight(100)
        self.wizard.advance()
        self.wizard.enter_weight(105)
        self.wizard.back()
        self.assertEqual(self.wizard.position, 0)
        self.assertEqual(self.wizard.weight_for("Barbell Bench Press", 2), 105.0)
        self.wizard.back()
        self.assertEqual(self.wizard.position, 0)

    def test_advance_past_last_step_rejected(self) -> None:
        self.fill_all()
        self.assertTrue(self.wizard.is_last)
        with self.assertRaises(ValidationError):
            self.wizard.advance()

    def test_finish_surfaces_first_missing_step(self) -> None:
        self.fill_all()
        self.wizard.go_to(2)
        self.wizard._weights.pop(("Barbell Bench Press", 3))
        self.wizard.go_to(7)
        with self.assertRaises(IncompleteWorkout) as ctx:
            self.wizard.finish()
        self.assertEqual(ctx.exception.position, 2)
        self.assertEqual(ctx.exception.set_number, 3)
        self.assertEqual(self.wizard.position, 2)

    def test_finish_returns_draft(self) -> None:
        self.fill_all(110)
        draft = self.wizard.finish()
        self.assertEqual(draft.day_number, 1)
        self.assertEqual(draft.reps, 6)
        self.assertEqual(len(draft.entries), self.day.total_sets)
        self.assertTrue(all(e.weight == 110.0 for e in draft.entries))

    def test_parse_weight(self) -> None:
        self.assertEqual(parse_weight("72.5"), 72.5)
        with self.assertRaises(ValidationError):
            parse_weight("-1")


if __name__ == "__main__":
    unittest.main()
