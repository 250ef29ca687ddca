from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from pipeline.plan_lock import lock_plan
from pipeline.plan_store import InputDataError, PlanStore, load_model
from schemas.creative_brain import AnalysisReport
from schemas.creative_plan import (
    Audience,
    CreativePlan,
    ExecutionStrategy,
    PlanExecutionResult,
    PlanLockedError,
    Variation,
    VariationReasoning,
)


def _plan(plan_id: str = "plan_abc") -> CreativePlan:
    return CreativePlan(
        id=plan_id,
        status="validated",
        audience=Audience(language="en", country="US", market="usa"),
        variations=(
            Variation(
                index=0,
                framework="BAB",
                hook_type="story",
                pacing="slow",
                transitions=("fade", "slide"),
                target_duration=30.0,
                engine_id="plan_export",
                reasoning=VariationReasoning(framework="BAB", engine="none"),
            ),
        ),
        execution_strategy=ExecutionStrategy(description="export"),
    )


class PlanStoreTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.root = Path(tmp.name)
        self.store = PlanStore(self.root)

    def test_saved_plan_loads_back_equal(self):
        plan = _plan()
        self.store.save_plan(plan)
        loaded = self.store.load_plan("plan_abc")
        self.assertEqual(loaded.model_dump(), plan.model_dump())
        self.assertIsNone(self.store.load_plan("missing"))

    def test_locked_plan_is_never_overwritten_with_changes(self):
        plan = lock_plan(_plan())
        self.store.save_plan(plan)
        self.store.save_plan(plan)

        changed = _plan()
        changed.created_at = "2026-01-01T00:00:00+00:00"
        with self.assertRaises(PlanLockedError):
            self.store.save_plan(changed)
        self.assertEqual(self.store.load_plan("plan_abc").status, "locked")

    def test_list_skips_execution_documents(self):
        plan = lock_plan(_plan())
        self.store.save_plan(plan)
        self.store.save_plan(_plan("plan_def"))
        self.store.save_execution(PlanExecutionResult(plan_id=plan.id, status="partial_success", plan=plan))
        rows = self.store.list_plans()
        self.assertEqual([row["id"] for row in rows], ["plan_abc", "plan_def"])
        self.assertEqual(rows[0]["status"], "locked")
        self.assertEqual(rows[0]["variations"], 1)

    def test_execution_round_trip(self):
        plan = lock_plan(_plan())
        self.store.save_execution(PlanExecutionResult(plan_id=plan.id, status="partial_success", plan=plan))
        loaded = self.store.load_execution(plan.id)
        self.assertEqual(loaded.status, "partial_success")
        self.assertTrue(loaded.plan.is_locked)
        self.assertIsNone(self.store.load_execution("plan_def"))

    def test_path_like_ids_are_rejected(self):
        for bad in ("../etc", "a/b", ""):
            with self.assertRaises(ValueError):
                self.store.load_plan(bad)


class InputLoaderTests(unittest.TestCase):
    def test_missing_malformed_and_invalid_inputs(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            with self.assertRaises(InputDataError):
                load_model(root / "nope.json", AnalysisReport)

            broken = root / "broken.json"
            broken.write_text("{not json", encoding="utf-8")
            with self.assertRaises(InputDataError):
                load_model(broken, AnalysisReport)

            invalid = root / "invalid.json"
            invalid.write_text(json.dumps({"segments": [{"type": "nonsense"}]}), encoding="utf-8")
            with self.assertRaises(InputDataError):
                load_model(invalid, AnalysisReport)


if __name__ == "__main__":
    unittest.main()
