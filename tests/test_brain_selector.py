from __future__ import annotations

import unittest

from pydantic import ValidationError

from pipeline.brain_selector import select_strategy
from pipeline.creative_engine import generate_selection
from schemas.creative_brain import (
    AnalysisReport,
    AnalysisSegment,
    BrainFailureOutput,
    DetectedProblem,
    ScoreBreakdown,
    ScoredStrategy,
    ScoringPolicy,
    ScoringWeights,
    SelectionResult,
    StrategyCandidate,
)


def _report(*problems: DetectedProblem, segment_count: int = 6) -> AnalysisReport:
    kinds = ["hook", "problem", "solution", "benefit", "cta", "filler"]
    segments = [
        AnalysisSegment(segment_id=f"s{i}", type=kinds[i % len(kinds)], attention=0.3 if i == 0 else 0.8)
        for i in range(segment_count)
    ]
    return AnalysisReport(segments=segments, problems=list(problems))


def _scored(sid: str, impact: float, risk: float, cost: float = 0.2, confidence: float = 0.5, index: int = 0) -> ScoredStrategy:
    w = ScoringWeights.for_goal("ctr")
    breakdown = ScoreBreakdown(
        impact_contribution=w.impact * impact,
        risk_penalty=w.risk * risk,
        cost_penalty=w.cost * cost,
        trust_bonus=w.trust * confidence,
    )
    return ScoredStrategy(
        strategy_id=sid,
        framework="PAS",
        impact_score=impact,
        risk_score=risk,
        cost_score=cost,
        confidence_score=confidence,
        final_score=breakdown.reconstruct(),
        breakdown=breakdown,
        creation_index=index,
    )


def _candidates(*ids: str) -> list[StrategyCandidate]:
    return [
        StrategyCandidate(id=cid, framework="PAS", hook_type="problem_solution", creation_index=i)
        for i, cid in enumerate(ids)
    ]


def _sorted(*rows: ScoredStrategy) -> list[ScoredStrategy]:
    return sorted(rows, key=lambda row: (-row.final_score, row.risk_score, row.creation_index))


HOOK_REPORT = _report(DetectedProblem(type="HOOK_WEAK", severity=0.9, details="Hook loses viewers in 2s", segment_id="s0"))


class SelectorPolicyTests(unittest.TestCase):
    def setUp(self):
        self.policy = ScoringPolicy()

    def test_no_problem_above_floor_is_no_action(self):
        report = _report(
            DetectedProblem(type="HOOK_WEAK", severity=0.1, segment_id="s0"),
            DetectedProblem(type="CTA_WEAK", severity=0.39),
        )
        outcome = generate_selection(report)
        self.assertIsInstance(outcome, BrainFailureOutput)
        self.assertEqual(outcome.mode, "NO_ACTION")

    def test_too_few_segments_needs_more_data(self):
        report = _report(DetectedProblem(type="HOOK_WEAK", severity=0.9, segment_id="s0"), segment_count=1)
        outcome = generate_selection(report)
        self.assertIsInstance(outcome, BrainFailureOutput)
        self.assertEqual(outcome.mode, "NEEDS_MORE_DATA")

    def test_all_impact_below_floor_is_no_action(self):
        scored = _sorted(_scored("a", impact=0.05, risk=0.1), _scored("b", impact=0.02, risk=0.1, index=1))
        outcome = select_strategy(scored, _candidates("a", "b"), HOOK_REPORT, self.policy)
        self.assertEqual(outcome.mode, "NO_ACTION")

    def test_every_candidate_too_risky_gives_safe_optimization_with_suggestion(self):
        scored = _sorted(
            _scored("a", impact=0.9, risk=0.95),
            _scored("b", impact=0.6, risk=0.95, index=1),
            _scored("c", impact=0.4, risk=0.95, index=2),
        )
        outcome = select_strategy(scored, _candidates("a", "b", "c"), HOOK_REPORT, self.policy)
        self.assertIsInstance(outcome, BrainFailureOutput)
        self.assertEqual(outcome.mode, "SAFE_OPTIMIZATION_ONLY")
        self.assertTrue(outcome.fallback_suggestion)
        self.assertIsNone(outcome.fallback_strategy)

    def test_risky_winner_falls_back_to_safer_candidate(self):
        scored = _sorted(_scored("bold", impact=1.0, risk=0.7), _scored("safe", impact=0.5, risk=0.3, index=1))
        self.assertEqual(scored[0].strategy_id, "bold")
        outcome = select_strategy(scored, _candidates("bold", "safe"), HOOK_REPORT, self.policy)
        self.assertEqual(outcome.mode, "SAFE_OPTIMIZATION_ONLY")
        self.assertEqual(outcome.fallback_strategy.strategy_id, "safe")
        self.assertIn("safe", outcome.fallback_suggestion)

    def test_low_tolerance_tightens_the_ceiling(self):
        scored = _sorted(_scored("a", impact=1.0, risk=0.4))
        medium = select_strategy(scored, _candidates("a"), HOOK_REPORT, self.policy)
        self.assertIsInstance(medium, SelectionResult)
        low = ScoringPolicy(constraints={"risk_tolerance": "low"})
        self.assertEqual(select_strategy(scored, _candidates("a"), HOOK_REPORT, low).mode, "SAFE_OPTIMIZATION_ONLY")

    def test_top_below_acceptance_threshold_is_safe_optimization(self):
        scored = _sorted(
            _scored("a", impact=0.2, risk=0.4, cost=0.6, confidence=0.1),
            _scored("b", impact=0.15, risk=0.3, cost=0.6, confidence=0.1, index=1),
        )
        self.assertLess(scored[0].final_score, self.policy.acceptance_threshold)
        outcome = select_strategy(scored, _candidates("a", "b"), HOOK_REPORT, self.policy)
        self.assertEqual(outcome.mode, "SAFE_OPTIMIZATION_ONLY")
        self.assertEqual(outcome.fallback_strategy.strategy_id, "b")

    def test_threshold_fallback_skips_candidates_below_impact_floor(self):
        scored = _sorted(
            _scored("a", impact=0.2, risk=0.4, cost=0.6, confidence=0.1),
            _scored("b", impact=0.15, risk=0.3, cost=0.6, confidence=0.1, index=1),
            _scored("idle", impact=0.05, risk=0.0, cost=0.6, confidence=0.1, index=2),
        )
        self.assertLess(scored[0].final_score, self.policy.acceptance_threshold)
        self.assertLessEqual(scored[0].risk_score, self.policy.resolved_risk_ceiling())
        outcome = select_strategy(scored, _candidates("a", "b", "idle"), HOOK_REPORT, self.policy)
        self.assertEqual(outcome.mode, "SAFE_OPTIMIZATION_ONLY")
        self.assertEqual(outcome.fallback_strategy.strategy_id, "b")
        self.assertIn("(b)", outcome.fallback_suggestion)


class SelectorExplanationTests(unittest.TestCase):
    def test_winner_explanation_cites_problems_and_runner_ups(self):
        outcome = generate_selection(HOOK_REPORT)
        self.assertIsInstance(outcome, SelectionResult)
        self.assertEqual(outcome.selected.strategy_id, outcome.scored_strategies[0].strategy_id)
        self.assertEqual(outcome.candidate.id, outcome.selected.strategy_id)

        explanation = outcome.explanation
        self.assertIn("Hook loses viewers in 2s", explanation.why_this_strategy)
        self.assertIn("expected impact", explanation.why_this_strategy)
        self.assertEqual(len(explanation.why_not_others), len(outcome.scored_strategies) - 1)
        for sentence in explanation.why_not_others:
            self.assertIn("weakest on", sentence)
        self.assertEqual(explanation.expected_outcome, "Expected 25% improvement in hook weak")
        self.assertEqual(explanation.confidence_level, "high")

    def test_trust_driven_winner_says_so(self):
        scored = _sorted(_scored("a", impact=0.15, risk=0.0, cost=0.0, confidence=1.0))
        outcome = select_strategy(scored, _candidates("a"), HOOK_REPORT, ScoringPolicy())
        self.assertIn("confidence", outcome.explanation.why_this_strategy)

    def test_runner_up_sentence_names_weakest_sub_score(self):
        scored = _sorted(
            _scored("win", impact=0.9, risk=0.1),
            _scored("costly", impact=0.8, risk=0.1, cost=0.95, confidence=0.6, index=1),
        )
        outcome = select_strategy(scored, _candidates("win", "costly"), HOOK_REPORT, ScoringPolicy())
        self.assertIn("weakest on economy (0.05)", outcome.explanation.why_not_others[0])

    def test_selection_result_is_immutable(self):
        outcome = generate_selection(HOOK_REPORT)
        with self.assertRaises(ValidationError):
            outcome.goal = "retention"
        with self.assertRaises(ValidationError):
            outcome.selected.final_score = 9.0
        with self.assertRaises(ValidationError):
            outcome.selected.breakdown.risk_penalty = 0.0
        with self.assertRaises(ValidationError):
            outcome.explanation.confidence_level = "low"
        with self.assertRaises(ValidationError):
            outcome.candidate.id = "other"
        self.assertIsInstance(outcome.explanation.why_not_others, tuple)
        self.assertEqual(outcome.selected.final_score, outcome.scored_strategies[0].final_score)

    def test_tight_ceiling_makes_full_pipeline_fall_back(self):
        outcome = generate_selection(HOOK_REPORT, ScoringPolicy(risk_ceiling=0.1))
        self.assertIsInstance(outcome, BrainFailureOutput)
        self.assertEqual(outcome.mode, "SAFE_OPTIMIZATION_ONLY")
        self.assertIsNotNone(outcome.fallback_suggestion)


if __name__ == "__main__":
    unittest.main()
