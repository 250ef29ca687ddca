from __future__ import annotations

import unittest

from pipeline.brain_candidates import generate_candidates
from pipeline.brain_scoring import (
    framework_history_rate,
    impact_score,
    risk_score,
    score_candidate,
    score_candidates,
)
from schemas.creative_brain import (
    AnalysisReport,
    AnalysisSegment,
    DetectedProblem,
    ScoringPolicy,
    StrategyAction,
    StrategyCandidate,
    StrategyOutcome,
)


def _report(*problems: DetectedProblem) -> AnalysisReport:
    return AnalysisReport(
        segments=[
            AnalysisSegment(segment_id="h1", type="hook", attention=0.3),
            AnalysisSegment(segment_id="p1", type="problem", attention=0.5),
            AnalysisSegment(segment_id="b1", type="benefit", attention=0.9),
            AnalysisSegment(segment_id="c1", type="cta", attention=0.4),
            AnalysisSegment(segment_id="f1", type="filler", attention=0.1),
        ],
        problems=list(problems),
    )


def _candidate(cid: str, framework: str = "PAS", targets=("HOOK_WEAK:h1",), actions=(), index: int = 0) -> StrategyCandidate:
    return StrategyCandidate(
        id=cid,
        framework=framework,
        hook_type="question",
        actions=tuple(actions),
        target_problem_ids=frozenset(targets),
        base_risk=0.2,
        base_cost=0.2,
        creation_index=index,
    )


class ScoringTests(unittest.TestCase):
    def setUp(self):
        self.report = _report(
            DetectedProblem(type="HOOK_WEAK", severity=0.9, segment_id="h1"),
            DetectedProblem(type="CTA_WEAK", severity=0.45, segment_id="c1"),
        )
        self.policy = ScoringPolicy(goal="ctr")

    def test_final_score_reconstructs_from_breakdown(self):
        scored = score_candidates(generate_candidates(self.report), self.report, self.policy)
        self.assertTrue(scored)
        weights = self.policy.resolved_weights()
        for row in scored:
            b = row.breakdown
            self.assertEqual(row.final_score, b.impact_contribution - b.risk_penalty - b.cost_penalty + b.trust_bonus)
            self.assertAlmostEqual(b.impact_contribution, weights.impact * row.impact_score)
            self.assertAlmostEqual(b.risk_penalty, weights.risk * row.risk_score)
            self.assertAlmostEqual(b.cost_penalty, weights.cost * row.cost_score)
            self.assertAlmostEqual(b.trust_bonus, weights.trust * row.confidence_score)
            for value in (row.impact_score, row.risk_score, row.cost_score, row.confidence_score):
                self.assertGreaterEqual(value, 0.0)
                self.assertLessEqual(value, 1.0)

    def test_sorted_best_first_with_risk_then_creation_tiebreak(self):
        scored = score_candidates(generate_candidates(self.report), self.report, self.policy)
        keys = [(-row.final_score, row.risk_score, row.creation_index) for row in scored]
        self.assertEqual(keys, sorted(keys))

    def test_identical_scores_keep_creation_order(self):
        late = _candidate("late", index=5)
        early = _candidate("early", index=1)
        scored = score_candidates([late, early], self.report, self.policy)
        self.assertEqual(scored[0].final_score, scored[1].final_score)
        self.assertEqual([row.strategy_id for row in scored], ["early", "late"])

    def test_impact_weights_severe_problems_more(self):
        problems = self.report.problems
        only_hook = _candidate("hook", targets=("HOOK_WEAK:h1",))
        only_cta = _candidate("cta", targets=("CTA_WEAK:c1",))
        # 0.9 * 1.5 = 1.35 against 0.45 unweighted
        self.assertAlmostEqual(impact_score(only_hook, problems), 1.35 / 1.8)
        self.assertAlmostEqual(impact_score(only_cta, problems), 0.45 / 1.8)

    def test_risk_counts_actions_on_healthy_segments(self):
        actions = (
            StrategyAction(action="emphasize_segment", target_segment_type="benefit", target_segment_id="b1"),
            StrategyAction(action="emphasize_segment", target_segment_type="hook", target_segment_id="h1"),
        )
        self.assertAlmostEqual(risk_score(_candidate("x", actions=actions), self.report), 0.2 + 0.3 * 0.5)
        self.assertAlmostEqual(risk_score(_candidate("y", framework="AIDA"), self.report), 0.2 + 0.15)

    def test_history_rate_counts_downloaded_not_regenerated(self):
        history = [
            StrategyOutcome(framework="PAS", was_downloaded=True),
            StrategyOutcome(framework="PAS", was_downloaded=True, was_regenerated=True),
            StrategyOutcome(framework="BAB", was_downloaded=False),
        ]
        self.assertEqual(framework_history_rate("PAS", history), 0.5)
        self.assertEqual(framework_history_rate("BAB", history), 0.0)
        self.assertEqual(framework_history_rate("AIDA", history), 0.5)

    def test_history_raises_confidence(self):
        candidate = _candidate("pas")
        baseline = score_candidate(candidate, self.report, self.policy)
        proven = ScoringPolicy(
            goal="ctr",
            past_strategies=[StrategyOutcome(framework="PAS", was_downloaded=True)],
        )
        self.assertGreater(score_candidate(candidate, self.report, proven).confidence_score, baseline.confidence_score)

    def test_goal_changes_weights(self):
        candidate = _candidate("pas")
        retention = score_candidate(candidate, self.report, ScoringPolicy(goal="retention"))
        self.assertAlmostEqual(retention.breakdown.impact_contribution, 1.2 * retention.impact_score)
        self.assertAlmostEqual(retention.breakdown.risk_penalty, 0.8 * retention.risk_score)


if __name__ == "__main__":
    unittest.main()
