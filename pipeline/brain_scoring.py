"""Multi-criteria scoring for strategy candidates.

final_score = impact_contribution - risk_penalty - cost_penalty + trust_bonus

The breakdown holds each weighted term (w * sub_score) and final_score is
computed from the breakdown itself, so one always reconstructs the other.
"""

from __future__ import annotations

import logging

import config
from pipeline.brain_candidates import problems_above_floor
from schemas.creative_brain import (
    AnalysisReport,
    DetectedProblem,
    ScoreBreakdown,
    ScoredStrategy,
    ScoringPolicy,
    StrategyCandidate,
    StrategyOutcome,
)

logger = logging.getLogger(__name__)

_HEALTHY_TOUCH_RISK = 0.3
_COST_PER_ACTION = 0.05
_SEGMENTS_FOR_FULL_EVIDENCE = 6
_DEFAULT_HISTORY_RATE = 0.5


def _clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, value))


def _severity_weight(problem: DetectedProblem) -> float:
    if problem.severity > config.IMPACT_EMPHASIS_SEVERITY:
        return problem.severity * config.IMPACT_EMPHASIS_WEIGHT
    return problem.severity


def impact_score(candidate: StrategyCandidate, problems: list[DetectedProblem]) -> float:
    """Weighted share of total problem severity the candidate addresses."""
    total = sum(_severity_weight(row) for row in problems)
    if total <= 0:
        return 0.0
    solved = sum(_severity_weight(row) for row in problems if row.problem_id in candidate.target_problem_ids)
    return _clamp(solved / total)


def risk_score(candidate: StrategyCandidate, report: AnalysisReport) -> float:
    """Base framework risk plus the share of actions landing on healthy segments."""
    touched = [row for row in candidate.actions if row.target_segment_id]
    healthy = 0
    for row in touched:
        segment = report.segment(row.target_segment_id)
        if segment is not None and segment.attention >= config.HEALTHY_SEGMENT_ATTENTION:
            healthy += 1
    share = healthy / len(touched) if touched else 0.0
    value = candidate.base_risk + _HEALTHY_TOUCH_RISK * share
    if candidate.framework == "AIDA":
        value += config.AIDA_RISK_SURCHARGE
    return _clamp(value)


def cost_score(candidate: StrategyCandidate) -> float:
    return _clamp(candidate.base_cost + _COST_PER_ACTION * len(candidate.actions))


def framework_history_rate(framework: str, history: list[StrategyOutcome]) -> float:
    """Success rate of past runs with this framework; 0.5 when there is none.

    A run counts as a success when the output was downloaded and not regenerated.
    """
    relevant = [row for row in history if row.framework == framework]
    if not relevant:
        return _DEFAULT_HISTORY_RATE
    wins = sum(1 for row in relevant if row.was_downloaded and not row.was_regenerated)
    return wins / len(relevant)


def confidence_score(
    candidate: StrategyCandidate,
    report: AnalysisReport,
    problems: list[DetectedProblem],
    history: list[StrategyOutcome],
) -> float:
    data_volume = min(1.0, len(report.segments) / _SEGMENTS_FOR_FULL_EVIDENCE)
    solved = [row.severity for row in problems if row.problem_id in candidate.target_problem_ids]
    clarity = sum(solved) / len(solved) if solved else 0.0
    rate = framework_history_rate(candidate.framework, history)
    return _clamp(0.4 * data_volume + 0.4 * clarity + 0.2 * rate)


def score_candidate(
    candidate: StrategyCandidate,
    report: AnalysisReport,
    policy: ScoringPolicy,
    problems: list[DetectedProblem] | None = None,
) -> ScoredStrategy:
    if problems is None:
        problems = problems_above_floor(report, severity_floor=policy.severity_floor)
    weights = policy.resolved_weights()

    impact = round(impact_score(candidate, problems), 4)
    risk = round(risk_score(candidate, report), 4)
    cost = round(cost_score(candidate), 4)
    confidence = round(confidence_score(candidate, report, problems, policy.past_strategies), 4)

    breakdown = ScoreBreakdown(
        impact_contribution=weights.impact * impact,
        risk_penalty=weights.risk * risk,
        cost_penalty=weights.cost * cost,
        trust_bonus=weights.trust * confidence,
    )
    return ScoredStrategy(
        strategy_id=candidate.id,
        framework=candidate.framework,
        impact_score=impact,
        risk_score=risk,
        cost_score=cost,
        confidence_score=confidence,
        final_score=breakdown.reconstruct(),
        breakdown=breakdown,
        creation_index=candidate.creation_index,
    )


def score_candidates(
    candidates: list[StrategyCandidate],
    report: AnalysisReport,
    policy: ScoringPolicy,
) -> list[ScoredStrategy]:
    """Score every candidate; best first, ties by lower risk then creation order."""
    problems = problems_above_floor(report, severity_floor=policy.severity_floor)
    scored = [score_candidate(row, report, policy, problems) for row in candidates]
    scored.sort(key=lambda row: (-row.final_score, row.risk_score, row.creation_index))
    for row in scored:
        logger.debug(
            "Scored %s (%s): final=%.3f impact=%.2f risk=%.2f cost=%.2f confidence=%.2f",
            row.strategy_id,
            row.framework,
            row.final_score,
            row.impact_score,
            row.risk_score,
            row.cost_score,
            row.confidence_score,
        )
    return scored
