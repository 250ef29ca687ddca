"""Selection policy and explanation for scored strategies."""

from __future__ import annotations

import logging

from pipeline.brain_candidates import problems_above_floor
from schemas.creative_brain import (
    AnalysisReport,
    BrainFailureOutput,
    DetectedProblem,
    ExplanationBlock,
    ScoredStrategy,
    ScoringPolicy,
    SelectionResult,
    StrategyCandidate,
)

logger = logging.getLogger(__name__)

FRAMEWORK_RATIONALE: dict[str, str] = {
    "HOOK_BENEFIT_CTA": "Hook, benefit, CTA is a direct, efficient structure that maximizes impact in minimal time.",
    "PAS": "Problem-Agitate-Solution emphasizes pain points to create urgency before revealing the solution.",
    "BAB": "Before-After-Bridge shows the transformation clearly, building desire through contrast.",
    "FOUR_PS": "Promise-Picture-Proof-Push gives a complete persuasion arc with strong credibility.",
    "AIDA": "AIDA was chosen because no other framework matched the problem pattern better.",
}

_SAFE_TRIM_SUGGESTION = (
    "Apply safe optimizations only: trim filler and dead air, keep the existing hook and structure."
)


def _problem_phrase(problem: DetectedProblem) -> str:
    return problem.type.lower().replace("_", " ")


def _confidence_level(confidence: float) -> str:
    if confidence > 0.7:
        return "high"
    if confidence > 0.4:
        return "medium"
    return "low"


def _weakest_sub_score(row: ScoredStrategy) -> tuple[str, float]:
    # All four are oriented so that higher is better.
    options = [
        ("impact", row.impact_score),
        ("safety", row.safety),
        ("economy", row.economy),
        ("confidence", row.confidence_score),
    ]
    return min(options, key=lambda item: item[1])


def build_explanation(
    winner: ScoredStrategy,
    candidate: StrategyCandidate,
    runners_up: list[ScoredStrategy],
    problems: list[DetectedProblem],
) -> ExplanationBlock:
    solved = [row for row in problems if row.problem_id in candidate.target_problem_ids]
    details = ". ".join((row.details or _problem_phrase(row)).rstrip(".") for row in solved)

    breakdown = winner.breakdown
    if breakdown.impact_contribution >= breakdown.trust_bonus:
        driver = f"Its largest contribution is expected impact (+{breakdown.impact_contribution:.2f})."
    else:
        driver = f"Its largest contribution is evidence-backed confidence (+{breakdown.trust_bonus:.2f})."
    rationale = FRAMEWORK_RATIONALE.get(
        candidate.framework,
        f"The {candidate.framework} framework best addresses these issues.",
    )
    why_this = " ".join(part for part in (f"{details}." if details else "", rationale, driver) if part)

    why_not = []
    for row in runners_up:
        name, value = _weakest_sub_score(row)
        why_not.append(
            f"{row.framework} ({row.strategy_id}): weakest on {name} ({value:.2f}); "
            f"final score {row.final_score:.3f} vs {winner.final_score:.3f}."
        )

    lift = round(winner.impact_score * 25)
    target = _problem_phrase(solved[0]) if solved else "overall performance"
    return ExplanationBlock(
        why_this_strategy=why_this,
        why_not_others=why_not,
        confidence_level=_confidence_level(winner.confidence_score),
        expected_outcome=f"Expected {lift}% improvement in {target}",
    )


def _describe_fallback(row: ScoredStrategy) -> str:
    return (
        f"Use {row.framework} ({row.strategy_id}) instead: lower impact "
        f"({row.impact_score:.2f}) but risk {row.risk_score:.2f} stays within tolerance."
    )


def select_strategy(
    scored: list[ScoredStrategy],
    candidates: list[StrategyCandidate],
    report: AnalysisReport,
    policy: ScoringPolicy,
) -> SelectionResult | BrainFailureOutput:
    """Pick the winner from best-first scored strategies, or return a structured failure."""
    problems = problems_above_floor(report, severity_floor=policy.severity_floor)
    if not problems:
        logger.info("Selection: NO_ACTION (no problem above floor %.2f)", policy.severity_floor)
        return BrainFailureOutput(
            mode="NO_ACTION",
            reason=f"No problem reaches severity {policy.severity_floor:.2f}; the video is performing well.",
        )

    if len(report.segments) < policy.min_segments or not scored:
        logger.info(
            "Selection: NEEDS_MORE_DATA (segments=%d, candidates=%d)",
            len(report.segments),
            len(scored),
        )
        return BrainFailureOutput(
            mode="NEEDS_MORE_DATA",
            reason=(
                f"Analysis has {len(report.segments)} segment(s) and {len(scored)} scorable "
                f"candidate(s); at least {policy.min_segments} segments are needed to score reliably."
            ),
            fallback_suggestion="Re-run analysis on a longer or higher-quality source.",
        )

    if all(row.impact_score < policy.impact_floor for row in scored):
        logger.info("Selection: NO_ACTION (all impact below %.2f)", policy.impact_floor)
        return BrainFailureOutput(
            mode="NO_ACTION",
            reason="No strategy is expected to improve the video meaningfully; it is performing well.",
        )

    ceiling = policy.resolved_risk_ceiling()
    top = scored[0]
    if top.risk_score > ceiling:
        safer = [row for row in scored if row.risk_score <= ceiling and row.impact_score >= policy.impact_floor]
        fallback = safer[0] if safer else None
        logger.warning(
            "Selection: SAFE_OPTIMIZATION_ONLY (top %s risk %.2f > ceiling %.2f, safer=%s)",
            top.strategy_id,
            top.risk_score,
            ceiling,
            fallback.strategy_id if fallback else None,
        )
        return BrainFailureOutput(
            mode="SAFE_OPTIMIZATION_ONLY",
            reason=(
                f"Best strategy {top.strategy_id} carries risk {top.risk_score:.2f}, "
                f"above the {policy.constraints.risk_tolerance} tolerance ceiling of {ceiling:.2f}."
            ),
            fallback_suggestion=_describe_fallback(fallback) if fallback else _SAFE_TRIM_SUGGESTION,
            fallback_strategy=fallback,
        )

    if top.final_score < policy.acceptance_threshold:
        useful = [row for row in scored if row.impact_score >= policy.impact_floor]
        fallback = min(useful, key=lambda row: (row.risk_score, row.creation_index)) if useful else None
        logger.warning(
            "Selection: SAFE_OPTIMIZATION_ONLY (top final %.3f < threshold %.3f)",
            top.final_score,
            policy.acceptance_threshold,
        )
        return BrainFailureOutput(
            mode="SAFE_OPTIMIZATION_ONLY",
            reason=(
                f"Best final score {top.final_score:.3f} is below the acceptance "
                f"threshold {policy.acceptance_threshold:.3f}."
            ),
            fallback_suggestion=_describe_fallback(fallback) if fallback else _SAFE_TRIM_SUGGESTION,
            fallback_strategy=fallback,
        )

    by_id = {row.id: row for row in candidates}
    candidate = by_id[top.strategy_id]
    explanation = build_explanation(top, candidate, scored[1:], problems)
    logger.info(
        "Selection: %s (%s) final=%.3f confidence=%s",
        top.strategy_id,
        top.framework,
        top.final_score,
        explanation.confidence_level,
    )
    return SelectionResult(
        selected=top,
        candidate=candidate,
        explanation=explanation,
        detected_problems=tuple(problems),
        scored_strategies=tuple(scored),
        goal=policy.goal,
    )
