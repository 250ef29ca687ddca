"""Candidate generation: detected problems -> framework x action-set strategies.

Frameworks are routed by the problems they trigger on; a contraindicated
framework is skipped outright. AIDA is the generic fallback and sorts last.
Every routed framework yields a "full" action set plus a "focused" one that
only touches the worst problem's segments. Identical (problems, actions)
pairs are emitted once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import config
from schemas.creative_brain import (
    AnalysisReport,
    DetectedProblem,
    StrategyAction,
    StrategyCandidate,
    UserConstraints,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FrameworkRule:
    framework: str
    triggers: frozenset[str]
    contraindications: frozenset[str]
    priority: int
    hook_type: str
    base_risk: float
    base_cost: float


FRAMEWORK_RULES: tuple[FrameworkRule, ...] = (
    FrameworkRule(
        framework="HOOK_BENEFIT_CTA",
        triggers=frozenset({"HOOK_WEAK", "CTA_WEAK", "PACING_INCONSISTENT"}),
        contraindications=frozenset({"PROOF_MISSING"}),
        priority=1,
        hook_type="question",
        base_risk=0.2,
        base_cost=0.2,
    ),
    FrameworkRule(
        framework="PAS",
        triggers=frozenset({"MID_PACING_DROP", "CLARITY_LOW", "BENEFIT_UNCLEAR"}),
        contraindications=frozenset({"DURATION_TOO_SHORT"}),
        priority=1,
        hook_type="problem_solution",
        base_risk=0.35,
        base_cost=0.4,
    ),
    FrameworkRule(
        framework="BAB",
        triggers=frozenset({"PROOF_MISSING", "BENEFIT_UNCLEAR", "OBJECTION_UNHANDLED"}),
        contraindications=frozenset({"DURATION_TOO_SHORT"}),
        priority=2,
        hook_type="story",
        base_risk=0.3,
        base_cost=0.4,
    ),
    FrameworkRule(
        framework="FOUR_PS",
        triggers=frozenset({"PROOF_MISSING", "CTA_WEAK", "OBJECTION_UNHANDLED"}),
        contraindications=frozenset({"DURATION_TOO_LONG"}),
        priority=2,
        hook_type="statistic",
        base_risk=0.4,
        base_cost=0.5,
    ),
    FrameworkRule(
        framework="AIDA",
        triggers=frozenset({"ATTENTION_DROP_EARLY", "ATTENTION_DROP_LATE", "CTA_WEAK"}),
        contraindications=frozenset(),
        priority=5,
        hook_type="curiosity",
        base_risk=0.25,
        base_cost=0.4,
    ),
)
RULES_BY_FRAMEWORK = {rule.framework: rule for rule in FRAMEWORK_RULES}

_PRIORITY_PENALTY = 0.1

# (action, target segment type, factor, intent)
_FRAMEWORK_ACTIONS: dict[str, tuple[tuple[str, str, float | None, str], ...]] = {
    "HOOK_BENEFIT_CTA": (
        ("emphasize_segment", "hook", None, "lead with a sharper hook"),
        ("emphasize_segment", "benefit", None, "state the benefit early"),
        ("emphasize_segment", "cta", None, "close on a clear call to action"),
    ),
    "PAS": (
        ("emphasize_segment", "problem", None, "agitate the pain point"),
        ("compress_segment", "solution", 1.2, "tighten the reveal"),
    ),
    "BAB": (
        ("reorder_segments", "benefit", None, "show the after state before the bridge"),
        ("emphasize_segment", "proof", None, "make the transformation credible"),
    ),
    "FOUR_PS": (
        ("emphasize_segment", "hook", None, "open on the promise"),
        ("emphasize_segment", "proof", None, "back the promise with proof"),
        ("emphasize_segment", "cta", None, "push to act"),
    ),
    "AIDA": (
        ("emphasize_segment", "hook", None, "grab attention"),
        ("emphasize_segment", "benefit", None, "build desire"),
    ),
}

_MAX_FILLER_REMOVALS = 2

# Fixed by any framework whose actions land on them (filler cuts), not only by trigger match.
_STRUCTURAL_FIXES = frozenset({"DURATION_TOO_LONG", "MID_PACING_DROP"})

# Segment types an action must touch to count toward fixing a problem type.
PROBLEM_SEGMENT_TYPES: dict[str, frozenset[str]] = {
    "HOOK_WEAK": frozenset({"hook"}),
    "MID_PACING_DROP": frozenset({"solution", "body", "filler"}),
    "CTA_WEAK": frozenset({"cta"}),
    "PROOF_MISSING": frozenset({"proof"}),
    "CLARITY_LOW": frozenset({"problem", "body"}),
    "PACING_INCONSISTENT": frozenset({"hook", "filler", "body"}),
    "BENEFIT_UNCLEAR": frozenset({"benefit", "solution"}),
    "OBJECTION_UNHANDLED": frozenset({"proof", "benefit"}),
    "ATTENTION_DROP_EARLY": frozenset({"hook"}),
    "ATTENTION_DROP_LATE": frozenset({"benefit", "cta"}),
    "DURATION_TOO_LONG": frozenset({"filler", "solution"}),
    "DURATION_TOO_SHORT": frozenset(),
}


def problems_above_floor(
    report: AnalysisReport,
    severity_floor: float | None = None,
    limit: int | None = None,
) -> list[DetectedProblem]:
    """Problems at or above the floor, worst first (stable on ties)."""
    floor = config.PROBLEM_SEVERITY_FLOOR if severity_floor is None else severity_floor
    cap = config.MAX_PROBLEMS_PER_PASS if limit is None else limit
    kept = [row for row in report.problems if row.severity >= floor]
    kept.sort(key=lambda row: -row.severity)
    return kept[:cap] if cap > 0 else kept


def route_frameworks(problems: list[DetectedProblem]) -> list[tuple[str, float]]:
    """Rank frameworks by summed trigger severity minus a priority penalty."""
    present = {row.type for row in problems}
    routed: list[tuple[str, float, int]] = []
    for rule in FRAMEWORK_RULES:
        if rule.contraindications & present:
            logger.debug("Framework %s contraindicated by %s", rule.framework, sorted(rule.contraindications & present))
            continue
        hit = sum(row.severity for row in problems if row.type in rule.triggers)
        if hit <= 0:
            continue
        score = hit - _PRIORITY_PENALTY * (rule.priority - 1)
        routed.append((rule.framework, score, rule.priority))
    if not routed and problems:
        # Nothing matched the problem pattern; AIDA is the generic fallback.
        routed.append(("AIDA", 0.0, RULES_BY_FRAMEWORK["AIDA"].priority))
    routed.sort(key=lambda row: (-row[1], row[2]))
    return [(name, score) for name, score, _ in routed]


def _resolve_actions(framework: str, report: AnalysisReport) -> list[StrategyAction]:
    actions: list[StrategyAction] = []
    for action, segment_type, factor, intent in _FRAMEWORK_ACTIONS[framework]:
        segment = report.first_segment_of(segment_type)
        actions.append(
            StrategyAction(
                action=action,
                target_segment_type=segment_type,
                target_segment_id=segment.segment_id if segment else "",
                factor=factor,
                intent=intent,
            )
        )
    fillers = [row for row in report.segments if row.type == "filler"][:_MAX_FILLER_REMOVALS]
    for row in fillers:
        actions.append(
            StrategyAction(
                action="remove_segment",
                target_segment_type="filler",
                target_segment_id=row.segment_id,
                intent="cut dead air",
            )
        )
    return actions


def _apply_constraints(actions: list[StrategyAction], constraints: UserConstraints) -> list[StrategyAction]:
    locked = set(constraints.locked_segments)
    forbidden = set(constraints.forbidden_actions)
    kept = []
    for row in actions:
        if row.action in forbidden:
            continue
        if row.target_segment_id and row.target_segment_id in locked:
            continue
        kept.append(row)
    return kept


def _touches_problem(problem: DetectedProblem, actions: list[StrategyAction]) -> bool:
    wanted = PROBLEM_SEGMENT_TYPES.get(problem.type, frozenset())
    for row in actions:
        if problem.segment_id and row.target_segment_id == problem.segment_id:
            return True
        if row.target_segment_type in wanted:
            return True
    return False


def _solved_ids(framework: str, problems: list[DetectedProblem], actions: list[StrategyAction]) -> frozenset[str]:
    triggers = RULES_BY_FRAMEWORK[framework].triggers
    solved = set()
    for row in problems:
        if not _touches_problem(row, actions):
            continue
        if row.type in triggers or row.type in _STRUCTURAL_FIXES:
            solved.add(row.problem_id)
    return frozenset(solved)


def generate_candidates(
    report: AnalysisReport,
    constraints: UserConstraints | None = None,
    severity_floor: float | None = None,
) -> list[StrategyCandidate]:
    """Return strategy candidates for the report, or [] when nothing clears the floor."""
    constraints = constraints or UserConstraints()
    problems = problems_above_floor(report, severity_floor=severity_floor)
    if not problems:
        logger.info("Candidate generation: no problem at or above severity floor")
        return []

    top = problems[0]
    candidates: list[StrategyCandidate] = []
    seen: set[tuple[frozenset[str], tuple[StrategyAction, ...]]] = set()

    for framework, route_score in route_frameworks(problems):
        rule = RULES_BY_FRAMEWORK[framework]
        full = _apply_constraints(_resolve_actions(framework, report), constraints)
        focused = [
            row for row in full
            if (top.segment_id and row.target_segment_id == top.segment_id)
            or row.target_segment_type in PROBLEM_SEGMENT_TYPES.get(top.type, frozenset())
        ]
        variants = [
            (full, _solved_ids(framework, problems, full)),
            (focused, frozenset({top.problem_id}) if _touches_problem(top, focused) else frozenset()),
        ]
        for actions, solved in variants:
            if not actions:
                continue
            key = (solved, tuple(actions))
            if key in seen:
                continue
            seen.add(key)
            index = len(candidates)
            candidates.append(
                StrategyCandidate(
                    id=f"strategy_{framework.lower()}_{index:02d}",
                    framework=framework,
                    hook_type=rule.hook_type,
                    actions=tuple(actions),
                    target_problem_ids=solved,
                    base_risk=rule.base_risk,
                    base_cost=rule.base_cost,
                    creation_index=index,
                )
            )
        logger.debug("Framework %s routed (score=%.2f)", framework, route_score)

    logger.info(
        "Candidate generation: problems=%d candidates=%d frameworks=%s",
        len(problems),
        len(candidates),
        sorted({row.framework for row in candidates}),
    )
    return candidates
