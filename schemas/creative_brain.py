"""Decision-pass schemas: analysis report intake, candidates, scores, selection."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

import config


ProblemType = Literal[
    "HOOK_WEAK",
    "MID_PACING_DROP",
    "CTA_WEAK",
    "PROOF_MISSING",
    "CLARITY_LOW",
    "PACING_INCONSISTENT",
    "BENEFIT_UNCLEAR",
    "OBJECTION_UNHANDLED",
    "ATTENTION_DROP_EARLY",
    "ATTENTION_DROP_LATE",
    "DURATION_TOO_LONG",
    "DURATION_TOO_SHORT",
]

FrameworkType = Literal["PAS", "BAB", "FOUR_PS", "HOOK_BENEFIT_CTA", "AIDA"]

ActionType = Literal[
    "compress_segment",
    "remove_segment",
    "reorder_segments",
    "emphasize_segment",
    "split_segment",
    "merge_segments",
]

HookType = Literal[
    "question",
    "shock",
    "emotional",
    "story",
    "problem_solution",
    "statistic",
    "humor",
    "curiosity",
]

SegmentType = Literal[
    "hook",
    "body",
    "problem",
    "solution",
    "benefit",
    "proof",
    "cta",
    "filler",
]

OptimizationGoal = Literal["retention", "ctr", "conversions"]
RiskTolerance = Literal["low", "medium", "high"]
ConfidenceLevel = Literal["low", "medium", "high"]
BrainFailureMode = Literal["NO_ACTION", "SAFE_OPTIMIZATION_ONLY", "NEEDS_MORE_DATA"]


# ---------------------------------------------------------------------------
# Analysis report (produced by the external analyzer, read-only here)
# ---------------------------------------------------------------------------


class DetectedProblem(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ProblemType
    severity: float = Field(ge=0.0, le=1.0)
    details: str = ""
    segment_id: str | None = None

    @property
    def problem_id(self) -> str:
        return f"{self.type}:{self.segment_id or 'global'}"

    @property
    def is_high(self) -> bool:
        return self.severity >= config.HIGH_SEVERITY


class AnalysisSegment(BaseModel):
    model_config = ConfigDict(frozen=True)

    segment_id: str
    type: SegmentType
    start_ms: int = 0
    end_ms: int = 0
    attention: float = Field(default=0.5, ge=0.0, le=1.0)
    hook_strength: float = Field(default=0.5, ge=0.0, le=1.0)
    clarity: float = Field(default=0.5, ge=0.0, le=1.0)
    cta_effectiveness: float = Field(default=0.5, ge=0.0, le=1.0)


class AnalysisReport(BaseModel):
    source_id: str = ""
    duration_seconds: float = 0.0
    aspect_ratio: str = "9:16"
    segments: list[AnalysisSegment] = Field(default_factory=list)
    problems: list[DetectedProblem] = Field(default_factory=list)

    def segment(self, segment_id: str | None) -> AnalysisSegment | None:
        if not segment_id:
            return None
        for row in self.segments:
            if row.segment_id == segment_id:
                return row
        return None

    def first_segment_of(self, segment_type: str) -> AnalysisSegment | None:
        for row in self.segments:
            if row.type == segment_type:
                return row
        return None


# ---------------------------------------------------------------------------
# Policy inputs
# ---------------------------------------------------------------------------


class StrategyOutcome(BaseModel):
    strategy_id: str = ""
    framework: FrameworkType
    was_downloaded: bool = False
    was_regenerated: bool = False


class UserConstraints(BaseModel):
    risk_tolerance: RiskTolerance = "medium"
    locked_segments: list[str] = Field(default_factory=list)
    forbidden_actions: list[ActionType] = Field(default_factory=list)


class ScoringWeights(BaseModel):
    impact: float = Field(gt=0.0)
    risk: float = Field(ge=0.0)
    cost: float = Field(ge=0.0)
    trust: float = Field(ge=0.0)

    @classmethod
    def for_goal(cls, goal: str) -> "ScoringWeights":
        table = config.GOAL_WEIGHTS.get(goal) or config.GOAL_WEIGHTS[config.DEFAULT_GOAL]
        return cls.model_validate(table)


class ScoringPolicy(BaseModel):
    goal: OptimizationGoal = config.DEFAULT_GOAL  # type: ignore[assignment]
    weights: ScoringWeights | None = None
    constraints: UserConstraints = Field(default_factory=UserConstraints)
    past_strategies: list[StrategyOutcome] = Field(default_factory=list)
    severity_floor: float = config.PROBLEM_SEVERITY_FLOOR
    impact_floor: float = config.IMPACT_FLOOR
    acceptance_threshold: float = config.ACCEPTANCE_THRESHOLD
    risk_ceiling: float | None = None
    min_segments: int = config.MIN_SEGMENTS_FOR_SCORING

    def resolved_weights(self) -> ScoringWeights:
        return self.weights or ScoringWeights.for_goal(self.goal)

    def resolved_risk_ceiling(self) -> float:
        if self.risk_ceiling is not None:
            return float(self.risk_ceiling)
        return float(config.RISK_CEILING_BY_TOLERANCE.get(self.constraints.risk_tolerance, 0.5))


# ---------------------------------------------------------------------------
# Candidates and scores
# ---------------------------------------------------------------------------


class StrategyAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: ActionType
    target_segment_type: str
    target_segment_id: str = ""
    factor: float | None = None
    intent: str = ""


class StrategyCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    framework: FrameworkType
    hook_type: HookType
    actions: tuple[StrategyAction, ...] = ()
    target_problem_ids: frozenset[str] = frozenset()
    base_risk: float = 0.0
    base_cost: float = 0.0
    creation_index: int = 0


class ScoreBreakdown(BaseModel):
    """Signed contributions; final_score is their sum with risk and cost subtracted."""

    model_config = ConfigDict(frozen=True)

    impact_contribution: float
    risk_penalty: float
    cost_penalty: float
    trust_bonus: float

    def reconstruct(self) -> float:
        return self.impact_contribution - self.risk_penalty - self.cost_penalty + self.trust_bonus


class ScoredStrategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy_id: str
    framework: FrameworkType
    impact_score: float = Field(ge=0.0, le=1.0)
    risk_score: float = Field(ge=0.0, le=1.0)
    cost_score: float = Field(ge=0.0, le=1.0)
    confidence_score: float = Field(ge=0.0, le=1.0)
    final_score: float
    breakdown: ScoreBreakdown
    creation_index: int = 0

    @property
    def safety(self) -> float:
        return 1.0 - self.risk_score

    @property
    def economy(self) -> float:
        return 1.0 - self.cost_score


# ---------------------------------------------------------------------------
# Selection outputs
# ---------------------------------------------------------------------------


class ExplanationBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    why_this_strategy: str
    why_not_others: tuple[str, ...] = ()
    confidence_level: ConfidenceLevel = "medium"
    expected_outcome: str = ""


class SelectionResult(BaseModel):
    """Creative blueprint: the winning scored strategy plus its explanation."""

    model_config = ConfigDict(frozen=True)

    selected: ScoredStrategy
    candidate: StrategyCandidate
    explanation: ExplanationBlock
    detected_problems: tuple[DetectedProblem, ...] = ()
    scored_strategies: tuple[ScoredStrategy, ...] = ()
    goal: OptimizationGoal = "ctr"


class BrainFailureOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: BrainFailureMode
    reason: str
    fallback_suggestion: str | None = None
    fallback_strategy: ScoredStrategy | None = None
