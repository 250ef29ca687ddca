"""Creative plan schemas: plan state machine, variations, compile inputs, execution result."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

import config
from schemas.creative_brain import FrameworkType, HookType
from schemas.execution import BackendDescriptor, RouteOptions, RouterResult, RouterStatus


PlanStatus = Literal["generating", "validated", "locked"]
Pacing = Literal["fast", "medium", "slow", "dynamic"]
Market = Literal["usa", "europe", "latam", "gcc", "global"]

PLAN_TRANSITIONS: dict[str, frozenset[str]] = {
    "generating": frozenset({"validated"}),
    "validated": frozenset({"locked"}),
    "locked": frozenset(),
}


class InvalidStateError(RuntimeError):
    """Illegal plan status transition. Always a caller bug."""

    def __init__(self, message: str, plan_id: str = "", current: str = "", requested: str = ""):
        self.plan_id = plan_id
        self.current = current
        self.requested = requested
        super().__init__(message)


class PlanLockedError(InvalidStateError):
    """Attempt to change a locked plan."""


def next_plan_status(current: str, requested: str, plan_id: str = "") -> str:
    """Pure transition function for plan status. Never moves backward."""
    if requested not in PLAN_TRANSITIONS.get(current, frozenset()):
        raise InvalidStateError(
            f"Plan {plan_id or '?'}: cannot move from {current!r} to {requested!r}",
            plan_id=plan_id,
            current=current,
            requested=requested,
        )
    return requested


class Audience(BaseModel):
    model_config = ConfigDict(frozen=True)

    language: str = ""
    country: str = ""
    market: Market = "global"

    @property
    def configured(self) -> bool:
        return bool(self.language.strip() and self.country.strip())


class GlobalSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    aspect_ratio: str = "9:16"
    platform: str = "tiktok"
    source_duration: float = 0.0
    seed: int = 0
    goal: str = ""


class VariationReasoning(BaseModel):
    model_config = ConfigDict(frozen=True)

    framework: str
    engine: str


class Variation(BaseModel):
    """One render job inside a plan. Read-only after compile."""

    model_config = ConfigDict(frozen=True)

    index: int
    framework: FrameworkType
    hook_type: HookType
    pacing: Pacing
    transitions: tuple[str, ...] = ()
    target_duration: float
    engine_id: str
    engine_provider: str = ""
    use_vps: bool = False
    estimated_cost: float = 0.0
    required_capabilities: tuple[str, ...] = ()
    reasoning: VariationReasoning

    @property
    def signature(self) -> tuple[str, str, tuple[str, ...]]:
        return (self.hook_type, self.pacing, self.transitions)


class ExecutionStrategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str
    vps_first: bool = False
    fallback_allowed: bool = True
    parallel_jobs: int = 1


class CostEstimate(BaseModel):
    model_config = ConfigDict(frozen=True)

    optimized: float = 0.0
    minimum: float = 0.0
    maximum: float = 0.0
    free_count: int = 0
    paid_count: int = 0


class CreativePlan(BaseModel):
    """Bounded set of variations derived from one selection.

    Status only moves generating -> validated -> locked; every status
    assignment goes through next_plan_status. Once locked, every attribute
    assignment raises PlanLockedError and nested models are frozen, so a
    changed plan needs a new id.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str
    status: PlanStatus = "generating"
    created_at: str = ""
    locked_at: str = ""
    strategy_id: str = ""
    audience: Audience | None = None
    global_settings: GlobalSettings = Field(default_factory=GlobalSettings)
    variations: tuple[Variation, ...] = ()
    route_options: RouteOptions = Field(default_factory=RouteOptions)
    execution_strategy: ExecutionStrategy
    cost_estimate: CostEstimate = Field(default_factory=CostEstimate)

    def __setattr__(self, name: str, value: Any) -> None:
        if self.__dict__.get("status") == "locked":
            raise PlanLockedError(
                f"Plan {self.id} is locked; '{name}' cannot change",
                plan_id=self.id,
                current="locked",
                requested=f"set:{name}",
            )
        if name == "status":
            value = next_plan_status(self.__dict__.get("status", ""), value, self.id)
        super().__setattr__(name, value)

    @property
    def is_locked(self) -> bool:
        return self.status == "locked"


class PlanGeneratorInput(BaseModel):
    """Everything the compiler needs. No ambient lookups happen during compile."""

    variation_count: int = Field(default=5, ge=0)
    platform: str = "tiktok"
    aspect_ratio: str = "9:16"
    source_aspect_ratio: str = "9:16"
    source_duration: float = Field(default=0.0, ge=0.0)
    vps_available: bool = False
    available_engines: list[BackendDescriptor] = Field(default_factory=list)
    audience: Audience | None = None
    route_options: RouteOptions = Field(default_factory=RouteOptions)
    seed: int = config.PLAN_SEED
    plan_id: str = ""


class PlanValidationResult(BaseModel):
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class PlanExecutionResult(BaseModel):
    """Aggregate of one plan run. The plan and every artifact are always kept."""

    plan_id: str
    status: RouterStatus
    results: list[RouterResult] = Field(default_factory=list)
    plan: CreativePlan
    processing_time_ms: int = 0
    human_readable_message: str = ""

    @property
    def artifacts(self) -> list[RouterResult]:
        return [row for row in self.results if row.completed]

    @property
    def routing_failures(self) -> list[RouterResult]:
        return [row for row in self.results if row.failure_kind == "routing_failure"]
