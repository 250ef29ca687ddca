"""Execution schemas: backend descriptors, routing decisions, per-variation results."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


Capability = Literal[
    "trim",
    "merge",
    "resize",
    "text_overlay",
    "transition",
    "speed_change",
    "format_convert",
]

BackendClass = Literal["vps", "cloud", "edge"]
CostProfile = Literal["free", "low", "medium", "high"]
UserTier = Literal["free", "pro", "enterprise"]
RenderingMode = Literal["auto", "server_only", "cloud_only"]

RouterStatus = Literal["completed", "partial_success"]
FailureKind = Literal["routing_failure", "render_failed", "execution_timeout", "cancelled"]
VariationJobState = Literal["queued", "running", "done", "error"]

COST_PROFILE_RANK: dict[str, int] = {"free": 0, "low": 1, "medium": 2, "high": 3}

TIER_COST_PROFILES: dict[str, frozenset[str]] = {
    "free": frozenset({"free"}),
    "pro": frozenset({"free", "low", "medium"}),
    "enterprise": frozenset({"free", "low", "medium", "high"}),
}

VARIATION_JOB_TRANSITIONS: dict[str, frozenset[str]] = {
    "queued": frozenset({"running", "error"}),
    "running": frozenset({"done", "error"}),
    "done": frozenset(),
    "error": frozenset(),
}


def next_job_state(current: str, requested: str) -> str:
    """Pure transition for a variation job; raises ValueError on an illegal edge."""
    allowed = VARIATION_JOB_TRANSITIONS.get(current)
    if allowed is None:
        raise ValueError(f"Unknown variation job state: {current!r}")
    if requested not in allowed:
        raise ValueError(f"Illegal variation job transition: {current} -> {requested}")
    return requested


class BackendDescriptor(BaseModel):
    """A rendering backend as advertised to the router."""

    backend_id: str
    name: str = ""
    provider: str = ""
    backend_class: BackendClass = "cloud"
    capabilities: frozenset[str] = frozenset()
    cost_profile: CostProfile = "medium"
    cost_per_second: float = Field(default=0.0, ge=0.0)
    priority: int = 10
    available: bool = True
    local: bool = False
    max_duration_sec: float | None = None

    @property
    def is_vps(self) -> bool:
        return self.backend_class == "vps"

    def supports(self, required: set[str] | frozenset[str] | tuple[str, ...]) -> bool:
        return set(required).issubset(self.capabilities)


class RouteOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_tier: UserTier = "pro"
    prefer_local: bool = True
    rendering_mode: RenderingMode = "auto"


class RoutingAttempt(BaseModel):
    backend_id: str
    accepted: bool
    reason: str


class RoutingFailure(BaseModel):
    """No backend qualified for a variation; carries the attempted chain."""

    variation_index: int
    required_capabilities: list[str] = Field(default_factory=list)
    attempts: list[RoutingAttempt] = Field(default_factory=list)
    reason: str = ""


class RoutingDecision(BaseModel):
    variation_index: int
    selected: BackendDescriptor | None = None
    chain: list[BackendDescriptor] = Field(default_factory=list)
    attempts: list[RoutingAttempt] = Field(default_factory=list)
    reasoning: str = ""
    failure: RoutingFailure | None = None

    @property
    def ok(self) -> bool:
        return self.selected is not None


class RouterResult(BaseModel):
    variation_index: int
    status: RouterStatus
    video_url: str | None = None
    output_path: str = ""
    processing_time_ms: int = 0
    human_readable_message: str = ""
    backend_id: str = ""
    attempts: int = 0
    job_state: VariationJobState = "queued"
    job_history: list[VariationJobState] = Field(default_factory=lambda: ["queued"])
    failure_kind: FailureKind | None = None
    routing_failure: RoutingFailure | None = None
    error: str = ""

    @property
    def completed(self) -> bool:
        return self.status == "completed"
