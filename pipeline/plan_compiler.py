"""Plan compiler: expand a selection into N bounded, distinct variations.

Variation i takes hook_order[i % 8] and pacing_order[(i + i // 8) % 4], so
the first 32 variations have pairwise distinct (hook, pacing). Transitions
rotate on (i + i // 32) over 30 ordered pairs, which keeps the full
(hook, pacing, transitions) signature distinct well past MAX_VARIATIONS.

Every seeded choice comes from one random.Random(seed); identical inputs
compile to an identical plan.
"""

from __future__ import annotations

import hashlib
import itertools
import logging
import random
from datetime import datetime, timezone

import config
from pipeline.execution_router import route_variation
from schemas.creative_brain import SelectionResult
from schemas.creative_plan import (
    Audience,
    CostEstimate,
    CreativePlan,
    ExecutionStrategy,
    GlobalSettings,
    PlanGeneratorInput,
    Variation,
    VariationReasoning,
)

logger = logging.getLogger(__name__)

PLAN_EXPORT_ENGINE = "plan_export"

HOOK_TYPES: tuple[str, ...] = (
    "question",
    "shock",
    "emotional",
    "story",
    "problem_solution",
    "statistic",
    "humor",
    "curiosity",
)
PACINGS: tuple[str, ...] = ("fast", "medium", "slow", "dynamic")

_TRANSITIONS = ("hard-cut", "zoom", "slide", "whip-pan", "glitch", "fade")
_SIGNATURE_TRANSITION_SETS = (
    ("hard-cut", "zoom"),
    ("slide", "whip-pan"),
    ("glitch", "hard-cut"),
    ("zoom", "slide"),
)
TRANSITION_SETS: tuple[tuple[str, str], ...] = _SIGNATURE_TRANSITION_SETS + tuple(
    pair for pair in itertools.permutations(_TRANSITIONS, 2) if pair not in _SIGNATURE_TRANSITION_SETS
)

_PACING_BASE_SECONDS = {"fast": 22.0, "medium": 27.0, "slow": 32.0}
_DURATION_JITTER_SECONDS = 1.0

MARKET_BY_COUNTRY: dict[str, str] = {
    **{code: "gcc" for code in ("SA", "AE", "KW", "QA", "BH", "OM")},
    **{code: "latam" for code in ("MX", "BR", "AR", "CO", "CL", "PE")},
    **{code: "europe" for code in ("GB", "DE", "FR", "ES", "IT", "NL", "PT", "PL")},
    **{code: "usa" for code in ("US", "CA")},
}

MARKET_HOOK_PREFERENCES: dict[str, tuple[str, ...]] = {
    "usa": ("question", "shock", "humor"),
    "europe": ("statistic", "question", "story"),
    "latam": ("shock", "emotional", "humor"),
    "gcc": ("emotional", "story", "problem_solution"),
}
MARKET_PACING: dict[str, str] = {"usa": "fast", "europe": "medium", "latam": "fast", "gcc": "medium"}

PLATFORM_PACING: dict[str, str] = {
    "tiktok": "fast",
    "instagram-reels": "fast",
    "youtube-shorts": "medium",
    "facebook": "medium",
    "instagram-feed": "medium",
}

_TEXT_OVERLAY_HOOKS = frozenset({"question", "statistic"})


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def market_for_country(country: str) -> str:
    return MARKET_BY_COUNTRY.get((country or "").strip().upper(), "global")


def resolve_audience(audience: Audience | None) -> Audience | None:
    if audience is None:
        return None
    if audience.market != "global":
        return audience
    return audience.model_copy(update={"market": market_for_country(audience.country)})


def hook_order(primary: str, market: str, rng: random.Random) -> list[str]:
    """Selected hook first, then market favourites, then the rest in seeded order."""
    ordered = [primary]
    for hook in MARKET_HOOK_PREFERENCES.get(market, ()):
        if hook not in ordered:
            ordered.append(hook)
    rest = [hook for hook in HOOK_TYPES if hook not in ordered]
    rng.shuffle(rest)
    return ordered + rest


def pacing_order(platform: str, market: str) -> list[str]:
    ordered: list[str] = []
    for preferred in (PLATFORM_PACING.get(platform), MARKET_PACING.get(market)):
        if preferred and preferred not in ordered:
            ordered.append(preferred)
    ordered.extend(p for p in PACINGS if p not in ordered)
    return ordered


def target_duration(index: int, pacing: str, source_duration: float, rng: random.Random) -> float:
    """Pacing-based length nudged toward the source, then clamped to the hard bounds."""
    if pacing == "dynamic":
        base = 20.0 + (index % 4) * 4.0
    else:
        base = _PACING_BASE_SECONDS[pacing]
    value = base if source_duration <= 0 else 0.5 * base + 0.5 * source_duration
    value += rng.uniform(-_DURATION_JITTER_SECONDS, _DURATION_JITTER_SECONDS)
    return round(max(config.DURATION_MIN, min(config.DURATION_MAX, value)), 1)


def required_capabilities(
    hook_type: str,
    pacing: str,
    plan_input: PlanGeneratorInput,
    action_types: set[str],
) -> tuple[str, ...]:
    needed = {"trim", "merge", "transition"}
    if plan_input.aspect_ratio != plan_input.source_aspect_ratio:
        needed.add("resize")
    if hook_type in _TEXT_OVERLAY_HOOKS:
        needed.add("text_overlay")
    if pacing == "fast" or "compress_segment" in action_types:
        needed.add("speed_change")
    return tuple(sorted(needed))


def _plan_id(selection: SelectionResult, plan_input: PlanGeneratorInput) -> str:
    payload = "|".join(
        [
            selection.selected.strategy_id,
            str(plan_input.seed),
            str(plan_input.variation_count),
            plan_input.platform,
            plan_input.aspect_ratio,
            plan_input.audience.model_dump_json() if plan_input.audience else "",
            ",".join(sorted(row.backend_id for row in plan_input.available_engines)),
            str(plan_input.vps_available),
        ]
    )
    return f"plan_{hashlib.sha1(payload.encode('utf-8')).hexdigest()[:12]}"


def compile_plan(selection: SelectionResult, plan_input: PlanGeneratorInput) -> CreativePlan:
    """Build a plan in status 'generating'. Never raises on bad counts; the validator reports them."""
    candidate = selection.candidate
    audience = resolve_audience(plan_input.audience)
    market = audience.market if audience else "global"
    rng = random.Random(plan_input.seed)
    hooks = hook_order(candidate.hook_type, market, rng)
    pacings = pacing_order(plan_input.platform, market)
    action_types = {row.action for row in candidate.actions}

    variations: list[Variation] = []
    minimum = maximum = 0.0
    free_count = paid_count = 0
    for index in range(plan_input.variation_count):
        hook = hooks[index % len(hooks)]
        pacing = pacings[(index + index // len(hooks)) % len(pacings)]
        transitions = TRANSITION_SETS[(index + index // 32) % len(TRANSITION_SETS)]
        duration = target_duration(index, pacing, plan_input.source_duration, rng)
        draft = Variation(
            index=index,
            framework=candidate.framework,
            hook_type=hook,
            pacing=pacing,
            transitions=transitions,
            target_duration=duration,
            engine_id="",
            use_vps=plan_input.vps_available,
            required_capabilities=required_capabilities(hook, pacing, plan_input, action_types),
            reasoning=VariationReasoning(framework="", engine=""),
        )
        decision = route_variation(
            draft,
            plan_input.available_engines,
            plan_input.route_options,
            check_availability=False,
        )
        framework_note = f"{candidate.framework} via {candidate.id}; {hook} hook at {pacing} pacing"
        if decision.selected is not None:
            engine = decision.selected
            costs = [row.cost_per_second * duration for row in decision.chain]
            estimated = round(engine.cost_per_second * duration, 4)
            minimum += min(costs)
            maximum += max(costs)
            update = {
                "engine_id": engine.backend_id,
                "engine_provider": engine.provider,
                "estimated_cost": estimated,
            }
        else:
            estimated = 0.0
            update = {"engine_id": PLAN_EXPORT_ENGINE, "engine_provider": "export", "estimated_cost": 0.0}
        if estimated > 0:
            paid_count += 1
        else:
            free_count += 1
        update["reasoning"] = VariationReasoning(framework=framework_note, engine=decision.reasoning)
        variations.append(draft.model_copy(update=update))

    optimized = round(sum(row.estimated_cost for row in variations), 4)
    if plan_input.vps_available:
        description = "VPS first; cheaper cloud backends as fallback"
    else:
        description = "Cloud backends ordered by cost; plan export when nothing qualifies"
    plan = CreativePlan(
        id=plan_input.plan_id or _plan_id(selection, plan_input),
        status="generating",
        created_at=_now_iso(),
        strategy_id=candidate.id,
        audience=audience,
        global_settings=GlobalSettings(
            aspect_ratio=plan_input.aspect_ratio,
            platform=plan_input.platform,
            source_duration=plan_input.source_duration,
            seed=plan_input.seed,
            goal=selection.goal,
        ),
        variations=tuple(variations),
        route_options=plan_input.route_options,
        execution_strategy=ExecutionStrategy(
            description=description,
            vps_first=plan_input.vps_available,
            fallback_allowed=plan_input.route_options.rendering_mode == "auto",
            parallel_jobs=2 if plan_input.vps_available else 1,
        ),
        cost_estimate=CostEstimate(
            optimized=optimized,
            minimum=round(minimum, 4),
            maximum=round(maximum, 4),
            free_count=free_count,
            paid_count=paid_count,
        ),
    )
    logger.info(
        "Compiled plan %s: strategy=%s variations=%d market=%s cost=%.4f",
        plan.id,
        candidate.id,
        len(variations),
        market,
        optimized,
    )
    return plan
