"""Per-variation backend routing under tier, capability and availability constraints.

Chain order: qualifying VPS backends (only when the variation asks for VPS)
by priority, then every other qualifying backend from cheapest cost profile
up, local ones first when preferred, then by priority. The head of the chain
is the selected backend; the rest is the fallback order the supervisor walks.
"""

from __future__ import annotations

import logging

from schemas.creative_plan import Variation
from schemas.execution import (
    COST_PROFILE_RANK,
    TIER_COST_PROFILES,
    BackendDescriptor,
    RouteOptions,
    RoutingAttempt,
    RoutingDecision,
    RoutingFailure,
)

logger = logging.getLogger(__name__)


def _rejection_reason(
    backend: BackendDescriptor,
    variation: Variation,
    options: RouteOptions,
    check_availability: bool,
) -> str:
    """Return why the backend cannot take the variation, or "" when it qualifies."""
    if check_availability and not backend.available:
        return "backend unavailable"
    if options.rendering_mode == "server_only" and not backend.is_vps:
        return f"rendering mode server_only excludes {backend.backend_class} backends"
    if options.rendering_mode == "cloud_only" and backend.is_vps:
        return "rendering mode cloud_only excludes vps backends"
    if backend.is_vps and not variation.use_vps and options.rendering_mode != "server_only":
        return "variation is not planned for vps"
    allowed = TIER_COST_PROFILES.get(options.user_tier, TIER_COST_PROFILES["free"])
    if backend.cost_profile not in allowed:
        return f"cost profile {backend.cost_profile} not allowed for tier {options.user_tier}"
    missing = sorted(set(variation.required_capabilities) - set(backend.capabilities))
    if missing:
        return f"missing capabilities: {', '.join(missing)}"
    if backend.max_duration_sec is not None and variation.target_duration > backend.max_duration_sec:
        return f"duration {variation.target_duration:.1f}s exceeds backend limit {backend.max_duration_sec:.1f}s"
    return ""


def _fallback_key(backend: BackendDescriptor, prefer_local: bool) -> tuple:
    local_rank = 0 if (prefer_local and backend.local) else 1
    return (COST_PROFILE_RANK.get(backend.cost_profile, 99), local_rank, backend.priority, backend.backend_id)


def route_variation(
    variation: Variation,
    backends: list[BackendDescriptor],
    route_options: RouteOptions | None = None,
    check_availability: bool = True,
) -> RoutingDecision:
    """Select a backend for one variation.

    With check_availability=False this is the plan-time dry run: the same
    policy, without trusting the current availability flags.
    """
    options = route_options or RouteOptions()
    required = sorted(variation.required_capabilities)
    attempts: list[RoutingAttempt] = []
    vps_chain: list[BackendDescriptor] = []
    other_chain: list[BackendDescriptor] = []

    for backend in sorted(backends, key=lambda row: (row.priority, row.backend_id)):
        reason = _rejection_reason(backend, variation, options, check_availability)
        if reason:
            attempts.append(RoutingAttempt(backend_id=backend.backend_id, accepted=False, reason=reason))
            continue
        attempts.append(RoutingAttempt(backend_id=backend.backend_id, accepted=True, reason="qualifies"))
        if backend.is_vps:
            vps_chain.append(backend)
        else:
            other_chain.append(backend)

    other_chain.sort(key=lambda row: _fallback_key(row, options.prefer_local))
    chain = vps_chain + other_chain

    if not chain:
        reason = (
            f"No backend qualifies for variation {variation.index} "
            f"(requires {', '.join(required) or 'nothing'}, tier {options.user_tier}, "
            f"mode {options.rendering_mode})"
        )
        logger.warning("Routing failed: %s; attempts=%s", reason, [f"{a.backend_id}: {a.reason}" for a in attempts])
        return RoutingDecision(
            variation_index=variation.index,
            attempts=attempts,
            reasoning=reason,
            failure=RoutingFailure(
                variation_index=variation.index,
                required_capabilities=required,
                attempts=attempts,
                reason=reason,
            ),
        )

    selected = chain[0]
    if selected.is_vps:
        reasoning = (
            f"VPS backend {selected.backend_id} advertises every required capability "
            f"({', '.join(required) or 'none'}), priority {selected.priority}"
        )
    else:
        why_not_vps = "vps not requested" if not variation.use_vps else "no qualifying vps backend"
        reasoning = (
            f"{why_not_vps}; {selected.backend_class} backend {selected.backend_id} is the cheapest "
            f"qualifying option (cost {selected.cost_profile}, priority {selected.priority}"
            f"{', local' if selected.local else ''})"
        )
    logger.info(
        "Route variation=%d -> %s (%s); fallbacks=%s",
        variation.index,
        selected.backend_id,
        reasoning,
        [row.backend_id for row in chain[1:]],
    )
    return RoutingDecision(
        variation_index=variation.index,
        selected=selected,
        chain=chain,
        attempts=attempts,
        reasoning=reasoning,
    )
