"""
StoreGuard Backend: Diagnostics Route
=======================================

What:  GET /api/stats, a read-only snapshot of the guard state.
Who:   The operations dashboard, and developers chasing "which tab is
       hammering the API".
When:  Development and test environments only; production answers 403
       so internal counters never leak to the public internet.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from storeguard.config import Settings
from storeguard.responses import error_response
from storeguard.routes.health import get_guards, get_settings, uptime_seconds
from storeguard.schemas.health import LivenessSnapshot, StatsData, StatsResponse
from storeguard.state import GuardState

router = APIRouter(prefix="/api", tags=["Diagnostics"])


@router.get(
    "/stats",
    response_model=StatsResponse,
    responses={403: {"description": "Not available in production"}},
    summary="Guard layer diagnostics",
)
async def server_stats(
    guards: GuardState = Depends(get_guards),
    cfg: Settings = Depends(get_settings),
):
    if cfg.is_production:
        return error_response(403, "Not available in production")

    gauge = guards.gauge.snapshot()
    return StatsResponse(
        data=StatsData(
            active_count=gauge["active_count"],
            per_tag_counts=gauge["per_tag_counts"],
            tracked_clients=guards.registry.tracked_clients,
            rejected_total=guards.registry.rejected_total,
            liveness=LivenessSnapshot(**guards.liveness.snapshot()),
            uptime_seconds=uptime_seconds(),
            timestamp=datetime.now(timezone.utc),
        )
    )
