"""
StoreGuard Backend: Pydantic Response Schemas
===============================================

What:  Response models for the operational endpoints (/, /health, /api/stats).
Why:   FastAPI validates and documents responses from these models, and the
       storefront's monitoring dashboard parses them.

Every body follows the storefront envelope: a top-level `success` flag,
then either the payload or a `message`.
"""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field


class WelcomeResponse(BaseModel):
    success: bool = True
    message: str
    version: str
    health: str = Field(description="Path of the health check endpoint")


class HealthResponse(BaseModel):
    """
    What:  Health check response for load balancers and container probes.

    The database field reuses the liveness cache, so polling /health does not
    add probe traffic beyond one probe per TTL.
    """
    success: bool = True
    status: str = Field(description="Overall status: healthy or unhealthy")
    message: str
    timestamp: datetime
    environment: str
    version: str
    database: str = Field(description="Database connectivity: connected or disconnected")
    uptime_seconds: float = Field(description="Seconds since service started")


class LivenessSnapshot(BaseModel):
    last_check_age_ms: Optional[float] = Field(
        default=None, description="Age of the cached healthy verdict (null if none)"
    )
    ttl_ms: int
    probe_count: int
    failure_count: int
    last_error: Optional[str] = None


class StatsData(BaseModel):
    active_count: int = Field(description="Requests currently inside the pipeline")
    per_tag_counts: Dict[str, int] = Field(description="In-flight requests per tab id")
    tracked_clients: int = Field(description="Clients with a live rate-limit window")
    rejected_total: int = Field(description="Requests rejected by the rate limiter")
    liveness: LivenessSnapshot
    uptime_seconds: float
    timestamp: datetime


class StatsResponse(BaseModel):
    success: bool = True
    data: StatsData
