"""
System health and monitoring API routes
"""

from fastapi import APIRouter
from pydantic import BaseModel
from typing import Dict, List, Optional
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)

# Response models
class StartupStatusResponse(BaseModel):
    status: str
    reason: Optional[str] = None
    entity: Optional[str] = None
    container: Optional[str] = None

class LastCycleResponse(BaseModel):
    mode: str
    state: str
    found: int
    accepted: int
    rejected: int
    state_reads_failed: int
    duration_seconds: float
    error: Optional[str] = None

class HealthResponse(BaseModel):
    status: str
    startup: StartupStatusResponse
    device_count: int
    discovery_running: bool
    last_cycle: Optional[LastCycleResponse] = None
    stats: Dict[str, int]
    poller: Dict[str, int]
    timestamp: datetime

class ProgressLogResponse(BaseModel):
    messages: List[str]


def create_system_routes(server):
    """Create system monitoring routes"""
    router = APIRouter(prefix="/api/system", tags=["system"])

    @router.get("/health", response_model=HealthResponse)
    async def system_health():
        """Startup registration outcome, registry size and service counters"""
        startup = server.startup_result
        cycle = server.last_cycle

        last_cycle = None
        if cycle is not None:
            last_cycle = LastCycleResponse(
                mode=cycle.mode.value,
                state=cycle.state.value,
                found=cycle.found,
                accepted=cycle.accepted,
                rejected=cycle.rejected,
                state_reads_failed=cycle.state_reads_failed,
                duration_seconds=cycle.duration_seconds,
                error=cycle.error
            )

        return HealthResponse(
            status=startup.status.value,
            startup=StartupStatusResponse(
                status=startup.status.value,
                reason=startup.reason,
                entity=startup.entity.value if startup.entity else None,
                container=startup.container.value if startup.container else None
            ),
            device_count=len(server.registry),
            discovery_running=server.discovery_running,
            last_cycle=last_cycle,
            stats=dict(server.stats),
            poller=dict(server.poller.stats),
            timestamp=datetime.now(timezone.utc)
        )

    @router.get("/log", response_model=ProgressLogResponse)
    async def progress_log(limit: int = 50):
        """Most recent progress messages, oldest first"""
        messages = list(server.progress_log)
        if limit > 0:
            messages = messages[-limit:]
        return ProgressLogResponse(messages=messages)

    return router
