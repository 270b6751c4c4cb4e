"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict
from datetime import datetime
from models.base import JobEventStatus


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    database_connected: bool
    workers_enabled: bool = True
    workers_running: bool = False
    jobs: Dict[str, int] = Field(default_factory=dict, description="Job counts by status")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")

    @validator("status", pre=True, always=True)
    def determine_status(cls, v, values):
        """Determine overall health status"""
        if not values.get("database_connected", False):
            return "unhealthy"
        if values.get("workers_enabled") and not values.get("workers_running"):
            return "degraded"
        return "healthy"

    class Config:
        json_schema_extra = {
            "example": {
                "database_connected": True,
                "workers_enabled": True,
                "workers_running": True,
                "jobs": {"queued": 2, "started": 1, "done": 40, "failed": 0},
                "timestamp": "2024-01-15T10:30:00Z",
                "status": "healthy",
            }
        }


# ============================================================================
# Job Schemas
# ============================================================================

class JobEventResponse(BaseModel):
    """One job lifecycle audit row"""
    id: int
    job_id: Optional[str]
    type: str
    status: JobEventStatus
    monitor_id: Optional[int]
    message: Optional[str]
    error: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True
        use_enum_values = True


class JobEventsResponse(BaseModel):
    request_id: str
    count: int
    events: List[JobEventResponse] = Field(default_factory=list)


class EnqueueCheckResponse(BaseModel):
    """Result of requesting an immediate monitor check"""
    request_id: str
    monitor_id: int
    job_id: Optional[int] = Field(None, description="None when a check is already queued or running")
    status: str  # "queued" | "already_queued"
