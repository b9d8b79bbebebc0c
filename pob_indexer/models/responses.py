"""
Indexer Response Models
=======================

Pydantic models for the health endpoints.
"""

from pydantic import BaseModel
from typing import Dict, Optional


class HealthResponse(BaseModel):
    """Health check response"""

    service: str
    status: str
    build_id: str
    github_commit: str
    timestamp: str


class TaskStatus(BaseModel):
    """State of one polling task (see tasks/scheduler.py)"""

    name: str
    interval_seconds: float
    in_flight: bool
    ticks_completed: int
    ticks_failed: int
    ticks_skipped: int
    last_tick_started_at: Optional[float] = None
    last_tick_duration_seconds: Optional[float] = None


class StatsResponse(BaseModel):
    """Response from /stats endpoint"""

    networks: Dict[int, str]
    tasks: Dict[str, TaskStatus]
