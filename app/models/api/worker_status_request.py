# app/models/api/worker_status_request.py
"""
Presence API request models.
"""

from pydantic import BaseModel, Field

from app.models.domain.worker_domain import WorkerActivity


class WorkerStatusUpdateRequest(BaseModel):
    """Body of a presence write (JSON, or text/plain when sent as a beacon)."""

    status: WorkerActivity = Field(..., description="available, unavailable or offline")
