# app/models/api/worker_status_response.py
"""
Presence API response models.
"""

from typing import Any

from pydantic import BaseModel, Field

from app.models.domain.worker_domain import WorkerActivity


class WorkerStatusResponse(BaseModel):
    """Current presence state of the caller's worker."""

    status: WorkerActivity
    attributes: dict[str, Any] = Field(default_factory=dict, description="Read-only worker metadata")


class WorkerStatusUpdateResponse(BaseModel):
    """Result of a presence write."""

    success: bool
    status: WorkerActivity
