from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WorkerActivity(StrEnum):
    """A worker's availability classification."""

    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    OFFLINE = "offline"


class Worker(BaseModel):
    """Agent identity as stored in the users table."""

    worker_id: str
    email: str
    display_name: str | None = None
    role: str = "user"
    activity: WorkerActivity = WorkerActivity.OFFLINE
    taskrouter_worker_sid: str | None = None

    # Simultaneous-ring agents are exempt from the daily forced logout
    simultaneous_ring: bool = False

    def attributes(self) -> dict[str, Any]:
        """Read-only metadata exposed alongside the presence state."""
        return {
            "email": self.email,
            "display_name": self.display_name,
            "role": self.role,
            "has_worker": self.taskrouter_worker_sid is not None,
            "simultaneous_ring": self.simultaneous_ring,
        }


class PresenceSnapshot(BaseModel):
    """Current presence state plus worker attributes."""

    state: WorkerActivity
    attributes: dict[str, Any] = Field(default_factory=dict)


class PresenceEvent(BaseModel):
    """Immutable record of one presence transition, as broadcast to subscribers."""

    model_config = ConfigDict(frozen=True)

    worker_id: str
    state: WorkerActivity
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_message(self) -> dict[str, str]:
        return {"status": self.state.value}
