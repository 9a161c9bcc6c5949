"""
Worker presence service.

Authoritative get/set of each agent's availability. Writes to one worker are
serialized with a per-worker lock (last arrival wins), persisted, broadcast to
live subscribers and mirrored to the TaskRouter worker activity.
"""

import asyncio
from collections import defaultdict
from typing import Protocol

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.worker_domain import PresenceEvent, PresenceSnapshot, Worker, WorkerActivity
from app.services.infrastructure.twilio_service import (
    TwilioService,
    TwilioServiceError,
    twilio_service,
)
from app.services.presence.status_broadcaster import (
    StatusBroadcaster,
    Subscription,
    status_broadcaster,
)
from app.services.presence.worker_repository import WorkerRepository

logger = get_logger(__name__)


class PresenceServiceError(Exception):
    """Base error for presence operations."""

    def __init__(self, message: str, worker_id: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.worker_id = worker_id
        self.recoverable = recoverable


class WorkerNotFoundError(PresenceServiceError):
    """No worker record for the given id."""

    def __init__(self, worker_id: str):
        super().__init__(f"Worker not found: {worker_id}", worker_id=worker_id, recoverable=False)


class WorkerStore(Protocol):
    async def get_worker(self, worker_id: str) -> Worker | None: ...

    async def update_activity(self, worker_id: str, activity: WorkerActivity) -> bool: ...


class WorkerPresenceService:
    def __init__(
        self,
        repository: WorkerStore,
        broadcaster: StatusBroadcaster,
        twilio: TwilioService | None = None,
    ):
        self._repository = repository
        self._broadcaster = broadcaster
        self._twilio = twilio
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _load(self, worker_id: str) -> Worker:
        worker = await self._repository.get_worker(worker_id)
        if worker is None:
            raise WorkerNotFoundError(worker_id)
        return worker

    async def get(self, worker_id: str) -> PresenceSnapshot:
        """Current state and attributes. Raises WorkerNotFoundError."""
        worker = await self._load(worker_id)
        return PresenceSnapshot(state=worker.activity, attributes=worker.attributes())

    async def is_exempt(self, worker_id: str) -> bool:
        """Whether schedule-driven transitions must leave this worker alone."""
        worker = await self._load(worker_id)
        return worker.simultaneous_ring

    async def set(self, worker_id: str, new_state: WorkerActivity | str) -> WorkerActivity:
        """
        Persist a presence transition and notify subscribers.

        Any state may follow any state. Raises ValueError for an unknown
        state and WorkerNotFoundError for an unknown worker.
        """
        state = WorkerActivity(new_state)

        async with self._locks[worker_id]:
            worker = await self._load(worker_id)

            if not await self._repository.update_activity(worker_id, state):
                raise WorkerNotFoundError(worker_id)

            self._broadcaster.publish(PresenceEvent(worker_id=worker_id, state=state))
            await self._mirror_to_taskrouter(worker, state)

        logger.info(
            "Worker presence updated",
            worker_id=worker_id,
            previous=worker.activity.value,
            status=state.value,
        )
        return state

    async def subscribe(self, worker_id: str) -> Subscription:
        """Open a status channel seeded with the current state."""
        async with self._locks[worker_id]:
            worker = await self._load(worker_id)
            return self._broadcaster.subscribe(worker_id, worker.activity)

    def unsubscribe(self, subscription: Subscription) -> None:
        self._broadcaster.unsubscribe(subscription)

    def handle_control_message(self, subscription: Subscription, raw: str | bytes) -> dict | None:
        return self._broadcaster.handle_control_message(subscription, raw)

    async def _mirror_to_taskrouter(self, worker: Worker, state: WorkerActivity) -> None:
        """Best effort: keep the TaskRouter worker activity in step."""
        if self._twilio is None or not self._twilio.configured:
            return

        activity_sid = settings.activity_sids().get(state.value)
        workspace_sid = settings.TASKROUTER_WORKSPACE_SID
        if not (worker.taskrouter_worker_sid and activity_sid and workspace_sid):
            logger.debug("TaskRouter mirror skipped - not configured", worker_id=worker.worker_id)
            return

        try:
            await self._twilio.update_worker_activity(
                workspace_sid, worker.taskrouter_worker_sid, activity_sid
            )
        except TwilioServiceError as e:
            logger.warning(
                "TaskRouter activity mirror failed",
                worker_id=worker.worker_id,
                worker_sid=worker.taskrouter_worker_sid,
                error=str(e),
            )


# Singleton instance for application use
worker_presence_service = WorkerPresenceService(
    WorkerRepository(), status_broadcaster, twilio=twilio_service
)
