"""
Real-time presence broadcaster.

Registry of open subscriptions keyed by worker id. Each subscription holds a
single pending slot: publishing overwrites it instead of queueing, so a slow
subscriber only ever sees the latest state and publishing never waits on it.
Subscriptions whose pending message sits undelivered past the stall timeout
are torn down on the next publish.
"""

import asyncio
import json
import time
import uuid
from collections.abc import Callable
from typing import Any

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.worker_domain import PresenceEvent, WorkerActivity

logger = get_logger(__name__)

CONTROL_PING = "ping"
CONTROL_REFRESH = "refresh"


class SubscriptionClosed(Exception):
    """Raised by next_message() once the subscription has been torn down."""


class Subscription:
    """One subscriber's delivery channel."""

    def __init__(self, worker_id: str, clock: Callable[[], float] = time.monotonic):
        self.worker_id = worker_id
        self.subscription_id = uuid.uuid4().hex
        self._clock = clock
        self._pending: dict[str, Any] | None = None
        self._pending_since: float | None = None
        self._ready = asyncio.Event()
        self._closed = False
        self.last_status: str | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, message: dict[str, Any]) -> None:
        """Replace the pending message. Never blocks."""
        if self._closed:
            return
        if self._pending is None:
            self._pending_since = self._clock()
        self._pending = message
        self._ready.set()

    def is_stalled(self, timeout: float) -> bool:
        return self._pending_since is not None and self._clock() - self._pending_since > timeout

    async def next_message(self, timeout: float | None = None) -> dict[str, Any] | None:
        """
        Wait for the next message.

        Returns:
            The message, or None if the timeout elapsed first.

        Raises:
            SubscriptionClosed: the subscription was torn down
        """
        if self._pending is None and not self._closed:
            try:
                await asyncio.wait_for(self._ready.wait(), timeout=timeout)
            except TimeoutError:
                return None

        if self._closed:
            raise SubscriptionClosed(self.subscription_id)

        message = self._pending
        self._pending = None
        self._pending_since = None
        self._ready.clear()
        if message and "status" in message:
            self.last_status = message["status"]
        return message

    def close(self) -> None:
        self._closed = True
        self._pending = None
        self._ready.set()


class StatusBroadcaster:
    """Fans presence changes out to every subscriber of a worker."""

    def __init__(self, stall_timeout: float | None = None, clock: Callable[[], float] = time.monotonic):
        self._stall_timeout = (
            stall_timeout if stall_timeout is not None else settings.SSE_STALL_TIMEOUT_SECONDS
        )
        self._clock = clock
        self._subscriptions: dict[str, set[Subscription]] = {}
        self._latest: dict[str, WorkerActivity] = {}

    def subscribe(self, worker_id: str, current_state: WorkerActivity) -> Subscription:
        """Register a subscriber; its first message is the current state."""
        subscription = Subscription(worker_id, clock=self._clock)
        subscription.offer({"status": current_state.value})
        self._subscriptions.setdefault(worker_id, set()).add(subscription)
        self._latest[worker_id] = current_state

        logger.info(
            "Presence subscriber connected",
            worker_id=worker_id,
            subscription_id=subscription.subscription_id,
            total=len(self._subscriptions[worker_id]),
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()
        worker_subscriptions = self._subscriptions.get(subscription.worker_id)
        if not worker_subscriptions or subscription not in worker_subscriptions:
            return

        worker_subscriptions.discard(subscription)
        if not worker_subscriptions:
            del self._subscriptions[subscription.worker_id]

        logger.info(
            "Presence subscriber disconnected",
            worker_id=subscription.worker_id,
            subscription_id=subscription.subscription_id,
            remaining=len(worker_subscriptions),
        )

    def publish(self, event: PresenceEvent) -> int:
        """
        Offer the new state to every subscriber of the worker.

        Returns:
            Number of subscribers the message was offered to.
        """
        self._latest[event.worker_id] = event.state
        message = event.to_message()

        delivered = 0
        for subscription in list(self._subscriptions.get(event.worker_id, ())):
            if subscription.closed or subscription.is_stalled(self._stall_timeout):
                logger.warning(
                    "Tearing down stalled presence subscriber",
                    worker_id=event.worker_id,
                    subscription_id=subscription.subscription_id,
                )
                self.unsubscribe(subscription)
                continue
            subscription.offer(message)
            delivered += 1

        if delivered:
            logger.debug(
                "Presence change broadcast",
                worker_id=event.worker_id,
                status=event.state.value,
                subscribers=delivered,
            )
        return delivered

    def handle_control_message(self, subscription: Subscription, raw: str | bytes) -> dict | None:
        """
        Interpret a control message sent by a subscriber.

        Malformed input is answered on that subscription only.

        Returns:
            Reply to send back directly, if any.
        """
        try:
            message = json.loads(raw)
            action = message.get("type") if isinstance(message, dict) else None
        except (ValueError, TypeError):
            action = None

        if action == CONTROL_PING:
            return {"type": "pong"}

        if action == CONTROL_REFRESH:
            latest = self._latest.get(subscription.worker_id)
            if latest is not None:
                subscription.offer({"status": latest.value})
            return None

        logger.debug(
            "Ignoring malformed control message",
            worker_id=subscription.worker_id,
            subscription_id=subscription.subscription_id,
        )
        return {"error": "invalid_control_message"}

    def subscriber_count(self, worker_id: str) -> int:
        return len(self._subscriptions.get(worker_id, ()))

    def has_subscribers(self, worker_id: str) -> bool:
        return self.subscriber_count(worker_id) > 0

    def close_all(self) -> None:
        """Tear down every subscription (application shutdown)."""
        for subscriptions in list(self._subscriptions.values()):
            for subscription in list(subscriptions):
                self.unsubscribe(subscription)


# Singleton instance for application use
status_broadcaster = StatusBroadcaster()
