"""
Daily forced logout for agent sessions.

Each session schedules one cutoff at a fixed local hour. When it passes the
agent is set offline, the session is invalidated and the UI is sent back to
the login page. Agents on simultaneous ring are exempt for the whole session.

Timers can be missed while a device sleeps, so besides the coarse poll the
cutoff is re-checked whenever the client becomes visible again.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from app.client.presence_client import PresenceClient
from app.infrastructure.observability.logging import get_logger
from app.models.domain.worker_domain import WorkerActivity

logger = get_logger(__name__)

DEFAULT_CUTOFF_HOUR = 20
DEFAULT_POLL_INTERVAL_SECONDS = 60.0
LOGIN_REDIRECT = "/login?reason=auto-logout"
EXEMPTION_ATTRIBUTE = "simultaneous_ring"


def next_cutoff(now: datetime, cutoff_hour: int) -> datetime:
    """Today at cutoff_hour if now is strictly before it, otherwise tomorrow."""
    today = now.replace(hour=cutoff_hour, minute=0, second=0, microsecond=0)
    if now < today:
        return today
    return today + timedelta(days=1)


class SessionExpiryScheduler:
    """One per login session; fires the logout sequence at most once."""

    def __init__(
        self,
        presence_client: PresenceClient,
        navigate: Callable[[str], Awaitable[None] | None],
        cutoff_hour: int = DEFAULT_CUTOFF_HOUR,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._client = presence_client
        self._navigate = navigate
        self.cutoff_hour = cutoff_hour
        self.poll_interval = poll_interval
        self._clock = clock

        self.cutoff: datetime | None = None
        # None until resolved at start()
        self.exempt: bool | None = None
        self.fired = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        self.exempt = await self._resolve_exemption()
        self.cutoff = next_cutoff(self._clock(), self.cutoff_hour)

        if self.exempt:
            logger.info("Session exempt from forced logout")
            return

        logger.info("Forced logout scheduled", cutoff=self.cutoff.isoformat())
        self._task = asyncio.create_task(self._poll())

    async def _resolve_exemption(self) -> bool:
        try:
            snapshot = await self._client.get_status()
        except Exception as e:
            # Unknown exemption enforces the logout
            logger.warning("Exemption lookup failed - enforcing logout", error=str(e))
            return False
        attributes = snapshot.get("attributes") or {}
        return bool(attributes.get(EXEMPTION_ATTRIBUTE))

    async def _poll(self) -> None:
        while not self.fired:
            await asyncio.sleep(self.poll_interval)
            await self.check()

    async def check(self) -> bool:
        """Fire the logout sequence if the cutoff has passed. Returns True if it fired now."""
        if self.exempt or self.fired or self.cutoff is None:
            return False
        if self._clock() < self.cutoff:
            return False

        await self._fire()
        return True

    async def on_visibility_change(self, visible: bool) -> bool:
        if not visible:
            return False
        return await self.check()

    def stop(self) -> None:
        """Clear the timer (logout or teardown)."""
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()
        self._task = None

    async def _fire(self) -> None:
        self.fired = True
        self.stop()
        logger.info("Forced logout triggered", cutoff=self.cutoff.isoformat())

        try:
            await self._client.set_status(WorkerActivity.OFFLINE)
        except Exception as e:
            logger.error("Forced logout: failed to set offline", error=str(e))

        try:
            await self._client.logout()
        except Exception as e:
            logger.error("Forced logout: session invalidation failed", error=str(e))

        try:
            result = self._navigate(LOGIN_REDIRECT)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("Forced logout: navigation failed", error=str(e))
