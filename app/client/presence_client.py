"""
Agent-side presence client.

Talks to the presence endpoints on behalf of one signed-in agent. Network
failures surface as PresenceClientError while `last_known_status` keeps the
last state the server confirmed, so a dashboard does not flap back to a
default on a transient error.
"""

import asyncio
import json
from collections.abc import AsyncIterator

import httpx

from app.infrastructure.observability.logging import get_logger
from app.models.domain.worker_domain import WorkerActivity

logger = get_logger(__name__)

STATUS_PATH = "/api/taskrouter/worker-status"
STREAM_PATH = "/api/taskrouter/worker-status-stream"
LOGOUT_PATH = "/api/auth/logout"

DEFAULT_RECONNECT_DELAY_SECONDS = 5.0


class PresenceClientError(Exception):
    """Presence request failed; last known state is left untouched."""

    def __init__(
        self,
        message: str,
        operation: str = "unknown",
        status_code: int | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.status_code = status_code
        self.recoverable = recoverable


class PresenceClient:
    def __init__(
        self,
        base_url: str,
        session_token: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY_SECONDS,
        timeout: float = 10.0,
    ):
        headers = {"Authorization": f"Bearer {session_token}"} if session_token else {}
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout
        )
        self._owns_client = http_client is None
        self.reconnect_delay = reconnect_delay
        self.last_known_status: WorkerActivity | None = None
        self._background: set[asyncio.Task] = set()

    async def close(self) -> None:
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, operation: str, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise PresenceClientError(f"{operation} failed: {e}", operation=operation) from e

        if response.status_code >= 400:
            raise PresenceClientError(
                f"{operation} failed with HTTP {response.status_code}",
                operation=operation,
                status_code=response.status_code,
                recoverable=response.status_code >= 500,
            )
        return response

    def _decode(self, operation: str, response: httpx.Response) -> dict:
        try:
            body = response.json()
        except ValueError as e:
            raise PresenceClientError(f"{operation} returned a non-JSON body", operation=operation) from e
        if not isinstance(body, dict):
            raise PresenceClientError(f"{operation} returned an unexpected body", operation=operation)
        return body

    def _remember(self, status: str | None) -> None:
        try:
            self.last_known_status = WorkerActivity(status)
        except ValueError:
            logger.warning("Ignoring unknown presence status", status=status)

    async def get_status(self) -> dict:
        """Current `{status, attributes}` for the signed-in agent."""
        response = await self._request("get_status", "GET", STATUS_PATH)
        body = self._decode("get_status", response)
        self._remember(body.get("status"))
        return body

    async def set_status(self, status: WorkerActivity | str) -> WorkerActivity:
        state = WorkerActivity(status)
        response = await self._request("set_status", "POST", STATUS_PATH, json={"status": state.value})
        self._remember(self._decode("set_status", response).get("status"))
        return self.last_known_status

    def send_offline_beacon(self) -> asyncio.Task:
        """
        Fire-and-forget offline write for teardown paths.

        The request runs in the background and close() waits for it, so it
        completes even when the caller is shutting down. Failures are logged.
        """

        async def _send():
            try:
                await self._client.post(
                    STATUS_PATH,
                    content=json.dumps({"status": WorkerActivity.OFFLINE.value}),
                    headers={"Content-Type": "text/plain"},
                )
            except httpx.HTTPError as e:
                logger.warning("Offline beacon failed", error=str(e))

        task = asyncio.create_task(_send())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def logout(self) -> None:
        """Invalidate the session with the auth service."""
        await self._request("logout", "POST", LOGOUT_PATH)

    async def stream_status(self) -> AsyncIterator[dict]:
        """
        Yield presence messages from the SSE feed, reconnecting forever.

        Reconnects after a fixed delay when the feed drops. Stops for good on
        an unauthorized message, since retrying cannot succeed.
        """
        while True:
            try:
                async with self._client.stream("GET", STREAM_PATH, timeout=None) as response:
                    if response.status_code == 401:
                        logger.info("Presence stream unauthorized - not reconnecting")
                        return
                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        message = json.loads(line[5:].strip())
                        if not isinstance(message, dict):
                            logger.warning("Ignoring malformed presence message")
                            continue

                        if message.get("error") == "unauthorized":
                            logger.info("Presence stream unauthorized - not reconnecting")
                            yield message
                            return

                        if "status" in message:
                            self._remember(message["status"])
                        yield message

                logger.info("Presence stream ended", reconnect_in=self.reconnect_delay)
            except (httpx.HTTPError, json.JSONDecodeError) as e:
                logger.warning(
                    "Presence stream dropped",
                    error=str(e),
                    reconnect_in=self.reconnect_delay,
                )

            await asyncio.sleep(self.reconnect_delay)
