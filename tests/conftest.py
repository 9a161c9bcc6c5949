import pytest

from app.auth.verify import optional_session, session_dependency
from app.models.domain.worker_domain import Worker, WorkerActivity
from app.services.infrastructure.twilio_service import TwilioServiceError
from app.services.presence.status_broadcaster import StatusBroadcaster
from app.services.presence.worker_presence_service import WorkerPresenceService


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": "worker-123"}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[session_dependency] = auth_override
        app.dependency_overrides[optional_session] = auth_override

    return _apply


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        self.store[key] = value
        self.ttls[key] = ttl_s
        return True

    async def exists(self, key: str) -> bool:
        return key in self.store


@pytest.fixture
def fake_redis():
    return FakeRedis()


class FakeWorkerRepository:
    def __init__(self, workers: list[Worker] | None = None):
        self.workers = {w.worker_id: w for w in workers or []}
        self.writes: list[tuple[str, WorkerActivity]] = []

    async def get_worker(self, worker_id: str) -> Worker | None:
        worker = self.workers.get(worker_id)
        return worker.model_copy() if worker else None

    async def update_activity(self, worker_id: str, activity: WorkerActivity) -> bool:
        if worker_id not in self.workers:
            return False
        self.writes.append((worker_id, activity))
        self.workers[worker_id] = self.workers[worker_id].model_copy(update={"activity": activity})
        return True


@pytest.fixture
def worker():
    return Worker(
        worker_id="worker-123",
        email="rep@example.com",
        display_name="Sales Rep",
        activity=WorkerActivity.OFFLINE,
        taskrouter_worker_sid="WK123",
    )


@pytest.fixture
def fake_repository(worker):
    return FakeWorkerRepository([worker])


class FakeTwilio:
    """Records calls; failures are injected per operation."""

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.redirects: list[tuple[str, str]] = []
        self.cancels: list[tuple[str, str, str]] = []
        self.activity_updates: list[tuple[str, str, str]] = []
        self.redirect_error: TwilioServiceError | None = None
        self.cancel_error: TwilioServiceError | None = None
        self.activity_error: TwilioServiceError | None = None
        self.canceled: set[str] = set()

    async def redirect_call(self, call_sid: str, url: str) -> None:
        self.redirects.append((call_sid, url))
        if self.redirect_error:
            raise self.redirect_error

    async def cancel_task(self, workspace_sid: str, task_sid: str, reason: str) -> bool:
        self.cancels.append((workspace_sid, task_sid, reason))
        if self.cancel_error:
            raise self.cancel_error
        if task_sid in self.canceled:
            return False
        self.canceled.add(task_sid)
        return True

    async def update_worker_activity(self, workspace_sid: str, worker_sid: str, activity_sid: str) -> None:
        self.activity_updates.append((workspace_sid, worker_sid, activity_sid))
        if self.activity_error:
            raise self.activity_error


@pytest.fixture
def fake_twilio():
    return FakeTwilio()


@pytest.fixture
def broadcaster():
    return StatusBroadcaster(stall_timeout=90.0)


@pytest.fixture
def presence_service(fake_repository, broadcaster, fake_twilio):
    return WorkerPresenceService(fake_repository, broadcaster, twilio=fake_twilio)
