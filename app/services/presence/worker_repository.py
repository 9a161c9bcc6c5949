"""
Worker records in PostgreSQL.

The users table carries the presence column alongside the agent identity:
    worker_activity        available | unavailable | offline (NULL = offline)
    taskrouter_worker_sid  TaskRouter worker mirrored on presence writes
    simultaneous_ring      exempts the agent from the daily forced logout
"""

from app.db.helpers import execute_query, fetch_one, with_db_retry
from app.infrastructure.observability.logging import get_logger
from app.models.domain.worker_domain import Worker, WorkerActivity

logger = get_logger(__name__)

_SELECT_WORKER = """
SELECT
    id, email, display_name, role,
    worker_activity, taskrouter_worker_sid, simultaneous_ring
FROM users
WHERE id = %s
"""

_UPDATE_ACTIVITY = """
UPDATE users
SET worker_activity = %s, updated_at = NOW()
WHERE id = %s
"""


class WorkerRepository:
    """Reads and writes worker rows."""

    @with_db_retry(max_retries=2, base_delay=0.1)
    async def get_worker(self, worker_id: str) -> Worker | None:
        row = await fetch_one(_SELECT_WORKER, (worker_id,))
        if not row:
            return None

        return Worker(
            worker_id=str(row["id"]),
            email=row["email"],
            display_name=row.get("display_name"),
            role=row.get("role") or "user",
            activity=WorkerActivity(row.get("worker_activity") or WorkerActivity.OFFLINE),
            taskrouter_worker_sid=row.get("taskrouter_worker_sid"),
            simultaneous_ring=bool(row.get("simultaneous_ring")),
        )

    @with_db_retry(max_retries=2, base_delay=0.1)
    async def update_activity(self, worker_id: str, activity: WorkerActivity) -> bool:
        """Persist the new activity. Returns False if no row matched."""
        affected = await execute_query(_UPDATE_ACTIVITY, (activity.value, worker_id))
        logger.debug("Worker activity persisted", worker_id=worker_id, activity=activity.value)
        return affected > 0
