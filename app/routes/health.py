# app/routes/health.py
"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter

from app.config import settings
from app.db.pool import db_health_check, db_pool
from app.services.redis_client import fast_redis

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "call-router"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check for the presence store, the idempotency store and
    the integrations the call flow depends on.
    """
    checks = {}
    overall_ok = True

    # 1) Redis (optional: voicemail redirects still work without markers)
    if fast_redis.configured:
        t0 = time.time()
        redis_ok = await fast_redis.ping()
        checks["redis"] = {"ok": redis_ok, "latency_ms": round((time.time() - t0) * 1000, 1)}
        overall_ok = overall_ok and redis_ok
    else:
        checks["redis"] = {"ok": True, "skipped": "not configured"}

    # 2) Database pool
    t0 = time.time()
    db_health = await db_health_check() if db_pool.configured else {
        "healthy": False,
        "error": "SUPABASE_DB_URL not set",
    }
    is_healthy = db_health.get("healthy", False)
    checks["database"] = {"ok": is_healthy, "latency_ms": round((time.time() - t0) * 1000, 1)}
    if "pool_stats" in db_health:
        checks["database"]["pool_stats"] = db_health["pool_stats"]
    if not is_healthy:
        checks["database"]["error"] = db_health.get("error", "Database unhealthy")
    overall_ok = overall_ok and is_healthy

    # 3) Configuration
    config_issues = []
    if not settings.SESSION_JWT_SECRET:
        config_issues.append("SESSION_JWT_SECRET not set")
    if not settings.twilio_configured():
        config_issues.append("Twilio credentials not set")
    if not settings.TASKROUTER_WORKSPACE_SID:
        config_issues.append("TASKROUTER_WORKSPACE_SID not set")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
