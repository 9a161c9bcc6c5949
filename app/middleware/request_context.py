"""
RequestContext Middleware - Adds request tracking to all requests.

Adds to request.state:
- request_id: Unique ID for request tracing (also bound to the log context)
- ip_address: Client IP address
- public_base_url: Scheme and host the caller used to reach us

public_base_url is what webhook callbacks (voicemail TwiML, recording and
transcription callbacks) are built from. Behind a load balancer the direct
connection is plain HTTP to an internal host, so X-Forwarded-Proto and
X-Forwarded-Host are honored, but only from trusted proxies.
"""

import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def _from_trusted_proxy(request: Request) -> bool:
    if not settings.TRUST_X_FORWARDED_FOR:
        return False
    return bool(request.client and request.client.host in settings.TRUSTED_PROXY_IPS)


def extract_client_ip(request: Request) -> str | None:
    """
    Client IP with proxy spoofing protection.

    X-Forwarded-For is only trusted when TRUST_X_FORWARDED_FOR is enabled and
    the connection comes from one of TRUSTED_PROXY_IPS.
    """
    if _from_trusted_proxy(request):
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            # "client, proxy1, proxy2" - first entry is the original client
            return forwarded_for.split(",")[0].strip()

    return request.client.host if request.client else None


def public_base_url(request: Request) -> str:
    """Scheme://host the caller used, without a trailing slash."""
    scheme = request.url.scheme
    host = request.headers.get("host") or request.url.netloc

    if _from_trusted_proxy(request):
        forwarded_proto = request.headers.get("x-forwarded-proto")
        forwarded_host = request.headers.get("x-forwarded-host")
        if forwarded_proto:
            scheme = forwarded_proto.split(",")[0].strip()
        if forwarded_host:
            host = forwarded_host.split(",")[0].strip()

    return f"{scheme}://{host}"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Add request context to all incoming HTTP requests.

    Also adds X-Request-ID header to responses for client-side tracing.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.ip_address = extract_client_ip(request)
        request.state.public_base_url = public_base_url(request)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.debug(
            "Request started",
            method=request.method,
            path=request.url.path,
            ip_address=request.state.ip_address,
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response
