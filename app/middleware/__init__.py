"""
Middleware components for request processing.

- Request context (request ID, client IP, public base URL)
"""

from app.middleware.request_context import RequestContextMiddleware

__all__ = ["RequestContextMiddleware"]
