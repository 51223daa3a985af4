"""
Middleware components for the game stats server.

Provides:
- RequestContextMiddleware: Request tracing with X-Request-ID and access logs
"""

from .request_context import RequestContextMiddleware

__all__ = [
    "RequestContextMiddleware",
]
