"""
Request-scoped context: request id and resolved principal.
"""

import contextvars
import uuid
from typing import Optional

_request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_id", default=None
)
_principal_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "principal_id", default=None
)


def get_request_id() -> Optional[str]:
    return _request_id_var.get()


def set_request_id(request_id: str) -> contextvars.Token:
    """Set the request ID in context. Returns token for reset."""
    return _request_id_var.set(request_id)


def generate_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:16]}"


def get_principal_id() -> Optional[str]:
    return _principal_var.get()


def bind_principal(principal_id: str) -> contextvars.Token:
    """Attach the resolved principal so log records carry it."""
    return _principal_var.set(principal_id)


class RequestContext:
    """
    Context manager scoping a request id (and, once resolved, a principal).

    Usage:
        with RequestContext() as ctx:
            logger.info("Syncing", extra={"request_id": ctx.request_id})
    """

    def __init__(self, request_id: Optional[str] = None):
        self.request_id = request_id or generate_request_id()
        self._token: Optional[contextvars.Token] = None
        self._principal_token: Optional[contextvars.Token] = None

    def __enter__(self) -> "RequestContext":
        self._token = set_request_id(self.request_id)
        self._principal_token = _principal_var.set(None)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._principal_token is not None:
            _principal_var.reset(self._principal_token)
        if self._token is not None:
            _request_id_var.reset(self._token)
