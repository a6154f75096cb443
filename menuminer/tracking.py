"""
Request Tracking Context
========================

Propagates per-request metadata (request id, signed-in email) through async
call stacks with ContextVars, and binds it into structlog's context so every
scan lifecycle event carries it.

Usage:
    async with TrackingContext(request_id="abc123", user_email="me@example.com"):
        await orchestrator.run_scan(...)
"""

import contextvars
import uuid
from typing import Optional, Dict, Any

import structlog

logger = structlog.get_logger(__name__)

# ContextVar to hold the current tracking metadata
_tracking_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "tracking_context", default={}
)


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


class TrackingContext:
    """
    Async Context Manager to set and clear request tracking metadata.
    """
    def __init__(
        self,
        request_id: Optional[str] = None,
        user_email: Optional[str] = None,
        extra_metadata: Optional[Dict[str, Any]] = None
    ):
        self.metadata = {
            "request_id": request_id or new_request_id(),
            "user_email": user_email,
            **(extra_metadata or {})
        }
        # Filter out None values
        self.metadata = {k: v for k, v in self.metadata.items() if v is not None}
        self.token = None
        self._structlog_tokens = None

    async def __aenter__(self):
        # Merge with existing context if any (nested contexts)
        current = _tracking_context.get()
        self.token = _tracking_context.set({**current, **self.metadata})
        self._structlog_tokens = structlog.contextvars.bind_contextvars(**self.metadata)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._structlog_tokens:
            structlog.contextvars.reset_contextvars(**self._structlog_tokens)
        if self.token:
            _tracking_context.reset(self.token)


def get_current_tracking_context() -> Dict[str, Any]:
    """Retrieve the current tracking metadata."""
    return _tracking_context.get()
