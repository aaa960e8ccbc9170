"""Request correlation ids for log records.

The HTTP middleware stores the id of the request being served in a
ContextVar; adapter calls made while serving it log the same ``req_id``,
which ties a panel query to the KairosDB requests it caused.
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar
from typing import Optional

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def new_request_id(incoming: Optional[str] = None) -> str:
    """Return ``incoming`` when the caller sent one, else a fresh uuid4."""
    return incoming.strip() if incoming and incoming.strip() else str(uuid.uuid4())


def set_request_id(request_id: str) -> None:
    _request_id_var.set(request_id)


def get_request_id() -> str:
    """Return the current request correlation id, or empty string."""
    return _request_id_var.get()
