"""Exception types raised by the query pipeline.

Only two conditions abort a panel query: a target rejected by the site's
scalar policy (raised before anything is sent) and a failed dispatch of the
batch request. Everything else degrades to fewer emitted series.
"""

from __future__ import annotations

from typing import Any, Optional


class KairosQueryError(Exception):
    """Base class for all errors raised by ``kairos_query``."""


class TargetValidationError(KairosQueryError):
    """A target was rejected before materialization.

    Parameters
    ----------
    reason: str
        Human-readable explanation suitable for display next to the panel.
    ref_id: Optional[str]
        Reference id of the offending target, when known.
    """

    def __init__(self, reason: str, ref_id: Optional[str] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.ref_id = ref_id


class DispatchError(KairosQueryError):
    """The batch request could not be completed.

    Attributes
    ----------
    status: Optional[int]
        HTTP status returned by KairosDB, or ``None`` for transport failures.
    message: str
        User-facing message describing the failure.
    body: Any
        Parsed (or raw) upstream response body for diagnostics.
    """

    def __init__(
        self, message: str, status: Optional[int] = None, body: Any = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body


def status_message(status: Optional[int], body: Any = None) -> str:
    """Map an upstream HTTP status to a user-facing error message.

    Parameters
    ----------
    status: Optional[int]
        HTTP status code, ``None`` when the server was never reached.
    body: Any
        Parsed response body; KairosDB reports query problems under
        ``errors``.

    Returns
    -------
    str
        Message to surface on the panel.
    """
    if status is None:
        return "Cannot connect to KairosDB. Check the datasource URL and network."
    if status == 502:
        return (
            "KairosDB server is unreachable (502 Bad Gateway). Please check if "
            "KairosDB is running and accessible."
        )
    if status == 500:
        return (
            "KairosDB server internal error (500). Check KairosDB server logs "
            "for details."
        )
    if status == 404:
        return (
            "KairosDB endpoint not found (404). Please verify the datasource "
            "URL configuration."
        )
    if status == 400:
        message = "Invalid query sent to KairosDB (400). Check your query parameters."
        if isinstance(body, dict) and body.get("errors"):
            message += " KairosDB errors: " + "; ".join(
                str(e) for e in body["errors"]
            )
        return message
    if status == 503:
        return (
            "KairosDB service temporarily unavailable (503). Please try again "
            "later."
        )
    return f"KairosDB server error (HTTP {status})"
