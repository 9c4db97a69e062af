"""Domain errors for the published journal workflow."""

from __future__ import annotations

from typing import Any


class JournalError(Exception):
    """Base class; carries the HTTP status the API layer maps it to."""

    status_code: int = 500

    def __init__(self, message: str, *, detail: Any = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class ValidationError(JournalError):
    """Missing or malformed required fields. The caller must correct the input."""

    status_code = 400


class InvalidArgument(JournalError):
    """Malformed identifier or an out-of-range year/quarter."""

    status_code = 400


class InvalidTransition(JournalError):
    """A lifecycle transition the engine refuses, e.g. publishing a non-accepted record."""

    status_code = 400

    def __init__(self, message: str, *, from_status: str | None = None, to_status: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(message, detail={"from": from_status, "to": to_status})


class NotFound(JournalError):
    status_code = 404

    def __init__(self, message: str = "Published journal not found", *, detail: Any = None):
        super().__init__(message, detail=detail)


class DuplicateDOI(JournalError):
    status_code = 409

    def __init__(self, doi: str):
        self.doi = doi
        super().__init__(f"DOI already assigned to another journal: {doi}", detail={"doi": doi})


class UpstreamFailure(JournalError):
    """
    Blob store / email collaborator failure.

    Carried inside ``Result`` values and logged by the caller; it never rolls back
    a record write.
    """

    status_code = 502

    def __init__(self, service: str, message: str, *, cause: BaseException | None = None):
        self.service = service
        self.cause = cause
        super().__init__(message, detail={"service": service, "cause": str(cause) if cause else None})
