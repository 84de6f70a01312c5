"""Error taxonomy for the deep-trace core."""
from __future__ import annotations


class DeepTraceError(Exception):
    """Base class for errors surfaced to collaborators."""


class NotFoundError(DeepTraceError):
    """Raised when a session (or its trashed copy) cannot be located."""

    def __init__(self, what: str, detail: str | None = None):
        self.what = what
        super().__init__(detail or f"{what} not found")


class InvalidInputError(DeepTraceError):
    """Raised when a required field is missing or malformed."""


class PathMismatchError(DeepTraceError):
    """Raised when a mutation path does not contain the claimed session id."""

    def __init__(self, session_id: str, file_path: str):
        self.session_id = session_id
        self.file_path = file_path
        super().__init__("session/path mismatch")


class IOFailureError(DeepTraceError):
    """Raised when a filesystem mutation fails for permission or transient reasons."""


class PartialScanFailure(DeepTraceError):
    """One or more provider roots failed during an index build.

    Never raised to collaborators: the index cache records it on the
    published snapshot so the other providers' data is still served.
    """

    def __init__(self, errors: dict[str, str]):
        self.errors = dict(errors)
        joined = ", ".join(f"{provider}: {message}" for provider, message in sorted(self.errors.items()))
        super().__init__(f"Partial scan failure ({joined})")
