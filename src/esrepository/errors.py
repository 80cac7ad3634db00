"""
esrepository Errors — Exception Taxonomy
========================================

Only VersionConflictError is ever recovered from locally (by the update
coordinator, within its retry budget). Everything else surfaces to the
caller unchanged. Errors raised by the Elasticsearch client that do not map
onto this taxonomy are not wrapped.
"""


class RepositoryError(Exception):
    """Base class for all repository errors."""


class DocumentNotFoundError(RepositoryError):
    """Raised when a read finds no document for the key."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"id {key} not found")


class VersionConflictError(RepositoryError):
    """Raised when a conditional write carries a stale version token."""

    def __init__(self, key: str, detail: str = ""):
        self.key = key
        self.detail = detail
        message = f"version conflict on {key}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class UpdateFailedError(RepositoryError):
    """Raised when an update keeps conflicting after its retry budget is spent."""

    def __init__(self, key: str, tries: int):
        self.key = key
        self.tries = tries
        super().__init__(f"update of {key} failed after {tries} retries")


class SessionClosedError(RepositoryError):
    """Raised when a bulk session is used after it was closed."""


class RefreshNotAllowedError(RepositoryError):
    """Raised by refresh() on a repository that did not opt in."""
