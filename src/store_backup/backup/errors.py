"""Exceptions raised by the backup engine.

Row- and table-level failures are never raised; they are reported as
values (``QueryResult.error``, ``DeleteOutcome``, ``TableOutcome``).
Only conditions that must stop a run before or instead of touching the
database are exceptions.
"""


class BackupError(Exception):
    """Base class for backup/restore errors."""


class SnapshotValidationError(BackupError):
    """The uploaded snapshot failed validation; nothing was modified."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid snapshot")


class OperationInProgressError(BackupError):
    """Another export or import is already running in this process."""


class ImportJobNotFoundError(BackupError):
    """An incremental import call referenced an unknown job id."""


class AuthorizationError(BackupError):
    """The caller is not an authenticated administrator."""

    def __init__(self, message: str, status_code: int = 403) -> None:
        self.status_code = status_code
        super().__init__(message)
