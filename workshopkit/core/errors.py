"""Exception types raised by the transfer core."""

from typing import Optional


class WorkshopError(Exception):
    """Base class for every failure surfaced to callers."""

    pass


class LaunchFailure(WorkshopError):
    """Raised when a child process could not be started or located."""

    pass


class ProtocolViolation(WorkshopError):
    """Raised when a helper exits cleanly without a result, or a result field is unusable."""

    pass


class OperationFailure(WorkshopError):
    """Raised on an explicit error event or a non-zero exit."""

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.exit_code = exit_code


class PromptExhausted(OperationFailure):
    """Raised when the same prompt kind was solicited too many times."""

    pass


class PromptRejected(OperationFailure):
    """Raised when the operator answered a prompt with an empty response."""

    pass


class OperationCancelled(WorkshopError):
    """Raised when the operation's cancel flag fired or a prompt was abandoned."""

    pass


class OutputExists(WorkshopError):
    """Raised when the destination already exists and overwriting is off."""

    def __init__(self, path):
        super().__init__(f"Output already exists: {path}")
        self.path = path


class WorkshopItemNotFound(WorkshopError):
    def __init__(self, app_id: int, published_file_id: int):
        super().__init__(
            f"Workshop item {published_file_id} (app {app_id}) was not found in the Steam "
            "Workshop cache and no download backend produced it."
        )
        self.app_id = app_id
        self.published_file_id = published_file_id


class InvalidWorkshopInput(WorkshopError, ValueError):
    """Raised for caller input that cannot be acted on."""

    pass


class PackError(WorkshopError):
    """Raised when an external packer fails."""

    pass


class ArchiveExtractionError(WorkshopError):
    """Raised when archive extraction fails."""

    pass


class PasswordProtectedError(ArchiveExtractionError):
    """Raised when archive requires a password."""

    pass


class CorruptedArchiveError(ArchiveExtractionError):
    """Raised when archive is corrupted."""

    pass
