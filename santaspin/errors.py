from __future__ import annotations


class SantaError(RuntimeError):
    """Base for every failure the engine reports back to a caller."""

    status_code = 400
    retryable = False


class NotFound(SantaError):
    status_code = 404

    def __init__(self, what: str = "Participant", key=None):
        self.key = key
        message = f"{what} not found" if key is None else f"{what} {key} not found"
        super().__init__(message)


class AlreadySpun(SantaError):
    def __init__(self, message: str = "Already spun"):
        super().__init__(message)


class NoAvailableCandidates(SantaError):
    status_code = 409

    def __init__(self, group: str | None = None):
        self.group = group
        super().__init__("No available staff in your group to spin")


class ValidationFailed(SantaError):
    pass


class StorageConflict(SantaError):
    """A concurrent write changed a record between read and write. Safe to retry."""

    status_code = 409
    retryable = True

    def __init__(self, message: str = "Concurrent update detected, please try again"):
        super().__init__(message)
