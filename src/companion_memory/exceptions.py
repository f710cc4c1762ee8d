"""
Memory system exception classes.

Sharing ineligibility is reported through its own exception type so callers
can tell a policy refusal apart from a storage fault.
"""


class MemorySystemError(Exception):
    """Base exception for the memory system."""

    pass


class MemoryNotFoundError(MemorySystemError):
    """Memory could not be found."""

    def __init__(self, memory_id: str):
        self.memory_id = memory_id
        super().__init__(f"Memory not found: {memory_id}")


class StorageError(MemorySystemError):
    """Storage failure."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message)


class SharingError(MemorySystemError):
    """A share request was refused."""

    pass


class NoEligibleRecipientsError(SharingError):
    """No requested recipient meets the relationship thresholds."""

    def __init__(self, from_persona: str, requested: list[str]):
        self.from_persona = from_persona
        self.requested = list(requested)
        super().__init__(
            f"No eligible companions to share with from {from_persona}: "
            f"{', '.join(requested) or '(none requested)'}"
        )


class ImportFormatError(MemorySystemError):
    """Mind-map payload could not be interpreted."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid mind map field '{field}': {message}")
