"""Exception hierarchy for sightline."""


class SightlineError(Exception):
    """Base exception for all sightline errors."""


class AdapterUnavailableError(SightlineError):
    """A discovery adapter could not start (radio off, no permission, socket failure)."""

    def __init__(self, message: str, *, transport: str = "") -> None:
        self.transport = transport
        super().__init__(message)


class StoreError(SightlineError):
    """The device store backend failed to read or write."""

    def __init__(self, message: str, *, operation: str = "") -> None:
        self.operation = operation
        super().__init__(message)
