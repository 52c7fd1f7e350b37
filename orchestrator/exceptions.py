class OrchestratorError(Exception):
    """Base orchestrator exception with message and optional data."""

    def __init__(self, message: str, data: dict = None):
        self.message = message
        self.data = data or {}
        super().__init__(self.message)


class UnmappedActionError(OrchestratorError):
    """Raised when a decision action has no guidance branch in the composer."""
    pass


class StaleStateError(OrchestratorError):
    """Raised when a session's state was written by another turn first."""
    pass


class SessionNotFoundError(OrchestratorError):
    """Raised when a session id has no stored state."""
    pass
