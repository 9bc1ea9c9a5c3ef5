"""
Engine-related exception classes.
"""


class EngineError(Exception):
    """Base exception for all engine errors."""
    pass


class InvalidObservationError(EngineError):
    """Exception raised when an observation is malformed or out of order."""

    def __init__(self, message: str, sequence_id=None):
        self.message = message
        self.sequence_id = sequence_id
        super().__init__(self.message)


class InvalidTransitionError(EngineError):
    """Exception raised for invalid decision state machine transitions."""
    pass


class PersistenceError(EngineError):
    """Exception raised when persisted state cannot be read or written."""
    pass
