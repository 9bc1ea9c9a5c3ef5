"""
Venue-related exception classes.
"""


class VenueError(Exception):
    """Base exception for all venue-related errors."""
    pass


class VenueAPIError(VenueError):
    """Exception raised when the venue answers a request with an error."""

    def __init__(self, message: str, error_code: str = None, msg_type: str = None):
        self.message = message
        self.error_code = error_code
        self.msg_type = msg_type
        super().__init__(self.message)


class TransientError(VenueAPIError):
    """Exception for temporary errors that can be retried (5xx, timeouts)."""
    pass


class PermanentError(VenueAPIError):
    """Exception for permanent errors that should not be retried (4xx)."""
    pass


class ConnectionError(VenueError):
    """Exception raised when the connection cannot be (re)established."""
    pass
