class SwitchboardError(Exception):
    """Base class for all engine errors."""
    pass


class RequestParseError(SwitchboardError):
    """Raised when a request string cannot be turned into a descriptor."""
    pass


class TransportError(SwitchboardError):
    """Raised by a transport when no HTTP response was received at all.

    Connection refused, DNS failure, timeouts and the like. HTTP error
    statuses are returned as results, never raised.
    """
    pass


class SinkError(SwitchboardError):
    """Base class for sink-related errors."""
    pass


class InitializationError(SinkError):
    """Raised when sink initialization fails."""
    pass


class WriteError(SinkError):
    """Raised when a write could not reach the sink."""
    pass


class CleanupError(SinkError):
    """Raised when cleanup fails."""
    pass


class JobStateError(SwitchboardError):
    """Raised when a job method is called in a state that does not allow it."""
    pass


class JobConflictError(SwitchboardError):
    """Raised when a job is started while another one is still in flight."""
    pass
