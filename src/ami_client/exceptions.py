class AmiError(Exception):
    """Base class for every error raised by the AMI session layer."""


class AmiConnectionError(AmiError):
    """Raised when a transport session cannot be established.

    Covers network failures (refused, unreachable) as well as authentication
    failures reported by the peer during the login handshake.
    """


class AuthenticationError(AmiConnectionError):
    """Raised when the peer rejects the supplied credentials."""


class ReconnectLimitError(AmiConnectionError):
    """Raised by a connector when its retry budget is exhausted."""


class ActionTimeoutError(AmiError, TimeoutError):
    """Raised when no response matches a pending action within the ceiling.

    Attributes:
        action_id: correlation id of the action that expired
        timeout: the ceiling that elapsed, in seconds
    """

    action_id: str
    timeout: float

    def __init__(self, action_id: str, timeout: float):
        super().__init__(f"No response to action {action_id} within {timeout} seconds")
        self.action_id = action_id
        self.timeout = timeout


class SessionDisconnectedError(AmiError):
    """Raised on a pending action invalidated by a session disconnect."""


class NotConnectedError(AmiError):
    """Raised synchronously when an action is sent without a live connection."""
