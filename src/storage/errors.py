"""
Error taxonomy shared by the store, the buffer and the session runtime.

Persistence failures are caught at real-time call sites and logged; session
and ownership errors indicate a setup bug and always reach the caller.
"""


class EdgeCoachError(Exception):
    """Base class for edge coach errors."""


class PersistenceError(EdgeCoachError):
    """A write to the external store failed."""


class SessionError(EdgeCoachError):
    """The operation has no valid session context."""


class NoActiveSessionError(SessionError):
    """No session is open for the requested id."""


class SessionOwnerMismatchError(SessionError):
    """The caller does not own the session it is writing to."""
