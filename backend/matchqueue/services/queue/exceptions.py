"""
Error taxonomy for the queue-pairing engine.

Everything here is scoped to a single request; none of it is fatal to the
process. ``PairingRaceLost`` never leaves the engine.
"""


class QueueError(Exception):
    """Base class for queue errors."""

    code = "QUEUE_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class NotAuthorized(QueueError):
    """Not authorized"""

    code = "NOT_AUTHORIZED"


class AlreadyInQueue(QueueError):
    """User is already in the queue"""

    code = "ALREADY_IN_QUEUE"


class StoreUnavailable(QueueError):
    """Queue store is unavailable"""

    code = "STORE_UNAVAILABLE"


class DuplicateUser(QueueError):
    """User already has a queue entry"""

    code = "DUPLICATE_USER"


class PairingRaceLost(QueueError):
    """A concurrent writer changed the queue during pairing"""

    code = "PAIRING_RACE_LOST"
