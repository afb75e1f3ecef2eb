"""
Error taxonomy shared by the controller, the role views and the API.

``retryable`` tells the caller whether repeating the same action can
succeed; nothing in this package retries on its own.
"""

from __future__ import annotations


class LastMileError(Exception):
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LastMileError):
    """Missing or malformed input; raised before any write happens."""


class InvalidStateTransition(ValidationError):
    """Raised when a status change violates the delivery state machine."""


class ConflictError(LastMileError):
    """A concurrent writer won (claim race, duplicate key, stale state)."""


class AuthorizationError(LastMileError):
    """Role or ownership policy rejected the operation."""


class NotFoundError(LastMileError):
    pass


class PartialFailureError(LastMileError):
    """
    The primary status write of a multi-write transition was committed but
    one or more side-effect writes were not.  The failed steps are listed
    so an operator can reconcile them.
    """

    def __init__(self, delivery_id: int, failed_steps: list[str]):
        super().__init__(
            f"Delivery {delivery_id} was updated but these steps failed: "
            + ", ".join(failed_steps)
        )
        self.delivery_id = delivery_id
        self.failed_steps = list(failed_steps)
