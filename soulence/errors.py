"""
Error taxonomy for the Soulence core.

* ``ValidationError`` -- malformed input; rejected to the caller, never
  retried.
* ``TransientChannelError`` -- a notification channel failed to deliver;
  retried by the alert lifecycle manager.
* ``ContractViolation`` -- an invalid state transition was requested (for
  example, dispatching a delivered alert).  An internal defect, never
  swallowed.
* ``UnauthorizedActionError`` -- a role attempted an action it is not
  permitted to perform.

Insufficient data is deliberately *not* an error: the scorer, detector and
aggregator return well-defined neutral results instead of raising.
"""

from __future__ import annotations

from typing import Any


class SoulenceError(Exception):
    """Base class for all errors raised by the Soulence core."""
    pass


class ValidationError(SoulenceError, ValueError):
    """Raised when a raw record fails validation.

    Attributes:
        errors: One entry per failing field, each a dict with ``field`` and
            ``message`` keys.
    """

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class TransientChannelError(SoulenceError):
    """Raised by a notification channel when delivery fails.

    Attributes:
        contact_id: The contact whose delivery failed, if known.
    """

    def __init__(self, message: str, contact_id: str | None = None) -> None:
        super().__init__(message)
        self.contact_id = contact_id


class ContractViolation(SoulenceError):
    """Raised when an operation is not permitted in the alert's current state."""
    pass


class UnauthorizedActionError(SoulenceError, PermissionError):
    """Raised when a role is not permitted to perform an action."""
    pass
