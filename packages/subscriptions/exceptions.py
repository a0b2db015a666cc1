"""
Subscription-specific errors layered on the common application exceptions.
"""

from typing import Optional

from common.core.exceptions import ConflictError


class BusinessRuleViolation(ConflictError):
    """A lifecycle or eligibility rule rejected the requested change."""

    pass


class InvalidTransitionError(BusinessRuleViolation):
    """Status change that is not in the transition table."""

    def __init__(self, source, target, message: Optional[str] = None):
        self.source = source
        self.target = target
        super().__init__(
            message
            or f"Cannot transition subscription from {_value(source)} to {_value(target)}"
        )


class InvalidStateError(ConflictError):
    """Operation needs the subscription to be in a different status."""

    pass


class UnhandledEventWarning(Warning):
    """Webhook event type with no handler. Logged, never raised."""

    pass


def _value(status) -> str:
    return getattr(status, "value", str(status))
