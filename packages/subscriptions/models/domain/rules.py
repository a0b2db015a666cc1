"""
Result models for eligibility checks and field validation.
"""

from pydantic import BaseModel, Field


class BusinessRuleResult(BaseModel):
    """
    Outcome of an upgrade/downgrade/cancel eligibility check.

    Advisory only: a blocked result is returned, never raised.
    """

    can_proceed: bool
    message: str
    requires_approval: bool = False
    suggested_actions: list[str] = Field(default_factory=list)

    @classmethod
    def blocked(cls, message: str, *suggested_actions: str) -> "BusinessRuleResult":
        return cls(
            can_proceed=False,
            message=message,
            suggested_actions=list(suggested_actions),
        )


class ValidationResult(BaseModel):
    """Errors block the operation, warnings are only logged."""

    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors
