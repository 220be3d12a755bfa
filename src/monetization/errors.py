"""
Monetization Errors

Raised synchronously by the queue; nothing is persisted when one is raised.
"""


class MonetizationError(Exception):
    """Base error for queue and tracker operations."""
    pass


class OpportunityValidationError(MonetizationError):
    """Malformed opportunity input from a detector."""
    pass


class OpportunityNotFoundError(MonetizationError):
    """No opportunity with the given id."""

    def __init__(self, opportunity_id):
        self.opportunity_id = opportunity_id
        super().__init__(f"Opportunity not found: {opportunity_id}")


class ActionNotFoundError(MonetizationError):
    """No action with the given id."""

    def __init__(self, action_id):
        self.action_id = action_id
        super().__init__(f"Action not found: {action_id}")


class InvalidTransitionError(MonetizationError):
    """The requested status change is not allowed from the current status."""
    pass
