"""Custom exceptions for tripsplit.

The calculation core reports problems as ValidationIssue values. These
exceptions are raised at the caller boundary (see
SettlementResult.raise_for_errors) and for configuration mistakes.
"""


class TripSplitError(Exception):
    """Base exception for all tripsplit errors."""

    pass


class ConfigurationError(TripSplitError):
    """Raised when configuration is invalid or missing."""

    pass


class InvalidExpenseError(TripSplitError):
    """Raised when an input file cannot be parsed into expenses or receipts."""

    pass


class ComputationError(TripSplitError):
    """Raised when a computed result carries blocking issues."""

    def __init__(self, issues: list, message: str | None = None):
        self.issues = list(issues)
        super().__init__(
            message
            or "Computation produced blocking issues:\n"
            + "\n".join(f"  [{issue.code.value}] {issue.message}" for issue in issues)
        )


class BalanceConservationError(ComputationError):
    """Raised when the net balances of a settlement do not sum to zero."""

    pass
