"""tripsplit - Split shared trip expenses and settle balances with exact decimals."""

__version__ = "0.1.0"

from . import breakdown
from .calculator import ItemizedCalculator
from .config import Settings, load_settings
from .exceptions import (
    BalanceConservationError,
    ComputationError,
    ConfigurationError,
    InvalidExpenseError,
    TripSplitError,
)
from .models import (
    AllocationRule,
    EqualExpense,
    Extras,
    ItemizedExpense,
    ItemizedResult,
    LineItem,
    MinimalTransfer,
    PersonSummary,
    RoundingConfig,
    SettlementResult,
    TransferBreakdown,
    ValidationIssue,
    WeightedExpense,
)
from .rounding import distribute_remainder, round_amount, round_amounts
from .settlement import SettlementAggregator
from .shares import expense_shares
from .transfers import get_strategy

__all__ = [
    "breakdown",
    "ItemizedCalculator",
    "Settings",
    "load_settings",
    "BalanceConservationError",
    "ComputationError",
    "ConfigurationError",
    "InvalidExpenseError",
    "TripSplitError",
    "AllocationRule",
    "EqualExpense",
    "Extras",
    "ItemizedExpense",
    "ItemizedResult",
    "LineItem",
    "MinimalTransfer",
    "PersonSummary",
    "RoundingConfig",
    "SettlementResult",
    "TransferBreakdown",
    "ValidationIssue",
    "WeightedExpense",
    "distribute_remainder",
    "round_amount",
    "round_amounts",
    "SettlementAggregator",
    "expense_shares",
    "get_strategy",
]
