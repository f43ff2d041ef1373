"""Configuration management for tripsplit."""

from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError
from .models import (
    AbsoluteSplitMode,
    AllocationRule,
    PercentBase,
    RemainderPolicy,
    RoundingConfig,
    RoundingMode,
)


class Settings(BaseSettings):
    """Calculation defaults loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TRIPSPLIT_",
        case_sensitive=False,
        extra="ignore",
    )

    # Rounding defaults
    default_rounding_mode: RoundingMode = RoundingMode.ROUND_HALF_UP
    default_remainder_policy: RemainderPolicy = RemainderPolicy.LARGEST_SHARE

    # Allocation defaults
    default_percent_base: PercentBase = PercentBase.PRE_TAX_ITEM_SUBTOTALS
    default_absolute_split_mode: AbsoluteSplitMode = (
        AbsoluteSplitMode.PROPORTIONAL_TO_ITEMS_SUBTOTAL
    )

    # Tax or tip percentages above this are flagged as warnings
    extreme_percentage_threshold: Decimal = Decimal("50")

    # Settlement
    transfer_strategy: str = "pairwise"

    log_level: str = "INFO"

    def default_allocation_rule(self, currency: str) -> AllocationRule:
        """Allocation rule built from these defaults for a currency."""
        return AllocationRule(
            percent_base=self.default_percent_base,
            absolute_split_mode=self.default_absolute_split_mode,
            rounding=RoundingConfig.for_currency(
                currency,
                mode=self.default_rounding_mode,
                remainder_policy=self.default_remainder_policy,
            ),
        )


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Check the TRIPSPLIT_* environment "
            f"variables and your .env file.\n"
            f"Error: {e}"
        ) from e
