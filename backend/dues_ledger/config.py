"""Engine-wide defaults read from the environment."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping, Optional

from .env import read_choice_env, read_decimal_env, read_float_env, read_int_env
from .models.bill import BillCategory
from .models.unit import CompoundingMode, CreditDrawOrder

GRACE_DAYS_ENV = "PENALTY_GRACE_DAYS"
RATE_PERCENT_ENV = "PENALTY_MONTHLY_RATE_PERCENT"
COMPOUNDING_ENV = "PENALTY_COMPOUNDING"
CREDIT_DRAW_ORDER_ENV = "CREDIT_DRAW_ORDER"
MAX_ATTEMPTS_ENV = "LEDGER_MAX_ATTEMPTS"
RETRY_BACKOFF_ENV = "LEDGER_RETRY_BACKOFF_SECONDS"

DEFAULT_GRACE_DAYS = 10
DEFAULT_RATE_PERCENT = Decimal("10")
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF = 0.05


def category_env(category: BillCategory, setting: str) -> str:
    """Name of the variable overriding ``setting`` for one bill category.

    ``category_env(BillCategory.WATER, "GRACE_DAYS")`` is
    ``PENALTY_WATER_GRACE_DAYS``.
    """

    return f"PENALTY_{category.value.upper()}_{setting}"


@dataclass(frozen=True)
class CategoryPenaltyDefaults:
    """Engine-wide penalty terms for one bill category; ``None`` inherits."""

    grace_days: Optional[int] = None
    monthly_rate_percent: Optional[Decimal] = None
    compounding: Optional[CompoundingMode] = None


@dataclass(frozen=True)
class EngineSettings:
    """Defaults applied when a unit does not override them."""

    grace_days: int = DEFAULT_GRACE_DAYS
    monthly_rate_percent: Decimal = DEFAULT_RATE_PERCENT
    compounding: CompoundingMode = CompoundingMode.FLAT
    credit_draw_order: CreditDrawOrder = CreditDrawOrder.PAYMENT_FIRST
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF
    category_defaults: Mapping[BillCategory, CategoryPenaltyDefaults] = field(
        default_factory=dict
    )

    def defaults_for(self, category: BillCategory) -> CategoryPenaltyDefaults:
        return self.category_defaults.get(BillCategory(category), CategoryPenaltyDefaults())


def _load_category_defaults() -> dict[BillCategory, CategoryPenaltyDefaults]:
    loaded: dict[BillCategory, CategoryPenaltyDefaults] = {}
    for category in BillCategory:
        defaults = CategoryPenaltyDefaults(
            grace_days=read_int_env(category_env(category, "GRACE_DAYS"), None),
            monthly_rate_percent=read_decimal_env(
                category_env(category, "MONTHLY_RATE_PERCENT"), None
            ),
            compounding=read_choice_env(
                category_env(category, "COMPOUNDING"), CompoundingMode, None
            ),
        )
        if defaults != CategoryPenaltyDefaults():
            loaded[category] = defaults
    return loaded


def load_engine_settings() -> EngineSettings:
    """Read engine defaults from the environment, validating every value."""

    return EngineSettings(
        grace_days=read_int_env(GRACE_DAYS_ENV, DEFAULT_GRACE_DAYS),
        monthly_rate_percent=read_decimal_env(RATE_PERCENT_ENV, DEFAULT_RATE_PERCENT),
        compounding=read_choice_env(COMPOUNDING_ENV, CompoundingMode, CompoundingMode.FLAT),
        credit_draw_order=read_choice_env(
            CREDIT_DRAW_ORDER_ENV, CreditDrawOrder, CreditDrawOrder.PAYMENT_FIRST
        ),
        max_attempts=read_int_env(MAX_ATTEMPTS_ENV, DEFAULT_MAX_ATTEMPTS, minimum=1),
        retry_backoff_seconds=read_float_env(RETRY_BACKOFF_ENV, DEFAULT_RETRY_BACKOFF),
        category_defaults=_load_category_defaults(),
    )
