from decimal import Decimal

import pytest

from config import Settings


def test_defaults_are_valid():
    settings = Settings()
    assert settings.max_active_loans >= 1
    assert settings.penalty_days_per_late_day >= 1


@pytest.mark.parametrize(
    "kwargs, name",
    [
        ({"penalty_days_per_late_day": 0}, "PENALTY_DAYS_PER_LATE_DAY"),
        ({"penalty_days_per_late_day": -2}, "PENALTY_DAYS_PER_LATE_DAY"),
        ({"penalty_daily_rate": Decimal("-0.5")}, "PENALTY_DAILY_RATE"),
        ({"max_active_loans": 0}, "MAX_ACTIVE_LOANS"),
        ({"default_loan_days": 0}, "DEFAULT_LOAN_DAYS"),
    ],
)
def test_rejects_unusable_policy_values(kwargs, name):
    with pytest.raises(ValueError, match=name):
        Settings(**kwargs)
