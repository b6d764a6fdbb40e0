"""Tests for budget aggregation over personal expenses."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from roomledger.budgets import (
    budget_status,
    period_bounds,
    personal_summary,
    recompute_spent,
)
from roomledger.converter import CurrencyConverter
from roomledger.currencies import Currency
from roomledger.models import (
    Budget,
    BudgetPeriod,
    EntryType,
    ExpenseCategory,
    IncomeCategory,
    PersonalExpense,
)


def make_entry(amount: str, day: int, **kwargs) -> PersonalExpense:
    kwargs.setdefault("user_id", "alice")
    kwargs.setdefault("category", ExpenseCategory.FOOD)
    return PersonalExpense(
        amount=Decimal(amount), date=datetime(2024, 5, day, 12, 0), **kwargs
    )


@pytest.fixture
def converter():
    return CurrencyConverter()


@pytest.fixture
def food_budget():
    return Budget(
        category=ExpenseCategory.FOOD,
        limit=Decimal("100"),
        user_id="alice",
        currency=Currency.USD,
    )


class TestPeriodBounds:
    """Tests for the half-open budget periods."""

    def test_daily(self):
        start, end = period_bounds(BudgetPeriod.DAILY, datetime(2024, 5, 8, 15, 30))

        assert start == datetime(2024, 5, 8)
        assert end == datetime(2024, 5, 9)

    def test_weekly_starts_on_monday(self):
        # 2024-05-08 is a Wednesday
        start, end = period_bounds(BudgetPeriod.WEEKLY, date(2024, 5, 8))

        assert start == datetime(2024, 5, 6)
        assert end == datetime(2024, 5, 13)

    @pytest.mark.parametrize(
        "reference,expected_end",
        [
            (date(2024, 2, 29), datetime(2024, 3, 1)),
            (date(2024, 12, 31), datetime(2025, 1, 1)),
            (date(2024, 1, 1), datetime(2024, 2, 1)),
        ],
    )
    def test_monthly(self, reference, expected_end):
        start, end = period_bounds(BudgetPeriod.MONTHLY, reference)

        assert start == datetime(reference.year, reference.month, 1)
        assert end == expected_end


class TestRecomputeSpent:
    """Tests for deriving Budget.spent from the ledger."""

    def test_sums_matching_expenses_in_period(self, food_budget, converter):
        entries = [
            make_entry("20", 2),
            make_entry("15.50", 30),
            make_entry("99", 3, category=ExpenseCategory.RENT),
            make_entry("40", 4, user_id="bob"),
            make_entry("500", 5, type=EntryType.INCOME, category=IncomeCategory.OTHER),
            make_entry("7", 6, is_home_country=True),
        ]
        start, end = period_bounds(BudgetPeriod.MONTHLY, date(2024, 5, 15))

        updated = recompute_spent(food_budget, entries, start, end, converter)

        assert updated.spent == Decimal("35.50")
        assert food_budget.spent == Decimal("0")

    def test_period_end_is_exclusive(self, food_budget, converter):
        entry = PersonalExpense(
            amount=Decimal("10"),
            user_id="alice",
            category=ExpenseCategory.FOOD,
            date=datetime(2024, 6, 1),
        )
        start, end = period_bounds(BudgetPeriod.MONTHLY, date(2024, 5, 15))

        updated = recompute_spent(food_budget, [entry], start, end, converter)

        assert updated.spent == Decimal("0")

    def test_converts_with_locked_rate(self, food_budget, converter):
        entry = make_entry(
            "750", 2, currency=Currency.INR, locked_exchange_rate=Decimal("75")
        )
        converter.static_rates[Currency.INR] = Decimal("83.5")
        start, end = period_bounds(BudgetPeriod.MONTHLY, date(2024, 5, 15))

        updated = recompute_spent(food_budget, [entry], start, end, converter)

        assert updated.spent == Decimal("10")


class TestBudgetStatus:
    """Tests for limit and alert reporting."""

    def test_alert_at_threshold(self, food_budget):
        status = budget_status(food_budget.model_copy(update={"spent": Decimal("80")}))

        assert status.percent_used == Decimal("80")
        assert status.alert_reached is True
        assert status.is_over_limit is False
        assert status.remaining == Decimal("20")

    def test_below_threshold(self, food_budget):
        status = budget_status(food_budget.model_copy(update={"spent": Decimal("50")}))

        assert status.alert_reached is False

    def test_over_limit(self, food_budget):
        status = budget_status(food_budget.model_copy(update={"spent": Decimal("120")}))

        assert status.is_over_limit is True
        assert status.remaining == Decimal("-20")


class TestPersonalSummary:
    """Tests for the income and spending summary."""

    def test_income_and_expenses_in_context_currency(self, converter):
        entries = [
            make_entry(
                "1000",
                1,
                type=EntryType.INCOME,
                category=IncomeCategory.SALARY,
                currency=Currency.INR,
            ),
            make_entry("10", 2),
            make_entry("5", 3, is_home_country=True),
        ]

        summary = personal_summary(
            entries,
            "alice",
            is_home_country=False,
            currency=Currency.INR,
            converter=converter,
        )

        assert summary.total_income == Decimal("1000")
        assert summary.total_expenses == Decimal("750")
        assert summary.net == Decimal("250")

    def test_category_must_match_entry_type(self):
        with pytest.raises(ValueError, match="not valid for income"):
            PersonalExpense(
                amount=Decimal("1"),
                user_id="alice",
                type=EntryType.INCOME,
                category=ExpenseCategory.RENT,
            )
