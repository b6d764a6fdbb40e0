"""Budget spending derived from personal expenses."""

from collections.abc import Iterable
from datetime import date, datetime, time, timedelta
from decimal import Decimal

from .converter import CurrencyConverter
from .currencies import Currency
from .models import (
    Budget,
    BudgetPeriod,
    BudgetStatus,
    EntryType,
    PersonalExpense,
    PersonalSummary,
)

ZERO = Decimal("0")


def period_bounds(
    period: BudgetPeriod, reference: date | datetime
) -> tuple[datetime, datetime]:
    """
    The half-open ``[start, end)`` period containing ``reference``.

    Weeks start on Monday.
    """
    day = reference.date() if isinstance(reference, datetime) else reference

    if period is BudgetPeriod.DAILY:
        start = day
        end = day + timedelta(days=1)
    elif period is BudgetPeriod.WEEKLY:
        start = day - timedelta(days=day.weekday())
        end = start + timedelta(days=7)
    else:
        start = day.replace(day=1)
        end = (start + timedelta(days=32)).replace(day=1)

    return datetime.combine(start, time.min), datetime.combine(end, time.min)


def recompute_spent(
    budget: Budget,
    personal_expenses: Iterable[PersonalExpense],
    period_start: datetime,
    period_end: datetime,
    converter: CurrencyConverter,
) -> Budget:
    """
    Recompute what has been spent against a budget.

    Counts the budget owner's expense entries (not income) in the budget's
    category and currency context dated within ``[period_start, period_end)``,
    converted to the budget currency with each entry's locked rate.

    Returns:
        A copy of the budget with ``spent`` replaced
    """
    spent = ZERO
    for entry in personal_expenses:
        if (
            entry.type is EntryType.EXPENSE
            and entry.category == budget.category
            and entry.user_id == budget.user_id
            and entry.is_home_country == budget.is_home_country
            and period_start <= entry.date < period_end
        ):
            spent += converter.convert_record(entry, budget.currency)
    return budget.model_copy(update={"spent": spent})


def budget_status(budget: Budget) -> BudgetStatus:
    """How far through its limit a budget is, and whether to alert."""
    percent_used = budget.spent / budget.limit * 100
    return BudgetStatus(
        budget_id=budget.id,
        category=budget.category,
        spent=budget.spent,
        limit=budget.limit,
        remaining=budget.limit - budget.spent,
        percent_used=percent_used,
        is_over_limit=budget.spent > budget.limit,
        alert_reached=percent_used >= budget.alert_threshold,
    )


def personal_summary(
    personal_expenses: Iterable[PersonalExpense],
    user_id: str,
    is_home_country: bool,
    currency: Currency,
    converter: CurrencyConverter,
    period_start: datetime | None = None,
    period_end: datetime | None = None,
) -> PersonalSummary:
    """Income, spending and net for one user's home or abroad entries."""
    income = ZERO
    expenses = ZERO
    for entry in personal_expenses:
        if entry.user_id != user_id or entry.is_home_country != is_home_country:
            continue
        if period_start is not None and entry.date < period_start:
            continue
        if period_end is not None and entry.date >= period_end:
            continue

        amount = converter.convert_record(entry, currency)
        if entry.type is EntryType.INCOME:
            income += amount
        else:
            expenses += amount

    return PersonalSummary(
        currency=currency,
        total_income=income,
        total_expenses=expenses,
        net=income - expenses,
    )
