"""Pydantic domain models for RoomLedger."""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .currencies import Currency


def new_id() -> str:
    """Generate a random record identifier."""
    return uuid.uuid4().hex


def _normalize_currency(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().upper()
    return value


def _to_naive_local(value: datetime) -> datetime:
    """Ledger timestamps are naive local time; aware values are converted."""
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


# ============================================================================
# Enumerations
# ============================================================================


class ExpenseCategory(StrEnum):
    FOOD = "food"
    TRANSPORTATION = "transportation"
    UTILITIES = "utilities"
    ENTERTAINMENT = "entertainment"
    SHOPPING = "shopping"
    HEALTHCARE = "healthcare"
    EDUCATION = "education"
    RENT = "rent"
    GROCERIES = "groceries"
    OTHER = "other"


class IncomeCategory(StrEnum):
    SALARY = "salary"
    FREELANCE = "freelance"
    PART_TIME = "part_time"
    FAMILY_SUPPORT = "family_support"
    SCHOLARSHIP = "scholarship"
    INVESTMENT = "investment"
    OTHER = "other"


class EntryType(StrEnum):
    INCOME = "income"
    EXPENSE = "expense"


class BudgetPeriod(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# ============================================================================
# Directory Models
# ============================================================================


class User(BaseModel):
    """A participant that can pay for or share expenses."""

    id: str = Field(min_length=1)
    name: str
    email: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)


class Group(BaseModel):
    """A named subset of participants (a flat, a trip, a club)."""

    id: str = Field(default_factory=new_id, min_length=1)
    name: str
    description: str | None = None
    members: list[str] = Field(default_factory=list)
    created_by: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)

    @field_validator("members")
    @classmethod
    def _dedupe_members(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))


# ============================================================================
# Ledger Models
# ============================================================================


class Expense(BaseModel):
    """A shared expense paid by one user and split between several."""

    id: str = Field(default_factory=new_id, min_length=1)
    title: str = ""
    description: str | None = None
    amount: Decimal = Field(gt=0)
    currency: Currency = Currency.USD
    category: ExpenseCategory = ExpenseCategory.OTHER
    paid_by: str = Field(min_length=1)
    split_between: list[str] = Field(min_length=1)
    group_id: str | None = None
    date: datetime = Field(default_factory=datetime.now)
    created_at: datetime = Field(default_factory=datetime.now)
    is_draft: bool = False  # drafts never affect balances
    receipt: str | None = None  # image reference from a receipt scan
    # Units of `currency` per one USD, captured when the expense was recorded.
    locked_exchange_rate: Decimal | None = Field(default=None, gt=0)

    normalize_currency = field_validator("currency", mode="before")(
        _normalize_currency
    )
    naive_dates = field_validator("date", "created_at")(_to_naive_local)

    @field_validator("split_between")
    @classmethod
    def _dedupe_splitters(cls, v: list[str]) -> list[str]:
        if any(not user_id for user_id in v):
            raise ValueError("split_between contains an empty user id")
        return list(dict.fromkeys(v))


class PersonalExpense(BaseModel):
    """A single-owner income or expense entry for personal budgeting."""

    id: str = Field(default_factory=new_id, min_length=1)
    title: str = ""
    description: str | None = None
    amount: Decimal = Field(gt=0)
    currency: Currency = Currency.USD
    category: ExpenseCategory | IncomeCategory = ExpenseCategory.OTHER
    type: EntryType = EntryType.EXPENSE
    date: datetime = Field(default_factory=datetime.now)
    is_home_country: bool = False
    user_id: str = Field(min_length=1)
    created_at: datetime = Field(default_factory=datetime.now)
    # Units of `currency` per one USD, captured when the entry was created.
    locked_exchange_rate: Decimal | None = Field(default=None, gt=0)

    normalize_currency = field_validator("currency", mode="before")(
        _normalize_currency
    )
    naive_dates = field_validator("date", "created_at")(_to_naive_local)

    @model_validator(mode="after")
    def _category_matches_type(self) -> "PersonalExpense":
        enum_cls = IncomeCategory if self.type is EntryType.INCOME else ExpenseCategory
        try:
            self.category = enum_cls(str(self.category))
        except ValueError as e:
            raise ValueError(
                f"Category {str(self.category)!r} is not valid for {self.type} entries"
            ) from e
        return self


class Settlement(BaseModel):
    """A recorded payment between two users. Never mutated once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id, min_length=1)
    from_user_id: str = Field(min_length=1)
    to_user_id: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    currency: Currency = Currency.USD
    description: str = "Balance settlement"
    group_id: str | None = None
    date: datetime = Field(default_factory=datetime.now)
    locked_exchange_rate: Decimal | None = Field(default=None, gt=0)

    normalize_currency = field_validator("currency", mode="before")(
        _normalize_currency
    )
    naive_date = field_validator("date")(_to_naive_local)

    @model_validator(mode="after")
    def _distinct_parties(self) -> "Settlement":
        if self.from_user_id == self.to_user_id:
            raise ValueError("A settlement needs two different users")
        return self


class Budget(BaseModel):
    """A spending limit for one category over a recurring period."""

    id: str = Field(default_factory=new_id, min_length=1)
    category: ExpenseCategory
    limit: Decimal = Field(gt=0)
    # Derived from personal expenses, see budgets.recompute_spent
    spent: Decimal = Field(default=Decimal("0"), ge=0)
    currency: Currency = Currency.USD
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    is_home_country: bool = False
    user_id: str = Field(min_length=1)
    created_at: datetime = Field(default_factory=datetime.now)
    alert_threshold: Decimal = Field(default=Decimal("80"), gt=0, le=100)  # percent
    is_active: bool = True

    normalize_currency = field_validator("currency", mode="before")(
        _normalize_currency
    )


class LedgerSnapshot(BaseModel):
    """Everything the repository persists, serialized as one blob."""

    users: list[User] = Field(default_factory=list)
    groups: list[Group] = Field(default_factory=list)
    expenses: list[Expense] = Field(default_factory=list)
    personal_expenses: list[PersonalExpense] = Field(default_factory=list)
    settlements: list[Settlement] = Field(default_factory=list)
    budgets: list[Budget] = Field(default_factory=list)


# ============================================================================
# Derived Models
# ============================================================================


class FriendBalance(BaseModel):
    """Balance with one friend; positive means the friend owes the current user."""

    friend_id: str
    friend_name: str
    balance: Decimal
    last_transaction: datetime | None = None


class GroupBalance(BaseModel):
    """The current user's position inside one group."""

    group_id: str
    group_name: str
    members: list[str]
    total_owed: Decimal
    total_owing: Decimal
    net_balance: Decimal
    per_member: dict[str, Decimal] = Field(default_factory=dict)


class TotalBalances(BaseModel):
    """Totals across every counterparty, each counted once."""

    total_owed: Decimal
    total_owing: Decimal
    net_balance: Decimal
    detailed_balances: dict[str, Decimal] = Field(default_factory=dict)


class Transfer(BaseModel):
    """A suggested payment that helps settle outstanding balances."""

    from_user_id: str
    to_user_id: str
    amount: Decimal


class BudgetStatus(BaseModel):
    budget_id: str
    category: ExpenseCategory
    spent: Decimal
    limit: Decimal
    remaining: Decimal
    percent_used: Decimal
    is_over_limit: bool
    alert_reached: bool


class PersonalSummary(BaseModel):
    currency: Currency
    total_income: Decimal
    total_expenses: Decimal
    net: Decimal


# ============================================================================
# Results
# ============================================================================


class RecordedSettlement(BaseModel):
    """A settlement as written, plus a non-blocking overpayment warning."""

    settlement: Settlement
    warning: str | None = None


class MutationResult(BaseModel):
    """Outcome of a ledger mutation as reported to the UI."""

    ok: bool
    value: Any = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def success(cls, value: Any = None, warnings: list[str] | None = None):
        return cls(ok=True, value=value, warnings=warnings or [])

    @classmethod
    def failure(cls, errors: list[str]):
        return cls(ok=False, errors=errors)
