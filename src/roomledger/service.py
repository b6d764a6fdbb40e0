"""Service layer composing the ledger, converter and balance calculator.

This is the surface screens talk to. Mutations return a ``MutationResult``
instead of raising, update memory immediately and flush in the background.
Reads recompute balances from the ledger every time.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from .balances import (
    friend_balances,
    group_balances,
    net_balances,
    pairwise_balances,
    suggest_transfers,
    total_balances,
    users_in_expenses,
)
from .budgets import budget_status, period_bounds, personal_summary, recompute_spent
from .config import Settings
from .converter import CurrencyConverter, PricedRecord
from .currencies import PIVOT_CURRENCY, Currency, parse_currency
from .db import Database, DatabaseStore
from .exceptions import LedgerValidationError
from .models import (
    Budget,
    BudgetStatus,
    Expense,
    FriendBalance,
    Group,
    GroupBalance,
    MutationResult,
    PersonalExpense,
    PersonalSummary,
    TotalBalances,
    Transfer,
    User,
)
from .repository import LedgerRepository, validation_messages
from .settlements import SettlementEngine

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def build_record(model: type[ModelT], fields: dict[str, Any]) -> ModelT:
    """Validate raw fields into a model, raising the ledger's own error type."""
    try:
        return model.model_validate(fields)
    except ValidationError as e:
        raise LedgerValidationError(validation_messages(e)) from e


class LedgerService:
    """Shared-expense ledger operations for one device."""

    def __init__(
        self,
        settings: Settings,
        repository: LedgerRepository,
        converter: CurrencyConverter,
    ):
        """Initialize the ledger service."""
        self.settings = settings
        self.repository = repository
        self.converter = converter
        self.base_currency = settings.base_currency
        self.settlement_engine = SettlementEngine(
            repository, converter, settings.base_currency
        )

    @classmethod
    def from_settings(cls, settings: Settings, database: Database) -> "LedgerService":
        """Wire a service to the SQLite store and configured rate source."""
        repository = LedgerRepository.open(DatabaseStore(database))
        converter = CurrencyConverter.from_settings(settings)
        return cls(settings, repository, converter)

    def close(self):
        """Flush pending writes and stop background workers."""
        self.repository.close()
        self.converter.close()

    # ========================================================================
    # Mutations
    # ========================================================================

    def _mutate(self, description: str, action: Callable[[], Any]) -> MutationResult:
        try:
            value = action()
        except LedgerValidationError as e:
            logger.info(f"Rejected {description}: {e}")
            return MutationResult.failure(e.errors)

        self.repository.flush_async()
        logger.info(f"Applied {description}")
        return MutationResult.success(value)

    def add_user(
        self, user_id: str, name: str, email: str | None = None
    ) -> MutationResult:
        return self._mutate(
            f"add user {user_id}",
            lambda: self.repository.add_user(
                build_record(User, {"id": user_id, "name": name, "email": email})
            ),
        )

    def add_group(self, **fields: Any) -> MutationResult:
        return self._mutate(
            "add group",
            lambda: self.repository.add_group(build_record(Group, fields)),
        )

    def update_group(self, group_id: str, updates: dict[str, Any]) -> MutationResult:
        return self._mutate(
            f"update group {group_id}",
            lambda: self.repository.update_group(group_id, updates),
        )

    def delete_group(self, group_id: str) -> MutationResult:
        return self._mutate(
            f"delete group {group_id}",
            lambda: self.repository.delete_group(group_id),
        )

    def add_expense(self, **fields: Any) -> MutationResult:
        """Validate, lock the current rate, and append a shared expense."""

        def action() -> Expense:
            expense = self.converter.lock_rate(build_record(Expense, fields))
            return self.repository.add_expense(expense)

        return self._mutate("add expense", action)

    def update_expense(
        self, expense_id: str, updates: dict[str, Any]
    ) -> MutationResult:
        def action() -> Expense:
            updated = self.repository.update_expense(expense_id, updates)
            if updated.locked_exchange_rate is None:
                updated = self.repository.update_expense(
                    expense_id,
                    {"locked_exchange_rate": self._current_usd_rate(updated)},
                )
            return updated

        return self._mutate(f"update expense {expense_id}", action)

    def delete_expense(self, expense_id: str) -> MutationResult:
        return self._mutate(
            f"delete expense {expense_id}",
            lambda: self.repository.delete_expense(expense_id),
        )

    def publish_draft(self, expense_id: str) -> MutationResult:
        return self._mutate(
            f"publish expense {expense_id}",
            lambda: self.repository.publish_draft(expense_id),
        )

    def record_settlement(
        self,
        from_user_id: str,
        to_user_id: str,
        amount: Decimal,
        currency: Currency | str | None = None,
        date: datetime | None = None,
        group_id: str | None = None,
    ) -> MutationResult:
        """Record a settle-up payment; an overpayment is reported as a warning."""
        try:
            recorded = self.settlement_engine.record(
                from_user_id,
                to_user_id,
                amount,
                currency or self.base_currency,
                date=date,
                group_id=group_id,
            )
        except LedgerValidationError as e:
            logger.info(f"Rejected settlement: {e}")
            return MutationResult.failure(e.errors)

        self.repository.flush_async()
        warnings = [recorded.warning] if recorded.warning else []
        return MutationResult.success(recorded.settlement, warnings=warnings)

    def add_personal_expense(self, **fields: Any) -> MutationResult:
        """
        Append a personal entry with its USD rate locked.

        The currency defaults to the home or primary currency depending on
        ``is_home_country``.
        """

        def action() -> PersonalExpense:
            data = dict(fields)
            if data.get("currency") is None:
                data["currency"] = self.settings.currency_for_context(
                    bool(data.get("is_home_country", False))
                )
            entry = self.converter.lock_rate(build_record(PersonalExpense, data))
            return self.repository.add_personal_expense(entry)

        return self._mutate("add personal expense", action)

    def update_personal_expense(
        self, entry_id: str, updates: dict[str, Any]
    ) -> MutationResult:
        def action() -> PersonalExpense:
            updated = self.repository.update_personal_expense(entry_id, updates)
            if updated.locked_exchange_rate is None:
                updated = self.repository.update_personal_expense(
                    entry_id,
                    {"locked_exchange_rate": self._current_usd_rate(updated)},
                )
            return updated

        return self._mutate(f"update personal expense {entry_id}", action)

    def delete_personal_expense(self, entry_id: str) -> MutationResult:
        return self._mutate(
            f"delete personal expense {entry_id}",
            lambda: self.repository.delete_personal_expense(entry_id),
        )

    def add_budget(self, **fields: Any) -> MutationResult:
        def action() -> Budget:
            data = dict(fields)
            if data.get("currency") is None:
                data["currency"] = self.settings.currency_for_context(
                    bool(data.get("is_home_country", False))
                )
            return self.repository.add_budget(build_record(Budget, data))

        return self._mutate("add budget", action)

    def update_budget(self, budget_id: str, updates: dict[str, Any]) -> MutationResult:
        return self._mutate(
            f"update budget {budget_id}",
            lambda: self.repository.update_budget(budget_id, updates),
        )

    def delete_budget(self, budget_id: str) -> MutationResult:
        return self._mutate(
            f"delete budget {budget_id}",
            lambda: self.repository.delete_budget(budget_id),
        )

    def recompute_budgets(
        self, user_id: str, reference: datetime | None = None
    ) -> list[BudgetStatus]:
        """Refresh ``spent`` on the user's active budgets for the current period."""
        reference = reference or datetime.now()
        entries = self.repository.personal_expenses

        updated = []
        for budget in self.repository.budgets:
            if budget.user_id != user_id or not budget.is_active:
                continue
            start, end = period_bounds(budget.period, reference)
            updated.append(
                recompute_spent(budget, entries, start, end, self.converter)
            )

        if updated:
            self.repository.replace_budgets(updated)
            self.repository.flush_async()
        return [budget_status(b) for b in updated]

    # ========================================================================
    # Balances
    # ========================================================================

    def get_pairwise_balances(self) -> dict[tuple[str, str], Decimal]:
        return pairwise_balances(
            self.repository.expenses,
            self.repository.settlements,
            self.base_currency,
            self.converter,
        )

    def get_friend_balances(self, current_user_id: str) -> list[FriendBalance]:
        """One entry per user in the directory other than the current user."""
        return friend_balances(
            list(self.repository.expenses),
            list(self.repository.settlements),
            [u for u in self.repository.users if u.id != current_user_id],
            current_user_id,
            self.base_currency,
            self.converter,
        )

    def get_group_balances(self, current_user_id: str) -> list[GroupBalance]:
        """Balances in every group the current user belongs to."""
        expenses = list(self.repository.expenses)
        settlements = list(self.repository.settlements)
        return [
            group_balances(
                group,
                expenses,
                settlements,
                current_user_id,
                self.base_currency,
                self.converter,
            )
            for group in self.repository.groups
            if current_user_id in group.members
        ]

    def get_total_balances(self, current_user_id: str) -> TotalBalances:
        """Totals across every counterparty, in or outside the directory."""
        expenses = list(self.repository.expenses)
        settlements = list(self.repository.settlements)
        counterparties = self._counterparties(current_user_id)
        friends = friend_balances(
            expenses,
            settlements,
            counterparties,
            current_user_id,
            self.base_currency,
            self.converter,
        )
        return total_balances(self.get_group_balances(current_user_id), friends)

    def suggest_settle_up(self, group_id: str | None = None) -> list[Transfer]:
        """Fewest transfers that would clear all balances (or one group's)."""
        expenses = list(self.repository.expenses)
        settlements = list(self.repository.settlements)
        if group_id is not None:
            expenses = [e for e in expenses if e.group_id == group_id]
            settlements = [s for s in settlements if s.group_id == group_id]

        balances = pairwise_balances(
            expenses, settlements, self.base_currency, self.converter
        )
        return suggest_transfers(net_balances(balances))

    def _counterparties(self, current_user_id: str) -> list[User]:
        known = {u.id: u for u in self.repository.users}
        ids = set(known) | set(users_in_expenses(self.repository.expenses))
        ids.discard(current_user_id)
        return [known.get(uid) or User(id=uid, name=uid) for uid in sorted(ids)]

    # ========================================================================
    # Currency
    # ========================================================================

    def convert(
        self,
        amount: Decimal,
        from_currency: Currency | str,
        to_currency: Currency | str,
    ) -> Decimal:
        return self.converter.convert(amount, from_currency, to_currency)

    def effective_rate(self, record: PricedRecord) -> Decimal:
        return self.converter.effective_rate(record)

    def personal_summary(
        self, user_id: str, is_home_country: bool
    ) -> PersonalSummary:
        return personal_summary(
            self.repository.personal_expenses,
            user_id,
            is_home_country,
            self.settings.currency_for_context(is_home_country),
            self.converter,
        )

    def _current_usd_rate(self, record: PricedRecord) -> Decimal:
        return self.converter.rate(PIVOT_CURRENCY, parse_currency(record.currency))
