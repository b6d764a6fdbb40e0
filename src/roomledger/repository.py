"""In-memory ledger with explicit load and flush.

Every mutation builds new record lists and swaps the whole snapshot in one
assignment, so readers always see a complete state. Mutations are expected
to come from a single owner; reads may happen from anywhere.

Durability boundary: ``flush_async`` writes in the background, so a crash
between a mutation and its flush loses that mutation.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from .exceptions import (
    DuplicateRecordError,
    LedgerValidationError,
    PersistenceError,
    RecordNotFoundError,
)
from .models import (
    Budget,
    Expense,
    Group,
    LedgerSnapshot,
    PersonalExpense,
    Settlement,
    User,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class LedgerStore(Protocol):
    """Opaque persistent storage for the serialized ledger."""

    def load(self) -> str | None: ...

    def save(self, blob: str) -> None: ...


def validation_messages(error: ValidationError) -> list[str]:
    """Flatten a pydantic error into short human-readable messages."""
    messages = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"])
        messages.append(f"{location}: {err['msg']}" if location else err["msg"])
    return messages


def apply_updates(record: ModelT, updates: dict[str, Any]) -> ModelT:
    """
    Return a re-validated copy of ``record`` with ``updates`` applied.

    A currency change drops any locked rate, since it was captured for the
    old currency.

    Raises:
        LedgerValidationError: If the result is invalid or the id changes
    """
    record_id = getattr(record, "id", None)
    if "id" in updates and updates["id"] != record_id:
        raise LedgerValidationError("Record ids cannot be changed")

    data = {**record.model_dump(), **updates}
    try:
        updated = type(record).model_validate(data)
    except ValidationError as e:
        raise LedgerValidationError(validation_messages(e)) from e

    old_currency = getattr(record, "currency", None)
    if (
        getattr(updated, "currency", None) != old_currency
        and "locked_exchange_rate" not in updates
    ):
        updated = updated.model_copy(update={"locked_exchange_rate": None})
    return updated


class LedgerRepository:
    """The single source of ledger records. No derived balances are stored."""

    def __init__(self, store: LedgerStore | None = None):
        """
        Initialize an empty repository.

        Args:
            store: Where snapshots are loaded from and flushed to; None keeps
                the ledger in memory only
        """
        self.store = store
        self._state = LedgerSnapshot()
        self._executor: ThreadPoolExecutor | None = None
        self._pending_flush: Future | None = None

    @classmethod
    def open(cls, store: LedgerStore) -> "LedgerRepository":
        """Create a repository and hydrate it from the store."""
        repository = cls(store)
        repository.load()
        return repository

    # ========================================================================
    # Read access
    # ========================================================================

    @property
    def users(self) -> tuple[User, ...]:
        return tuple(self._state.users)

    @property
    def groups(self) -> tuple[Group, ...]:
        return tuple(self._state.groups)

    @property
    def expenses(self) -> tuple[Expense, ...]:
        return tuple(self._state.expenses)

    @property
    def personal_expenses(self) -> tuple[PersonalExpense, ...]:
        return tuple(self._state.personal_expenses)

    @property
    def settlements(self) -> tuple[Settlement, ...]:
        return tuple(self._state.settlements)

    @property
    def budgets(self) -> tuple[Budget, ...]:
        return tuple(self._state.budgets)

    def snapshot(self) -> LedgerSnapshot:
        return self._state

    def get_user(self, user_id: str) -> User | None:
        return _find(self._state.users, user_id)

    def get_group(self, group_id: str) -> Group | None:
        return _find(self._state.groups, group_id)

    def get_expense(self, expense_id: str) -> Expense | None:
        return _find(self._state.expenses, expense_id)

    def get_personal_expense(self, entry_id: str) -> PersonalExpense | None:
        return _find(self._state.personal_expenses, entry_id)

    def get_budget(self, budget_id: str) -> Budget | None:
        return _find(self._state.budgets, budget_id)

    def group_expenses(self, group_id: str) -> list[Expense]:
        return [e for e in self._state.expenses if e.group_id == group_id]

    # ========================================================================
    # Directory
    # ========================================================================

    def add_user(self, user: User) -> User:
        if self.get_user(user.id):
            raise DuplicateRecordError("User", user.id)
        self._replace(users=[*self._state.users, user])
        return user

    def add_group(self, group: Group) -> Group:
        if self.get_group(group.id):
            raise DuplicateRecordError("Group", group.id)
        self._replace(groups=[*self._state.groups, group])
        return group

    def update_group(self, group_id: str, updates: dict[str, Any]) -> Group:
        current = _require(self._state.groups, "Group", group_id)
        updated = apply_updates(current, updates)
        self._replace(groups=_swap(self._state.groups, updated))
        return updated

    def delete_group(self, group_id: str) -> Group:
        """Remove a group and its expenses. Settlements are history and stay."""
        group = _require(self._state.groups, "Group", group_id)
        self._replace(
            groups=[g for g in self._state.groups if g.id != group_id],
            expenses=[e for e in self._state.expenses if e.group_id != group_id],
        )
        logger.info(f"Deleted group {group_id} and its expenses")
        return group

    # ========================================================================
    # Shared expenses
    # ========================================================================

    def add_expense(self, expense: Expense) -> Expense:
        if self.get_expense(expense.id):
            raise DuplicateRecordError("Expense", expense.id)
        self._check_group(expense.group_id)
        self._replace(expenses=[*self._state.expenses, expense])
        return expense

    def update_expense(self, expense_id: str, updates: dict[str, Any]) -> Expense:
        current = _require(self._state.expenses, "Expense", expense_id)
        updated = apply_updates(current, updates)
        self._check_group(updated.group_id)
        self._replace(expenses=_swap(self._state.expenses, updated))
        return updated

    def delete_expense(self, expense_id: str) -> Expense:
        expense = _require(self._state.expenses, "Expense", expense_id)
        self._replace(
            expenses=[e for e in self._state.expenses if e.id != expense_id]
        )
        return expense

    def publish_draft(self, expense_id: str) -> Expense:
        return self.update_expense(expense_id, {"is_draft": False})

    # ========================================================================
    # Settlements (append-only)
    # ========================================================================

    def append_settlement(self, settlement: Settlement) -> Settlement:
        if any(s.id == settlement.id for s in self._state.settlements):
            raise DuplicateRecordError("Settlement", settlement.id)
        self._check_group(settlement.group_id)
        self._replace(settlements=[*self._state.settlements, settlement])
        return settlement

    # ========================================================================
    # Personal expenses and budgets
    # ========================================================================

    def add_personal_expense(self, entry: PersonalExpense) -> PersonalExpense:
        if self.get_personal_expense(entry.id):
            raise DuplicateRecordError("Personal expense", entry.id)
        self._replace(personal_expenses=[*self._state.personal_expenses, entry])
        return entry

    def update_personal_expense(
        self, entry_id: str, updates: dict[str, Any]
    ) -> PersonalExpense:
        current = _require(self._state.personal_expenses, "Personal expense", entry_id)
        updated = apply_updates(current, updates)
        self._replace(personal_expenses=_swap(self._state.personal_expenses, updated))
        return updated

    def delete_personal_expense(self, entry_id: str) -> PersonalExpense:
        entry = _require(self._state.personal_expenses, "Personal expense", entry_id)
        self._replace(
            personal_expenses=[
                e for e in self._state.personal_expenses if e.id != entry_id
            ]
        )
        return entry

    def add_budget(self, budget: Budget) -> Budget:
        if self.get_budget(budget.id):
            raise DuplicateRecordError("Budget", budget.id)
        self._replace(budgets=[*self._state.budgets, budget])
        return budget

    def update_budget(self, budget_id: str, updates: dict[str, Any]) -> Budget:
        current = _require(self._state.budgets, "Budget", budget_id)
        updated = apply_updates(current, updates)
        self._replace(budgets=_swap(self._state.budgets, updated))
        return updated

    def replace_budgets(self, budgets: list[Budget]):
        """Swap in recomputed budgets, matched by id."""
        by_id = {b.id: b for b in budgets}
        self._replace(budgets=[by_id.get(b.id, b) for b in self._state.budgets])

    def delete_budget(self, budget_id: str) -> Budget:
        budget = _require(self._state.budgets, "Budget", budget_id)
        self._replace(budgets=[b for b in self._state.budgets if b.id != budget_id])
        return budget

    # ========================================================================
    # Persistence
    # ========================================================================

    def load(self) -> bool:
        """
        Hydrate from the store.

        An unreadable store leaves the ledger empty rather than partially
        loaded.

        Returns:
            True if the store was read (or was empty), False on failure
        """
        if self.store is None:
            return False

        try:
            blob = self.store.load()
        except PersistenceError as e:
            logger.error(f"Could not read stored ledger, starting empty: {e}")
            self._state = LedgerSnapshot()
            return False

        if blob is None:
            self._state = LedgerSnapshot()
            return True

        try:
            self._state = LedgerSnapshot.model_validate_json(blob)
        except ValidationError as e:
            logger.error(f"Stored ledger is corrupt, starting empty: {e}")
            self._state = LedgerSnapshot()
            return False

        logger.info(
            f"Loaded ledger: {len(self._state.expenses)} expenses, "
            f"{len(self._state.settlements)} settlements"
        )
        return True

    def save(self):
        """
        Write the current snapshot synchronously.

        Raises:
            PersistenceError: If the store rejects the write
        """
        if self.store is None:
            return
        self.store.save(self._state.model_dump_json())

    def flush_async(self):
        """Queue the current snapshot for writing and return immediately."""
        if self.store is None:
            return
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="ledger-flush"
            )
        self._pending_flush = self._executor.submit(
            self._write, self.store, self._state
        )

    def wait_for_flush(self, timeout: float | None = None):
        """Block until the most recently queued flush has finished."""
        pending = self._pending_flush
        if pending is not None:
            pending.result(timeout=timeout)

    def close(self):
        """Finish queued flushes and stop the flush worker."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _write(self, store: LedgerStore, snapshot: LedgerSnapshot):
        try:
            store.save(snapshot.model_dump_json())
        except PersistenceError as e:
            logger.error(f"Failed to flush ledger: {e}")

    # ========================================================================
    # Helpers
    # ========================================================================

    def _replace(self, **changes: Any):
        self._state = self._state.model_copy(update=changes)

    def _check_group(self, group_id: str | None):
        if group_id is not None and self.get_group(group_id) is None:
            raise RecordNotFoundError("Group", group_id)


def _find(records: list[ModelT], record_id: str) -> ModelT | None:
    for record in records:
        if getattr(record, "id", None) == record_id:
            return record
    return None


def _require(records: list[ModelT], kind: str, record_id: str) -> ModelT:
    record = _find(records, record_id)
    if record is None:
        raise RecordNotFoundError(kind, record_id)
    return record


def _swap(records: list[ModelT], updated: ModelT) -> list[ModelT]:
    updated_id = getattr(updated, "id", None)
    return [updated if getattr(r, "id", None) == updated_id else r for r in records]
