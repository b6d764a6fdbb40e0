"""Pure balance computation from the expense and settlement log.

Nothing here caches or mutates state: every figure is recomputed from the
records passed in, so a balance can never drift from the ledger it
describes.

Pairwise balances are keyed by an ordered pair ``(a, b)`` with ``a < b``.
A positive value means ``b`` owes ``a``; negative means ``a`` owes ``b``.
"""

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import datetime
from decimal import Decimal

from .converter import CurrencyConverter
from .currencies import Currency
from .models import (
    Expense,
    FriendBalance,
    Group,
    GroupBalance,
    Settlement,
    TotalBalances,
    Transfer,
    User,
)

logger = logging.getLogger(__name__)

PairKey = tuple[str, str]

# Maps an expense and its amount in the base currency to each splitter's share.
SplitStrategy = Callable[[Expense, Decimal], dict[str, Decimal]]

ZERO = Decimal("0")

# Offline converter used when callers do not inject one.
_STATIC_CONVERTER = CurrencyConverter()


def equal_split(expense: Expense, amount: Decimal) -> dict[str, Decimal]:
    """Divide the amount evenly between every splitter."""
    share = amount / len(expense.split_between)
    return {user_id: share for user_id in expense.split_between}


def pair_key(user_a: str, user_b: str) -> PairKey:
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


def balance_between(
    balances: dict[PairKey, Decimal], user_id: str, other_id: str
) -> Decimal:
    """Signed balance from ``user_id``'s side: positive means ``other_id`` owes them."""
    key = pair_key(user_id, other_id)
    value = balances.get(key, ZERO)
    return value if user_id == key[0] else -value


def counterparty_balances(
    balances: dict[PairKey, Decimal], user_id: str
) -> dict[str, Decimal]:
    """Every counterparty ``user_id`` shares a pair with, signed from their side."""
    result: dict[str, Decimal] = {}
    for a, b in balances:
        if a == user_id:
            result[b] = balance_between(balances, user_id, b)
        elif b == user_id:
            result[a] = balance_between(balances, user_id, a)
    return result


def pairwise_balances(
    expenses: Iterable[Expense],
    settlements: Iterable[Settlement],
    base_currency: Currency = Currency.USD,
    converter: CurrencyConverter | None = None,
    strategy: SplitStrategy = equal_split,
) -> dict[PairKey, Decimal]:
    """
    Net every shared expense and settlement into one signed value per pair.

    Steps:
    1. Convert each non-draft expense to the base currency (honoring a
       locked rate) and split it
    2. Accumulate each splitter's share as a debt to the payer
    3. Collapse opposite debts of the same pair into one signed value
    4. Replay settlements in date order, never letting one flip a balance

    Args:
        expenses: Shared expenses; drafts are ignored
        settlements: Recorded settlement payments
        base_currency: Currency all balances are expressed in
        converter: Rate source; defaults to the static table
        strategy: How an expense is divided between its splitters

    Returns:
        Mapping of ordered user pair to signed balance
    """
    converter = converter or _STATIC_CONVERTER

    debts: dict[tuple[str, str], Decimal] = defaultdict(Decimal)
    for expense in expenses:
        if expense.is_draft:
            continue
        amount = converter.convert_record(expense, base_currency)
        for user_id, share in strategy(expense, amount).items():
            # The payer's own share cancels against what they paid.
            if user_id != expense.paid_by:
                debts[(user_id, expense.paid_by)] += share

    balances: dict[PairKey, Decimal] = defaultdict(Decimal)
    for (debtor, creditor), amount in debts.items():
        key = pair_key(debtor, creditor)
        balances[key] += amount if creditor == key[0] else -amount

    for settlement in sorted(settlements, key=lambda s: s.date):
        amount = converter.convert_record(settlement, base_currency)
        _apply_settlement(balances, settlement, amount)

    return dict(balances)


def _apply_settlement(
    balances: dict[PairKey, Decimal], settlement: Settlement, amount: Decimal
):
    key = pair_key(settlement.from_user_id, settlement.to_user_id)
    current = balances.get(key, ZERO)
    creditor_first = settlement.to_user_id == key[0]
    owed = current if creditor_first else -current

    if owed <= 0:
        logger.debug(
            f"Settlement {settlement.id} has no outstanding debt to reduce "
            f"({settlement.from_user_id} -> {settlement.to_user_id})"
        )
        return

    reduction = min(amount, owed)
    if reduction < amount:
        logger.debug(
            f"Settlement {settlement.id} exceeds outstanding {owed}, clamped to zero"
        )
    balances[key] = current - reduction if creditor_first else current + reduction


def net_balances(balances: dict[PairKey, Decimal]) -> dict[str, Decimal]:
    """Each user's net position: positive means others owe them overall."""
    net: dict[str, Decimal] = defaultdict(Decimal)
    for (a, b), value in balances.items():
        net[a] += value
        net[b] -= value
    return dict(net)


def friend_balances(
    expenses: list[Expense],
    settlements: list[Settlement],
    friends: list[User],
    current_user_id: str,
    base_currency: Currency = Currency.USD,
    converter: CurrencyConverter | None = None,
    strategy: SplitStrategy = equal_split,
) -> list[FriendBalance]:
    """
    One balance per friend, signed from the current user's side.

    Covers every expense the two share, in a group or not, so each value is
    the complete pairwise balance.
    """
    balances = pairwise_balances(
        expenses, settlements, base_currency, converter, strategy
    )

    result = []
    for friend in friends:
        if friend.id == current_user_id:
            continue
        result.append(
            FriendBalance(
                friend_id=friend.id,
                friend_name=friend.name,
                balance=balance_between(balances, current_user_id, friend.id),
                last_transaction=_last_shared_activity(
                    expenses, settlements, current_user_id, friend.id
                ),
            )
        )
    return result


def _last_shared_activity(
    expenses: list[Expense],
    settlements: list[Settlement],
    user_id: str,
    other_id: str,
) -> datetime | None:
    dates = []
    for expense in expenses:
        if expense.is_draft:
            continue
        involved = {expense.paid_by, *expense.split_between}
        if user_id in involved and other_id in involved:
            dates.append(expense.date)
    for settlement in settlements:
        if {settlement.from_user_id, settlement.to_user_id} == {user_id, other_id}:
            dates.append(settlement.date)
    return max(dates) if dates else None


def group_balances(
    group: Group,
    expenses: list[Expense],
    settlements: list[Settlement],
    current_user_id: str,
    base_currency: Currency = Currency.USD,
    converter: CurrencyConverter | None = None,
    strategy: SplitStrategy = equal_split,
) -> GroupBalance:
    """
    The current user's position within one group.

    Only the group's expenses, and settlements made from within the group,
    are netted.
    """
    balances = pairwise_balances(
        [e for e in expenses if e.group_id == group.id],
        [s for s in settlements if s.group_id == group.id],
        base_currency,
        converter,
        strategy,
    )
    per_member = counterparty_balances(balances, current_user_id)

    total_owed = sum((v for v in per_member.values() if v > 0), ZERO)
    total_owing = sum((-v for v in per_member.values() if v < 0), ZERO)

    return GroupBalance(
        group_id=group.id,
        group_name=group.name,
        members=list(group.members),
        total_owed=total_owed,
        total_owing=total_owing,
        net_balance=total_owed - total_owing,
        per_member=per_member,
    )


def total_balances(
    group_balances: list[GroupBalance], friend_balances: list[FriendBalance]
) -> TotalBalances:
    """
    Combine group and friend views, counting each counterparty once.

    A friend balance already covers every expense shared with that friend,
    including group expenses, so group figures only contribute for members
    who have no friend entry.
    """
    per_counterparty: dict[str, Decimal] = {}
    for fb in friend_balances:
        per_counterparty[fb.friend_id] = fb.balance

    friend_ids = set(per_counterparty)
    for gb in group_balances:
        for member_id, value in gb.per_member.items():
            if member_id in friend_ids:
                continue
            per_counterparty[member_id] = per_counterparty.get(member_id, ZERO) + value

    total_owed = sum((v for v in per_counterparty.values() if v > 0), ZERO)
    total_owing = sum((-v for v in per_counterparty.values() if v < 0), ZERO)

    return TotalBalances(
        total_owed=total_owed,
        total_owing=total_owing,
        net_balance=total_owed - total_owing,
        detailed_balances=per_counterparty,
    )


def suggest_transfers(
    net: dict[str, Decimal], tolerance: Decimal = Decimal("0.000001")
) -> list[Transfer]:
    """
    Greedy debt simplification: largest debtor pays largest creditor first.

    Args:
        net: Per-user net balances (see net_balances)
        tolerance: Residues at or below this are treated as settled

    Returns:
        Transfers that bring every net balance to zero
    """
    creditors = sorted(
        ([uid, bal] for uid, bal in net.items() if bal > tolerance),
        key=lambda x: (-x[1], x[0]),
    )
    debtors = sorted(
        ([uid, -bal] for uid, bal in net.items() if bal < -tolerance),
        key=lambda x: (-x[1], x[0]),
    )

    transfers = []
    i = j = 0
    while i < len(debtors) and j < len(creditors):
        debtor_id, debt = debtors[i]
        creditor_id, credit = creditors[j]

        amount = min(debt, credit)
        transfers.append(
            Transfer(from_user_id=debtor_id, to_user_id=creditor_id, amount=amount)
        )
        debtors[i][1] = debt - amount
        creditors[j][1] = credit - amount

        if debtors[i][1] <= tolerance:
            i += 1
        if creditors[j][1] <= tolerance:
            j += 1

    return transfers


def users_in_expenses(expenses: Iterable[Expense]) -> list[str]:
    """Every user id that paid for or shares any of the expenses, sorted."""
    users: set[str] = set()
    for expense in expenses:
        users.add(expense.paid_by)
        users.update(expense.split_between)
    return sorted(users)
