"""Tests for the balance calculator."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from roomledger.balances import (
    balance_between,
    equal_split,
    friend_balances,
    group_balances,
    net_balances,
    pair_key,
    pairwise_balances,
    suggest_transfers,
    total_balances,
    users_in_expenses,
)
from roomledger.converter import CurrencyConverter
from roomledger.currencies import Currency
from roomledger.models import Expense, Group, Settlement, User


def make_expense(
    amount: str,
    paid_by: str,
    split_between: list[str],
    currency: Currency = Currency.USD,
    **kwargs,
) -> Expense:
    """Create an expense dated early in 2024 unless overridden."""
    kwargs.setdefault("date", datetime(2024, 1, 15, 12, 0))
    return Expense(
        amount=Decimal(amount),
        currency=currency,
        paid_by=paid_by,
        split_between=split_between,
        **kwargs,
    )


def make_settlement(
    from_user: str, to_user: str, amount: str, day: int = 20, **kwargs
) -> Settlement:
    return Settlement(
        from_user_id=from_user,
        to_user_id=to_user,
        amount=Decimal(amount),
        date=datetime(2024, 1, day, 12, 0),
        **kwargs,
    )


@pytest.fixture
def users():
    return [
        User(id="alice", name="Alice"),
        User(id="bob", name="Bob"),
        User(id="carol", name="Carol"),
    ]


class TestPairwiseBalances:
    """Tests for pairwise netting of expenses."""

    def test_equal_three_way_split(self):
        """A pays 90 split three ways: B and C each owe A 30."""
        balances = pairwise_balances(
            [make_expense("90", "alice", ["alice", "bob", "carol"])], []
        )

        assert balance_between(balances, "alice", "bob") == Decimal("30")
        assert balance_between(balances, "alice", "carol") == Decimal("30")
        assert balance_between(balances, "bob", "alice") == Decimal("-30")
        assert balance_between(balances, "bob", "carol") == Decimal("0")

    def test_self_paid_expense_nets_to_zero(self):
        """A single splitter who is also the payer creates no debt."""
        balances = pairwise_balances([make_expense("42", "alice", ["alice"])], [])

        assert all(value == 0 for value in balances.values())
        assert net_balances(balances).get("alice", Decimal("0")) == 0

    def test_payer_outside_split_is_fully_repaid(self):
        """A payer not in the split set is owed the whole amount."""
        expenses = [make_expense("50", "alice", ["bob", "carol"])]

        balances = pairwise_balances(expenses, [])

        assert balance_between(balances, "alice", "bob") == Decimal("25")
        assert balance_between(balances, "alice", "carol") == Decimal("25")

    def test_opposite_debts_net_into_one_value(self):
        """Debts in both directions between a pair collapse to one balance."""
        expenses = [
            make_expense("100", "alice", ["alice", "bob"]),
            make_expense("30", "bob", ["alice", "bob"]),
        ]

        balances = pairwise_balances(expenses, [])

        assert balances == {pair_key("alice", "bob"): Decimal("35")}

    def test_netting_then_settling_the_difference(self):
        """B owes A 15, A owes B 25: A owes B 10 until A pays it."""
        expenses = [
            make_expense("30", "alice", ["alice", "bob"]),
            make_expense("50", "bob", ["alice", "bob"]),
        ]

        before = pairwise_balances(expenses, [])
        after = pairwise_balances(expenses, [make_settlement("alice", "bob", "10")])

        assert balance_between(before, "bob", "alice") == Decimal("10")
        assert balance_between(after, "bob", "alice") == 0

    def test_total_owed_to_payer(self, users):
        expenses = [make_expense("90", "alice", ["alice", "bob", "carol"])]

        totals = total_balances([], friend_balances(expenses, [], users, "alice"))

        assert totals.total_owed == Decimal("60")
        assert totals.net_balance == Decimal("60")

    def test_drafts_are_ignored(self):
        expenses = [
            make_expense("90", "alice", ["alice", "bob", "carol"], is_draft=True),
        ]

        assert pairwise_balances(expenses, []) == {}

    def test_conservation_holds_for_uneven_division(self):
        """Net balances across everyone sum to zero even when shares repeat."""
        expenses = [
            make_expense("100", "alice", ["alice", "bob", "carol"]),
            make_expense("10", "bob", ["alice", "carol"]),
            make_expense("7", "carol", ["alice", "bob", "carol"]),
        ]
        settlements = [make_settlement("bob", "alice", "5")]

        net = net_balances(pairwise_balances(expenses, settlements))

        assert abs(sum(net.values())) < Decimal("1e-20")

    def test_pair_key_is_ordered(self):
        assert pair_key("bob", "alice") == ("alice", "bob")
        assert pair_key("alice", "bob") == ("alice", "bob")

    def test_custom_split_strategy(self):
        """A strategy decides each splitter's share of the converted amount."""

        def payer_pays_nothing(expense, amount):
            others = [u for u in expense.split_between if u != expense.paid_by]
            return {u: amount / len(others) for u in others}

        balances = pairwise_balances(
            [make_expense("90", "alice", ["alice", "bob", "carol"])],
            [],
            strategy=payer_pays_nothing,
        )

        assert balance_between(balances, "alice", "bob") == Decimal("45")

    def test_equal_split_covers_every_splitter(self):
        expense = make_expense("90", "alice", ["alice", "bob", "carol"])

        shares = equal_split(expense, Decimal("90"))

        assert shares == {
            "alice": Decimal("30"),
            "bob": Decimal("30"),
            "carol": Decimal("30"),
        }


class TestMultiCurrency:
    """Tests for converting expenses into the base currency."""

    def test_foreign_expense_converted_with_static_table(self):
        """750 INR at 75 INR/USD is 10 USD, split two ways."""
        balances = pairwise_balances(
            [make_expense("750", "alice", ["alice", "bob"], Currency.INR)], []
        )

        assert balance_between(balances, "alice", "bob") == Decimal("5")

    def test_locked_rate_wins_over_current_rate(self):
        """A recorded rate is used even when the table moves."""
        converter = CurrencyConverter()
        expense = make_expense(
            "750",
            "alice",
            ["alice", "bob"],
            Currency.INR,
            locked_exchange_rate=Decimal("75"),
        )
        converter.static_rates[Currency.INR] = Decimal("83.5")

        balances = pairwise_balances([expense], [], converter=converter)

        assert balance_between(balances, "alice", "bob") == Decimal("5")

    def test_base_currency_other_than_usd(self):
        """Balances can be expressed in any supported currency."""
        balances = pairwise_balances(
            [make_expense("20", "alice", ["alice", "bob"])],
            [],
            base_currency=Currency.EUR,
        )

        assert balance_between(balances, "alice", "bob") == Decimal("8.5")


class TestSettlements:
    """Tests for replaying settlements into balances."""

    def test_full_settlement_zeroes_balance(self):
        expenses = [make_expense("90", "alice", ["alice", "bob", "carol"])]
        settlements = [make_settlement("bob", "alice", "30")]

        balances = pairwise_balances(expenses, settlements)

        assert balance_between(balances, "alice", "bob") == 0
        assert balance_between(balances, "alice", "carol") == Decimal("30")

    def test_partial_settlement_reduces_balance(self):
        expenses = [make_expense("90", "alice", ["alice", "bob", "carol"])]
        settlements = [make_settlement("bob", "alice", "12.50")]

        balances = pairwise_balances(expenses, settlements)

        assert balance_between(balances, "alice", "bob") == Decimal("17.50")

    def test_overpayment_clamps_to_zero(self):
        """A settlement never flips who owes whom."""
        expenses = [make_expense("90", "alice", ["alice", "bob", "carol"])]
        settlements = [make_settlement("bob", "alice", "100")]

        balances = pairwise_balances(expenses, settlements)

        assert balance_between(balances, "alice", "bob") == 0

    def test_settlement_without_debt_is_ignored(self):
        """Paying someone you do not owe changes nothing."""
        expenses = [make_expense("90", "alice", ["alice", "bob", "carol"])]
        settlements = [make_settlement("alice", "bob", "10")]

        balances = pairwise_balances(expenses, settlements)

        assert balance_between(balances, "alice", "bob") == Decimal("30")

    def test_settlements_replayed_in_date_order(self):
        """Later settlements only see what earlier ones left outstanding."""
        expenses = [make_expense("40", "alice", ["alice", "bob"])]
        settlements = [
            make_settlement("bob", "alice", "15", day=25),
            make_settlement("bob", "alice", "10", day=21),
        ]

        balances = pairwise_balances(expenses, settlements)

        assert balance_between(balances, "alice", "bob") == 0

    def test_foreign_currency_settlement(self):
        """A settlement in INR is converted before reducing the balance."""
        expenses = [make_expense("20", "alice", ["alice", "bob"])]
        settlements = [
            make_settlement("bob", "alice", "375", currency=Currency.INR),
        ]

        balances = pairwise_balances(expenses, settlements)

        assert balance_between(balances, "alice", "bob") == Decimal("5")

    def test_timezone_aware_dates_mix_with_naive(self, users):
        expenses = [
            make_expense(
                "40",
                "alice",
                ["alice", "bob"],
                date=datetime(2024, 1, 22, 9, 0, tzinfo=timezone.utc),
            )
        ]
        settlements = [
            make_settlement("bob", "alice", "15", day=21),
            Settlement(
                from_user_id="bob",
                to_user_id="alice",
                amount=Decimal("10"),
                date=datetime(2024, 1, 20, 12, 0, tzinfo=timezone.utc),
            ),
        ]

        balances = pairwise_balances(expenses, settlements)
        [bob] = friend_balances(expenses, settlements, users[1:2], "alice")

        assert balance_between(balances, "alice", "bob") == Decimal("0")
        assert bob.last_transaction.tzinfo is None


class TestFriendBalances:
    """Tests for per-friend views."""

    def test_one_entry_per_friend_excluding_self(self, users):
        expenses = [make_expense("90", "alice", ["alice", "bob", "carol"])]

        result = friend_balances(expenses, [], users, "alice")

        assert [fb.friend_id for fb in result] == ["bob", "carol"]
        assert all(fb.balance == Decimal("30") for fb in result)

    def test_signed_from_current_user_side(self, users):
        expenses = [make_expense("90", "alice", ["alice", "bob", "carol"])]

        result = friend_balances(expenses, [], users, "bob")

        by_id = {fb.friend_id: fb.balance for fb in result}
        assert by_id == {"alice": Decimal("-30"), "carol": Decimal("0")}

    def test_last_transaction_tracks_latest_shared_activity(self, users):
        expenses = [
            make_expense("10", "alice", ["alice", "bob"], date=datetime(2024, 1, 1)),
            make_expense("10", "bob", ["alice", "bob"], date=datetime(2024, 2, 1)),
            make_expense("10", "carol", ["carol"], date=datetime(2024, 3, 1)),
        ]

        result = friend_balances(expenses, [], users, "alice")

        by_id = {fb.friend_id: fb.last_transaction for fb in result}
        assert by_id["bob"] == datetime(2024, 2, 1)
        assert by_id["carol"] is None

    def test_includes_group_expenses(self, users):
        """A friend view covers everything shared, in a group or not."""
        expenses = [
            make_expense("20", "alice", ["alice", "bob"], group_id="flat"),
            make_expense("10", "alice", ["alice", "bob"]),
        ]

        result = friend_balances(expenses, [], users[:2], "alice")

        assert result[0].balance == Decimal("15")


class TestGroupBalances:
    """Tests for per-group views."""

    def test_only_group_expenses_are_counted(self):
        group = Group(id="flat", name="Flat", members=["alice", "bob", "carol"])
        expenses = [
            make_expense("90", "alice", ["alice", "bob", "carol"], group_id="flat"),
            make_expense("50", "bob", ["alice", "bob"]),
        ]

        result = group_balances(group, expenses, [], "alice")

        assert result.total_owed == Decimal("60")
        assert result.total_owing == Decimal("0")
        assert result.net_balance == Decimal("60")
        assert result.per_member == {"bob": Decimal("30"), "carol": Decimal("30")}

    def test_only_group_settlements_are_counted(self):
        group = Group(id="flat", name="Flat", members=["alice", "bob"])
        expenses = [make_expense("40", "alice", ["alice", "bob"], group_id="flat")]
        settlements = [
            make_settlement("bob", "alice", "5", group_id="flat"),
            make_settlement("bob", "alice", "10"),
        ]

        result = group_balances(group, expenses, settlements, "alice")

        assert result.per_member == {"bob": Decimal("15")}

    def test_owing_member(self):
        group = Group(id="flat", name="Flat", members=["alice", "bob"])
        expenses = [make_expense("40", "bob", ["alice", "bob"], group_id="flat")]

        result = group_balances(group, expenses, [], "alice")

        assert result.total_owing == Decimal("20")
        assert result.net_balance == Decimal("-20")


class TestTotalBalances:
    """Tests for combining views without double counting."""

    def test_counterparty_in_group_and_friends_counted_once(self, users):
        group = Group(id="flat", name="Flat", members=["alice", "bob"])
        expenses = [make_expense("40", "alice", ["alice", "bob"], group_id="flat")]

        groups = [group_balances(group, expenses, [], "alice")]
        friends = friend_balances(expenses, [], users[:2], "alice")
        totals = total_balances(groups, friends)

        assert totals.total_owed == Decimal("20")
        assert totals.detailed_balances == {"bob": Decimal("20")}

    def test_group_member_without_friend_entry_still_counts(self):
        group = Group(id="flat", name="Flat", members=["alice", "dave"])
        expenses = [make_expense("40", "dave", ["alice", "dave"], group_id="flat")]

        totals = total_balances([group_balances(group, expenses, [], "alice")], [])

        assert totals.total_owing == Decimal("20")
        assert totals.net_balance == Decimal("-20")

    def test_mixed_owed_and_owing(self, users):
        expenses = [
            make_expense("60", "alice", ["alice", "bob"]),
            make_expense("40", "carol", ["alice", "carol"]),
        ]

        friends = friend_balances(expenses, [], users, "alice")
        totals = total_balances([], friends)

        assert totals.total_owed == Decimal("30")
        assert totals.total_owing == Decimal("20")
        assert totals.net_balance == Decimal("10")


class TestSuggestTransfers:
    """Tests for the greedy settle-up suggestion."""

    def test_two_debtors_one_creditor(self):
        net = {"alice": Decimal("60"), "bob": Decimal("-30"), "carol": Decimal("-30")}

        transfers = suggest_transfers(net)

        assert [(t.from_user_id, t.to_user_id, t.amount) for t in transfers] == [
            ("bob", "alice", Decimal("30")),
            ("carol", "alice", Decimal("30")),
        ]

    def test_transfers_clear_all_balances(self):
        net = {
            "alice": Decimal("50"),
            "bob": Decimal("-20"),
            "carol": Decimal("-45"),
            "dave": Decimal("15"),
        }

        transfers = suggest_transfers(net)

        remaining = dict(net)
        for t in transfers:
            remaining[t.from_user_id] += t.amount
            remaining[t.to_user_id] -= t.amount
        assert all(value == 0 for value in remaining.values())
        assert len(transfers) <= len(net) - 1

    def test_settled_group_needs_no_transfers(self):
        assert suggest_transfers({"alice": Decimal("0"), "bob": Decimal("0")}) == []


def test_users_in_expenses():
    expenses = [
        make_expense("10", "carol", ["alice"]),
        make_expense("10", "bob", ["bob", "alice"]),
    ]

    assert users_in_expenses(expenses) == ["alice", "bob", "carol"]
