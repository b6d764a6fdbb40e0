"""RoomLedger - Split shared expenses across currencies and settle up."""

__version__ = "0.1.0"

from .balances import (
    friend_balances,
    group_balances,
    net_balances,
    pairwise_balances,
    suggest_transfers,
    total_balances,
)
from .config import Settings, load_settings
from .converter import CurrencyConverter
from .currencies import Currency, format_amount
from .db import Database
from .models import (
    Budget,
    Expense,
    Group,
    PersonalExpense,
    Settlement,
    User,
)
from .repository import LedgerRepository
from .service import LedgerService
from .settlements import SettlementEngine

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "Currency",
    "format_amount",
    "CurrencyConverter",
    "Budget",
    "Expense",
    "Group",
    "PersonalExpense",
    "Settlement",
    "User",
    "friend_balances",
    "group_balances",
    "net_balances",
    "pairwise_balances",
    "suggest_transfers",
    "total_balances",
    "LedgerRepository",
    "LedgerService",
    "SettlementEngine",
]
