"""Recording settle-up payments between users."""

import logging
from datetime import datetime
from decimal import Decimal

from pydantic import ValidationError

from .balances import balance_between, pairwise_balances
from .converter import CurrencyConverter
from .currencies import Currency, format_amount, parse_currency, quantize
from .exceptions import LedgerValidationError
from .models import RecordedSettlement, Settlement
from .repository import LedgerRepository, validation_messages

logger = logging.getLogger(__name__)


class SettlementEngine:
    """
    Appends settlements to the ledger.

    Settlements never touch expenses and are never edited; they are replayed
    by the balance calculator on every read.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        converter: CurrencyConverter,
        base_currency: Currency = Currency.USD,
    ):
        self.repository = repository
        self.converter = converter
        self.base_currency = base_currency

    def outstanding(self, from_user_id: str, to_user_id: str) -> Decimal:
        """
        How much ``from_user_id`` currently owes ``to_user_id``.

        Returns:
            Amount in the base currency; zero if nothing is owed that way
        """
        balances = pairwise_balances(
            self.repository.expenses,
            self.repository.settlements,
            self.base_currency,
            self.converter,
        )
        owed = balance_between(balances, to_user_id, from_user_id)
        return max(owed, Decimal("0"))

    def record(
        self,
        from_user_id: str,
        to_user_id: str,
        amount: Decimal,
        currency: Currency | str = Currency.USD,
        date: datetime | None = None,
        group_id: str | None = None,
        description: str = "Balance settlement",
    ) -> RecordedSettlement:
        """
        Record a payment from one user to another.

        An amount larger than the current balance is still recorded; the
        result carries a warning instead.

        Raises:
            LedgerValidationError: If the amount, users or currency are invalid
        """
        try:
            settlement = Settlement(
                from_user_id=from_user_id,
                to_user_id=to_user_id,
                amount=amount,
                currency=parse_currency(currency),
                date=date or datetime.now(),
                group_id=group_id,
                description=description,
            )
        except ValidationError as e:
            raise LedgerValidationError(validation_messages(e)) from e

        settlement = self.converter.lock_rate(settlement)
        warning = self._check_overpayment(settlement)
        self.repository.append_settlement(settlement)

        logger.info(
            f"Recorded settlement {settlement.id}: {from_user_id} -> {to_user_id} "
            f"{format_amount(settlement.amount, settlement.currency)}"
        )
        return RecordedSettlement(settlement=settlement, warning=warning)

    def history(self, user_id: str | None = None) -> list[Settlement]:
        """Settlements in date order, optionally only those involving a user."""
        settlements = [
            s
            for s in self.repository.settlements
            if user_id is None or user_id in (s.from_user_id, s.to_user_id)
        ]
        return sorted(settlements, key=lambda s: s.date)

    def _check_overpayment(self, settlement: Settlement) -> str | None:
        owed = self.outstanding(settlement.from_user_id, settlement.to_user_id)
        paid = self.converter.convert_record(settlement, self.base_currency)
        if quantize(paid, self.base_currency) <= quantize(owed, self.base_currency):
            return None

        warning = (
            f"Payment of {format_amount(paid, self.base_currency)} exceeds the "
            f"{format_amount(owed, self.base_currency)} {settlement.from_user_id} "
            f"owes {settlement.to_user_id}"
        )
        logger.warning(f"Overpayment recorded: {warning}")
        return warning
