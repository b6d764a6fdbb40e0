"""Supported currencies, static exchange rates and presentation helpers."""

from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum

from .exceptions import UnknownCurrencyError


class Currency(StrEnum):
    """ISO 4217 codes accepted by the ledger."""

    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    JPY = "JPY"
    AUD = "AUD"
    CAD = "CAD"
    CHF = "CHF"
    CNY = "CNY"
    INR = "INR"
    KRW = "KRW"
    SGD = "SGD"
    HKD = "HKD"
    MXN = "MXN"
    BRL = "BRL"
    ZAR = "ZAR"
    RUB = "RUB"
    TRY = "TRY"
    PLN = "PLN"
    SEK = "SEK"
    NOK = "NOK"


PIVOT_CURRENCY = Currency.USD

# Units of each currency per one USD. Approximate; used when no live rate is available.
STATIC_USD_RATES: dict[Currency, Decimal] = {
    Currency.USD: Decimal("1.0"),
    Currency.EUR: Decimal("0.85"),
    Currency.GBP: Decimal("0.73"),
    Currency.JPY: Decimal("110.0"),
    Currency.AUD: Decimal("1.35"),
    Currency.CAD: Decimal("1.25"),
    Currency.CHF: Decimal("0.92"),
    Currency.CNY: Decimal("6.45"),
    Currency.INR: Decimal("75.0"),
    Currency.KRW: Decimal("1100.0"),
    Currency.SGD: Decimal("1.35"),
    Currency.HKD: Decimal("7.75"),
    Currency.MXN: Decimal("20.0"),
    Currency.BRL: Decimal("5.5"),
    Currency.ZAR: Decimal("15.0"),
    Currency.RUB: Decimal("75.0"),
    Currency.TRY: Decimal("8.5"),
    Currency.PLN: Decimal("3.8"),
    Currency.SEK: Decimal("8.5"),
    Currency.NOK: Decimal("8.8"),
}

_SYMBOLS: dict[Currency, str] = {
    Currency.USD: "$",
    Currency.EUR: "€",
    Currency.GBP: "£",
    Currency.JPY: "¥",
    Currency.AUD: "A$",
    Currency.CAD: "C$",
    Currency.CHF: "CHF",
    Currency.CNY: "¥",
    Currency.INR: "₹",
    Currency.KRW: "₩",
    Currency.SGD: "S$",
    Currency.HKD: "HK$",
    Currency.MXN: "$",
    Currency.BRL: "R$",
    Currency.ZAR: "R",
    Currency.RUB: "₽",
    Currency.TRY: "₺",
    Currency.PLN: "zł",
    Currency.SEK: "kr",
    Currency.NOK: "kr",
}

_NAMES: dict[Currency, str] = {
    Currency.USD: "US Dollar",
    Currency.EUR: "Euro",
    Currency.GBP: "British Pound",
    Currency.JPY: "Japanese Yen",
    Currency.AUD: "Australian Dollar",
    Currency.CAD: "Canadian Dollar",
    Currency.CHF: "Swiss Franc",
    Currency.CNY: "Chinese Yuan",
    Currency.INR: "Indian Rupee",
    Currency.KRW: "South Korean Won",
    Currency.SGD: "Singapore Dollar",
    Currency.HKD: "Hong Kong Dollar",
    Currency.MXN: "Mexican Peso",
    Currency.BRL: "Brazilian Real",
    Currency.ZAR: "South African Rand",
    Currency.RUB: "Russian Ruble",
    Currency.TRY: "Turkish Lira",
    Currency.PLN: "Polish Zloty",
    Currency.SEK: "Swedish Krona",
    Currency.NOK: "Norwegian Krone",
}

ZERO_DECIMAL_CURRENCIES = frozenset({Currency.JPY, Currency.KRW})


def parse_currency(code: str | Currency) -> Currency:
    """
    Resolve a currency code against the supported set.

    Raises:
        UnknownCurrencyError: If the code is not supported
    """
    if isinstance(code, Currency):
        return code
    try:
        return Currency(code.strip().upper())
    except (ValueError, AttributeError) as e:
        raise UnknownCurrencyError(str(code)) from e


def minor_units(currency: Currency) -> int:
    """Number of decimal places used when displaying this currency."""
    return 0 if currency in ZERO_DECIMAL_CURRENCIES else 2


def quantize(amount: Decimal, currency: Currency) -> Decimal:
    """
    Round an amount to the currency's minor unit.

    Only for presentation; intermediate computations keep full precision.
    """
    exponent = Decimal(1).scaleb(-minor_units(currency))
    return amount.quantize(exponent, rounding=ROUND_HALF_UP)


def currency_symbol(currency: Currency) -> str:
    return _SYMBOLS.get(currency, currency.value)


def currency_name(currency: Currency) -> str:
    return _NAMES.get(currency, currency.value)


def format_amount(amount: Decimal, currency: Currency) -> str:
    """Format an amount with the currency symbol, e.g. ``₹1,250.00`` or ``-¥300``."""
    rounded = quantize(amount, currency)
    sign = "-" if rounded < 0 else ""
    return f"{sign}{currency_symbol(currency)}{abs(rounded):,}"


def supported_currencies() -> list[tuple[Currency, str, str]]:
    """Return (code, symbol, name) for every supported currency."""
    return [(c, currency_symbol(c), currency_name(c)) for c in Currency]
