"""Live exchange rate API client."""

import logging
from decimal import Decimal, InvalidOperation

import httpx

from ..exceptions import ExchangeRateAPIError

logger = logging.getLogger(__name__)


class ExchangeRateClient:
    """
    Client for an exchangerate-api.com style rate source.

    ``GET {base_url}/latest/{BASE}`` returns a JSON object whose ``rates`` map
    holds units of each currency per one unit of ``BASE``.
    """

    DEFAULT_BASE_URL = "https://api.exchangerate-api.com/v4"

    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float = 10.0):
        """Initialize the exchange rate client."""
        self.client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"Accept": "application/json"},
            timeout=timeout,
        )

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def get_latest_rates(self, base: str = "USD") -> dict[str, Decimal]:
        """
        Fetch the latest rates relative to ``base``.

        Args:
            base: Currency code the returned rates are relative to

        Returns:
            Mapping of currency code to units per one ``base``

        Raises:
            httpx.HTTPError: On network failure, timeout or non-2xx status
            ExchangeRateAPIError: If the payload is not a usable rate map
        """
        response = self.client.get(f"/latest/{base.upper()}")
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ExchangeRateAPIError(
                f"Rate source returned {type(data).__name__}, expected an object"
            )

        if data.get("result") == "error":
            raise ExchangeRateAPIError(
                f"Rate source returned error: {data.get('error-type', 'unknown')}"
            )

        raw_rates = data.get("rates") or data.get("conversion_rates")
        if not isinstance(raw_rates, dict) or not raw_rates:
            raise ExchangeRateAPIError("Rate source response has no rates map")

        rates: dict[str, Decimal] = {}
        for code, value in raw_rates.items():
            try:
                rate = Decimal(str(value))
            except InvalidOperation:
                logger.debug(f"Skipping unparseable rate for {code}: {value!r}")
                continue
            if rate.is_finite() and rate > 0:
                rates[code.upper()] = rate

        logger.debug(f"Fetched {len(rates)} live rates relative to {base}")
        return rates
