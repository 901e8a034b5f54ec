"""DeFiLlama pricing service for fetching token USD prices."""

import logging
from decimal import Decimal

import httpx

from moonwell_risk.core.units import to_decimal
from moonwell_risk.errors import InvalidAmountError

logger = logging.getLogger(__name__)


class DeFiLlamaPricing:
    """
    Fetches token prices from DeFiLlama API.

    Used for reward tokens, which the protocol oracle does not price.

    Parameters
    ----------
    base_url : str
        DeFiLlama API base URL
    timeout : float
        Request timeout in seconds
    transport : httpx.BaseTransport | None
        Custom transport, e.g. ``httpx.MockTransport`` in tests

    """

    def __init__(
        self,
        base_url: str = "https://coins.llama.fi",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.client = httpx.Client(timeout=timeout, transport=transport)

    def get_prices(self, chain: str, addresses: list[str]) -> dict[str, Decimal]:
        """
        Fetch USD prices for multiple tokens on one chain.

        Parameters
        ----------
        chain : str
            DeFiLlama chain name (e.g., 'base')
        addresses : list[str]
            Token contract addresses

        Returns
        -------
        dict[str, Decimal]
            Lowercased address to USD price; unpriced tokens map to zero

        Examples
        --------
        >>> pricing = DeFiLlamaPricing()
        >>> prices = pricing.get_prices("base", ["0xA88594D404727625A9437C3f886C7643872296AE"])

        """
        if not addresses:
            return {}

        # Build coin identifiers in DeFiLlama format: "chain:address"
        coin_ids = {address.lower(): f"{chain.lower()}:{address}" for address in addresses}
        prices_data = self._fetch_batch_prices(list(coin_ids.values()))

        result = {}
        for address, coin_id in coin_ids.items():
            price_info = prices_data.get(coin_id) or prices_data.get(coin_id.lower()) or {}
            result[address] = self._parse_price(coin_id, price_info.get("price"))
        return result

    def get_price(self, chain: str, address: str) -> Decimal:
        """
        Fetch USD price for a single token.

        Parameters
        ----------
        chain : str
            DeFiLlama chain name
        address : str
            Token contract address

        Returns
        -------
        Decimal
            USD price

        """
        return self.get_prices(chain, [address]).get(address.lower(), Decimal("0"))

    @staticmethod
    def _parse_price(coin_id: str, value: object) -> Decimal:
        if value is None:
            return Decimal("0")
        try:
            return to_decimal(value)
        except InvalidAmountError:
            logger.warning("Ignoring malformed DeFiLlama price for %s: %r", coin_id, value)
            return Decimal("0")

    def _fetch_batch_prices(self, coin_ids: list[str]) -> dict:
        """
        Fetch prices from DeFiLlama API.

        A failed request is logged and yields no prices, so callers value the
        affected tokens at zero.

        Parameters
        ----------
        coin_ids : list[str]
            Coin identifiers in "chain:address" format

        Returns
        -------
        dict
            Raw ``coins`` mapping of the API response

        """
        url = f"{self.base_url}/prices/current/{','.join(coin_ids)}"
        try:
            response = self.client.get(url)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("DeFiLlama price request failed: %s", e)
            return {}
        return data.get("coins", {})

    def close(self) -> None:
        """Close HTTP client."""
        self.client.close()

    def __enter__(self) -> "DeFiLlamaPricing":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Context manager exit."""
        self.close()
