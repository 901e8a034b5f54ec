"""Morpho GraphQL API client for isolated markets and vaults."""

import logging
from decimal import Decimal
from typing import Any

import httpx

from moonwell_risk.core.health import health_factor
from moonwell_risk.core.models import (
    MorphoMarket,
    MorphoMarketFilters,
    MorphoMarketPosition,
    MorphoVault,
    MorphoVaultFilters,
    MorphoVaultPosition,
    Token,
)
from moonwell_risk.core.units import WAD_DECIMALS, parse_amount, to_canonical, to_decimal
from moonwell_risk.errors import RpcError
from moonwell_risk.rpc.retry import RetryConfig, call_with_retry

logger = logging.getLogger(__name__)


class MorphoAPIError(RpcError):
    """Exception raised for Morpho API errors."""


_TOKEN_FIELDS = """
              address
              symbol
              decimals
              priceUsd
"""


class MorphoGraphQLClient:
    """
    Client for Morpho GraphQL API.

    Every payload is normalized exactly once here: raw integer amounts go
    through ``to_canonical`` with the token's decimals, rates and USD values
    are coerced to ``Decimal``, and ``lltv`` is accepted either as a fraction
    or as an 18-decimal mantissa.

    Parameters
    ----------
    chain_id : int
        Chain to query (8453 for Base, 84532 for Base Sepolia)
    base_url : str
        GraphQL API endpoint URL
    timeout : float
        Request timeout in seconds
    transport : httpx.BaseTransport | None
        Custom transport, e.g. ``httpx.MockTransport`` in tests
    retry_config : RetryConfig | None
        Backoff policy for transport failures

    """

    USER_POSITIONS_QUERY = f"""
    query GetUserPositions($chainId: Int!, $address: String!) {{
      userByAddress(chainId: $chainId, address: $address) {{
        address
        marketPositions {{
          market {{
            uniqueKey
            lltv
            loanAsset {{{_TOKEN_FIELDS}            }}
            collateralAsset {{{_TOKEN_FIELDS}            }}
            state {{
              supplyApy
              borrowApy
            }}
          }}
          supplyAssets
          supplyAssetsUsd
          borrowAssets
          borrowAssetsUsd
          collateral
          collateralUsd
        }}
        vaultPositions {{
          vault {{
            address
            name
            symbol
            asset {{{_TOKEN_FIELDS}            }}
            state {{
              netApy
            }}
          }}
          assets
          assetsUsd
          shares
        }}
      }}
    }}
    """

    MARKETS_QUERY = f"""
    query GetMarkets($chainId: Int!, $first: Int!) {{
      markets(first: $first, where: {{ chainId_in: [$chainId], whitelisted: true }}) {{
        items {{
          uniqueKey
          lltv
          loanAsset {{{_TOKEN_FIELDS}          }}
          collateralAsset {{{_TOKEN_FIELDS}          }}
          state {{
            supplyApy
            borrowApy
            supplyAssets
            borrowAssets
            liquidityAssets
            liquidityAssetsUsd
            utilization
          }}
        }}
      }}
    }}
    """

    VAULTS_QUERY = f"""
    query GetVaults($chainId: Int!, $first: Int!) {{
      vaults(first: $first, where: {{ chainId_in: [$chainId] }}) {{
        items {{
          address
          name
          symbol
          asset {{{_TOKEN_FIELDS}          }}
          state {{
            totalAssets
            totalAssetsUsd
            netApy
            sharePrice
            curator
          }}
        }}
      }}
    }}
    """

    def __init__(
        self,
        chain_id: int = 8453,
        base_url: str = "https://api.morpho.org/graphql",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self.chain_id = chain_id
        self.base_url = base_url
        self.client = httpx.Client(timeout=timeout, transport=transport)
        self.retry_config = retry_config or RetryConfig(
            max_retries=2,
            base_delay=0.5,
            retry_on=(httpx.TransportError,),
        )

    def _execute_query(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Execute a GraphQL query.

        Parameters
        ----------
        query : str
            GraphQL query string
        variables : dict[str, Any] | None
            Query variables

        Returns
        -------
        dict[str, Any]
            Query response data

        Raises
        ------
        MorphoAPIError
            If the API request fails

        """
        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        try:
            response = call_with_retry(
                self.client.post,
                self.base_url,
                json=payload,
                headers={"Content-Type": "application/json"},
                config=self.retry_config,
            )
            response.raise_for_status()
            result = response.json()
        except httpx.TimeoutException as e:
            msg = f"Request timeout: {e}"
            raise MorphoAPIError(msg) from e
        except httpx.HTTPStatusError as e:
            msg = f"HTTP error {e.response.status_code}: {e}"
            raise MorphoAPIError(msg) from e
        except httpx.HTTPError as e:
            msg = f"HTTP request failed: {e}"
            raise MorphoAPIError(msg) from e
        except ValueError as e:
            msg = f"Invalid JSON response: {e}"
            raise MorphoAPIError(msg) from e

        # Check for GraphQL errors
        if result.get("errors"):
            error_messages = [e.get("message", "Unknown error") for e in result["errors"]]
            msg = f"GraphQL errors: {'; '.join(error_messages)}"
            raise MorphoAPIError(msg)

        return result.get("data") or {}

    def get_user_positions(self, user_address: str) -> dict[str, Any]:
        """
        Fetch the raw market and vault positions of a user.

        Returns
        -------
        dict[str, Any]
            ``userByAddress`` payload; empty when the API knows no such user

        """
        variables = {"chainId": self.chain_id, "address": user_address}
        data = self._execute_query(self.USER_POSITIONS_QUERY, variables)
        return data.get("userByAddress") or {}

    def get_market_positions(self, user_address: str) -> list[MorphoMarketPosition]:
        """Isolated-market positions with a health factor computed per market."""
        raw = self.get_user_positions(user_address)
        positions = [parse_market_position(p) for p in raw.get("marketPositions") or []]
        return [p for p in positions if p.supply_assets or p.borrow_assets or p.collateral]

    def get_vault_positions(self, user_address: str) -> list[MorphoVaultPosition]:
        raw = self.get_user_positions(user_address)
        positions = [parse_vault_position(p) for p in raw.get("vaultPositions") or []]
        return [p for p in positions if p.assets > 0]

    def get_markets(self, filters: MorphoMarketFilters | None = None, first: int = 100) -> list[MorphoMarket]:
        """
        List whitelisted isolated markets on the client's chain.

        Parameters
        ----------
        filters : MorphoMarketFilters | None
            Client-side filters (token symbols match case-insensitively)
        first : int
            Page size requested from the API

        """
        data = self._execute_query(self.MARKETS_QUERY, {"chainId": self.chain_id, "first": first})
        items = (data.get("markets") or {}).get("items") or []
        markets = [parse_market(item, self.chain_id) for item in items]
        return [m for m in markets if _market_matches(m, filters)] if filters else markets

    def get_vaults(
        self,
        filters: MorphoVaultFilters | None = None,
        addresses: list[str] | None = None,
        first: int = 100,
    ) -> list[MorphoVault]:
        """
        List vaults on the client's chain.

        Parameters
        ----------
        filters : MorphoVaultFilters | None
            Client-side filters
        addresses : list[str] | None
            Restrict to these vault addresses (case-insensitive)
        first : int
            Page size requested from the API

        """
        data = self._execute_query(self.VAULTS_QUERY, {"chainId": self.chain_id, "first": first})
        items = (data.get("vaults") or {}).get("items") or []
        vaults = [parse_vault(item) for item in items]
        if addresses:
            wanted = {a.lower() for a in addresses}
            vaults = [v for v in vaults if v.address.lower() in wanted]
        return [v for v in vaults if _vault_matches(v, filters)] if filters else vaults

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> "MorphoGraphQLClient":
        """Context manager entry."""
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: object | None,
    ) -> None:
        """Context manager exit."""
        self.close()


def _decimal(value: Any) -> Decimal:
    """Coerce an already-decimal API number; missing values are zero."""
    if value is None or value == "":
        return Decimal("0")
    return to_decimal(value)


def _raw_amount(value: Any, decimals: int) -> Decimal:
    """Coerce a raw integer API amount to a canonical quantity."""
    if value is None or value == "":
        return Decimal("0")
    return to_canonical(int(parse_amount(value)), decimals)


def _fraction(value: Any) -> Decimal:
    """Accept a ratio either as a fraction or as an 18-decimal mantissa."""
    number = _decimal(value)
    if number > 1:
        return to_canonical(int(number), WAD_DECIMALS)
    return number


def parse_token(raw: dict[str, Any] | None) -> Token | None:
    if not raw:
        return None
    return Token(
        address=raw.get("address") or "",
        symbol=raw.get("symbol") or "UNKNOWN",
        decimals=int(raw.get("decimals") if raw.get("decimals") is not None else 18),
        name=raw.get("name"),
    )


def parse_market(raw: dict[str, Any], chain_id: int) -> MorphoMarket:
    """
    Normalize one ``markets.items`` entry.

    Parameters
    ----------
    raw : dict[str, Any]
        Raw API market
    chain_id : int
        Chain the market lives on

    Returns
    -------
    MorphoMarket
        Market with canonical amounts and decimal rates

    """
    loan = parse_token(raw.get("loanAsset")) or Token(address="", symbol="UNKNOWN", decimals=18)
    state = raw.get("state") or {}
    return MorphoMarket(
        market_id=raw.get("uniqueKey") or "",
        chain_id=chain_id,
        loan_token=loan,
        collateral_token=parse_token(raw.get("collateralAsset")),
        lltv=_fraction(raw.get("lltv")),
        supply_apy=_decimal(state.get("supplyApy")),
        borrow_apy=_decimal(state.get("borrowApy")),
        total_supply_assets=_raw_amount(state.get("supplyAssets"), loan.decimals),
        total_borrow_assets=_raw_amount(state.get("borrowAssets"), loan.decimals),
        liquidity_assets=_raw_amount(state.get("liquidityAssets"), loan.decimals),
        liquidity_usd=_decimal(state.get("liquidityAssetsUsd")),
        utilization=_fraction(state.get("utilization")),
        loan_price_usd=_decimal((raw.get("loanAsset") or {}).get("priceUsd")),
    )


def parse_market_position(raw: dict[str, Any]) -> MorphoMarketPosition:
    """
    Normalize one ``marketPositions`` entry and compute its health factor.

    The health factor is ``collateral_usd * lltv / borrow_usd``, or the
    sentinel when the position carries no debt.
    """
    market = raw.get("market") or {}
    loan = parse_token(market.get("loanAsset")) or Token(address="", symbol="UNKNOWN", decimals=18)
    collateral_token = parse_token(market.get("collateralAsset"))
    state = market.get("state") or {}
    lltv = _fraction(market.get("lltv"))

    borrow_usd = _decimal(raw.get("borrowAssetsUsd"))
    collateral_usd = _decimal(raw.get("collateralUsd"))
    collateral_decimals = collateral_token.decimals if collateral_token else 18

    return MorphoMarketPosition(
        market_id=market.get("uniqueKey") or "",
        loan_token=loan,
        collateral_token=collateral_token,
        lltv=lltv,
        supply_assets=_raw_amount(raw.get("supplyAssets"), loan.decimals),
        supply_usd=_decimal(raw.get("supplyAssetsUsd")),
        borrow_assets=_raw_amount(raw.get("borrowAssets"), loan.decimals),
        borrow_usd=borrow_usd,
        collateral=_raw_amount(raw.get("collateral"), collateral_decimals),
        collateral_usd=collateral_usd,
        supply_apy=_decimal(state.get("supplyApy")),
        borrow_apy=_decimal(state.get("borrowApy")),
        health_factor=health_factor(collateral_usd, borrow_usd, lltv),
    )


def parse_vault(raw: dict[str, Any]) -> MorphoVault:
    asset = parse_token(raw.get("asset")) or Token(address="", symbol="UNKNOWN", decimals=18)
    state = raw.get("state") or {}
    return MorphoVault(
        vault_id=(raw.get("address") or "").lower(),
        address=raw.get("address") or "",
        name=raw.get("name") or "",
        symbol=raw.get("symbol") or "",
        asset=asset,
        total_assets=_raw_amount(state.get("totalAssets"), asset.decimals),
        total_assets_usd=_decimal(state.get("totalAssetsUsd")),
        apy=_decimal(state.get("netApy")),
        share_price=_decimal(state.get("sharePrice")) if state.get("sharePrice") is not None else Decimal("1"),
        curator=state.get("curator"),
    )


def parse_vault_position(raw: dict[str, Any]) -> MorphoVaultPosition:
    """Normalize one ``vaultPositions`` entry; assets use the vault asset's decimals."""
    vault = raw.get("vault") or {}
    asset = parse_token(vault.get("asset")) or Token(address="", symbol="UNKNOWN", decimals=18)
    return MorphoVaultPosition(
        vault_id=(vault.get("address") or "").lower(),
        vault_address=vault.get("address") or "",
        vault_name=vault.get("name") or "",
        asset=asset,
        # Vault shares use 18 decimals
        shares=_raw_amount(raw.get("shares"), 18),
        assets=_raw_amount(raw.get("assets"), asset.decimals),
        assets_usd=_decimal(raw.get("assetsUsd")),
        apy=_decimal((vault.get("state") or {}).get("netApy")),
    )


def _market_matches(market: MorphoMarket, filters: MorphoMarketFilters) -> bool:
    if filters.loan_token and market.loan_token.symbol.upper() != filters.loan_token.upper():
        return False
    if filters.collateral_token:
        symbol = market.collateral_token.symbol.upper() if market.collateral_token else ""
        if symbol != filters.collateral_token.upper():
            return False
    if filters.min_supply_apy is not None and market.supply_apy < filters.min_supply_apy:
        return False
    if filters.min_borrow_apy is not None and market.borrow_apy < filters.min_borrow_apy:
        return False
    if filters.min_liquidity_usd is not None and market.liquidity_usd < filters.min_liquidity_usd:
        return False
    return filters.max_utilization is None or market.utilization <= filters.max_utilization


def _vault_matches(vault: MorphoVault, filters: MorphoVaultFilters) -> bool:
    if filters.asset and vault.asset.symbol.upper() != filters.asset.upper():
        return False
    if filters.min_apy is not None and vault.apy < filters.min_apy:
        return False
    return filters.min_tvl_usd is None or vault.total_assets_usd >= filters.min_tvl_usd
