"""
Moonwell pooled (compound-style) market source.

Reads raw per-asset balances, rates and prices for an account and encodes
the thin set of write calls the engine submits through the wallet.

Per-block rates are annualized with 2,628,000 blocks per year, exchange
rates and collateral factors are 18-decimal mantissas, and oracle prices are
scaled by ``10**(36 - underlying_decimals)``.
"""

import logging
from decimal import Decimal
from typing import Any, ClassVar

from moonwell_risk.core.models import MarketData, TransactionRequest
from moonwell_risk.core.position import BLOCKS_PER_YEAR, AccountLiquidity, RawAssetReading
from moonwell_risk.core.units import (
    WAD_DECIMALS,
    oracle_price_to_usd,
    rate_to_apy,
    to_canonical,
    underlying_from_shares,
)
from moonwell_risk.errors import UnsupportedAssetError
from moonwell_risk.protocols.abis import (
    COMPTROLLER_ABI,
    MTOKEN_ABI,
    ORACLE_ABI,
    REWARD_DISTRIBUTOR_ABI,
)
from moonwell_risk.protocols.base import BaseMarketSource
from moonwell_risk.rpc.retry import RetryConfig

logger = logging.getLogger(__name__)


class MoonwellCoreMarket(BaseMarketSource):
    """Chain data source for the Moonwell pooled market."""

    name: ClassVar[str] = "moonwell_core"
    supported_networks: ClassVar[list[str]] = ["base", "base-sepolia"]

    def __init__(
        self,
        rpc_provider: Any | None = None,
        network: str = "base",
        retry_config: RetryConfig | None = None,
        blocks_per_year: int = BLOCKS_PER_YEAR,
    ) -> None:
        super().__init__(rpc_provider, network, retry_config)
        self.blocks_per_year = blocks_per_year
        self.contracts = self.get_contract_addresses()

    def _market(self, symbol: str) -> str:
        asset = self.assets.get(symbol)
        if asset is None:
            msg = f"Asset {symbol} is not listed on {self.network}"
            raise UnsupportedAssetError(msg, details={"asset": symbol, "network": self.network})
        return asset.market

    def _collateral_factor(self, market: str) -> int:
        # markets() -> (isListed, collateralFactorMantissa, isComped)
        result = self._make_contract_call(self.contracts["comptroller"], COMPTROLLER_ABI, "markets", market)
        return int(result[1])

    def _price(self, market: str) -> int:
        return int(self._make_contract_call(self.contracts["oracle"], ORACLE_ABI, "getUnderlyingPrice", market))

    def read_asset(self, account: str, symbol: str) -> RawAssetReading:
        """
        Read one asset's raw state for ``account``.

        Raises
        ------
        RpcError
            If any underlying contract call fails

        """
        market = self._market(symbol)
        asset = self.assets[symbol]
        call = self._make_contract_call

        reading = RawAssetReading(
            asset=symbol,
            decimals=asset.decimals,
            mtoken_balance=int(call(market, MTOKEN_ABI, "balanceOf", account)),
            exchange_rate=int(call(market, MTOKEN_ABI, "exchangeRateStored")),
            borrow_balance=int(call(market, MTOKEN_ABI, "borrowBalanceStored", account)),
            supply_rate=int(call(market, MTOKEN_ABI, "supplyRatePerBlock")),
            borrow_rate=int(call(market, MTOKEN_ABI, "borrowRatePerBlock")),
            price=self._price(market),
            is_collateral=bool(
                call(self.contracts["comptroller"], COMPTROLLER_ABI, "checkMembership", account, market)
            ),
            collateral_factor=self._collateral_factor(market),
        )
        logger.debug(
            "Read %s for %s: shares=%d borrow=%d",
            symbol,
            account,
            reading.mtoken_balance,
            reading.borrow_balance,
        )
        return reading

    def read_assets(self, account: str) -> list[RawAssetReading]:
        """Read every listed asset; any failure fails the whole read."""
        return [self.read_asset(account, symbol) for symbol in self.assets]

    def read_account_liquidity(self, account: str) -> AccountLiquidity | None:
        if "comptroller" not in self.contracts:
            return None
        error, liquidity, shortfall = self._make_contract_call(
            self.contracts["comptroller"], COMPTROLLER_ABI, "getAccountLiquidity", account
        )
        return AccountLiquidity(error=int(error), liquidity=int(liquidity), shortfall=int(shortfall))

    def read_price(self, symbol: str) -> Decimal:
        """Oracle USD price of one underlying token."""
        market = self._market(symbol)
        return oracle_price_to_usd(self._price(market), self.assets[symbol].decimals)

    def read_market(self, symbol: str) -> MarketData:
        """
        Read current market state for one asset.

        Utilization is ``borrows / (cash + borrows)`` and zero for an empty market.
        """
        market = self._market(symbol)
        asset = self.assets[symbol]
        call = self._make_contract_call

        exchange_rate = int(call(market, MTOKEN_ABI, "exchangeRateStored"))
        total_shares = int(call(market, MTOKEN_ABI, "totalSupply"))
        total_borrows = int(call(market, MTOKEN_ABI, "totalBorrows"))
        cash = int(call(market, MTOKEN_ABI, "getCash"))

        denominator = cash + total_borrows
        utilization = Decimal(total_borrows) / Decimal(denominator) if denominator else Decimal("0")

        return MarketData(
            asset=symbol,
            symbol=symbol,
            supply_apy=rate_to_apy(int(call(market, MTOKEN_ABI, "supplyRatePerBlock")), self.blocks_per_year),
            borrow_apy=rate_to_apy(int(call(market, MTOKEN_ABI, "borrowRatePerBlock")), self.blocks_per_year),
            total_supply=to_canonical(underlying_from_shares(total_shares, exchange_rate), asset.decimals),
            total_borrow=to_canonical(total_borrows, asset.decimals),
            utilization_rate=utilization,
            liquidity_available=to_canonical(cash, asset.decimals),
            collateral_factor=to_canonical(self._collateral_factor(market), WAD_DECIMALS),
            price_in_usd=oracle_price_to_usd(self._price(market), asset.decimals),
        )

    def read_outstanding_rewards(self, account: str) -> list[tuple[str, int]]:
        """Reward token addresses and raw claimable amounts for ``account``."""
        if "multi_reward_distributor" not in self.contracts:
            return []
        tokens, amounts = self._make_contract_call(
            self.contracts["multi_reward_distributor"],
            REWARD_DISTRIBUTOR_ABI,
            "getOutstandingRewardsForUser",
            account,
        )
        return [(str(token), int(amount)) for token, amount in zip(tokens, amounts, strict=True)]

    def build_mint(self, symbol: str, amount: int) -> TransactionRequest:
        return self._encode_call(self._market(symbol), MTOKEN_ABI, "mint", amount)

    def build_borrow(self, symbol: str, amount: int) -> TransactionRequest:
        return self._encode_call(self._market(symbol), MTOKEN_ABI, "borrow", amount)

    def build_repay(self, symbol: str, amount: int) -> TransactionRequest:
        return self._encode_call(self._market(symbol), MTOKEN_ABI, "repayBorrow", amount)

    def build_redeem(self, symbol: str, shares: int) -> TransactionRequest:
        return self._encode_call(self._market(symbol), MTOKEN_ABI, "redeem", shares)

    def build_redeem_underlying(self, symbol: str, amount: int) -> TransactionRequest:
        return self._encode_call(self._market(symbol), MTOKEN_ABI, "redeemUnderlying", amount)

    def build_enter_markets(self, symbols: list[str]) -> TransactionRequest:
        markets = [self._market(symbol) for symbol in symbols]
        return self._encode_call(self.contracts["comptroller"], COMPTROLLER_ABI, "enterMarkets", markets)
