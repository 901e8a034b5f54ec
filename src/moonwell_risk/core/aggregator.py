"""Balance aggregator merging wallet, core, isolated-market and vault exposure."""

import logging
from collections.abc import Callable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor, wait
from decimal import Decimal

from moonwell_risk.core.models import (
    BalanceBreakdown,
    BalanceSource,
    CoreExposure,
    EnhancedUserBalance,
    MarketExposure,
    MorphoExposure,
    UserBalanceParams,
    VaultExposure,
    WalletExposure,
)
from moonwell_risk.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)

SourceFetcher = Callable[[], list[MarketExposure]]


def _unit_price(amount: Decimal, value_usd: Decimal) -> Decimal:
    return value_usd / amount if amount else Decimal("0")


def to_enhanced_balances(exposure: MarketExposure) -> list[EnhancedUserBalance]:
    """
    Convert one market exposure into signed balance records.

    Supplies, collateral, vault shares and wallet holdings are non-negative;
    core and isolated-market debt is negated so that sums net against supplies.
    """
    if isinstance(exposure, CoreExposure):
        position, addresses = exposure.position, exposure.token_addresses
        balances = [
            EnhancedUserBalance(
                token_address=addresses.get(supply.asset, supply.asset),
                symbol=supply.symbol,
                balance=supply.balance,
                balance_in_usd=supply.balance_in_usd,
                price=_unit_price(supply.balance, supply.balance_in_usd),
                source=BalanceSource.CORE,
                apy=supply.apy,
                is_collateral=supply.is_collateral,
            )
            for supply in position.supplies
        ]
        balances.extend(
            EnhancedUserBalance(
                token_address=addresses.get(borrow.asset, borrow.asset),
                symbol=borrow.symbol,
                balance=-borrow.balance,
                balance_in_usd=-borrow.balance_in_usd,
                price=_unit_price(borrow.balance, borrow.balance_in_usd),
                source=BalanceSource.CORE,
                apy=borrow.apy,
                is_collateral=False,
            )
            for borrow in position.borrows
        )
        return balances

    if isinstance(exposure, MorphoExposure):
        position = exposure.position
        balances = []
        if position.supply_assets > 0:
            balances.append(
                EnhancedUserBalance(
                    token_address=position.loan_token.address,
                    symbol=position.loan_token.symbol,
                    balance=position.supply_assets,
                    balance_in_usd=position.supply_usd,
                    price=_unit_price(position.supply_assets, position.supply_usd),
                    source=BalanceSource.MORPHO,
                    apy=position.supply_apy,
                    is_collateral=False,
                    market_id=position.market_id,
                )
            )
        if position.collateral > 0 and position.collateral_token is not None:
            balances.append(
                EnhancedUserBalance(
                    token_address=position.collateral_token.address,
                    symbol=position.collateral_token.symbol,
                    balance=position.collateral,
                    balance_in_usd=position.collateral_usd,
                    price=_unit_price(position.collateral, position.collateral_usd),
                    source=BalanceSource.MORPHO,
                    is_collateral=True,
                    market_id=position.market_id,
                )
            )
        if position.borrow_assets > 0:
            balances.append(
                EnhancedUserBalance(
                    token_address=position.loan_token.address,
                    symbol=position.loan_token.symbol,
                    balance=-position.borrow_assets,
                    balance_in_usd=-position.borrow_usd,
                    price=_unit_price(position.borrow_assets, position.borrow_usd),
                    source=BalanceSource.MORPHO,
                    apy=position.borrow_apy,
                    is_collateral=False,
                    market_id=position.market_id,
                )
            )
        return balances

    if isinstance(exposure, VaultExposure):
        position = exposure.position
        return [
            EnhancedUserBalance(
                token_address=position.asset.address,
                symbol=position.asset.symbol,
                balance=position.assets,
                balance_in_usd=position.assets_usd,
                price=_unit_price(position.assets, position.assets_usd),
                source=BalanceSource.VAULT,
                apy=position.apy,
                vault_id=position.vault_id,
            )
        ]

    if isinstance(exposure, WalletExposure):
        holding = exposure.holding
        return [
            EnhancedUserBalance(
                token_address=holding.token_address,
                symbol=holding.symbol,
                balance=holding.balance,
                balance_in_usd=holding.balance * holding.price,
                price=holding.price,
                source=BalanceSource.WALLET,
            )
        ]

    msg = f"Unknown exposure kind: {exposure!r}"
    raise TypeError(msg)


def filter_balances(balances: list[EnhancedUserBalance], min_balance_threshold: Decimal) -> list[EnhancedUserBalance]:
    """Keep balances whose absolute USD value reaches the threshold."""
    return [b for b in balances if abs(b.balance_in_usd) >= min_balance_threshold]


class BalanceAggregator:
    """
    Fetches every requested balance source concurrently and merges the results.

    A failing or unresponsive source degrades to an empty contribution with a
    logged warning; only when every requested source fails is the aggregation
    itself reported as unavailable.

    Parameters
    ----------
    fetchers : Mapping[BalanceSource, SourceFetcher]
        One exposure fetcher per source
    timeout : float
        Seconds to wait for all sources before treating stragglers as failed
    max_workers : int
        Thread pool size

    """

    def __init__(
        self,
        fetchers: Mapping[BalanceSource, SourceFetcher],
        timeout: float = 30.0,
        max_workers: int = 4,
    ) -> None:
        self.fetchers = dict(fetchers)
        self.timeout = timeout
        self.max_workers = max_workers

    @staticmethod
    def requested_sources(params: UserBalanceParams) -> list[BalanceSource]:
        flags = {
            BalanceSource.WALLET: params.include_wallet,
            BalanceSource.CORE: params.include_core,
            BalanceSource.MORPHO: params.include_morpho,
            BalanceSource.VAULT: params.include_vaults,
        }
        return [source for source, included in flags.items() if included]

    def get_all_user_balances(self, params: UserBalanceParams | None = None) -> BalanceBreakdown:
        """
        Aggregate balances from every requested source.

        Parameters
        ----------
        params : UserBalanceParams | None
            Source selection and minimum USD value; defaults include everything

        Returns
        -------
        BalanceBreakdown
            Filtered balances per source with exact per-source and grand totals

        Raises
        ------
        ServiceUnavailableError
            If every requested source failed

        """
        params = params or UserBalanceParams()
        sources = [s for s in self.requested_sources(params) if s in self.fetchers]
        if not sources:
            return BalanceBreakdown()

        results, failed = self._fetch_all(sources)

        if len(failed) == len(sources):
            raise ServiceUnavailableError(
                "All balance sources failed",
                details={"failed_sources": [str(s) for s in failed]},
            )

        lists: dict[BalanceSource, list[EnhancedUserBalance]] = {}
        totals: dict[BalanceSource, Decimal] = {}
        for source in BalanceSource:
            balances: list[EnhancedUserBalance] = []
            for exposure in results.get(source, []):
                balances.extend(to_enhanced_balances(exposure))
            kept = filter_balances(balances, params.min_balance_threshold)
            lists[source] = kept
            totals[source] = sum((b.balance_in_usd for b in kept), Decimal("0"))

        return BalanceBreakdown(
            wallet_balances=lists[BalanceSource.WALLET],
            core_positions=lists[BalanceSource.CORE],
            morpho_positions=lists[BalanceSource.MORPHO],
            vault_positions=lists[BalanceSource.VAULT],
            total_wallet_value_in_usd=totals[BalanceSource.WALLET],
            total_core_value_in_usd=totals[BalanceSource.CORE],
            total_morpho_value_in_usd=totals[BalanceSource.MORPHO],
            total_vault_value_in_usd=totals[BalanceSource.VAULT],
            total_balance_in_usd=sum(totals.values(), Decimal("0")),
            failed_sources=failed,
        )

    def _fetch_all(
        self, sources: list[BalanceSource]
    ) -> tuple[dict[BalanceSource, list[MarketExposure]], list[BalanceSource]]:
        results: dict[BalanceSource, list[MarketExposure]] = {}
        failed: list[BalanceSource] = []

        executor = ThreadPoolExecutor(max_workers=min(len(sources), self.max_workers))
        try:
            future_to_source: dict[Future, BalanceSource] = {
                executor.submit(self.fetchers[source]): source for source in sources
            }
            done, not_done = wait(future_to_source, timeout=self.timeout)

            for future in done:
                source = future_to_source[future]
                try:
                    results[source] = future.result()
                except Exception as e:
                    logger.warning("Balance source %s failed: %s", source, e)
                    failed.append(source)

            for future in not_done:
                source = future_to_source[future]
                future.cancel()
                logger.warning("Balance source %s did not respond within %.1fs", source, self.timeout)
                failed.append(source)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        failed.sort(key=sources.index)
        return results, failed
