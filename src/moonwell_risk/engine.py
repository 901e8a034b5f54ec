"""
Caller-facing risk engine.

Ties the pooled-market source, the isolated-market API, the wallet and the
pricing service to the pure position, aggregation and guard logic. Every
operation on one account runs under that account's lock, so a write's
pre-state read, side effect and post-state read are never interleaved with
another operation on the same account.
"""

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from decimal import Decimal
from typing import Any, TypeVar

from moonwell_risk.config import EngineSettings
from moonwell_risk.core.aggregator import BalanceAggregator, SourceFetcher
from moonwell_risk.core.cache import PositionCache
from moonwell_risk.core.guards import OperationGuard
from moonwell_risk.core.models import (
    AssetInfo,
    BalanceBreakdown,
    BalanceSource,
    BorrowParams,
    BorrowResult,
    ComprehensiveUserData,
    CoreExposure,
    MarketData,
    MarketExposure,
    MarketSnapshotSummary,
    MorphoExposure,
    MorphoMarket,
    MorphoMarketFilters,
    MorphoMarketPosition,
    MorphoVault,
    MorphoVaultFilters,
    MorphoVaultPosition,
    RepayParams,
    RepayResult,
    SupplyParams,
    SupplyResult,
    TransactionReceipt,
    TransactionRequest,
    TransactionStatus,
    UserBalanceParams,
    UserPosition,
    UserReward,
    UserRewards,
    VaultExposure,
    WalletExposure,
    WalletHolding,
    WithdrawParams,
    WithdrawResult,
)
from moonwell_risk.core.position import build_user_position
from moonwell_risk.core.snapshots import SnapshotRecorder, summarize_snapshots
from moonwell_risk.core.summary import calculate_portfolio_summary
from moonwell_risk.core.units import WAD_DECIMALS, to_canonical, to_raw
from moonwell_risk.data import get_network_config, get_reward_tokens, get_vault_addresses
from moonwell_risk.errors import (
    MoonwellError,
    RpcError,
    ServiceUnavailableError,
    TransactionFailedError,
    WalletNotConnectedError,
    classify_error,
)
from moonwell_risk.protocols.base import WalletSigner

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MoonwellRiskEngine:
    """
    Position reads, balance aggregation and guarded writes for one wallet.

    Parameters
    ----------
    core_market : Any
        Pooled-market source (``MoonwellCoreMarket`` or compatible)
    morpho_client : Any | None
        Isolated-market API client (``MorphoGraphQLClient`` or compatible)
    wallet : WalletSigner | None
        Signing collaborator; without one the engine is read-only
    pricing : Any | None
        Reward token pricing (``DeFiLlamaPricing`` or compatible)
    settings : EngineSettings | None
        Runtime settings
    clock : Callable[[], float]
        Monotonic clock for the position cache
    snapshot_recorder : SnapshotRecorder | None
        Receives a snapshot of every market data read

    """

    def __init__(
        self,
        core_market: Any,
        morpho_client: Any | None = None,
        wallet: WalletSigner | None = None,
        pricing: Any | None = None,
        settings: EngineSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
        snapshot_recorder: SnapshotRecorder | None = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.core_market = core_market
        self.morpho_client = morpho_client
        self.wallet = wallet
        self.pricing = pricing
        self.assets: dict[str, AssetInfo] = dict(core_market.assets)
        self.guard = OperationGuard(self.assets, self.settings.health_factor_alert)
        self.position_cache = PositionCache(ttl=self.settings.position_cache_ttl, clock=clock)
        self.snapshots = snapshot_recorder or SnapshotRecorder()
        self._account: str | None = None
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Account and locking
    # ------------------------------------------------------------------

    @property
    def read_only(self) -> bool:
        return self.wallet is None

    @property
    def account(self) -> str | None:
        """Address of the connected wallet, or None in read-only mode."""
        if self.wallet is None:
            return None
        if self._account is None:
            self._account = self.wallet.get_address()
        return self._account

    def _require_account(self) -> str:
        account = self.account
        if account is None:
            msg = "No wallet connected. Configure an account alias to enable this operation"
            raise WalletNotConnectedError(msg)
        return account

    def _require_wallet(self) -> WalletSigner:
        if self.wallet is None:
            msg = "No wallet connected. Write operations are disabled in read-only mode"
            raise WalletNotConnectedError(msg)
        return self.wallet

    def account_lock(self, account: str) -> threading.RLock:
        """Reentrant lock serializing every operation on ``account``."""
        key = account.lower()
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @staticmethod
    def _read(func: Callable[[], T], what: str) -> T:
        """Run a collaborator read, mapping unexpected failures to ``RpcError``."""
        try:
            return func()
        except MoonwellError:
            raise
        except Exception as e:
            msg = f"Failed to read {what}: {e}"
            raise RpcError(msg, details={"source": what}) from e

    # ------------------------------------------------------------------
    # Positions and market data
    # ------------------------------------------------------------------

    def get_user_position(self, max_age: float | None = None, force_refresh: bool = False) -> UserPosition:
        """
        Current pooled-market position of the connected account.

        Parameters
        ----------
        max_age : float | None
            Accept a cached position up to this many seconds old (cache TTL if None)
        force_refresh : bool
            Ignore the cache and rebuild from chain reads

        Raises
        ------
        WalletNotConnectedError
            In read-only mode
        RpcError
            If any per-asset read fails

        """
        account = self._require_account()
        with self.account_lock(account):
            if not force_refresh:
                cached = self.position_cache.get(account, max_age)
                if cached is not None:
                    logger.debug("Position cache hit for %s", account)
                    return cached

            readings = self._read(lambda: self.core_market.read_assets(account), "asset positions")
            liquidity = self._read(lambda: self.core_market.read_account_liquidity(account), "account liquidity")
            position = build_user_position(
                readings,
                liquidity,
                blocks_per_year=self.settings.blocks_per_year,
                default_threshold=self.settings.default_liquidation_threshold,
            )
            self.position_cache.put(account, position)
            logger.info(
                "Rebuilt position for %s: health factor %s, borrowed $%.2f",
                account,
                position.health_factor,
                position.total_borrowed,
            )
            return position

    def get_cached_position(self) -> UserPosition | None:
        """Last position built for the connected account, regardless of age."""
        account = self.account
        return self.position_cache.peek(account) if account else None

    def _refresh_position(self, account: str) -> UserPosition:
        self.position_cache.invalidate(account)
        return self.get_user_position(force_refresh=True)

    def get_market_data(self, asset: str | None = None) -> list[MarketData]:
        """
        Current state of one market, or of every listed market.

        Each read is also recorded as a snapshot for trend summaries.
        """
        symbols = [self.guard.validate_asset(asset).symbol] if asset else list(self.assets)
        markets = [self._read(lambda s=symbol: self.core_market.read_market(s), f"{symbol} market") for symbol in symbols]
        self.snapshots.record(markets)
        return markets

    def get_market_snapshot_summary(self, asset: str) -> MarketSnapshotSummary:
        """Trend summary of the snapshots recorded for ``asset``."""
        symbol = self.guard.validate_asset(asset).symbol
        return summarize_snapshots(symbol, self.snapshots.get(symbol))

    def get_user_rewards(self) -> UserRewards:
        """
        Claimable pooled-market rewards valued in USD.

        Tokens the pricing service cannot value count as zero.
        """
        account = self._require_account()
        outstanding = self._read(lambda: self.core_market.read_outstanding_rewards(account), "rewards")
        outstanding = [(token, amount) for token, amount in outstanding if amount > 0]
        if not outstanding:
            return UserRewards()

        known = get_reward_tokens(self.settings.network)
        prices: dict[str, Decimal] = {}
        if self.pricing is not None:
            chain = get_network_config(self.settings.network)["defillama_chain"]
            try:
                prices = self.pricing.get_prices(chain, [token for token, _ in outstanding])
            except Exception as e:
                logger.warning("Reward pricing failed, valuing rewards at zero: %s", e)

        rewards = []
        for token, raw_amount in outstanding:
            # Reward tokens use 18 decimals
            amount = to_canonical(raw_amount, WAD_DECIMALS)
            price = prices.get(token.lower(), Decimal("0"))
            rewards.append(
                UserReward(
                    token=token,
                    symbol=known.get(token.lower(), "UNKNOWN"),
                    amount=amount,
                    value_in_usd=amount * price,
                )
            )
        return UserRewards(
            rewards=rewards,
            total_value_in_usd=sum((r.value_in_usd for r in rewards), Decimal("0")),
        )

    # ------------------------------------------------------------------
    # Isolated markets and vaults
    # ------------------------------------------------------------------

    def _require_morpho(self) -> Any:
        if self.morpho_client is None:
            msg = "Isolated market API client is not configured"
            raise ServiceUnavailableError(msg)
        return self.morpho_client

    def get_morpho_markets(self, filters: MorphoMarketFilters | None = None) -> list[MorphoMarket]:
        client = self._require_morpho()
        return self._read(lambda: client.get_markets(filters), "isolated markets")

    def get_morpho_vaults(self, filters: MorphoVaultFilters | None = None) -> list[MorphoVault]:
        """Moonwell-curated vaults on the configured network."""
        client = self._require_morpho()
        addresses = list(get_vault_addresses(self.settings.network).values())
        return self._read(lambda: client.get_vaults(filters, addresses=addresses or None), "vaults")

    def get_morpho_positions(self) -> list[MorphoMarketPosition]:
        account = self._require_account()
        client = self._require_morpho()
        return self._read(lambda: client.get_market_positions(account), "isolated market positions")

    def get_vault_positions(self) -> list[MorphoVaultPosition]:
        account = self._require_account()
        client = self._require_morpho()
        return self._read(lambda: client.get_vault_positions(account), "vault positions")

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def _wallet_exposures(self, account: str) -> list[MarketExposure]:
        wallet = self._require_wallet()
        exposures: list[MarketExposure] = []
        for symbol, info in self.assets.items():
            raw = self._read(lambda i=info: wallet.get_balance(i.address), f"{symbol} wallet balance")
            if raw <= 0:
                continue
            price = self._read(lambda s=symbol: self.core_market.read_price(s), f"{symbol} price")
            holding = WalletHolding(
                token_address=info.address,
                symbol=symbol,
                balance=to_canonical(raw, info.decimals),
                price=price,
            )
            exposures.append(WalletExposure(holding=holding))
        logger.debug("Wallet %s holds %d supported assets", account, len(exposures))
        return exposures

    def _core_exposures(self, position: UserPosition | None = None) -> list[MarketExposure]:
        position = position or self.get_user_position()
        addresses = {symbol: info.address for symbol, info in self.assets.items()}
        return [CoreExposure(position=position, token_addresses=addresses)]

    def _source_fetchers(self, account: str) -> dict[BalanceSource, SourceFetcher]:
        fetchers: dict[BalanceSource, SourceFetcher] = {
            BalanceSource.WALLET: lambda: self._wallet_exposures(account),
            BalanceSource.CORE: lambda: self._core_exposures(),
        }
        if self.morpho_client is not None:
            fetchers[BalanceSource.MORPHO] = lambda: [MorphoExposure(position=p) for p in self.get_morpho_positions()]
            fetchers[BalanceSource.VAULT] = lambda: [VaultExposure(position=p) for p in self.get_vault_positions()]
        return fetchers

    def _default_balance_params(self) -> UserBalanceParams:
        return UserBalanceParams(min_balance_threshold=self.settings.min_balance_threshold)

    def get_all_user_balances(self, params: UserBalanceParams | None = None) -> BalanceBreakdown:
        """
        Balances across wallet, pooled market, isolated markets and vaults.

        Raises
        ------
        ServiceUnavailableError
            If every requested source failed

        """
        account = self._require_account()
        aggregator = BalanceAggregator(self._source_fetchers(account), timeout=self.settings.request_timeout)
        return aggregator.get_all_user_balances(params or self._default_balance_params())

    def _fan_out(self, tasks: dict[str, Callable[[], Any]]) -> tuple[dict[str, Any], dict[str, Exception]]:
        """Run independent reads concurrently; each failure is kept, not raised."""
        results: dict[str, Any] = {}
        failures: dict[str, Exception] = {}
        executor = ThreadPoolExecutor(max_workers=min(len(tasks), 5))
        try:
            futures: dict[Future, str] = {executor.submit(task): name for name, task in tasks.items()}
            done, not_done = wait(futures, timeout=self.settings.request_timeout)
            for future in done:
                name = futures[future]
                try:
                    results[name] = future.result()
                except Exception as e:
                    logger.warning("Failed to load %s: %s", name, e)
                    failures[name] = e
            for future in not_done:
                name = futures[future]
                future.cancel()
                logger.warning("Loading %s timed out after %.1fs", name, self.settings.request_timeout)
                failures[name] = TimeoutError(f"{name} timed out")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return results, failures

    def get_comprehensive_user_data(self) -> ComprehensiveUserData:
        """
        Everything known about the connected account, loaded concurrently.

        Each part degrades independently to an empty value and is listed in
        ``degraded``; only when every part fails is the call itself reported
        as unavailable.

        Raises
        ------
        ServiceUnavailableError
            If every part failed

        """
        account = self._require_account()
        tasks: dict[str, Callable[[], Any]] = {
            "core_position": self.get_user_position,
            "core_rewards": self.get_user_rewards,
        }
        if self.morpho_client is not None:
            tasks["morpho_markets"] = self.get_morpho_markets
            tasks["morpho_positions"] = self.get_morpho_positions
            tasks["vault_positions"] = self.get_vault_positions

        parts, failures = self._fan_out(tasks)

        def loaded(name: str) -> Any:
            if name in failures:
                raise failures[name]
            return parts[name]

        fetchers: dict[BalanceSource, SourceFetcher] = {
            BalanceSource.WALLET: lambda: self._wallet_exposures(account),
            BalanceSource.CORE: lambda: self._core_exposures(loaded("core_position")),
        }
        if self.morpho_client is not None:
            fetchers[BalanceSource.MORPHO] = lambda: [MorphoExposure(position=p) for p in loaded("morpho_positions")]
            fetchers[BalanceSource.VAULT] = lambda: [VaultExposure(position=p) for p in loaded("vault_positions")]

        degraded = sorted(failures)
        try:
            breakdown = BalanceAggregator(fetchers, timeout=self.settings.request_timeout).get_all_user_balances(
                self._default_balance_params()
            )
        except ServiceUnavailableError as e:
            logger.warning("Balance breakdown unavailable: %s", e.message)
            breakdown = BalanceBreakdown(failed_sources=list(fetchers))
            degraded.append("balance_breakdown")
            if len(failures) == len(tasks):
                raise ServiceUnavailableError(
                    "All account data sources failed",
                    details={"failed_parts": degraded},
                ) from e
        else:
            degraded.extend(f"balances:{source}" for source in breakdown.failed_sources)

        core_position = parts.get("core_position")
        morpho_positions = parts.get("morpho_positions", [])
        vault_positions = parts.get("vault_positions", [])
        rewards = parts.get("core_rewards", UserRewards())

        return ComprehensiveUserData(
            user_address=account,
            core_position=core_position or UserPosition(),
            core_rewards=rewards,
            morpho_markets=parts.get("morpho_markets", []),
            morpho_positions=morpho_positions,
            vault_positions=vault_positions,
            balance_breakdown=breakdown,
            portfolio_summary=calculate_portfolio_summary(
                breakdown,
                core_position,
                morpho_positions,
                vault_positions,
                rewards.total_value_in_usd,
            ),
            degraded=degraded,
            last_updated=time.time(),
        )

    # ------------------------------------------------------------------
    # Guarded writes
    # ------------------------------------------------------------------

    def _wallet_balance(self, info: AssetInfo) -> Decimal:
        wallet = self._require_wallet()
        raw = self._read(lambda: wallet.get_balance(info.address), f"{info.symbol} wallet balance")
        return to_canonical(raw, info.decimals)

    def _approve(self, info: AssetInfo, raw_amount: int) -> None:
        wallet = self._require_wallet()
        try:
            wallet.approve_token(info.address, info.market, raw_amount)
        except Exception as e:
            raise classify_error(e) from e

    def _submit(self, tx: TransactionRequest, action: str) -> TransactionReceipt:
        wallet = self._require_wallet()
        try:
            receipt = wallet.sign_and_send(tx)
        except Exception as e:
            raise classify_error(e) from e

        if receipt.status != TransactionStatus.SUCCESS:
            msg = f"{action} transaction {receipt.hash} reverted"
            raise TransactionFailedError(
                msg,
                details={"transaction_hash": receipt.hash, "block_number": receipt.block_number},
            )
        logger.info("%s confirmed in %s (block %s)", action, receipt.hash, receipt.block_number)
        return receipt

    @staticmethod
    def _after_confirmed(receipt: TransactionReceipt, func: Callable[[], T]) -> T:
        """Run a step that follows a confirmed write, tagging failures with its hash."""
        try:
            return func()
        except MoonwellError as e:
            e.details.setdefault("transaction_hash", receipt.hash)
            e.details["confirmed_transaction_hash"] = receipt.hash
            raise

    def _settle(self, account: str, write: Callable[[], T]) -> T:
        """Run a write; if it fails part way, drop the cached position so the next read rebuilds."""
        try:
            return write()
        except Exception:
            self.position_cache.invalidate(account)
            raise

    def supply(self, params: SupplyParams) -> SupplyResult:
        """
        Supply an asset, optionally enabling it as collateral.

        Raises
        ------
        UnsupportedAssetError, InvalidAmountError, InsufficientBalanceError
            When a pre-check fails
        TransactionFailedError, TransactionTimeoutError
            When the write is not confirmed as expected

        """
        account = self._require_account()
        with self.account_lock(account):
            info = self.guard.validate_asset(params.asset)
            self.guard.validate_amount(params.amount)
            plan = self.guard.check_supply(info.symbol, params.amount, self._wallet_balance(info))

            raw = to_raw(plan.amount, info.decimals)
            self._approve(info, raw)

            def write() -> SupplyResult:
                receipt = self._submit(
                    self.core_market.build_mint(info.symbol, raw), f"Supply {plan.amount} {info.symbol}"
                )
                if params.enable_as_collateral:
                    self._after_confirmed(
                        receipt,
                        lambda: self._submit(
                            self.core_market.build_enter_markets([info.symbol]),
                            f"Enable {info.symbol} as collateral",
                        ),
                    )

                position = self._after_confirmed(receipt, lambda: self._refresh_position(account))
                market = self._after_confirmed(receipt, lambda: self.get_market_data(info.symbol)[0])
                return SupplyResult(
                    transaction_hash=receipt.hash,
                    supplied_amount=plan.amount,
                    current_apy=market.supply_apy,
                    collateral_enabled=params.enable_as_collateral,
                    health_factor=position.health_factor,
                )

            return self._settle(account, write)

    def borrow(self, params: BorrowParams) -> BorrowResult:
        """
        Borrow an asset against supplied collateral.

        The projected health factor is checked before submission and the
        confirmed post-state is re-read and checked again.

        Raises
        ------
        NoCollateralError
            If nothing is supplied as collateral
        ExceedsBorrowCapacityError, InsufficientLiquidityError
            If capacity or market liquidity is short
        LiquidationRiskError
            If the projected or confirmed health factor is below the alert threshold

        """
        account = self._require_account()
        with self.account_lock(account):
            info = self.guard.validate_asset(params.asset)
            self.guard.validate_amount(params.amount)
            position = self._refresh_position(account)
            market = self.get_market_data(info.symbol)[0]
            plan = self.guard.check_borrow(
                info.symbol,
                params.amount,
                position,
                market.price_in_usd,
                market.liquidity_available,
            )

            raw = to_raw(plan.amount, info.decimals)

            def write() -> BorrowResult:
                receipt = self._submit(
                    self.core_market.build_borrow(info.symbol, raw), f"Borrow {plan.amount} {info.symbol}"
                )
                after = self._after_confirmed(receipt, lambda: self._refresh_position(account))
                self.guard.check_post_borrow(after, receipt.hash)
                return BorrowResult(
                    transaction_hash=receipt.hash,
                    borrowed_amount=plan.amount,
                    interest_rate=market.borrow_apy,
                    health_factor=after.health_factor,
                )

            return self._settle(account, write)

    def repay(self, params: RepayParams) -> RepayResult:
        """Repay debt; ``is_max`` (or any amount above the debt) repays exactly the debt."""
        account = self._require_account()
        with self.account_lock(account):
            info = self.guard.validate_asset(params.asset)
            position = self._refresh_position(account)
            plan = self.guard.check_repay(
                info.symbol,
                params.amount,
                params.is_max,
                position,
                self._wallet_balance(info),
            )

            raw = to_raw(plan.amount, info.decimals)
            self._approve(info, raw)

            def write() -> RepayResult:
                receipt = self._submit(
                    self.core_market.build_repay(info.symbol, raw), f"Repay {plan.amount} {info.symbol}"
                )
                after = self._after_confirmed(receipt, lambda: self._refresh_position(account))
                remaining = after.borrow_for(info.symbol)
                return RepayResult(
                    transaction_hash=receipt.hash,
                    repaid_amount=plan.amount,
                    repaid_raw=raw,
                    remaining_debt=remaining.balance if remaining else Decimal("0"),
                    health_factor=after.health_factor,
                )

            return self._settle(account, write)

    def withdraw(self, params: WithdrawParams) -> WithdrawResult:
        """
        Withdraw supplied assets after simulating the resulting health factor.

        Raises
        ------
        InsufficientBalanceError
            If the asset is not supplied or the amount exceeds the supply
        LiquidationRiskError
            If the simulated health factor falls below 1.2

        """
        account = self._require_account()
        with self.account_lock(account):
            info = self.guard.validate_asset(params.asset)
            position = self._refresh_position(account)
            plan = self.guard.check_withdraw(info.symbol, params.amount, params.is_max, position)

            if plan.is_max:
                reading = self._read(lambda: self.core_market.read_asset(account, info.symbol), f"{info.symbol} shares")
                tx = self.core_market.build_redeem(info.symbol, reading.mtoken_balance)
            else:
                tx = self.core_market.build_redeem_underlying(info.symbol, to_raw(plan.amount, info.decimals))

            def write() -> WithdrawResult:
                receipt = self._submit(tx, f"Withdraw {plan.amount} {info.symbol}")
                after = self._after_confirmed(receipt, lambda: self._refresh_position(account))
                remaining = after.supply_for(info.symbol)
                return WithdrawResult(
                    transaction_hash=receipt.hash,
                    withdrawn_amount=plan.amount,
                    remaining_supply=remaining.balance if remaining else Decimal("0"),
                    health_factor=after.health_factor,
                )

            return self._settle(account, write)

    def close(self) -> None:
        """Close HTTP clients owned by collaborators."""
        for client in (self.morpho_client, self.pricing):
            if client is not None and hasattr(client, "close"):
                client.close()
