"""Tests for the risk engine against in-memory chain and wallet fakes."""

import threading
from decimal import Decimal

import pytest

from moonwell_risk.core.health import HEALTH_FACTOR_SENTINEL
from moonwell_risk.core.models import (
    BorrowParams,
    MorphoMarketPosition,
    MorphoVaultPosition,
    RepayParams,
    SupplyParams,
    Token,
    WithdrawParams,
)
from moonwell_risk.engine import MoonwellRiskEngine
from moonwell_risk.errors import (
    ExceedsBorrowCapacityError,
    InsufficientBalanceError,
    InsufficientLiquidityError,
    InvalidAmountError,
    InvalidParametersError,
    LiquidationRiskError,
    NoCollateralError,
    RpcError,
    ServiceUnavailableError,
    TransactionFailedError,
    UnsupportedAssetError,
    WalletNotConnectedError,
)

WELL = "0xa88594d404727625a9437c3f886c7643872296ae"
USDC_TOKEN = Token(address="0xusdc", symbol="USDC", decimals=6)
WETH_TOKEN = Token(address="0xweth", symbol="WETH", decimals=18)


class FakeMorphoClient:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.positions = [
            MorphoMarketPosition(
                market_id="0xm1",
                loan_token=USDC_TOKEN,
                collateral_token=WETH_TOKEN,
                lltv=Decimal("0.86"),
                borrow_assets=Decimal("100"),
                borrow_usd=Decimal("100"),
                collateral=Decimal("0.1"),
                collateral_usd=Decimal("200"),
                borrow_apy=Decimal("0.06"),
                health_factor=Decimal("1.72"),
            )
        ]
        self.vault_positions = [
            MorphoVaultPosition(
                vault_id="0xv1",
                vault_address="0xV1",
                vault_name="Moonwell USDC",
                asset=USDC_TOKEN,
                shares=Decimal("10"),
                assets=Decimal("10"),
                assets_usd=Decimal("10"),
                apy=Decimal("0.05"),
            )
        ]

    def _check(self) -> None:
        if self.fail:
            raise RuntimeError("HTTP request failed: 503")

    def get_market_positions(self, account):
        self._check()
        return self.positions

    def get_vault_positions(self, account):
        self._check()
        return self.vault_positions

    def get_markets(self, filters=None):
        self._check()
        return []

    def get_vaults(self, filters=None, addresses=None):
        self._check()
        return []


class FakePricing:
    def __init__(self, prices):
        self.prices = prices
        self.calls = []

    def get_prices(self, chain, addresses):
        self.calls.append((chain, addresses))
        return self.prices


@pytest.fixture
def collateralized(chain):
    """One WETH ($2000) supplied as collateral."""
    chain.supply_collateral("WETH", 10**18)
    return chain


class TestPositionReads:
    """Tests for position reads and caching."""

    def test_position_with_debt(self, engine, collateralized):
        """Test health factor, totals and simulated capacity."""
        collateralized.set_debt("USDC", 1000 * 10**6)

        position = engine.get_user_position()

        assert position.total_supplied == Decimal("2000")
        assert position.total_borrowed == Decimal("1000")
        assert position.liquidation_threshold == Decimal("0.8")
        assert position.health_factor == Decimal("1.6")
        assert position.available_to_borrow == Decimal("600")
        assert position.borrow_for("USDC").balance == Decimal("1000")

    def test_position_without_debt_uses_sentinel(self, engine, collateralized):
        position = engine.get_user_position()

        assert position.health_factor == HEALTH_FACTOR_SENTINEL
        assert position.borrows == []

    def test_cached_within_ttl(self, engine, core_market, collateralized, clock):
        """Test that reads inside the TTL do not hit the chain."""
        engine.get_user_position()
        clock.advance(10)
        engine.get_user_position()

        assert core_market.read_count == 1

    def test_rebuilt_after_ttl(self, engine, core_market, collateralized, clock):
        engine.get_user_position()
        clock.advance(31)
        engine.get_user_position()

        assert core_market.read_count == 2

    def test_max_age_extends_freshness(self, engine, core_market, collateralized, clock):
        """Test that a caller may accept an older position than the TTL."""
        engine.get_user_position()
        clock.advance(45)
        engine.get_user_position(max_age=60)

        assert core_market.read_count == 1

    def test_force_refresh(self, engine, core_market, collateralized):
        engine.get_user_position()
        engine.get_user_position(force_refresh=True)

        assert core_market.read_count == 2

    def test_read_failure_is_rpc_error(self, engine, core_market):
        """Test that collaborator failures surface as RpcError."""
        core_market.fail = True

        with pytest.raises(RpcError):
            engine.get_user_position()


class TestReadOnlyMode:
    """Tests for an engine without a wallet."""

    def test_account_reads_require_wallet(self, read_only_engine):
        assert read_only_engine.read_only is True
        with pytest.raises(WalletNotConnectedError):
            read_only_engine.get_user_position()
        with pytest.raises(WalletNotConnectedError):
            read_only_engine.get_all_user_balances()

    def test_writes_require_wallet(self, read_only_engine):
        with pytest.raises(WalletNotConnectedError):
            read_only_engine.supply(SupplyParams(asset="USDC", amount="1"))

    def test_market_data_still_available(self, read_only_engine):
        markets = read_only_engine.get_market_data()

        assert [m.symbol for m in markets] == ["USDC", "WETH"]
        assert markets[1].price_in_usd == Decimal("2000")


class TestSupply:
    """Tests for guarded supply."""

    def test_supply_as_collateral(self, engine, chain):
        chain.wallet_balances["0xusdc"] = 1000 * 10**6

        result = engine.supply(SupplyParams(asset="usdc", amount="250", enable_as_collateral=True))

        assert [tx.data for tx in chain.sent] == ["mint:USDC:250000000", "enterMarkets:USDC"]
        assert chain.approvals == [("0xusdc", "0xmusdc", 250_000_000)]
        assert result.supplied_amount == Decimal("250")
        assert result.collateral_enabled is True
        assert result.current_apy == Decimal("0.03")
        assert result.health_factor == HEALTH_FACTOR_SENTINEL
        assert engine.get_cached_position().total_supplied == Decimal("250")

    def test_reverted_collateral_step_drops_cached_position(self, engine, chain):
        """Test that a confirmed mint is visible even when enabling collateral reverts."""
        chain.wallet_balances["0xusdc"] = 1000 * 10**6
        assert engine.get_user_position().supplies == []
        chain.revert_ops.add("enterMarkets")

        with pytest.raises(TransactionFailedError) as exc_info:
            engine.supply(SupplyParams(asset="USDC", amount="250", enable_as_collateral=True))

        assert exc_info.value.details["transaction_hash"] == f"0x{2:064x}"
        assert exc_info.value.details["confirmed_transaction_hash"] == f"0x{1:064x}"
        assert engine.get_cached_position() is None
        assert engine.get_user_position().supply_for("USDC").balance == Decimal("250")

    def test_market_read_failure_after_supply_carries_hash(self, engine, chain, core_market, monkeypatch):
        chain.wallet_balances["0xusdc"] = 1000 * 10**6

        def read_market(symbol):
            raise RuntimeError("rpc timeout")

        monkeypatch.setattr(core_market, "read_market", read_market)

        with pytest.raises(RpcError) as exc_info:
            engine.supply(SupplyParams(asset="USDC", amount="250"))

        assert [tx.data for tx in chain.sent] == ["mint:USDC:250000000"]
        assert exc_info.value.details["transaction_hash"] == f"0x{1:064x}"

    def test_supply_exceeding_wallet_balance(self, engine, chain):
        chain.wallet_balances["0xusdc"] = 10 * 10**6

        with pytest.raises(InsufficientBalanceError):
            engine.supply(SupplyParams(asset="USDC", amount="11"))
        assert chain.sent == []

    def test_supply_zero_amount(self, engine, chain):
        with pytest.raises(InvalidAmountError):
            engine.supply(SupplyParams(asset="USDC", amount="0"))
        assert chain.sent == []

    def test_supply_unsupported_asset(self, engine):
        with pytest.raises(UnsupportedAssetError):
            engine.supply(SupplyParams(asset="DOGE", amount="1"))


class TestBorrow:
    """Tests for guarded borrow."""

    def test_borrow_without_collateral(self, engine, chain):
        with pytest.raises(NoCollateralError):
            engine.borrow(BorrowParams(asset="USDC", amount="100"))
        assert chain.sent == []

    def test_borrow_exceeding_capacity(self, engine, collateralized):
        with pytest.raises(ExceedsBorrowCapacityError) as exc_info:
            engine.borrow(BorrowParams(asset="USDC", amount="1700"))

        assert exc_info.value.details["available_to_borrow"] == Decimal("1600")
        assert collateralized.sent == []

    def test_borrow_below_alert_threshold(self, engine, collateralized):
        """Test that a borrow projecting a health factor under 1.5 is refused."""
        with pytest.raises(LiquidationRiskError) as exc_info:
            engine.borrow(BorrowParams(asset="USDC", amount="1100"))

        assert exc_info.value.health_factor == Decimal("1.45")
        assert collateralized.sent == []

    def test_borrow_exceeding_market_liquidity(self, engine, collateralized):
        collateralized.cash["USDC"] = 50 * 10**6

        with pytest.raises(InsufficientLiquidityError):
            engine.borrow(BorrowParams(asset="USDC", amount="100"))

    def test_borrow_success(self, engine, collateralized):
        result = engine.borrow(BorrowParams(asset="USDC", amount="500"))

        assert [tx.data for tx in collateralized.sent] == ["borrow:USDC:500000000"]
        assert result.borrowed_amount == Decimal("500")
        assert result.interest_rate == Decimal("0.05")
        assert result.health_factor == Decimal("3.2")
        assert collateralized.readings["USDC"].borrow_balance == 500 * 10**6

    def test_reverted_borrow(self, engine, collateralized):
        """Test that a reverted receipt is reported with its hash."""
        collateralized.revert_next = True

        with pytest.raises(TransactionFailedError) as exc_info:
            engine.borrow(BorrowParams(asset="USDC", amount="500"))

        assert exc_info.value.details["transaction_hash"] == f"0x{1:064x}"
        assert collateralized.readings["USDC"].borrow_balance == 0

    def test_wallet_exception_is_classified(self, engine, collateralized, wallet, monkeypatch):
        def explode(tx):
            raise RuntimeError("insufficient funds for gas * price + value")

        monkeypatch.setattr(wallet, "sign_and_send", explode)

        with pytest.raises(InsufficientBalanceError):
            engine.borrow(BorrowParams(asset="USDC", amount="500"))

    def test_concurrent_borrows_are_serialized(self, engine, collateralized):
        """Test that two borrows on one account never both pass on a stale pre-state."""
        outcomes = []

        def borrow():
            try:
                engine.borrow(BorrowParams(asset="USDC", amount="700"))
                outcomes.append("ok")
            except LiquidationRiskError:
                outcomes.append("refused")

        threads = [threading.Thread(target=borrow) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == ["ok", "refused"]
        assert collateralized.readings["USDC"].borrow_balance == 700 * 10**6


class TestRepay:
    """Tests for guarded repay."""

    def test_repay_max_clears_debt_exactly(self, engine, collateralized):
        """Test that a full repay submits the exact raw debt and restores the sentinel."""
        collateralized.set_debt("USDC", 1_000_000_000)
        collateralized.wallet_balances["0xusdc"] = 2_000_000_000

        result = engine.repay(RepayParams(asset="USDC", is_max=True))

        assert result.repaid_raw == 1_000_000_000
        assert result.repaid_amount == Decimal("1000")
        assert result.remaining_debt == Decimal("0")
        assert result.health_factor == HEALTH_FACTOR_SENTINEL
        assert collateralized.approvals == [("0xusdc", "0xmusdc", 1_000_000_000)]

    def test_repay_above_debt_is_clamped(self, engine, collateralized):
        collateralized.set_debt("USDC", 1_000_000_000)
        collateralized.wallet_balances["0xusdc"] = 2_000_000_000

        result = engine.repay(RepayParams(asset="USDC", amount="5000"))

        assert result.repaid_raw == 1_000_000_000

    def test_partial_repay(self, engine, collateralized):
        collateralized.set_debt("USDC", 1_000_000_000)
        collateralized.wallet_balances["0xusdc"] = 2_000_000_000

        result = engine.repay(RepayParams(asset="USDC", amount="200"))

        assert result.remaining_debt == Decimal("800")
        assert result.health_factor == Decimal("2")

    def test_repay_without_debt(self, engine, collateralized):
        with pytest.raises(InvalidParametersError) as exc_info:
            engine.repay(RepayParams(asset="USDC", amount="10"))

        assert exc_info.value.code == "INVALID_PARAMETERS"
        assert collateralized.sent == []

    def test_position_read_failure_after_repay_carries_hash(self, engine, collateralized, core_market, monkeypatch):
        """Test that a failed re-read is told apart from a failed repay."""
        collateralized.set_debt("USDC", 1_000_000_000)
        collateralized.wallet_balances["0xusdc"] = 2_000_000_000
        read_assets = core_market.read_assets

        def read_after_send(account):
            if collateralized.sent:
                raise RuntimeError("rpc timeout")
            return read_assets(account)

        monkeypatch.setattr(core_market, "read_assets", read_after_send)

        with pytest.raises(RpcError) as exc_info:
            engine.repay(RepayParams(asset="USDC", amount="200"))

        assert exc_info.value.details["transaction_hash"] == f"0x{1:064x}"
        assert collateralized.readings["USDC"].borrow_balance == 800_000_000
        assert engine.get_cached_position() is None

    def test_repay_exceeding_wallet(self, engine, collateralized):
        collateralized.set_debt("USDC", 1_000_000_000)
        collateralized.wallet_balances["0xusdc"] = 10 * 10**6

        with pytest.raises(InsufficientBalanceError):
            engine.repay(RepayParams(asset="USDC", amount="100"))
        assert collateralized.sent == []


class TestWithdraw:
    """Tests for guarded withdraw."""

    def test_withdraw_below_minimum_health(self, engine, collateralized):
        collateralized.set_debt("USDC", 1000 * 10**6)

        with pytest.raises(LiquidationRiskError) as exc_info:
            engine.withdraw(WithdrawParams(asset="WETH", amount="0.6"))

        assert exc_info.value.health_factor == Decimal("0.64")
        assert collateralized.sent == []

    def test_partial_withdraw(self, engine, collateralized):
        collateralized.set_debt("USDC", 1000 * 10**6)

        result = engine.withdraw(WithdrawParams(asset="WETH", amount="0.1"))

        assert [tx.data for tx in collateralized.sent] == [f"redeemUnderlying:WETH:{10**17}"]
        assert result.remaining_supply == Decimal("0.9")
        assert result.health_factor == Decimal("1.44")

    def test_withdraw_max_redeems_all_shares(self, engine, collateralized):
        result = engine.withdraw(WithdrawParams(asset="WETH", is_max=True))

        assert [tx.data for tx in collateralized.sent] == [f"redeem:WETH:{10**18}"]
        assert result.withdrawn_amount == Decimal("1")
        assert result.remaining_supply == Decimal("0")
        assert result.health_factor == HEALTH_FACTOR_SENTINEL

    def test_withdraw_more_than_supplied(self, engine, collateralized):
        with pytest.raises(InsufficientBalanceError):
            engine.withdraw(WithdrawParams(asset="WETH", amount="2"))

    def test_withdraw_unsupplied_asset(self, engine, collateralized):
        with pytest.raises(InsufficientBalanceError):
            engine.withdraw(WithdrawParams(asset="USDC", amount="1"))


class TestMarketsAndRewards:
    """Tests for market data, snapshots and rewards."""

    def test_market_data_records_snapshot(self, engine):
        markets = engine.get_market_data("usdc")

        assert [m.symbol for m in markets] == ["USDC"]
        assert len(engine.snapshots.get("USDC")) == 1
        summary = engine.get_market_snapshot_summary("USDC")
        assert summary.current_price == Decimal("1")
        assert summary.price_change_24h == Decimal("0")

    def test_snapshot_summary_without_history(self, engine):
        with pytest.raises(UnsupportedAssetError):
            engine.get_market_snapshot_summary("WETH")

    def test_rewards_priced(self, core_market, wallet, settings, chain):
        chain.rewards = [(WELL, 5 * 10**18), ("0xdead", 0)]
        pricing = FakePricing({WELL: Decimal("0.02")})
        engine = MoonwellRiskEngine(core_market=core_market, wallet=wallet, pricing=pricing, settings=settings)

        rewards = engine.get_user_rewards()

        assert len(rewards.rewards) == 1
        assert rewards.rewards[0].symbol == "WELL"
        assert rewards.rewards[0].amount == Decimal("5")
        assert rewards.total_value_in_usd == Decimal("0.1")
        assert pricing.calls == [("base", [WELL])]

    def test_rewards_without_pricing_are_zero(self, engine, chain):
        chain.rewards = [(WELL, 10**18)]

        rewards = engine.get_user_rewards()

        assert rewards.rewards[0].value_in_usd == Decimal("0")
        assert rewards.total_value_in_usd == Decimal("0")


class TestAggregation:
    """Tests for balance aggregation and comprehensive data."""

    def test_balances_net_debt(self, engine, collateralized):
        collateralized.set_debt("USDC", 1000 * 10**6)
        collateralized.wallet_balances["0xusdc"] = 500 * 10**6

        breakdown = engine.get_all_user_balances()

        assert breakdown.total_wallet_value_in_usd == Decimal("500")
        assert breakdown.total_core_value_in_usd == Decimal("1000")
        assert breakdown.total_balance_in_usd == Decimal("1500")
        assert any(b.balance_in_usd == Decimal("-1000") for b in breakdown.core_positions)
        assert breakdown.failed_sources == []

    def test_comprehensive_data(self, core_market, wallet, settings, collateralized):
        collateralized.set_debt("USDC", 1000 * 10**6)
        engine = MoonwellRiskEngine(
            core_market=core_market, morpho_client=FakeMorphoClient(), wallet=wallet, settings=settings
        )

        data = engine.get_comprehensive_user_data()
        summary = data.portfolio_summary

        assert data.degraded == []
        assert data.core_position.health_factor == Decimal("1.6")
        assert data.balance_breakdown.total_balance_in_usd == Decimal("1110")
        assert summary.total_net_worth == Decimal("1110")
        assert summary.total_supplied == Decimal("2210")
        assert summary.total_borrowed == Decimal("1100")
        assert summary.overall_health_factor == Decimal("1.61")
        assert summary.lowest_health_factor == Decimal("1.6")
        assert summary.market_distribution.core == Decimal("1000")
        assert summary.market_distribution.morpho == Decimal("100")
        assert summary.market_distribution.vaults == Decimal("10")
        assert summary.risk_distribution.moderate == Decimal("1100")
        assert summary.risk_distribution.safe == Decimal("10")

    def test_comprehensive_data_degrades_per_part(self, core_market, wallet, settings, collateralized):
        engine = MoonwellRiskEngine(
            core_market=core_market, morpho_client=FakeMorphoClient(fail=True), wallet=wallet, settings=settings
        )

        data = engine.get_comprehensive_user_data()

        assert "morpho_positions" in data.degraded
        assert "vault_positions" in data.degraded
        assert "balances:morpho" in data.degraded
        assert data.morpho_positions == []
        assert data.portfolio_summary.total_net_worth == Decimal("2000")

    def test_comprehensive_data_all_failed(self, core_market, wallet, settings):
        core_market.fail = True
        wallet.fail_balance = True
        engine = MoonwellRiskEngine(
            core_market=core_market, morpho_client=FakeMorphoClient(fail=True), wallet=wallet, settings=settings
        )

        with pytest.raises(ServiceUnavailableError):
            engine.get_comprehensive_user_data()
