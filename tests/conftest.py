"""Pytest configuration and in-memory collaborators for moonwell-risk-engine tests."""

from decimal import Decimal

import pytest

from moonwell_risk.config import EngineSettings
from moonwell_risk.core.models import (
    AssetInfo,
    MarketData,
    TransactionReceipt,
    TransactionRequest,
    TransactionStatus,
)
from moonwell_risk.core.position import RawAssetReading
from moonwell_risk.core.units import WAD, oracle_price_to_usd, to_canonical
from moonwell_risk.engine import MoonwellRiskEngine

ACCOUNT = "0x1111111111111111111111111111111111111111"


def pytest_configure(config):
    """Disable ape plugin during tests."""
    # Unregister ape pytest plugin to avoid network connection issues
    config.pluginmanager.set_blocked("ape_test")


def oracle_price(usd: str, decimals: int) -> int:
    """Raw oracle price for a USD price per whole token."""
    return int(Decimal(usd) * 10 ** (36 - decimals))


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChain:
    """
    Shared state behind the fake market source and wallet.

    Two assets are listed: USDC (6 decimals, $1) and WETH (18 decimals,
    $2000), both with an 0.8 collateral factor and a 1:1 exchange rate.
    """

    def __init__(self) -> None:
        self.assets = {
            "USDC": AssetInfo(symbol="USDC", address="0xusdc", decimals=6, market="0xmusdc"),
            "WETH": AssetInfo(symbol="WETH", address="0xweth", decimals=18, market="0xmweth"),
        }
        self.readings = {
            "USDC": RawAssetReading(
                asset="USDC",
                decimals=6,
                exchange_rate=WAD,
                price=oracle_price("1", 6),
                collateral_factor=8 * 10**17,
            ),
            "WETH": RawAssetReading(
                asset="WETH",
                decimals=18,
                exchange_rate=WAD,
                price=oracle_price("2000", 18),
                collateral_factor=8 * 10**17,
            ),
        }
        self.wallet_balances = {"0xusdc": 0, "0xweth": 0}
        self.cash = {"USDC": 1_000_000 * 10**6, "WETH": 1_000 * 10**18}
        self.rewards: list[tuple[str, int]] = []
        self.sent: list[TransactionRequest] = []
        self.approvals: list[tuple[str, str, int]] = []
        self.revert_next = False
        self.revert_ops: set[str] = set()

    def supply_collateral(self, symbol: str, raw_amount: int) -> None:
        reading = self.readings[symbol]
        reading.mtoken_balance = raw_amount
        reading.is_collateral = True

    def set_debt(self, symbol: str, raw_amount: int) -> None:
        self.readings[symbol].borrow_balance = raw_amount

    def apply(self, tx: TransactionRequest) -> None:
        op, _, rest = tx.data.partition(":")
        if op == "enterMarkets":
            for symbol in rest.split(","):
                self.readings[symbol].is_collateral = True
            return

        symbol, amount_str = rest.split(":")
        amount = int(amount_str)
        reading = self.readings[symbol]
        token = self.assets[symbol].address
        if op == "mint":
            reading.mtoken_balance += amount
            self.wallet_balances[token] -= amount
        elif op == "borrow":
            reading.borrow_balance += amount
            self.wallet_balances[token] += amount
            self.cash[symbol] -= amount
        elif op == "repayBorrow":
            reading.borrow_balance -= amount
            self.wallet_balances[token] -= amount
        elif op in ("redeem", "redeemUnderlying"):
            reading.mtoken_balance -= amount
            self.wallet_balances[token] += amount


class FakeCoreMarket:
    """Pooled-market source answering from a ``FakeChain``."""

    def __init__(self, chain: FakeChain) -> None:
        self.chain = chain
        self.assets = chain.assets
        self.read_count = 0
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise RuntimeError("rpc connection refused")

    def read_asset(self, account: str, symbol: str) -> RawAssetReading:
        self._check()
        return self.chain.readings[symbol].model_copy()

    def read_assets(self, account: str) -> list[RawAssetReading]:
        self._check()
        self.read_count += 1
        return [reading.model_copy() for reading in self.chain.readings.values()]

    def read_account_liquidity(self, account: str):
        self._check()
        return None

    def read_price(self, symbol: str) -> Decimal:
        self._check()
        reading = self.chain.readings[symbol]
        return oracle_price_to_usd(reading.price, reading.decimals)

    def read_market(self, symbol: str) -> MarketData:
        self._check()
        reading = self.chain.readings[symbol]
        return MarketData(
            asset=symbol,
            symbol=symbol,
            supply_apy=Decimal("0.03"),
            borrow_apy=Decimal("0.05"),
            total_supply=Decimal("5000000"),
            total_borrow=Decimal("2000000"),
            utilization_rate=Decimal("0.4"),
            liquidity_available=to_canonical(self.chain.cash[symbol], reading.decimals),
            collateral_factor=Decimal("0.8"),
            price_in_usd=oracle_price_to_usd(reading.price, reading.decimals),
        )

    def read_outstanding_rewards(self, account: str) -> list[tuple[str, int]]:
        self._check()
        return list(self.chain.rewards)

    def _tx(self, op: str, symbol: str, amount: int) -> TransactionRequest:
        return TransactionRequest(to=self.assets[symbol].market, data=f"{op}:{symbol}:{amount}")

    def build_mint(self, symbol: str, amount: int) -> TransactionRequest:
        return self._tx("mint", symbol, amount)

    def build_borrow(self, symbol: str, amount: int) -> TransactionRequest:
        return self._tx("borrow", symbol, amount)

    def build_repay(self, symbol: str, amount: int) -> TransactionRequest:
        return self._tx("repayBorrow", symbol, amount)

    def build_redeem(self, symbol: str, shares: int) -> TransactionRequest:
        return self._tx("redeem", symbol, shares)

    def build_redeem_underlying(self, symbol: str, amount: int) -> TransactionRequest:
        return self._tx("redeemUnderlying", symbol, amount)

    def build_enter_markets(self, symbols: list[str]) -> TransactionRequest:
        return TransactionRequest(to="0xcomptroller", data=f"enterMarkets:{','.join(symbols)}")


class FakeWallet:
    """Wallet that applies every sent transaction to a ``FakeChain``."""

    def __init__(self, chain: FakeChain, address: str = ACCOUNT) -> None:
        self.chain = chain
        self.address = address
        self.fail_balance = False

    def get_address(self) -> str:
        return self.address

    def get_balance(self, token_address: str) -> int:
        if self.fail_balance:
            raise RuntimeError("rpc connection refused")
        return self.chain.wallet_balances.get(token_address, 0)

    def approve_token(self, token: str, spender: str, amount: int) -> None:
        self.chain.approvals.append((token, spender, amount))

    def sign_and_send(self, tx: TransactionRequest) -> TransactionReceipt:
        self.chain.sent.append(tx)
        tx_hash = f"0x{len(self.chain.sent):064x}"
        if self.chain.revert_next or tx.data.partition(":")[0] in self.chain.revert_ops:
            self.chain.revert_next = False
            return TransactionReceipt(hash=tx_hash, block_number=100, status=TransactionStatus.REVERTED)
        self.chain.apply(tx)
        return TransactionReceipt(hash=tx_hash, block_number=100 + len(self.chain.sent), status=TransactionStatus.SUCCESS)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def core_market(chain):
    return FakeCoreMarket(chain)


@pytest.fixture
def wallet(chain):
    return FakeWallet(chain)


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def engine(core_market, wallet, settings, clock):
    return MoonwellRiskEngine(core_market=core_market, wallet=wallet, settings=settings, clock=clock)


@pytest.fixture
def read_only_engine(core_market, settings, clock):
    return MoonwellRiskEngine(core_market=core_market, settings=settings, clock=clock)
