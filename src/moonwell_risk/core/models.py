"""Data models for positions, balances, market state, and portfolio summaries."""

from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from moonwell_risk.core.health import HEALTH_FACTOR_SENTINEL
from moonwell_risk.core.units import parse_amount


class BalanceSource(StrEnum):
    """Where an aggregated balance comes from."""

    WALLET = "wallet"
    CORE = "core"
    MORPHO = "morpho"
    VAULT = "vault"


class Token(BaseModel):
    """
    Token information.

    Attributes
    ----------
    address : str
        Token contract address
    symbol : str
        Token symbol (e.g., 'WETH', 'USDC')
    decimals : int
        Number of decimal places
    name : str, optional
        Full token name

    """

    address: str
    symbol: str
    decimals: int = Field(ge=0, le=77)
    name: str | None = None


class AssetInfo(BaseModel):
    """
    A pooled-market asset the engine knows how to operate on.

    Attributes
    ----------
    symbol : str
        Asset symbol as listed by the protocol
    address : str
        Underlying ERC20 address
    decimals : int
        Underlying token decimals
    market : str
        mToken (market) contract address

    """

    model_config = ConfigDict(frozen=True)

    symbol: str
    address: str
    decimals: int = Field(ge=0, le=77)
    market: str


class AssetPosition(BaseModel):
    """
    One asset's exposure within one market.

    Direction (supply vs. debt) is carried by the list the position lives in,
    never by the sign of ``balance``.

    """

    model_config = ConfigDict(frozen=True)

    asset: str
    symbol: str
    balance: Decimal = Field(ge=0)
    balance_in_usd: Decimal = Field(ge=0)
    apy: Decimal = Decimal("0")
    is_collateral: bool | None = None
    liquidation_threshold: Decimal | None = None


class UserPosition(BaseModel):
    """
    Per-market aggregate position.

    Attributes
    ----------
    total_supplied : Decimal
        USD value of collateral-enabled supplies
    total_borrowed : Decimal
        USD value of all debt
    health_factor : Decimal
        Risk-weighted collateral over debt; 999 when there is no debt
    liquidation_threshold : Decimal
        Blended threshold of the collateral-enabled supplies (0-1)
    available_to_borrow : Decimal
        Remaining borrow capacity in USD
    supplies : list[AssetPosition]
        Supplied assets (non-zero only)
    borrows : list[AssetPosition]
        Borrowed assets (non-zero only)

    """

    model_config = ConfigDict(frozen=True)

    total_supplied: Decimal = Decimal("0")
    total_borrowed: Decimal = Decimal("0")
    health_factor: Decimal = HEALTH_FACTOR_SENTINEL
    liquidation_threshold: Decimal = Decimal("0.8")
    available_to_borrow: Decimal = Decimal("0")
    supplies: list[AssetPosition] = Field(default_factory=list)
    borrows: list[AssetPosition] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_sentinel(self) -> "UserPosition":
        has_debt = self.total_borrowed != 0
        is_sentinel = self.health_factor == HEALTH_FACTOR_SENTINEL
        if has_debt == is_sentinel:
            msg = (
                f"health factor {self.health_factor} is inconsistent with "
                f"total borrowed {self.total_borrowed}"
            )
            raise ValueError(msg)
        return self

    def supply_for(self, symbol: str) -> AssetPosition | None:
        """Return the supply position for ``symbol``, if any."""
        return next((s for s in self.supplies if s.asset == symbol), None)

    def borrow_for(self, symbol: str) -> AssetPosition | None:
        """Return the debt position for ``symbol``, if any."""
        return next((b for b in self.borrows if b.asset == symbol), None)


class EnhancedUserBalance(BaseModel):
    """
    Market-agnostic balance record used by the aggregator.

    Unlike ``AssetPosition``, ``balance`` and ``balance_in_usd`` are signed:
    debt is negative.

    """

    model_config = ConfigDict(frozen=True)

    token_address: str
    symbol: str
    balance: Decimal
    balance_in_usd: Decimal
    price: Decimal = Decimal("0")
    source: BalanceSource
    apy: Decimal | None = None
    is_collateral: bool | None = None
    market_id: str | None = None
    vault_id: str | None = None


class BalanceBreakdown(BaseModel):
    """Balances from every source, filtered by a minimum USD value, with per-source totals."""

    wallet_balances: list[EnhancedUserBalance] = Field(default_factory=list)
    core_positions: list[EnhancedUserBalance] = Field(default_factory=list)
    morpho_positions: list[EnhancedUserBalance] = Field(default_factory=list)
    vault_positions: list[EnhancedUserBalance] = Field(default_factory=list)
    total_balance_in_usd: Decimal = Decimal("0")
    total_wallet_value_in_usd: Decimal = Decimal("0")
    total_core_value_in_usd: Decimal = Decimal("0")
    total_morpho_value_in_usd: Decimal = Decimal("0")
    total_vault_value_in_usd: Decimal = Decimal("0")
    failed_sources: list[BalanceSource] = Field(default_factory=list)

    def balances_for(self, source: BalanceSource) -> list[EnhancedUserBalance]:
        """Return the filtered balance list of one source."""
        return {
            BalanceSource.WALLET: self.wallet_balances,
            BalanceSource.CORE: self.core_positions,
            BalanceSource.MORPHO: self.morpho_positions,
            BalanceSource.VAULT: self.vault_positions,
        }[source]


class UserBalanceParams(BaseModel):
    """Which sources to aggregate and the minimum USD value to keep."""

    include_wallet: bool = True
    include_core: bool = True
    include_morpho: bool = True
    include_vaults: bool = True
    min_balance_threshold: Decimal = Field(default=Decimal("0.01"), ge=0)


class RiskDistribution(BaseModel):
    """USD value bucketed by the health factor of the market holding it."""

    safe: Decimal = Decimal("0")
    moderate: Decimal = Decimal("0")
    high: Decimal = Decimal("0")
    critical: Decimal = Decimal("0")


class MarketDistribution(BaseModel):
    """USD value per market type."""

    core: Decimal = Decimal("0")
    morpho: Decimal = Decimal("0")
    vaults: Decimal = Decimal("0")


class PortfolioSummary(BaseModel):
    """
    Aggregated, read-only portfolio view across all markets.

    Attributes
    ----------
    total_net_worth : Decimal
        Grand total of the balance breakdown (debt netted)
    total_supplied : Decimal
        Unsigned USD value supplied across core, isolated markets and vaults
    total_borrowed : Decimal
        Unsigned USD value borrowed across core and isolated markets
    total_rewards_value : Decimal
        USD value of claimable rewards
    overall_health_factor : Decimal
        Debt-weighted blend of every market's health factor
    lowest_health_factor : Decimal
        Worst single market health factor
    weighted_average_supply_apy : Decimal
        USD-weighted supply APY
    weighted_average_borrow_apy : Decimal
        USD-weighted borrow APY
    risk_distribution : RiskDistribution
        USD value per risk bucket
    market_distribution : MarketDistribution
        USD value per market type

    """

    total_net_worth: Decimal = Decimal("0")
    total_supplied: Decimal = Decimal("0")
    total_borrowed: Decimal = Decimal("0")
    total_rewards_value: Decimal = Decimal("0")
    overall_health_factor: Decimal = HEALTH_FACTOR_SENTINEL
    lowest_health_factor: Decimal = HEALTH_FACTOR_SENTINEL
    weighted_average_supply_apy: Decimal = Decimal("0")
    weighted_average_borrow_apy: Decimal = Decimal("0")
    risk_distribution: RiskDistribution = Field(default_factory=RiskDistribution)
    market_distribution: MarketDistribution = Field(default_factory=MarketDistribution)


class MarketData(BaseModel):
    """Current state of one pooled market."""

    asset: str
    symbol: str
    supply_apy: Decimal
    borrow_apy: Decimal
    total_supply: Decimal
    total_borrow: Decimal
    utilization_rate: Decimal
    liquidity_available: Decimal
    collateral_factor: Decimal
    price_in_usd: Decimal


class MarketSnapshot(BaseModel):
    """Point-in-time market state keyed by asset and timestamp (seconds)."""

    model_config = ConfigDict(frozen=True)

    asset: str
    symbol: str
    timestamp: float
    supply_apy: Decimal
    borrow_apy: Decimal
    total_supply: Decimal
    total_borrow: Decimal
    utilization_rate: Decimal
    liquidity_available: Decimal
    price_in_usd: Decimal
    volume_24h: Decimal = Decimal("0")
    unique_users: int = 0


class RateTrend(BaseModel):
    current: Decimal
    avg_7d: Decimal
    avg_window: Decimal


class LiquidityTrend(BaseModel):
    current: Decimal
    avg_7d: Decimal
    min_7d: Decimal
    max_7d: Decimal


class VolumeTrend(BaseModel):
    total_24h: Decimal
    avg_7d: Decimal
    total_7d: Decimal


class MarketSnapshotSummary(BaseModel):
    """Trend summary derived from a series of snapshots of one asset."""

    asset: str
    symbol: str
    current_price: Decimal
    price_change_24h: Decimal
    price_change_7d: Decimal
    supply_apy_trend: RateTrend
    borrow_apy_trend: RateTrend
    utilization_trend: RateTrend
    liquidity_trend: LiquidityTrend
    volume_trend: VolumeTrend
    snapshots: list[MarketSnapshot]


class UserReward(BaseModel):
    token: str
    symbol: str
    amount: Decimal
    value_in_usd: Decimal = Decimal("0")


class UserRewards(BaseModel):
    rewards: list[UserReward] = Field(default_factory=list)
    total_value_in_usd: Decimal = Decimal("0")


class MorphoMarket(BaseModel):
    """
    Isolated market as normalized from the protocol API.

    Rates are decimal fractions; amounts are canonical token quantities.

    """

    market_id: str
    chain_id: int
    loan_token: Token
    collateral_token: Token | None = None
    lltv: Decimal
    supply_apy: Decimal
    borrow_apy: Decimal
    total_supply_assets: Decimal
    total_borrow_assets: Decimal
    liquidity_assets: Decimal
    liquidity_usd: Decimal = Decimal("0")
    utilization: Decimal
    loan_price_usd: Decimal = Decimal("0")


class MorphoMarketPosition(BaseModel):
    """A user's exposure to one isolated market."""

    market_id: str
    loan_token: Token
    collateral_token: Token | None = None
    lltv: Decimal
    supply_assets: Decimal = Decimal("0")
    supply_usd: Decimal = Decimal("0")
    borrow_assets: Decimal = Decimal("0")
    borrow_usd: Decimal = Decimal("0")
    collateral: Decimal = Decimal("0")
    collateral_usd: Decimal = Decimal("0")
    supply_apy: Decimal = Decimal("0")
    borrow_apy: Decimal = Decimal("0")
    health_factor: Decimal = HEALTH_FACTOR_SENTINEL


class MorphoVault(BaseModel):
    """Share-based vault depositing into isolated markets."""

    vault_id: str
    address: str
    name: str
    symbol: str
    asset: Token
    total_assets: Decimal
    total_assets_usd: Decimal
    apy: Decimal
    share_price: Decimal = Decimal("1")
    curator: str | None = None


class MorphoVaultPosition(BaseModel):
    """A user's shares in one vault."""

    vault_id: str
    vault_address: str
    vault_name: str
    asset: Token
    shares: Decimal
    assets: Decimal
    assets_usd: Decimal
    apy: Decimal = Decimal("0")


class MorphoMarketFilters(BaseModel):
    loan_token: str | None = None
    collateral_token: str | None = None
    min_supply_apy: Decimal | None = None
    min_borrow_apy: Decimal | None = None
    min_liquidity_usd: Decimal | None = None
    max_utilization: Decimal | None = None


class MorphoVaultFilters(BaseModel):
    asset: str | None = None
    min_apy: Decimal | None = None
    min_tvl_usd: Decimal | None = None


class WalletHolding(BaseModel):
    token_address: str
    symbol: str
    balance: Decimal = Field(ge=0)
    price: Decimal = Field(ge=0)


class CoreExposure(BaseModel):
    kind: Literal["core"] = "core"
    position: UserPosition
    token_addresses: dict[str, str] = Field(default_factory=dict)


class MorphoExposure(BaseModel):
    kind: Literal["morpho"] = "morpho"
    position: MorphoMarketPosition


class VaultExposure(BaseModel):
    kind: Literal["vault"] = "vault"
    position: MorphoVaultPosition


class WalletExposure(BaseModel):
    kind: Literal["wallet"] = "wallet"
    holding: WalletHolding


MarketExposure = Annotated[
    CoreExposure | MorphoExposure | VaultExposure | WalletExposure,
    Field(discriminator="kind"),
]


class _AmountParams(BaseModel):
    asset: str
    amount: Decimal | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_amount(cls, value: Any) -> Decimal | None:
        if value is None:
            return None
        return parse_amount(value)


class SupplyParams(_AmountParams):
    enable_as_collateral: bool = False


class BorrowParams(_AmountParams):
    pass


class RepayParams(_AmountParams):
    is_max: bool = False


class WithdrawParams(_AmountParams):
    is_max: bool = False


class TransactionRequest(BaseModel):
    """Unsigned call handed to the wallet collaborator."""

    to: str
    data: str
    value: int = 0


class TransactionStatus(StrEnum):
    SUCCESS = "success"
    REVERTED = "reverted"


class TransactionReceipt(BaseModel):
    hash: str
    block_number: int | None = None
    status: TransactionStatus


class SupplyResult(BaseModel):
    transaction_hash: str
    supplied_amount: Decimal
    current_apy: Decimal
    collateral_enabled: bool
    health_factor: Decimal


class BorrowResult(BaseModel):
    transaction_hash: str
    borrowed_amount: Decimal
    interest_rate: Decimal
    health_factor: Decimal


class RepayResult(BaseModel):
    transaction_hash: str
    repaid_amount: Decimal
    repaid_raw: int
    remaining_debt: Decimal
    health_factor: Decimal


class WithdrawResult(BaseModel):
    transaction_hash: str
    withdrawn_amount: Decimal
    remaining_supply: Decimal
    health_factor: Decimal


class ComprehensiveUserData(BaseModel):
    """Everything known about one account across all markets."""

    user_address: str
    core_position: UserPosition
    core_rewards: UserRewards
    morpho_markets: list[MorphoMarket] = Field(default_factory=list)
    morpho_positions: list[MorphoMarketPosition] = Field(default_factory=list)
    vault_positions: list[MorphoVaultPosition] = Field(default_factory=list)
    balance_breakdown: BalanceBreakdown
    portfolio_summary: PortfolioSummary
    degraded: list[str] = Field(default_factory=list)
    last_updated: float
