"""Reduce a balance breakdown and per-market health into a portfolio summary."""

from decimal import ROUND_HALF_EVEN, Decimal

from moonwell_risk.core.health import (
    HEALTH_FACTOR_CEILING,
    HEALTH_FACTOR_SENTINEL,
    RiskLevel,
    classify_risk,
)
from moonwell_risk.core.models import (
    BalanceBreakdown,
    BalanceSource,
    MarketDistribution,
    MorphoMarketPosition,
    MorphoVaultPosition,
    PortfolioSummary,
    RiskDistribution,
    UserPosition,
)

_TWO_PLACES = Decimal("0.01")


def _weighted_average(pairs: list[tuple[Decimal, Decimal]]) -> Decimal:
    total = sum((weight for weight, _ in pairs), Decimal("0"))
    if total <= 0:
        return Decimal("0")
    return sum((weight * value for weight, value in pairs), Decimal("0")) / total


def blend_health_factors(markets: list[tuple[Decimal, Decimal]]) -> Decimal:
    """
    Debt-weighted blend of ``(debt_usd, health_factor)`` pairs.

    Markets without debt carry no weight; with no debt anywhere the sentinel
    is returned.
    """
    indebted = [(debt, hf) for debt, hf in markets if debt > 0]
    if not indebted:
        return HEALTH_FACTOR_SENTINEL
    blended = _weighted_average(indebted).quantize(_TWO_PLACES, rounding=ROUND_HALF_EVEN)
    return min(blended, HEALTH_FACTOR_CEILING)


def calculate_portfolio_summary(
    breakdown: BalanceBreakdown,
    core_position: UserPosition | None = None,
    morpho_positions: list[MorphoMarketPosition] | None = None,
    vault_positions: list[MorphoVaultPosition] | None = None,
    total_rewards_value: Decimal = Decimal("0"),
) -> PortfolioSummary:
    """
    Build a ``PortfolioSummary``.

    Net worth is the breakdown's grand total. Supplied and borrowed totals are
    recomputed from the market position lists as unsigned magnitudes, not
    inferred from the signs of aggregated balances.

    Parameters
    ----------
    breakdown : BalanceBreakdown
        Signed, filtered balances
    core_position : UserPosition | None
        Pooled-market position
    morpho_positions : list[MorphoMarketPosition] | None
        Isolated-market positions, each with its own health factor
    vault_positions : list[MorphoVaultPosition] | None
        Vault positions
    total_rewards_value : Decimal
        USD value of claimable rewards

    Returns
    -------
    PortfolioSummary
        Derived summary

    """
    morpho_positions = morpho_positions or []
    vault_positions = vault_positions or []

    supply_pairs: list[tuple[Decimal, Decimal]] = []
    borrow_pairs: list[tuple[Decimal, Decimal]] = []
    total_supplied = Decimal("0")
    total_borrowed = Decimal("0")
    market_health: list[tuple[Decimal, Decimal]] = []

    if core_position is not None:
        for supply in core_position.supplies:
            total_supplied += supply.balance_in_usd
            supply_pairs.append((supply.balance_in_usd, supply.apy))
        for borrow in core_position.borrows:
            total_borrowed += borrow.balance_in_usd
            borrow_pairs.append((borrow.balance_in_usd, borrow.apy))
        market_health.append((core_position.total_borrowed, core_position.health_factor))

    for position in morpho_positions:
        total_supplied += position.supply_usd + position.collateral_usd
        total_borrowed += position.borrow_usd
        supply_pairs.append((position.supply_usd, position.supply_apy))
        borrow_pairs.append((position.borrow_usd, position.borrow_apy))
        market_health.append((position.borrow_usd, position.health_factor))

    for vault in vault_positions:
        total_supplied += vault.assets_usd
        supply_pairs.append((vault.assets_usd, vault.apy))

    indebted = [hf for debt, hf in market_health if debt > 0]

    return PortfolioSummary(
        total_net_worth=breakdown.total_balance_in_usd,
        total_supplied=total_supplied,
        total_borrowed=total_borrowed,
        total_rewards_value=total_rewards_value,
        overall_health_factor=blend_health_factors(market_health),
        lowest_health_factor=min(indebted, default=HEALTH_FACTOR_SENTINEL),
        weighted_average_supply_apy=_weighted_average(supply_pairs),
        weighted_average_borrow_apy=_weighted_average(borrow_pairs),
        risk_distribution=calculate_risk_distribution(breakdown, core_position, morpho_positions),
        market_distribution=MarketDistribution(
            core=breakdown.total_core_value_in_usd,
            morpho=breakdown.total_morpho_value_in_usd,
            vaults=breakdown.total_vault_value_in_usd,
        ),
    )


def calculate_risk_distribution(
    breakdown: BalanceBreakdown,
    core_position: UserPosition | None,
    morpho_positions: list[MorphoMarketPosition],
) -> RiskDistribution:
    """
    Bucket every breakdown entry by the health factor of the market holding it.

    Wallet and vault balances carry no debt and land in the safe bucket, so
    the buckets add up to the breakdown's grand total.
    """
    core_health = core_position.health_factor if core_position is not None else HEALTH_FACTOR_SENTINEL
    morpho_health = {p.market_id: p.health_factor for p in morpho_positions}

    buckets = {level: Decimal("0") for level in RiskLevel}
    for source in BalanceSource:
        for balance in breakdown.balances_for(source):
            if source == BalanceSource.CORE:
                hf = core_health
            elif source == BalanceSource.MORPHO:
                hf = morpho_health.get(balance.market_id, HEALTH_FACTOR_SENTINEL)
            else:
                hf = HEALTH_FACTOR_SENTINEL
            buckets[classify_risk(hf)] += balance.balance_in_usd

    return RiskDistribution(
        safe=buckets[RiskLevel.SAFE],
        moderate=buckets[RiskLevel.MODERATE],
        high=buckets[RiskLevel.HIGH],
        critical=buckets[RiskLevel.CRITICAL],
    )
