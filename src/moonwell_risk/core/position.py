"""Build a pooled-market position from raw per-asset chain readings."""

import logging
from decimal import Decimal

from pydantic import BaseModel

from moonwell_risk.core.health import (
    DEFAULT_LIQUIDATION_THRESHOLD,
    blend_liquidation_threshold,
    health_factor,
    simulate_available_to_borrow,
)
from moonwell_risk.core.models import AssetPosition, UserPosition
from moonwell_risk.core.units import (
    WAD_DECIMALS,
    oracle_price_to_usd,
    rate_to_apy,
    to_canonical,
    to_usd,
    underlying_from_shares,
)
from moonwell_risk.errors import RpcError

logger = logging.getLogger(__name__)

BLOCKS_PER_YEAR = 2_628_000


class RawAssetReading(BaseModel):
    """
    Raw on-chain state of one asset for one account.

    Attributes
    ----------
    asset : str
        Asset symbol
    decimals : int
        Underlying token decimals
    mtoken_balance : int
        Account's market share balance
    exchange_rate : int
        18-decimal share-to-underlying rate
    borrow_balance : int
        Account's raw debt in underlying units
    supply_rate : int
        18-decimal supply rate per block
    borrow_rate : int
        18-decimal borrow rate per block
    price : int
        Raw oracle price
    is_collateral : bool
        Whether the account entered this market as collateral
    collateral_factor : int | None
        18-decimal collateral factor mantissa, when known

    """

    asset: str
    decimals: int
    mtoken_balance: int = 0
    exchange_rate: int = 0
    borrow_balance: int = 0
    supply_rate: int = 0
    borrow_rate: int = 0
    price: int = 0
    is_collateral: bool = False
    collateral_factor: int | None = None


class AccountLiquidity(BaseModel):
    """Comptroller view of an account: error code plus 18-decimal USD liquidity and shortfall."""

    error: int = 0
    liquidity: int = 0
    shortfall: int = 0


def build_user_position(
    readings: list[RawAssetReading],
    liquidity: AccountLiquidity | None = None,
    blocks_per_year: int = BLOCKS_PER_YEAR,
    default_threshold: Decimal = DEFAULT_LIQUIDATION_THRESHOLD,
) -> UserPosition:
    """
    Convert raw readings into a ``UserPosition``.

    Only collateral-enabled supplies count toward ``total_supplied`` and the
    health factor; every non-zero supply is still listed. The liquidation
    threshold is the collateral factor of each collateral supply blended by
    USD value, falling back to ``default_threshold``.

    Parameters
    ----------
    readings : list[RawAssetReading]
        One reading per supported asset
    liquidity : AccountLiquidity | None
        Comptroller liquidity; when absent, borrow capacity is simulated
    blocks_per_year : int
        Periods used to annualize per-block rates
    default_threshold : Decimal
        Threshold applied to assets without a known collateral factor

    Returns
    -------
    UserPosition
        Position snapshot

    Raises
    ------
    RpcError
        If the comptroller reported a non-zero error code

    """
    supplies: list[AssetPosition] = []
    borrows: list[AssetPosition] = []
    total_supplied = Decimal("0")
    total_borrowed = Decimal("0")
    weighted_thresholds: list[tuple[Decimal, Decimal]] = []

    for reading in readings:
        price = oracle_price_to_usd(reading.price, reading.decimals)
        threshold = (
            to_canonical(reading.collateral_factor, WAD_DECIMALS)
            if reading.collateral_factor is not None
            else default_threshold
        )

        underlying = underlying_from_shares(reading.mtoken_balance, reading.exchange_rate)
        if underlying > 0:
            amount = to_canonical(underlying, reading.decimals)
            value = to_usd(amount, price)
            supplies.append(
                AssetPosition(
                    asset=reading.asset,
                    symbol=reading.asset,
                    balance=amount,
                    balance_in_usd=value,
                    apy=rate_to_apy(reading.supply_rate, blocks_per_year),
                    is_collateral=reading.is_collateral,
                    liquidation_threshold=threshold,
                )
            )
            if reading.is_collateral:
                total_supplied += value
                weighted_thresholds.append((value, threshold))

        if reading.borrow_balance > 0:
            amount = to_canonical(reading.borrow_balance, reading.decimals)
            value = to_usd(amount, price)
            borrows.append(
                AssetPosition(
                    asset=reading.asset,
                    symbol=reading.asset,
                    balance=amount,
                    balance_in_usd=value,
                    apy=rate_to_apy(reading.borrow_rate, blocks_per_year),
                )
            )
            total_borrowed += value

    threshold = blend_liquidation_threshold(weighted_thresholds, default_threshold)

    if liquidity is not None:
        if liquidity.error != 0:
            msg = f"Comptroller returned error code {liquidity.error} for account liquidity"
            raise RpcError(msg, details={"error_code": liquidity.error})
        available = to_canonical(liquidity.liquidity, WAD_DECIMALS)
    else:
        available = simulate_available_to_borrow(total_supplied, total_borrowed, threshold)

    position = UserPosition(
        total_supplied=total_supplied,
        total_borrowed=total_borrowed,
        health_factor=health_factor(total_supplied, total_borrowed, threshold),
        liquidation_threshold=threshold,
        available_to_borrow=available,
        supplies=supplies,
        borrows=borrows,
    )
    logger.debug(
        "Built position: supplied=%s borrowed=%s hf=%s",
        position.total_supplied,
        position.total_borrowed,
        position.health_factor,
    )
    return position
