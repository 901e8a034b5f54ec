"""Tests for building positions from raw chain readings."""

from decimal import Decimal

import pytest

from moonwell_risk.core.health import HEALTH_FACTOR_SENTINEL
from moonwell_risk.core.position import AccountLiquidity, RawAssetReading, build_user_position
from moonwell_risk.core.units import WAD
from moonwell_risk.errors import RpcError


def reading(asset, decimals, price_usd, **kwargs):
    kwargs.setdefault("exchange_rate", WAD)
    return RawAssetReading(
        asset=asset,
        decimals=decimals,
        price=int(Decimal(price_usd) * 10 ** (36 - decimals)),
        **kwargs,
    )


def test_empty_readings():
    position = build_user_position([])

    assert position.total_supplied == Decimal("0")
    assert position.health_factor == HEALTH_FACTOR_SENTINEL
    assert position.liquidation_threshold == Decimal("0.8")
    assert position.supplies == []


def test_collateral_and_debt():
    readings = [
        reading("WETH", 18, "2000", mtoken_balance=10**18, is_collateral=True, collateral_factor=8 * 10**17),
        reading("USDC", 6, "1", borrow_balance=1000 * 10**6, borrow_rate=10**10),
    ]

    position = build_user_position(readings)

    assert position.total_supplied == Decimal("2000")
    assert position.total_borrowed == Decimal("1000")
    assert position.health_factor == Decimal("1.6")
    assert position.available_to_borrow == Decimal("600")
    assert position.borrows[0].apy == Decimal("0.02628")
    assert position.supplies[0].is_collateral is True


def test_non_collateral_supply_listed_but_not_counted():
    """Test that supplies not entered as collateral do not back debt."""
    readings = [
        reading("WETH", 18, "2000", mtoken_balance=10**18, is_collateral=True, collateral_factor=8 * 10**17),
        reading("USDC", 6, "1", mtoken_balance=5000 * 10**6, is_collateral=False, borrow_balance=0),
        reading("DAI", 18, "1", borrow_balance=800 * 10**18),
    ]

    position = build_user_position(readings)

    assert len(position.supplies) == 2
    assert position.total_supplied == Decimal("2000")
    assert position.health_factor == Decimal("2")


def test_thresholds_blend_by_collateral_value():
    readings = [
        reading("WETH", 18, "3000", mtoken_balance=10**18, is_collateral=True, collateral_factor=6 * 10**17),
        reading("USDC", 6, "1", mtoken_balance=1000 * 10**6, is_collateral=True, collateral_factor=8 * 10**17),
    ]

    position = build_user_position(readings)

    assert position.liquidation_threshold == Decimal("0.65")


def test_unknown_collateral_factor_uses_default():
    readings = [reading("WETH", 18, "2000", mtoken_balance=10**18, is_collateral=True)]

    position = build_user_position(readings, default_threshold=Decimal("0.75"))

    assert position.liquidation_threshold == Decimal("0.75")


def test_exchange_rate_applied():
    # 50 mTokens at 0.02 USDC per share
    readings = [reading("USDC", 6, "1", mtoken_balance=50 * 10**8, exchange_rate=2 * 10**14, is_collateral=True)]

    position = build_user_position(readings)

    assert position.supplies[0].balance == Decimal("1")


def test_comptroller_liquidity_used_when_available():
    readings = [reading("WETH", 18, "2000", mtoken_balance=10**18, is_collateral=True, collateral_factor=8 * 10**17)]

    position = build_user_position(readings, AccountLiquidity(liquidity=1234 * 10**18))

    assert position.available_to_borrow == Decimal("1234")


def test_comptroller_error_fails_build():
    with pytest.raises(RpcError):
        build_user_position([], AccountLiquidity(error=3))


def test_dust_is_preserved():
    """Test that a single raw unit of debt is not lost to rounding."""
    readings = [
        reading("WETH", 18, "2000", mtoken_balance=10**18, is_collateral=True, collateral_factor=8 * 10**17),
        reading("USDC", 6, "1", borrow_balance=1),
    ]

    position = build_user_position(readings)

    assert position.borrows[0].balance == Decimal("0.000001")
    assert position.health_factor < HEALTH_FACTOR_SENTINEL
