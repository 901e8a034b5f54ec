"""Pre- and post-condition checks for value-moving operations."""

import logging
from decimal import Decimal
from typing import Any

from pydantic import BaseModel

from moonwell_risk.core.health import (
    DEFAULT_ALERT_THRESHOLD,
    HEALTH_FACTOR_SENTINEL,
    WITHDRAW_MIN_HEALTH_FACTOR,
    health_factor,
    risk_suggestions,
)
from moonwell_risk.core.models import AssetInfo, UserPosition
from moonwell_risk.core.units import parse_amount, to_usd
from moonwell_risk.errors import (
    ExceedsBorrowCapacityError,
    InsufficientBalanceError,
    InsufficientLiquidityError,
    InvalidAmountError,
    InvalidParametersError,
    LiquidationRiskError,
    NoCollateralError,
    UnsupportedAssetError,
)

logger = logging.getLogger(__name__)


class OperationPlan(BaseModel):
    """
    Outcome of a passed guard: what will be submitted and what it should do to health.

    Attributes
    ----------
    asset : str
        Canonical asset symbol
    amount : Decimal
        Canonical amount to submit
    amount_usd : Decimal
        USD value of ``amount`` (zero when no price was needed)
    is_max : bool
        Whether the operation targets the full balance
    projected_health_factor : Decimal
        Health factor expected after the operation

    """

    asset: str
    amount: Decimal
    amount_usd: Decimal = Decimal("0")
    is_max: bool = False
    projected_health_factor: Decimal = HEALTH_FACTOR_SENTINEL


class OperationGuard:
    """
    Stateless validators run before supply, borrow, repay and withdraw.

    Every check fails fast with a specific error carrying the values that
    caused the rejection.

    Parameters
    ----------
    supported_assets : dict[str, AssetInfo]
        Known assets keyed by symbol
    alert_threshold : Decimal
        Minimum health factor a borrow may leave behind

    """

    def __init__(
        self,
        supported_assets: dict[str, AssetInfo],
        alert_threshold: Decimal = DEFAULT_ALERT_THRESHOLD,
    ) -> None:
        self.supported_assets = supported_assets
        self.alert_threshold = alert_threshold
        self._lookup = {symbol.upper(): symbol for symbol in supported_assets}

    def validate_asset(self, asset: str) -> AssetInfo:
        """Resolve ``asset`` case-insensitively to a supported asset."""
        symbol = self._lookup.get(str(asset).strip().upper())
        if symbol is None:
            supported = ", ".join(sorted(self.supported_assets))
            raise UnsupportedAssetError(
                f"Asset {asset} is not supported. Supported assets: {supported}",
                details={"asset": asset, "supported_assets": sorted(self.supported_assets)},
            )
        return self.supported_assets[symbol]

    @staticmethod
    def validate_amount(amount: Any) -> Decimal:
        """Parse ``amount`` and require it to be strictly positive."""
        if amount is None:
            raise InvalidAmountError("Amount is required")
        value = parse_amount(amount)
        if value <= 0:
            raise InvalidAmountError(f"Amount must be greater than zero, got {amount}", details={"amount": value})
        return value

    def check_supply(self, asset: str, amount: Any, wallet_balance: Decimal) -> OperationPlan:
        info = self.validate_asset(asset)
        value = self.validate_amount(amount)
        if value > wallet_balance:
            raise InsufficientBalanceError(
                f"Insufficient {info.symbol} balance: requested {value}, wallet holds {wallet_balance}",
                details={"requested": value, "wallet_balance": wallet_balance},
            )
        return OperationPlan(asset=info.symbol, amount=value)

    def check_borrow(
        self,
        asset: str,
        amount: Any,
        position: UserPosition,
        price_usd: Decimal,
        market_liquidity: Decimal,
    ) -> OperationPlan:
        """
        Validate a borrow against collateral, capacity, market liquidity and health.

        Capacity is compared in USD; liquidity in canonical units of the asset.
        The projected health factor must stay at or above the alert threshold.
        """
        info = self.validate_asset(asset)
        value = self.validate_amount(amount)

        if position.total_supplied <= 0:
            raise NoCollateralError(
                "No collateral supplied. Supply assets before borrowing",
                details={"total_supplied": position.total_supplied},
                suggestions=["Supply an asset and enable it as collateral first"],
            )

        value_usd = to_usd(value, price_usd)
        if value_usd > position.available_to_borrow:
            raise ExceedsBorrowCapacityError(
                f"Borrow of {value} {info.symbol} (${value_usd:.2f}) exceeds available "
                f"capacity of ${position.available_to_borrow:.2f}",
                details={
                    "requested_usd": value_usd,
                    "available_to_borrow": position.available_to_borrow,
                },
                suggestions=["Borrow a smaller amount", "Supply more collateral"],
            )

        if value > market_liquidity:
            raise InsufficientLiquidityError(
                f"Market has {market_liquidity} {info.symbol} available, requested {value}",
                details={"requested": value, "market_liquidity": market_liquidity},
            )

        projected = health_factor(
            position.total_supplied,
            position.total_borrowed + value_usd,
            position.liquidation_threshold,
        )
        if projected < self.alert_threshold:
            raise LiquidationRiskError(
                f"Borrow would lower health factor to {projected}, below {self.alert_threshold}",
                health_factor=projected,
                details={"alert_threshold": self.alert_threshold, "requested_usd": value_usd},
                suggestions=risk_suggestions(projected),
            )

        return OperationPlan(asset=info.symbol, amount=value, amount_usd=value_usd, projected_health_factor=projected)

    def check_post_borrow(self, position: UserPosition, transaction_hash: str) -> None:
        """Verify a confirmed borrow left the position at or above the alert threshold."""
        if position.health_factor < self.alert_threshold:
            logger.warning(
                "Borrow %s left health factor at %s, below alert threshold %s",
                transaction_hash,
                position.health_factor,
                self.alert_threshold,
            )
            raise LiquidationRiskError(
                f"Position health factor {position.health_factor} is below {self.alert_threshold} after borrowing",
                health_factor=position.health_factor,
                details={"transaction_hash": transaction_hash, "alert_threshold": self.alert_threshold},
                suggestions=risk_suggestions(position.health_factor),
            )

    def check_repay(
        self,
        asset: str,
        amount: Any,
        is_max: bool,
        position: UserPosition,
        wallet_balance: Decimal,
    ) -> OperationPlan:
        """
        Validate a repay and clamp its amount to the outstanding debt.

        With ``is_max`` the amount is the full debt; otherwise a requested
        amount above the debt is reduced to the debt before the wallet check.
        """
        info = self.validate_asset(asset)
        debt = position.borrow_for(info.symbol)
        if debt is None or debt.balance <= 0:
            raise InvalidParametersError(
                f"No outstanding {info.symbol} debt to repay",
                details={"asset": info.symbol},
            )

        if is_max:
            value = debt.balance
        else:
            value = min(self.validate_amount(amount), debt.balance)

        if value > wallet_balance:
            raise InsufficientBalanceError(
                f"Insufficient {info.symbol} balance to repay {value}, wallet holds {wallet_balance}",
                details={"requested": value, "wallet_balance": wallet_balance, "debt": debt.balance},
            )

        return OperationPlan(asset=info.symbol, amount=value, is_max=is_max)

    def check_withdraw(
        self,
        asset: str,
        amount: Any,
        is_max: bool,
        position: UserPosition,
    ) -> OperationPlan:
        """
        Validate a withdrawal by simulating the post-withdrawal health factor.

        With outstanding debt, the simulated value
        ``(total_supplied - withdraw_usd) * threshold / total_borrowed``
        must stay at or above 1.2.
        """
        info = self.validate_asset(asset)
        supply = position.supply_for(info.symbol)
        if supply is None or supply.balance <= 0:
            raise InsufficientBalanceError(
                f"No {info.symbol} supplied to withdraw",
                details={"asset": info.symbol},
            )

        value = supply.balance if is_max else self.validate_amount(amount)
        if value > supply.balance:
            raise InsufficientBalanceError(
                f"Cannot withdraw {value} {info.symbol}, only {supply.balance} supplied",
                details={"requested": value, "supplied": supply.balance},
            )

        value_usd = supply.balance_in_usd * value / supply.balance
        projected = HEALTH_FACTOR_SENTINEL
        if position.total_borrowed > 0:
            removed = value_usd if supply.is_collateral else Decimal("0")
            remaining = max(Decimal("0"), position.total_supplied - removed)
            projected = health_factor(remaining, position.total_borrowed, position.liquidation_threshold)
            if projected < WITHDRAW_MIN_HEALTH_FACTOR:
                raise LiquidationRiskError(
                    f"Withdrawal would lower health factor to {projected}, below {WITHDRAW_MIN_HEALTH_FACTOR}",
                    health_factor=projected,
                    details={
                        "simulated_health_factor": projected,
                        "minimum_health_factor": WITHDRAW_MIN_HEALTH_FACTOR,
                        "withdraw_usd": value_usd,
                    },
                    suggestions=risk_suggestions(projected),
                )

        return OperationPlan(
            asset=info.symbol,
            amount=value,
            amount_usd=value_usd,
            is_max=is_max,
            projected_health_factor=projected,
        )
