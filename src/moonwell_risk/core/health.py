"""Health factor arithmetic and risk classification."""

from decimal import ROUND_HALF_EVEN, Decimal
from enum import StrEnum

HEALTH_FACTOR_SENTINEL = Decimal("999")
# Largest value a position carrying debt may report, keeping the sentinel unambiguous
HEALTH_FACTOR_CEILING = Decimal("998.99")

SAFE_HEALTH_FACTOR = Decimal("2.0")
MODERATE_HEALTH_FACTOR = Decimal("1.5")
HIGH_RISK_HEALTH_FACTOR = Decimal("1.2")
LIQUIDATION_HEALTH_FACTOR = Decimal("1.0")

WITHDRAW_MIN_HEALTH_FACTOR = HIGH_RISK_HEALTH_FACTOR
DEFAULT_ALERT_THRESHOLD = MODERATE_HEALTH_FACTOR
DEFAULT_LIQUIDATION_THRESHOLD = Decimal("0.8")

_TWO_PLACES = Decimal("0.01")


class RiskLevel(StrEnum):
    """Risk bucket of a health factor."""

    SAFE = "safe"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"


def health_factor(collateral_usd: Decimal, debt_usd: Decimal, liquidation_threshold: Decimal) -> Decimal:
    """
    Compute a health factor rounded to two decimal places.

    Parameters
    ----------
    collateral_usd : Decimal
        USD value of collateral-enabled supplies
    debt_usd : Decimal
        USD value of debt
    liquidation_threshold : Decimal
        Fraction of collateral that counts toward borrowing power

    Returns
    -------
    Decimal
        ``999`` when there is no debt, otherwise
        ``collateral * threshold / debt`` capped just below the sentinel

    """
    if debt_usd <= 0:
        return HEALTH_FACTOR_SENTINEL

    value = (collateral_usd * liquidation_threshold / debt_usd).quantize(_TWO_PLACES, rounding=ROUND_HALF_EVEN)
    return min(value, HEALTH_FACTOR_CEILING)


def simulate_available_to_borrow(
    collateral_usd: Decimal, debt_usd: Decimal, liquidation_threshold: Decimal
) -> Decimal:
    """Borrow capacity left in USD, never negative."""
    return max(Decimal("0"), collateral_usd * liquidation_threshold - debt_usd)


def blend_liquidation_threshold(
    weighted: list[tuple[Decimal, Decimal]], default: Decimal = DEFAULT_LIQUIDATION_THRESHOLD
) -> Decimal:
    """
    Blend per-asset thresholds by the USD value they apply to.

    ``weighted`` holds ``(value_usd, threshold)`` pairs; with no value at all
    the default threshold is returned.
    """
    total = sum((value for value, _ in weighted), Decimal("0"))
    if total <= 0:
        return default
    return sum((value * threshold for value, threshold in weighted), Decimal("0")) / total


def classify_risk(value: Decimal) -> RiskLevel:
    """Bucket a health factor: >=2.0 safe, >=1.5 moderate, >=1.2 high, below critical."""
    if value >= SAFE_HEALTH_FACTOR:
        return RiskLevel.SAFE
    if value >= MODERATE_HEALTH_FACTOR:
        return RiskLevel.MODERATE
    if value >= HIGH_RISK_HEALTH_FACTOR:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def is_below_alert(value: Decimal, alert_threshold: Decimal = DEFAULT_ALERT_THRESHOLD) -> bool:
    return value < alert_threshold


def risk_suggestions(value: Decimal) -> list[str]:
    """Hints for a position sitting at ``value``."""
    if value < LIQUIDATION_HEALTH_FACTOR:
        return [
            "URGENT: Position can be liquidated",
            "Repay debt or add collateral immediately",
        ]
    if value < HIGH_RISK_HEALTH_FACTOR:
        return [
            "WARNING: Position is at high risk",
            "Consider repaying some debt",
            "Or add more collateral",
        ]
    return [
        f"Maintain a health factor above {DEFAULT_ALERT_THRESHOLD} for safety",
        "Monitor market conditions closely",
    ]
