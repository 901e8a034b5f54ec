"""Core functionality including models, unit conversion, health, aggregation, and guards."""

from moonwell_risk.core.aggregator import BalanceAggregator, to_enhanced_balances
from moonwell_risk.core.cache import PositionCache
from moonwell_risk.core.guards import OperationGuard, OperationPlan
from moonwell_risk.core.health import HEALTH_FACTOR_SENTINEL, RiskLevel, classify_risk, health_factor
from moonwell_risk.core.models import (
    AssetPosition,
    BalanceBreakdown,
    BalanceSource,
    EnhancedUserBalance,
    PortfolioSummary,
    UserPosition,
)
from moonwell_risk.core.position import build_user_position
from moonwell_risk.core.summary import calculate_portfolio_summary

__all__ = [
    "HEALTH_FACTOR_SENTINEL",
    "AssetPosition",
    "BalanceAggregator",
    "BalanceBreakdown",
    "BalanceSource",
    "EnhancedUserBalance",
    "OperationGuard",
    "OperationPlan",
    "PortfolioSummary",
    "PositionCache",
    "RiskLevel",
    "UserPosition",
    "build_user_position",
    "calculate_portfolio_summary",
    "classify_risk",
    "health_factor",
    "to_enhanced_balances",
]
