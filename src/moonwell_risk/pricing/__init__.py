"""Pricing services for reward token USD valuation."""

from moonwell_risk.pricing.defillama import DeFiLlamaPricing

__all__ = [
    "DeFiLlamaPricing",
]
