"""Market sources and external collaborators."""

from moonwell_risk.protocols.base import BaseMarketSource, WalletSigner
from moonwell_risk.protocols.moonwell_core import MoonwellCoreMarket
from moonwell_risk.protocols.morpho_api import MorphoAPIError, MorphoGraphQLClient

__all__ = [
    "BaseMarketSource",
    "MoonwellCoreMarket",
    "MorphoAPIError",
    "MorphoGraphQLClient",
    "WalletSigner",
]
