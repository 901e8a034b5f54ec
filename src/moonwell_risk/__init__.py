"""Cross-market position and risk aggregation for Moonwell on Base."""

__version__ = "0.1.0"
