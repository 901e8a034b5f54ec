"""Command line interface for the Moonwell risk engine."""
