"""Engine settings: YAML file plus environment overrides, validated with pydantic."""

import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# Environment variable -> settings field
ENV_OVERRIDES = {
    "MOONWELL_NETWORK": "network",
    "BASE_RPC_URL": "rpc_url",
    "HEALTH_FACTOR_ALERT": "health_factor_alert",
    "MOONWELL_ACCOUNT_ALIAS": "account_alias",
}
CONFIG_PATH_ENV = "MOONWELL_CONFIG"


class EngineSettings(BaseModel):
    """
    Runtime settings of the risk engine.

    Attributes
    ----------
    network : str
        'base' or 'base-sepolia'
    rpc_url : str | None
        RPC endpoint; Ape's configured provider is used when None
    health_factor_alert : Decimal
        Health factor below which warnings are emitted and borrows refused
    position_cache_ttl : float
        Freshness window of the position cache in seconds
    monitor_interval : float
        Seconds between background health checks
    monitor_cache_ttl : float
        Freshness window the monitor accepts for cached positions
    account_alias : str | None
        Ape account alias used for signing; read-only mode when None

    """

    network: Literal["base", "base-sepolia"] = "base"
    rpc_url: str | None = None
    health_factor_alert: Decimal = Decimal("1.5")
    position_cache_ttl: float = Field(default=30.0, gt=0)
    monitor_interval: float = Field(default=60.0, gt=0)
    monitor_cache_ttl: float = Field(default=60.0, gt=0)
    retry_attempts: int = Field(default=3, ge=0)
    request_timeout: float = Field(default=30.0, gt=0)
    min_balance_threshold: Decimal = Field(default=Decimal("0.01"), ge=0)
    default_liquidation_threshold: Decimal = Field(default=Decimal("0.8"), gt=0, le=1)
    blocks_per_year: int = Field(default=2_628_000, gt=0)
    morpho_api_url: str = "https://api.morpho.org/graphql"
    defillama_url: str = "https://coins.llama.fi"
    account_alias: str | None = None

    @field_validator("health_factor_alert")
    @classmethod
    def _alert_above_liquidation(cls, value: Decimal) -> Decimal:
        if value <= 1:
            msg = f"health_factor_alert must be above 1.0, got {value}"
            raise ValueError(msg)
        return value

    @property
    def read_only(self) -> bool:
        return not self.account_alias


def load_settings(path: str | Path | None = None, environ: dict[str, str] | None = None) -> EngineSettings:
    """
    Load settings from an optional YAML file, then apply environment overrides.

    Parameters
    ----------
    path : str | Path | None
        YAML file; falls back to ``$MOONWELL_CONFIG`` and then to defaults
    environ : dict[str, str] | None
        Environment to read overrides from (defaults to ``os.environ``)

    Returns
    -------
    EngineSettings
        Validated settings

    Raises
    ------
    pydantic.ValidationError
        If any value is invalid
    FileNotFoundError
        If an explicitly given file does not exist

    """
    environ = dict(os.environ) if environ is None else environ
    path = path or environ.get(CONFIG_PATH_ENV)

    values: dict[str, Any] = {}
    if path:
        with open(path, encoding="utf-8") as f:
            values = yaml.safe_load(f) or {}
        logger.debug("Loaded settings from %s", path)

    for env_name, field_name in ENV_OVERRIDES.items():
        if environ.get(env_name):
            values[field_name] = environ[env_name]

    return EngineSettings(**values)
