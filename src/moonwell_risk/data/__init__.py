"""Deployment tables and configuration loading."""

from moonwell_risk.data.loader import (
    get_asset_info,
    get_chain_id,
    get_contract_addresses,
    get_network_config,
    get_reward_tokens,
    get_supported_assets,
    get_supported_networks,
    get_vault_addresses,
    load_markets,
)

__all__ = [
    "get_asset_info",
    "get_chain_id",
    "get_contract_addresses",
    "get_network_config",
    "get_reward_tokens",
    "get_supported_assets",
    "get_supported_networks",
    "get_vault_addresses",
    "load_markets",
]
