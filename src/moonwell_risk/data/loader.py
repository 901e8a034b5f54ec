"""Market table loader."""

from pathlib import Path
from typing import Any

import yaml

from moonwell_risk.core.models import AssetInfo


def load_markets() -> dict[str, Any]:
    """
    Load deployment tables from markets.yaml.

    Returns
    -------
    dict[str, Any]
        Network configuration including contracts, assets, and vaults

    """
    path = Path(__file__).parent / "markets.yaml"
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f)


def get_network_config(network: str) -> dict[str, Any]:
    """
    Get configuration for a specific network.

    Parameters
    ----------
    network : str
        Network name (e.g., 'base', 'base-sepolia')

    Returns
    -------
    dict[str, Any]
        Network configuration

    Raises
    ------
    KeyError
        If network is not found in configuration

    """
    return load_markets()["networks"][network]


def get_supported_networks() -> list[str]:
    return list(load_markets()["networks"].keys())


def get_supported_assets(network: str) -> dict[str, AssetInfo]:
    """
    Get the pooled-market assets listed on a network.

    Returns
    -------
    dict[str, AssetInfo]
        Assets keyed by symbol

    """
    assets = get_network_config(network).get("assets") or {}
    return {symbol: AssetInfo(symbol=symbol, **info) for symbol, info in assets.items()}


def get_asset_info(network: str, symbol: str) -> AssetInfo:
    """
    Get one asset's addresses and decimals.

    Raises
    ------
    KeyError
        If the asset is not listed on the network

    """
    return get_supported_assets(network)[symbol]


def get_contract_addresses(network: str) -> dict[str, str]:
    """Mapping of protocol contract names to addresses."""
    return dict(get_network_config(network).get("contracts") or {})


def get_reward_tokens(network: str) -> dict[str, str]:
    """Known reward token addresses (lowercase) mapped to symbols."""
    tokens = get_network_config(network).get("reward_tokens") or {}
    return {address.lower(): symbol for address, symbol in tokens.items()}


def get_vault_addresses(network: str) -> dict[str, str]:
    return dict(get_network_config(network).get("vaults") or {})


def get_chain_id(network: str) -> int:
    """
    Get numeric chain ID.

    Parameters
    ----------
    network : str
        Network name

    Returns
    -------
    int
        Chain ID

    """
    return get_network_config(network)["chain_id"]
