"""RPC provider wrapper using Ape's network management."""

import logging
from typing import Any

from ape import Contract, networks

from moonwell_risk.data import get_network_config
from moonwell_risk.errors import RpcError
from moonwell_risk.rpc.retry import RetryConfig

logger = logging.getLogger(__name__)


class ApeRPCProvider:
    """
    RPC provider using Ape's network management system.

    Parameters
    ----------
    network : str
        Deployment name from the market tables (e.g., 'base', 'base-sepolia')
    rpc_url : str | None
        Explicit RPC endpoint; Ape's configured provider is used when None
    retry_config : RetryConfig | None
        Backoff policy applied to contract reads

    """

    def __init__(
        self,
        network: str = "base",
        rpc_url: str | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self.network = network
        self.rpc_url = rpc_url
        self._network_context = None
        self._provider = None
        self.retry_config = retry_config or RetryConfig(
            max_retries=3,
            base_delay=1.0,
            max_delay=30.0,
            exponential_base=2.0,
        )

    @property
    def network_choice(self) -> str:
        """Ape network choice, with the RPC URL as provider when one is set."""
        choice = get_network_config(self.network)["ape_network"]
        if self.rpc_url:
            choice = f"{choice}:{self.rpc_url}"
        return choice

    @property
    def is_connected(self) -> bool:
        return self._provider is not None

    def connect(self) -> None:
        """Connect to the network using Ape's network management."""
        choice = self.network_choice
        try:
            self._network_context = networks.parse_network_choice(choice)
            self._network_context.__enter__()
            self._provider = networks.provider
        except Exception as e:
            error_msg = f"Failed to connect to {choice}: {e}"
            raise RpcError(error_msg, details={"network": self.network}) from e
        logger.info("Connected to %s", choice)

    def disconnect(self) -> None:
        """Disconnect from the network."""
        if self._network_context:
            try:
                self._network_context.__exit__(None, None, None)
            except Exception as e:
                logger.debug("Error during network context cleanup: %s", e)
            self._network_context = None
        self._provider = None

    def get_contract(self, address: str, abi: list[dict[str, Any]]) -> Any:
        """
        Get a contract instance bound to an explicit ABI.

        Parameters
        ----------
        address : str
            Contract address
        abi : list[dict[str, Any]]
            Contract ABI

        Returns
        -------
        Contract
            Ape contract instance

        """
        if not self._provider:
            error_msg = "Provider not connected. Call connect() first."
            raise RpcError(error_msg)
        return Contract(address, abi=abi)

    def __enter__(self) -> "ApeRPCProvider":
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Context manager exit."""
        self.disconnect()
