"""Base market source and the wallet collaborator boundary."""

import logging
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Protocol

from moonwell_risk.core.models import AssetInfo, TransactionReceipt, TransactionRequest
from moonwell_risk.data import get_contract_addresses, get_supported_assets
from moonwell_risk.errors import RpcError
from moonwell_risk.rpc.retry import RetryConfig, call_with_retry

logger = logging.getLogger(__name__)


class WalletSigner(Protocol):
    """
    Signing collaborator. Key material never leaves it.

    Implementations raise on broadcast failure and return a receipt once the
    transaction is confirmed.
    """

    def get_address(self) -> str: ...

    def get_balance(self, token_address: str) -> int: ...

    def approve_token(self, token: str, spender: str, amount: int) -> TransactionReceipt | None: ...

    def sign_and_send(self, tx: TransactionRequest) -> TransactionReceipt: ...


class BaseMarketSource(ABC):
    """
    Abstract base class for on-chain market sources.

    Attributes
    ----------
    name : str
        Unique source identifier (must be set in subclass)
    supported_networks : list[str]
        Networks the source has deployment tables for (must be set in subclass)

    """

    name: ClassVar[str] = ""
    supported_networks: ClassVar[list[str]] = []

    def __init__(
        self,
        rpc_provider: Any | None = None,
        network: str = "base",
        retry_config: RetryConfig | None = None,
    ) -> None:
        """
        Initialize the market source.

        Parameters
        ----------
        rpc_provider : Any | None
            Provider exposing ``get_contract(address, abi)``
        network : str
            Deployment name
        retry_config : RetryConfig | None
            Backoff policy for contract reads

        """
        if not self.name:
            msg = f"{self.__class__.__name__} must define 'name' attribute"
            raise ValueError(msg)
        if network not in self.supported_networks:
            msg = f"{self.__class__.__name__} does not support network '{network}'"
            raise ValueError(msg)
        self.rpc_provider = rpc_provider
        self.network = network
        self.retry_config = retry_config or RetryConfig(max_retries=2, base_delay=0.5)

    @property
    def assets(self) -> dict[str, AssetInfo]:
        """Assets listed on this source's network, keyed by symbol."""
        return get_supported_assets(self.network)

    def get_contract_addresses(self) -> dict[str, str]:
        """
        Get all protocol contract addresses on this source's network.

        Returns
        -------
        dict[str, str]
            Mapping of contract names to addresses

        """
        return get_contract_addresses(self.network)

    @abstractmethod
    def read_assets(self, account: str) -> list[Any]:
        """
        Read raw per-asset state for an account.

        Must be implemented by subclasses.
        """
        ...

    def _make_contract_call(
        self,
        contract_address: str,
        abi: list[dict[str, Any]],
        method: str,
        *params: Any,
    ) -> Any:
        """
        Make a read-only contract call with retries.

        Parameters
        ----------
        contract_address : str
            Target contract address
        abi : list[dict[str, Any]]
            ABI describing ``method``
        method : str
            Method name (e.g., 'balanceOf', 'getCash')
        *params : Any
            Method parameters

        Returns
        -------
        Any
            Call result

        Raises
        ------
        RpcError
            If the provider is not configured or every attempt failed

        """
        if not self.rpc_provider:
            msg = "RPC provider not configured for this source"
            raise RpcError(msg)

        def call() -> Any:
            contract = self.rpc_provider.get_contract(contract_address, abi)
            return getattr(contract, method)(*params)

        try:
            return call_with_retry(call, config=self.retry_config)
        except Exception as e:
            msg = f"Contract call {method} on {contract_address} failed: {e}"
            raise RpcError(msg, details={"contract": contract_address, "method": method}) from e

    def _encode_call(
        self,
        contract_address: str,
        abi: list[dict[str, Any]],
        method: str,
        *params: Any,
    ) -> TransactionRequest:
        """Encode a state-changing call as an unsigned transaction."""
        if not self.rpc_provider:
            msg = "RPC provider not configured for this source"
            raise RpcError(msg)
        contract = self.rpc_provider.get_contract(contract_address, abi)
        data = getattr(contract, method).encode_input(*params)
        calldata = data.hex() if isinstance(data, bytes) else str(data)
        if not calldata.startswith("0x"):
            calldata = f"0x{calldata}"
        return TransactionRequest(to=contract_address, data=calldata)
