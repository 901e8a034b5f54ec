"""Ape account implementation of the wallet collaborator."""

import logging
from typing import Any

from ape import Contract, accounts, networks

from moonwell_risk.core.models import TransactionReceipt, TransactionRequest, TransactionStatus
from moonwell_risk.errors import TransactionFailedError, WalletNotConnectedError, classify_error
from moonwell_risk.protocols.abis import ERC20_ABI

logger = logging.getLogger(__name__)


def _to_receipt(receipt: Any) -> TransactionReceipt:
    return TransactionReceipt(
        hash=str(receipt.txn_hash),
        block_number=receipt.block_number,
        status=TransactionStatus.REVERTED if receipt.failed else TransactionStatus.SUCCESS,
    )


class WatchWallet:
    """
    Read-only wallet for inspecting any address.

    Balances are read through Ape; every signing call raises
    ``WalletNotConnectedError``.
    """

    def __init__(self, address: str) -> None:
        self.address = address

    def get_address(self) -> str:
        return self.address

    def get_balance(self, token_address: str) -> int:
        token = Contract(token_address, abi=ERC20_ABI)
        return int(token.balanceOf(self.address))

    def approve_token(self, token: str, spender: str, amount: int) -> TransactionReceipt | None:
        msg = f"Address {self.address} is watched read-only and cannot approve tokens"
        raise WalletNotConnectedError(msg)

    def sign_and_send(self, tx: TransactionRequest) -> TransactionReceipt:
        msg = f"Address {self.address} is watched read-only and cannot sign transactions"
        raise WalletNotConnectedError(msg)


class ApeWallet:
    """
    Signs and broadcasts through an Ape account loaded by alias.

    The account's keyfile stays under Ape's management; this class only holds
    the alias. Must be used while an ``ApeRPCProvider`` is connected.

    Parameters
    ----------
    alias : str
        Alias of an account imported with ``ape accounts import``
    autosign_passphrase : str | None
        Enables unattended signing when given

    """

    def __init__(self, alias: str, autosign_passphrase: str | None = None) -> None:
        self.alias = alias
        self.autosign_passphrase = autosign_passphrase
        self._account = None

    @property
    def account(self) -> Any:
        if self._account is None:
            try:
                self._account = accounts.load(self.alias)
            except Exception as e:
                msg = f"Could not load account '{self.alias}': {e}"
                raise WalletNotConnectedError(msg) from e
            if self.autosign_passphrase is not None:
                self._account.set_autosign(True, passphrase=self.autosign_passphrase)
        return self._account

    def get_address(self) -> str:
        return str(self.account.address)

    def get_balance(self, token_address: str) -> int:
        """Raw ERC20 balance of the account."""
        token = Contract(token_address, abi=ERC20_ABI)
        return int(token.balanceOf(self.account.address))

    def approve_token(self, token: str, spender: str, amount: int) -> TransactionReceipt | None:
        """
        Approve ``spender`` for ``amount`` unless the allowance already covers it.

        Returns
        -------
        TransactionReceipt | None
            Receipt of the approval, or None when no approval was needed

        """
        contract = Contract(token, abi=ERC20_ABI)
        allowance = int(contract.allowance(self.account.address, spender))
        if allowance >= amount:
            logger.debug("Allowance %d for %s already covers %d", allowance, spender, amount)
            return None

        try:
            receipt = _to_receipt(contract.approve(spender, amount, sender=self.account))
        except Exception as e:
            raise classify_error(e) from e
        if receipt.status != TransactionStatus.SUCCESS:
            msg = f"Approval of {token} for {spender} reverted"
            raise TransactionFailedError(msg, details={"transaction_hash": receipt.hash})
        logger.info("Approved %s for %s in %s", token, spender, receipt.hash)
        return receipt

    def sign_and_send(self, tx: TransactionRequest) -> TransactionReceipt:
        """Sign ``tx``, broadcast it and wait for the receipt."""
        ecosystem = networks.provider.network.ecosystem
        txn = ecosystem.create_transaction(
            receiver=tx.to,
            data=tx.data,
            value=tx.value,
            sender=self.account.address,
        )
        try:
            receipt = self.account.call(txn)
        except Exception as e:
            raise classify_error(e) from e
        return _to_receipt(receipt)
