"""Minimal ABIs for the pooled market, its comptroller, oracle and reward distributor."""

from typing import Any


def _function(
    name: str,
    inputs: list[tuple[str, str]] | None = None,
    outputs: list[str] | None = None,
    mutability: str = "view",
) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": arg, "type": kind} for arg, kind in inputs or []],
        "outputs": [{"name": "", "type": kind} for kind in outputs or []],
    }


MTOKEN_ABI = [
    _function("mint", [("mintAmount", "uint256")], ["uint256"], "nonpayable"),
    _function("redeem", [("redeemTokens", "uint256")], ["uint256"], "nonpayable"),
    _function("redeemUnderlying", [("redeemAmount", "uint256")], ["uint256"], "nonpayable"),
    _function("borrow", [("borrowAmount", "uint256")], ["uint256"], "nonpayable"),
    _function("repayBorrow", [("repayAmount", "uint256")], ["uint256"], "nonpayable"),
    _function("balanceOf", [("owner", "address")], ["uint256"]),
    _function("borrowBalanceStored", [("account", "address")], ["uint256"]),
    _function("exchangeRateStored", [], ["uint256"]),
    _function("supplyRatePerBlock", [], ["uint256"]),
    _function("borrowRatePerBlock", [], ["uint256"]),
    _function("totalSupply", [], ["uint256"]),
    _function("totalBorrows", [], ["uint256"]),
    _function("getCash", [], ["uint256"]),
]

COMPTROLLER_ABI = [
    _function("enterMarkets", [("mTokens", "address[]")], ["uint256[]"], "nonpayable"),
    _function("getAccountLiquidity", [("account", "address")], ["uint256", "uint256", "uint256"]),
    _function("markets", [("mToken", "address")], ["bool", "uint256", "bool"]),
    _function("checkMembership", [("account", "address"), ("mToken", "address")], ["bool"]),
]

ORACLE_ABI = [
    _function("getUnderlyingPrice", [("mToken", "address")], ["uint256"]),
]

REWARD_DISTRIBUTOR_ABI = [
    _function("getOutstandingRewardsForUser", [("user", "address")], ["address[]", "uint256[]"]),
]

ERC20_ABI = [
    _function("balanceOf", [("owner", "address")], ["uint256"]),
    _function("allowance", [("owner", "address"), ("spender", "address")], ["uint256"]),
    _function("approve", [("spender", "address"), ("amount", "uint256")], ["bool"], "nonpayable"),
    _function("decimals", [], ["uint8"]),
]
