"""
Conversions between raw on-chain integers and canonical decimal quantities.

Raw values are integers scaled by ``10**decimals``; canonical values are
``Decimal`` token or USD amounts. Arithmetic runs in a local context wide
enough for any 256-bit integer so conversions never round silently.
"""

from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext
from typing import Any

from moonwell_risk.errors import InvalidAmountError

# 2**256 has 78 digits; two extra keep scaleb exact on the boundary
PRECISION = 80
WAD_DECIMALS = 18
WAD = 10**WAD_DECIMALS
# Oracle prices are scaled so that ``raw_underlying * price / 1e36`` is USD
ORACLE_SCALE_DECIMALS = 36


def to_decimal(value: Any) -> Decimal:
    """Coerce a number or numeric string to a finite ``Decimal``, sign allowed."""
    if isinstance(value, bool):
        raise InvalidAmountError(f"Amount must be numeric, got {value!r}")
    try:
        if isinstance(value, float):
            result = Decimal(str(value))
        else:
            result = Decimal(str(value).strip()) if isinstance(value, str) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise InvalidAmountError(f"Amount must be numeric, got {value!r}") from e

    if not result.is_finite():
        raise InvalidAmountError(f"Amount must be a finite number, got {value!r}")
    return result


def _check_decimals(decimals: int) -> None:
    if isinstance(decimals, bool) or not isinstance(decimals, int) or not 0 <= decimals <= 77:
        raise InvalidAmountError(f"Token decimals must be an integer in [0, 77], got {decimals!r}")


def parse_amount(value: Any) -> Decimal:
    """
    Parse a user-provided amount into a non-negative ``Decimal``.

    Raises
    ------
    InvalidAmountError
        If the value is non-numeric, not finite, or negative

    """
    amount = to_decimal(value)
    if amount < 0:
        raise InvalidAmountError(f"Amount must not be negative, got {value!r}")
    return amount


def to_canonical(raw: int | str, decimals: int) -> Decimal:
    """
    Convert a raw integer amount into a canonical decimal quantity.

    Parameters
    ----------
    raw : int | str
        Non-negative integer scaled by ``10**decimals``
    decimals : int
        Token decimals

    Returns
    -------
    Decimal
        ``raw / 10**decimals``, exact

    """
    _check_decimals(decimals)
    value = to_decimal(raw)
    if value < 0 or value != value.to_integral_value():
        raise InvalidAmountError(f"Raw amount must be a non-negative integer, got {raw!r}")

    with localcontext() as ctx:
        ctx.prec = PRECISION
        return value.scaleb(-decimals)


def to_raw(amount: Any, decimals: int) -> int:
    """
    Convert a canonical amount into a raw integer, truncating toward zero.

    Digits finer than ``10**-decimals`` are dropped, so
    ``to_raw(to_canonical(x, d), d) == x`` for every non-negative integer ``x``.
    """
    _check_decimals(decimals)
    value = parse_amount(amount)

    with localcontext() as ctx:
        ctx.prec = PRECISION
        return int(value.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))


def to_usd(amount: Decimal, price: Decimal) -> Decimal:
    """Value a canonical amount at a USD price."""
    with localcontext() as ctx:
        ctx.prec = PRECISION
        return amount * price


def oracle_price_to_usd(raw_price: int, underlying_decimals: int) -> Decimal:
    """
    Convert a raw oracle price into a USD price per whole token.

    The oracle scales prices by ``10**(36 - underlying_decimals)``, which is
    the 18-decimal scale for 18-decimal assets.
    """
    _check_decimals(underlying_decimals)
    return to_canonical(raw_price, ORACLE_SCALE_DECIMALS - underlying_decimals)


def rate_to_apy(rate_per_period: int, periods_per_year: int) -> Decimal:
    """Annualize an 18-decimal per-period rate without compounding."""
    with localcontext() as ctx:
        ctx.prec = PRECISION
        return to_canonical(rate_per_period, WAD_DECIMALS) * periods_per_year


def underlying_from_shares(shares: int, exchange_rate: int) -> int:
    """Raw underlying held for a raw mToken balance, truncated like on-chain math."""
    return shares * exchange_rate // WAD
