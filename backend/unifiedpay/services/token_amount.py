"""
Token amount codec.

Prices are stored as human-readable decimal strings ("5.00") while on-chain
Transfer values are integers in the token's smallest unit (5000000 for a
6-decimal token). Every comparison between the two happens in the integer
domain; floats never touch money.
"""
import re
from typing import Union
from unifiedpay.core.errors import MalformedAmount

_DECIMAL_RE = re.compile(r"^(?P<whole>[0-9]+)(?:\.(?P<frac>[0-9]*))?$|^\.(?P<only_frac>[0-9]+)$")
_INTEGER_RE = re.compile(r"^[0-9]+$")


def to_smallest_unit(amount: str, decimals: int) -> int:
    """Convert "10.5" to 10500000 for a 6-decimal token.

    Rejects anything that is not a plain non-negative decimal, and any value
    whose fractional part would need rounding to fit ``decimals`` digits.
    Trailing zeros past ``decimals`` are accepted since they carry no value.
    """
    if decimals < 0:
        raise ValueError("decimals must be non-negative")
    if not isinstance(amount, str):
        raise MalformedAmount(f"amount must be a decimal string, got {type(amount).__name__}")

    text = amount.strip()
    match = _DECIMAL_RE.match(text)
    if not match:
        raise MalformedAmount(f"'{amount}' is not a valid non-negative decimal amount")

    whole = match.group("whole") or "0"
    frac = match.group("frac") or match.group("only_frac") or ""

    significant = frac.rstrip("0")
    if len(significant) > decimals:
        raise MalformedAmount(
            f"'{amount}' has more than {decimals} fractional digits"
        )

    frac = significant.ljust(decimals, "0")
    return int(whole) * 10 ** decimals + (int(frac) if frac else 0)


def to_decimal_string(value: int, decimals: int) -> str:
    """Inverse of :func:`to_smallest_unit`, trailing zeros normalized away."""
    if decimals < 0:
        raise ValueError("decimals must be non-negative")
    if value < 0:
        raise MalformedAmount(f"amount must be non-negative, got {value}")

    whole, frac = divmod(value, 10 ** decimals)
    if decimals == 0 or frac == 0:
        return str(whole)
    frac_str = str(frac).rjust(decimals, "0").rstrip("0")
    return f"{whole}.{frac_str}"


def parse_smallest_unit(value: Union[int, str]) -> int:
    """Accept a client-supplied smallest-unit amount (int or integer string)."""
    if isinstance(value, bool):
        raise MalformedAmount("amount must be an integer")
    if isinstance(value, int):
        if value < 0:
            raise MalformedAmount(f"amount must be non-negative, got {value}")
        return value
    if isinstance(value, str) and _INTEGER_RE.match(value.strip()):
        return int(value.strip())
    raise MalformedAmount(f"'{value}' is not an integer amount in smallest units")
