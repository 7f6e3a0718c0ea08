"""
Token Amount and Date Helpers

Token quantities on the command line are given in whole tokens, while the
contracts account in base units (18 decimal places). Conversion goes through
Decimal so that "5", "1.25" or "44.1e6" scale to exact integers; a value
that does not land on a whole base unit is rejected instead of rounded.

End dates are accepted either as unix timestamps or as ISO-8601 dates and
datetimes. Naive dates are interpreted as UTC.
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, localcontext
from typing import Union

from eth_ico_admin.errors import ValidationError

TOKEN_DECIMALS = 18
ONE_TOKEN = 10 ** TOKEN_DECIMALS
UINT256_MAX = 2 ** 256 - 1


def parse_exact_int(
    value: Union[int, str], name: str = "value", decimals: int = 0, max_value: int = UINT256_MAX
) -> int:
    """
    Parse an integer or numeric string and scale it by 10**decimals.

    Args:
        value: An int, or a string such as "100", "2.5" or "3000e18".
        name: Parameter name used in error messages.
        decimals: Number of decimal places to shift by.
        max_value: Largest accepted result, a uint256 by default.

    Returns:
        The exact integer result.

    Raises:
        ValidationError: If the value is not numeric, is negative, exceeds
            ``max_value``, or the scaled result has a fractional part.
    """
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {name}: {value!r} is not a number")
    if isinstance(value, int):
        number = Decimal(value)
    elif isinstance(value, str):
        try:
            number = Decimal(value.strip().replace("_", ""))
        except InvalidOperation:
            raise ValidationError(f"Invalid {name}: {value!r} is not a number")
    else:
        # Floats have already lost precision, ask for a quoted value instead
        raise ValidationError(f"Invalid {name}: {value!r} must be an integer or a quoted decimal string")

    if not number.is_finite():
        raise ValidationError(f"Invalid {name}: {value!r} is not a finite number")
    with localcontext() as ctx:
        # Default precision (28 digits) would round large base-unit values
        ctx.prec = max(100, len(number.as_tuple().digits) + decimals + 10)
        scaled = number.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise ValidationError(f"Invalid {name}: {value!r} is not representable in whole base units")
        if scaled < 0:
            raise ValidationError(f"Invalid {name}: {value!r} must not be negative")
        # compared as Decimal so "1e99999" never expands into a huge int
        if scaled > max_value:
            raise ValidationError(f"Invalid {name}: {value!r} is out of range (max {max_value})")
        return int(scaled)


def tokens_to_base_units(value: Union[int, str], name: str = "tokens") -> int:
    """Convert a whole-token amount into base units (x 10**18)."""
    return parse_exact_int(value, name=name, decimals=TOKEN_DECIMALS)


def base_units_to_tokens(amount: int) -> int:
    """Whole tokens contained in a base-unit amount, truncated."""
    return amount // ONE_TOKEN


def parse_timestamp(value: str, name: str = "end") -> int:
    """Parse a unix timestamp or an ISO-8601 date/datetime into unix seconds."""
    text = value.strip()
    if text.isdigit():
        return int(text)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid {name} date: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())
