# human token amounts <-> ledger integer units
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Union

Amount = Union[str, int, float, Decimal, None]


def _as_decimal(amount: Amount) -> Decimal:
    if amount is None or amount == "":
        return Decimal(0)
    try:
        # str() first so floats keep their printed value, not their binary one
        value = Decimal(str(amount).strip())
    except InvalidOperation:
        raise ValueError(f"invalid amount {amount!r}") from None
    if not value.is_finite() or value < 0:
        raise ValueError(f"invalid amount {amount!r}")
    return value


def to_fixed_point(amount: Amount, decimals: int) -> int:
    """
    "1.5" SUI with 9 decimals -> 1_500_000_000 MIST.
    Extra fractional digits are truncated.
    """
    value = _as_decimal(amount)
    scaled = (value * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


def from_fixed_point(units: Union[int, str], decimals: int) -> str:
    value = Decimal(int(units)) / (Decimal(10) ** decimals)
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"
