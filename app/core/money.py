from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from pydantic import PlainSerializer

CENT = Decimal("0.01")


def to_money(val) -> Decimal:
    """Coerce a DB/JSON numeric into a two-decimal Decimal (None -> 0.00)."""
    if val is None:
        return Decimal("0.00")
    d = val if isinstance(val, Decimal) else Decimal(str(val))
    return d.quantize(CENT, rounding=ROUND_HALF_UP)


# Decimal inside the app, plain JSON number with two decimals on the wire
Money = Annotated[
    Decimal,
    PlainSerializer(lambda v: float(to_money(v)), return_type=float, when_used="json"),
]
