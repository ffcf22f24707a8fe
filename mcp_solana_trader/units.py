"""
Conversion between human ("UI") token amounts and integer base units.

Decimal lookups favour proceeding over failing: a mint whose metadata cannot be
read is treated as having native-currency precision (9 decimals), so callers
must tolerate approximate amounts for malformed or missing mints.
"""

from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Union

from mcp.server.fastmcp.utilities.logging import get_logger

from .config import SOL_DECIMALS, SOL_MINT

logger = get_logger(__name__)

DEFAULT_DECIMALS = SOL_DECIMALS

Number = Union[int, float, str, Decimal]


def to_raw(amount_ui: Number, decimals: int) -> int:
    """Floor of ``amount_ui * 10**decimals``, truncated toward zero.

    Floats go through their shortest string form so ``0.29`` becomes
    290000000 rather than 289999999. Unparseable or non-finite input yields 0.
    """
    try:
        value = amount_ui if isinstance(amount_ui, Decimal) else Decimal(str(amount_ui))
        if not value.is_finite():
            return 0
        scaled = value.scaleb(int(decimals))
        return int(scaled.to_integral_value(rounding=ROUND_DOWN))
    except (InvalidOperation, ValueError, TypeError):
        logger.warning(f"Could not convert amount {amount_ui!r} with {decimals} decimals, using 0")
        return 0


def to_ui(amount_raw: Union[int, str], decimals: int) -> str:
    """Exact decimal string for an integral raw amount (no exponent, no trailing zeros)."""
    try:
        value = Decimal(int(amount_raw)).scaleb(-int(decimals))
    except (InvalidOperation, ValueError, TypeError):
        logger.warning(f"Could not format raw amount {amount_raw!r}, using 0")
        return "0"
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


async def fetch_decimals(ledger, mint: str) -> int:
    """Decimals of ``mint`` from its parsed account data, or 9 on any failure."""
    if mint == SOL_MINT:
        return SOL_DECIMALS
    try:
        parsed = await ledger.get_parsed_account(mint)
        decimals = parsed["info"]["decimals"] if parsed else None
        if decimals is None:
            logger.warning(f"No decimals in account data for mint {mint}, defaulting to {DEFAULT_DECIMALS}")
            return DEFAULT_DECIMALS
        return int(decimals)
    except Exception as e:
        logger.warning(f"Decimals lookup failed for mint {mint}: {e}. Defaulting to {DEFAULT_DECIMALS}")
        return DEFAULT_DECIMALS
