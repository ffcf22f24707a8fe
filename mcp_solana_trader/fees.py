from typing import Sequence

from mcp.server.fastmcp.utilities.logging import get_logger

from .config import (
    PRIORITY_FEE_BASE_MICROLAMPORTS,
    PRIORITY_FEE_CEILING_MICROLAMPORTS,
    PRIORITY_FEE_PERCENTILE,
)

logger = get_logger(__name__)


def pick_priority_fee(
    fees: Sequence[int],
    base: int = PRIORITY_FEE_BASE_MICROLAMPORTS,
    percentile: float = PRIORITY_FEE_PERCENTILE,
    ceiling: int = PRIORITY_FEE_CEILING_MICROLAMPORTS,
) -> int:
    """Percentile of recent fees, floored at ``base`` and capped at ``ceiling``.

    An empty sample, or a zero at the chosen index, yields ``base``.
    """
    ordered = sorted(int(f) for f in fees)
    index = int(len(ordered) * percentile)
    suggested = ordered[index] if index < len(ordered) else 0
    if not suggested:
        suggested = base
    return max(base, min(ceiling, suggested))


async def estimate_priority_fee(
    ledger,
    base: int = PRIORITY_FEE_BASE_MICROLAMPORTS,
    percentile: float = PRIORITY_FEE_PERCENTILE,
    ceiling: int = PRIORITY_FEE_CEILING_MICROLAMPORTS,
) -> int:
    """Adaptive compute-unit price in micro-lamports. Never raises."""
    try:
        fees = await ledger.get_recent_prioritization_fees()
    except Exception as e:
        logger.warning(f"Priority fee sampling failed, using base {base}: {e}")
        return base
    fee = pick_priority_fee(fees, base=base, percentile=percentile, ceiling=ceiling)
    logger.debug(f"Priority fee from {len(fees)} samples at p{int(percentile * 100)}: {fee} micro-lamports")
    return fee
