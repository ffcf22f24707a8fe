"""
Quote shopping.

Walks counter-mints in preference order and, for each, slippage tolerances from
tightest to widest, stopping at the first quote whose price impact fits the
caller's ceiling. The search is sequential on purpose: provider rate limits and
"first acceptable, not best" both depend on short-circuiting.
"""

from typing import Iterator, List, Literal, Optional, Sequence, Tuple

from mcp.server.fastmcp.utilities.logging import get_logger

from .errors import NO_ROUTE, TradeError
from .models import Quote, SwapMode

logger = get_logger(__name__)

DEFAULT_SLIPPAGES_BPS: Tuple[int, ...] = (100, 200, 300)

Direction = Literal["buy", "sell"]


def route_candidates(counter_mints: Sequence[str], slippages_bps: Sequence[int]) -> Iterator[Tuple[str, int]]:
    for counter_mint in counter_mints:
        for slippage_bps in slippages_bps:
            yield counter_mint, int(slippage_bps)


def within_impact(quote: Quote, max_price_impact_pct: Optional[float]) -> bool:
    """No ceiling accepts anything; under a ceiling an unreported impact is rejected."""
    if max_price_impact_pct is None:
        return True
    if quote.price_impact_pct is None:
        return False
    return quote.price_impact_pct <= max_price_impact_pct


async def shop_quote(
    quotes,
    *,
    token_mint: str,
    amount_raw: int,
    direction: Direction,
    counter_mints: Sequence[str],
    slippages_bps: Sequence[int] = DEFAULT_SLIPPAGES_BPS,
    max_price_impact_pct: Optional[float] = None,
    swap_mode: SwapMode = "ExactIn",
) -> Quote:
    """First acceptable quote over {counter_mints x slippages_bps}.

    For sells ``token_mint`` is the input and the counter-mint the output; for
    buys the other way round. Raises ``no_route`` when nothing qualifies.
    """
    attempts: List[str] = []
    for counter_mint, slippage_bps in route_candidates(counter_mints, slippages_bps or DEFAULT_SLIPPAGES_BPS):
        if direction == "sell":
            input_mint, output_mint = token_mint, counter_mint
        else:
            input_mint, output_mint = counter_mint, token_mint
        try:
            quote = await quotes.get_quote(input_mint, output_mint, amount_raw, slippage_bps, swap_mode)
        except Exception as e:
            logger.warning(f"Quote {input_mint}->{output_mint} at {slippage_bps} bps failed: {e}")
            attempts.append(f"{counter_mint}@{slippage_bps}: {e}")
            continue
        if not within_impact(quote, max_price_impact_pct):
            logger.info(
                f"Skipping {counter_mint}@{slippage_bps}bps: impact {quote.price_impact_pct}% > {max_price_impact_pct}%"
            )
            attempts.append(f"{counter_mint}@{slippage_bps}: impact {quote.price_impact_pct}")
            continue
        logger.info(f"Selected route {input_mint}->{output_mint} at {slippage_bps} bps ({swap_mode})")
        return quote
    raise TradeError(NO_ROUTE, {"attempts": attempts})
