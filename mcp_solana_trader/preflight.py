"""
Balance preflight.

Decides how much can actually be spent (native SOL buys) or sold (token sells)
before any quote is requested. Over-requests are capped to what the wallet
holds rather than rejected; only a request that caps down to nothing fails.
"""

from mcp.server.fastmcp.utilities.logging import get_logger

from .config import SOL_MINT
from .errors import INSUFFICIENT_BALANCE, INSUFFICIENT_TOKEN_BALANCE, TradeError
from .models import SpendPlan
from .units import to_raw

logger = get_logger(__name__)

RENT_ATA_LAMPORTS = 2_500_000       # upper estimate for one ATA's rent exemption
BASE_FEE_LAMPORTS = 400_000         # compute / prioritization cushion
WSOL_ATA_CUSHION_LAMPORTS = 500_000  # kept even when the WSOL account already exists


def plan(requested: int, available: int, buffer: int = 0) -> SpendPlan:
    """Fits ``requested`` into ``available`` after reserving ``buffer``."""
    requested = max(0, int(requested))
    available = max(0, int(available))
    buffer = max(0, int(buffer))
    if available < requested + buffer:
        return SpendPlan(
            amount_raw=max(0, available - buffer),
            buffer_raw=buffer,
            capped=True,
            requested_raw=requested,
            available_raw=available,
        )
    return SpendPlan(amount_raw=requested, buffer_raw=buffer, capped=False,
                     requested_raw=requested, available_raw=available)


def spend_buffer(has_wsol_ata: bool, has_out_ata: bool) -> int:
    buffer = BASE_FEE_LAMPORTS
    buffer += WSOL_ATA_CUSHION_LAMPORTS if has_wsol_ata else RENT_ATA_LAMPORTS
    buffer += 0 if has_out_ata else RENT_ATA_LAMPORTS
    return buffer


async def _ata_exists(ledger, owner, mint: str) -> bool:
    try:
        return await ledger.ata_exists(owner, mint)
    except Exception as e:
        # Unknown counts as missing, which only makes the buffer larger
        logger.warning(f"ATA existence check failed for mint {mint}: {e}")
        return False


async def estimate_spend_buffer(ledger, owner, token_mint: str) -> int:
    has_wsol_ata = await _ata_exists(ledger, owner, SOL_MINT)
    has_out_ata = await _ata_exists(ledger, owner, token_mint)
    buffer = spend_buffer(has_wsol_ata, has_out_ata)
    logger.debug(f"Spend buffer for {owner}: {buffer} lamports (wsol_ata={has_wsol_ata}, out_ata={has_out_ata})")
    return buffer


async def plan_spend(ledger, owner, token_mint: str, lamports: int) -> SpendPlan:
    """Native-currency spend: reserve fees and rent, shrink the spend if needed."""
    balance = await ledger.get_balance(owner)
    buffer = await estimate_spend_buffer(ledger, owner, token_mint)
    spend = plan(lamports, balance, buffer)
    if spend.amount_raw <= 0:
        raise TradeError(
            INSUFFICIENT_BALANCE,
            f"have={balance} need~{lamports + buffer}",
            balance_raw=str(balance),
            buffer_raw=str(buffer),
        )
    if spend.capped:
        logger.info(f"Spend reduced from {lamports} to {spend.amount_raw} lamports (balance {balance}, buffer {buffer})")
    return spend


async def plan_sell(ledger, owner, token_mint: str, amount_ui, decimals: int) -> SpendPlan:
    """Token sell: cap the requested amount to the on-chain balance."""
    requested = to_raw(amount_ui, decimals)
    balance = await ledger.get_token_balance(owner, token_mint)
    sell = plan(requested, balance)
    if sell.amount_raw <= 0:
        raise TradeError(INSUFFICIENT_TOKEN_BALANCE, f"have={balance} requested={requested}",
                         tokens_sold_ui="0")
    if sell.capped:
        logger.info(f"Sell of {token_mint} capped from {requested} to {sell.amount_raw} base units")
    return sell


async def plan_sell_all(ledger, owner, token_mint: str) -> SpendPlan:
    balance = await ledger.get_token_balance(owner, token_mint)
    if balance <= 0:
        raise TradeError(INSUFFICIENT_TOKEN_BALANCE, "balance=0", tokens_sold_ui="0")
    return plan(balance, balance)
