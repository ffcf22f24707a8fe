"""
Trade orchestration: preflight -> quote shopping -> fee estimate -> execution.

Every step that adjusts the amount happens before a quote is requested; a
quote is priced for one exact amount and is handed to the executor untouched.
"""

from typing import Optional, Sequence

from solders.pubkey import Pubkey

from mcp.server.fastmcp.utilities.logging import get_logger

from .config import SOL_DECIMALS, SOL_MINT, USDC_MINT
from .errors import BAD_AMOUNT, INSUFFICIENT_BALANCE, INVALID_MINT, TradeError
from .executor import TradeExecutor, explorer_url
from .fees import estimate_priority_fee
from .models import ExecutionResult, Quote, SpendPlan, TradeAction
from .preflight import estimate_spend_buffer, plan_sell, plan_sell_all, plan_spend
from .routing import DEFAULT_SLIPPAGES_BPS, shop_quote
from .units import fetch_decimals, to_raw, to_ui
from .wallets import LoadedWallet

logger = get_logger(__name__)

DEFAULT_BUY_INPUT_MINTS = (SOL_MINT,)
DEFAULT_SELL_OUTPUT_MINTS = (SOL_MINT, USDC_MINT)
DEFAULT_PREVIEW_SLIPPAGE_BPS = 100


def check_mint(mint: str) -> str:
    try:
        Pubkey.from_string(str(mint))
    except ValueError:
        raise TradeError(INVALID_MINT, f"not a valid mint address: {mint}") from None
    return str(mint)


def price_per_token(amount_in_ui: Optional[str], amount_out_ui: Optional[str], tokens_are_output: bool) -> float:
    try:
        paid, got = float(amount_in_ui or 0), float(amount_out_ui or 0)
    except ValueError:
        return 0.0
    if tokens_are_output:
        return paid / got if got > 0 else 0.0
    return got / paid if paid > 0 else 0.0


class TradingService:
    def __init__(self, ledger, quotes):
        self.ledger = ledger
        self.quotes = quotes

    async def _ui_amounts(self, quote: Quote):
        in_decimals = await fetch_decimals(self.ledger, quote.input_mint)
        out_decimals = await fetch_decimals(self.ledger, quote.output_mint)
        return to_ui(quote.in_amount, in_decimals), to_ui(quote.out_amount, out_decimals)

    async def _execute(
        self,
        action: TradeAction,
        token_mint: str,
        wallet: LoadedWallet,
        quote: Quote,
        priority_fee_micro_lamports: Optional[int],
        amount_in_ui: Optional[str] = None,
        capped: bool = False,
    ) -> ExecutionResult:
        fee = priority_fee_micro_lamports or await estimate_priority_fee(self.ledger)
        signature = await TradeExecutor(self.ledger, self.quotes).execute(quote, wallet, fee)
        quoted_in_ui, out_ui = await self._ui_amounts(quote)
        return ExecutionResult(
            success=True,
            action=action,
            token_mint=token_mint,
            wallet_id=wallet.wallet_id,
            wallet_address=str(wallet.public_key),
            tx_signature=signature,
            in_mint=quote.input_mint,
            out_mint=quote.output_mint,
            amount_in_ui=amount_in_ui if amount_in_ui is not None else quoted_in_ui,
            amount_out_ui=out_ui,
            price_impact=quote.price_impact_pct,
            slippage_bps_used=quote.slippage_bps,
            capped=capped,
            explorer_url=explorer_url(signature),
        )

    # --- Buys ---

    async def buy(
        self,
        wallet: LoadedWallet,
        token_mint: str,
        sol_amount: Optional[float] = None,
        out_amount_ui: Optional[float] = None,
        exact_out: bool = False,
        input_mints: Optional[Sequence[str]] = None,
        slippages_bps: Optional[Sequence[int]] = None,
        max_price_impact_pct: Optional[float] = None,
        priority_fee_micro_lamports: Optional[int] = None,
    ) -> ExecutionResult:
        token_mint = check_mint(token_mint)
        slippages = slippages_bps or DEFAULT_SLIPPAGES_BPS
        if exact_out:
            quote, spend = await self._quote_exact_out_buy(
                wallet, token_mint, out_amount_ui, input_mints, slippages, max_price_impact_pct
            )
        else:
            lamports = to_raw(sol_amount or 0, SOL_DECIMALS)
            if lamports <= 0:
                raise TradeError(BAD_AMOUNT, "sol_amount must be positive")
            spend = await plan_spend(self.ledger, wallet.public_key, token_mint, lamports)
            quote = await shop_quote(
                self.quotes,
                token_mint=token_mint,
                amount_raw=spend.amount_raw,
                direction="buy",
                counter_mints=DEFAULT_BUY_INPUT_MINTS,
                slippages_bps=slippages,
                max_price_impact_pct=max_price_impact_pct,
            )
        logger.info(f"Buying {token_mint} for wallet {wallet.wallet_id}: in={quote.in_amount} out={quote.out_amount}")
        return await self._execute(
            "buy", token_mint, wallet, quote, priority_fee_micro_lamports, capped=spend.capped if spend else False
        )

    async def _quote_exact_out_buy(self, wallet, token_mint, out_amount_ui, input_mints, slippages, max_price_impact_pct):
        out_decimals = await fetch_decimals(self.ledger, token_mint)
        raw_out = to_raw(out_amount_ui or 0, out_decimals)
        if raw_out <= 0:
            raise TradeError(BAD_AMOUNT, "out_amount_ui must be positive")
        counter_mints = list(input_mints or DEFAULT_BUY_INPUT_MINTS)
        balance = buffer = None
        if SOL_MINT in counter_mints:
            # The input amount is only known once quoted, so only the buffer can be checked up front
            balance = await self.ledger.get_balance(wallet.public_key)
            buffer = await estimate_spend_buffer(self.ledger, wallet.public_key, token_mint)
            if balance <= buffer:
                raise TradeError(INSUFFICIENT_BALANCE, f"have={balance} buffer={buffer}")
        quote = await shop_quote(
            self.quotes,
            token_mint=token_mint,
            amount_raw=raw_out,
            direction="buy",
            counter_mints=counter_mints,
            slippages_bps=slippages,
            max_price_impact_pct=max_price_impact_pct,
            swap_mode="ExactOut",
        )
        if quote.input_mint == SOL_MINT and balance is not None and quote.in_amount + buffer > balance:
            raise TradeError(INSUFFICIENT_BALANCE, f"have={balance} need~{quote.in_amount + buffer}")
        return quote, None

    async def preview_buy(self, token_mint: str, sol_amount: float, slippage_bps: Optional[int] = None) -> ExecutionResult:
        token_mint = check_mint(token_mint)
        lamports = to_raw(sol_amount, SOL_DECIMALS)
        if lamports <= 0:
            raise TradeError(BAD_AMOUNT, "sol_amount must be positive")
        quote = await shop_quote(
            self.quotes,
            token_mint=token_mint,
            amount_raw=lamports,
            direction="buy",
            counter_mints=[SOL_MINT],
            slippages_bps=[slippage_bps or DEFAULT_PREVIEW_SLIPPAGE_BPS],
        )
        return await self._preview_result("buy", token_mint, quote)

    # --- Sells ---

    async def sell(
        self,
        wallet: LoadedWallet,
        token_mint: str,
        token_amount: float,
        output_mints: Optional[Sequence[str]] = None,
        slippages_bps: Optional[Sequence[int]] = None,
        max_price_impact_pct: Optional[float] = None,
        priority_fee_micro_lamports: Optional[int] = None,
    ) -> ExecutionResult:
        token_mint = check_mint(token_mint)
        decimals = await fetch_decimals(self.ledger, token_mint)
        sell = await plan_sell(self.ledger, wallet.public_key, token_mint, token_amount, decimals)
        return await self._sell_planned(
            "sell", wallet, token_mint, sell, decimals, output_mints, slippages_bps,
            max_price_impact_pct, priority_fee_micro_lamports,
        )

    async def sell_all(
        self,
        wallet: LoadedWallet,
        token_mint: str,
        output_mints: Optional[Sequence[str]] = None,
        slippages_bps: Optional[Sequence[int]] = None,
        max_price_impact_pct: Optional[float] = None,
        priority_fee_micro_lamports: Optional[int] = None,
    ) -> ExecutionResult:
        token_mint = check_mint(token_mint)
        sell = await plan_sell_all(self.ledger, wallet.public_key, token_mint)
        decimals = await fetch_decimals(self.ledger, token_mint)
        return await self._sell_planned(
            "sell_all", wallet, token_mint, sell, decimals, output_mints, slippages_bps,
            max_price_impact_pct, priority_fee_micro_lamports,
        )

    async def _sell_planned(
        self,
        action: TradeAction,
        wallet: LoadedWallet,
        token_mint: str,
        sell: SpendPlan,
        decimals: int,
        output_mints,
        slippages_bps,
        max_price_impact_pct,
        priority_fee_micro_lamports,
    ) -> ExecutionResult:
        quote = await shop_quote(
            self.quotes,
            token_mint=token_mint,
            amount_raw=sell.amount_raw,
            direction="sell",
            counter_mints=list(output_mints or DEFAULT_SELL_OUTPUT_MINTS),
            slippages_bps=slippages_bps or DEFAULT_SLIPPAGES_BPS,
            max_price_impact_pct=max_price_impact_pct,
        )
        logger.info(f"Selling {sell.amount_raw} of {token_mint} for wallet {wallet.wallet_id} into {quote.output_mint}")
        return await self._execute(
            action, token_mint, wallet, quote, priority_fee_micro_lamports,
            amount_in_ui=to_ui(sell.amount_raw, decimals), capped=sell.capped,
        )

    async def preview_sell(
        self,
        token_mint: str,
        token_amount: float,
        slippage_bps: Optional[int] = None,
        output_mint: Optional[str] = None,
    ) -> ExecutionResult:
        token_mint = check_mint(token_mint)
        decimals = await fetch_decimals(self.ledger, token_mint)
        raw = to_raw(token_amount, decimals)
        if raw <= 0:
            raise TradeError(BAD_AMOUNT, "token_amount must be positive")
        quote = await shop_quote(
            self.quotes,
            token_mint=token_mint,
            amount_raw=raw,
            direction="sell",
            counter_mints=[check_mint(output_mint) if output_mint else SOL_MINT],
            slippages_bps=[slippage_bps or DEFAULT_PREVIEW_SLIPPAGE_BPS],
        )
        return await self._preview_result("sell", token_mint, quote)

    async def preview_sell_all(
        self, wallet: LoadedWallet, token_mint: str, slippage_bps: Optional[int] = None
    ) -> ExecutionResult:
        token_mint = check_mint(token_mint)
        sell = await plan_sell_all(self.ledger, wallet.public_key, token_mint)
        quote = await shop_quote(
            self.quotes,
            token_mint=token_mint,
            amount_raw=sell.amount_raw,
            direction="sell",
            counter_mints=[SOL_MINT],
            slippages_bps=[slippage_bps or DEFAULT_PREVIEW_SLIPPAGE_BPS],
        )
        return await self._preview_result("sell_all", token_mint, quote, wallet)

    async def _preview_result(
        self, action: TradeAction, token_mint: str, quote: Quote, wallet: Optional[LoadedWallet] = None
    ) -> ExecutionResult:
        in_ui, out_ui = await self._ui_amounts(quote)
        return ExecutionResult(
            success=True,
            preview=True,
            action=action,
            token_mint=token_mint,
            wallet_id=wallet.wallet_id if wallet else None,
            wallet_address=str(wallet.public_key) if wallet else None,
            in_mint=quote.input_mint,
            out_mint=quote.output_mint,
            amount_in_ui=in_ui,
            amount_out_ui=out_ui,
            price_impact=quote.price_impact_pct,
            slippage_bps_used=quote.slippage_bps,
        )
