import base64

from mcp.server.fastmcp.utilities.logging import get_logger

from .config import JUPITER_API_BASE
from .http_utils import request_json
from .models import Quote, SwapMode

logger = get_logger(__name__)


class QuoteUnavailable(Exception):
    """The aggregator answered but had no usable route."""


class JupiterClient:
    """Jupiter swap API: quotes and unsigned swap transactions."""

    def __init__(self, base_url: str = JUPITER_API_BASE):
        self.base_url = base_url.rstrip("/")

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
        swap_mode: SwapMode = "ExactIn",
    ) -> Quote:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(int(amount)),
            "slippageBps": int(slippage_bps),
            "swapMode": swap_mode,
        }
        data = await request_json("GET", f"{self.base_url}/quote", params=params)
        if not isinstance(data, dict) or data.get("error") or not data.get("outAmount"):
            raise QuoteUnavailable(data.get("error") if isinstance(data, dict) else f"unexpected quote payload: {data!r}")
        quote = Quote.from_response(data, slippage_bps, swap_mode)
        logger.debug(
            f"Quote {input_mint}->{output_mint} amount={amount} slippage={slippage_bps} mode={swap_mode}: "
            f"in={quote.in_amount} out={quote.out_amount} impact={quote.price_impact_pct}"
        )
        return quote

    async def get_swap_transaction(self, quote: Quote, user_public_key: str, priority_fee_micro_lamports: int) -> bytes:
        """Unsigned, serialized swap transaction built from ``quote`` exactly as received."""
        body = {
            "quoteResponse": quote.raw,
            "userPublicKey": str(user_public_key),
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "computeUnitPriceMicroLamports": int(priority_fee_micro_lamports),
        }
        # Not retried: a rebuilt transaction may embed a different blockhash
        data = await request_json("POST", f"{self.base_url}/swap", json_body=body, attempts=1)
        encoded = data.get("swapTransaction") if isinstance(data, dict) else None
        if not isinstance(encoded, str):
            raise ValueError(f"Swap response missing transaction data: {data!r}")
        return base64.b64decode(encoded)
