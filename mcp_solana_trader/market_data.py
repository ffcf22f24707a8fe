from typing import List, Optional

from pydantic import ValidationError
from mcp.server.fastmcp.utilities.logging import get_logger

from .config import COINGECKO_API_BASE, DEXSCREENER_API_BASE
from .http_utils import request_json
from .models import Pair

logger = get_logger(__name__)


class MarketDataClient:
    """DexScreener pair search plus a CoinGecko native-price lookup."""

    def __init__(self, dexscreener_base: str = DEXSCREENER_API_BASE, coingecko_base: str = COINGECKO_API_BASE):
        self.dexscreener_base = dexscreener_base.rstrip("/")
        self.coingecko_base = coingecko_base.rstrip("/")

    async def search_pairs(self, query: str) -> List[Pair]:
        data = await request_json("GET", f"{self.dexscreener_base}/latest/dex/search", params={"q": query})
        raw_pairs = data.get("pairs") if isinstance(data, dict) else None
        pairs: List[Pair] = []
        for raw in raw_pairs or []:
            try:
                pairs.append(Pair.model_validate(raw))
            except ValidationError as e:
                logger.debug(f"Skipping malformed pair {raw.get('pairAddress') if isinstance(raw, dict) else raw!r}: {e}")
        logger.debug(f"DexScreener returned {len(pairs)} pairs for {query!r}")
        return pairs

    async def get_native_price_usd(self, coin_id: str = "solana") -> Optional[float]:
        """Best effort: None when the price cannot be fetched."""
        try:
            data = await request_json(
                "GET", f"{self.coingecko_base}/simple/price", params={"ids": coin_id, "vs_currencies": "usd"}
            )
            price = (data.get(coin_id) or {}).get("usd")
            return float(price) if price else None
        except Exception as e:
            logger.warning(f"Native price lookup failed for {coin_id}: {e}")
            return None
