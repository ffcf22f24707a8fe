from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# --- Market data (DexScreener pair payloads) ---

class PairToken(BaseModel):
    model_config = ConfigDict(extra="ignore")

    address: Optional[str] = None
    symbol: Optional[str] = None
    name: Optional[str] = None


class PairLiquidity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    usd: Optional[float] = None
    base: Optional[float] = None
    quote: Optional[float] = None


class Pair(BaseModel):
    """One trading pair as reported by the market-data provider."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    chain_id: str = Field("", alias="chainId")
    dex_id: Optional[str] = Field(None, alias="dexId")
    url: Optional[str] = None
    pair_address: Optional[str] = Field(None, alias="pairAddress")
    base_token: PairToken = Field(default_factory=PairToken, alias="baseToken")
    quote_token: PairToken = Field(default_factory=PairToken, alias="quoteToken")
    price_usd: Optional[float] = Field(None, alias="priceUsd")
    liquidity: PairLiquidity = Field(default_factory=PairLiquidity)
    volume: Dict[str, Optional[float]] = Field(default_factory=dict)
    price_change: Dict[str, Optional[float]] = Field(default_factory=dict, alias="priceChange")
    txns: Dict[str, Dict[str, Optional[int]]] = Field(default_factory=dict)
    fdv: Optional[float] = None
    market_cap: Optional[float] = Field(None, alias="marketCap")
    pair_created_at: Optional[int] = Field(None, alias="pairCreatedAt")

    @property
    def volume_24h(self) -> float:
        return float(self.volume.get("h24") or 0)

    @property
    def reported_liquidity_usd(self) -> float:
        return float(self.liquidity.usd or 0)

    @property
    def quote_amount(self) -> float:
        return float(self.liquidity.quote or 0)


class PairSample(BaseModel):
    """Display copy of one pair backing a token candidate."""

    dex_id: Optional[str] = None
    pair_address: Optional[str] = None
    url: Optional[str] = None
    price_usd: Optional[float] = None
    liquidity_usd: float = 0.0
    real_liquidity_usd: float = 0.0
    quote_token: str = ""
    quote_amount: float = 0.0
    price_change_24h_pct: Optional[float] = None
    price_change_h1_pct: Optional[float] = None
    txns_24h_buys: Optional[int] = None
    txns_24h_sells: Optional[int] = None
    fdv_usd: Optional[float] = None
    market_cap_usd: Optional[float] = None
    pair_created_at: Optional[int] = None


class TokenCandidate(BaseModel):
    """A mint address discovered while resolving a free-text token query."""

    address: str
    symbol: str = ""
    name: Optional[str] = None
    reported_liquidity: float = 0.0
    real_liquidity: float = 0.0
    volume_24h: float = 0.0
    evidence_count: int = 0
    has_base_role: bool = False
    quote_preference: int = 0
    score: float = 0.0
    confidence: Optional[int] = None
    pairs: List[PairSample] = Field(default_factory=list)

    @property
    def liquidity_ratio(self) -> float:
        if self.reported_liquidity <= 0:
            return 1.0
        return self.real_liquidity / self.reported_liquidity


# --- Trading ---

SwapMode = Literal["ExactIn", "ExactOut"]
TradeAction = Literal["buy", "sell", "sell_all"]


class Quote(BaseModel):
    """A priced route. Passed unmodified into transaction building."""

    model_config = ConfigDict(frozen=True)

    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    price_impact_pct: Optional[float] = None
    slippage_bps: int
    swap_mode: SwapMode = "ExactIn"
    raw: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_response(cls, data: Dict[str, Any], slippage_bps: int, swap_mode: SwapMode = "ExactIn") -> "Quote":
        impact = data.get("priceImpactPct")
        return cls(
            input_mint=str(data["inputMint"]),
            output_mint=str(data["outputMint"]),
            in_amount=int(data["inAmount"]),
            out_amount=int(data["outAmount"]),
            price_impact_pct=float(impact) if impact not in (None, "") else None,
            slippage_bps=int(data.get("slippageBps", slippage_bps)),
            swap_mode=swap_mode,
            raw=data,
        )


class SpendPlan(BaseModel):
    """Preflight output: what will actually be spent or sold."""

    model_config = ConfigDict(frozen=True)

    amount_raw: int
    buffer_raw: int = 0
    capped: bool = False
    requested_raw: int = 0
    available_raw: int = 0


class ExecutionResult(BaseModel):
    """Outcome of one trade attempt (or preview)."""

    model_config = ConfigDict(frozen=True)

    success: bool
    action: TradeAction
    token_mint: str
    wallet_id: Optional[str] = None
    wallet_address: Optional[str] = None
    tx_signature: Optional[str] = None
    preview: bool = False
    in_mint: Optional[str] = None
    out_mint: Optional[str] = None
    amount_in_ui: Optional[str] = None
    amount_out_ui: Optional[str] = None
    price_impact: Optional[float] = None
    slippage_bps_used: Optional[int] = None
    capped: bool = False
    explorer_url: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload = self.model_dump()
        if self.action == "buy":
            payload["tokens_bought_ui"] = self.amount_out_ui
            payload["sol_spent_ui"] = self.amount_in_ui
        else:
            payload["tokens_sold_ui"] = self.amount_in_ui
            payload["out_amount_ui"] = self.amount_out_ui
        return payload
