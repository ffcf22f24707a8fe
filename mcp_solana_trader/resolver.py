"""
Token resolution and scoring.

Turns a free-text symbol or name into a ranked list of mint addresses using
live pair data. Liquidity only counts when it is denominated in a trusted
quote asset (native SOL at its live price, or a 1:1 stablecoin); pairs quoted
in anything else contribute no evidence at all. That single rule is what keeps
look-alike tokens with inflated self-reported liquidity from outranking the
real one.
"""

import math
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel
from mcp.server.fastmcp.utilities.logging import get_logger

from .config import SOL_MINT, SUPPORTED_CHAIN, USDC_MINT, USDT_MINT
from .models import Pair, PairSample, TokenCandidate

logger = get_logger(__name__)

NATIVE_QUOTE_MINTS = {SOL_MINT}
STABLE_QUOTE_MINTS = {USDC_MINT, USDT_MINT}
NATIVE_SYMBOL = "SOL"
STABLE_SYMBOLS = {"USDC", "USDT"}
GENERIC_ADDRESSES = {m.lower() for m in NATIVE_QUOTE_MINTS | STABLE_QUOTE_MINTS}
GENERIC_SYMBOLS = {NATIVE_SYMBOL} | STABLE_SYMBOLS
MAX_SAMPLE_PAIRS = 3


class ScoringConfig(BaseModel):
    """Weights and thresholds for candidate scoring. Tuned empirically."""

    exact_match_bonus: float = 1000
    partial_match_bonus: float = 200
    liquidity_weight: float = 20
    volume_weight: float = 15
    momentum_tiers: Tuple[Tuple[float, float], ...] = ((1_000_000, 200), (500_000, 100), (100_000, 50))
    evidence_weight: float = 5
    base_role_bonus: float = 10
    quote_preference_weight: float = 5
    native_quote_preference: int = 2
    stable_quote_preference: int = 1
    scam_ratio_threshold: float = 0.001
    scam_penalty: float = -500
    dead_volume_tiers: Tuple[Tuple[float, float], ...] = ((1_000, -200), (10_000, -100))


DEFAULT_SCORING = ScoringConfig()


def classify_quote(pair: Pair) -> Optional[str]:
    """'native', 'stable', or None for an untrusted quote asset.

    Known mint addresses decide; the symbol is only consulted when the
    provider left the address out.
    """
    address = pair.quote_token.address
    if address:
        if address in NATIVE_QUOTE_MINTS:
            return "native"
        if address in STABLE_QUOTE_MINTS:
            return "stable"
        return None
    symbol = (pair.quote_token.symbol or "").upper()
    if symbol == NATIVE_SYMBOL:
        return "native"
    if symbol in STABLE_SYMBOLS:
        return "stable"
    return None


def real_liquidity_usd(pair: Pair, quote_kind: str, native_price: Optional[float]) -> float:
    if quote_kind == "native":
        if native_price:
            return pair.quote_amount * native_price
        return pair.reported_liquidity_usd
    return pair.quote_amount


def _sample(pair: Pair, real_liquidity: float) -> PairSample:
    txns_24h = pair.txns.get("h24") or {}
    return PairSample(
        dex_id=pair.dex_id,
        pair_address=pair.pair_address,
        url=pair.url,
        price_usd=pair.price_usd,
        liquidity_usd=pair.reported_liquidity_usd,
        real_liquidity_usd=real_liquidity,
        quote_token=(pair.quote_token.symbol or "").upper(),
        quote_amount=pair.quote_amount,
        price_change_24h_pct=pair.price_change.get("h24"),
        price_change_h1_pct=pair.price_change.get("h1"),
        txns_24h_buys=txns_24h.get("buys"),
        txns_24h_sells=txns_24h.get("sells"),
        fdv_usd=pair.fdv,
        market_cap_usd=pair.market_cap,
        pair_created_at=pair.pair_created_at,
    )


def accumulate(
    pairs: Iterable[Pair],
    chain: str = SUPPORTED_CHAIN,
    native_price: Optional[float] = None,
    config: ScoringConfig = DEFAULT_SCORING,
) -> Dict[str, TokenCandidate]:
    """Per-base-token evidence from the trusted pairs on ``chain``."""
    candidates: Dict[str, TokenCandidate] = {}
    for pair in pairs:
        if pair.chain_id.lower() != chain.lower():
            continue
        quote_kind = classify_quote(pair)
        if quote_kind is None:
            continue
        base = pair.base_token
        if not base.address:
            continue
        real_liquidity = real_liquidity_usd(pair, quote_kind, native_price)
        key = base.address.lower()
        candidate = candidates.get(key)
        if candidate is None:
            candidate = TokenCandidate(address=base.address, symbol=(base.symbol or "").upper(), name=base.name)
            candidates[key] = candidate
        candidate.real_liquidity += real_liquidity
        candidate.reported_liquidity += pair.reported_liquidity_usd
        candidate.volume_24h += pair.volume_24h
        candidate.evidence_count += 1
        candidate.has_base_role = True
        candidate.quote_preference += (
            config.native_quote_preference if quote_kind == "native" else config.stable_quote_preference
        )
        if len(candidate.pairs) < MAX_SAMPLE_PAIRS:
            candidate.pairs.append(_sample(pair, real_liquidity))
    return candidates


def _tier_value(value: float, tiers, above: bool) -> float:
    for threshold, points in tiers:
        if (value > threshold) if above else (value < threshold):
            return points
    return 0


def score_candidate(candidate: TokenCandidate, query: str, config: ScoringConfig = DEFAULT_SCORING) -> float:
    target = (query or "").strip().upper()
    score = 0.0
    if target and candidate.symbol == target:
        score += config.exact_match_bonus
    elif target and target in candidate.symbol:
        score += config.partial_match_bonus
    score += math.log10(1 + max(0.0, candidate.real_liquidity)) * config.liquidity_weight
    score += math.log10(1 + max(0.0, candidate.volume_24h)) * config.volume_weight
    score += _tier_value(candidate.volume_24h, config.momentum_tiers, above=True)
    score += candidate.evidence_count * config.evidence_weight
    if candidate.has_base_role:
        score += config.base_role_bonus
    score += candidate.quote_preference * config.quote_preference_weight
    if candidate.liquidity_ratio < config.scam_ratio_threshold:
        score += config.scam_penalty
    score += _tier_value(candidate.volume_24h, config.dead_volume_tiers, above=False)
    return score


def is_generic(candidate: TokenCandidate) -> bool:
    return candidate.address.lower() in GENERIC_ADDRESSES or candidate.symbol in GENERIC_SYMBOLS


def rank_candidates(
    candidates: Iterable[TokenCandidate],
    query: str,
    limit: int,
    config: ScoringConfig = DEFAULT_SCORING,
) -> List[TokenCandidate]:
    """Scores, filters and sorts; ``confidence`` is each score's share of the returned set."""
    scored = [
        c.model_copy(update={"score": score_candidate(c, query, config)})
        for c in candidates
        if c.has_base_role and not is_generic(c)
    ]
    scored.sort(key=lambda c: c.score, reverse=True)
    top = scored[:max(0, int(limit))]
    total = sum(c.score for c in top)
    if total > 0:
        top = [c.model_copy(update={"confidence": round(c.score / total * 100)}) for c in top]
    return top


async def resolve_token(
    market,
    query: str,
    chain: str = SUPPORTED_CHAIN,
    limit: int = 5,
    config: ScoringConfig = DEFAULT_SCORING,
) -> List[TokenCandidate]:
    """Ranked mint candidates for ``query``. An empty list is a valid answer."""
    native_price = await market.get_native_price_usd()
    if native_price is None:
        logger.warning("No native price available; SOL-quoted pairs fall back to reported USD liquidity")
    pairs = await market.search_pairs(query)
    candidates = accumulate(pairs, chain=chain, native_price=native_price, config=config)
    ranked = rank_candidates(candidates.values(), query, limit, config)
    logger.info(f"Resolved {query!r} on {chain}: {len(pairs)} pairs, {len(candidates)} candidates, returning {len(ranked)}")
    return ranked
