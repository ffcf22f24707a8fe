import math
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from mcp_solana_trader.config import SOL_MINT, USDC_MINT, USDT_MINT
from mcp_solana_trader.models import Pair, TokenCandidate
from mcp_solana_trader.resolver import (
    DEFAULT_SCORING,
    MAX_SAMPLE_PAIRS,
    ScoringConfig,
    accumulate,
    classify_quote,
    rank_candidates,
    real_liquidity_usd,
    resolve_token,
    score_candidate,
)

BONK_MINT = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
FAKE_BONK_MINT = "FakeBonk1111111111111111111111111111111111"
FAKE_USD_MINT = "FakeUsd11111111111111111111111111111111111"


def make_pair(
    base_address: str,
    base_symbol: str,
    quote_address: Optional[str],
    quote_symbol: str,
    liquidity_usd: float,
    liquidity_quote: float,
    volume_24h: float = 50_000,
    chain: str = "solana",
) -> Pair:
    return Pair.model_validate({
        "chainId": chain,
        "dexId": "raydium",
        "pairAddress": f"{base_symbol}-{quote_symbol}-{liquidity_usd}",
        "baseToken": {"address": base_address, "symbol": base_symbol, "name": base_symbol.title()},
        "quoteToken": {"address": quote_address, "symbol": quote_symbol},
        "priceUsd": "0.00002",
        "liquidity": {"usd": liquidity_usd, "base": 1_000_000, "quote": liquidity_quote},
        "volume": {"h24": volume_24h},
        "priceChange": {"h1": 0.5, "h24": -3.2},
        "txns": {"h24": {"buys": 120, "sells": 98}},
    })


# --- Quote classification ---

def test_classify_quote_by_address():
    assert classify_quote(make_pair("A", "AAA", SOL_MINT, "SOL", 1, 1)) == "native"
    assert classify_quote(make_pair("A", "AAA", USDC_MINT, "USDC", 1, 1)) == "stable"
    assert classify_quote(make_pair("A", "AAA", USDT_MINT, "USDT", 1, 1)) == "stable"


def test_classify_quote_impersonating_symbol_is_untrusted():
    assert classify_quote(make_pair("A", "AAA", FAKE_USD_MINT, "USDC", 1, 1)) is None
    assert classify_quote(make_pair("A", "AAA", FAKE_USD_MINT, "SOL", 1, 1)) is None


def test_classify_quote_falls_back_to_symbol_without_address():
    assert classify_quote(make_pair("A", "AAA", None, "sol", 1, 1)) == "native"
    assert classify_quote(make_pair("A", "AAA", None, "USDT", 1, 1)) == "stable"
    assert classify_quote(make_pair("A", "AAA", None, "WIF", 1, 1)) is None


def test_real_liquidity_native_uses_live_price():
    pair = make_pair("A", "AAA", SOL_MINT, "SOL", liquidity_usd=99_999, liquidity_quote=100)
    assert real_liquidity_usd(pair, "native", 150.0) == pytest.approx(15_000)
    assert real_liquidity_usd(pair, "native", None) == pytest.approx(99_999)


def test_real_liquidity_stable_is_one_to_one():
    pair = make_pair("A", "AAA", USDC_MINT, "USDC", liquidity_usd=99_999, liquidity_quote=4_321)
    assert real_liquidity_usd(pair, "stable", 150.0) == pytest.approx(4_321)


# --- Accumulation ---

def test_accumulate_ignores_untrusted_quotes_and_other_chains():
    pairs = [
        make_pair(BONK_MINT, "BONK", SOL_MINT, "SOL", 300_000, 1_000),
        make_pair(BONK_MINT, "BONK", FAKE_USD_MINT, "USDC", 50_000_000, 25_000_000),
        make_pair(BONK_MINT, "BONK", USDC_MINT, "USDC", 200_000, 100_000, chain="ethereum"),
    ]
    candidates = accumulate(pairs, native_price=150.0)
    assert list(candidates) == [BONK_MINT.lower()]
    bonk = candidates[BONK_MINT.lower()]
    assert bonk.evidence_count == 1
    assert bonk.real_liquidity == pytest.approx(150_000)
    assert bonk.reported_liquidity == pytest.approx(300_000)
    assert bonk.quote_preference == DEFAULT_SCORING.native_quote_preference
    assert bonk.has_base_role is True


def test_accumulate_keeps_at_most_three_sample_pairs():
    pairs = [make_pair(BONK_MINT, "bonk", USDC_MINT, "USDC", 1_000 * i, 500 * i) for i in range(1, 6)]
    bonk = accumulate(pairs)[BONK_MINT.lower()]
    assert bonk.evidence_count == 5
    assert len(bonk.pairs) == MAX_SAMPLE_PAIRS
    assert bonk.symbol == "BONK"
    assert bonk.pairs[0].txns_24h_buys == 120
    assert bonk.pairs[0].price_change_24h_pct == pytest.approx(-3.2)


# --- Scoring ---

def candidate(symbol: str, real: float, reported: float, volume: float = 50_000, address: str = "Mint") -> TokenCandidate:
    return TokenCandidate(
        address=address,
        symbol=symbol,
        real_liquidity=real,
        reported_liquidity=reported,
        volume_24h=volume,
        evidence_count=1,
        has_base_role=True,
        quote_preference=2,
    )


def test_exact_match_outscores_partial_match():
    exact = score_candidate(candidate("BONK", 10_000, 10_000), "bonk")
    partial = score_candidate(candidate("BONKINU", 10_000, 10_000), "bonk")
    assert exact - partial == pytest.approx(DEFAULT_SCORING.exact_match_bonus - DEFAULT_SCORING.partial_match_bonus)


@pytest.mark.parametrize(
    "scam_real, scam_reported, legit_real, legit_reported",
    [
        (5_000, 10_000_000, 5_000, 10_000),
        (100_000, 200_000_000, 10, 20),
        (999, 1_000_000, 1, 1),
    ],
)
def test_scam_penalty_dominates_at_equal_volume(scam_real, scam_reported, legit_real, legit_reported):
    scam = candidate("XYZ", scam_real, scam_reported, address="Scam")
    legit = candidate("XYZ", legit_real, legit_reported, address="Legit")
    assert scam.liquidity_ratio < 0.001 <= 0.5 <= legit.liquidity_ratio
    ranked = rank_candidates([scam, legit], "XYZ", limit=5)
    assert [c.address for c in ranked] == ["Legit", "Scam"]


def test_momentum_and_dead_tiers():
    busy = score_candidate(candidate("AAA", 1, 1, volume=2_000_000), "zzz")
    quiet = score_candidate(candidate("AAA", 1, 1, volume=500), "zzz")
    config = DEFAULT_SCORING
    assert busy > quiet
    # 2M volume earns the top momentum tier; 500 falls in the harshest dead tier
    expected_gap = (
        (math.log10(2_000_001) - math.log10(501)) * config.volume_weight
        + config.momentum_tiers[0][1]
        - config.dead_volume_tiers[0][1]
    )
    assert busy - quiet == pytest.approx(expected_gap)


def test_scoring_config_is_tunable():
    lenient = ScoringConfig(scam_penalty=0)
    scam = candidate("XYZ", 1, 1_000_000)
    assert score_candidate(scam, "XYZ", lenient) - score_candidate(scam, "XYZ") == pytest.approx(500)


# --- Ranking ---

def test_rank_filters_generic_and_quote_only_candidates():
    sol = candidate("SOL", 1_000_000, 1_000_000, address=SOL_MINT)
    usdc_lookalike = candidate("USDC", 1_000_000, 1_000_000, address="NotReallyUsdc")
    quote_only = candidate("ABC", 1_000, 1_000, address="QuoteOnly").model_copy(update={"has_base_role": False})
    real = candidate("ABC", 1_000, 1_000, address="Real")
    ranked = rank_candidates([sol, usdc_lookalike, quote_only, real], "ABC", limit=5)
    assert [c.address for c in ranked] == ["Real"]
    assert ranked[0].confidence == 100


def test_rank_limit_and_confidence_shares():
    cands = [candidate(f"T{i}", 10 ** i, 10 ** i, address=f"Mint{i}") for i in range(1, 7)]
    ranked = rank_candidates(cands, "T", limit=3)
    assert len(ranked) == 3
    scores = [c.score for c in ranked]
    assert scores == sorted(scores, reverse=True)
    assert 98 <= sum(c.confidence for c in ranked) <= 102


def test_rank_with_non_positive_total_leaves_confidence_unset():
    dead = candidate("ZZZ", 0, 1_000_000, volume=0, address="Dead")
    ranked = rank_candidates([dead], "QQQ", limit=5)
    assert ranked[0].score < 0
    assert ranked[0].confidence is None


# --- resolve_token ---

@pytest.mark.asyncio
async def test_resolve_bonk_prefers_trusted_liquidity():
    pairs = [
        make_pair(BONK_MINT, "BONK", SOL_MINT, "SOL", 310_000, 1_000, volume_24h=2_500_000),
        make_pair(BONK_MINT, "BONK", USDC_MINT, "USDC", 205_000, 100_000, volume_24h=900_000),
        # Impersonator whose only liquidity is in a worthless "USDC"
        make_pair(FAKE_BONK_MINT, "BONK", FAKE_USD_MINT, "USDC", 80_000_000, 40_000_000, volume_24h=5_000_000),
        make_pair("BonkInu111", "BONKINU", SOL_MINT, "SOL", 4_000, 10, volume_24h=3_000),
        # BONK appearing as a quote token gives no evidence for the base side
        make_pair("Meme111", "MEME", BONK_MINT, "BONK", 10_000, 5_000),
    ]
    market = MagicMock()
    market.search_pairs = AsyncMock(return_value=pairs)
    market.get_native_price_usd = AsyncMock(return_value=150.0)

    ranked = await resolve_token(market, "BONK", chain="solana", limit=5)

    assert ranked[0].symbol == "BONK"
    assert ranked[0].address == BONK_MINT
    assert ranked[0].real_liquidity == pytest.approx(1_000 * 150.0 + 100_000)
    addresses = {c.address for c in ranked}
    assert FAKE_BONK_MINT not in addresses
    assert "Meme111" not in addresses
    market.search_pairs.assert_awaited_once_with("BONK")


@pytest.mark.asyncio
async def test_resolve_empty_result_is_not_an_error():
    market = MagicMock()
    market.search_pairs = AsyncMock(return_value=[])
    market.get_native_price_usd = AsyncMock(return_value=None)
    assert await resolve_token(market, "NOTHING") == []
