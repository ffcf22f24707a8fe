import json
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import Field

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.utilities.logging import get_logger

from .config import (
    DEFAULT_WALLET_ID,
    MCP_BEARER_MAP_JSON,
    MCP_BEARER_TOKEN,
    RPC_ENDPOINT,
    SOL_DECIMALS,
    SOL_MINT,
    SUPPORTED_CHAIN,
    WALLETS_FILE,
)
from .errors import NO_SESSION, RESOLUTION_EMPTY, TradeError, failure
from .jupiter import JupiterClient
from .ledger import Ledger
from .market_data import MarketDataClient
from .resolver import resolve_token as rank_tokens
from .trading import TradingService, price_per_token
from .units import to_ui
from .wallets import (
    SessionOverrideStore,
    WalletRegistry,
    WalletResolver,
    identity_from_context,
    parse_bearer_map,
)

logger = get_logger(__name__)

# --- Collaborators ---
# Module-level so tests can swap them; a TradingService is built per call.

ledger = Ledger(RPC_ENDPOINT)
quotes = JupiterClient()
market = MarketDataClient()
wallet_registry = WalletRegistry(WALLETS_FILE)
session_overrides = SessionOverrideStore()
wallet_resolver = WalletResolver(
    wallet_registry,
    session_overrides,
    bearer_map=parse_bearer_map(MCP_BEARER_MAP_JSON),
    env_bearer=MCP_BEARER_TOKEN,
    default_wallet_id=DEFAULT_WALLET_ID,
)

# --- Server Setup ---
mcp = FastMCP(name="Solana Trader Server")


def _trading() -> TradingService:
    return TradingService(ledger, quotes)


def _dump(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, indent=2)


async def _guarded(tool: str, body: Callable[[], Awaitable[Dict[str, Any]]], **context_fields: Any) -> str:
    """Runs one tool body and converts every failure into the structured error shape."""
    try:
        return _dump(await body())
    except TradeError as e:
        logger.info(f"{tool} failed: {e.code} {e.detail if e.detail is not None else ''}")
        payload = e.to_dict()
    except Exception as e:
        logger.exception(f"Unexpected error in {tool}: {e}")
        payload = failure(f"{tool}_failed", str(e))
    for key, value in context_fields.items():
        payload.setdefault(key, value)
    return _dump(payload)


def _wallet_for(context: Context, wallet_id: Optional[str]):
    wid = wallet_resolver.resolve(wallet_id, identity_from_context(context))
    return wallet_registry.load_wallet(wid)


# --- MCP Tools: token resolution ---

@mcp.tool()
async def resolve_token(
    context: Context,
    query: str = Field(..., description='Token name or symbol to search for (e.g. "BONK").'),
    chain: str = Field(SUPPORTED_CHAIN, description="Blockchain to search on (only solana is supported)."),
    limit: int = Field(5, ge=1, le=10, description="Maximum number of results to return."),
) -> str:
    """Resolve a token name or symbol to ranked Solana mint addresses using DexScreener pairs."""
    logger.info(f"Received resolve_token request for query={query!r}, chain={chain}, limit={limit}")

    async def run():
        if chain.lower() != SUPPORTED_CHAIN:
            raise TradeError("unsupported_chain", chain)
        ranked = await rank_tokens(market, query, chain=chain, limit=limit)
        results = [c.model_dump() for c in ranked]
        payload: Dict[str, Any] = {"success": True, "query": query, "results": results}
        if not results:
            payload["note"] = RESOLUTION_EMPTY
        return payload

    return await _guarded("resolve_token", run, query=query, results=[])


# --- MCP Tools: previews ---

@mcp.tool()
async def execute_buy_preview(
    context: Context,
    token_mint: str = Field(..., description="Mint address of the token to buy."),
    sol_amount: float = Field(..., gt=0, description="Amount of SOL to spend."),
    slippage_bps: Optional[int] = Field(None, description="Slippage tolerance in basis points (default 100)."),
) -> str:
    """Preview a buy without sending a transaction. Returns expected tokens and price impact."""

    async def run():
        result = await _trading().preview_buy(token_mint, sol_amount, slippage_bps)
        payload = result.to_payload()
        payload["expected_tokens"] = result.amount_out_ui
        payload["price_per_token"] = price_per_token(result.amount_in_ui, result.amount_out_ui, tokens_are_output=True)
        return payload

    return await _guarded("execute_buy_preview", run, action="buy", token_mint=token_mint, preview=True)


@mcp.tool()
async def execute_sell_preview(
    context: Context,
    token_mint: str = Field(..., description="Mint address of the token to sell."),
    token_amount: float = Field(..., ge=0, description="Amount of tokens to sell (UI units)."),
    slippage_bps: Optional[int] = Field(None, description="Slippage tolerance in basis points (default 100)."),
    output_mint: Optional[str] = Field(None, description="Mint to receive (defaults to SOL)."),
) -> str:
    """Preview a sell without sending a transaction. Returns expected output and price impact."""

    async def run():
        result = await _trading().preview_sell(token_mint, token_amount, slippage_bps, output_mint)
        payload = result.to_payload()
        payload["expected_out"] = result.amount_out_ui
        payload["price_per_token"] = price_per_token(result.amount_in_ui, result.amount_out_ui, tokens_are_output=False)
        return payload

    return await _guarded("execute_sell_preview", run, action="sell", token_mint=token_mint, preview=True)


@mcp.tool()
async def execute_sell_all_preview(
    context: Context,
    token_mint: str = Field(..., description="Mint address of the token to sell."),
    wallet_id: Optional[str] = Field(None, description="Managed wallet ID (defaults to the session wallet)."),
    slippage_bps: Optional[int] = Field(None, description="Slippage tolerance in basis points (default 100)."),
) -> str:
    """Preview selling the entire token balance of a managed wallet (no transaction sent)."""

    async def run():
        wallet = _wallet_for(context, wallet_id)
        result = await _trading().preview_sell_all(wallet, token_mint, slippage_bps)
        return result.to_payload()

    return await _guarded("execute_sell_all_preview", run, action="sell_all", token_mint=token_mint, preview=True)


# --- MCP Tools: execution ---

@mcp.tool()
async def execute_buy(
    context: Context,
    token_mint: str = Field(..., description="Mint address of the token to buy."),
    sol_amount: Optional[float] = Field(None, description="Amount of SOL to spend (ExactIn)."),
    out_amount_ui: Optional[float] = Field(None, description="Exact amount of tokens to receive (with use_exact_out)."),
    use_exact_out: bool = Field(False, description="Quote for an exact output amount instead of an exact SOL spend."),
    wallet_id: Optional[str] = Field(None, description="Managed wallet ID (defaults to the session wallet)."),
    input_mints: Optional[List[str]] = Field(None, description="Input mints to try for exact-out buys, in order (defaults to [SOL])."),
    slippages_bps: Optional[List[int]] = Field(None, description="Slippages to try in bps, in order (defaults to [100, 200, 300])."),
    max_price_impact_pct: Optional[float] = Field(None, description="Reject routes whose price impact exceeds this percentage."),
    priority_fee_micro_lamports: Optional[int] = Field(None, description="Compute unit price; estimated from recent fees when omitted."),
) -> str:
    """Execute a token buy from a managed wallet (on-chain)."""
    logger.info(f"Received execute_buy request for {token_mint}, sol_amount={sol_amount}, exact_out={use_exact_out}")

    async def run():
        wallet = _wallet_for(context, wallet_id)
        result = await _trading().buy(
            wallet,
            token_mint,
            sol_amount=sol_amount,
            out_amount_ui=out_amount_ui,
            exact_out=use_exact_out,
            input_mints=input_mints,
            slippages_bps=slippages_bps,
            max_price_impact_pct=max_price_impact_pct,
            priority_fee_micro_lamports=priority_fee_micro_lamports,
        )
        return result.to_payload()

    return await _guarded("execute_buy", run, action="buy", token_mint=token_mint, tx_signature=None)


@mcp.tool()
async def execute_sell(
    context: Context,
    token_mint: str = Field(..., description="Mint address of the token to sell."),
    token_amount: float = Field(..., ge=0, description="Amount of tokens to sell (UI units); capped to the held balance."),
    wallet_id: Optional[str] = Field(None, description="Managed wallet ID (defaults to the session wallet)."),
    output_mints: Optional[List[str]] = Field(None, description="Output mints to try, in order (defaults to [SOL, USDC])."),
    slippages_bps: Optional[List[int]] = Field(None, description="Slippages to try in bps, in order (defaults to [100, 200, 300])."),
    max_price_impact_pct: Optional[float] = Field(None, description="Reject routes whose price impact exceeds this percentage."),
    priority_fee_micro_lamports: Optional[int] = Field(None, description="Compute unit price; estimated from recent fees when omitted."),
) -> str:
    """Execute a token sell from a managed wallet (on-chain)."""
    logger.info(f"Received execute_sell request for {token_mint}, token_amount={token_amount}")

    async def run():
        wallet = _wallet_for(context, wallet_id)
        result = await _trading().sell(
            wallet,
            token_mint,
            token_amount,
            output_mints=output_mints,
            slippages_bps=slippages_bps,
            max_price_impact_pct=max_price_impact_pct,
            priority_fee_micro_lamports=priority_fee_micro_lamports,
        )
        return result.to_payload()

    return await _guarded("execute_sell", run, action="sell", token_mint=token_mint, tx_signature=None)


@mcp.tool()
async def execute_sell_all(
    context: Context,
    token_mint: str = Field(..., description="Mint address of the token to sell."),
    wallet_id: Optional[str] = Field(None, description="Managed wallet ID (defaults to the session wallet)."),
    output_mints: Optional[List[str]] = Field(None, description="Output mints to try, in order (defaults to [SOL, USDC])."),
    slippages_bps: Optional[List[int]] = Field(None, description="Slippages to try in bps, in order (defaults to [100, 200, 300])."),
    max_price_impact_pct: Optional[float] = Field(None, description="Reject routes whose price impact exceeds this percentage."),
    priority_fee_micro_lamports: Optional[int] = Field(None, description="Compute unit price; estimated from recent fees when omitted."),
) -> str:
    """Sell the entire token balance of a managed wallet (on-chain)."""
    logger.info(f"Received execute_sell_all request for {token_mint}")

    async def run():
        wallet = _wallet_for(context, wallet_id)
        result = await _trading().sell_all(
            wallet,
            token_mint,
            output_mints=output_mints,
            slippages_bps=slippages_bps,
            max_price_impact_pct=max_price_impact_pct,
            priority_fee_micro_lamports=priority_fee_micro_lamports,
        )
        return result.to_payload()

    return await _guarded("execute_sell_all", run, action="sell_all", token_mint=token_mint, tx_signature=None)


@mcp.tool()
async def get_transaction_status(
    context: Context,
    tx_hash: str = Field(..., description="Transaction signature to look up."),
) -> str:
    """Check the status of a transaction by signature."""

    async def run():
        status = await ledger.get_signature_status(tx_hash)
        return {"success": True, "tx_hash": tx_hash, **status}

    return await _guarded("get_transaction_status", run, tx_hash=tx_hash)


# --- MCP Tools: wallets ---

@mcp.tool()
async def list_wallet_token_balances(
    context: Context,
    wallet_id: Optional[str] = Field(None, description="Managed wallet ID (defaults to the session wallet)."),
    min_ui: Optional[float] = Field(None, ge=0, description="Hide balances at or below this UI amount."),
    limit: Optional[int] = Field(None, description="Maximum number of rows to return."),
) -> str:
    """List SPL token balances held by a managed wallet, largest first, native SOL on top."""

    async def run():
        wid = wallet_resolver.resolve(wallet_id, identity_from_context(context))
        record = wallet_registry.get(wid)
        threshold = float(min_ui or 0)
        items = []
        for item in await ledger.get_token_accounts(record.public_key):
            if item["amount_ui"] > threshold:
                items.append(item)
        items.sort(key=lambda i: i["amount_ui"], reverse=True)
        lamports = await ledger.get_balance(record.public_key)
        sol_ui = to_ui(lamports, SOL_DECIMALS)
        if float(sol_ui) > threshold:
            items.insert(0, {"mint": SOL_MINT, "ata": "native", "decimals": SOL_DECIMALS,
                             "amount_raw": str(lamports), "amount_ui": float(sol_ui)})
        if limit and limit > 0:
            items = items[:limit]
        return {"success": True, "wallet_id": wid, "wallet_address": record.public_key, "items": items}

    return await _guarded("list_wallet_token_balances", run, items=[])


@mcp.tool()
async def resolve_wallet(context: Context) -> str:
    """Return the effective wallet_id for this caller and where it came from."""
    identity = identity_from_context(context)
    wallet_id, source = wallet_resolver.effective(identity)
    logger.info(f"resolve_wallet session={identity.session_id} wallet={wallet_id or '-'} source={source}")
    return _dump({"success": True, "wallet_id": wallet_id, "source": source})


@mcp.tool()
async def set_session_wallet(
    context: Context,
    wallet_id: Optional[str] = Field(None, description="Wallet ID to use for the rest of this session."),
    clear: bool = Field(False, description="Remove the session override instead of setting one."),
) -> str:
    """Override the effective wallet for this MCP session only."""

    async def run():
        identity = identity_from_context(context)
        if identity.session_id is None:
            raise TradeError(NO_SESSION, "request carries neither mcp-session-id nor x-user-sub")
        if clear:
            session_overrides.clear(identity.session_id)
            return {"success": True, "wallet_id": None, "cleared": True}
        if not wallet_id:
            raise TradeError("missing_wallet_id")
        # Ownership is checked exactly as for an explicit wallet_id
        wid = wallet_resolver.resolve(wallet_id, identity)
        session_overrides.set(identity.session_id, wid)
        logger.info(f"Session {identity.session_id} now uses wallet {wid}")
        return {"success": True, "wallet_id": wid, "cleared": False}

    return await _guarded("set_session_wallet", run, wallet_id=wallet_id)


def main() -> None:
    logger.info(f"Using RPC Endpoint: {RPC_ENDPOINT}")
    logger.info(f"Managed wallets file: {WALLETS_FILE}")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
