import json
import types
from typing import Any, Dict
from unittest.mock import MagicMock

import pytest
from solders.keypair import Keypair

from mcp_solana_trader.config import SOL_MINT, USDC_MINT

# Mark all tests in this module as asyncio
pytestmark = pytest.mark.asyncio


async def call_tool(server: types.ModuleType, tool: str, context: MagicMock, **overrides: Any) -> Dict[str, Any]:
    args = dict(
        wallet_id=None,
        output_mints=None,
        slippages_bps=None,
        max_price_impact_pct=None,
        priority_fee_micro_lamports=None,
    )
    args.update(overrides)
    return json.loads(await getattr(server, tool)(context=context, **args))


@pytest.fixture
def swap_ready(patched_server_module, unsigned_swap_bytes, trader_keypair: Keypair):
    patched_server_module.quotes.get_swap_transaction.return_value = unsigned_swap_bytes(trader_keypair)
    return patched_server_module


# --- execute_sell ---

async def test_execute_sell_success(swap_ready, mock_context, make_quote, token_mint):
    server = swap_ready
    server.ledger.get_token_balance.return_value = 10_000_000
    server.quotes.get_quote.return_value = make_quote(token_mint, SOL_MINT, 2_500_000, 12_000_000)

    result = await call_tool(server, "execute_sell", mock_context, token_mint=token_mint, token_amount=2.5)

    assert result["success"] is True
    assert result["action"] == "sell"
    assert result["tokens_sold_ui"] == "2.5"
    assert result["out_amount_ui"] == "0.012"
    assert result["out_mint"] == SOL_MINT
    assert result["capped"] is False
    server.quotes.get_quote.assert_awaited_once_with(token_mint, SOL_MINT, 2_500_000, 100, "ExactIn")


async def test_execute_sell_over_balance_sells_exact_balance(swap_ready, mock_context, make_quote, token_mint):
    server = swap_ready
    server.ledger.get_token_balance.return_value = 1_234_567
    server.quotes.get_quote.return_value = make_quote(token_mint, SOL_MINT, 1_234_567, 9_000_000)

    result = await call_tool(server, "execute_sell", mock_context, token_mint=token_mint, token_amount=1_000)

    assert result["success"] is True
    assert result["capped"] is True
    assert result["tokens_sold_ui"] == "1.234567"
    assert server.quotes.get_quote.await_args.args[2] == 1_234_567


async def test_execute_sell_falls_through_to_usdc(swap_ready, mock_context, make_quote, token_mint):
    server = swap_ready
    server.ledger.get_token_balance.return_value = 5_000_000
    server.quotes.get_quote.side_effect = [
        make_quote(token_mint, SOL_MINT, 5_000_000, 1, impact=40.0, slippage_bps=100),
        make_quote(token_mint, SOL_MINT, 5_000_000, 1, impact=35.0, slippage_bps=300),
        make_quote(token_mint, USDC_MINT, 5_000_000, 4_900_000, impact=1.0, slippage_bps=100),
    ]

    result = await call_tool(
        server, "execute_sell", mock_context,
        token_mint=token_mint, token_amount=5, slippages_bps=[100, 300], max_price_impact_pct=2.0,
    )

    assert result["success"] is True
    assert result["out_mint"] == USDC_MINT
    assert result["out_amount_ui"] == "4.9"
    assert result["slippage_bps_used"] == 100


async def test_execute_sell_without_holdings(patched_server_module, mock_context, token_mint):
    server = patched_server_module
    server.ledger.get_token_balance.return_value = 0

    result = await call_tool(server, "execute_sell", mock_context, token_mint=token_mint, token_amount=3)

    assert result["success"] is False
    assert result["error"] == "insufficient_token_balance"
    assert result["tokens_sold_ui"] == "0"
    server.quotes.get_quote.assert_not_awaited()


async def test_execute_sell_confirmation_failure_keeps_signature(swap_ready, mock_context, make_quote, token_mint):
    server = swap_ready
    server.ledger.get_token_balance.return_value = 10_000_000
    server.quotes.get_quote.return_value = make_quote(token_mint, SOL_MINT, 1_000_000, 5_000)
    server.ledger.confirm_transaction.return_value = {"InstructionError": [2, {"Custom": 1}]}

    result = await call_tool(server, "execute_sell", mock_context, token_mint=token_mint, token_amount=1)

    assert result["success"] is False
    assert result["error"] == "confirmation_error"
    assert result["detail"]["signature"] == "5igSigTest"


async def test_execute_sell_unknown_decimals_default_to_nine(swap_ready, mock_context, make_quote, token_mint):
    server = swap_ready
    server.ledger.get_parsed_account.side_effect = RuntimeError("account not parsed")
    server.ledger.get_token_balance.return_value = 10 ** 12
    server.quotes.get_quote.return_value = make_quote(token_mint, SOL_MINT, 2 * 10 ** 9, 1_000)

    result = await call_tool(server, "execute_sell", mock_context, token_mint=token_mint, token_amount=2)

    assert result["success"] is True
    assert server.quotes.get_quote.await_args.args[2] == 2 * 10 ** 9


# --- execute_sell_all ---

async def test_execute_sell_all_sells_whole_balance(swap_ready, mock_context, make_quote, token_mint):
    server = swap_ready
    server.ledger.get_token_balance.return_value = 987_654_321
    server.quotes.get_quote.return_value = make_quote(token_mint, SOL_MINT, 987_654_321, 3_000_000_000)

    result = await call_tool(server, "execute_sell_all", mock_context, token_mint=token_mint)

    assert result["success"] is True
    assert result["action"] == "sell_all"
    assert result["tokens_sold_ui"] == "987.654321"
    assert result["out_amount_ui"] == "3"
    assert server.quotes.get_quote.await_args.args[2] == 987_654_321


async def test_execute_sell_all_zero_balance(patched_server_module, mock_context, token_mint):
    server = patched_server_module
    server.ledger.get_token_balance.return_value = 0

    result = await call_tool(server, "execute_sell_all", mock_context, token_mint=token_mint)

    assert result["success"] is False
    assert result["tokens_sold_ui"] == "0"
    assert result["error"] == "insufficient_token_balance"
    server.quotes.get_quote.assert_not_awaited()
    server.ledger.send_raw_transaction.assert_not_awaited()


# --- get_transaction_status ---

async def test_get_transaction_status(patched_server_module, mock_context):
    server = patched_server_module
    server.ledger.get_signature_status.return_value = {
        "status": "finalized", "confirmed": True, "error": None, "slot": 321,
    }

    result = json.loads(await server.get_transaction_status(context=mock_context, tx_hash="5igSigTest"))

    assert result == {
        "success": True, "tx_hash": "5igSigTest", "status": "finalized", "confirmed": True, "error": None, "slot": 321,
    }


async def test_get_transaction_status_rpc_failure(patched_server_module, mock_context):
    server = patched_server_module
    server.ledger.get_signature_status.side_effect = ValueError("invalid signature")

    result = json.loads(await server.get_transaction_status(context=mock_context, tx_hash="bad"))

    assert result["success"] is False
    assert result["error"] == "get_transaction_status_failed"
    assert result["tx_hash"] == "bad"
