import json
from pathlib import Path
from typing import Any, Callable, Dict, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from mcp_solana_trader.config import SOL_MINT
from mcp_solana_trader.models import Quote

# --- Keys & wallets ---

@pytest.fixture(scope="function")
def trader_keypair() -> Keypair:
    return Keypair()


@pytest.fixture(scope="function")
def token_mint() -> str:
    """A random, valid mint address standing in for an SPL token."""
    return str(Pubkey.new_unique())


@pytest.fixture(scope="function")
def wallets_file(tmp_path_factory: pytest.TempPathFactory, trader_keypair: Keypair) -> Path:
    """Keystore with an operator wallet ("main") and an owned one ("alice-hot")."""
    other = Keypair()
    file_path = tmp_path_factory.mktemp("trader_data") / "wallets.json"
    data = {
        "wallets": [
            {
                "wallet_id": "main",
                "public_key": str(trader_keypair.pubkey()),
                "label": "operator",
                "secret_key": json.dumps(list(bytes(trader_keypair))),
            },
            {
                "wallet_id": "alice-hot",
                "public_key": str(other.pubkey()),
                "secret_key": str(other),
                "owners": ["alice"],
            },
        ]
    }
    file_path.write_text(json.dumps(data))
    return file_path


# --- Quotes ---

@pytest.fixture(scope="function")
def make_quote() -> Callable[..., Quote]:
    """Builds a Quote the way the aggregator client would from a response body."""

    def _make(
        input_mint: str,
        output_mint: str,
        in_amount: int,
        out_amount: int,
        impact: Optional[float] = 0.1,
        slippage_bps: int = 100,
        swap_mode: str = "ExactIn",
    ) -> Quote:
        data: Dict[str, Any] = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "inAmount": str(in_amount),
            "outAmount": str(out_amount),
            "priceImpactPct": None if impact is None else str(impact),
            "slippageBps": slippage_bps,
            "swapMode": swap_mode,
            "routePlan": [],
        }
        return Quote.from_response(data, slippage_bps, swap_mode)

    return _make


@pytest.fixture(scope="function")
def unsigned_swap_bytes() -> Callable[[Keypair], bytes]:
    """Serialized transaction whose fee payer is ``payer``, like an aggregator swap response."""

    def _build(payer: Keypair) -> bytes:
        instruction = transfer(
            TransferParams(from_pubkey=payer.pubkey(), to_pubkey=Pubkey.new_unique(), lamports=1)
        )
        message = MessageV0.try_compile(payer.pubkey(), [instruction], [], Hash.default())
        # The trade path discards these signatures and re-signs the message
        return bytes(VersionedTransaction(message, [payer]))

    return _build


# --- Ledger ---

@pytest.fixture(scope="function")
def mock_ledger() -> MagicMock:
    """Ledger double with a funded wallet, existing ATAs and a quiet fee market."""
    ledger = MagicMock()
    ledger.get_balance = AsyncMock(return_value=1_000_000_000)
    ledger.get_token_balance = AsyncMock(return_value=0)
    ledger.ata_exists = AsyncMock(return_value=True)

    async def parsed_account(mint):
        if mint == SOL_MINT:
            return {"info": {"decimals": 9}}
        return {"info": {"decimals": 6}}

    ledger.get_parsed_account = AsyncMock(side_effect=parsed_account)
    ledger.get_recent_prioritization_fees = AsyncMock(return_value=[])
    ledger.get_latest_blockhash = AsyncMock(return_value=(str(Hash.default()), 1234))
    ledger.send_raw_transaction = AsyncMock(return_value="5igSigTest")
    ledger.confirm_transaction = AsyncMock(return_value=None)
    ledger.get_signature_status = AsyncMock()
    ledger.get_token_accounts = AsyncMock(return_value=[])
    return ledger
