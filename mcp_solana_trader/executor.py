from enum import Enum
from typing import Tuple

from solders.transaction import VersionedTransaction

from mcp.server.fastmcp.utilities.logging import get_logger

from .config import EXPLORER_TX_URL
from .errors import BUILD_ERROR, CONFIRMATION_ERROR, SUBMIT_ERROR, TradeError
from .models import Quote
from .wallets import LoadedWallet

logger = get_logger(__name__)


class TradeState(str, Enum):
    PREFLIGHTED = "preflighted"
    QUOTED = "quoted"
    BUILT = "built"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


def explorer_url(signature: str, base: str = EXPLORER_TX_URL) -> str:
    return f"{base}{signature}"


class TradeExecutor:
    """Builds, signs, submits and confirms one swap from an already chosen quote.

    Nothing here re-quotes or re-signs: a failure after submission is reported,
    never retried, so a partially applied transaction cannot be doubled.
    """

    def __init__(self, ledger, quotes):
        self.ledger = ledger
        self.quotes = quotes
        self.state = TradeState.PREFLIGHTED

    def _advance(self, state: TradeState, detail: str = "") -> None:
        self.state = state
        logger.info(f"Trade -> {state.value}{': ' + detail if detail else ''}")

    def _fail(self, code: str, detail) -> TradeError:
        self._advance(TradeState.FAILED, code)
        return TradeError(code, detail)

    async def build(self, quote: Quote, wallet: LoadedWallet, priority_fee_micro_lamports: int) -> VersionedTransaction:
        try:
            raw = await self.quotes.get_swap_transaction(quote, str(wallet.public_key), priority_fee_micro_lamports)
            transaction = VersionedTransaction.from_bytes(raw)
        except Exception as e:
            logger.exception(f"Building swap transaction failed: {e}")
            raise self._fail(BUILD_ERROR, str(e)) from e
        self._advance(TradeState.BUILT, f"priority fee {priority_fee_micro_lamports} micro-lamports")
        return transaction

    def sign(self, transaction: VersionedTransaction, wallet: LoadedWallet) -> VersionedTransaction:
        try:
            signed = VersionedTransaction(transaction.message, [wallet.keypair])
        except Exception as e:
            # Only the exception type: the message could echo key bytes
            logger.error(f"Signing failed for wallet {wallet.wallet_id}: {type(e).__name__}")
            raise self._fail(BUILD_ERROR, f"signing failed: {type(e).__name__}") from None
        self._advance(TradeState.SIGNED, f"wallet {wallet.wallet_id}")
        return signed

    async def submit(self, signed: VersionedTransaction) -> Tuple[str, int]:
        try:
            _, last_valid_block_height = await self.ledger.get_latest_blockhash()
            signature = await self.ledger.send_raw_transaction(bytes(signed), last_valid_block_height)
        except Exception as e:
            logger.exception(f"Submitting transaction failed: {e}")
            raise self._fail(SUBMIT_ERROR, str(e)) from e
        self._advance(TradeState.SUBMITTED, signature)
        return signature, last_valid_block_height

    async def confirm(self, signature: str, last_valid_block_height: int) -> None:
        try:
            err = await self.ledger.confirm_transaction(signature, last_valid_block_height)
        except Exception as e:
            logger.exception(f"Confirmation of {signature} failed: {e}")
            raise self._fail(CONFIRMATION_ERROR, {"signature": signature, "error": str(e)}) from e
        if err is not None:
            logger.error(f"Transaction {signature} failed on-chain: {err}")
            raise self._fail(CONFIRMATION_ERROR, {"signature": signature, "error": str(err)})
        self._advance(TradeState.CONFIRMED, signature)

    async def execute(self, quote: Quote, wallet: LoadedWallet, priority_fee_micro_lamports: int) -> str:
        """Runs Preflighted -> Confirmed for a quote chosen by quote shopping; returns the signature."""
        self._advance(TradeState.QUOTED, f"{quote.input_mint} -> {quote.output_mint} at {quote.slippage_bps} bps")
        transaction = await self.build(quote, wallet, priority_fee_micro_lamports)
        signed = self.sign(transaction, wallet)
        signature, last_valid_block_height = await self.submit(signed)
        await self.confirm(signature, last_valid_block_height)
        return signature
