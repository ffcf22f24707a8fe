from typing import Any, Dict, List, Optional, Tuple

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solana.rpc.models import TokenAccountOpts, TxOpts
from solders.pubkey import Pubkey
from solders.rpc.responses import GetBalanceResp, GetTokenAccountBalanceResp, GetSignatureStatusesResp
from solders.signature import Signature
from solders.transaction_status import TransactionConfirmationStatus
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from mcp.server.fastmcp.utilities.logging import get_logger

from .config import RPC_ENDPOINT, SEND_MAX_RETRIES
from .http_utils import request_json

logger = get_logger(__name__)

# Pairs, not a dict: solders enum members are not hashable
CONFIRMATION_STATUS_NAMES = (
    (TransactionConfirmationStatus.Processed, "processed"),
    (TransactionConfirmationStatus.Confirmed, "confirmed"),
    (TransactionConfirmationStatus.Finalized, "finalized"),
)


def confirmation_status_name(status) -> str:
    return next((name for member, name in CONFIRMATION_STATUS_NAMES if member == status), "unknown")


def _as_pubkey(value) -> Pubkey:
    return value if isinstance(value, Pubkey) else Pubkey.from_string(str(value))


def _is_missing_account(err: Exception) -> bool:
    err_str = str(err)
    return "Account not found" in err_str or "could not find account" in err_str


class Ledger:
    """Thin async facade over the Solana RPC node.

    A fresh ``AsyncClient`` is opened per call; nothing here holds state
    between requests.
    """

    def __init__(self, endpoint: str = RPC_ENDPOINT, send_max_retries: int = SEND_MAX_RETRIES):
        self.endpoint = endpoint
        self.send_max_retries = send_max_retries

    def _client(self) -> AsyncClient:
        return AsyncClient(self.endpoint, commitment=Confirmed)

    async def get_balance(self, owner) -> int:
        async with self._client() as client:
            balance_resp: GetBalanceResp = await client.get_balance(_as_pubkey(owner), commitment=Confirmed)
            logger.debug(f"Balance of {owner}: {balance_resp.value} lamports")
            return int(balance_resp.value)

    async def get_token_balance(self, owner, mint) -> int:
        """Raw balance of ``owner``'s associated token account; 0 when the ATA does not exist."""
        ata = get_associated_token_address(_as_pubkey(owner), _as_pubkey(mint))
        async with self._client() as client:
            try:
                token_resp: GetTokenAccountBalanceResp = await client.get_token_account_balance(ata, commitment=Confirmed)
            except RPCException as rpc_err:
                if _is_missing_account(rpc_err):
                    logger.debug(f"ATA {ata} (owner {owner}, mint {mint}) not found. Assuming 0 balance.")
                    return 0
                raise
            amount = int(token_resp.value.amount)  # Amount is a string in the RPC response
            logger.debug(f"Token balance of ATA {ata}: {amount} base units")
            return amount

    async def account_exists(self, address) -> bool:
        async with self._client() as client:
            resp = await client.get_account_info(_as_pubkey(address), commitment=Confirmed)
            return resp.value is not None

    async def ata_exists(self, owner, mint) -> bool:
        return await self.account_exists(get_associated_token_address(_as_pubkey(owner), _as_pubkey(mint)))

    async def get_parsed_account(self, address) -> Optional[Dict[str, Any]]:
        """The ``parsed`` section of a jsonParsed account, or None when absent."""
        async with self._client() as client:
            resp = await client.get_account_info_json_parsed(_as_pubkey(address), commitment=Confirmed)
            if resp.value is None:
                return None
            return getattr(resp.value.data, "parsed", None)

    async def get_recent_prioritization_fees(self) -> List[int]:
        # Raw JSON-RPC; the typed client does not expose this method
        payload = {"jsonrpc": "2.0", "id": 1, "method": "getRecentPrioritizationFees", "params": [[]]}
        data = await request_json("POST", self.endpoint, json_body=payload)
        if "error" in data:
            raise RuntimeError(f"getRecentPrioritizationFees failed: {data['error']}")
        result = data.get("result")
        if not isinstance(result, list):
            raise RuntimeError(f"Unexpected getRecentPrioritizationFees response: {result!r}")
        return [int(item.get("prioritizationFee", 0)) for item in result if isinstance(item, dict)]

    async def get_latest_blockhash(self) -> Tuple[str, int]:
        async with self._client() as client:
            resp = await client.get_latest_blockhash(commitment=Confirmed)
            return str(resp.value.blockhash), int(resp.value.last_valid_block_height)

    async def send_raw_transaction(self, raw: bytes, last_valid_block_height: Optional[int] = None) -> str:
        opts = TxOpts(
            skip_preflight=False,
            preflight_commitment=Confirmed,
            max_retries=self.send_max_retries,
            last_valid_block_height=last_valid_block_height,
        )
        async with self._client() as client:
            resp = await client.send_raw_transaction(raw, opts=opts)
            return str(resp.value)

    async def confirm_transaction(self, signature: str, last_valid_block_height: Optional[int] = None) -> Optional[Any]:
        """Blocks until ``signature`` is confirmed; returns the on-chain error, if any.

        Raises when the validity window expires before confirmation.
        """
        async with self._client() as client:
            resp: GetSignatureStatusesResp = await client.confirm_transaction(
                Signature.from_string(signature),
                commitment=Confirmed,
                last_valid_block_height=last_valid_block_height,
            )
            status = resp.value[0] if resp.value else None
            return status.err if status is not None else None

    async def get_signature_status(self, signature: str) -> Dict[str, Any]:
        async with self._client() as client:
            resp = await client.get_signature_statuses([Signature.from_string(signature)], search_transaction_history=True)
            status = resp.value[0] if resp.value else None
            if status is None:
                return {"status": "unknown", "confirmed": False, "error": None, "slot": None}
            name = confirmation_status_name(status.confirmation_status)
            return {
                "status": name,
                "confirmed": name in ("confirmed", "finalized"),
                "error": str(status.err) if status.err is not None else None,
                "slot": status.slot,
            }

    async def get_token_accounts(self, owner) -> List[Dict[str, Any]]:
        """Parsed SPL token accounts held by ``owner``."""
        async with self._client() as client:
            resp = await client.get_token_accounts_by_owner_json_parsed(
                _as_pubkey(owner), TokenAccountOpts(program_id=TOKEN_PROGRAM_ID), commitment=Confirmed
            )
        items = []
        for keyed in resp.value or []:
            info = (getattr(keyed.account.data, "parsed", None) or {}).get("info") or {}
            token_amount = info.get("tokenAmount")
            if not token_amount:
                continue
            items.append({
                "mint": str(info.get("mint", "")),
                "ata": str(keyed.pubkey),
                "decimals": int(token_amount.get("decimals") or 0),
                "amount_raw": str(token_amount.get("amount") or "0"),
                "amount_ui": float(token_amount.get("uiAmount") or 0),
            })
        return items
