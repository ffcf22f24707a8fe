"""
Managed wallets: keystore, per-session overrides and request identity.

The keystore is a JSON file of wallet records. Key material is decoded only
when a trade needs to sign and is never logged or returned.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import base58
from pydantic import BaseModel, Field
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from mcp.server.fastmcp.utilities.logging import get_logger

from .errors import FORBIDDEN_WALLET, NO_WALLET, WALLET_NOT_FOUND, TradeError

logger = get_logger(__name__)

STDIO_SESSION = "stdio"

# --- Data Structures ---

class WalletRecord(BaseModel):
    wallet_id: str
    public_key: str
    label: Optional[str] = None
    secret_key: str = Field("", repr=False)  # base58 string or JSON byte array
    owners: List[str] = Field(default_factory=list)  # caller subjects allowed to use this wallet


@dataclass(frozen=True)
class LoadedWallet:
    wallet_id: str
    public_key: Pubkey
    keypair: Keypair = field(repr=False)


@dataclass(frozen=True)
class RequestIdentity:
    session_id: Optional[str] = STDIO_SESSION  # None: HTTP caller with no session to key overrides by
    subject: Optional[str] = None
    issuer: Optional[str] = None
    bearer: Optional[str] = None


def _parse_secret(raw: str) -> Keypair:
    value = raw.strip()
    if value.startswith("["):
        arr = json.loads(value)
        if not isinstance(arr, list):
            raise ValueError("secret_key JSON must be an integer array.")
        return Keypair.from_bytes(bytes(arr))
    return Keypair.from_bytes(base58.b58decode(value))


# --- Persistence ---

class WalletRegistry:
    """Read-only view of the wallet keystore file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._records: Dict[str, WalletRecord] = {}
        self.reload()

    def reload(self) -> None:
        """Loads wallet records from the JSON file."""
        try:
            if self.path.exists():
                with open(self.path, 'r') as f:
                    data = json.load(f)
                rows = data.get("wallets", []) if isinstance(data, dict) else data
                self._records = {r.wallet_id: r for r in (WalletRecord(**row) for row in rows)}
                logger.info(f"Loaded {len(self._records)} wallets from {self.path}")
            else:
                logger.info(f"Wallet file {self.path} not found, no managed wallets available.")
                self._records = {}
        except (json.JSONDecodeError, IOError, TypeError, ValueError) as e:
            logger.error(f"Error loading wallets from {self.path}: {e}. Continuing without wallets.")
            self._records = {}

    def get(self, wallet_id: str) -> Optional[WalletRecord]:
        return self._records.get(str(wallet_id))

    def records(self) -> List[WalletRecord]:
        return list(self._records.values())

    def load_wallet(self, wallet_id: str) -> LoadedWallet:
        record = self.get(wallet_id)
        if record is None:
            raise TradeError(WALLET_NOT_FOUND, f"unknown wallet_id {wallet_id}")
        try:
            keypair = _parse_secret(record.secret_key)
        except Exception as e:
            logger.error(f"Wallet {wallet_id} has unreadable key material ({type(e).__name__})")
            raise TradeError(WALLET_NOT_FOUND, f"wallet {wallet_id} has no usable key") from None
        if str(keypair.pubkey()) != record.public_key:
            logger.error(f"Wallet {wallet_id} key does not match its public key")
            raise TradeError(WALLET_NOT_FOUND, f"wallet {wallet_id} has no usable key")
        return LoadedWallet(wallet_id=record.wallet_id, public_key=keypair.pubkey(), keypair=keypair)


class SessionOverrideStore:
    """Wallet overrides keyed by MCP session id."""

    def __init__(self):
        self._overrides: Dict[str, str] = {}

    def get(self, session_id: str) -> Optional[str]:
        return self._overrides.get(session_id)

    def set(self, session_id: str, wallet_id: str) -> None:
        self._overrides[session_id] = wallet_id

    def clear(self, session_id: str) -> bool:
        return self._overrides.pop(session_id, None) is not None


# --- Identity & resolution ---

def _request_headers(context: Any) -> Dict[str, str]:
    try:
        request = context.request_context.request
    except (AttributeError, ValueError, LookupError):
        return {}
    headers = getattr(request, "headers", None)
    if not isinstance(headers, Mapping):
        return {}
    return {str(k).lower(): str(v) for k, v in headers.items()}


def bearer_from_headers(headers: Dict[str, str]) -> Optional[str]:
    for name in ("x-user-token", "x-authorization", "authorization"):
        value = headers.get(name, "").strip()
        if value.startswith("Bearer "):
            value = value[7:].strip()
        if value:
            return value
    return headers.get("x-api-key", "").strip() or None


def _session_key(headers: Dict[str, str]) -> Optional[str]:
    if not headers:
        return STDIO_SESSION
    session_id = headers.get("mcp-session-id")
    if session_id:
        return session_id
    subject = headers.get("x-user-sub")
    return f"user:{subject}" if subject else None


def identity_from_context(context: Any) -> RequestIdentity:
    headers = _request_headers(context)
    return RequestIdentity(
        session_id=_session_key(headers),
        subject=headers.get("x-user-sub") or None,
        issuer=headers.get("x-user-issuer") or None,
        bearer=bearer_from_headers(headers),
    )


def parse_bearer_map(raw: str) -> Dict[str, str]:
    """JSON object or ``token:wallet,token:wallet`` pairs."""
    raw = (raw or "").strip()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
        if isinstance(data, dict):
            return {str(k): str(v) for k, v in data.items()}
    except json.JSONDecodeError:
        pass
    out = {}
    for part in raw.split(","):
        token, _, wallet_id = part.partition(":")
        if token.strip() and wallet_id.strip():
            out[token.strip()] = wallet_id.strip()
    return out


class WalletResolver:
    def __init__(
        self,
        registry: WalletRegistry,
        overrides: SessionOverrideStore,
        bearer_map: Optional[Dict[str, str]] = None,
        env_bearer: str = "",
        default_wallet_id: str = "",
    ):
        self.registry = registry
        self.overrides = overrides
        self.bearer_map = bearer_map or {}
        self.env_bearer = env_bearer
        self.default_wallet_id = default_wallet_id

    def effective(self, identity: RequestIdentity) -> Tuple[Optional[str], str]:
        """(wallet_id, source) for a request that named no wallet."""
        override = self.overrides.get(identity.session_id) if identity.session_id else None
        if override:
            return override, "session"
        if identity.bearer and identity.bearer in self.bearer_map:
            return self.bearer_map[identity.bearer], "bearer"
        if self.env_bearer and self.env_bearer in self.bearer_map:
            return self.bearer_map[self.env_bearer], "bearer"
        if self.default_wallet_id:
            return self.default_wallet_id, "env"
        return None, "none"

    def owns(self, wallet_id: str, identity: RequestIdentity) -> bool:
        record = self.registry.get(wallet_id)
        if record is None:
            return False
        if not record.owners:
            return True
        if identity.subject and identity.subject in record.owners:
            return True
        return bool(identity.bearer and self.bearer_map.get(identity.bearer) == wallet_id)

    def resolve(self, explicit_wallet_id: Optional[str], identity: RequestIdentity) -> str:
        """Wallet id for this request, checked for existence and ownership."""
        if explicit_wallet_id:
            wallet_id, source = str(explicit_wallet_id), "explicit"
        else:
            wallet_id, source = self.effective(identity)
        if not wallet_id:
            raise TradeError(NO_WALLET)
        if self.registry.get(wallet_id) is None:
            raise TradeError(WALLET_NOT_FOUND, f"unknown wallet_id {wallet_id}")
        if source == "explicit" and not self.owns(wallet_id, identity):
            raise TradeError(FORBIDDEN_WALLET, wallet_id=wallet_id)
        logger.debug(f"Session {identity.session_id} using wallet {wallet_id} (source={source})")
        return wallet_id
