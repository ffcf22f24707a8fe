import importlib # Needed for reloading
import types
from pathlib import Path
from typing import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from pytest import MonkeyPatch

# --- Mock Context Fixture ---

@pytest.fixture(scope="function")
def mock_context() -> MagicMock:
    """Provides a mock MCP Context object (stdio session, no request headers)."""
    return MagicMock()


@pytest.fixture(scope="function")
def make_http_context():
    """Builds a Context whose request carries the given HTTP headers."""

    def _make(**headers: str) -> MagicMock:
        context = MagicMock()
        context.request_context.request.headers = {k.replace("_", "-"): v for k, v in headers.items()}
        return context

    return _make


# --- Patched Server Module Fixture ---

@pytest.fixture(scope="function")
def patched_server_module(
    monkeypatch: MonkeyPatch, wallets_file: Path, mock_ledger: MagicMock
) -> Generator[types.ModuleType, None, None]:
    """
    Points the server at a temporary keystore and provides the reloaded module.

    The ledger, quote provider and market-data client are replaced with mocks so
    every test starts with fresh session overrides and no network access.
    """
    # Use setenv so the reloaded config picks the values up via os.getenv
    monkeypatch.setenv("WALLETS_FILE", str(wallets_file))
    monkeypatch.setenv("DEFAULT_WALLET_ID", "main")
    monkeypatch.setenv("MCP_BEARER_MAP_JSON", '{"tok-alice": "alice-hot"}')
    monkeypatch.delenv("MCP_BEARER_TOKEN", raising=False)

    try:
        import mcp_solana_trader.config
        import mcp_solana_trader.server
        importlib.reload(mcp_solana_trader.config)
        reloaded_server = importlib.reload(mcp_solana_trader.server)
    except Exception as e:
        pytest.fail(f"Failed to reload mcp_solana_trader.server: {e}")

    reloaded_server.ledger = mock_ledger
    reloaded_server.quotes = MagicMock()
    reloaded_server.quotes.get_quote = AsyncMock()
    reloaded_server.quotes.get_swap_transaction = AsyncMock()
    reloaded_server.market = MagicMock()
    reloaded_server.market.search_pairs = AsyncMock(return_value=[])
    reloaded_server.market.get_native_price_usd = AsyncMock(return_value=None)

    yield reloaded_server
