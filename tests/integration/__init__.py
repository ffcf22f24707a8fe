"""
Integration Tests for MCP Solana Trader

These tests call the MCP tool functions directly on a freshly reloaded server
module whose ledger, quote provider and market-data collaborators are replaced
with mocks. No test reaches the network or a real RPC node.

Test files:
- conftest.py: keystore, reloaded server module and mocked collaborators
- test_resolve_token.py: token resolution tool
- test_execute_buy.py / test_execute_sell.py: trade execution tools
- test_previews.py: dry-run tools
- test_wallet_tools.py: wallet resolution, session overrides, balances
- test_ledger.py: RPC facade against a mocked AsyncClient
"""

# Integration tests for mcp-solana-trader
