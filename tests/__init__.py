"""
Test Package for MCP Solana Trader

This package contains the test suite for the MCP Solana Trader server.

Test Structure:
- unit/: pure logic (unit conversion, scoring, preflight planning, quote
  shopping, fee percentile, wallets, executor state machine)
- integration/: MCP tools driven end to end against mocked providers
- conftest.py: shared fixtures (keypairs, quote payloads, signed transactions)
"""

# Test package for mcp-solana-trader
