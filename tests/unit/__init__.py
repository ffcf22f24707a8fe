# Unit tests for mcp-solana-trader
