"""
MCP Solana Trader Package

This package exposes Solana token trading as an MCP (Model Context Protocol)
service. An agent can resolve a token name to a trustworthy mint, preview a
swap, and execute buys and sells from a managed wallet through Jupiter routes.

Main components:
- server.py: MCP tools and request-boundary error handling
- resolver.py: DexScreener-based token resolution and scoring
- preflight.py: balance capping and fee/rent buffers before quoting
- routing.py: ordered quote shopping over counter-mints and slippages
- executor.py: build, sign, submit and confirm one swap transaction
- wallets.py: managed wallet keystore and per-session overrides
"""

# MCP Solana Trader
