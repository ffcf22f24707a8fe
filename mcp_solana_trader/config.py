import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from the .env file at the repository root
dotenv_path = Path(__file__).parent.parent / '.env'
load_dotenv(dotenv_path=dotenv_path)


def _default_rpc_endpoint() -> str:
    helius_key = os.getenv("HELIUS_API_KEY")
    if helius_key:
        return f"https://mainnet.helius-rpc.com/?api-key={helius_key}"
    return "https://api.mainnet-beta.solana.com"


RPC_ENDPOINT = os.getenv("SOLANA_RPC_ENDPOINT") or _default_rpc_endpoint()
JUPITER_API_BASE = os.getenv("JUPITER_API_BASE", "https://quote-api.jup.ag/v6").rstrip("/")
DEXSCREENER_API_BASE = os.getenv("DEXSCREENER_API_BASE", "https://api.dexscreener.com").rstrip("/")
COINGECKO_API_BASE = os.getenv("COINGECKO_API_BASE", "https://api.coingecko.com/api/v3").rstrip("/")
EXPLORER_TX_URL = os.getenv("EXPLORER_TX_URL", "https://solscan.io/tx/")

HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "15"))
READ_RETRY_ATTEMPTS = int(os.getenv("READ_RETRY_ATTEMPTS", "3"))
READ_RETRY_BACKOFF_SECONDS = float(os.getenv("READ_RETRY_BACKOFF_SECONDS", "0.5"))
SEND_MAX_RETRIES = int(os.getenv("SEND_MAX_RETRIES", "3"))

PRIORITY_FEE_BASE_MICROLAMPORTS = int(os.getenv("PRIORITY_FEE_BASE_MICROLAMPORTS", "10000"))
PRIORITY_FEE_PERCENTILE = float(os.getenv("PRIORITY_FEE_PERCENTILE", "0.9"))
PRIORITY_FEE_CEILING_MICROLAMPORTS = int(os.getenv("PRIORITY_FEE_CEILING_MICROLAMPORTS", "100000"))

WALLETS_FILE = Path(__file__).parent.parent / os.getenv("WALLETS_FILE", "data/wallets.json")
DEFAULT_WALLET_ID = os.getenv("DEFAULT_WALLET_ID", "")
MCP_BEARER_MAP_JSON = os.getenv("MCP_BEARER_MAP_JSON", "")
MCP_BEARER_TOKEN = os.getenv("MCP_BEARER_TOKEN", "")

# --- Chain constants ---
SUPPORTED_CHAIN = "solana"
SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzyXH8m9GZ4HCS4ZLxLtZ8"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"
SOL_DECIMALS = 9
