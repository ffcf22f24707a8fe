import asyncio
from typing import Any, Dict, Optional

import httpx
from mcp.server.fastmcp.utilities.logging import get_logger

from .config import HTTP_TIMEOUT_SECONDS, READ_RETRY_ATTEMPTS, READ_RETRY_BACKOFF_SECONDS

logger = get_logger(__name__)

RETRYABLE_STATUS = {429}


async def request_json(
    method: str,
    url: str,
    *,
    params: Optional[Dict[str, Any]] = None,
    json_body: Optional[Any] = None,
    attempts: int = READ_RETRY_ATTEMPTS,
    backoff_seconds: float = READ_RETRY_BACKOFF_SECONDS,
    timeout: float = HTTP_TIMEOUT_SECONDS,
) -> Any:
    """Sends one JSON request, retrying rate limits and transport failures.

    Only idempotent reads should pass ``attempts > 1``. The final failure is
    raised to the caller unchanged.
    """
    attempts = max(1, attempts)
    async with httpx.AsyncClient(timeout=timeout, headers={"accept": "application/json"}) as client:
        for attempt in range(1, attempts + 1):
            try:
                response = await client.request(method, url, params=params, json=json_body)
            except httpx.TransportError as e:
                logger.warning(f"{method} {url} transport error (attempt {attempt}/{attempts}): {e}")
                if attempt == attempts:
                    raise
                await asyncio.sleep(backoff_seconds)
                continue
            if response.status_code in RETRYABLE_STATUS and attempt < attempts:
                logger.warning(f"{method} {url} rate limited (attempt {attempt}/{attempts}), retrying")
                await asyncio.sleep(backoff_seconds)
                continue
            response.raise_for_status()
            return response.json()
    raise httpx.HTTPError(f"{method} {url} failed after {attempts} attempts")
