"""Shared async HTTP client and GET with retry/backoff."""

import asyncio
import logging
import random
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}
MAX_RETRY_AFTER = 30.0

# Caps concurrent outbound requests across all providers
HTTP_SEMAPHORE = asyncio.Semaphore(10)

_http_client: Optional[httpx.AsyncClient] = None


def get_http_client(timeout: int = 30) -> httpx.AsyncClient:
    """Process-wide pooled client, created on first use."""
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
        )
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


def _retry_delay(attempt: int, backoff_factor: float, response: Optional[httpx.Response] = None) -> float:
    """Retry-After when the server sends one, jittered exponential backoff otherwise."""
    if response is not None and "Retry-After" in response.headers:
        try:
            return min(float(response.headers["Retry-After"]), MAX_RETRY_AFTER)
        except ValueError:
            pass
    return backoff_factor * (2 ** attempt) + random.uniform(0, 0.2)


async def http_get(
    url: str,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: int = 30,
    retries: int = 3,
    backoff_factor: float = 0.5,
    client: Optional[httpx.AsyncClient] = None,
) -> httpx.Response:
    """
    GET `url`, retrying rate limits, 5xx, timeouts and connection errors.

    Raises:
        httpx.HTTPStatusError: non-retryable status, or retries exhausted
        httpx.TransportError: network failure on the last attempt
    """
    client = client or get_http_client(timeout)
    attempts = max(1, retries)

    async with HTTP_SEMAPHORE:
        for attempt in range(attempts):
            last_attempt = attempt == attempts - 1
            try:
                response = await client.get(url, params=params, headers=headers, timeout=timeout)
            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                if last_attempt:
                    logger.error("GET %s failed after %d attempts: %s", url, attempts, exc)
                    raise
                delay = _retry_delay(attempt, backoff_factor)
                logger.warning("GET %s: %s, retry %d in %.2fs", url, exc, attempt + 1, delay)
                await asyncio.sleep(delay)
                continue

            if response.status_code in RETRYABLE_STATUS and not last_attempt:
                delay = _retry_delay(attempt, backoff_factor, response)
                logger.warning("GET %s: HTTP %d, retry %d in %.2fs", url, response.status_code, attempt + 1, delay)
                await asyncio.sleep(delay)
                continue

            response.raise_for_status()
            return response

    raise httpx.NetworkError(f"GET {url} failed: retries exhausted")
