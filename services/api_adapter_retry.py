"""
API Adapter with Bounded Retry
Base class for outbound provider calls: JSON over HTTP with exponential
backoff and jitter between attempts
"""

import asyncio
import json
import logging
import random
import time
from typing import Any, Callable, Dict, Optional

import aiohttp

from utils.exception_handler import PaymentProviderError

logger = logging.getLogger(__name__)


def compute_backoff_delay(
    attempt: int,
    base: float,
    cap: Optional[float] = None,
    jitter_ratio: float = 0.3,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay in seconds before retry number ``attempt + 1``.

    base * 2**attempt plus uniform jitter of up to ``jitter_ratio`` of that
    backoff, clamped to ``cap`` when one is given.
    """
    backoff = base * (2 ** attempt)
    delay = backoff + rng() * jitter_ratio * backoff
    if cap is not None:
        delay = min(delay, cap)
    return delay


def decode_provider_response(status: int, text: str) -> Any:
    """Validate a raw provider response and return its parsed JSON body"""
    if not 200 <= status < 300:
        raise PaymentProviderError(
            f"Request failed: {status} - {text}", status_code=status, response_text=text
        )
    if not text or not text.strip():
        raise PaymentProviderError("Empty response received", status_code=status)
    try:
        return json.loads(text)
    except ValueError:
        raise PaymentProviderError(
            f"Invalid JSON response: {text}", status_code=status, response_text=text
        )


class APIAdapterRetry:
    """
    Base class for external API integrations with bounded retry

    Provides:
    - JSON request/response handling over aiohttp
    - Up to max_retries + 1 attempts with exponential backoff and jitter
    - Consistent logging per attempt
    """

    def __init__(
        self,
        service_name: str,
        timeout: int = 30,
        max_retries: int = 2,
        backoff_base: float = 0.5,
        backoff_cap: Optional[float] = None,
    ):
        self.service_name = service_name
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap

    async def _send_once(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Single HTTP attempt; raises PaymentProviderError on any failure"""
        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as session:
                async with session.request(
                    method, url, headers=headers, json=payload
                ) as response:
                    text = await response.text()
                    logger.info(f"📡 {self.service_name.upper()}_RESPONSE: status {response.status}")
                    return decode_provider_response(response.status, text)
        except aiohttp.ClientError as e:
            raise PaymentProviderError(f"Network error: {e}") from e
        except asyncio.TimeoutError as e:
            raise PaymentProviderError(f"Request timed out after {self.timeout}s") from e

    async def request_with_retry(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
        max_retries: Optional[int] = None,
    ) -> Any:
        """Perform a JSON request, retrying failed attempts with backoff"""
        retries = self.max_retries if max_retries is None else max_retries
        operation_start = time.monotonic()

        for attempt in range(retries + 1):
            logger.info(f"🚀 {self.service_name.upper()}_REQUEST: {method} {url} attempt {attempt + 1} of {retries + 1}")
            try:
                result = await self._send_once(method, url, headers=headers, payload=payload)
                logger.info(
                    f"✅ {self.service_name.upper()}_SUCCESS: {method} {url} in "
                    f"{time.monotonic() - operation_start:.3f}s after {attempt + 1} attempt(s)"
                )
                return result
            except PaymentProviderError as e:
                logger.error(f"❌ {self.service_name.upper()}_ATTEMPT_FAILED: attempt {attempt + 1}: {e}")

                if attempt >= retries:
                    logger.error(f"❌ {self.service_name.upper()}_MAX_RETRIES: {method} {url} failed after {attempt + 1} attempts")
                    raise

                delay = compute_backoff_delay(attempt, self.backoff_base, cap=self.backoff_cap)
                logger.warning(f"🔄 {self.service_name.upper()}_RETRY: retrying in {delay * 1000:.0f}ms")
                await asyncio.sleep(delay)
