#Filename: probe.py
"""
Probe Executor.
Issues exactly one bounded-timeout request and normalizes every outcome
(success, HTTP error status, network failure, timeout) into a ProbeResult.
Never raises.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

import httpx

from structures import (
    ProbeResult, DEFAULT_TIMEOUT_MS, TIMEOUT_ERROR, PROBE_PARAM_PREFIX, now_ms
)
from fingerprint import content_hash, body_snippet, is_text_like, extract_fingerprint_headers

logger = logging.getLogger(__name__)


def build_probe_url(url: str, test_type: str, index: int, timestamp_ms: Optional[int] = None) -> str:
    """Appends the per-probe cache-busting parameter (index + wall-clock ms)."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return str(httpx.URL(url).copy_add_param(f"{PROBE_PARAM_PREFIX}{test_type}", f"{index}_{timestamp_ms}"))


async def _read_response(response: httpx.Response, index: int, duration: float) -> ProbeResult:
    fingerprint = extract_fingerprint_headers(response.headers)
    body_hash = None
    snippet = None

    # Binary bodies are skipped entirely.
    if is_text_like(response.headers.get("content-type")):
        try:
            await response.aread()
            text = response.text
            body_hash = content_hash(text)
            snippet = body_snippet(text)
        except httpx.HTTPError as e:
            logger.debug("Probe %s: body read failed: %s", index, e)

    return ProbeResult(
        index=index,
        status=response.status_code,
        ok=response.is_success,
        duration=duration,
        hash=body_hash,
        body_snippet=snippet,
        headers=fingerprint,
    )


async def execute_probe(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    index: int,
    content: Any = None,
    headers: Optional[Dict[str, str]] = None,
    timeout_ms: int = DEFAULT_TIMEOUT_MS
) -> ProbeResult:
    """
    Sends a single probe. The timeout bounds the wait for the response head;
    expiry cancels only this probe's request.
    """
    start = now_ms()
    response: Optional[httpx.Response] = None
    try:
        request = client.build_request(method, url, content=content, headers=headers)
        response = await asyncio.wait_for(client.send(request, stream=True), timeout_ms / 1000)
        duration = now_ms() - start
        return await _read_response(response, index, duration)

    except (asyncio.TimeoutError, httpx.TimeoutException):
        return ProbeResult.failure(index, now_ms() - start, TIMEOUT_ERROR)
    except Exception as e:  # pylint: disable=broad-exception-caught
        return ProbeResult.failure(index, now_ms() - start, str(e) or type(e).__name__)
    finally:
        if response is not None:
            try:
                await response.aclose()
            except httpx.HTTPError as e:
                logger.debug("Probe %s: close failed: %s", index, e)
