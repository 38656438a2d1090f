#Filename: burst.py
"""
Burst Scheduler.
Fires N probes against one target using one of two delivery strategies:

- standard: sequential dispatch with an optional inter-request delay, every
  dispatched probe running concurrently with the ones started after it.
- last-byte-sync: every probe streams its body through a caller-controlled
  handle. All but the final byte is pushed as soon as the request is opened,
  the scheduler waits a fixed propagation window, then writes the withheld
  byte and closes every stream in one loop without yielding to the event loop.

Individual probe failures never abort a burst; the result always holds
exactly N ProbeResults in dispatch-index order.
"""

import asyncio
import gc
import logging
from typing import AsyncIterator, Dict, Iterator, List, Optional, Any

import httpx

from structures import (
    ScanConfig, ProbeResult, BurstResult, ScanStrategy, TestType,
    DEFAULT_PADDING, PROPAGATION_WINDOW_MS, CREDENTIAL_HEADERS, USER_AGENT, now_ms
)
from probe import execute_probe, build_probe_url
from compat import supports_streaming_body, http2_enabled

logger = logging.getLogger(__name__)

BODY_METHODS = ("POST", "PUT", "PATCH")
STREAMING_FALLBACK_WARNING = (
    "Streaming request bodies are not supported by this transport. "
    "Falling back to the standard strategy (no last-byte synchronization)."
)

_CLOSE = None


class StreamHandle:
    """
    Caller-controlled request body for one probe.
    write() and close() never suspend, so a release loop over many handles
    runs without yielding.
    """
    __slots__ = ('index', '_queue', 'closed')

    def __init__(self, index: int) -> None:
        self.index = index
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def write(self, chunk: bytes) -> None:
        if self.closed:
            raise RuntimeError(f"Stream {self.index} already closed")
        if chunk:
            self._queue.put_nowait(chunk)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_CLOSE)

    async def body(self) -> AsyncIterator[bytes]:
        """Async iterator handed to the HTTP client as request content."""
        while True:
            chunk = await self._queue.get()
            if chunk is _CLOSE:
                return
            yield chunk


class StreamArena:
    """Stream handles owned by one burst, indexed by probe number."""

    def __init__(self, size: int) -> None:
        self._handles = [StreamHandle(i) for i in range(size)]

    def __getitem__(self, index: int) -> StreamHandle:
        return self._handles[index]

    def __len__(self) -> int:
        return len(self._handles)

    def __iter__(self) -> Iterator[StreamHandle]:
        return iter(self._handles)

    def release(self, final_chunk: bytes) -> None:
        """Writes the withheld byte and closes every stream. No awaits in here."""
        for handle in self._handles:
            handle.write(final_chunk)
            handle.close()


def split_last_byte(payload: bytes) -> tuple:
    """Splits a payload into (initial, final) where final is the last byte."""
    if not payload:
        return b"", b""
    return payload[:-1], payload[-1:]


def safe_spawn(tg: asyncio.TaskGroup, coro, result_list: List[Optional[ProbeResult]], index: int) -> None:
    """Supervisor wrapper for probe tasks to prevent fail-fast cascades."""
    async def wrapper():
        start = now_ms()
        try:
            result_list[index] = await coro
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.debug("Probe %s escaped its executor: %s", index, e)
            result_list[index] = ProbeResult.failure(index, now_ms() - start, str(e) or type(e).__name__)
    tg.create_task(wrapper())


class BurstScheduler:
    """Runs one burst for a ScanConfig."""

    def __init__(
        self,
        config: ScanConfig,
        test_type: Any = TestType.TOCTOU,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        streaming: Optional[bool] = None
    ) -> None:
        self.config = config
        self.test_type = TestType(test_type)
        self.transport = transport
        self.streaming = supports_streaming_body(transport) if streaming is None else streaming
        self.warnings: List[str] = []

    # -- Request shaping --

    def _base_headers(self) -> Dict[str, str]:
        headers = {"User-Agent": USER_AGENT, "Cache-Control": "no-store"}
        for key, value in self.config.headers:
            if not self.config.use_auth and key.lower() in CREDENTIAL_HEADERS:
                continue
            headers[key] = value
        return headers

    def _body_headers(self, length: int) -> Dict[str, str]:
        headers = self._base_headers()
        # Fixed Content-Length keeps httpx from switching to chunked encoding.
        headers["Content-Length"] = str(length)
        if length > 0 and not any(k.lower() == "content-type" for k in headers):
            headers["Content-Type"] = "application/x-www-form-urlencoded"
        return headers

    def _client(self) -> httpx.AsyncClient:
        concurrency = self.config.concurrency
        limits = httpx.Limits(max_keepalive_connections=concurrency, max_connections=concurrency * 2)
        timeout = httpx.Timeout(self.config.timeout_ms / 1000)
        return httpx.AsyncClient(
            http2=http2_enabled(self.config.protocol),
            limits=limits,
            timeout=timeout,
            verify=False,
            follow_redirects=True,
            cookies=self.config.cookies if self.config.use_auth else None,
            transport=self.transport,
        )

    def _probe_url(self, index: int) -> str:
        return build_probe_url(self.config.url, self.test_type.value, index)

    # -- Strategies --

    async def _run_standard(self, client: httpx.AsyncClient, results: List[Optional[ProbeResult]]) -> None:
        cfg = self.config
        method = cfg.method
        content = None
        headers = self._base_headers()
        if cfg.custom_body:
            method = "POST"
            content = cfg.custom_body.encode("utf-8")
            headers = self._body_headers(len(content))

        async with asyncio.TaskGroup() as tg:
            for i in range(cfg.concurrency):
                if cfg.delay > 0 and i > 0:
                    await asyncio.sleep(cfg.delay / 1000)
                safe_spawn(
                    tg,
                    execute_probe(client, method, self._probe_url(i), i,
                                  content=content, headers=headers, timeout_ms=cfg.timeout_ms),
                    results,
                    i
                )

    async def _run_last_byte_sync(self, client: httpx.AsyncClient, results: List[Optional[ProbeResult]]) -> None:
        cfg = self.config
        payload = cfg.custom_body.encode("utf-8") if cfg.custom_body else DEFAULT_PADDING
        initial, final = split_last_byte(payload)
        method = cfg.method if cfg.method in BODY_METHODS else "POST"
        headers = self._body_headers(len(payload))
        arena = StreamArena(cfg.concurrency)

        async with asyncio.TaskGroup() as tg:
            for handle in arena:
                safe_spawn(
                    tg,
                    execute_probe(client, method, self._probe_url(handle.index), handle.index,
                                  content=handle.body(), headers=headers, timeout_ms=cfg.timeout_ms),
                    results,
                    handle.index
                )
                handle.write(initial)

            logger.debug("[SPA] Pushed initial chunk (%s bytes) to %s streams", len(initial), len(arena))
            await asyncio.sleep(PROPAGATION_WINDOW_MS / 1000)

            logger.debug("[SPA] Releasing last byte to all streams")
            arena.release(final)

    # -- Entry point --

    async def run(self) -> BurstResult:
        cfg = self.config
        strategy = cfg.strategy
        if cfg.method != "GET":
            logger.warning("Non-GET method (%s) requested. Proceeding, but ensure safety.", cfg.method)
        if strategy is ScanStrategy.LAST_BYTE_SYNC and not self.streaming:
            logger.warning(STREAMING_FALLBACK_WARNING)
            self.warnings.append(STREAMING_FALLBACK_WARNING)
            strategy = ScanStrategy.STANDARD

        logger.info("Starting %s burst. URL: %s, Concurrency: %s, Auth: %s, Strategy: %s",
                    self.test_type.value, cfg.url, cfg.concurrency, cfg.credentials_mode, strategy.value)

        results: List[Optional[ProbeResult]] = [None] * cfg.concurrency
        start = now_ms()

        # Collector pauses would skew the timing signal.
        gc.collect()
        gc.disable()
        try:
            async with self._client() as client:
                if strategy is ScanStrategy.LAST_BYTE_SYNC:
                    await self._run_last_byte_sync(client, results)
                else:
                    await self._run_standard(client, results)
        finally:
            gc.enable()

        duration = now_ms() - start
        return BurstResult(
            test_type=self.test_type,
            url=cfg.url,
            duration=duration,
            auth_mode=cfg.credentials_mode,
            results=results,
            protocol=cfg.protocol if self.test_type is TestType.HSPA else None,
            warnings=self.warnings,
        )


async def run_burst(
    config: ScanConfig,
    test_type: Any = TestType.TOCTOU,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    streaming: Optional[bool] = None
) -> BurstResult:
    """Orchestrates one burst and returns the completed BurstResult."""
    return await BurstScheduler(config, test_type, transport, streaming).run()
