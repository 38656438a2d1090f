#Filename: scanner.py
"""
Active scan orchestrator.
Runs a preflight request (protocol detection + passive checks), then a
ToCTOU burst and, on multiplexed connections, an HSPA burst. Each burst
summary is dispatched to its analyzer and the findings go to the sink.
"""

import logging
from typing import Dict, List, Optional, Tuple

import httpx

from structures import (
    BurstResult, ScanConfig, ScanStrategy, TestType, USER_AGENT,
    DEFAULT_TIMEOUT_MS, DEFAULT_TOCTOU_CONCURRENCY, DEFAULT_HSPA_CONCURRENCY
)
from burst import run_burst
from analyzers import handle_active_scan_result
from passive import analyze_security_headers, analyze_tls, inspect_tls
from compat import H2_AVAILABLE

logger = logging.getLogger(__name__)

CERT_VERIFY_MARKER = "CERTIFICATE_VERIFY_FAILED"

_HTTP_VERSION_LABELS = {
    "HTTP/2": "h2",
    "HTTP/3": "h3",
    "HTTP/1.1": "http/1.1",
    "HTTP/1.0": "http/1.0",
}


def next_hop_protocol(http_version: Optional[str]) -> str:
    """Maps httpx's http_version to an ALPN-style label ('h2', 'http/1.1')."""
    return _HTTP_VERSION_LABELS.get(http_version or "", "unknown")


def is_multiplexed(protocol: Optional[str]) -> bool:
    protocol = (protocol or "").lower()
    return protocol.startswith("h2") or protocol.startswith("h3")


class ScanSettings:
    """User-level settings shared by every burst of a scan."""
    __slots__ = (
        'enabled', 'auth_scan_mode', 'strategy', 'delay', 'method', 'custom_body',
        'headers', 'cookies', 'timeout_ms', 'toctou_concurrency', 'hspa_concurrency'
    )

    def __init__(
        self,
        enabled: bool = True,
        auth_scan_mode: bool = False,
        strategy: ScanStrategy = ScanStrategy.STANDARD,
        delay: int = 0,
        method: str = "GET",
        custom_body: Optional[str] = None,
        headers: Optional[List[Tuple[str, str]]] = None,
        cookies: Optional[Dict[str, str]] = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        toctou_concurrency: int = DEFAULT_TOCTOU_CONCURRENCY,
        hspa_concurrency: int = DEFAULT_HSPA_CONCURRENCY
    ) -> None:
        self.enabled = enabled
        self.auth_scan_mode = auth_scan_mode
        self.strategy = ScanStrategy(strategy)
        self.delay = delay
        self.method = method
        self.custom_body = custom_body
        self.headers = list(headers or [])
        self.cookies = dict(cookies or {})
        self.timeout_ms = timeout_ms
        self.toctou_concurrency = toctou_concurrency
        self.hspa_concurrency = hspa_concurrency


class ActiveScanner:
    """Drives preflight + bursts for one target and feeds the sink."""

    def __init__(
        self,
        settings: ScanSettings,
        sink=None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        streaming: Optional[bool] = None
    ) -> None:
        self.settings = settings
        self.sink = sink
        self.transport = transport
        self.streaming = streaming

    def _emit(self, findings) -> None:
        if self.sink is None:
            return
        for finding in findings:
            self.sink.add(finding)

    async def _fetch(self, url: str, verify: bool) -> Tuple[httpx.Response, Optional[tuple]]:
        headers = {"User-Agent": USER_AGENT}
        async with httpx.AsyncClient(
            http2=H2_AVAILABLE,
            verify=verify,
            follow_redirects=True,
            timeout=httpx.Timeout(self.settings.timeout_ms / 1000),
            transport=self.transport,
        ) as client:
            response = await client.get(url, headers=headers)
            # Network stream info is only valid while the client is open.
            return response, inspect_tls(response, verify)

    async def preflight(self, url: str) -> Optional[str]:
        """
        Fetches the target once. Runs the passive checks on the response and
        returns the negotiated protocol label, or None when the target could
        not be reached.
        """
        verified = True
        try:
            try:
                response, tls_info = await self._fetch(url, verify=True)
            except httpx.ConnectError as e:
                if CERT_VERIFY_MARKER not in str(e):
                    raise
                logger.warning("Certificate verification failed for %s, retrying unverified", url)
                verified = False
                response, tls_info = await self._fetch(url, verify=False)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error("Preflight request to %s failed: %s", url, e)
            return None

        protocol = next_hop_protocol(response.http_version)
        if tls_info is not None:
            self._emit(analyze_tls(url, *tls_info))
        elif not verified:
            self._emit(analyze_tls(url, "broken", None))
        self._emit(analyze_security_headers(response.headers, url))

        logger.info("Preflight %s: status %s, protocol %s", url, response.status_code, protocol)
        return protocol

    def build_config(self, test_type: TestType, url: str, protocol: str) -> ScanConfig:
        s = self.settings
        concurrency = s.hspa_concurrency if test_type is TestType.HSPA else s.toctou_concurrency
        return ScanConfig(
            url=url,
            method=s.method,
            concurrency=concurrency,
            strategy=s.strategy,
            delay=s.delay,
            use_auth=s.auth_scan_mode,
            custom_body=s.custom_body,
            protocol=protocol,
            timeout_ms=s.timeout_ms,
            headers=s.headers,
            cookies=s.cookies,
        )

    async def run_test(self, test_type: TestType, url: str, protocol: str) -> BurstResult:
        config = self.build_config(test_type, url, protocol)
        burst = await run_burst(config, test_type, self.transport, self.streaming)
        handle_active_scan_result(burst.to_summary(), self.sink)
        return burst

    async def scan(
        self,
        url: str,
        protocol_hint: Optional[str] = None,
        only: Optional[TestType] = None
    ) -> List[BurstResult]:
        """
        Preflight, then ToCTOU and (on h2/h3) HSPA bursts. A protocol hint
        overrides the detected protocol; `only` restricts the scan to one test.
        Nothing is fired at a target the preflight could not reach.
        """
        if not self.settings.enabled:
            logger.info("Master switch is disabled. Skipping active scans.")
            return []

        detected = await self.preflight(url)
        if detected is None:
            logger.warning("Target %s is unreachable. Skipping active scans.", url)
            return []
        protocol = protocol_hint or detected
        logger.info("[Active Scan] Initiating scan for: %s (Protocol: %s, AuthMode: %s)",
                    url, protocol, "include" if self.settings.auth_scan_mode else "omit")

        if only is not None:
            return [await self.run_test(only, url, protocol)]

        bursts = [await self.run_test(TestType.TOCTOU, url, protocol)]
        if is_multiplexed(protocol):
            bursts.append(await self.run_test(TestType.HSPA, url, protocol))
        return bursts
