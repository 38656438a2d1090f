#Filename: analyzers.py
"""
Scenario Analyzers.
Pure policy functions over one immutable BurstResult. They perform no I/O
and return the findings they decide to emit; handing them to a sink is the
caller's job.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from structures import (
    BurstResult, Finding, FindingType, Severity, TestType,
    HSPA_FAILURE_RATIO, TOCTOU_FAILURE_RATIO, AUTH_RATIO, INSTABILITY_RATIO,
    TIMING_VARIANCE_RATIO, TIMING_MIN_MEAN_MS
)
from discriminator import analyze_waf_vs_dos

logger = logging.getLogger(__name__)

MIN_TIMING_SAMPLES = 5
MAX_SAMPLE_HASHES = 3
UNAUTHORIZED_STATUSES = (401, 403)


def timing_stats(durations: List[float]) -> tuple:
    """Mean and population standard deviation."""
    arr = np.asarray(durations, dtype=float)
    return float(arr.mean()), float(arr.std(ddof=0))


def _dos_details(prefix: str, verdict) -> str:
    return (f"{prefix} Timeouts: {verdict.timeouts}, Server Errors: {verdict.server_errors}, "
            f"Resets: {verdict.connection_resets}.")


def analyze_hspa(burst: BurstResult) -> List[Finding]:
    """
    Multiplexed-connection stress analysis. Emits at most one finding:
    WAF intervention, potential DoS, or timing variance.
    """
    total = burst.total_requests
    if total == 0:
        return []

    url = burst.url
    protocol = burst.protocol or "unknown"
    failure_count = burst.failure_count
    prefix = f"[AuthMode: {burst.auth_mode}] Protocol: {protocol}."

    # Heuristic 1: high failure rate, WAF vs DoS
    if failure_count > total * HSPA_FAILURE_RATIO:
        verdict = analyze_waf_vs_dos(burst.failed)
        if verdict.is_waf:
            return [Finding(
                FindingType.HSPA_WAF_INTERVENTION, Severity.INFO,
                "WAF or Rate Limiting detected during HSPA stress test. The server/firewall actively "
                "blocked concurrent requests. This is likely NOT a vulnerability.",
                url,
                f"{prefix} Failures: {failure_count}/{total}. "
                f"WAF Score: {verdict.avg_waf_score:.2f}. Evidence: {verdict.evidence}",
            )]
        if verdict.is_dos:
            return [Finding(
                FindingType.HSPA_POTENTIAL_DOS, Severity.HIGH,
                f"High failure rate ({failure_count / total * 100:.1f}%) under high concurrency. "
                "Server instability indicates vulnerability to resource exhaustion (Genuine DoS). "
                "WAF not detected.",
                url,
                _dos_details(prefix, verdict),
            )]

    # Heuristic 2: timing variance across successful streams
    timings = [r.duration for r in burst.successful]
    if len(timings) > MIN_TIMING_SAMPLES:
        mean, std_dev = timing_stats(timings)
        if std_dev > mean * TIMING_VARIANCE_RATIO and mean > TIMING_MIN_MEAN_MS:
            return [Finding(
                FindingType.HSPA_TIMING_VARIANCE, Severity.MEDIUM,
                f"Significant timing variance detected during concurrent {protocol} streams. "
                "Potential prioritization issue or bottleneck (HSPA indicator).",
                url,
                f"{prefix} StdDev: {std_dev:.2f}ms, Avg: {mean:.2f}ms.",
            )]
    return []


def analyze_toctou(burst: BurstResult) -> List[Finding]:
    """
    Race condition analysis. Findings are independent; several may be
    emitted for one burst.
    """
    results = burst.results
    total = len(results)
    if total == 0:
        return []

    url = burst.url
    findings: List[Finding] = []
    prefix = f"[AuthMode: {burst.auth_mode}] Duration: {burst.duration:.2f}ms."

    failed = burst.failed
    failure_count = len(failed)
    unauthorized_count = sum(1 for r in results if r.status in UNAUTHORIZED_STATUSES)

    # Heuristic 0: WAF / DoS
    waf_detected = False
    dos_flagged = False
    if failure_count > total * TOCTOU_FAILURE_RATIO:
        verdict = analyze_waf_vs_dos(failed)
        if verdict.is_waf:
            waf_detected = True
            findings.append(Finding(
                FindingType.TOCTOU_WAF_INTERVENTION, Severity.INFO,
                "WAF or Rate Limiting detected during ToCTOU stress test. "
                "This may interfere with race condition detection.",
                url,
                f"{prefix} Failures: {failure_count}/{total}. "
                f"WAF Score: {verdict.avg_waf_score:.2f}. Evidence: {verdict.evidence}",
            ))
        elif verdict.is_dos:
            dos_flagged = True
            findings.append(Finding(
                FindingType.TOCTOU_POTENTIAL_INSTABILITY_DOS, Severity.HIGH,
                "Server resource exhaustion (Genuine DoS) likely occurred during concurrent requests. "
                "Potential critical locking issues or race conditions causing crashes. WAF not detected.",
                url,
                _dos_details(prefix, verdict),
            ))

    # Heuristic 1: authentication required
    if burst.auth_mode == "omit" and unauthorized_count > total * AUTH_RATIO:
        auth_failures = sum(1 for r in failed if r.status in UNAUTHORIZED_STATUSES)
        # WAF-induced 403s are not an auth requirement.
        if not waf_detected or auth_failures < failure_count * AUTH_RATIO:
            findings.append(Finding(
                FindingType.TOCTOU_AUTH_REQUIRED, Severity.INFO,
                "Resource appears to require authentication (401/403 responses). "
                "Enable authenticated scan mode to test the logged-in state.",
                url,
                f"Unauthorized requests: {unauthorized_count}/{total}.",
            ))

    # Heuristic 2: inconsistent state across successful responses
    successful_hashes: Dict[str, None] = {}
    for r in burst.successful:
        if r.hash is not None:
            successful_hashes.setdefault(r.hash, None)
    if len(successful_hashes) > 1:
        samples = list(successful_hashes)[:MAX_SAMPLE_HASHES]
        findings.append(Finding(
            FindingType.TOCTOU_RACE_CONDITION_DETECTED, Severity.HIGH,
            "Inconsistent resource states detected across concurrent requests. The server returned "
            f"different content ({len(successful_hashes)} variations), indicating a race condition (ToCTOU).",
            url,
            f"{prefix} Successful Requests: {total - failure_count}. Sample Hashes: {', '.join(samples)}",
        ))

    # Heuristic 3: server instability (medium)
    instability_errors = sum(1 for r in failed if r.status >= 500)
    if not waf_detected and not dos_flagged and instability_errors > total * INSTABILITY_RATIO:
        findings.append(Finding(
            FindingType.TOCTOU_POTENTIAL_INSTABILITY_MEDIUM, Severity.MEDIUM,
            "High rate of server errors (5xx) detected during concurrent requests. "
            "Potential locking issues. WAF not strongly indicated.",
            url,
            f"{prefix} Errors: {instability_errors}/{total}.",
        ))

    return findings


ANALYZERS: Dict[TestType, Callable[[BurstResult], List[Finding]]] = {
    TestType.HSPA: analyze_hspa,
    TestType.TOCTOU: analyze_toctou,
}


def analyze_burst(burst: BurstResult) -> List[Finding]:
    return ANALYZERS[burst.test_type](burst)


def handle_active_scan_result(summary: Dict[str, Any], sink: Optional[Any] = None) -> List[Finding]:
    """
    Entry point for a {testType, result} burst summary coming over a
    transport. Every emitted finding is appended to the sink exactly once.
    """
    test_type = summary.get('testType')
    if test_type not in (t.value for t in TestType):
        logger.warning("Ignoring burst summary with unknown test type: %s", test_type)
        return []

    burst = BurstResult.from_summary(summary)
    findings = analyze_burst(burst)
    if sink is not None:
        for finding in findings:
            sink.add(finding)
    return findings
