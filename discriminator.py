#Filename: discriminator.py
"""
WAF / DoS Discriminator.
Separates firewall or rate-limiter intervention from genuine resource
exhaustion using an additive point model over the failed probes of a burst.

Scoring, per failed probe (then averaged over all failures):
  * global hash consistency bonus  (templated block page)
  * status code                    (429 / 403 / 406 / 503)
  * header fingerprint             (retry-after, Cloudflare, Sucuri)
  * body signature lexicon
  * fast rejection                 (only reinforces an existing signal)
"""

from typing import List, Sequence

from structures import (
    ProbeResult, DiscriminatorVerdict, TIMEOUT_ERROR, FAST_REJECTION_MS,
    WAF_SCORE_THRESHOLD, DOS_INDICATOR_RATIO
)

WAF_BODY_SIGNATURES = (
    'rate limited', 'access denied', 'cloudflare', 'sucuri', 'akamai', 'imperva',
    'incapsula', 'security check', 'are you a human', 'bot protection',
    'ddos protection', 'forbidden', 'too many requests', 'ray id', 'aws waf',
    'wordfence', 'mod_security'
)

STATUS_POINTS = {429: 4.0, 403: 1.5, 406: 1.5, 503: 0.5}
RETRY_AFTER_POINTS = 4.0
VENDOR_HEADER_POINTS = 1.0
BODY_SIGNATURE_POINTS = 2.5
FAST_REJECTION_POINTS = 1.0
STRONG_CONSISTENCY_FACTOR = 4
MODERATE_CONSISTENCY_FACTOR = 1
MODERATE_CONSISTENCY_RATIO = 0.3


class _Evidence:
    """Insertion-ordered, deduplicated evidence tags."""
    __slots__ = ('_tags',)

    def __init__(self) -> None:
        self._tags: dict = {}

    def add(self, tag: str) -> None:
        self._tags.setdefault(tag, None)

    def joined(self) -> str:
        return " ".join(self._tags)


def _consistency_bonus(failed: Sequence[ProbeResult], evidence: _Evidence) -> float:
    total = len(failed)
    valid_hashes = [r.hash for r in failed if r.hash is not None]
    unique = set(valid_hashes)

    if len(valid_hashes) > 3 and len(unique) == 1:
        evidence.add("Consistent response body (Hash).")
        return STRONG_CONSISTENCY_FACTOR * total
    if 1 < len(unique) < total * MODERATE_CONSISTENCY_RATIO:
        evidence.add("High response body consistency.")
        return MODERATE_CONSISTENCY_FACTOR * total
    return 0.0


def _vendor_match(headers: dict, header: str, needle: str) -> bool:
    return bool(headers.get(header)) or needle in headers.get('server', '')


def analyze_waf_vs_dos(failed: Sequence[ProbeResult]) -> DiscriminatorVerdict:
    """
    Computes the WAF/DoS verdict for a failure set.
    isDos is only considered when isWaf is false.
    """
    total = len(failed)
    if total == 0:
        return DiscriminatorVerdict(is_waf=False, is_dos=False, avg_waf_score=0.0)

    evidence = _Evidence()
    timeouts = server_errors = resets = 0
    score = _consistency_bonus(failed, evidence)

    for probe in failed:
        local = 0.0
        status = probe.status

        if status in STATUS_POINTS:
            local += STATUS_POINTS[status]
            if status == 429:
                evidence.add("Status 429 (Too Many Requests).")
            elif status != 503:
                evidence.add(f"Status {status}.")
        elif status >= 500:
            server_errors += 1
        elif status == 0:
            if probe.error == TIMEOUT_ERROR:
                timeouts += 1
            else:
                resets += 1

        headers = probe.headers
        if headers:
            if headers.get('retry-after'):
                local += RETRY_AFTER_POINTS
                evidence.add("Retry-After header.")
            if _vendor_match(headers, 'cf-ray', 'cloudflare'):
                local += VENDOR_HEADER_POINTS
                evidence.add("Cloudflare indicators.")
            if _vendor_match(headers, 'x-sucuri-id', 'sucuri'):
                local += VENDOR_HEADER_POINTS
                evidence.add("Sucuri indicators.")

        if probe.body_snippet and any(sig in probe.body_snippet for sig in WAF_BODY_SIGNATURES):
            local += BODY_SIGNATURE_POINTS
            evidence.add("Body signatures match WAF.")

        # Fast rejections reinforce a WAF verdict; slow failures argue against one.
        if local > 0 and probe.duration < FAST_REJECTION_MS:
            local += FAST_REJECTION_POINTS
            evidence.add("Rapid rejection time.")

        score += local

    avg_score = score / total
    is_waf = avg_score > WAF_SCORE_THRESHOLD
    is_dos = False
    if not is_waf:
        is_dos = (timeouts + server_errors + resets) / total > DOS_INDICATOR_RATIO

    return DiscriminatorVerdict(
        is_waf=is_waf,
        is_dos=is_dos,
        avg_waf_score=avg_score,
        timeouts=timeouts,
        server_errors=server_errors,
        connection_resets=resets,
        evidence=evidence.joined(),
    )


def failed_subset(results: Sequence[ProbeResult]) -> List[ProbeResult]:
    return [r for r in results if not r.ok]
