#Filename: passive.py
"""
Passive observation of a target response: TLS state and security headers.
"""

import logging
from typing import List, Optional, Tuple

import httpx

from structures import Finding, FindingType, Severity
from fingerprint import HeaderSource

logger = logging.getLogger(__name__)

MODERN_TLS = ("TLSv1.3", "TLSv1.2")
INSECURE_STATES = ("insecure", "broken")


def analyze_tls(url: str, state: Optional[str], protocol: Optional[str]) -> List[Finding]:
    if not url.startswith("https://"):
        return []
    if state in INSECURE_STATES:
        return [Finding(
            FindingType.TLS_CONFIGURATION_WEAK, Severity.MEDIUM,
            f"Insecure connection detected (State: {state}). "
            "May indicate mixed content or certificate errors.",
            url,
        )]
    if protocol and protocol not in MODERN_TLS:
        return [Finding(
            FindingType.TLS_CONFIGURATION_LEGACY, Severity.LOW,
            f"Legacy TLS protocol detected ({protocol}). "
            "Modern standards require TLS 1.2 or higher.",
            url,
        )]
    return []


def inspect_tls(response: httpx.Response, verified: bool = True) -> Optional[Tuple[str, Optional[str]]]:
    """
    Reads (state, protocol) from the connection that carried the response.
    Returns None when the transport exposes no TLS object.
    """
    stream = response.extensions.get("network_stream")
    if stream is None:
        return None
    ssl_object = stream.get_extra_info("ssl_object")
    if ssl_object is None:
        return None
    state = "secure" if verified else "insecure"
    return state, ssl_object.version()


def analyze_security_headers(headers: HeaderSource, url: str) -> List[Finding]:
    items = headers.items() if hasattr(headers, 'items') else headers
    header_map = {k.lower(): v.lower() for k, v in items if k and v}
    findings: List[Finding] = []

    if url.startswith("https://") and "strict-transport-security" not in header_map:
        findings.append(Finding(
            FindingType.SECURITY_HEADER_MISSING_HSTS, Severity.MEDIUM,
            "Missing 'Strict-Transport-Security' header over HTTPS. "
            "Site may be vulnerable to SSL stripping.",
            url,
        ))

    csp = header_map.get("content-security-policy")
    if not csp:
        findings.append(Finding(
            FindingType.SECURITY_HEADER_MISSING_CSP, Severity.LOW,
            "Missing 'Content-Security-Policy' header. Increases risk of XSS attacks.",
            url,
        ))

    if "x-frame-options" not in header_map and (not csp or "frame-ancestors" not in csp):
        findings.append(Finding(
            FindingType.SECURITY_HEADER_MISSING_CLICKJACKING, Severity.LOW,
            "Missing 'X-Frame-Options' or CSP 'frame-ancestors'. "
            "Site may be vulnerable to Clickjacking.",
            url,
        ))

    return findings
