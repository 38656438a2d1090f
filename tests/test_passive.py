from unittest.mock import MagicMock

import httpx

from passive import analyze_tls, analyze_security_headers, inspect_tls
from structures import FindingType, Severity

HARDENED = {
    "Strict-Transport-Security": "max-age=63072000",
    "Content-Security-Policy": "default-src 'self'; frame-ancestors 'none'",
}


def types(findings):
    return [f.type for f in findings]


class TestSecurityHeaders:
    def test_missing_hsts_over_https(self):
        findings = analyze_security_headers([], "https://example.com")
        assert FindingType.SECURITY_HEADER_MISSING_HSTS in types(findings)
        hsts = next(f for f in findings if f.type is FindingType.SECURITY_HEADER_MISSING_HSTS)
        assert hsts.severity is Severity.MEDIUM

    def test_hsts_not_expected_over_http(self):
        findings = analyze_security_headers([], "http://example.com")
        assert types(findings) == [
            FindingType.SECURITY_HEADER_MISSING_CSP,
            FindingType.SECURITY_HEADER_MISSING_CLICKJACKING,
        ]

    def test_hardened_response_is_clean(self):
        assert analyze_security_headers(HARDENED, "https://example.com") == []

    def test_frame_options_covers_clickjacking(self):
        headers = {"X-Frame-Options": "DENY"}
        assert types(analyze_security_headers(headers, "http://example.com")) == [
            FindingType.SECURITY_HEADER_MISSING_CSP
        ]

    def test_csp_without_frame_ancestors(self):
        headers = [("content-security-policy", "default-src 'self'")]
        assert types(analyze_security_headers(headers, "http://example.com")) == [
            FindingType.SECURITY_HEADER_MISSING_CLICKJACKING
        ]

    def test_accepts_httpx_headers(self):
        headers = httpx.Headers(HARDENED)
        assert analyze_security_headers(headers, "https://example.com") == []


class TestTls:
    def test_plain_http_is_ignored(self):
        assert analyze_tls("http://example.com", "insecure", "TLSv1") == []

    def test_broken_state(self):
        findings = analyze_tls("https://example.com", "broken", None)
        assert types(findings) == [FindingType.TLS_CONFIGURATION_WEAK]
        assert findings[0].severity is Severity.MEDIUM
        assert "State: broken" in findings[0].message

    def test_legacy_protocol(self):
        findings = analyze_tls("https://example.com", "secure", "TLSv1.1")
        assert types(findings) == [FindingType.TLS_CONFIGURATION_LEGACY]
        assert findings[0].severity is Severity.LOW

    def test_modern_protocol(self):
        assert analyze_tls("https://example.com", "secure", "TLSv1.3") == []
        assert analyze_tls("https://example.com", "secure", "TLSv1.2") == []

    def test_inspect_without_network_stream(self):
        response = httpx.Response(200)
        assert inspect_tls(response) is None

    def test_inspect_reads_ssl_object(self):
        ssl_object = MagicMock()
        ssl_object.version.return_value = "TLSv1.2"
        stream = MagicMock()
        stream.get_extra_info.return_value = ssl_object
        response = httpx.Response(200, extensions={"network_stream": stream})

        assert inspect_tls(response, verified=False) == ("insecure", "TLSv1.2")
        stream.get_extra_info.assert_called_with("ssl_object")

    def test_inspect_plaintext_stream(self):
        stream = MagicMock()
        stream.get_extra_info.return_value = None
        response = httpx.Response(200, extensions={"network_stream": stream})
        assert inspect_tls(response) is None
