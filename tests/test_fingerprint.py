import pytest
from fingerprint import content_hash, body_snippet, is_text_like, extract_fingerprint_headers


class TestContentHash:
    def test_known_value(self):
        # (5381 * 33) ^ ord('a') == 177604 == 0x2b5c4
        assert content_hash("a") == "2b5c4"

    def test_empty_or_missing_body(self):
        assert content_hash("") is None
        assert content_hash(None) is None

    def test_stays_within_32_bits(self):
        h = content_hash("race condition " * 1000)
        assert len(h) <= 8
        assert int(h, 16) < 2 ** 32

    def test_only_first_50000_chars_count(self):
        base = "x" * 50_000
        assert content_hash(base) == content_hash(base + "tail that is ignored")

    def test_detects_changed_body(self):
        assert content_hash('{"stock": 1}') != content_hash('{"stock": 0}')


class TestSnippetAndContentType:
    def test_snippet_is_lowercase_and_bounded(self):
        snippet = body_snippet("ACCESS DENIED " + "A" * 1000)
        assert snippet.startswith("access denied")
        assert len(snippet) == 500

    def test_snippet_none(self):
        assert body_snippet(None) is None

    @pytest.mark.parametrize("content_type,expected", [
        (None, True),
        ("", True),
        ("text/html; charset=utf-8", True),
        ("application/json", True),
        ("application/xhtml+xml", True),
        ("image/png", False),
        ("application/octet-stream", False),
    ])
    def test_is_text_like(self, content_type, expected):
        assert is_text_like(content_type) is expected


class TestFingerprintHeaders:
    def test_extracts_subset_lowercased(self):
        headers = {
            "Server": "Cloudflare",
            "CF-RAY": "7d1a-AMS",
            "Retry-After": "30",
            "Content-Type": "text/html",
            "Set-Cookie": "a=b",
        }
        assert extract_fingerprint_headers(headers) == {
            "server": "cloudflare",
            "cf-ray": "7d1a-ams",
            "retry-after": "30",
        }

    def test_accepts_pairs(self):
        assert extract_fingerprint_headers([("X-Sucuri-ID", "123")]) == {"x-sucuri-id": "123"}
