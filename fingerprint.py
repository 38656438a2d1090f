#Filename: fingerprint.py
"""
Response fingerprinting primitives.
Extracts the WAF/CDN/rate-limiter header subset and computes a coarse
32-bit content hash used to compare bodies across concurrent probes.
"""

from typing import Dict, Iterable, Optional, Tuple, Union, Mapping

from structures import HASH_CHAR_LIMIT, SNIPPET_LENGTH

# Keys commonly associated with WAFs, CDNs, and rate limiters.
FINGERPRINT_HEADERS = frozenset({
    'server', 'x-powered-by', 'x-ratelimit-limit', 'retry-after', 'cf-ray',
    'x-amz-cf-id', 'x-sucuri-id', 'x-waf-event', 'akamai-request-id'
})

TEXT_MARKERS = ("text", "json", "xml")

_HASH_SEED = 5381
_MASK_32 = 0xFFFFFFFF

HeaderSource = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


def content_hash(body: Optional[str]) -> Optional[str]:
    """
    djb2-xor over at most the first HASH_CHAR_LIMIT characters.
    Unsigned 32-bit wraparound, rendered as lowercase hex. Not cryptographic:
    only answers "did the body change between probes".
    """
    if not body:
        return None
    h = _HASH_SEED
    for ch in body[:HASH_CHAR_LIMIT]:
        h = ((h * 33) ^ ord(ch)) & _MASK_32
    return format(h, "x")


def body_snippet(body: Optional[str]) -> Optional[str]:
    if body is None:
        return None
    return body[:SNIPPET_LENGTH].lower()


def is_text_like(content_type: Optional[str]) -> bool:
    """Bodies are only read when untyped or textual (text/json/xml)."""
    if not content_type:
        return True
    content_type = content_type.lower()
    return any(marker in content_type for marker in TEXT_MARKERS)


def extract_fingerprint_headers(headers: HeaderSource) -> Dict[str, str]:
    """Returns the fingerprint subset with lowercase keys and values."""
    items = headers.items() if hasattr(headers, 'items') else headers
    found: Dict[str, str] = {}
    for key, value in items:
        lower_key = key.lower()
        if lower_key in FINGERPRINT_HEADERS:
            found[lower_key] = value.lower()
    return found
