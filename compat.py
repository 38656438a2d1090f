#Filename: compat.py
"""
[VECTOR] COMPATIBILITY LAYER
Centralizes environment capabilities the probe engine depends on:
HTTP/2 negotiation (h2) and controllable streaming request bodies.
Consumers read the flags; nothing here substitutes missing libraries.
"""

import importlib.util
import logging
from typing import Optional

import httpx

__all__ = ['H2_AVAILABLE', 'supports_streaming_body', 'http2_enabled']

logger = logging.getLogger(__name__)

# -- HTTP/2 (h2) Support --
# httpx only negotiates h2 when the optional 'h2' package is importable.
H2_AVAILABLE: bool = importlib.util.find_spec("h2") is not None


def supports_streaming_body(transport: Optional[httpx.AsyncBaseTransport] = None) -> bool:
    """
    True when request bodies can be delivered as caller-controlled byte
    streams that reach the wire chunk by chunk.

    The default connection pool (AsyncHTTPTransport) writes each chunk as it
    is produced. Other transports may buffer the whole body first, which
    defeats last-byte synchronization.
    """
    if transport is None:
        return True
    return isinstance(transport, httpx.AsyncHTTPTransport)


def http2_enabled(protocol_hint: Optional[str]) -> bool:
    """Whether the client should offer h2 for the given protocol hint."""
    hint = (protocol_hint or "").lower()
    wants_h2 = hint.startswith("h2") or hint.startswith("h3") or hint in ("http/2", "http/3")
    if wants_h2 and not H2_AVAILABLE:
        logger.warning("Protocol hint %s requested but 'h2' is not installed. Using HTTP/1.1.",
                       protocol_hint)
        return False
    return wants_h2
