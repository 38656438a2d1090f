# conftest.py
import sys
import os
import pytest
import httpx

sys.path.append(os.getcwd())

from structures import ProbeResult, BurstResult, TestType


def probe_param(request: httpx.Request) -> int:
    """Returns the dispatch index encoded in the cache-busting parameter."""
    for key, value in request.url.params.multi_items():
        if key.startswith("_webrace_probe_"):
            return int(value.split("_")[0])
    return -1


@pytest.fixture
def make_result():
    def _make(index=0, status=200, ok=None, duration=100.0, hash=None,
              snippet=None, headers=None, error=None):
        if ok is None:
            ok = 200 <= status < 300
        return ProbeResult(index, status, ok, duration, hash=hash,
                           body_snippet=snippet, headers=headers, error=error)
    return _make


@pytest.fixture
def make_burst():
    def _make(results, test_type=TestType.TOCTOU, auth_mode="omit", protocol="h2", url="http://example.com"):
        reindexed = [
            ProbeResult(i, r.status, r.ok, r.duration, hash=r.hash, body_snippet=r.body_snippet,
                        headers=r.headers, error=r.error)
            for i, r in enumerate(results)
        ]
        return BurstResult(test_type, url, 1234.5, auth_mode, reindexed,
                           protocol=protocol if TestType(test_type) is TestType.HSPA else None)
    return _make


@pytest.fixture
def mock_transport():
    def _make(handler):
        return httpx.MockTransport(handler)
    return _make


@pytest.fixture(autouse=True)
def fresh_prompt_toolkit_session():
    """Gives each test its own prompt_toolkit app session so the lazily created
    output binds to that test's captured stdout instead of a stale one."""
    from prompt_toolkit.application.current import create_app_session
    with create_app_session():
        yield
