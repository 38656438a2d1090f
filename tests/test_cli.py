import argparse
import json
import pytest
import httpx
from unittest.mock import patch, AsyncMock, MagicMock

import webrace
from structures import ProbeResult, BurstResult, TestType, ScanStrategy


def clean_run(coro):
    """Closes the coroutine handed to the mocked runner."""
    if coro:
        coro.close()
    return 0


def run_args(*argv):
    return webrace.build_parser().parse_args(list(argv))


def test_parser_defaults():
    args = run_args("http://example.com")
    assert args.test == "auto"
    assert args.method == "GET"
    assert args.concurrency is None
    assert args.strategy == "standard"
    assert args.header == []
    assert args.auth is False


def test_parser_headers_and_cookies():
    args = run_args("http://example.com", "-H", "X-Token: abc", "--cookie", "sid=42", "-s", "last-byte-sync")
    assert args.header == [("X-Token", "abc")]
    assert args.cookie == [("sid", "42")]

    settings = webrace.settings_from_args(args)
    assert settings.strategy is ScanStrategy.LAST_BYTE_SYNC
    assert settings.cookies == {"sid": "42"}
    assert settings.toctou_concurrency == 15
    assert settings.hspa_concurrency == 100


def test_concurrency_overrides_both_tests():
    settings = webrace.settings_from_args(run_args("http://example.com", "-c", "7"))
    assert settings.toctou_concurrency == 7
    assert settings.hspa_concurrency == 7


def test_parse_header_rejects_garbage():
    with pytest.raises(argparse.ArgumentTypeError):
        webrace.parse_header("no-colon")
    with pytest.raises(argparse.ArgumentTypeError):
        webrace.parse_cookie("no-equals")


def test_render_burst_histogram(capsys):
    results = [ProbeResult(i, 200, True, 100.0 + (i % 5) * 5, hash="abc", body_snippet="ok") for i in range(20)]
    webrace.render_burst(BurstResult(TestType.TOCTOU, "http://a.com", 500.0, "omit", results))

    out = capsys.readouterr().out
    assert "[Response Signatures]" in out
    assert "[Timing Metrics]" in out
    assert "[Timing Distribution (Histogram)]" in out
    assert "#" in out


def test_render_findings_empty(capsys):
    webrace.render_findings([])
    assert "(No findings)" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_run_cli_exports_report(tmp_path, capsys):
    counter = {"n": 0}

    def handler(request):
        counter["n"] += 1
        return httpx.Response(200, text=f"credits={counter['n']}")

    report = tmp_path / "report.json"
    args = run_args("http://shop.example/redeem", "-c", "3", "-o", str(report))

    code = await webrace.run_cli(args, transport=httpx.MockTransport(handler))

    assert code == 0
    data = json.loads(report.read_text(encoding="utf-8"))
    found = [f["type"] for f in data["http://shop.example/redeem"]]
    assert "TOCTOU_RACE_CONDITION_DETECTED" in found
    assert "TOCTOU_RACE_CONDITION_DETECTED" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_run_cli_single_test(capsys):
    args = run_args("http://example.com/", "-t", "hspa", "-p", "h2", "-c", "4")
    transport = httpx.MockTransport(lambda r: httpx.Response(200, text="ok"))

    code = await webrace.run_cli(args, transport=transport)

    assert code == 0
    assert "HSPA Burst Summary" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_run_cli_protocol_override_in_auto_mode(capsys):
    args = run_args("http://example.com/", "-p", "h2", "-c", "2")
    transport = httpx.MockTransport(lambda r: httpx.Response(200, text="ok"))

    assert await webrace.run_cli(args, transport=transport) == 0
    assert "HSPA Burst Summary" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_run_cli_unreachable_target(capsys):
    def handler(request):
        raise httpx.ConnectError("All connection attempts failed", request=request)

    args = run_args("http://127.0.0.1:9/", "-c", "3")
    code = await webrace.run_cli(args, transport=httpx.MockTransport(handler))

    out = capsys.readouterr().out
    assert code == 1
    assert "could not be reached" in out
    assert "Burst Summary" not in out
    assert "INSTABILITY_DOS" not in out


@pytest.mark.asyncio
async def test_run_cli_malformed_url(capsys):
    args = run_args("http://", "-t", "toctou", "-p", "http/1.1")
    assert await webrace.run_cli(args) == 1
    assert "could not be reached" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_run_cli_auth_declined():
    args = run_args("http://example.com/", "--auth")
    with patch("webrace.confirm_auth", new=AsyncMock(return_value=False)), \
         patch("webrace.ActiveScanner") as MockScanner:
        assert await webrace.run_cli(args) == 1
        MockScanner.assert_not_called()


@pytest.mark.asyncio
async def test_run_cli_rejects_bad_config():
    args = run_args("http://example.com/", "-t", "toctou", "-p", "http/1.1", "-c", "0")
    assert await webrace.run_cli(args, transport=httpx.MockTransport(lambda r: httpx.Response(200))) == 2


@pytest.mark.asyncio
async def test_confirm_auth_answers():
    session = MagicMock()
    session.prompt_async = AsyncMock(return_value="y")
    assert await webrace.confirm_auth(session) is True

    session.prompt_async = AsyncMock(return_value="")
    assert await webrace.confirm_auth(session) is False

    session.prompt_async = AsyncMock(side_effect=EOFError)
    assert await webrace.confirm_auth(session) is False


def test_main_runs_cli():
    with patch("webrace.run_async", side_effect=clean_run) as mock_run, \
         patch("webrace.colorama_init"), \
         patch("webrace.logging.basicConfig") as mock_logging:
        assert webrace.main(["http://example.com", "-v"]) == 0
        mock_run.assert_called_once()
        assert mock_logging.call_args.kwargs["level"] == webrace.logging.DEBUG


def test_main_keyboard_interrupt():
    def interrupted(coro):
        coro.close()
        raise KeyboardInterrupt

    with patch("webrace.run_async", side_effect=interrupted), \
         patch("webrace.colorama_init"), \
         patch("webrace.logging.basicConfig"):
        assert webrace.main(["http://example.com"]) == 130
