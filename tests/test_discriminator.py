import pytest

from discriminator import analyze_waf_vs_dos, failed_subset, WAF_BODY_SIGNATURES
from structures import TIMEOUT_ERROR


def test_no_failures_is_neither():
    verdict = analyze_waf_vs_dos([])
    assert verdict.is_waf is False
    assert verdict.is_dos is False
    assert verdict.avg_waf_score == 0.0
    assert verdict.evidence == ""


def test_signature_lexicon_is_lowercase():
    assert len(WAF_BODY_SIGNATURES) == 17
    assert all(sig == sig.lower() for sig in WAF_BODY_SIGNATURES)


def test_rate_limit_statuses_are_waf(make_result):
    failed = [make_result(status=429, hash="a", duration=d) for d in (100, 110, 90, 120)]
    verdict = analyze_waf_vs_dos(failed)
    # 4x consistency bonus (16) + per probe 429 (4) + fast (1)
    assert verdict.avg_waf_score == pytest.approx(9.0)
    assert verdict.is_waf is True
    assert verdict.is_dos is False
    assert "Status 429 (Too Many Requests)." in verdict.evidence
    assert "Consistent response body (Hash)." in verdict.evidence


def test_timeouts_are_dos(make_result):
    failed = [make_result(status=0, error=TIMEOUT_ERROR, duration=5000) for _ in range(3)]
    failed.append(make_result(status=200, hash="b", duration=200))
    verdict = analyze_waf_vs_dos(failed)
    assert verdict.is_waf is False
    assert verdict.is_dos is True
    assert verdict.timeouts == 3
    assert verdict.dos_indicators == {"timeouts": 3, "serverErrors": 0, "connectionResets": 0}


def test_body_signatures_tip_mixed_signals_to_waf(make_result):
    failed = [
        make_result(status=403, snippet="cloudflare security check", hash="b", duration=150),
        make_result(status=403, snippet="cloudflare security check", hash="b", duration=160),
        make_result(status=500, hash="c", duration=1000),
        make_result(status=200, hash="d", duration=200),
    ]
    verdict = analyze_waf_vs_dos(failed)
    assert verdict.avg_waf_score == pytest.approx(2.5)
    assert verdict.is_waf is True
    assert verdict.is_dos is False
    assert verdict.server_errors == 1


def test_consistent_block_page_is_waf(make_result):
    failed = [make_result(status=403, hash="blocked", duration=d) for d in (80, 85, 90, 75)]
    verdict = analyze_waf_vs_dos(failed)
    assert verdict.is_waf is True
    assert verdict.is_dos is False


def test_server_errors_are_dos(make_result):
    failed = [
        make_result(status=502, hash="e1", duration=1200),
        make_result(status=503, hash="e2", duration=1500),
        make_result(status=500, hash="e3", duration=1100),
        make_result(status=504, hash="e4", duration=1300),
    ]
    verdict = analyze_waf_vs_dos(failed)
    assert verdict.is_waf is False
    assert verdict.is_dos is True
    # 503 scores as a (weak) WAF signal rather than a server error.
    assert verdict.server_errors == 3
    assert verdict.avg_waf_score == pytest.approx(0.125)


def test_cloudflare_headers_are_waf(make_result):
    failed = [
        make_result(status=403, headers={"cf-ray": "123"}, hash="cf", duration=50),
        make_result(status=403, headers={"server": "cloudflare"}, hash="cf", duration=55),
        make_result(status=403, headers={"cf-ray": "124"}, hash="cf", duration=1000),
    ]
    verdict = analyze_waf_vs_dos(failed)
    assert verdict.avg_waf_score == pytest.approx(9.5 / 3)
    assert verdict.is_waf is True
    assert "Cloudflare indicators." in verdict.evidence


def test_slow_forbidden_alone_is_not_waf(make_result):
    failed = [make_result(status=403, duration=1000) for _ in range(4)]
    verdict = analyze_waf_vs_dos(failed)
    assert verdict.avg_waf_score == pytest.approx(1.5)
    assert verdict.is_waf is False
    assert verdict.is_dos is False


def test_fast_rejection_needs_another_signal(make_result):
    failed = [make_result(status=0, error="Connection reset by peer", duration=5) for _ in range(4)]
    verdict = analyze_waf_vs_dos(failed)
    assert verdict.avg_waf_score == 0.0
    assert "Rapid rejection time." not in verdict.evidence
    assert verdict.connection_resets == 4
    assert verdict.is_dos is True


def test_moderate_hash_consistency(make_result):
    # 10 failures, 2 distinct hashes: 1 < 2 < 3
    failed = [make_result(status=418, hash="h1" if i % 2 else "h2", duration=900) for i in range(10)]
    verdict = analyze_waf_vs_dos(failed)
    assert verdict.avg_waf_score == pytest.approx(1.0)
    assert verdict.evidence == "High response body consistency."


def test_retry_after_and_sucuri(make_result):
    failed = [make_result(status=503, headers={"retry-after": "10", "x-sucuri-id": "1"}, duration=900)]
    verdict = analyze_waf_vs_dos(failed)
    # 503 (0.5) + retry-after (4) + sucuri (1)
    assert verdict.avg_waf_score == pytest.approx(5.5)
    assert verdict.evidence == "Retry-After header. Sucuri indicators."


def test_evidence_is_deduplicated(make_result):
    failed = [make_result(status=429, duration=900) for _ in range(6)]
    verdict = analyze_waf_vs_dos(failed)
    assert verdict.evidence.count("Status 429") == 1


def test_verdict_never_both(make_result):
    failed = [make_result(status=0, error=TIMEOUT_ERROR, snippet="access denied", duration=10) for _ in range(5)]
    verdict = analyze_waf_vs_dos(failed)
    assert not (verdict.is_waf and verdict.is_dos)
    assert verdict.is_waf is True


def test_failed_subset(make_result):
    results = [make_result(index=0), make_result(index=1, status=500), make_result(index=2, status=0)]
    assert [r.index for r in failed_subset(results)] == [1, 2]
