#Filename: structures.py
"""
CORE DATA STRUCTURES
Single Source of Truth (SSOT) for the probe engine, the classification
engine and the findings sink.
Value objects are created once and never mutated after construction.
Strict type enforcement at the runtime boundary.
"""

import enum
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any, Set, Tuple

# -- Constants --

DEFAULT_TIMEOUT_MS: int = 10_000               # Per-probe bounded timeout
DEFAULT_TOCTOU_CONCURRENCY: int = 15
DEFAULT_HSPA_CONCURRENCY: int = 100
HASH_CHAR_LIMIT: int = 50_000                  # Chars fed into the content hash
SNIPPET_LENGTH: int = 500                      # Lowercase snippet for signature matching
DEFAULT_PADDING: bytes = b"X" * 1024           # Last-byte-sync filler payload
PROPAGATION_WINDOW_MS: int = 100               # Barrier wait before final-byte release
FAST_REJECTION_MS: float = 250.0
TIMEOUT_ERROR: str = "Request timed out"
PROBE_PARAM_PREFIX: str = "_webrace_probe_"
USER_AGENT: str = "WebRace-Detector/2.5"

# Classification calibration. These are tuned values, keep them verbatim.
HSPA_FAILURE_RATIO: float = 0.2
TOCTOU_FAILURE_RATIO: float = 0.3
DOS_INDICATOR_RATIO: float = 0.7
AUTH_RATIO: float = 0.8
WAF_SCORE_THRESHOLD: float = 2.0
INSTABILITY_RATIO: float = 0.2
TIMING_VARIANCE_RATIO: float = 0.7
TIMING_MIN_MEAN_MS: float = 50.0

# Headers that are dropped when credentials are omitted.
CREDENTIAL_HEADERS: Set[str] = {'authorization', 'cookie', 'proxy-authorization'}

# -- Enumerations --

class ScanStrategy(str, enum.Enum):
    STANDARD = "standard"
    LAST_BYTE_SYNC = "last-byte-sync"


class TestType(str, enum.Enum):
    __test__ = False  # not a pytest class

    TOCTOU = "TOCTOU"
    HSPA = "HSPA"


class Severity(str, enum.Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    INFO = "Info"


class FindingType(str, enum.Enum):
    TLS_CONFIGURATION_WEAK = "TLS_CONFIGURATION_WEAK"
    TLS_CONFIGURATION_LEGACY = "TLS_CONFIGURATION_LEGACY"
    SECURITY_HEADER_MISSING_HSTS = "SECURITY_HEADER_MISSING_HSTS"
    SECURITY_HEADER_MISSING_CSP = "SECURITY_HEADER_MISSING_CSP"
    SECURITY_HEADER_MISSING_CLICKJACKING = "SECURITY_HEADER_MISSING_CLICKJACKING"
    HSPA_WAF_INTERVENTION = "HSPA_WAF_INTERVENTION"
    HSPA_POTENTIAL_DOS = "H2/H3SPA_POTENTIAL_DOS"
    HSPA_TIMING_VARIANCE = "H2/H3SPA_TIMING_VARIANCE"
    TOCTOU_WAF_INTERVENTION = "TOCTOU_WAF_INTERVENTION"
    TOCTOU_POTENTIAL_INSTABILITY_DOS = "TOCTOU_POTENTIAL_INSTABILITY_DOS"
    TOCTOU_AUTH_REQUIRED = "TOCTOU_AUTH_REQUIRED"
    TOCTOU_RACE_CONDITION_DETECTED = "TOCTOU_RACE_CONDITION_DETECTED"
    TOCTOU_POTENTIAL_INSTABILITY_MEDIUM = "TOCTOU_POTENTIAL_INSTABILITY_MEDIUM"

    @property
    def is_passive(self) -> bool:
        """Header/TLS findings are the only ones the sink may deduplicate."""
        return self.value.startswith(("SECURITY_HEADER_", "TLS_CONFIGURATION_"))

# -- Types --

class ScanConfig:
    """
    Configuration of a single burst.
    Validated on construction, read-only afterwards.
    """
    __slots__ = (
        'url', 'method', 'concurrency', 'strategy', 'delay', 'use_auth',
        'custom_body', 'protocol', 'timeout_ms', 'headers', 'cookies'
    )

    def __init__(
        self,
        url: str,
        method: str = "GET",
        concurrency: int = DEFAULT_TOCTOU_CONCURRENCY,
        strategy: Any = ScanStrategy.STANDARD,
        delay: int = 0,
        use_auth: bool = False,
        custom_body: Optional[str] = None,
        protocol: str = "unknown",
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        headers: Optional[List[Tuple[str, str]]] = None,
        cookies: Optional[Dict[str, str]] = None
    ) -> None:
        if not url:
            raise ValueError("Target URL is required")
        if not method:
            raise ValueError("HTTP method is required")
        # bool is an int subclass; reject it explicitly.
        if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency <= 0:
            raise ValueError(f"Concurrency must be a positive integer, got {concurrency!r}")
        if isinstance(delay, bool) or not isinstance(delay, int) or delay < 0:
            raise ValueError(f"Delay must be a non-negative integer (ms), got {delay!r}")
        if timeout_ms <= 0:
            raise ValueError(f"Timeout must be positive, got {timeout_ms!r}")

        set_ = object.__setattr__
        set_(self, 'url', url)
        set_(self, 'method', method.upper())
        set_(self, 'concurrency', concurrency)
        set_(self, 'strategy', ScanStrategy(strategy))
        set_(self, 'delay', delay)
        set_(self, 'use_auth', bool(use_auth))
        set_(self, 'custom_body', custom_body or None)
        set_(self, 'protocol', protocol or "unknown")
        set_(self, 'timeout_ms', timeout_ms)
        set_(self, 'headers', tuple(headers or ()))
        set_(self, 'cookies', dict(cookies or {}))

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"ScanConfig is immutable (tried to set {name!r})")

    @property
    def credentials_mode(self) -> str:
        return "include" if self.use_auth else "omit"

    def replace(self, **changes: Any) -> 'ScanConfig':
        """Returns a copy with the given fields changed."""
        fields = {name: getattr(self, name) for name in self.__slots__}
        fields['headers'] = list(fields['headers'])
        fields.update(changes)
        return ScanConfig(**fields)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'url': self.url,
            'method': self.method,
            'concurrency': self.concurrency,
            'strategy': self.strategy.value,
            'delay': self.delay,
            'useAuth': self.use_auth,
            'customBody': self.custom_body,
            'protocol': self.protocol,
        }

    def __repr__(self) -> str:
        return f"<ScanConfig {self.method} {self.url} x{self.concurrency} [{self.strategy.value}]>"


class ProbeResult:
    """
    Outcome of a single probe within a burst.
    Optimized __slots__; status 0 means a network-level failure.
    """
    __slots__ = (
        'index', 'status', 'ok', 'duration', 'hash', 'body_snippet', 'headers', 'error'
    )

    def __init__(
        self,
        index: int,
        status: int,
        ok: bool,
        duration: float,
        hash: Optional[str] = None,  # pylint: disable=redefined-builtin
        body_snippet: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        error: Optional[str] = None
    ) -> None:
        if status == 0 and ok:
            raise ValueError("A network-level failure (status 0) cannot be successful")
        set_ = object.__setattr__
        set_(self, 'index', index)
        set_(self, 'status', status)
        set_(self, 'ok', ok)
        set_(self, 'duration', duration)
        set_(self, 'hash', hash)
        set_(self, 'body_snippet', body_snippet)
        set_(self, 'headers', dict(headers or {}))
        set_(self, 'error', error)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"ProbeResult is immutable (tried to set {name!r})")

    @classmethod
    def failure(cls, index: int, duration: float, error: str) -> 'ProbeResult':
        return cls(index, 0, False, duration, error=error)

    @property
    def is_timeout(self) -> bool:
        return self.status == 0 and self.error == TIMEOUT_ERROR

    def to_dict(self) -> Dict[str, Any]:
        """Converts the probe result to the wire/report format."""
        return {
            'index': self.index,
            'status': self.status,
            'ok': self.ok,
            'duration': self.duration,
            'hash': self.hash,
            'bodySnippet': self.body_snippet,
            'headers': dict(self.headers),
            'error': self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], default_index: int = 0) -> 'ProbeResult':
        return cls(
            index=data.get('index', default_index),
            status=data.get('status', 0),
            ok=bool(data.get('ok', False)),
            duration=float(data.get('duration', 0.0)),
            hash=data.get('hash'),
            body_snippet=data.get('bodySnippet'),
            headers=data.get('headers') or {},
            error=data.get('error'),
        )

    def __repr__(self) -> str:
        return f"<ProbeResult #{self.index} Status:{self.status} ok={self.ok}>"


class BurstResult:
    """
    Completed burst. Results are ordered by dispatch index.
    HSPA bursts carry the protocol label and success/failure aggregates.
    """
    __slots__ = ('test_type', 'url', 'duration', 'auth_mode', 'results', 'protocol', 'warnings')

    def __init__(
        self,
        test_type: Any,
        url: str,
        duration: float,
        auth_mode: str,
        results: List[ProbeResult],
        protocol: Optional[str] = None,
        warnings: Optional[List[str]] = None
    ) -> None:
        ordered = tuple(sorted(results, key=lambda r: r.index))
        if [r.index for r in ordered] != list(range(len(ordered))):
            raise ValueError("Burst results must cover every dispatch index exactly once")
        set_ = object.__setattr__
        set_(self, 'test_type', TestType(test_type))
        set_(self, 'url', url)
        set_(self, 'duration', duration)
        set_(self, 'auth_mode', auth_mode)
        set_(self, 'results', ordered)
        set_(self, 'protocol', protocol)
        set_(self, 'warnings', tuple(warnings or ()))

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"BurstResult is immutable (tried to set {name!r})")

    @property
    def total_requests(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failure_count(self) -> int:
        return self.total_requests - self.success_count

    @property
    def failed(self) -> List[ProbeResult]:
        return [r for r in self.results if not r.ok]

    @property
    def successful(self) -> List[ProbeResult]:
        return [r for r in self.results if r.ok]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'url': self.url,
            'duration': self.duration,
            'authMode': self.auth_mode,
            'results': [r.to_dict() for r in self.results],
        }
        if self.test_type is TestType.HSPA:
            data.update({
                'protocol': self.protocol,
                'successCount': self.success_count,
                'failureCount': self.failure_count,
                'totalRequests': self.total_requests,
                'timings': [r.duration for r in self.results],
            })
        return data

    def to_summary(self) -> Dict[str, Any]:
        """Structured summary handed to the transport: {testType, result}."""
        return {'testType': self.test_type.value, 'result': self.to_dict()}

    @classmethod
    def from_summary(cls, summary: Dict[str, Any]) -> 'BurstResult':
        result = summary['result']
        return cls(
            test_type=summary['testType'],
            url=result['url'],
            duration=float(result.get('duration', 0.0)),
            auth_mode=result.get('authMode', 'omit'),
            results=[ProbeResult.from_dict(r, i) for i, r in enumerate(result.get('results', []))],
            protocol=result.get('protocol'),
        )

    def __repr__(self) -> str:
        return (f"<BurstResult {self.test_type.value} {self.url} "
                f"{self.success_count}/{self.total_requests} ok>")


class DiscriminatorVerdict:
    """WAF vs DoS verdict over a failure set. isWaf and isDos are exclusive."""
    __slots__ = ('is_waf', 'is_dos', 'avg_waf_score', 'timeouts', 'server_errors',
                 'connection_resets', 'evidence')

    def __init__(
        self,
        is_waf: bool = False,
        is_dos: bool = False,
        avg_waf_score: float = 0.0,
        timeouts: int = 0,
        server_errors: int = 0,
        connection_resets: int = 0,
        evidence: str = ""
    ) -> None:
        if is_waf and is_dos:
            raise ValueError("A verdict cannot be both WAF and DoS")
        set_ = object.__setattr__
        set_(self, 'is_waf', is_waf)
        set_(self, 'is_dos', is_dos)
        set_(self, 'avg_waf_score', avg_waf_score)
        set_(self, 'timeouts', timeouts)
        set_(self, 'server_errors', server_errors)
        set_(self, 'connection_resets', connection_resets)
        set_(self, 'evidence', evidence)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"DiscriminatorVerdict is immutable (tried to set {name!r})")

    @property
    def dos_indicators(self) -> Dict[str, int]:
        return {
            'timeouts': self.timeouts,
            'serverErrors': self.server_errors,
            'connectionResets': self.connection_resets,
        }

    def __repr__(self) -> str:
        return (f"<DiscriminatorVerdict waf={self.is_waf} dos={self.is_dos} "
                f"score={self.avg_waf_score:.2f}>")


class Finding:
    """
    Typed finding handed to the external sink.
    The core never reads findings back.
    """
    __slots__ = ('type', 'severity', 'message', 'url', 'details', 'timestamp')

    def __init__(
        self,
        type: Any,  # pylint: disable=redefined-builtin
        severity: Any,
        message: str,
        url: str,
        details: Optional[str] = None,
        timestamp: Optional[str] = None
    ) -> None:
        set_ = object.__setattr__
        set_(self, 'type', FindingType(type))
        set_(self, 'severity', Severity(severity))
        set_(self, 'message', message)
        set_(self, 'url', url)
        set_(self, 'details', details)
        set_(self, 'timestamp', timestamp or datetime.now(timezone.utc).isoformat())

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"Finding is immutable (tried to set {name!r})")

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'type': self.type.value,
            'severity': self.severity.value,
            'message': self.message,
            'url': self.url,
            'timestamp': self.timestamp,
        }
        if self.details is not None:
            data['details'] = self.details
        return data

    def __repr__(self) -> str:
        return f"<Finding {self.type.value} [{self.severity.value}] {self.url}>"


def now_ms() -> float:
    """Monotonic clock in milliseconds (performance.now equivalent)."""
    return time.perf_counter() * 1000
