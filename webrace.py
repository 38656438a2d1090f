# webrace.py
"""
WebRace Detector -- Race Condition & Concurrency Instability Probe.

ARCHITECTURE:
- ENGINE: 'burst.py' (standard / last-byte-sync) over 'probe.py' (httpx).
- CLASSIFY: 'discriminator.py' (WAF vs DoS) + 'analyzers.py' (HSPA, ToCTOU).
- PASSIVE: 'passive.py' (TLS + security headers) during preflight.
- OUTPUT: colorama / prompt_toolkit rendering, numpy timing histogram.
"""

import sys
import asyncio
import argparse
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from colorama import Fore, Style, init as colorama_init
from prompt_toolkit import PromptSession, print_formatted_text
from prompt_toolkit.formatted_text import ANSI

from structures import BurstResult, Finding, ScanStrategy, Severity, TestType, DEFAULT_TIMEOUT_MS
from findings import FindingStore
from scanner import ActiveScanner, ScanSettings

if sys.platform != "win32":
    import uvloop
else:
    uvloop = None

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"

BANNER = r"""
{Fore.CYAN}
 _       __     __    ____
| |     / /__  / /_  / __ \____ _________
| | /| / / _ \/ __ \/ /_/ / __ `/ ___/ _ \
| |/ |/ /  __/ /_/ / _, _/ /_/ / /__/  __/
|__/|__/\___/_.___/_/ |_|\__,_/\___/\___/
{Fore.YELLOW}     [ WEBRACE DETECTOR SUITE ]{Style.RESET_ALL}
"""

AUTH_WARNING = (
    "WARNING: Authenticated scans send your session cookies/credentials.\n"
    "If the target uses GET requests for state-changing actions (e.g. /delete_account, /logout),\n"
    "this tool WILL trigger them concurrently. Use only on test accounts."
)

SEVERITY_COLORS = {
    Severity.HIGH: Fore.RED,
    Severity.MEDIUM: Fore.YELLOW,
    Severity.LOW: Fore.CYAN,
    Severity.INFO: Fore.WHITE,
}


def say(text: str) -> None:
    print_formatted_text(ANSI(text))

# -----------------------------------------------------------------------------
# 1. Rendering
# -----------------------------------------------------------------------------

def render_burst(burst: BurstResult) -> None:
    """Prints response signatures, timing metrics and a timing histogram."""
    say(f"\n{Fore.CYAN}-- {burst.test_type.value} Burst Summary ({burst.url}) --{Style.RESET_ALL}")
    say(f"  Requests: {burst.total_requests}  OK: {burst.success_count}  "
        f"Failed: {burst.failure_count}  Total: {burst.duration:.2f}ms  Auth: {burst.auth_mode}")
    for warning in burst.warnings:
        say(f"  {Fore.YELLOW}[!] {warning}{Style.RESET_ALL}")

    signatures: Dict[Tuple[int, Optional[str]], list] = defaultdict(list)
    for r in burst.results:
        signatures[(r.status, r.hash)].append(r)

    say(f"\n{Fore.YELLOW}[Response Signatures]{Style.RESET_ALL}")
    print(f"  {'Count':<6} {'Status':<6} {'Hash':<10} {'Snippet / Error'}")
    print("  " + "-" * 90)
    for (status, body_hash), group in sorted(signatures.items(), key=lambda kv: kv[0][0]):
        first = group[0]
        detail = first.error or (first.body_snippet or "")[:60].replace("\n", " ")
        sc_color = Fore.GREEN if 200 <= status < 300 else (Fore.RED if status >= 500 or status == 0 else Fore.YELLOW)
        say(f"  {len(group):<6} {sc_color}{status:<6}{Style.RESET_ALL} {body_hash or 'N/A':<10} {detail}")
    print("  " + "-" * 90)

    timings = [r.duration for r in burst.successful]
    if not timings:
        return
    arr = np.asarray(timings)
    say(f"\n{Fore.YELLOW}[Timing Metrics]{Style.RESET_ALL}")
    print(f"  Average: {arr.mean():.2f}ms")
    print(f"  Min/Max: {arr.min():.2f}ms / {arr.max():.2f}ms")
    print(f"  Jitter (StdDev): {arr.std():.2f}ms")

    if len(timings) > 1:
        render_histogram(timings)


def render_histogram(timings: Sequence[float]) -> None:
    say(f"\n{Fore.YELLOW}[Timing Distribution (Histogram)]{Style.RESET_ALL}")
    bins_count = min(int(len(timings) / 5) + 5, 20)
    counts, bins = np.histogram(timings, bins=bins_count)
    max_count = counts.max() if len(counts) else 0
    if max_count == 0:
        return
    for i, count in enumerate(counts):
        bar = "#" * int((count / max_count) * 40)
        bar_color = Fore.GREEN
        if i > len(counts) * 0.7:
            bar_color = Fore.YELLOW
        if i > len(counts) * 0.9:
            bar_color = Fore.RED
        say(f"  {bins[i]:>8.2f}ms -- {bins[i + 1]:>8.2f}ms | {bar_color}{bar:<40}{Style.RESET_ALL} ({count})")


def render_findings(findings: List[Finding]) -> None:
    say(f"\n{Fore.CYAN}-- Findings ({len(findings)}) --{Style.RESET_ALL}")
    if not findings:
        print("  (No findings)")
        return
    for f in findings:
        color = SEVERITY_COLORS.get(f.severity, "")
        say(f"  {color}[{f.severity.value}]{Style.RESET_ALL} {f.type.value}: {f.message}")
        if f.details:
            print(f"      {f.details}")

# -----------------------------------------------------------------------------
# 2. CLI
# -----------------------------------------------------------------------------

def parse_header(value: str) -> Tuple[str, str]:
    if ":" not in value:
        raise argparse.ArgumentTypeError(f"Header must be 'Name: value', got {value!r}")
    name, _, val = value.partition(":")
    return name.strip(), val.strip()


def parse_cookie(value: str) -> Tuple[str, str]:
    if "=" not in value:
        raise argparse.ArgumentTypeError(f"Cookie must be 'name=value', got {value!r}")
    name, _, val = value.partition("=")
    return name.strip(), val.strip()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="WebRace Detector - ToCTOU / HSPA concurrency probe")
    parser.add_argument("url", help="Target URL")
    parser.add_argument("-t", "--test", default="auto", choices=["auto", "toctou", "hspa"],
                        help="Scan to run (auto: ToCTOU, plus HSPA on h2/h3)")
    parser.add_argument("-m", "--method", default="GET", help="HTTP method (default: GET)")
    parser.add_argument("-c", "--concurrency", type=int, default=None,
                        help="Probes per burst (default: 15 ToCTOU / 100 HSPA)")
    parser.add_argument("-s", "--strategy", default=ScanStrategy.STANDARD.value,
                        choices=[s.value for s in ScanStrategy], help="Delivery strategy")
    parser.add_argument("-d", "--delay", type=int, default=0, help="Inter-request delay in ms (standard only)")
    parser.add_argument("-b", "--body", default=None, help="Custom request body to replay")
    parser.add_argument("-p", "--protocol", default=None,
                        help="Protocol override (h2, http/1.1); default: detected by preflight")
    parser.add_argument("-H", "--header", action="append", type=parse_header, default=[],
                        help="Extra header 'Name: value' (repeatable)")
    parser.add_argument("--cookie", action="append", type=parse_cookie, default=[],
                        help="Cookie 'name=value' sent in authenticated mode (repeatable)")
    parser.add_argument("--auth", action="store_true", help="Authenticated scan mode (include credentials)")
    parser.add_argument("-y", "--yes", action="store_true", help="Skip the authenticated-mode confirmation")
    parser.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT_MS, help="Per-probe timeout in ms")
    parser.add_argument("-o", "--output", default=None, help="Export findings as JSON to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


async def confirm_auth(session: Optional[PromptSession] = None) -> bool:
    say(f"{Fore.RED}{AUTH_WARNING}{Style.RESET_ALL}")
    session = session or PromptSession()
    try:
        answer = await session.prompt_async("Proceed? [y/N] ")
    except (EOFError, KeyboardInterrupt):
        return False
    return answer.strip().lower() in ("y", "yes")


def settings_from_args(args: argparse.Namespace) -> ScanSettings:
    settings = ScanSettings(
        auth_scan_mode=args.auth,
        strategy=ScanStrategy(args.strategy),
        delay=args.delay,
        method=args.method,
        custom_body=args.body,
        headers=args.header,
        cookies=dict(args.cookie),
        timeout_ms=args.timeout,
    )
    if args.concurrency is not None:
        settings.toctou_concurrency = args.concurrency
        settings.hspa_concurrency = args.concurrency
    return settings


async def run_cli(args: argparse.Namespace, transport=None) -> int:
    say(BANNER.format(Fore=Fore, Style=Style))

    if args.auth and not args.yes and not await confirm_auth():
        say(f"{Fore.YELLOW}[*] Aborted.{Style.RESET_ALL}")
        return 1

    store = FindingStore()
    scanner = ActiveScanner(settings_from_args(args), store, transport=transport)

    only = None if args.test == "auto" else TestType(args.test.upper())
    try:
        bursts = await scanner.scan(args.url, protocol_hint=args.protocol, only=only)
    except ValueError as e:
        say(f"{Fore.RED}[ERR] Invalid configuration: {e}{Style.RESET_ALL}")
        return 2

    if not bursts:
        render_findings(store.all())
        say(f"{Fore.RED}[ERR] Target {args.url} could not be reached. No bursts were sent.{Style.RESET_ALL}")
        return 1

    for burst in bursts:
        render_burst(burst)
    render_findings(store.all())

    if args.output:
        try:
            path = store.export_json(args.output)
        except OSError as e:
            say(f"{Fore.RED}[ERR] Could not write report: {e}{Style.RESET_ALL}")
            return 1
        say(f"{Fore.GREEN}[+] Report written to {path}{Style.RESET_ALL}")
    return 0


def run_async(coro) -> int:
    """Runs the coroutine on uvloop where available."""
    if uvloop is not None:
        with asyncio.Runner(loop_factory=uvloop.new_event_loop) as runner:
            return runner.run(coro)
    return asyncio.run(coro)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )
    colorama_init(autoreset=True)
    try:
        return run_async(run_cli(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
