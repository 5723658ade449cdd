#!/usr/bin/env python3
"""
Isolation load test: drives a safe and an unsafe route with overlapping requests
and checks whether any two responses carry the same call1RequestId.

Each route gets a 3-phase open-loop schedule (warm-up, ramp, sustain). Within a
tick the sends are staggered across the second and dispatched without waiting,
so with a long server-side delay many requests are in flight at once.

Usage:
  isolab-loadtest                                   # local target, defaults
  TEST_URL=https://demo.example.com isolab-loadtest
  isolab-loadtest --url http://localhost:8000 --duration 30 --max-rps 50 --delay 2000
"""
import argparse, asyncio, os, re, sys, time
from typing import Dict, List, Optional, Tuple

import httpx

from isolab.tools.analysis import Outcome, Report, analyze, per_phase, per_second

REQUEST_ID_RE = re.compile(r'call1RequestId(?:&quot;|"):\s*(?:&quot;|")([^"&]+)')
DECODE_ERROR = "could not parse call1RequestId from HTML"

# ------------------------ Utilities ------------------------

def join_url(base: str, path: str) -> str:
    if not base.endswith("/") and not path.startswith("/"):
        return base + "/" + path
    if base.endswith("/") and path.startswith("/"):
        return base[:-1] + path
    return base + path

def target_url(base: str, path: str, delay_ms: int) -> str:
    return f"{join_url(base, path)}?delay={delay_ms}"

def parse_request_id(body: str) -> Optional[str]:
    """Pull call1RequestId out of a page; the JSON may be HTML-escaped or literal."""
    m = REQUEST_ID_RE.search(body)
    return m.group(1) if m else None

# ------------------------ Request task ------------------------

async def one_request(client: httpx.AsyncClient, url: str, phase: str = "") -> Outcome:
    t0 = time.perf_counter()

    def record(request_id="", ok=False, error=None, kind="ok"):
        dt_ms = int(round((time.perf_counter() - t0) * 1000.0))
        return Outcome(request_id, dt_ms, ok, error, kind, phase, time.time())

    try:
        r = await client.get(url)
        await r.aread()  # include transfer time
        if not r.is_success:
            return record(error=f"{r.status_code} {r.reason_phrase}", kind="status")
        request_id = parse_request_id(r.text)
        if not request_id:
            return record(error=DECODE_ERROR, kind="decode")
        return record(request_id=request_id, ok=True)
    except Exception as e:
        return record(error=str(e) or type(e).__name__, kind="transport")

# ------------------------ Schedule ------------------------

def build_phases(duration: int, max_rps: int) -> List[Dict]:
    warm = max(2, round(duration * 0.2))
    ramp = max(2, round(duration * 0.3))
    sustain = max(2, duration - warm - ramp)
    warm_rps = max(1, round(max_rps * 0.25))
    return [
        {"label": "warm-up", "duration_sec": warm, "start_rps": warm_rps, "end_rps": warm_rps},
        {"label": "ramp", "duration_sec": ramp, "start_rps": warm_rps, "end_rps": max_rps},
        {"label": "sustain", "duration_sec": sustain, "start_rps": max_rps, "end_rps": max_rps},
    ]

def rate_at(phase: Dict, progress: float) -> int:
    start, end = phase["start_rps"], phase["end_rps"]
    progress = max(0.0, min(1.0, progress))
    return max(1, round(start + (end - start) * progress))

# ------------------------ Open-loop phase runner ------------------------

async def _fire(client: httpx.AsyncClient, url: str, phase: str, records: List[Outcome]):
    records.append(await one_request(client, url, phase))

async def run_phase(client: httpx.AsyncClient, url: str, phase: Dict, records: List[Outcome]) -> List[asyncio.Task]:
    """
    Run one phase's wall-clock window, one tick per second. Returns the tasks it
    started; they are still running and append to `records` as they finish.
    """
    label = phase["label"]
    duration = phase["duration_sec"]
    loop = asyncio.get_running_loop()
    phase_start = loop.time()
    phase_end = phase_start + duration
    tasks = []

    print(f"    {label} ({duration}s, {phase['start_rps']}-{phase['end_rps']} rps) ", end="", flush=True)

    tick = 0
    while tick < duration and loop.time() < phase_end:
        tick_start = loop.time()
        rate = rate_at(phase, (tick_start - phase_start) / duration)
        interval = 1.0 / rate

        for i in range(rate):
            target = i * interval
            actual = loop.time() - tick_start
            if target > actual:
                await asyncio.sleep(target - actual)
            # we're behind otherwise; fire right away
            tasks.append(asyncio.create_task(_fire(client, url, label, records)))

        remaining = 1.0 - (loop.time() - tick_start)
        if remaining > 0:
            await asyncio.sleep(remaining)
        tick += 1
        print(".", end="", flush=True)

    print()
    return tasks

async def stream_load(client: httpx.AsyncClient, base_url: str, path: str, duration: int, max_rps: int, delay_ms: int) -> List[Outcome]:
    url = target_url(base_url, path, delay_ms)
    records: List[Outcome] = []
    inflight: List[asyncio.Task] = []

    for phase in build_phases(duration, max_rps):
        inflight.extend(await run_phase(client, url, phase, records))

    print("    draining in-flight requests...", end="", flush=True)
    await asyncio.gather(*inflight)
    print(" done")
    return records

# ------------------------ Reporting ------------------------

def print_report(report: Report):
    lat = report.latency
    print(f"  Requests:   {report.succeeded}/{report.total} succeeded ({report.error_rate} errors)")
    print(f"  Latency:    p50={lat['p50']}ms  p95={lat['p95']}ms  p99={lat['p99']}ms  max={lat['max']}ms")
    print(f"  Unique IDs: {report.unique} / {report.succeeded}")
    if report.duplicates > 0:
        shown, omitted = report.duplicate_sample()
        extra = f" ...+{omitted} more" if omitted else ""
        print(f"  Duplicates: {report.duplicates} ({', '.join(shown)}{extra})")
    if report.failures:
        kinds = ", ".join(f"{k}={v}" for k, v in sorted(report.failures.items()))
        print(f"  Failures:   {kinds}")

def print_breakdown(records: List[Outcome], show_seconds: bool = False):
    table = per_second(records) if show_seconds else per_phase(records)
    if table.empty:
        return
    print()
    for line in table.to_string(index=False).splitlines():
        print("    " + line)

def print_verdict(safe: Report, unsafe: Report):
    print("\n── RESULTS ───────────────────────────────────\n")
    if safe.leaked:
        print(f"  {safe.path:<8} (request context):  ❌ LEAKED ({safe.duplicates} duplicate IDs, unexpected)")
    else:
        print(f"  {safe.path:<8} (request context):  ✅ ISOLATED")
    if unsafe.leaked:
        print(f"  {unsafe.path:<8} (module singleton): ❌ LEAKED (expected, {unsafe.duplicates} duplicate IDs)")
    else:
        print(f"  {unsafe.path:<8} (module singleton): ⚠️  No leak detected (try higher MAX_RPS or longer DURATION)")

    if safe.failed or unsafe.failed:
        print("\n⚠️  Some requests failed; check error rates above.")
        print("   A high error rate usually means the target is rate limiting or")
        print("   applying WAF/DDoS mitigation, not that the isolation test broke.")

# ------------------------ Orchestration ------------------------

async def preflight(client: httpx.AsyncClient, base_url: str, path: str):
    """One unguarded request; an unreachable target raises here and ends the run."""
    url = target_url(base_url, path, 0)
    r = await client.get(url)
    print(f"[preflight] GET {url} -> {r.status_code}")

async def run_isolation(args, transport: Optional[httpx.AsyncBaseTransport] = None) -> Tuple[Report, Report]:
    print("\n=== Request Isolation Load Test ===")
    print(f"Target:     {args.url}")
    print(f"Duration:   {args.duration}s per endpoint")
    print(f"Max RPS:    {args.max_rps}")
    print(f"Delay:      {args.delay}ms (server-side per request)")
    print(f"In-flight:  ~{round(args.max_rps * args.delay / 1000)} concurrent at peak")

    limits = httpx.Limits(max_connections=None, max_keepalive_connections=20)
    async with httpx.AsyncClient(http2=args.http2, timeout=args.timeout, limits=limits, transport=transport) as client:
        await preflight(client, args.url, args.safe_path)

        reports = []
        for path, pattern in ((args.safe_path, "request context"), (args.unsafe_path, "module singleton")):
            print(f"\n── {path} ({pattern}) ──────────────────────\n")
            records = await stream_load(client, args.url, path, args.duration, args.max_rps, args.delay)
            report = analyze(path, records)
            print_report(report)
            print_breakdown(records, show_seconds=args.per_second)
            reports.append(report)

    safe, unsafe = reports
    print_verdict(safe, unsafe)
    return safe, unsafe

# ------------------------ Main ------------------------

def parse_args(argv=None):
    ap = argparse.ArgumentParser(description="Open-loop load test that detects per-request state leaking between concurrent requests.")
    # string defaults from the environment go through `type` like CLI values do
    ap.add_argument("--url", default=os.getenv("TEST_URL", "http://localhost:3000"), help="Target base URL (env TEST_URL).")
    ap.add_argument("--duration", type=int, default=os.getenv("DURATION", "20"), help="Seconds of load per endpoint (env DURATION).")
    ap.add_argument("--max-rps", type=int, default=os.getenv("MAX_RPS", "30"), help="Peak requests per second (env MAX_RPS).")
    ap.add_argument("--delay", type=int, default=os.getenv("DELAY", "1000"), help="Server-side delay per request in ms (env DELAY).")
    ap.add_argument("--safe-path", default=os.getenv("SAFE_PATH", "/safe"))
    ap.add_argument("--unsafe-path", default=os.getenv("UNSAFE_PATH", "/unsafe"))
    ap.add_argument("--timeout", type=float, default=os.getenv("TIMEOUT", "300.0"), help="Client timeout per request in seconds.")
    ap.add_argument("--http2", action="store_true", help="Enable HTTP/2 if supported by server.")
    ap.add_argument("--per-second", action="store_true", help="Print per-second buckets instead of per-phase.")
    args = ap.parse_args(argv)

    if args.duration <= 0:
        raise SystemExit("--duration must be a positive number of seconds")
    if args.max_rps <= 0:
        raise SystemExit("--max-rps must be positive")
    if args.delay < 0:
        raise SystemExit("--delay must not be negative")
    if args.timeout <= 0:
        raise SystemExit("--timeout must be positive")
    return args

def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        asyncio.run(run_isolation(args))
    except Exception as err:
        print(f"Test failed: {err!r}", file=sys.stderr)
        return 1
    return 0

if __name__ == "__main__":
    sys.exit(main())
