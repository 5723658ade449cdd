#!/usr/bin/env python3
import argparse, subprocess, sys, shlex, time
from typing import List

import httpx

def wait_ready(url: str, deadline_s: float, proc: subprocess.Popen) -> bool:
    deadline = time.time() + deadline_s
    while time.time() < deadline:
        if proc.poll() is not None:
            return False
        try:
            httpx.get(url, timeout=1.0)
            return True
        except httpx.TransportError:
            time.sleep(0.2)
    return False

def stop(proc: subprocess.Popen):
    if proc.poll() is not None:
        return
    print("[one_run] STOP target…")
    proc.terminate()
    try:
        proc.wait(timeout=5)
    except subprocess.TimeoutExpired:
        print("[one_run] target still alive; killing…", file=sys.stderr)
        proc.kill()
        proc.wait()

def load_command(base_url: str, args) -> List[str]:
    cmd = [sys.executable, "-m", "isolab.tools.load_isolation",
            "--url", base_url,
            "--duration", str(args.duration),
            "--max-rps", str(args.max_rps),
            "--delay", str(args.delay),
            "--safe-path", args.safe_path,
            "--unsafe-path", args.unsafe_path,
            "--timeout", str(args.timeout)]
    if args.http2:
        cmd.append("--http2")
    if args.per_second:
        cmd.append("--per-second")
    return cmd

def parse_args(argv=None):
    ap = argparse.ArgumentParser(description="Start the demo target locally, run the isolation load test against it, stop the target")
    ap.add_argument("--host", default="127.0.0.1")
    ap.add_argument("--port", type=int, default=3000)
    ap.add_argument("--duration", type=int, default=20)
    ap.add_argument("--max-rps", type=int, default=30)
    ap.add_argument("--delay", type=int, default=1000)
    ap.add_argument("--safe-path", default="/safe")
    ap.add_argument("--unsafe-path", default="/unsafe")
    ap.add_argument("--timeout", type=float, default=300.0)
    ap.add_argument("--http2", action="store_true")
    ap.add_argument("--per-second", action="store_true")
    ap.add_argument("--ready-timeout", type=float, default=15.0)
    return ap.parse_args(argv)

def run(argv=None) -> int:
    args = parse_args(argv)

    base_url = f"http://{args.host}:{args.port}"
    target_cmd = [sys.executable, "-m", "isolab.server.app",
                  "--host", args.host, "--port", str(args.port),
                  "--log-level", "warning"]
    print("[one_run] START target:", " ".join(shlex.quote(x) for x in target_cmd))
    target_p = subprocess.Popen(target_cmd, stdout=sys.stdout, stderr=sys.stderr)

    try:
        if not wait_ready(f"{base_url}/api/safe?delay=0", args.ready_timeout, target_p):
            print(f"[one_run] target did not come up at {base_url}.", file=sys.stderr)
            return 1
        print(f"[one_run] target ready at {base_url}")

        load_cmd = load_command(base_url, args)
        print("[one_run] START loader:", " ".join(shlex.quote(x) for x in load_cmd))
        ret = subprocess.run(load_cmd).returncode
        print(f"[one_run] loader exited with code {ret}")
    finally:
        stop(target_p)

    if ret == 0:
        print("\n✅ Done.")
    return ret

if __name__ == "__main__":
    sys.exit(run())
