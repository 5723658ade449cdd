"""Configuration parsing, the full two-path run, and the fatal exit path."""

import itertools

import httpx
import pytest

from isolab.tools.load_isolation import main, parse_args, run_isolation


def test_defaults(monkeypatch):
    for name in ("TEST_URL", "DURATION", "MAX_RPS", "DELAY", "SAFE_PATH", "UNSAFE_PATH", "TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    args = parse_args([])
    assert args.url == "http://localhost:3000"
    assert args.duration == 20
    assert args.max_rps == 30
    assert args.delay == 1000
    assert (args.safe_path, args.unsafe_path) == ("/safe", "/unsafe")
    assert args.http2 is False


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("TEST_URL", "https://demo.example.com")
    monkeypatch.setenv("DURATION", "30")
    monkeypatch.setenv("MAX_RPS", "50")
    monkeypatch.setenv("DELAY", "2000")
    args = parse_args([])
    assert (args.url, args.duration, args.max_rps, args.delay) == ("https://demo.example.com", 30, 50, 2000)
    # flags still win over the environment
    assert parse_args(["--duration", "8"]).duration == 8


def test_bad_environment_value(monkeypatch):
    monkeypatch.setenv("MAX_RPS", "lots")
    with pytest.raises(SystemExit) as exc:
        parse_args([])
    assert exc.value.code != 0


@pytest.mark.parametrize("argv", [["--duration", "0"], ["--max-rps", "-3"], ["--delay", "-1"], ["--timeout", "0"]])
def test_invalid_values_are_fatal(argv):
    with pytest.raises(SystemExit) as exc:
        parse_args(argv)
    assert exc.value.code


def test_unreachable_target_exits_nonzero(capsys):
    code = main(["--url", "http://127.0.0.1:1", "--duration", "6", "--max-rps", "1", "--timeout", "2"])
    assert code == 1
    assert "Test failed" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_full_run_compares_both_paths(capsys):
    counter = itertools.count()

    def handler(request):
        if request.url.path == "/unsafe":
            return httpx.Response(200, text="<pre>call1RequestId&quot;:&quot;shared&quot;</pre>")
        return httpx.Response(200, text=f"<pre>call1RequestId&quot;:&quot;id-{next(counter)}&quot;</pre>")

    args = parse_args(["--url", "http://target", "--duration", "6", "--max-rps", "2", "--delay", "0"])
    safe, unsafe = await run_isolation(args, transport=httpx.MockTransport(handler))

    assert safe.path == "/safe" and safe.leaked is False
    assert unsafe.path == "/unsafe" and unsafe.leaked is True
    assert unsafe.duplicates == unsafe.total - 1

    out = capsys.readouterr().out
    assert "ISOLATED" in out
    assert "LEAKED (expected" in out
    assert "Some requests failed" not in out
