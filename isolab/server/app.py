"""FastAPI target for the isolation load test.

Every route reads the request's client, sleeps `delay` ms, then reads it
again. The page routes render the JSON result HTML-escaped inside a <pre>
block, which is the form the load tester decodes.
"""

import argparse
import asyncio
import html
import json
import logging
import time
import uuid
from typing import Any, Dict

import uvicorn
from fastapi import FastAPI, Query
from fastapi.responses import HTMLResponse

from .clients import (
    RequestClient,
    RequestContext,
    get_request_client,
    get_singleton_client,
    reset_singleton_client,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Request Isolation Demo", version="0.1")


def _result(route: str, pattern: str, client1: RequestClient, client2: RequestClient, delay_ms: int) -> Dict[str, Any]:
    return {
        "route": route,
        "pattern": pattern,
        "call1RequestId": client1.request_id,
        "call2RequestId": client2.request_id,
        "match": client1.request_id == client2.request_id,
        "delayMs": delay_ms,
        "timestamp": int(time.time() * 1000),
    }


def _log_read(route: str, req_id: str, scope: str, client1: RequestClient, client2: RequestClient):
    wrote, got = client1.request_id[:8], client2.request_id[:8]
    same = client1.request_id == client2.request_id
    verdict = "✓ same" if same else f"✗ MISMATCH (wrote {wrote}, got {got})"
    logger.info("[%s] req=%s READ   %s=%s → %s", route, req_id, scope, got, verdict)


async def run_safe(delay_ms: int) -> Dict[str, Any]:
    ctx = RequestContext()
    req_id = uuid.uuid4().hex[:8]

    client1 = get_request_client(ctx)
    logger.info("[safe]   req=%s WRITE  scope=%s (delay %dms)", req_id, client1.request_id[:8], delay_ms)
    await asyncio.sleep(delay_ms / 1000.0)
    client2 = get_request_client(ctx)
    _log_read("safe", req_id, "scope", client1, client2)

    return _result("safe", "request context", client1, client2, delay_ms)


async def run_unsafe(delay_ms: int) -> Dict[str, Any]:
    req_id = uuid.uuid4().hex[:8]

    client1 = get_singleton_client()
    logger.info("[unsafe] req=%s WRITE  singleton=%s (delay %dms)", req_id, client1.request_id[:8], delay_ms)
    await asyncio.sleep(delay_ms / 1000.0)
    client2 = get_singleton_client()
    _log_read("unsafe", req_id, "singleton", client1, client2)

    result = _result("unsafe", "module singleton", client1, client2, delay_ms)
    # reset only after the response is built; the leak window is the delay
    reset_singleton_client()
    return result


def _page(title: str, result: Dict[str, Any]) -> HTMLResponse:
    body = html.escape(json.dumps(result, indent=2))
    return HTMLResponse(
        "<!doctype html><html><head><title>{0}</title></head>"
        "<body><h1>{0}</h1><pre>{1}</pre></body></html>".format(html.escape(title), body)
    )


@app.get("/api/safe")
async def api_safe(delay: int = Query(1000, ge=0)):
    return await run_safe(delay)


@app.get("/api/unsafe")
async def api_unsafe(delay: int = Query(1000, ge=0)):
    return await run_unsafe(delay)


@app.get("/safe", response_class=HTMLResponse)
async def page_safe(delay: int = Query(1000, ge=0)):
    return _page("Safe route", await run_safe(delay))


@app.get("/unsafe", response_class=HTMLResponse)
async def page_unsafe(delay: int = Query(1000, ge=0)):
    return _page("Unsafe route", await run_unsafe(delay))


def main(argv=None):
    ap = argparse.ArgumentParser(description="Serve the safe/unsafe isolation demo routes.")
    ap.add_argument("--host", default="127.0.0.1")
    ap.add_argument("--port", type=int, default=3000)
    ap.add_argument("--log-level", default="info")
    args = ap.parse_args(argv)
    # uvicorn configures only its own loggers; route ours to the same console
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s:     %(message)s")
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
