"""Two ways of handing out the per-request "client" the demo routes read twice.

`RequestContext` is created once per request and passed explicitly to every
call made on behalf of that request, so concurrent requests never see each
other's client.

The singleton cell is module state shared by every request in the process.
It is deliberately left unscoped and unsynchronized: a second request that
arrives while the first is still sleeping gets the first request's client.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class RequestClient:
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: float = field(default_factory=time.time)


@dataclass
class RequestContext:
    client: RequestClient = field(default_factory=RequestClient)


def get_request_client(ctx: RequestContext) -> RequestClient:
    return ctx.client


# ------------------------ Unsafe: module singleton ------------------------

_singleton: Optional[RequestClient] = None


def read_singleton_client() -> Optional[RequestClient]:
    return _singleton


def write_singleton_client(client: RequestClient) -> RequestClient:
    global _singleton
    _singleton = client
    return client


def get_singleton_client() -> RequestClient:
    """Return the shared client, creating it if nobody has one yet."""
    existing = read_singleton_client()
    if existing is None:
        existing = write_singleton_client(RequestClient())
    return existing


def reset_singleton_client():
    global _singleton
    _singleton = None
