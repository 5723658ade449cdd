"""Response decoding and the single-request probe against mocked transports."""

import httpx
import pytest

from isolab.tools.load_isolation import DECODE_ERROR, join_url, one_request, parse_request_id, target_url


def test_decode_entity_quoted():
    body = "<pre>{&quot;route&quot;:&quot;safe&quot;,&quot;call1RequestId&quot;:&quot;abc123&quot;}</pre>"
    assert parse_request_id(body) == "abc123"


def test_decode_literal_quotes():
    assert parse_request_id('{"call1RequestId":"xyz789","match":true}') == "xyz789"


def test_decode_with_whitespace_after_colon():
    assert parse_request_id('"call1RequestId": "spaced-1"') == "spaced-1"
    assert parse_request_id("call1RequestId&quot;: &quot;spaced-2&quot;") == "spaced-2"


def test_decode_missing():
    assert parse_request_id("<html><body>nothing here</body></html>") is None
    assert parse_request_id('{"call2RequestId":"nope"}') is None


def test_urls():
    assert join_url("http://h:1/", "/safe") == "http://h:1/safe"
    assert join_url("http://h:1", "safe") == "http://h:1/safe"
    assert target_url("http://h:1", "/unsafe", 250) == "http://h:1/unsafe?delay=250"


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_probe_success():
    def handler(request):
        assert request.url.params["delay"] == "5"
        return httpx.Response(200, text='<pre>call1RequestId&quot;:&quot;r-1&quot;</pre>')

    async with _client(handler) as client:
        out = await one_request(client, "http://target/safe?delay=5", phase="ramp")
    assert out.ok is True
    assert out.request_id == "r-1"
    assert out.error is None
    assert out.kind == "ok"
    assert out.phase == "ramp"
    assert out.latency_ms >= 0


@pytest.mark.asyncio
async def test_probe_http_error():
    async with _client(lambda request: httpx.Response(500)) as client:
        out = await one_request(client, "http://target/safe")
    assert out.ok is False
    assert out.request_id == ""
    assert out.kind == "status"
    assert out.error == "500 Internal Server Error"


@pytest.mark.asyncio
async def test_probe_decode_failure():
    async with _client(lambda request: httpx.Response(200, text="<html>maintenance</html>")) as client:
        out = await one_request(client, "http://target/safe")
    assert out.ok is False
    assert out.kind == "decode"
    assert out.error == DECODE_ERROR


@pytest.mark.asyncio
async def test_probe_transport_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        out = await one_request(client, "http://target/safe")
    assert out.ok is False
    assert out.kind == "transport"
    assert "connection refused" in out.error
