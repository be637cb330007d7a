import asyncio
import contextlib
import json

import pytest
import websockets

from occlient.wsclient import WsClient, WsResponse, decode_frame, encode_frame


def _response_frame(code, payload, route, big=""):
    body = json.dumps({"c": code, "p": payload, "r": route}, separators=(",", ":"))
    return f"{len(body.encode('utf-8')):04x}{body}{big}"


def test_encode_frame_wire_format():
    assert encode_frame("u", "r", "p", "") == '0019{"t":"u","r":"r","p":"p"}'


def test_encode_frame_prefix_counts_utf8_bytes():
    frame = encode_frame("é", "user/hello", "ünïcode", "")
    body = frame[4:]
    assert int(frame[:4], 16) == len(body.encode("utf-8"))
    assert json.loads(body) == {"t": "é", "r": "user/hello", "p": "ünïcode"}


def test_encode_frame_appends_big_payload():
    frame = encode_frame("token", "user/run", "{}", "BIGDATA")
    length = int(frame[:4], 16)
    assert frame.encode("utf-8")[4 + length:].decode("utf-8") == "BIGDATA"


def test_decode_round_trip_without_big_payload():
    frame = _response_frame(1, "x", "a")
    assert decode_frame(frame) == (WsResponse(1, "x", "a"), "")


def test_decode_round_trip_with_big_payload():
    frame = _response_frame(-5, "payload", "user/run", "tail data")
    assert decode_frame(frame) == (WsResponse(-5, "payload", "user/run"), "tail data")


def test_decode_ignores_extra_fields():
    body = '{"c":2,"p":"q","r":"z","extra":true}'
    frame = f"{len(body):04x}{body}"
    assert decode_frame(frame) == (WsResponse(2, "q", "z"), "")


@pytest.mark.parametrize(
    "text",
    [
        "",
        "00a",
        "zzzz{}",
        "0100{\"c\":1}",
        "0003abc",
    ],
)
def test_decode_rejects_malformed_frames(text):
    assert decode_frame(text) is None


@pytest.mark.parametrize(
    "obj",
    [
        {"p": "x", "r": "a"},
        {"c": "1", "p": "x", "r": "a"},
        {"c": True, "p": "x", "r": "a"},
        {"c": 1.5, "p": "x", "r": "a"},
        {"c": 40000, "p": "x", "r": "a"},
        {"c": 1, "p": 3, "r": "a"},
        {"c": 1, "p": "x"},
    ],
)
def test_decode_rejects_bad_fields(obj):
    body = json.dumps(obj)
    assert decode_frame(f"{len(body):04x}{body}") is None


@pytest.mark.asyncio
async def test_dispatch_runs_plain_route():
    client = WsClient("token", "ws://localhost:1/")
    calls = []

    async def handler(code, payload):
        calls.append((code, payload))

    client.route_ws("user/hello", handler)
    handled = await client.dispatch(_response_frame(7, "hi", "user/hello"))
    assert handled is True
    assert calls == [(7, "hi")]


@pytest.mark.asyncio
async def test_dispatch_routes_big_payload_to_big_handler():
    client = WsClient("token", "ws://localhost:1/")
    plain, big = [], []

    async def on_plain(code, payload):
        plain.append((code, payload))

    async def on_big(code, payload, big_payload):
        big.append((code, payload, big_payload))

    client.route_ws("user/run", on_plain)
    client.route_ws_big_payload("user/run", on_big)
    assert await client.dispatch(_response_frame(0, "p", "user/run", "blob")) is True
    assert big == [(0, "p", "blob")]
    assert plain == []


@pytest.mark.asyncio
async def test_dispatch_big_payload_without_big_route_is_not_handled():
    client = WsClient("token", "ws://localhost:1/")
    calls = []

    async def on_plain(code, payload):
        calls.append(payload)

    client.route_ws("user/run", on_plain)
    assert await client.dispatch(_response_frame(0, "p", "user/run", "blob")) is False
    assert calls == []


@pytest.mark.asyncio
async def test_dispatch_unknown_route_and_garbage():
    client = WsClient("token", "ws://localhost:1/")
    assert await client.dispatch(_response_frame(0, "p", "nowhere")) is False
    assert await client.dispatch("not a frame") is False


@pytest.mark.asyncio
async def test_round_trip_through_server():
    received = asyncio.Queue()
    reply = _response_frame(0, "pong", "user/hello")

    async def server_handler(ws, *args):
        async for message in ws:
            await received.put(message)
            await ws.send(reply)

    async with websockets.serve(server_handler, "127.0.0.1", 0) as server:
        port = next(iter(server.sockets)).getsockname()[1]
        client = WsClient("token", f"ws://127.0.0.1:{port}/", reconnect_delay=0.05)
        got = asyncio.Queue()

        async def on_hello(code, payload):
            await got.put((code, payload))

        client.route_ws("user/hello", on_hello)
        task = client.start_ws()
        try:
            await client.send("user/hello", "ping")
            frame = await asyncio.wait_for(received.get(), 5)
            assert frame == encode_frame("token", "user/hello", "ping", "")
            assert await asyncio.wait_for(got.get(), 5) == (0, "pong")

            await client.send_big_payload("user/run", "{}", "BIG")
            frame = await asyncio.wait_for(received.get(), 5)
            assert frame == encode_frame("token", "user/run", "{}", "BIG")
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task