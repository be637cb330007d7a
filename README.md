# occlient

A small client library for talking to a remote verifier over a websocket and
collecting the results of tasks it runs.

## Modules

### `occlient.channels`

- `ChannelPool(size=10)`: a fixed number of thread-safe FIFO channels,
  addressed by index. `send(thread_id, val)` puts a value on a channel,
  `recv(thread_id)` blocks until a value arrives, and `try_recv(thread_id)`
  returns the next value or `None` when the channel is empty. An index
  outside the pool raises `IndexError`.
- `send_msg`, `recv_msg` and `try_recv_msg` do the same on one shared pool
  of ten channels.
- `ThreadManager(tasks)` starts each callable in `tasks` on its own daemon
  thread. `join()` waits for all of them and then re-raises the first
  exception a task raised, in the order the tasks were given.

### `occlient.wsclient`

A frame is the byte length of a JSON header written as hexadecimal (at least
four digits), then the header, then an optional big payload.

- `encode_frame(uid, route, payload, big_payload="")` builds an outgoing
  frame whose header is `{"t": uid, "r": route, "p": payload}`.
- `decode_frame(text)` parses an incoming frame with header
  `{"c": code, "p": payload, "r": route}` and returns
  `(WsResponse, big_payload)`, or `None` if the frame is malformed (too
  short, bad length prefix, invalid JSON, wrong field types, or a code
  outside the signed 16-bit range).
- `WsResponse` is a frozen dataclass with `code`, `payload` and `route`.
- `WsClient(uid, url, reconnect_delay=3.0)`:
  - `route_ws(api, callback)` registers an `async` callback
    `callback(code, payload)` for frames on `api` with no big payload.
  - `route_ws_big_payload(api, callback)` registers an `async` callback
    `callback(code, payload, big_payload)` for frames on `api` that carry a
    big payload.
  - `await dispatch(text)` decodes one frame and runs the matching callback;
    it returns `True` if a callback ran.
  - `start_ws()` must be called from inside a running event loop. It
    creates the outgoing queue (up to 100 frames) and starts a task that
    connects, dispatches incoming text frames, sends queued frames, and
    reconnects after `reconnect_delay` seconds whenever the connection fails
    or drops. A frame that fails to send is put back on the queue. It
    returns the `asyncio.Task`.
  - `await send(route, payload)` and
    `await send_big_payload(route, payload, big_payload)` queue a frame.
    Frames sent before `start_ws()` is called are dropped.

### `occlient.tasks`

- `TaskInfo(operator_id, error, result)` is a dataclass with
  `from_json(text)` (raises `ValueError` on a malformed object) and
  `to_json()`.
- `finish_task(task_info)` hands a result to the task manager channel
  (`THREAD_TASK_MANAGER` on the shared pool).
- `query_task_list_result(task_ids, expect_result)` blocks until every id in
  `task_ids` has reported a result without an error, then returns the
  results in the order of `task_ids`. Results that report an error are
  logged and the task keeps being waited for; results for ids not being
  waited for are skipped.
- `convert_result(result_str, type_str)` converts a result to the named
  type: `i32`, `f32` (rounded to single precision), `String`, `Vec<i32>`,
  `Vec<f32>`, `Vec<Vec<i32>>` or `Vec<Vec<f32>>`. Malformed input gives
  `0`, `0.0` or `[]`; an unknown type name gives `None`.
- `WS_SERVER_URL` (`ws://127.0.0.1:1234/`) and the channel numbers
  `THREAD_WS_SEND` and `THREAD_TASK_MANAGER` are provided as constants.

## Usage

```python
import asyncio
from occlient.wsclient import WsClient

async def on_hello(code, payload):
    print("hello", code, payload)

async def main():
    client = WsClient("token", "ws://127.0.0.1:1234/")
    client.route_ws("user/hello", on_hello)
    client.start_ws()
    await client.send("user/hello", "")
    await asyncio.sleep(5)

asyncio.run(main())
```

Collecting task results:

```python
from occlient.tasks import TaskInfo, finish_task, query_task_list_result

finish_task(TaskInfo(operator_id=1, error="", result="42"))
print(query_task_list_result([1], {1: "i32"}))  # [42]
```

## What it does not do

The package has no command-line program. It does not build or send the
verifier's messages itself (greeting, initialisation, run and close
requests, or keep-alives), and it does not decode task results arriving on
the websocket into `TaskInfo` objects: the application registers route
callbacks and calls `finish_task` itself.

## Running the tests

```
pip install -e ".[test]"
pytest
```