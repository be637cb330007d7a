"""Collecting task results from the verifier and converting them to Python values."""

from __future__ import annotations

import json
import logging
import math
import re
import struct
from collections.abc import Callable, Iterable, Mapping
from dataclasses import asdict, dataclass
from typing import Any

from occlient.channels import recv_msg, send_msg

logger = logging.getLogger(__name__)

THREAD_WS_SEND = 1
THREAD_TASK_MANAGER = 2

WS_SERVER_URL = "ws://127.0.0.1:1234/"

_I32_MIN, _I32_MAX = -(2**31), 2**31 - 1
_U64_MAX = 2**64 - 1

_INT_RE = re.compile(r"[+-]?[0-9]+")
_FLOAT_RE = re.compile(
    r"[+-]?(?:inf|infinity|nan|(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?)",
    re.IGNORECASE,
)


@dataclass
class TaskInfo:
    """The outcome of one remote task: its operator id, an error text and a result."""

    operator_id: int
    error: str
    result: str

    @classmethod
    def from_json(cls, text: str) -> TaskInfo:
        """Parse a task result object; raise ValueError if it is malformed."""
        obj = json.loads(text)
        if not isinstance(obj, dict):
            raise ValueError("task info must be a JSON object")
        operator_id = obj.get("operator_id")
        error = obj.get("error")
        result = obj.get("result")
        if (
            isinstance(operator_id, bool)
            or not isinstance(operator_id, int)
            or not 0 <= operator_id <= _U64_MAX
        ):
            raise ValueError("operator_id must be an unsigned 64-bit integer")
        if not isinstance(error, str):
            raise ValueError("error must be a string")
        if not isinstance(result, str):
            raise ValueError("result must be a string")
        return cls(operator_id, error, result)

    def to_json(self) -> str:
        """Serialise the task info as a compact JSON object."""
        return json.dumps(asdict(self), separators=(",", ":"), ensure_ascii=False)


def finish_task(task_info: TaskInfo) -> None:
    """Hand a finished task to the task manager channel."""
    send_msg(THREAD_TASK_MANAGER, task_info)


def _to_f32(value: float) -> float:
    try:
        return struct.unpack("f", struct.pack("f", value))[0]
    except OverflowError:
        return math.copysign(math.inf, value)


def _parse_i32(text: str) -> int:
    if not _INT_RE.fullmatch(text):
        return 0
    value = int(text)
    return value if _I32_MIN <= value <= _I32_MAX else 0


def _parse_f32(text: str) -> float:
    if not _FLOAT_RE.fullmatch(text):
        return 0.0
    return _to_f32(float(text))


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


def _load_json(text: str) -> Any:
    return json.loads(text, parse_constant=_reject_constant)


def _json_i32(item: Any) -> int:
    if isinstance(item, bool) or not isinstance(item, int):
        raise ValueError("expected an integer")
    if not _I32_MIN <= item <= _I32_MAX:
        raise ValueError("integer out of i32 range")
    return item


def _json_f32(item: Any) -> float:
    if isinstance(item, bool) or not isinstance(item, (int, float)):
        raise ValueError("expected a number")
    return _to_f32(float(item))


def _json_list(item: Any, convert: Callable[[Any], Any]) -> list[Any]:
    if not isinstance(item, list):
        raise ValueError("expected an array")
    return [convert(element) for element in item]


def _parse_json_vec(text: str, convert: Callable[[Any], Any]) -> list[Any]:
    try:
        return _json_list(_load_json(text), convert)
    except ValueError:
        return []


def _parse_json_matrix(text: str, convert: Callable[[Any], Any]) -> list[list[Any]]:
    try:
        return _json_list(_load_json(text), lambda row: _json_list(row, convert))
    except ValueError:
        return []


_CONVERTERS: dict[str, Callable[[str], Any]] = {
    "i32": _parse_i32,
    "f32": _parse_f32,
    "String": lambda text: text,
    "Vec<i32>": lambda text: _parse_json_vec(text, _json_i32),
    "Vec<f32>": lambda text: _parse_json_vec(text, _json_f32),
    "Vec<Vec<i32>>": lambda text: _parse_json_matrix(text, _json_i32),
    "Vec<Vec<f32>>": lambda text: _parse_json_matrix(text, _json_f32),
}


def convert_result(result_str: str, type_str: str) -> Any:
    """Convert a result string to the named type; malformed input gives its default.

    Unknown type names give None.
    """
    converter = _CONVERTERS.get(type_str)
    if converter is None:
        return None
    return converter(result_str)


def query_task_list_result(
    task_ids: Iterable[int], expect_result: Mapping[int, str]
) -> list[Any]:
    """Block until every task in ``task_ids`` has reported, then return their results.

    Results come back in the order of ``task_ids``, each converted to the type
    named for it in ``expect_result``. Tasks that report an error are logged and
    keep being waited for.
    """
    task_ids = list(task_ids)
    waiting = set(task_ids)
    results: dict[int, str] = {}

    while waiting:
        task_info = recv_msg(THREAD_TASK_MANAGER)
        if not isinstance(task_info, TaskInfo):
            logger.error("task parser error.")
            continue
        task_id = task_info.operator_id
        if task_info.error:
            logger.error("task id[%s] run error[%s]", task_id, task_info.error)
        elif task_id in waiting:
            results[task_id] = task_info.result
            waiting.discard(task_id)
        else:
            logger.info("task %s not in waiting list, skip", task_id)

    return [
        convert_result(results.pop(task_id, ""), expect_result.get(task_id, ""))
        for task_id in task_ids
    ]