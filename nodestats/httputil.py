"""Helpers for writing JSON and error responses from an HTTP request handler."""

from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from datetime import datetime
from enum import Enum
from http import HTTPStatus
from typing import Any


def _to_json(obj: Any) -> Any:
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    raise TypeError(f"json: unsupported type: {type(obj).__name__}")


def return_http_json(handler: Any, obj: Any) -> None:
    """Write obj as a 200 JSON response, or a 500 response if it cannot be encoded."""
    try:
        data = json.dumps(obj, default=_to_json, allow_nan=False).encode()
    except (TypeError, ValueError) as exc:
        return_http_error(handler, exc)
        return
    handler.send_response(HTTPStatus.OK)
    handler.send_header("Content-type", "application/json")
    handler.end_headers()
    handler.wfile.write(data)


def return_http_error(handler: Any, err: BaseException) -> None:
    """Write a 500 response whose body is the error message."""
    handler.send_response(HTTPStatus.INTERNAL_SERVER_ERROR)
    handler.end_headers()
    handler.wfile.write(str(err).encode())