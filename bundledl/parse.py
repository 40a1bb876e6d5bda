"""
Decoding of non-2xx response bodies into APIError.

The service has answered errors in several JSON shapes over time; the parser
tries them in a fixed priority order and never raises.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any, Dict, Mapping, Optional, Union

import httpx

from .exceptions import APIError

__all__ = [
    "ERROR_BODY_CAP",
    "parse_api_error",
    "coerce_int",
    "get_string",
]

# Error bodies are read up to this many bytes.
ERROR_BODY_CAP = 8192

_INTEGER_RE = re.compile(r"^[+-]?\d+$")
_DECIMAL_RE = re.compile(r"^[+-]?\d+\.\d*$")


def _phrase(status_code: int) -> str:
    return httpx.codes.get_reason_phrase(status_code)


def coerce_int(value: Any) -> Optional[int]:
    """
    Leniently read an integer from a decoded JSON value.

    Accepts ints, finite floats and numeric strings ("429", "429.0", "429.5").
    Fractions are truncated toward zero. Booleans and non-finite floats
    yield None, as does any other type.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value):
            return int(value)
        return None
    if isinstance(value, str):
        text = value.strip()
        if _INTEGER_RE.match(text):
            return int(text)
        if _DECIMAL_RE.match(text):
            return int(text.split(".", 1)[0])
    return None


def get_string(obj: Mapping[str, Any], key: str) -> Optional[str]:
    value = obj.get(key)
    return value if isinstance(value, str) else None


def _pick_details(obj: Mapping[str, Any]) -> Dict[str, Any]:
    if "details" not in obj:
        return {"reason": "server error without details"}
    details = obj["details"]
    if isinstance(details, dict):
        return details
    return {"details": details}


def parse_api_error(
    body: Union[bytes, str, None],
    status_code: int,
    response: Optional[httpx.Response] = None,
) -> APIError:
    """
    Build an APIError from an error response body.

    Shapes, first match wins:
        1. {"message": str, "statusCode": num, "error": str}
        2. {"error": {"message", "code"?, "details"?}}
        3. {"message": str, "code"|"errorCode": num, "details"?}
        4. anything else (fallback)

    Args:
        body: Raw body (already size-capped by the caller)
        status_code: HTTP status of the response
        response: Optional response kept for header access

    Returns:
        APIError with status, code, message, reason, details and raw body
    """
    if isinstance(body, bytes):
        text = body.decode("utf-8", errors="replace")
    else:
        text = body or ""
    trimmed = text.strip()

    if not trimmed or trimmed[0] not in "{[":
        return APIError(
            message=_phrase(status_code),
            response=response,
            status_code=status_code,
            reason="non-json error body",
            raw=trimmed,
        )

    try:
        decoded = json.loads(trimmed)
    except ValueError as exc:
        return APIError(
            message=_phrase(status_code),
            response=response,
            status_code=status_code,
            reason="invalid json in error body",
            details={"unmarshal_error": str(exc)},
            raw=trimmed,
        )

    # a non-object body (array, scalar) only survives in raw
    obj: Dict[str, Any] = decoded if isinstance(decoded, dict) else {}

    # 1) {message, statusCode, error}
    message = get_string(obj, "message")
    status_field = coerce_int(obj.get("statusCode"))
    error_reason = get_string(obj, "error")
    if message is not None and status_field is not None and error_reason is not None:
        return APIError(
            message=message,
            response=response,
            status_code=status_code,
            code=status_field,
            reason=error_reason,
            details=obj,
            raw=trimmed,
        )

    # 2) {error: {message, code, details}}
    nested = obj.get("error")
    if isinstance(nested, dict):
        nested_code = coerce_int(nested.get("code"))
        return APIError(
            message=get_string(nested, "message") or _phrase(status_code),
            response=response,
            status_code=status_code,
            code=nested_code if nested_code is not None else status_code,
            details=_pick_details(nested),
            raw=trimmed,
        )

    # 3) {message, code | errorCode, details}
    if message is not None:
        code = coerce_int(obj.get("code"))
        if code is None:
            code = coerce_int(obj.get("errorCode"))
        if code is not None:
            return APIError(
                message=message,
                response=response,
                status_code=status_code,
                code=code,
                details=_pick_details(obj),
                raw=trimmed,
            )

    # 4) fallback
    return APIError(
        message=message or _phrase(status_code),
        response=response,
        status_code=status_code,
        reason=error_reason or "unhandled error format",
        details=obj,
        raw=trimmed,
    )
