from __future__ import annotations
import base64
import json
from typing import Any, Optional

import httpx

__all__ = [
    "encode_json_body",
    "encode_base64",
    "content_length",
    "is_success",
]

def encode_json_body(body: Any) -> bytes:
        """UTF-8 JSON without ASCII or HTML escaping, newline terminated."""
        return (json.dumps(body, ensure_ascii=False) + "\n").encode("utf-8")

def encode_base64(data: bytes) -> str:
        """Standard padded base64, no line breaks."""
        return base64.b64encode(data).decode("ascii")

def content_length(hdrs: httpx.Headers) -> Optional[int]:
        raw = hdrs.get("Content-Length")
        if raw is None:
            return None
        try:
            n = int(raw.strip())
        except ValueError:
            return None
        return n if n >= 0 else None

def is_success(status_code: int) -> bool:
        return 200 <= status_code < 300
