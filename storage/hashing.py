"""Content addressing and transport encoding helpers."""

from __future__ import annotations

import base64
import hashlib


def blob_sha(content: str | bytes) -> str:
    """Git blob digest: sha1(b"blob <len>\\0" + utf-8 bytes)."""
    data = content.encode("utf-8") if isinstance(content, str) else content
    header = f"blob {len(data)}\0".encode("ascii")
    return hashlib.sha1(header + data).hexdigest()


def encode_base64(content: str) -> str:
    return base64.b64encode(content.encode("utf-8")).decode("ascii")


def decode_base64(payload: str) -> str:
    # GitHub wraps base64 payloads at 60 columns
    cleaned = "".join(payload.split())
    return base64.b64decode(cleaned).decode("utf-8")


EMPTY_BLOB_SHA = blob_sha("")
