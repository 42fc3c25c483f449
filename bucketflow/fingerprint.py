from __future__ import annotations

import hashlib


def fingerprint(data: bytes) -> str:
    """MD5 hex digest of ``data``; S3 reports the same value as ETag for single-part uploads."""
    return hashlib.md5(bytes(data), usedforsecurity=False).hexdigest()


def quoted_etag(data: bytes) -> str:
    return f'"{fingerprint(data)}"'
