from __future__ import annotations

import mimetypes
from typing import Mapping

from bucketflow.models import FileRecord, LocalFile


KEY_SEPARATOR = "/"
DEFAULT_CONTENT_TYPE = "application/octet-stream"
ACL_HEADER = "x-amz-acl"
DEFAULT_ACL = "public-read"


def _as_posix(value: str) -> str:
    return value.replace("\\", KEY_SEPARATOR)


def derive_remote_key(path: str, base: str | None) -> str:
    path = _as_posix(path)
    base = _as_posix(base or "").rstrip(KEY_SEPARATOR)
    if base and (path == base or path.startswith(base + KEY_SEPARATOR)):
        path = path[len(base):]
    if not path.startswith(KEY_SEPARATOR):
        path = KEY_SEPARATOR + path
    return path


def enrich(file: LocalFile | FileRecord, base: str | None = None) -> FileRecord:
    """Return the pipeline record for ``file``.

    Records that already carry a remote key are returned as-is, so enriching
    twice is a no-op.
    """
    if isinstance(file, FileRecord):
        return file
    return FileRecord(
        remote_key=derive_remote_key(file.path, file.base if base is None else base),
        contents=file.contents,
        local_path=file.path,
    )


def infer_content_type(remote_key: str) -> str:
    content_type, _ = mimetypes.guess_type(remote_key, strict=False)
    return content_type or DEFAULT_CONTENT_TYPE


def merge_headers(
    existing: Mapping[str, str],
    inferred: Mapping[str, str],
    overrides: Mapping[str, str] | None = None,
) -> dict[str, str]:
    # Order: existing < inferred < caller overrides; the ACL is only backfilled.
    merged = dict(existing)
    merged.update(inferred)
    merged.update(overrides or {})
    if not any(name.lower() == ACL_HEADER for name in merged):
        merged[ACL_HEADER] = DEFAULT_ACL
    return merged
