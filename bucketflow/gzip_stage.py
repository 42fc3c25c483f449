from __future__ import annotations

import asyncio
import dataclasses
import gzip
import logging
from typing import AsyncIterable, AsyncIterator

from bucketflow.errors import UnsupportedContentError
from bucketflow.models import FileRecord, LocalFile
from bucketflow.records import enrich


logger = logging.getLogger(__name__)

CONTENT_ENCODING_HEADER = "Content-Encoding"


def gzip_record(record: FileRecord) -> FileRecord:
    """Return a gzip-compressed copy of ``record``; the remote key is unchanged."""
    if record.contents is None or record.state == "delete":
        return record
    if not record.is_materialized:
        raise UnsupportedContentError(record.remote_key)

    # mtime=0 keeps the output, and therefore the ETag, stable across runs.
    compressed = gzip.compress(bytes(record.contents), mtime=0)  # type: ignore[arg-type]
    headers = dict(record.headers)
    headers[CONTENT_ENCODING_HEADER] = "gzip"
    return dataclasses.replace(record, contents=compressed, headers=headers)


async def gzip_stream(files: AsyncIterable[LocalFile | FileRecord]) -> AsyncIterator[FileRecord]:
    async for item in files:
        record = enrich(item)
        if record.contents is None:
            continue
        try:
            record = await asyncio.to_thread(gzip_record, record)
        except UnsupportedContentError as exc:
            logger.warning("Failed to gzip %s: %s", record.remote_key, exc)
            record.error = exc
        yield record
