from __future__ import annotations

import asyncio
import logging
from collections import deque
from pathlib import Path
from typing import AsyncIterable, AsyncIterator, Iterable, Mapping

from bucketflow.errors import (
    DeleteError,
    ListingError,
    TransportError,
    UnsupportedContentError,
)
from bucketflow.filters import PathFilter
from bucketflow.fingerprint import quoted_etag
from bucketflow.models import FileRecord, LocalFile, RecordState
from bucketflow.records import enrich, infer_content_type, merge_headers
from bucketflow.remote_store import RemoteStore
from bucketflow.state_db import forget_keys, load_etags, store_etags


logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 8
RECORD_ERRORS = (UnsupportedContentError, TransportError)


class OutstandingKeys:
    """Remote keys not yet matched to any local file during one sync pass.

    Local keys may be observed before the listing arrives; they are applied
    once it does. Discarding a key that is not (or not yet) listed is a no-op.
    """

    def __init__(self) -> None:
        self._remaining: dict[str, None] | None = None
        self._observed: set[str] = set()

    @property
    def resolved(self) -> bool:
        return self._remaining is not None

    def discard(self, key: str) -> None:
        self._observed.add(key)
        if self._remaining is not None:
            self._remaining.pop(key, None)

    def resolve(self, listing: Iterable[str]) -> None:
        if self._remaining is not None:
            return
        self._remaining = dict.fromkeys(key for key in listing if key not in self._observed)

    def remaining(self) -> list[str]:
        if self._remaining is None:
            raise RuntimeError("Remote listing has not been resolved yet")
        return list(self._remaining)

    def __contains__(self, key: object) -> bool:
        return self._remaining is not None and key in self._remaining

    def __len__(self) -> int:
        return 0 if self._remaining is None else len(self._remaining)


class Publisher:
    """Publishes records to a remote store and reconciles the store against a local stream."""

    def __init__(
        self,
        store: RemoteStore,
        *,
        headers: Mapping[str, str] | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        cache_path: Path | None = None,
        cache_target: str = "",
    ) -> None:
        self.store = store
        self.headers = dict(headers or {})
        self.concurrency = max(1, concurrency)
        self.cache_path = cache_path
        self.cache_target = cache_target
        self._etags: dict[str, str] | None = None
        self._pending_etags: dict[str, str] = {}

    async def _cached_etags(self) -> dict[str, str]:
        if self.cache_path is None:
            return {}
        if self._etags is None:
            self._etags = await load_etags(self.cache_path, self.cache_target)
        return self._etags

    def _remember(self, key: str, etag: str) -> None:
        if self.cache_path is None:
            return
        if self._etags is not None:
            self._etags[key] = etag
        self._pending_etags[key] = etag

    async def flush_cache(self) -> None:
        if self.cache_path is None or not self._pending_etags:
            return
        pending, self._pending_etags = self._pending_etags, {}
        await store_etags(self.cache_path, self.cache_target, pending)

    async def upload(
        self,
        record: FileRecord,
        headers: Mapping[str, str] | None = None,
    ) -> FileRecord:
        """Add, update or skip one record; the decision lands on ``record.state``."""
        if record.contents is None:
            return record
        if not record.is_materialized:
            raise UnsupportedContentError(record.remote_key)
        if record.state == "delete":
            return record

        data = bytes(record.contents)  # type: ignore[arg-type]
        record.headers = merge_headers(
            record.headers,
            {
                "Content-Type": infer_content_type(record.remote_key),
                "Content-Length": str(len(data)),
            },
            {**self.headers, **(headers or {})},
        )

        local_etag = quoted_etag(data)
        cached = (await self._cached_etags()).get(record.remote_key)
        if cached == local_etag:
            logger.debug("skip %s (cached etag %s)", record.remote_key, cached)
            record.state = "skip"
            return record

        try:
            remote = await self.store.head(record.remote_key)
        except TransportError:
            raise
        except Exception as exc:
            raise TransportError("head", record.remote_key, exc) from exc

        state: RecordState
        if remote.etag == local_etag:
            state = "skip"
        elif remote.etag:
            state = "update"
        else:
            state = "add"

        if state != "skip":
            try:
                await self.store.put(record.remote_key, data, record.headers)
            except TransportError:
                raise
            except Exception as exc:
                raise TransportError("put", record.remote_key, exc) from exc

        logger.debug("%s %s (%d bytes)", state, record.remote_key, len(data))
        record.state = state
        self._remember(record.remote_key, local_etag)
        return record

    async def _settle(self, record: FileRecord, task: asyncio.Task[FileRecord]) -> FileRecord:
        try:
            return await task
        except RECORD_ERRORS as exc:
            logger.warning("Failed to publish %s: %s", record.remote_key, exc)
            record.error = exc
            return record

    async def publish(
        self,
        files: AsyncIterable[LocalFile | FileRecord],
        headers: Mapping[str, str] | None = None,
    ) -> AsyncIterator[FileRecord]:
        """Run every incoming file through ``upload`` and yield them in arrival order.

        At most ``concurrency`` uploads are in flight. Per-file failures are
        attached to ``record.error`` and do not stop the run.
        """
        await self._cached_etags()
        window: deque[tuple[FileRecord, asyncio.Task[FileRecord]]] = deque()
        try:
            async for item in files:
                record = enrich(item)
                window.append((record, asyncio.create_task(self.upload(record, headers))))
                while window and (len(window) >= self.concurrency or window[0][1].done()):
                    yield await self._settle(*window.popleft())
            while window:
                yield await self._settle(*window.popleft())
        finally:
            for _, task in window:
                task.cancel()
            if window:
                await asyncio.gather(*(task for _, task in window), return_exceptions=True)
            await self.flush_cache()

    async def _list_remote(self) -> list[str]:
        try:
            return list(await self.store.list_keys())
        except Exception as exc:
            raise ListingError(f"Failed to list remote objects: {exc}") from exc

    async def sync(
        self,
        files: AsyncIterable[LocalFile | FileRecord],
        *,
        path_filter: PathFilter | None = None,
    ) -> AsyncIterator[FileRecord]:
        """Forward local records, then emit delete markers for remote-only keys and delete them.

        The bulk delete is issued only after the listing has arrived and the
        local stream is drained; the output ends only after it completes.
        """
        outstanding = OutstandingKeys()
        listing = asyncio.create_task(self._list_remote())
        try:
            async for item in files:
                record = enrich(item)
                if not outstanding.resolved and listing.done():
                    outstanding.resolve(listing.result())
                outstanding.discard(record.remote_key)
                yield record
            outstanding.resolve(await listing)
        finally:
            if not listing.done():
                listing.cancel()
            elif not listing.cancelled():
                # Mark a failed listing as retrieved when the consumer stopped early.
                listing.exception()

        doomed = [
            key
            for key in outstanding.remaining()
            if path_filter is None or path_filter.matches(key)
        ]
        for key in doomed:
            yield FileRecord(remote_key=key, state="delete")

        try:
            await self.store.delete_multiple(doomed)
        except Exception as exc:
            raise DeleteError(
                f"Failed to delete {len(doomed)} remote object(s): {exc}",
                keys=doomed,
            ) from exc

        if doomed:
            logger.info("Deleted %d remote object(s)", len(doomed))
        if self.cache_path is not None:
            if self._etags is not None:
                for key in doomed:
                    self._etags.pop(key, None)
            await forget_keys(self.cache_path, self.cache_target, doomed)
