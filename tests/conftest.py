"""
Shared fixtures: an in-memory remote store and async stream helpers.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Iterable, Mapping, Sequence

import pytest

from bucketflow.fingerprint import quoted_etag
from bucketflow.models import RemoteObjectInfo


class FakeStore:
    """RemoteStore double that records every call and can be told to fail."""

    def __init__(self, objects: Mapping[str, bytes] | None = None) -> None:
        self.objects: dict[str, bytes] = dict(objects or {})
        self.etag_overrides: dict[str, str] = {}
        self.headers: dict[str, dict[str, str]] = {}
        self.calls: list[tuple] = []
        self.head_errors: dict[str, Exception] = {}
        self.put_errors: dict[str, Exception] = {}
        self.list_error: Exception | None = None
        self.delete_error: Exception | None = None
        self.list_delay = 0.0
        self.listing: list[str] | None = None

    def ops(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]

    async def head(self, key: str) -> RemoteObjectInfo:
        self.calls.append(("head", key))
        await asyncio.sleep(0)
        if key in self.head_errors:
            raise self.head_errors[key]
        if key in self.etag_overrides:
            return RemoteObjectInfo(key=key, etag=self.etag_overrides[key])
        if key in self.objects:
            return RemoteObjectInfo(key=key, etag=quoted_etag(self.objects[key]))
        return RemoteObjectInfo(key=key)

    async def put(self, key: str, data: bytes, headers: Mapping[str, str]) -> None:
        self.calls.append(("put", key, bytes(data)))
        await asyncio.sleep(0)
        if key in self.put_errors:
            raise self.put_errors[key]
        self.objects[key] = bytes(data)
        self.headers[key] = dict(headers)

    async def list_keys(self) -> list[str]:
        self.calls.append(("list",))
        await asyncio.sleep(self.list_delay)
        if self.list_error is not None:
            raise self.list_error
        return list(self.listing if self.listing is not None else self.objects)

    async def delete_multiple(self, keys: Sequence[str]) -> None:
        self.calls.append(("delete", list(keys)))
        await asyncio.sleep(0)
        if self.delete_error is not None:
            raise self.delete_error
        for key in keys:
            self.objects.pop(key, None)


async def aiter_of(items: Iterable) -> AsyncIterator:
    for item in items:
        await asyncio.sleep(0)
        yield item


async def drain(stream) -> list:
    return [item async for item in stream]


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()
