from __future__ import annotations

from dataclasses import dataclass, field
from typing import BinaryIO, Literal, Union


RecordState = Literal["add", "update", "skip", "delete"]
Contents = Union[bytes, bytearray, memoryview, BinaryIO, None]


@dataclass(slots=True)
class LocalFile:
    path: str
    base: str
    contents: Contents = None


@dataclass(slots=True)
class FileRecord:
    remote_key: str
    contents: Contents = None
    local_path: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    state: RecordState | None = None
    error: Exception | None = None

    @property
    def is_materialized(self) -> bool:
        return isinstance(self.contents, (bytes, bytearray, memoryview))

    @property
    def size(self) -> int:
        if self.is_materialized:
            return len(self.contents)  # type: ignore[arg-type]
        return 0


@dataclass(slots=True, frozen=True)
class RemoteObjectInfo:
    key: str
    etag: str | None = None

    @property
    def exists(self) -> bool:
        return self.etag is not None
