"""
Remote object store used by the publisher.

The publisher only relies on the async ``RemoteStore`` protocol. ``S3RemoteStore``
implements it on top of a lazily created boto3 S3 client; blocking client calls
run in worker threads so the event loop keeps consuming the local file stream.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Mapping, Protocol, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from bucketflow.errors import TransportError
from bucketflow.models import RemoteObjectInfo
from bucketflow.records import KEY_SEPARATOR

if TYPE_CHECKING:
    from bucketflow.auth import AwsCredentials


logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 1000
NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}

# Header name (lowercase) -> put_object parameter.
PUT_OBJECT_PARAMS = {
    "content-type": "ContentType",
    "content-encoding": "ContentEncoding",
    "cache-control": "CacheControl",
    "content-disposition": "ContentDisposition",
    "content-language": "ContentLanguage",
    "expires": "Expires",
    "x-amz-acl": "ACL",
    "x-amz-storage-class": "StorageClass",
    "x-amz-website-redirect-location": "WebsiteRedirectLocation",
}
META_PREFIX = "x-amz-meta-"


class RemoteStore(Protocol):
    async def head(self, key: str) -> RemoteObjectInfo: ...

    async def put(self, key: str, data: bytes, headers: Mapping[str, str]) -> None: ...

    async def list_keys(self) -> list[str]: ...

    async def delete_multiple(self, keys: Sequence[str]) -> None: ...


def _is_not_found(exc: ClientError) -> bool:
    code = str(exc.response.get("Error", {}).get("Code", ""))
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return code in NOT_FOUND_CODES or status == 404


def put_object_params(headers: Mapping[str, str]) -> dict[str, Any]:
    """Translate HTTP-style object headers into ``put_object`` keyword arguments."""
    params: dict[str, Any] = {}
    metadata: dict[str, str] = {}
    for name, value in headers.items():
        lowered = name.lower()
        if lowered == "content-length":
            params["ContentLength"] = int(value)
        elif lowered in PUT_OBJECT_PARAMS:
            params[PUT_OBJECT_PARAMS[lowered]] = str(value)
        elif lowered.startswith(META_PREFIX):
            metadata[lowered[len(META_PREFIX):]] = str(value)
        else:
            metadata[lowered] = str(value)
    if metadata:
        params["Metadata"] = metadata
    return params


class S3RemoteStore:
    """
    S3 (or S3-compatible) bucket seen through the ``RemoteStore`` protocol.

    Remote keys carry a leading separator (``/img/a.png``); on the wire they
    become ``<prefix>/img/a.png`` without the leading separator.
    """

    def __init__(
        self,
        bucket: str,
        *,
        prefix: str = "",
        region: str | None = None,
        endpoint_url: str | None = None,
        credentials: AwsCredentials | None = None,
        client: Any | None = None,
    ) -> None:
        if not bucket:
            raise ValueError("S3RemoteStore requires a bucket name")
        self.bucket = bucket
        self.prefix = prefix.strip(KEY_SEPARATOR)
        self.region = region
        self.endpoint_url = endpoint_url
        self._credentials = credentials
        self._client = client

    def _client_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if self.region:
            kwargs["region_name"] = self.region
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
        if self._credentials is not None:
            kwargs.update(self._credentials.as_client_kwargs())
        return kwargs

    @property
    def client(self):
        if self._client is None:
            import boto3

            self._client = boto3.client("s3", **self._client_kwargs())
        return self._client

    def object_key(self, key: str) -> str:
        relative = key.lstrip(KEY_SEPARATOR)
        if self.prefix:
            return f"{self.prefix}/{relative}"
        return relative

    def remote_key(self, object_key: str) -> str | None:
        if self.prefix:
            head = self.prefix + KEY_SEPARATOR
            if not object_key.startswith(head):
                return None
            object_key = object_key[len(head):]
        if not object_key or object_key.endswith(KEY_SEPARATOR):
            return None
        return KEY_SEPARATOR + object_key

    async def head(self, key: str) -> RemoteObjectInfo:
        def _call():
            return self.client.head_object(Bucket=self.bucket, Key=self.object_key(key))

        try:
            response = await asyncio.to_thread(_call)
        except ClientError as exc:
            if _is_not_found(exc):
                return RemoteObjectInfo(key=key, etag=None)
            raise TransportError("head", key, exc) from exc
        except BotoCoreError as exc:
            raise TransportError("head", key, exc) from exc
        return RemoteObjectInfo(key=key, etag=response.get("ETag"))

    async def put(self, key: str, data: bytes, headers: Mapping[str, str]) -> None:
        params = put_object_params(headers)

        def _call():
            return self.client.put_object(
                Bucket=self.bucket,
                Key=self.object_key(key),
                Body=bytes(data),
                **params,
            )

        try:
            await asyncio.to_thread(_call)
        except (ClientError, BotoCoreError) as exc:
            raise TransportError("put", key, exc) from exc

    async def list_keys(self) -> list[str]:
        def _call() -> list[str]:
            paginator = self.client.get_paginator("list_objects_v2")
            page_config: dict[str, Any] = {"Bucket": self.bucket}
            if self.prefix:
                page_config["Prefix"] = self.prefix + KEY_SEPARATOR
            keys: list[str] = []
            for page in paginator.paginate(**page_config):
                for obj in page.get("Contents", []):
                    remote = self.remote_key(str(obj["Key"]))
                    if remote is not None:
                        keys.append(remote)
            return keys

        try:
            return await asyncio.to_thread(_call)
        except (ClientError, BotoCoreError) as exc:
            raise TransportError("list", None, exc) from exc

    async def delete_multiple(self, keys: Sequence[str]) -> None:
        keys = list(keys)
        if not keys:
            logger.debug("No remote keys to delete in s3://%s/%s", self.bucket, self.prefix)
            return

        def _call(batch: list[str]):
            return self.client.delete_objects(
                Bucket=self.bucket,
                Delete={
                    "Objects": [{"Key": self.object_key(key)} for key in batch],
                    "Quiet": True,
                },
            )

        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start:start + DELETE_BATCH_SIZE]
            try:
                response = await asyncio.to_thread(_call, batch)
            except (ClientError, BotoCoreError) as exc:
                raise TransportError("delete", None, exc) from exc
            errors = response.get("Errors") or []
            if errors:
                failed = ", ".join(str(item.get("Key")) for item in errors)
                raise TransportError("delete", None, f"{len(errors)} object(s) not deleted: {failed}")
