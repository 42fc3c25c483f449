from __future__ import annotations

from typing import Mapping

from bucketflow.auth import has_ambient_credentials, missing_credentials_hint, resolve_credentials
from bucketflow.config import BucketFlowConfig
from bucketflow.errors import ConfigurationError
from bucketflow.filters import build_path_filter
from bucketflow.gzip_stage import gzip_stream
from bucketflow.publisher import Publisher
from bucketflow.remote_store import RemoteStore, S3RemoteStore
from bucketflow.reporter import PublishReport, collect
from bucketflow.scanner import iter_local_files


def build_store(config: BucketFlowConfig) -> S3RemoteStore:
    credentials = resolve_credentials(config)
    if credentials is None and not has_ambient_credentials():
        raise ConfigurationError(missing_credentials_hint())
    return S3RemoteStore(
        config.bucket,
        prefix=config.prefix,
        region=config.region,
        endpoint_url=config.endpoint_url,
        credentials=credentials,
    )


def build_publisher(
    config: BucketFlowConfig,
    *,
    store: RemoteStore | None = None,
    headers: Mapping[str, str] | None = None,
    use_cache: bool | None = None,
    concurrency: int | None = None,
) -> Publisher:
    use_cache = config.use_cache if use_cache is None else use_cache
    return Publisher(
        store if store is not None else build_store(config),
        headers={**config.headers, **(headers or {})},
        concurrency=concurrency or config.concurrency,
        cache_path=config.cache_db_path if use_cache else None,
        cache_target=config.cache_target,
    )


async def publish_workspace(
    config: BucketFlowConfig,
    *,
    delete: bool = False,
    include_patterns: tuple[str, ...] = (),
    exclude_patterns: tuple[str, ...] = (),
    headers: Mapping[str, str] | None = None,
    gzip: bool | None = None,
    use_cache: bool | None = None,
    concurrency: int | None = None,
    store: RemoteStore | None = None,
) -> PublishReport:
    """Publish the workspace's local root and, with ``delete``, remove remote-only keys.

    Deletion is limited to keys inside the include/exclude scope.
    """
    local_root = config.local_root_path
    if not local_root.exists():
        raise ConfigurationError(f"Configured local_root does not exist: {local_root}")

    path_filter = build_path_filter(include_patterns, exclude_patterns)
    publisher = build_publisher(
        config,
        store=store,
        headers=headers,
        use_cache=use_cache,
        concurrency=concurrency,
    )

    stream = iter_local_files(local_root, path_filter=path_filter)
    if config.gzip if gzip is None else gzip:
        stream = gzip_stream(stream)
    stream = publisher.publish(stream)
    if delete:
        stream = publisher.sync(stream, path_filter=path_filter)

    report = PublishReport()
    async for _ in collect(stream, report):
        pass
    return report
