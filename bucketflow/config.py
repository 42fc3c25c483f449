from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from bucketflow.errors import ConfigurationError


CONFIG_FILENAME = ".bucketflow.json"
CACHE_DB_FILENAME = ".bucketflow_cache.db"
DEFAULT_CONCURRENCY = 8


@dataclass(slots=True)
class BucketFlowConfig:
    bucket: str
    local_root: str
    prefix: str = ""
    region: str | None = None
    endpoint_url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    gzip: bool = False
    use_cache: bool = False
    concurrency: int = DEFAULT_CONCURRENCY
    access_key_id: str = ""
    secret_access_key: str = ""
    session_token: str = ""

    @property
    def local_root_path(self) -> Path:
        return Path(self.local_root).resolve()

    @property
    def cache_db_path(self) -> Path:
        return self.local_root_path / CACHE_DB_FILENAME

    @property
    def cache_target(self) -> str:
        """Cache scope: the same bucket behind another endpoint is another target."""
        location = f"s3://{self.bucket}/{self.prefix}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')} {location}"
        return location


def config_path(base_dir: Path | None = None) -> Path:
    return (base_dir or Path.cwd()).resolve() / CONFIG_FILENAME


def load_config(base_dir: Path | None = None) -> BucketFlowConfig:
    path = config_path(base_dir)
    if not path.exists():
        raise ConfigurationError(
            f"Config file not found: {path}. Run `bf init <bucket>` first."
        )

    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Config file is not valid JSON: {path}: {exc}") from exc

    bucket, url_prefix = normalize_bucket(str(data.get("bucket", "")))
    if not bucket:
        raise ConfigurationError(f"Config file {path} does not name a bucket.")

    headers = data.get("headers") or {}
    if not isinstance(headers, dict):
        raise ConfigurationError("`headers` must be an object of header name -> value.")

    try:
        concurrency = int(data.get("concurrency", DEFAULT_CONCURRENCY))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError("`concurrency` must be an integer.") from exc

    return BucketFlowConfig(
        bucket=bucket,
        local_root=data.get("local_root") or str(path.parent),
        prefix=normalize_prefix(data.get("prefix") or url_prefix),
        region=data.get("region") or None,
        endpoint_url=data.get("endpoint_url") or None,
        headers={str(name): str(value) for name, value in headers.items()},
        gzip=bool(data.get("gzip", False)),
        use_cache=bool(data.get("use_cache", False)),
        concurrency=max(1, concurrency),
        access_key_id=data.get("access_key_id", ""),
        secret_access_key=data.get("secret_access_key", ""),
        session_token=data.get("session_token", ""),
    )


def save_config(config: BucketFlowConfig, base_dir: Path | None = None) -> Path:
    path = config_path(base_dir)
    payload = asdict(config)
    payload["prefix"] = normalize_prefix(config.prefix)
    # Secrets are only written when the user put them in the config explicitly.
    for secret in ("access_key_id", "secret_access_key", "session_token"):
        if not payload[secret]:
            payload.pop(secret)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)
        fh.write("\n")
    return path


def normalize_prefix(prefix: str | None) -> str:
    return (prefix or "").strip().replace("\\", "/").strip("/")


def normalize_bucket(value: str) -> tuple[str, str]:
    """Split a bucket reference into ``(bucket, prefix)``.

    Accepts ``bucket``, ``bucket/prefix``, ``s3://bucket/prefix`` and the
    virtual-hosted or path-style ``https://`` S3 URLs.
    """
    value = (value or "").strip()
    if not value:
        return "", ""

    if value.startswith("s3://"):
        parsed = urlparse(value)
        return parsed.netloc, normalize_prefix(parsed.path)

    if "://" not in value:
        bucket, _, prefix = value.strip("/").partition("/")
        return bucket, normalize_prefix(prefix)

    parsed = urlparse(value)
    host = parsed.hostname or ""
    path = parsed.path.strip("/")

    # Virtual-hosted style: bucket.s3.amazonaws.com / bucket.s3.<region>.amazonaws.com
    if ".s3." in host or ".s3-" in host:
        return host.split(".s3", 1)[0], normalize_prefix(path)

    # Path style: s3.amazonaws.com/bucket/... and S3-compatible endpoints.
    bucket, _, prefix = path.partition("/")
    return bucket, normalize_prefix(prefix)
