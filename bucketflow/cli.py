from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer
from rich.console import Console

from bucketflow.config import (
    BucketFlowConfig,
    DEFAULT_CONCURRENCY,
    load_config,
    normalize_bucket,
    normalize_prefix,
    save_config,
)
from bucketflow.errors import BucketFlowError, ConfigurationError, SyncError
from bucketflow.log import setup_logging
from bucketflow.pipeline import publish_workspace
from bucketflow.reporter import render_report


app = typer.Typer(help="BucketFlow CLI")
console = Console()


def _parse_headers(values: list[str] | None) -> dict[str, str]:
    headers: dict[str, str] = {}
    for value in values or ():
        name, sep, header_value = value.partition(":")
        if not sep or not name.strip():
            raise typer.BadParameter(f"Expected NAME:VALUE, got {value!r}", param_hint="--header")
        headers[name.strip()] = header_value.strip()
    return headers


@app.command()
def init(
    bucket: str = typer.Argument(..., help="Bucket name, bucket/prefix or s3:// URL."),
    prefix: str | None = typer.Option(None, "--prefix", help="Key prefix inside the bucket."),
    region: str | None = typer.Option(None, "--region", help="AWS region of the bucket."),
    endpoint_url: str | None = typer.Option(
        None,
        "--endpoint-url",
        help="Endpoint for S3-compatible services (MinIO, R2, ...).",
    ),
) -> None:
    """Initialize BucketFlow config in the current directory."""
    root = Path.cwd().resolve()
    bucket_name, url_prefix = normalize_bucket(bucket)
    if not bucket_name:
        console.print(f"[red]Not a bucket reference: {bucket}[/red]")
        raise typer.Exit(code=1)

    config = BucketFlowConfig(
        bucket=bucket_name,
        local_root=str(root),
        prefix=normalize_prefix(prefix if prefix is not None else url_prefix),
        region=region,
        endpoint_url=endpoint_url,
    )
    path = save_config(config, root)
    console.print(f"[green]Initialized BucketFlow[/green] at {config.local_root_path}")
    console.print(f"Config: {path}")
    target = f"s3://{config.bucket}/{config.prefix}" if config.prefix else f"s3://{config.bucket}"
    console.print(f"Target: {target}")


async def _publish_async(
    *,
    delete: bool,
    include: tuple[str, ...],
    exclude: tuple[str, ...],
    headers: dict[str, str],
    gzip: bool | None,
    use_cache: bool | None,
    concurrency: int | None,
    verbose: bool,
) -> int:
    action = "Sync" if delete else "Publish"
    try:
        config = load_config()
        report = await publish_workspace(
            config,
            delete=delete,
            include_patterns=include,
            exclude_patterns=exclude,
            headers=headers,
            gzip=gzip,
            use_cache=use_cache,
            concurrency=concurrency,
        )
    except KeyboardInterrupt:
        console.print(f"[yellow]{action} interrupted.[/yellow] Remote transfer may be partial.")
        return 130
    except ConfigurationError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1
    except SyncError as exc:
        console.print(f"[red]{action} aborted:[/red] {exc}")
        return 1
    except BucketFlowError as exc:
        console.print(f"[red]{action} failed:[/red] {exc}")
        return 1

    render_report(report, console, verbose=verbose)
    if not report.has_changes and not report.has_failures:
        console.print("[green]Bucket already matches local files.[/green]")
    return 1 if report.has_failures else 0


def _run(
    *,
    delete: bool,
    include: list[str] | None,
    exclude: list[str] | None,
    header: list[str] | None,
    gzip: bool | None,
    cache: bool | None,
    concurrency: int | None,
    verbose: bool,
) -> None:
    setup_logging(logging.DEBUG if verbose else logging.WARNING, console=console)
    code = asyncio.run(
        _publish_async(
            delete=delete,
            include=tuple(include or ()),
            exclude=tuple(exclude or ()),
            headers=_parse_headers(header),
            gzip=gzip,
            use_cache=cache,
            concurrency=concurrency,
            verbose=verbose,
        )
    )
    raise typer.Exit(code=code)


INCLUDE_OPTION = typer.Option(None, "--include", help="Include glob pattern(s) (repeatable).")
EXCLUDE_OPTION = typer.Option(None, "--exclude", help="Exclude glob pattern(s) (repeatable).")
HEADER_OPTION = typer.Option(None, "--header", help="Extra object header NAME:VALUE (repeatable).")
GZIP_OPTION = typer.Option(None, "--gzip/--no-gzip", help="Gzip payloads before upload.")
CACHE_OPTION = typer.Option(
    None,
    "--cache/--no-cache",
    help=(
        "Skip unchanged files using the local ETag cache instead of asking the bucket "
        "(default from config, off). Objects removed from the bucket by other tools "
        "are only re-uploaded with --no-cache."
    ),
)
CONCURRENCY_OPTION = typer.Option(
    None,
    "--concurrency",
    min=1,
    help=f"Uploads in flight (default from config, {DEFAULT_CONCURRENCY}).",
)
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="List every file and log decisions.")


@app.command()
def publish(
    include: list[str] | None = INCLUDE_OPTION,
    exclude: list[str] | None = EXCLUDE_OPTION,
    header: list[str] | None = HEADER_OPTION,
    gzip: bool | None = GZIP_OPTION,
    cache: bool | None = CACHE_OPTION,
    concurrency: int | None = CONCURRENCY_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Upload new and changed files; unchanged files are skipped."""
    _run(
        delete=False,
        include=include,
        exclude=exclude,
        header=header,
        gzip=gzip,
        cache=cache,
        concurrency=concurrency,
        verbose=verbose,
    )


@app.command()
def sync(
    include: list[str] | None = INCLUDE_OPTION,
    exclude: list[str] | None = EXCLUDE_OPTION,
    header: list[str] | None = HEADER_OPTION,
    gzip: bool | None = GZIP_OPTION,
    cache: bool | None = CACHE_OPTION,
    concurrency: int | None = CONCURRENCY_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Publish, then delete remote objects that no longer exist locally."""
    _run(
        delete=True,
        include=include,
        exclude=exclude,
        header=header,
        gzip=gzip,
        cache=cache,
        concurrency=concurrency,
        verbose=verbose,
    )


def main() -> None:
    app()
