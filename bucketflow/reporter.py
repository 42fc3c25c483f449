from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterable, AsyncIterator, Iterable

from rich.console import Console
from rich.table import Table
from rich.text import Text

from bucketflow.models import FileRecord


REPORTED_STATES = ("add", "update", "skip", "delete")
STATE_STYLES = {"add": "green", "update": "cyan", "skip": "dim", "delete": "yellow"}


@dataclass(slots=True)
class StateTally:
    count: int = 0
    bytes: int = 0


@dataclass(slots=True)
class PublishReport:
    tallies: dict[str, StateTally] = field(
        default_factory=lambda: {state: StateTally() for state in REPORTED_STATES}
    )
    failed: list[FileRecord] = field(default_factory=list)
    records: list[FileRecord] = field(default_factory=list)

    def add(self, record: FileRecord) -> None:
        self.records.append(record)
        if record.error is not None:
            self.failed.append(record)
            return
        if record.state is None:
            return
        tally = self.tallies[record.state]
        tally.count += 1
        tally.bytes += record.size

    def count(self, state: str) -> int:
        return self.tallies[state].count

    def keys(self, state: str) -> list[str]:
        return [
            record.remote_key
            for record in self.records
            if record.error is None and record.state == state
        ]

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)

    @property
    def has_changes(self) -> bool:
        return any(self.count(state) for state in ("add", "update", "delete"))


def build_report(records: Iterable[FileRecord]) -> PublishReport:
    report = PublishReport()
    for record in records:
        report.add(record)
    return report


async def collect(
    records: AsyncIterable[FileRecord],
    report: PublishReport,
) -> AsyncIterator[FileRecord]:
    """Pass records through unchanged while tallying them into ``report``."""
    async for record in records:
        report.add(record)
        yield record


def format_size(num_bytes: int) -> str:
    value = float(num_bytes)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024 or unit == "GiB":
            return f"{int(value)} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{num_bytes} B"


def render_report(report: PublishReport, console: Console, *, verbose: bool = False) -> None:
    if verbose:
        for record in report.records:
            if record.error is None and record.state in STATE_STYLES:
                console.print(
                    Text(f"[{record.state}] ", style=STATE_STYLES[record.state]) + Text(record.remote_key)
                )

    table = Table(title="Publish summary")
    table.add_column("State")
    table.add_column("Files", justify="right")
    table.add_column("Size", justify="right")
    for state in REPORTED_STATES:
        tally = report.tallies[state]
        table.add_row(
            Text(state, style=STATE_STYLES[state]),
            str(tally.count),
            format_size(tally.bytes),
        )
    console.print(table)

    if report.failed:
        console.print(Text(f"Failed ({len(report.failed)}):", style="red"))
        for record in report.failed:
            console.print(f"  {record.remote_key}: {record.error}")
