from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
import re
import signal
import sys
import threading

import click
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.text import Text
from rich.tree import Tree

from app.viewmodels.main_vm import MainVM
from app.viewmodels.memory_vm import MemoryVM
from core.errors import ThumbnailError
from core.models import MemoryRecord, YearGroup
from core.services.grouping_service import MONTH_ORDERS, GroupingService
from core.services.selection_service import SelectionService
from infrastructure.download_service import DownloadService
from infrastructure.json_repository import JsonMemoryRepository
from infrastructure.logging import find_latest_log_file, init_logging
from infrastructure.settings import JsonSettings
from infrastructure.thumbnail_service import ThumbnailService

BASE_DIR = Path(__file__).parent

console = Console()


def build_vm(
    settings: JsonSettings, concurrency: int | None = None, with_thumbnails: bool = False
) -> MainVM:
    """Wire the repository and services from `settings` into a MainVM."""
    month_order = str(settings.get("grouping.month_order", "first"))
    if month_order not in MONTH_ORDERS:
        logger.warning("Unknown grouping.month_order {!r}, using 'first'", month_order)
        month_order = "first"

    downloader = DownloadService(
        concurrency=concurrency or settings.get_int("download.concurrency", 5),
        timeout=settings.get_int("download.timeout_seconds", 60),
    )
    return MainVM(
        JsonMemoryRepository(),
        downloader,
        thumbnails=ThumbnailService(settings=settings) if with_thumbnails else None,
        grouper=GroupingService(month_order),
        default_sort=settings.sort_keys(),
    )


def _load_or_exit(vm: MainVM, export: Path) -> None:
    state = vm.load_json(export)
    if state.last_error is not None:
        console.print(f"[red]{escape(state.status_message)}[/red]")
        sys.exit(1)
    console.print(escape(state.status_message))


def _render_tree(groups: tuple[YearGroup, ...], total: int, show_files: bool) -> Tree:
    root = Tree(f"[bold blue]{total:,} memories[/bold blue]")
    for year in groups:
        year_node = root.add(f"[bold]{year.year}[/bold] ({year.record_count:,})")
        for month in year.months:
            month_node = year_node.add(f"{month.month} ({len(month):,})")
            if show_files:
                for record in month.records:
                    month_node.add(Text(MemoryVM(record).describe()))
    return root


def _any_of(values: tuple[str, ...]) -> str:
    return "|".join(re.escape(v) for v in values)


def select_records(
    records: tuple[MemoryRecord, ...],
    years: tuple[str, ...] = (),
    months: tuple[str, ...] = (),
    kinds: tuple[str, ...] = (),
    match: str | None = None,
) -> list[MemoryRecord]:
    """Select everything, then drop records outside each given filter.

    Values of one filter are alternatives; different filters must all hold.
    """
    selection = SelectionService()
    selection.select_all(records)
    if years:
        selection.apply(records, "year", rf"^(?!(?:{_any_of(years)})$)", select=False)
    if months:
        selection.apply(records, "month", rf"(?i)^(?!(?:{_any_of(months)})$)", select=False)
    if kinds:
        selection.apply(records, "kind", rf"(?i)^(?!(?:{_any_of(kinds)})$)", select=False)
    if match:
        matching = SelectionService()
        matching.apply(records, "filename", match, select=True)
        for record in records:
            if not matching.is_selected(record):
                selection.deselect(record)
    return selection.selected(records)


@contextmanager
def _cancel_on_interrupt(cancel_event: threading.Event) -> Iterator[None]:
    """Turn Ctrl+C into a request to stop admitting new downloads."""

    def _handler(signum, frame):  # pylint: disable=unused-argument
        if not cancel_event.is_set():
            console.print("\n[yellow]Stopping after in-flight downloads finish...[/yellow]")
        cancel_event.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


@click.group()
@click.option(
    "--settings",
    "settings_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=BASE_DIR / "settings.json",
    show_default=True,
    help="JSON settings file",
)
@click.option("-v", "--verbose", is_flag=True, help="Echo warnings and errors to stderr")
@click.pass_context
def main(ctx: click.Context, settings_path: Path, verbose: bool) -> None:
    """Organize and download media listed in an export JSON."""
    try:
        settings = JsonSettings(settings_path)
    except ValueError as ex:
        raise click.ClickException(str(ex)) from ex
    init_logging(
        settings.get("logging.dir"),
        str(settings.get("logging.level", "INFO")),
        console_level="WARNING" if verbose else None,
    )
    ctx.obj = settings


@main.command()
@click.argument("export", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--files", "show_files", is_flag=True, help="List individual records")
@click.pass_obj
def tree(settings: JsonSettings, export: Path, show_files: bool) -> None:
    """Show the year/month hierarchy of EXPORT."""
    vm = build_vm(settings)
    _load_or_exit(vm, export)
    console.print(_render_tree(vm.state.groups, vm.record_count, show_files))


@main.command()
@click.argument("export", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("destination", type=click.Path(file_okay=False, path_type=Path))
@click.option("--year", "years", multiple=True, help="Only this year (repeatable)")
@click.option("--month", "months", multiple=True, help="Only this month name (repeatable)")
@click.option(
    "--kind", "kinds", multiple=True, type=click.Choice(["image", "video"], case_sensitive=False)
)
@click.option("--match", default=None, help="Only filenames matching this regex")
@click.option("-j", "--concurrency", type=click.IntRange(min=1), default=None)
@click.option("--mkdir", is_flag=True, help="Create DESTINATION if missing")
@click.pass_obj
def download(
    settings: JsonSettings,
    export: Path,
    destination: Path,
    years: tuple[str, ...],
    months: tuple[str, ...],
    kinds: tuple[str, ...],
    match: str | None,
    concurrency: int | None,
    mkdir: bool,
) -> None:
    """Download records from EXPORT into DESTINATION."""
    if match:
        try:
            re.compile(match)
        except re.error as ex:
            raise click.BadParameter(str(ex), param_hint="--match") from ex

    vm = build_vm(settings, concurrency)
    _load_or_exit(vm, export)

    selected = select_records(vm.state.records, years, months, kinds, match)
    if not selected:
        console.print("[yellow]No records match the selection.[/yellow]")
        return
    if mkdir:
        destination.mkdir(parents=True, exist_ok=True)

    console.print(f"Selected {len(selected):,} of {vm.record_count:,} records")
    cancel_event = threading.Event()
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress, _cancel_on_interrupt(cancel_event):
        task = progress.add_task("Saving memories", total=len(selected))
        report = vm.download_selected(
            selected,
            destination,
            on_progress=lambda done, total: progress.update(task, completed=done),
            cancel_event=cancel_event,
        )

    if report is None:
        console.print(f"[red]{escape(vm.state.status_message)}[/red]")
        sys.exit(1)

    console.print(f"\n[green]{escape(vm.state.status_message)}[/green]")
    console.print(f"Saved: {len(report.saved):,}")
    console.print(f"Skipped (already present): {len(report.skipped):,}")
    if report.failed:
        console.print(f"[red]Failed: {len(report.failed):,}[/red]")
        for outcome in report.failed[:20]:
            reason = outcome.reason.value if outcome.reason else "unknown"
            console.print(
                f"  {escape(outcome.record.target_filename)}: {reason} {escape(outcome.detail)}"
            )
        if len(report.failed) > 20:
            console.print(f"  ... and {len(report.failed) - 20} more, see the log")
        sys.exit(1)


@main.command()
@click.argument("export", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("name")
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--side", type=click.IntRange(min=16), default=None, help="Longest edge in pixels")
@click.pass_obj
def thumbnail(
    settings: JsonSettings, export: Path, name: str, output: Path, side: int | None
) -> None:
    """Write a JPEG thumbnail of the record NAME (filename or id) to OUTPUT."""
    vm = build_vm(settings, with_thumbnails=True)
    _load_or_exit(vm, export)

    record = next((r for r in vm.state.records if name in (r.target_filename, r.id)), None)
    if record is None:
        raise click.ClickException(f"No record named {name!r}")
    try:
        data = vm.thumbnail(record, side)
    except ThumbnailError as ex:
        raise click.ClickException(str(ex)) from ex
    output.write_bytes(data)
    console.print(f"Wrote {len(data):,} bytes to {escape(str(output))}")


@main.command()
@click.pass_obj
def logs(settings: JsonSettings) -> None:
    """Print the path of the latest log file."""
    latest = find_latest_log_file(settings.get("logging.dir"))
    if latest is None:
        console.print("[yellow]No log files found.[/yellow]")
        return
    console.print(escape(str(latest)))


if __name__ == "__main__":
    main()
