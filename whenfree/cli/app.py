"""
Main CLI application using Typer.
"""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..adapters.mock_calendar import DEFAULT_DATA_FILE, MockCalendarProvider
from ..config import AppConfig, EventFile, get_default_config_path
from ..domain.aggregation import build_group_schedule, format_range, rank_most_available
from ..domain.exceptions import WhenFreeError
from ..domain.models import SourceTag
from ..domain.normalizer import CalendarNormalizer
from ..services.availability import AvailabilityService
from ..services.calendar_sync import CalendarSyncService
from ..services.store import InMemoryStore

app = typer.Typer(
    name="whenfree",
    help="Find the times most participants are free",
    add_completion=False
)

console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging.")]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


def _load_config(config_file: Optional[Path]) -> AppConfig:
    """Load the app config; built-in defaults apply when no file exists."""
    config_path = config_file or get_default_config_path()
    if config_file is None and not config_path.exists():
        return AppConfig()
    return AppConfig.load_from_yaml(config_path)


def _load_event(event_file: Path) -> EventFile:
    try:
        return EventFile.load_from_yaml(event_file)
    except FileNotFoundError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[bold red]Invalid event file:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def best(
    event_file: Annotated[Path, typer.Argument(help="Event YAML with participants and their responses.")],
    exclude_if_needed: Annotated[bool, typer.Option("--exclude-if-needed", help="Count 'if needed' as unavailable.")] = False,
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
):
    """
    Show the time ranges when the most participants are available.

    Examples:

        whenfree best team-dinner.yaml
        whenfree best team-dinner.yaml --exclude-if-needed
    """
    _configure_logging(verbose)
    try:
        config = _load_config(config_file)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    event = _load_event(event_file)
    event_config = event.config
    documents = event.documents()
    total = len(documents)

    group = build_group_schedule(event_config, documents)
    ranges = rank_most_available(group, event_config, total, exclude_if_needed)

    console.print()
    console.print(Panel.fit(
        f"[bold]{event.name}[/bold]\n"
        f"{total} respondent(s), {len(event_config.columns())} column(s), "
        f"{event_config.start_time} - {event_config.end_time}",
        title="🗓️  whenfree",
    ))

    if not ranges:
        console.print(
            "[yellow]⚠ Nobody is available in any slot.[/yellow]\n"
        )
        return

    table = Table(
        title="Most available times",
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("When", style="bold yellow")
    table.add_column("Available", justify="right")
    table.add_column("%", justify="right")
    table.add_column("Who", style="dim")
    if config.features.enable_if_needed and not exclude_if_needed:
        table.add_column("If needed", style="dim")

    for availability in ranges:
        row = [
            f"{availability.column} {availability.start_time} ~ {availability.end_time}",
            f"{availability.count}/{total}",
            f"{availability.percentage:g}",
            ", ".join(user.name for user in availability.available_users),
        ]
        if config.features.enable_if_needed and not exclude_if_needed:
            row.append(", ".join(user.name for user in availability.if_needed_users))
        table.add_row(*row)

    console.print(table)
    console.print()
    for availability in ranges:
        console.print(f"  {format_range(availability, total)}")
    console.print()


@app.command()
def grid(
    event_file: Annotated[Path, typer.Argument(help="Event YAML with participants and their responses.")],
    exclude_if_needed: Annotated[bool, typer.Option("--exclude-if-needed", help="Count 'if needed' as unavailable.")] = False,
    verbose: VerboseOption = False,
):
    """
    Print the available headcount of every slot.
    """
    _configure_logging(verbose)
    event = _load_event(event_file)
    event_config = event.config
    documents = event.documents()
    group = build_group_schedule(event_config, documents)

    table = Table(title=event.name, show_header=True, header_style="bold cyan")
    table.add_column("Time", style="bold")
    columns = event_config.columns()
    for column in columns:
        table.add_column(column, justify="center")

    best_count = max(
        (tally.effective_count(exclude_if_needed) for tally in group.values()),
        default=0,
    )
    for mark in event_config.time_rows():
        cells = []
        for column in columns:
            count = group[f"{column}-{mark}"].effective_count(exclude_if_needed)
            if count and count == best_count:
                cells.append(f"[bold green]{count}[/bold green]")
            elif count:
                cells.append(str(count))
            else:
                cells.append("[dim]·[/dim]")
        table.add_row(mark, *cells)

    console.print()
    console.print(table)
    console.print(f"[dim]{len(documents)} respondent(s)[/dim]\n")


@app.command("import-ics")
def import_ics(
    event_file: Annotated[Path, typer.Argument(help="Event YAML defining the slot grid.")],
    ics_files: Annotated[List[Path], typer.Argument(help="iCalendar files to read.")],
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
):
    """
    Show which slots of an event the entries of .ics files would block.
    """
    _configure_logging(verbose)
    try:
        config = _load_config(config_file)
        missing = [str(path) for path in ics_files if not path.exists()]
        if missing:
            raise FileNotFoundError(f"iCalendar file(s) not found: {', '.join(missing)}")
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    event = _load_event(event_file)
    normalizer = CalendarNormalizer(config.timezone, config.sync.max_occurrences_per_rule)
    payloads = [path.read_text(encoding="utf-8") for path in ics_files]
    events = normalizer.normalize(SourceTag.APPLE.value, payloads, event.config)

    if not events:
        console.print("[yellow]⚠ No entry blocks a slot of this event.[/yellow]")
        return

    table = Table(title="Blocked slots", show_header=True, header_style="bold cyan")
    table.add_column("Entry", style="bold yellow")
    table.add_column("Recurring", justify="center")
    table.add_column("Slots", style="dim")
    for normalized in events:
        table.add_row(
            normalized.title,
            "✓" if normalized.is_recurring else "",
            ", ".join(normalized.slot_ids),
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def sync(
    event_file: Annotated[Path, typer.Argument(help="Event YAML defining the slot grid.")],
    user_id: Annotated[str, typer.Argument(help="Participant whose calendars are merged.")],
    mock_data: Annotated[Path, typer.Option("--mock-data", help="JSON fixture with calendar payloads.")] = DEFAULT_DATA_FILE,
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
):
    """
    Merge a participant's response with calendar data from a fixture file.
    """
    _configure_logging(verbose)
    try:
        config = _load_config(config_file)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    event = _load_event(event_file)
    providers = [
        MockCalendarProvider(SourceTag.GOOGLE, user_id, data_file=mock_data),
        MockCalendarProvider(SourceTag.APPLE, user_id, data_file=mock_data),
    ]

    async def run():
        store = InMemoryStore()
        for document in event.documents():
            await store.write("cli", document.user_id, document)

        normalizer = CalendarNormalizer(config.timezone, config.sync.max_occurrences_per_rule)
        service = AvailabilityService(
            store,
            CalendarSyncService(normalizer, config.sync.fetch_timeout_seconds),
            save_retries=config.sync.save_retries,
        )
        try:
            return await service.refresh("cli", user_id, event.config, providers)
        finally:
            await store.close()

    try:
        result = asyncio.run(run())
    except WhenFreeError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    for source, error in result.sync.failures.items():
        console.print(f"[yellow]⚠ {source.value}: {error}[/yellow]")

    schedule = result.schedule
    table = Table(title=f"Schedule of {user_id}", show_header=True, header_style="bold cyan")
    table.add_column("Slot", style="bold")
    table.add_column("State")
    table.add_column("Source", style="dim")
    table.add_column("Title", style="dim")
    for slot_id in event.config.universe():
        if slot_id not in schedule.source_of:
            continue
        table.add_row(
            slot_id,
            schedule.state_of(slot_id).value,
            schedule.source_of[slot_id].value,
            schedule.titles.get(slot_id, ""),
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]whenfree[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
