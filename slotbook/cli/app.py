"""
Main CLI application using Typer.
"""

import logging
from dataclasses import dataclass
from datetime import date, time
from pathlib import Path
from typing import Annotated, Optional

import pendulum
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ..adapters.database import create_db_engine, create_schema
from ..adapters.sql_store import SqlSchedulingStore
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import SchedulingError
from ..domain.models import (
    MIDNIGHT,
    WEEKDAY_NAMES,
    AppointmentStatus,
    Role,
    day_of_week,
    format_end_time,
)
from ..domain.state_machine import AppointmentStateMachine
from ..services.availability_service import AvailabilityService
from ..services.booking_service import BookingService
from ..services.clock import SystemClock

app = typer.Typer(
    name="slotbook",
    help="Manage operator availability and book appointment slots",
    add_completion=False
)

console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]
RoleOption = Annotated[Role, typer.Option("--as", help="Role of the caller")]


@dataclass
class _Context:
    config: AppConfig
    availability: AvailabilityService
    booking: BookingService


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_context(config_file: Optional[Path]) -> _Context:
    """Load configuration and wire the services to the configured database."""
    config_path = config_file or get_default_config_path()
    config = AppConfig.load_from_yaml(config_path)
    _configure_logging(config.log_level)

    engine = create_db_engine(
        config.database_url,
        busy_timeout_seconds=config.defaults.busy_timeout_seconds,
    )
    create_schema(engine)
    store = SqlSchedulingStore(engine)
    clock = SystemClock(config.timezone)
    availability = AvailabilityService(
        store,
        clock,
        slot_duration_minutes=config.defaults.slot_duration_minutes,
    )
    booking = BookingService(store, clock, availability)
    return _Context(config=config, availability=availability, booking=booking)


def _fail(error: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {error}")
    raise typer.Exit(1)


def _parse_date(value: str, tz: str) -> date:
    try:
        return pendulum.from_format(value, "YYYY-MM-DD", tz=tz).date()
    except ValueError as e:
        raise ValueError(f"Invalid date '{value}', expected YYYY-MM-DD ({e})") from e


def _parse_time(value: str, closing: bool = False) -> time:
    """Parse HH:MM; closing times may be 24:00 for the end of the day."""
    if value.strip() == "24:00":
        if closing:
            return MIDNIGHT
        raise ValueError("Invalid time '24:00', it is only allowed as a closing time")
    try:
        parsed = pendulum.parse(value, exact=True)
    except ValueError as e:
        raise ValueError(f"Invalid time '{value}', expected HH:MM ({e})") from e
    if not isinstance(parsed, time):
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return time(parsed.hour, parsed.minute)


def _parse_day_of_week(value: str) -> int:
    """Accept 0-6 (0=Sunday) or an English weekday name / prefix."""
    if value.isdigit():
        return int(value)
    lowered = value.lower()
    for index, name in WEEKDAY_NAMES.items():
        if len(lowered) >= 3 and name.lower().startswith(lowered):
            return index
    raise ValueError(f"Unknown weekday '{value}'")


def _appointments_table(title: str, appointments) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("ID", style="bold yellow", justify="right")
    table.add_column("Date")
    table.add_column("Time")
    table.add_column("Operator")
    table.add_column("Client")
    table.add_column("Status")
    table.add_column("Notes", style="dim")

    for appointment in appointments:
        table.add_row(
            str(appointment.id),
            appointment.start_time.format("DD.MM.YYYY"),
            f"{appointment.start_time.format('HH:mm')} – {appointment.end_time.format('HH:mm')}",
            appointment.operator_id,
            appointment.client_id,
            appointment.status.value,
            appointment.notes,
        )
    return table


@app.command()
def init_db(config_file: ConfigOption = None):
    """
    Create the database tables.
    """
    try:
        ctx = _load_context(config_file)
    except (FileNotFoundError, ValueError) as e:
        _fail(e)
    console.print(f"[green]✓ Database ready:[/green] {ctx.config.database_url}")


@app.command()
def slots(
    operator: Annotated[str, typer.Argument(help="Operator name (alias) or id")],
    on: Annotated[Optional[str], typer.Option("--date", "-d", help="Date (YYYY-MM-DD), defaults to today")] = None,
    role: RoleOption = Role.CLIENT,
    config_file: ConfigOption = None,
):
    """
    Show the free slots of an operator for one day.

    Examples:

        slotbook slots ana --date 2024-06-10

        slotbook slots ana --date 2024-06-10 --as operator
    """
    try:
        ctx = _load_context(config_file)
        tz = ctx.config.timezone
        operator_id = ctx.config.resolve_operator(operator)
        target = _parse_date(on, tz) if on else pendulum.now(tz).date()

        available = ctx.availability.get_available_slots(operator_id, target, role)
    except (FileNotFoundError, ValueError, SchedulingError) as e:
        _fail(e)

    console.print()
    if not available:
        console.print(f"[yellow]⚠ No free slots for {operator_id} on {target.isoformat()}.[/yellow]\n")
        return

    duration = ctx.availability.slot_duration_minutes
    console.print(f"[bold green]✓ {len(available)} free slot(s) on {target.isoformat()}:[/bold green]\n")
    for start in available:
        end = start.add(minutes=duration)
        console.print(f"  {start.format('HH:mm')} – {end.format('HH:mm')}")
    console.print()


@app.command()
def dates(
    operator: Annotated[str, typer.Argument(help="Operator name (alias) or id")],
    start: Annotated[Optional[str], typer.Option("--from", help="First date (YYYY-MM-DD), defaults to today")] = None,
    days: Annotated[
        Optional[int],
        typer.Option("--days", help="Days to look ahead. Defaults to 30 for clients, 90 for operators"),
    ] = None,
    role: RoleOption = Role.CLIENT,
    config_file: ConfigOption = None,
):
    """
    Show the dates on which an operator still has free slots.

    Examples:

        slotbook dates ana

        slotbook dates ana --from 2024-06-10 --days 14 --as operator
    """
    try:
        ctx = _load_context(config_file)
        operator_id = ctx.config.resolve_operator(operator)
        first = _parse_date(start, ctx.config.timezone) if start else None

        bookable = ctx.availability.available_dates(operator_id, start=first, days=days, role=role)
    except (FileNotFoundError, ValueError, SchedulingError) as e:
        _fail(e)

    console.print()
    if not bookable:
        console.print(f"[yellow]⚠ No bookable dates for {operator_id}.[/yellow]\n")
        return

    console.print(f"[bold green]✓ {len(bookable)} bookable date(s):[/bold green]\n")
    for day in bookable:
        console.print(f"  {day.isoformat()}  {WEEKDAY_NAMES[day_of_week(day)]}")
    console.print()


@app.command()
def book(
    operator: Annotated[str, typer.Argument(help="Operator name (alias) or id")],
    client: Annotated[str, typer.Argument(help="Client id")],
    at: Annotated[str, typer.Option("--at", help="Slot start (YYYY-MM-DD HH:mm)")],
    notes: Annotated[str, typer.Option("--notes", "-n", help="Free-text notes")] = "",
    role: RoleOption = Role.CLIENT,
    status: Annotated[
        AppointmentStatus,
        typer.Option("--status", help="Initial status (operator bookings only)"),
    ] = AppointmentStatus.PENDING,
    config_file: ConfigOption = None,
):
    """
    Book a slot for a client.
    """
    try:
        ctx = _load_context(config_file)
        tz = ctx.config.timezone
        operator_id = ctx.config.resolve_operator(operator)
        try:
            slot_time = pendulum.from_format(at, "YYYY-MM-DD HH:mm", tz=tz)
        except ValueError as e:
            raise ValueError(f"Invalid slot '{at}', expected YYYY-MM-DD HH:mm ({e})") from e

        if role is Role.OPERATOR:
            appointment = ctx.booking.create_appointment_as_operator(
                client, operator_id, slot_time, notes=notes, status=status
            )
        else:
            if status is not AppointmentStatus.PENDING:
                raise ValueError("Clients can only create pending appointments")
            appointment = ctx.booking.create_appointment(client, operator_id, slot_time, notes=notes)
    except (FileNotFoundError, ValueError, SchedulingError) as e:
        _fail(e)

    console.print(
        f"\n[green]✓ Appointment {appointment.id} booked:[/green] {appointment.format_display()}\n"
    )


@app.command()
def set_status(
    appointment_id: Annotated[int, typer.Argument(help="Appointment id")],
    status: Annotated[AppointmentStatus, typer.Argument(help="Target status")],
    role: RoleOption = Role.OPERATOR,
    config_file: ConfigOption = None,
):
    """
    Change the status of an appointment.
    """
    try:
        ctx = _load_context(config_file)
        appointment = ctx.booking.change_appointment_status(appointment_id, role, status)
    except (FileNotFoundError, ValueError, SchedulingError) as e:
        _fail(e)

    console.print(f"\n[green]✓ Appointment {appointment.id} is now {appointment.status.value}.[/green]")
    remaining = AppointmentStateMachine().allowed_targets(appointment.status, role)
    if remaining:
        options = ", ".join(sorted(s.value for s in remaining))
        console.print(f"  Next possible steps for {role.value}: {options}")
    console.print()


@app.command()
def appointments(
    operator: Annotated[Optional[str], typer.Option("--operator", "-o", help="Operator name or id")] = None,
    client: Annotated[Optional[str], typer.Option("--client", help="Client id")] = None,
    on: Annotated[Optional[str], typer.Option("--date", "-d", help="Date (YYYY-MM-DD)")] = None,
    status: Annotated[Optional[AppointmentStatus], typer.Option("--status", help="Filter by status")] = None,
    upcoming: Annotated[bool, typer.Option("--upcoming", help="Only the next active appointments")] = False,
    limit: Annotated[int, typer.Option("--limit", help="Maximum rows with --upcoming")] = 5,
    config_file: ConfigOption = None,
):
    """
    List appointments.
    """
    try:
        ctx = _load_context(config_file)
        operator_id = ctx.config.resolve_operator(operator) if operator else None

        if upcoming:
            rows = ctx.booking.upcoming_appointments(operator_id=operator_id, client_id=client, limit=limit)
            title = "Upcoming appointments"
        else:
            target = _parse_date(on, ctx.config.timezone) if on else None
            rows = ctx.booking.list_appointments(
                operator_id=operator_id, client_id=client, on=target, status=status
            )
            title = "Appointments"
    except (FileNotFoundError, ValueError, SchedulingError) as e:
        _fail(e)

    if not rows:
        console.print("[yellow]No appointments found.[/yellow]")
        return

    console.print()
    console.print(_appointments_table(title, rows))
    console.print()


@app.command()
def windows(
    operator: Annotated[str, typer.Argument(help="Operator name (alias) or id")],
    config_file: ConfigOption = None,
):
    """
    List the recurring weekly availability of an operator.
    """
    try:
        ctx = _load_context(config_file)
        operator_id = ctx.config.resolve_operator(operator)
        rows = ctx.availability.list_windows(operator_id)
    except (FileNotFoundError, ValueError, SchedulingError) as e:
        _fail(e)

    if not rows:
        console.print(f"[yellow]No availability windows for {operator_id}.[/yellow]")
        return

    table = Table(title=f"Weekly availability – {operator_id}", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="bold yellow", justify="right")
    table.add_column("Day")
    table.add_column("From")
    table.add_column("To")
    for window in rows:
        table.add_row(
            str(window.id),
            WEEKDAY_NAMES[window.day_of_week],
            f"{window.start_time:%H:%M}",
            format_end_time(window.end_time),
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def add_window(
    operator: Annotated[str, typer.Argument(help="Operator name (alias) or id")],
    day: Annotated[str, typer.Argument(help="Weekday: 0-6 (0=Sunday) or name, e.g. 'mon'")],
    start: Annotated[str, typer.Argument(help="Opening time (HH:MM)")],
    end: Annotated[str, typer.Argument(help="Closing time (HH:MM, 24:00 for midnight)")],
    config_file: ConfigOption = None,
):
    """
    Add a recurring weekly availability window.
    """
    try:
        ctx = _load_context(config_file)
        window = ctx.availability.add_window(
            ctx.config.resolve_operator(operator),
            _parse_day_of_week(day),
            _parse_time(start),
            _parse_time(end, closing=True),
        )
    except (FileNotFoundError, ValueError, SchedulingError) as e:
        _fail(e)

    console.print(f"[green]✓ Window {window.id} added:[/green] {window.format_display()}")


@app.command()
def remove_window(
    operator: Annotated[str, typer.Argument(help="Operator name (alias) or id")],
    window_id: Annotated[int, typer.Argument(help="Window id")],
    config_file: ConfigOption = None,
):
    """
    Remove a recurring availability window.
    """
    try:
        ctx = _load_context(config_file)
        ctx.availability.remove_window(ctx.config.resolve_operator(operator), window_id)
    except (FileNotFoundError, ValueError, SchedulingError) as e:
        _fail(e)

    console.print(f"[green]✓ Window {window_id} removed.[/green]")


@app.command()
def exceptions(
    operator: Annotated[str, typer.Argument(help="Operator name (alias) or id")],
    config_file: ConfigOption = None,
):
    """
    List the date exceptions of an operator.
    """
    try:
        ctx = _load_context(config_file)
        operator_id = ctx.config.resolve_operator(operator)
        rows = ctx.availability.list_exceptions(operator_id)
    except (FileNotFoundError, ValueError, SchedulingError) as e:
        _fail(e)

    if not rows:
        console.print(f"[yellow]No exceptions for {operator_id}.[/yellow]")
        return

    table = Table(title=f"Exceptions – {operator_id}", show_header=True, header_style="bold cyan")
    table.add_column("Date", style="bold yellow")
    table.add_column("Available")
    table.add_column("Hours")
    table.add_column("Reason", style="dim")
    for exception in rows:
        if not exception.is_available:
            hours = "–"
        elif exception.has_hours:
            hours = f"{exception.start_time:%H:%M} – {format_end_time(exception.end_time)}"
        else:
            hours = "all day"
        table.add_row(
            exception.date.isoformat(),
            "yes" if exception.is_available else "no",
            hours,
            exception.reason or "",
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def set_exception(
    operator: Annotated[str, typer.Argument(help="Operator name (alias) or id")],
    on: Annotated[str, typer.Argument(help="Date (YYYY-MM-DD)")],
    available: Annotated[bool, typer.Option("--open/--closed", help="Open or close the date")] = False,
    start: Annotated[Optional[str], typer.Option("--start", help="Opening time (HH:MM) when open")] = None,
    end: Annotated[Optional[str], typer.Option("--end", help="Closing time (HH:MM, 24:00 for midnight) when open")] = None,
    reason: Annotated[Optional[str], typer.Option("--reason", help="Why the date differs")] = None,
    config_file: ConfigOption = None,
):
    """
    Override the weekly availability for one date.

    Examples:

        slotbook set-exception ana 2024-12-25 --closed --reason Holiday

        slotbook set-exception ana 2024-12-24 --open --start 09:00 --end 12:00
    """
    try:
        ctx = _load_context(config_file)
        exception = ctx.availability.set_exception(
            ctx.config.resolve_operator(operator),
            _parse_date(on, ctx.config.timezone),
            is_available=available,
            start_time=_parse_time(start) if start else None,
            end_time=_parse_time(end, closing=True) if end else None,
            reason=reason,
        )
    except (FileNotFoundError, ValueError, SchedulingError) as e:
        _fail(e)

    state = "open" if exception.is_available else "closed"
    console.print(f"[green]✓ {exception.date.isoformat()} is now {state} for {exception.operator_id}.[/green]")


@app.command()
def remove_exception(
    operator: Annotated[str, typer.Argument(help="Operator name (alias) or id")],
    on: Annotated[str, typer.Argument(help="Date (YYYY-MM-DD)")],
    config_file: ConfigOption = None,
):
    """
    Remove the exception for a date.
    """
    try:
        ctx = _load_context(config_file)
        ctx.availability.remove_exception(
            ctx.config.resolve_operator(operator),
            _parse_date(on, ctx.config.timezone),
        )
    except (FileNotFoundError, ValueError, SchedulingError) as e:
        _fail(e)

    console.print(f"[green]✓ Exception on {on} removed.[/green]")


@app.command()
def list_operators(config_file: ConfigOption = None):
    """
    List all configured operators.
    """
    try:
        config_path = config_file or get_default_config_path()
        config = AppConfig.load_from_yaml(config_path)
    except (FileNotFoundError, ValueError) as e:
        _fail(e)

    if not config.operators:
        console.print("[yellow]No operators defined in the config file.[/yellow]")
        return

    table = Table(
        title="Configured operators",
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("Name (alias)", style="bold yellow")
    table.add_column("ID", style="dim")

    for operator in config.operators:
        table.add_row(operator.display_name(), operator.id)

    console.print()
    console.print(table)
    console.print()


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]slotbook[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
