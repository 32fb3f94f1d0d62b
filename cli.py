"""CLI commands for managing happenings, occurrences and signups."""

import asyncio
from uuid import UUID

import typer
import uvicorn

from happenings.config.logging import setup_logging
from happenings.config.settings import settings
from happenings.events.dtos import (
    DuplicateSignupError,
    EventNotFoundError,
    InvalidOverrideError,
    InvalidParticipantError,
    InvalidTransitionError,
    LockTimeout,
    ParticipantDTO,
    SignupNotFoundError,
    SignupStatus,
)
from happenings.events.features.occurrence_overrides.write_model import SqlOverrideWriteModel
from happenings.events.features.signups.write_model import SqlCapacityController
from happenings.events.repository.read_models import SqlHappeningsReadModel
from happenings.occurrences.dates import (
    RegionClock,
    add_days,
    format_date_group_header,
    format_date_key_short,
)
from happenings.occurrences.errors import (
    InvalidDateError,
    OccurrenceCancelledError,
    UnknownOccurrenceError,
)
from happenings.occurrences.keys import DateKind
from happenings.occurrences.overrides import OverrideStatus

app = typer.Typer(help="CLI commands for managing recurring community events")

CLI_ERRORS = (
    EventNotFoundError,
    SignupNotFoundError,
    DuplicateSignupError,
    InvalidParticipantError,
    InvalidTransitionError,
    InvalidOverrideError,
    LockTimeout,
    InvalidDateError,
    OccurrenceCancelledError,
    UnknownOccurrenceError,
)


def _run(coro):
    """Run a coroutine, turning domain errors into a red message and exit code 1."""
    try:
        return asyncio.run(coro)
    except CLI_ERRORS as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(1)


@app.callback()
def main():
    setup_logging()


@app.command()
def happenings(
    start: str = typer.Option(None, "--start", "-s", help="First date (YYYY-MM-DD), defaults to today"),
    days: int = typer.Option(14, "--days", "-d", help="Number of days to show"),
    show_cancelled: bool = typer.Option(False, "--show-cancelled", help="Include cancelled occurrences"),
):
    """List upcoming occurrences grouped by date."""
    clock = RegionClock(settings.region_timezone)
    today_key = clock.today()
    start = start or today_key

    async def _timeline():
        return await SqlHappeningsReadModel().get_timeline(start, add_days(start, days))

    timeline = _run(_timeline())

    groups = timeline.visible(show_cancelled)
    if not groups:
        typer.secho("Nothing scheduled", fg=typer.colors.YELLOW)
    for date_key, bucket in groups.items():
        typer.secho(format_date_group_header(date_key, today_key), fg=typer.colors.GREEN)
        for entry in bucket:
            effective = entry.effective
            start_time = effective.start_time.strftime("%H:%M") if effective.start_time else "--:--"
            line = f"  {start_time}  {effective.title}"
            if entry.is_rescheduled:
                line += f" (moved from {format_date_key_short(entry.date_key)})"
            color = typer.colors.BLUE
            if entry.is_cancelled:
                line += " [cancelled]"
                color = typer.colors.RED
            typer.secho(line, fg=color)
            typer.secho(f"      {entry.event_id}:{entry.date_key}", fg=typer.colors.CYAN)

    for event in timeline.unknown_events:
        typer.secho(f"Schedule unknown: {event.title} ({event.id})", fg=typer.colors.YELLOW)
    if timeline.metrics.was_capped:
        typer.secho("Results were capped, narrow the window to see everything", fg=typer.colors.YELLOW)


@app.command()
def count(
    event_id: str = typer.Argument(..., help="Event UUID"),
    date_key: str = typer.Argument(..., help="Occurrence date (YYYY-MM-DD)"),
):
    """Show confirmed and waitlisted counts for one occurrence."""
    result = _run(SqlCapacityController().count(UUID(event_id), date_key))

    capacity = "unlimited" if result.capacity is None else result.capacity
    typer.secho(f"Occurrence {event_id}:{result.date_key}", fg=typer.colors.GREEN)
    typer.secho(f"  Confirmed: {result.confirmed} / {capacity}", fg=typer.colors.BLUE)
    typer.secho(f"  Waitlist: {result.waitlist_length}", fg=typer.colors.BLUE)
    if result.remaining is not None:
        typer.secho(f"  Remaining: {result.remaining}", fg=typer.colors.CYAN)


@app.command()
def signup(
    event_id: str = typer.Argument(..., help="Event UUID"),
    date_key: str = typer.Option(None, "--date", "-d", help="Occurrence date, defaults to the next one"),
    display_date: str = typer.Option(
        None, "--shown-on", help="Date the occurrence is shown on, used when --date is missing"
    ),
    member_id: str = typer.Option(None, "--member", "-m", help="Member UUID"),
    guest_name: str = typer.Option(None, "--guest-name", "-n", help="Guest name"),
    guest_email: str = typer.Option(None, "--guest-email", "-e", help="Guest email"),
):
    """Sign a member or guest up for an occurrence."""
    participant = ParticipantDTO(
        member_id=UUID(member_id) if member_id else None,
        guest_name=guest_name,
        guest_email=guest_email,
    )
    by = DateKind.NATURAL
    if date_key is None and display_date is not None:
        date_key, by = display_date, DateKind.DISPLAY
    result = _run(SqlCapacityController().signup(UUID(event_id), date_key, participant, by=by))

    if result.status == SignupStatus.CONFIRMED:
        typer.secho(f"Confirmed for {result.date_key}", fg=typer.colors.GREEN)
        if result.slot_index is not None:
            typer.secho(f"  Slot: {result.slot_index + 1}", fg=typer.colors.BLUE)
    else:
        typer.secho(
            f"Waitlisted for {result.date_key} at position {result.waitlist_position}",
            fg=typer.colors.YELLOW,
        )
    typer.secho(f"  Signup ID: {result.signup_id}", fg=typer.colors.CYAN)


@app.command()
def cancel_signup(
    signup_id: str = typer.Argument(..., help="Signup UUID"),
):
    """Cancel a signup, promoting the next waitlisted participant if a seat frees up."""
    result = _run(SqlCapacityController().cancel(UUID(signup_id)))

    typer.secho(f"Signup {result.signup_id} cancelled", fg=typer.colors.GREEN)
    if result.promoted_signup_id:
        name = result.promoted_guest_name or result.promoted_member_id
        typer.secho(f"  Promoted from waitlist: {name}", fg=typer.colors.BLUE)


@app.command()
def cancel_occurrence(
    event_id: str = typer.Argument(..., help="Event UUID"),
    date_key: str = typer.Argument(..., help="Occurrence date (YYYY-MM-DD)"),
    note: str = typer.Option(None, "--note", help="Note shown on the cancelled occurrence"),
):
    """Cancel a single occurrence of an event."""
    override = _run(
        SqlOverrideWriteModel().upsert_override(
            UUID(event_id),
            date_key,
            status=OverrideStatus.CANCELLED,
            patch={"host_notes": note} if note else None,
        )
    )
    typer.secho(f"Occurrence {override.date_key} cancelled", fg=typer.colors.GREEN)


@app.command()
def reschedule(
    event_id: str = typer.Argument(..., help="Event UUID"),
    date_key: str = typer.Argument(..., help="Natural occurrence date (YYYY-MM-DD)"),
    new_date: str = typer.Argument(..., help="Date to move the occurrence to (YYYY-MM-DD)"),
):
    """Move a single occurrence to another date; its signups stay attached."""
    override = _run(
        SqlOverrideWriteModel().upsert_override(
            UUID(event_id), date_key, patch={"event_date": new_date}
        )
    )
    typer.secho(
        f"Occurrence {override.date_key} now shows on {override.display_date}",
        fg=typer.colors.GREEN,
    )


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Run the API with uvicorn on the configured host and port."""
    uvicorn.run(
        "happenings.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=reload,
    )


if __name__ == "__main__":
    app()
