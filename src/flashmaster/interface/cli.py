"""FlashMaster CLI: root options and the deck, card, review, stats, transfer and backup commands."""

import asyncio
import json
import logging
import sys
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any, TypeVar

import pydantic
import typer

from flashmaster.application.config import AppConfig, resolve_config
from flashmaster.application.factory import get_repository
from flashmaster.application.filters import classify
from flashmaster.application.review_service import ReviewService
from flashmaster.application.stats import StatsService, StatsSummary
from flashmaster.application.transfer import export_csv, export_json, import_csv, import_json
from flashmaster.domain.errors import FlashmasterError, ValidationError
from flashmaster.domain.models import Card, Grade, utcnow
from flashmaster.domain.stats.models import DateRange
from flashmaster.infrastructure.adapters.json_store import JsonStore

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="flashmaster: local-first spaced-repetition flashcards.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Subgroups
# ---------------------------------------------------------------------------

deck_app = typer.Typer(help="Create, list, rename and delete decks.", no_args_is_help=True)
card_app = typer.Typer(help="Add, list, edit, delete and search cards.", no_args_is_help=True)
export_app = typer.Typer(help="Export cards to JSON or CSV.", no_args_is_help=True)
import_app = typer.Typer(help="Import cards from JSON or CSV.", no_args_is_help=True)
backup_app = typer.Typer(help="Inspect and restore JSON store backups.", no_args_is_help=True)
config_app = typer.Typer(help="Manage flashmaster configuration.")

app.add_typer(deck_app, name="deck")
app.add_typer(card_app, name="card")
app.add_typer(export_app, name="export")
app.add_typer(import_app, name="import")
app.add_typer(backup_app, name="backup")
app.add_typer(config_app, name="config")


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    store: Annotated[
        str | None, typer.Option(help="Storage backend: json, sqlite, postgres, memory.")
    ] = None,
    db_path: Annotated[Path | None, typer.Option(help="SQLite database file.")] = None,
    data_dir: Annotated[
        Path | None, typer.Option(help="Directory for the store file and backups.")
    ] = None,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 0,
):
    """Global settings for flashmaster."""
    try:
        config = resolve_config(
            {"store": store, "db_path": db_path, "data_dir": data_dir, "verbose": verbose or None}
        )
    except pydantic.ValidationError as e:
        typer.secho(f"Invalid configuration: {e}", fg="red", err=True)
        raise typer.Exit(1) from e

    if config.verbose >= 2:
        logging.getLogger().setLevel(logging.DEBUG)
    elif config.verbose == 1:
        logging.getLogger().setLevel(logging.INFO)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _config(ctx: typer.Context) -> AppConfig:
    return ctx.obj["config"]


def _run(ctx: typer.Context, work: Callable[[ReviewService], Awaitable[T]]) -> T:
    """Open the configured repository, run ``work`` and close it. Domain errors exit 1."""
    config = _config(ctx)

    async def main() -> T:
        async with await get_repository(config) as repo:
            return await work(ReviewService(repo))

    try:
        return asyncio.run(main())
    except FlashmasterError as e:
        logger.debug("Command failed", exc_info=True)
        typer.secho(f"Error: {e}", fg="red", err=True)
        raise typer.Exit(1) from e


async def _deck_id(service: ReviewService, selector: str | None) -> str | None:
    if selector is None:
        return None
    return (await service.resolve_deck(selector)).id


def _to_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _card_line(card: Card, now: datetime) -> str:
    status = classify(card, now).value
    tags = f"  #{' #'.join(card.tags)}" if card.tags else ""
    return f"{card.id}  {status:<9} {card.due_at:%Y-%m-%d}  {card.front}{tags}"


def _echo_cards(cards: list[Card], now: datetime) -> None:
    if not cards:
        typer.secho("No cards found.", fg="yellow")
        return
    for card in cards:
        typer.echo(_card_line(card, now))


# ---------------------------------------------------------------------------
# Decks
# ---------------------------------------------------------------------------


@deck_app.command("add")
def deck_add(ctx: typer.Context, name: Annotated[str, typer.Argument(help="Deck name.")]):
    """Create a deck."""

    async def work(service: ReviewService):
        return await service.repo.create_deck(name)

    deck = _run(ctx, work)
    typer.secho(f"Created deck '{deck.name}' ({deck.id})", fg="green")


@deck_app.command("list")
def deck_list(ctx: typer.Context):
    """List decks with their card counts."""

    async def work(service: ReviewService):
        decks = await service.repo.list_decks()
        counts = Counter(card.deck_id for card in await service.repo.list_cards())
        return decks, counts

    decks, counts = _run(ctx, work)
    if not decks:
        typer.secho("No decks yet. Create one with 'flashmaster deck add NAME'.", fg="yellow")
        return
    for deck in decks:
        typer.echo(f"{deck.id}  {deck.name}  ({counts.get(deck.id, 0)} cards)")


@deck_app.command("rename")
def deck_rename(
    ctx: typer.Context,
    deck: Annotated[str, typer.Argument(help="Deck id or name.")],
    new_name: Annotated[str, typer.Argument(help="New deck name.")],
):
    """Rename a deck."""

    async def work(service: ReviewService):
        target = await service.resolve_deck(deck)
        return await service.repo.rename_deck(target.id, new_name)

    renamed = _run(ctx, work)
    typer.secho(f"Renamed deck to '{renamed.name}'", fg="green")


@deck_app.command("rm")
def deck_rm(
    ctx: typer.Context,
    deck: Annotated[str, typer.Argument(help="Deck id or name.")],
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Bypass confirmation.")
    ] = False,
):
    """Delete a deck together with its cards and their reviews."""
    if not force:
        typer.confirm(f"Delete deck '{deck}' and all of its cards?", abort=True)

    async def work(service: ReviewService):
        target = await service.resolve_deck(deck)
        await service.repo.delete_deck(target.id)
        return target

    removed = _run(ctx, work)
    typer.secho(f"Deleted deck '{removed.name}'", fg="green")


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------


@card_app.command("add")
def card_add(
    ctx: typer.Context,
    deck: Annotated[str, typer.Option(help="Deck id or name.")],
    front: Annotated[str, typer.Option(help="Question side.")],
    back: Annotated[str, typer.Option(help="Answer side.")],
    hint: Annotated[str | None, typer.Option(help="Optional hint.")] = None,
    tags: Annotated[
        list[str] | None, typer.Option("--tag", help="Tag (repeatable).")
    ] = None,
):
    """Add a card to a deck."""

    async def work(service: ReviewService):
        target = await service.resolve_deck(deck)
        return await service.repo.add_card(target.id, front, back, hint=hint, tags=tags or [])

    card = _run(ctx, work)
    typer.secho(f"Added card {card.id}", fg="green")


@card_app.command("list")
def card_list(
    ctx: typer.Context,
    deck: Annotated[str | None, typer.Option(help="Deck id or name.")] = None,
):
    """List cards with their status and due date."""

    async def work(service: ReviewService):
        return await service.repo.list_cards(await _deck_id(service, deck))

    _echo_cards(_run(ctx, work), utcnow())


@card_app.command("edit")
def card_edit(
    ctx: typer.Context,
    card_id: Annotated[str, typer.Argument(help="Card id.")],
    front: Annotated[str | None, typer.Option(help="New question side.")] = None,
    back: Annotated[str | None, typer.Option(help="New answer side.")] = None,
    hint: Annotated[str | None, typer.Option(help="New hint.")] = None,
    clear_hint: Annotated[bool, typer.Option("--clear-hint", help="Remove the hint.")] = False,
    add_tags: Annotated[
        list[str] | None, typer.Option("--add-tag", help="Tag to add (repeatable).")
    ] = None,
    rm_tags: Annotated[
        list[str] | None, typer.Option("--rm-tag", help="Tag to remove (repeatable).")
    ] = None,
    deck: Annotated[str | None, typer.Option(help="Move the card to this deck.")] = None,
    suspend: Annotated[bool, typer.Option("--suspend", help="Exclude from reviews.")] = False,
    unsuspend: Annotated[
        bool, typer.Option("--unsuspend", help="Include in reviews again.")
    ] = False,
):
    """Edit a card's content, tags, deck or suspended flag. Scheduling is kept."""
    if suspend and unsuspend:
        typer.secho("Error: --suspend and --unsuspend are mutually exclusive", fg="red", err=True)
        raise typer.Exit(1)
    if hint is not None and clear_hint:
        typer.secho("Error: --hint and --clear-hint are mutually exclusive", fg="red", err=True)
        raise typer.Exit(1)

    async def work(service: ReviewService):
        card = await service.repo.get_card(card_id)
        changes: dict[str, Any] = {}
        if front is not None:
            changes["front"] = front
        if back is not None:
            changes["back"] = back
        if hint is not None:
            changes["hint"] = hint
        if clear_hint:
            changes["hint"] = None
        if add_tags or rm_tags:
            removed = set(rm_tags or [])
            changes["tags"] = [t for t in [*card.tags, *(add_tags or [])] if t not in removed]
        if deck is not None:
            changes["deck_id"] = (await service.resolve_deck(deck)).id
        if suspend or unsuspend:
            changes["suspended"] = suspend
        if not changes:
            raise ValidationError("nothing to change")
        return await service.repo.update_card(replace(card, **changes))

    card = _run(ctx, work)
    typer.secho(f"Updated card {card.id}", fg="green")


@card_app.command("rm")
def card_rm(ctx: typer.Context, card_id: Annotated[str, typer.Argument(help="Card id.")]):
    """Delete a card and its review history."""

    async def work(service: ReviewService):
        await service.repo.delete_card(card_id)

    _run(ctx, work)
    typer.secho(f"Deleted card {card_id}", fg="green")


@card_app.command("search")
def card_search(
    ctx: typer.Context,
    text: Annotated[
        str | None, typer.Argument(help="Case-insensitive text in front or back.")
    ] = None,
    tag: Annotated[str | None, typer.Option(help="Exact tag.")] = None,
    deck: Annotated[str | None, typer.Option(help="Deck id or name.")] = None,
):
    """Search all cards by text and/or tag."""

    async def work(service: ReviewService):
        return await service.search(text=text, tag=tag, deck_id=await _deck_id(service, deck))

    _echo_cards(_run(ctx, work), utcnow())


# ---------------------------------------------------------------------------
# Due queue and review session
# ---------------------------------------------------------------------------


@app.command("due")
def due(
    ctx: typer.Context,
    deck: Annotated[str | None, typer.Option(help="Deck id or name.")] = None,
    include_new: Annotated[
        bool, typer.Option("--include-new", help="Include new (unreviewed) cards.")
    ] = False,
    include_lapsed: Annotated[
        bool, typer.Option("--include-lapsed", help="Include cards last graded Hard.")
    ] = False,
    tag: Annotated[str | None, typer.Option(help="Exact tag.")] = None,
    text: Annotated[str | None, typer.Option(help="Text in front or back.")] = None,
    max_cards: Annotated[int | None, typer.Option("--max", help="Maximum cards.")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show the cards due for review, in queue order."""
    now = utcnow()

    async def work(service: ReviewService):
        return await service.due_queue(
            deck_id=await _deck_id(service, deck),
            include_new=include_new,
            include_lapsed=include_lapsed,
            tag=tag,
            text=text,
            limit=max_cards,
            now=now,
        )

    cards = _run(ctx, work)
    if json_output:
        typer.echo(
            json.dumps(
                [
                    {
                        "id": c.id,
                        "deck_id": c.deck_id,
                        "front": c.front,
                        "status": classify(c, now).value,
                        "due_at": c.due_at.isoformat(),
                    }
                    for c in cards
                ],
                indent=2,
            )
        )
        return
    _echo_cards(cards, now)


def _prompt_grade() -> Grade | str:
    while True:
        raw = typer.prompt("Grade [1 hard, 2 medium, 3 easy, s skip, q quit]").strip().lower()
        if raw in ("s", "q"):
            return raw
        try:
            return Grade.parse(raw)
        except ValidationError:
            typer.secho("Enter 1, 2, 3, s or q.", fg="yellow")


@app.command("review")
def review(
    ctx: typer.Context,
    deck: Annotated[str | None, typer.Option(help="Deck id or name.")] = None,
    include_new: Annotated[
        bool, typer.Option("--include-new", help="Include new (unreviewed) cards.")
    ] = False,
    include_lapsed: Annotated[
        bool, typer.Option("--include-lapsed", help="Include cards last graded Hard.")
    ] = False,
    tag: Annotated[str | None, typer.Option(help="Exact tag.")] = None,
    max_cards: Annotated[
        int | None, typer.Option("--max", help="Maximum cards (defaults to review_max).")
    ] = None,
):
    """[bold green]Review[/bold green] due cards interactively."""
    limit = max_cards if max_cards is not None else _config(ctx).review_max

    async def work(service: ReviewService):
        queue = await service.due_queue(
            deck_id=await _deck_id(service, deck),
            include_new=include_new,
            include_lapsed=include_lapsed,
            tag=tag,
            limit=limit,
        )
        if not queue:
            typer.secho("Nothing to review.", fg="yellow")
            if not include_new:
                typer.echo("Use --include-new to study cards you have not seen yet.")
            return 0

        reviewed = 0
        for position, card in enumerate(queue, start=1):
            typer.secho(f"\n[{position}/{len(queue)}] {card.front}", bold=True)
            if card.hint:
                typer.echo(f"Hint: {card.hint}")
            typer.prompt("Press Enter to show the answer", default="", show_default=False)
            typer.echo(f"Answer: {card.back}")

            answer = _prompt_grade()
            if answer == "q":
                break
            if answer == "s":
                continue
            outcome = await service.grade_card(card.id, answer)
            reviewed += 1
            typer.secho(
                f"Next review in {outcome.review.interval_applied} day(s).", fg="green"
            )
        return reviewed

    reviewed = _run(ctx, work)
    if reviewed:
        typer.echo(f"\nReviewed {reviewed} card(s).")


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


def _summary_to_dict(summary: StatsSummary, names: dict[str, str]) -> dict[str, Any]:
    report = summary.report
    return {
        "total_reviews": report.totals.total,
        "hard": report.totals.hard,
        "medium": report.totals.medium,
        "easy": report.totals.easy,
        "accuracy": report.accuracy,
        "streak_days": summary.streak,
        "skipped_reviews": report.skipped_reviews,
        "daily": {day.isoformat(): count for day, count in report.daily_totals.items()},
        "decks": [
            {
                "deck_id": deck_id,
                "name": names.get(deck_id, deck_id),
                "reviews": stats.total_reviews,
                "accuracy": stats.accuracy,
                "due": stats.due,
                "new": stats.new,
                "lapsed": stats.lapsed,
            }
            for deck_id, stats in report.per_deck.items()
        ],
    }


def _pct(value: float | None) -> str:
    return "n/a" if value is None else f"{value:.0%}"


@app.command("stats")
def stats(
    ctx: typer.Context,
    deck: Annotated[str | None, typer.Option(help="Deck id or name.")] = None,
    since: Annotated[
        datetime | None, typer.Option(formats=["%Y-%m-%d"], help="First day (inclusive).")
    ] = None,
    until: Annotated[
        datetime | None, typer.Option(formats=["%Y-%m-%d"], help="Last bound (exclusive).")
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show review statistics."""
    window = DateRange(start=_to_utc(since), end=_to_utc(until))

    async def work(service: ReviewService):
        deck_id = await _deck_id(service, deck)
        summary = await StatsService(service.repo).summary(deck_id=deck_id, range=window)
        names = {d.id: d.name for d in await service.repo.list_decks()}
        return summary, names

    summary, names = _run(ctx, work)
    data = _summary_to_dict(summary, names)

    if json_output:
        typer.echo(json.dumps(data, indent=2))
        return

    typer.echo(f"Reviews:  {data['total_reviews']}")
    typer.echo(f"Accuracy: {_pct(data['accuracy'])}")
    typer.echo(f"Hard/Medium/Easy: {data['hard']}/{data['medium']}/{data['easy']}")
    typer.echo(f"Streak:   {data['streak_days']} day(s)")
    if data["skipped_reviews"]:
        typer.secho(
            f"{data['skipped_reviews']} review(s) of deleted cards not attributed to a deck.",
            fg="yellow",
        )
    for row in data["decks"]:
        typer.echo(
            f"  {row['name']}: {row['reviews']} reviews, accuracy {_pct(row['accuracy'])}, "
            f"due {row['due']}, new {row['new']}, lapsed {row['lapsed']}"
        )


# ---------------------------------------------------------------------------
# Import / export
# ---------------------------------------------------------------------------


@export_app.command("json")
def export_json_cmd(
    ctx: typer.Context, path: Annotated[Path, typer.Argument(help="Output file.")]
):
    """Export every deck and card as a JSON bundle."""

    async def work(service: ReviewService):
        return await export_json(service.repo, path)

    count = _run(ctx, work)
    typer.secho(f"Wrote {count} cards to {path}", fg="green")


@export_app.command("csv")
def export_csv_cmd(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="Output file.")],
    deck: Annotated[str | None, typer.Option(help="Only this deck.")] = None,
):
    """Export cards as CSV (deck,front,back,hint,tags,suspended)."""

    async def work(service: ReviewService):
        return await export_csv(service.repo, path, deck_id=await _deck_id(service, deck))

    count = _run(ctx, work)
    typer.secho(f"Wrote {count} cards to {path}", fg="green")


@import_app.command("json")
def import_json_cmd(
    ctx: typer.Context, path: Annotated[Path, typer.Argument(help="JSON bundle.")]
):
    """Import a JSON bundle. Cards start with fresh scheduling."""

    async def work(service: ReviewService):
        return await import_json(service.repo, path)

    summary = _run(ctx, work)
    typer.secho(
        f"Imported {summary.cards_added} cards ({summary.decks_created} new decks)", fg="green"
    )


@import_app.command("csv")
def import_csv_cmd(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="CSV file with a header row.")],
    deck: Annotated[
        str | None, typer.Option(help="Put every card in this deck instead.")
    ] = None,
):
    """Import cards from CSV. Missing decks are created by name."""

    async def work(service: ReviewService):
        target = await service.resolve_deck(deck) if deck else None
        return await import_csv(service.repo, path, target=target)

    summary = _run(ctx, work)
    typer.secho(
        f"Imported {summary.cards_added} cards ({summary.decks_created} new decks)", fg="green"
    )


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------


def _json_store(service: ReviewService) -> JsonStore:
    if not isinstance(service.repo, JsonStore):
        raise ValidationError("backups are only available with the json store")
    return service.repo


@backup_app.command("list")
def backup_list(ctx: typer.Context):
    """List backups of the JSON store, oldest first."""

    async def work(service: ReviewService):
        return _json_store(service).list_backups()

    backups = _run(ctx, work)
    if not backups:
        typer.secho("No backups yet.", fg="yellow")
        return
    for path in backups:
        typer.echo(path.name)


@backup_app.command("restore")
def backup_restore(
    ctx: typer.Context,
    name: Annotated[
        str | None, typer.Argument(help="Backup file name. Defaults to the newest.")
    ] = None,
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Bypass confirmation.")
    ] = False,
):
    """Replace the store with a backup. The current version is backed up first."""
    if not force:
        typer.confirm("Replace the current store with a backup?", abort=True)

    async def work(service: ReviewService):
        store = _json_store(service)
        backup = store.backups_dir / name if name else None
        return await store.restore_backup(backup)

    restored = _run(ctx, work)
    typer.secho(f"Restored from {restored.name}", fg="green")


# ---------------------------------------------------------------------------
# Config and server
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Display final resolved configuration."""
    config = _config(ctx)
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    typer.echo(json.dumps(d, indent=2))


@app.command("serve")
def serve(
    ctx: typer.Context,
    host: Annotated[str | None, typer.Option(help="Bind address.")] = None,
    port: Annotated[int | None, typer.Option(help="Bind port.")] = None,
):
    """Start the HTTP API."""
    import uvicorn

    from flashmaster.server import create_app

    config = _config(ctx)
    host = host or config.api_host
    port = port or config.api_port
    typer.echo(f"Serving flashmaster API on http://{host}:{port}")
    uvicorn.run(create_app(config), host=host, port=port)
