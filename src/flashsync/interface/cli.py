"""flashsync CLI: review sessions, progress, migration and sync commands."""

import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Annotated, Any

import typer

from flashsync.application.config import AppConfig, resolve_config
from flashsync.domain.errors import FlashsyncError
from flashsync.domain.models import Quality, SessionState

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="flashsync: spaced-repetition reviews with batched progress sync.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(help="Manage flashsync configuration.")
app.add_typer(config_app, name="config")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

RATING_KEYS = {
    "a": Quality.SKIP,
    "h": Quality.HARD,
    "g": Quality.GOOD,
    "e": Quality.EASY,
}


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 0,
    account: Annotated[
        str | None, typer.Option("--account", help="Account id override.")
    ] = None,
):
    """Global settings for flashsync."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["account_id"] = account
    if verbose >= 2:
        logging.getLogger().setLevel(logging.DEBUG)
    elif verbose == 1:
        logging.getLogger().setLevel(logging.INFO)


def _config(ctx: typer.Context, **overrides: Any) -> AppConfig:
    obj = ctx.obj or {}
    overrides.setdefault("account_id", obj.get("account_id"))
    try:
        return resolve_config(overrides)
    except ValueError as e:
        typer.secho(f"Invalid configuration: {e}", fg="red", err=True)
        raise typer.Exit(2) from e


def _run(config: AppConfig, body):
    """Build the review service, run ``body(service)`` and close the store."""
    from flashsync.application.factory import build_review_service

    async def runner():
        service = build_review_service(config)
        try:
            if not await service.initialize():
                error = service.cache.last_error
                typer.secho(
                    f"Could not load profile: {error.message if error else 'unknown error'}",
                    fg="red",
                    err=True,
                )
                raise typer.Exit(1)
            return await body(service)
        finally:
            if service.cache.is_dirty:
                await service.force_sync()
            await service.cache.store.close()

    try:
        return asyncio.run(runner())
    except FlashsyncError as e:
        typer.secho(f"Error [{e.code}]: {e.message}", fg="red", err=True)
        raise typer.Exit(1) from e


def _progress_dict(progress) -> dict[str, Any]:
    return json.loads(json.dumps(asdict(progress), default=str))


# ---------------------------------------------------------------------------
# Review commands
# ---------------------------------------------------------------------------


@app.command()
def due(
    ctx: typer.Context,
    card_set: Annotated[str, typer.Argument(help="Card set id (seed file name without .json).")],
    limit: Annotated[int | None, typer.Option(help="Show at most this many cards.")] = None,
):
    """List cards due for review, most overdue first."""
    config = _config(ctx)

    async def body(service):
        cards = await service.load_card_set(card_set)
        due_cards = service.get_due_cards(cards)
        shown = due_cards[:limit] if limit else due_cards
        typer.echo(f"{len(due_cards)}/{len(cards)} cards due in {card_set}")
        for card in shown:
            next_day = card.recall.next_review_date.date() if card.recall.next_review_date else "-"
            typer.echo(
                f"  {card.id:<16} {card.front.title:<24} "
                f"EF={card.recall.easiness_factor:.2f} due={next_day}"
            )

    _run(config, body)


@app.command()
def review(
    ctx: typer.Context,
    card_set: Annotated[str, typer.Argument(help="Card set id to review.")],
    size: Annotated[
        int | None, typer.Option("--size", "-n", help="Cards per session (10, 20 or 30).")
    ] = None,
):
    """
    Run an interactive review session.

    For each card press Enter to reveal the answer, then rate it:
    [a]gain, [h]ard, [g]ood, [e]asy, or [q]uit to end the session early.
    """
    config = _config(ctx, session_size=size)

    async def body(service):
        cards = await service.load_card_set(card_set)
        queue = service.build_review_queue(cards, config.session_size)
        session = service.start_session(queue)
        if session is None:
            typer.secho("No cards due. Nice work!", fg="green")
            return

        typer.echo(f"Reviewing {session.total_cards} cards from {card_set}\n")
        while service.sessions.state is SessionState.ACTIVE:
            card = service.sessions.current_card
            typer.secho(f"{card.front.icon} {card.front.title}".strip(), bold=True)
            if card.front.description:
                typer.echo(f"  {card.front.description}")
            typer.prompt("(Enter to show answer)", default="", show_default=False)
            service.show_back()
            typer.echo(f"  -> {card.back.title}")
            if card.back.description:
                typer.echo(f"     {card.back.description}")

            choice = ""
            while choice not in RATING_KEYS and choice != "q":
                choice = typer.prompt("Rate [a]gain [h]ard [g]ood [e]asy [q]uit").strip().lower()
            if choice == "q":
                await service.complete_session()
                break
            await service.rate(card.id, RATING_KEYS[choice])
            typer.echo("")

        session = service.session
        typer.echo(
            f"Session complete: {session.reviewed_cards} reviewed "
            f"(easy {session.easy_count}, hard {session.hard_count}, again {session.again_count})"
        )
        result = service.last_save_result
        if result is not None and not result.success:
            step = f" at step {result.failed_step}" if result.failed_step else ""
            typer.secho(f"Progress was not fully saved{step}: {result.error}", fg="red")
            raise typer.Exit(1)
        progress = service.get_card_set_progress(card_set)
        if progress is not None:
            typer.secho(
                f"Progress: {progress.reviewed_cards}/{progress.total_cards} "
                f"({progress.progress_percentage}%), mastered {progress.mastered_cards}",
                fg="green",
            )

    _run(config, body)


@app.command()
def progress(
    ctx: typer.Context,
    card_set: Annotated[str | None, typer.Argument(help="Only this card set.")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show consolidated progress from the account profile."""
    config = _config(ctx)

    async def body(service):
        if card_set:
            entry = service.get_card_set_progress(card_set)
            entries = {card_set: entry} if entry else {}
        else:
            entries = service.get_all_progress()

        if json_output:
            typer.echo(json.dumps({k: _progress_dict(v) for k, v in entries.items()}, indent=2))
            return
        if not entries:
            typer.secho("No progress recorded yet.", fg="yellow")
            return
        for card_set_id, p in sorted(entries.items()):
            typer.echo(
                f"{card_set_id:<24} {p.reviewed_cards:>4}/{p.total_cards:<4} "
                f"{p.progress_percentage:>3}%  mastered {p.mastered_cards}  "
                f"practice {p.need_practice_cards}  today {p.reviewed_today}"
            )

    _run(config, body)


@app.command()
def reset(
    ctx: typer.Context,
    card_set: Annotated[str, typer.Argument(help="Card set to reset.")],
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Bypass confirmation.")
    ] = False,
):
    """Erase all review progress for a card set."""
    if not force and not typer.confirm(f"Reset all progress for {card_set}?"):
        raise typer.Abort()
    config = _config(ctx)

    async def body(service):
        await service.reset_progress(card_set)
        typer.secho(f"Progress for {card_set} reset.", fg="green")

    _run(config, body)


@app.command("import-csv")
def import_csv(
    ctx: typer.Context,
    src: Annotated[Path, typer.Argument(help="CSV file with ID, front/* and back/* columns.")],
    dest: Annotated[
        Path | None,
        typer.Argument(help="Output JSON file. Defaults to <data_dir>/<src name>.json."),
    ] = None,
):
    """Convert a CSV export into a seed card set."""
    from flashsync.infrastructure.seed import convert_csv

    if dest is None:
        dest = _config(ctx).data_dir / f"{src.stem}.json"

    try:
        report = convert_csv(src, dest)
    except FlashsyncError as e:
        typer.secho(f"Error [{e.code}]: {e.message}", fg="red", err=True)
        raise typer.Exit(1) from e

    typer.echo(
        f"Rows: {report.total_rows}, converted: {report.converted}, "
        f"warnings: {len(report.warnings)}, errors: {len(report.errors)}"
    )
    for warning in report.warnings:
        typer.secho(f"  {warning}", fg="yellow")
    for error in report.errors:
        typer.secho(f"  {error}", fg="red")
    if not report.cards:
        typer.secho("No cards were converted.", fg="red")
        raise typer.Exit(1)
    typer.secho(f"Wrote {report.converted} cards to {dest}", fg="green")


# ---------------------------------------------------------------------------
# Sync commands
# ---------------------------------------------------------------------------


@app.command()
def sync(ctx: typer.Context):
    """Flush queued changes to the document store now."""
    config = _config(ctx)

    async def body(service):
        stats = service.get_cache_stats()
        ok = await service.force_sync()
        if not ok:
            error = service.cache.last_error
            typer.secho(f"Sync failed: {error.message if error else 'sync in progress'}", fg="red")
            raise typer.Exit(1)
        typer.secho(f"Synced ({stats.queue_size} queued operations).", fg="green")

    _run(config, body)


@app.command()
def migrate(
    ctx: typer.Context,
    check: Annotated[
        bool, typer.Option("--check", help="Only report whether migration is needed.")
    ] = False,
):
    """Consolidate legacy per-card-set progress documents into the profile."""
    from flashsync.application.factory import get_document_store
    from flashsync.application.migration import MigrationService

    config = _config(ctx)

    async def run():
        store = get_document_store(config)
        try:
            migration = MigrationService(store)
            if check:
                return await migration.needs_migration(config.account_id), None
            return None, await migration.migrate(config.account_id)
        finally:
            await store.close()

    needed, result = asyncio.run(run())
    if check:
        typer.echo(f"Migration needed: {'yes' if needed else 'no'}")
        return

    if result.skipped:
        typer.secho("Already migrated; nothing to do.", fg="green")
        return
    for error in result.errors:
        typer.secho(f"  {error}", fg="yellow")
    if not result.success:
        typer.secho("Migration failed.", fg="red")
        raise typer.Exit(1)
    typer.secho(
        f"Migrated {len(result.migrated_card_sets)} card sets "
        f"({result.total_read_operations} reads, {result.total_write_operations} writes).",
        fg="green",
    )


@app.command()
def serve(
    port: Annotated[int, typer.Option(help="Port to bind the server to.")] = 8777,
    host: Annotated[str, typer.Option(help="Host to bind the server to.")] = "127.0.0.1",
    reload: Annotated[bool, typer.Option(help="Enable auto-reload.")] = False,
):
    """Start the HTTP service."""
    import uvicorn

    uvicorn.run("flashsync.server:app", host=host, port=port, reload=reload)


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show():
    """Display final resolved configuration."""
    config = resolve_config()
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    if d.get("store_token"):
        d["store_token"] = "***"
    typer.echo(json.dumps(d, indent=2))
