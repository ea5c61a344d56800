"""CLI commands for memory-vault.

These commands can be called from shell scripts and session hooks. Data goes
to stdout; confirmations, errors and logs go to stderr.
"""

import sys
from datetime import datetime, timezone

import click
from pydantic import BaseModel

from memory_vault.config import get_settings
from memory_vault.helpers import (
    RECALL_TYPES,
    REMEMBER_FIELDS,
    format_context_text,
    format_recall_text,
    format_status_text,
)
from memory_vault.logging import configure_logging
from memory_vault.models import ArchivableKind
from memory_vault.responses import LifecycleResponse
from memory_vault.service import MemoryService
from memory_vault.storage import Storage

KIND_CHOICE = click.Choice([k.value for k in ArchivableKind])


def _open_service() -> tuple[Storage, MemoryService]:
    storage = Storage(get_settings())
    return storage, MemoryService(storage)


def _fail(ctx: click.Context, response: BaseModel) -> None:
    """Report a failed response and exit non-zero."""
    if ctx.obj["json"]:
        click.echo(response.model_dump_json())
    else:
        click.echo(f"Error: {response.message}", err=True)
    raise SystemExit(1)


def _emit(ctx: click.Context, response: BaseModel, text: str | None = None) -> None:
    """Print a response as JSON or text, exiting non-zero if it failed."""
    if not response.success:
        _fail(ctx, response)
    if ctx.obj["json"]:
        click.echo(response.model_dump_json())
    else:
        click.echo(text if text is not None else response.message)


def _lifecycle_text(response: LifecycleResponse) -> str:
    lines = [f"{response.message}:"]
    lines.extend(f"  - {kind}: {affected}" for kind, affected in response.affected.items())
    return "\n".join(lines)


@click.group()
@click.option("--json", "use_json", is_flag=True, help="Output in JSON format")
@click.pass_context
def cli(ctx: click.Context, use_json: bool) -> None:
    """CLI commands for memory-vault."""
    ctx.ensure_object(dict)
    ctx.obj["json"] = use_json
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)


@cli.command("auto-save")
@click.option("-s", "--summary", help="Session summary")
@click.option("-w", "--wip", help="Work in progress description")
@click.option("-n", "--next", "next_steps", help="Next steps")
@click.pass_context
def auto_save(
    ctx: click.Context, summary: str | None, wip: str | None, next_steps: str | None
) -> None:
    """Save a minimal session snapshot (for pre-compaction hooks)."""
    if not summary:
        stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        summary = f"Auto-save before compaction at {stamp}"

    storage, service = _open_service()
    try:
        response = service.session_end(summary, work_in_progress=wip, next_steps=next_steps)
    finally:
        storage.close()

    if not response.success:
        _fail(ctx, response)
    if ctx.obj["json"]:
        click.echo(response.model_dump_json())
    else:
        click.echo(f"Session saved: {summary}", err=True)


@cli.command("load-context")
@click.option(
    "-f",
    "--format",
    "output_format",
    default="text",
    type=click.Choice(["text", "json"]),
    help="Output format",
)
@click.pass_context
def load_context(ctx: click.Context, output_format: str) -> None:
    """Print the last session's context to stdout (for session-start hooks)."""
    storage, service = _open_service()
    try:
        response = service.load_context()
    finally:
        storage.close()

    if not response.success:
        _fail(ctx, response)
    if output_format == "json" or ctx.obj["json"]:
        click.echo(response.model_dump_json(indent=2))
    else:
        click.echo(format_context_text(response))


@cli.command("status")
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show database location, schema version and counts."""
    storage, service = _open_service()
    try:
        response = service.status()
    finally:
        storage.close()

    if not response.success:
        _fail(ctx, response)
    _emit(ctx, response, format_status_text(response))


@cli.command("remember")
@click.argument("kind", type=click.Choice(list(REMEMBER_FIELDS)))
@click.option(
    "-f",
    "--field",
    "field_pairs",
    multiple=True,
    metavar="NAME=VALUE",
    help="Field to store, e.g. -f topic=auth -f decision='Use JWT'",
)
@click.pass_context
def remember(ctx: click.Context, kind: str, field_pairs: tuple[str, ...]) -> None:
    """Remember a decision, preference, discovery, entity or question.

    Examples:

        # Record a decision
        memory-vault remember decision -f topic=auth -f decision="Use JWT"

        # Set a preference
        memory-vault remember preference -f category=style -f key=quotes -f value=double
    """
    fields = {}
    for pair in field_pairs:
        name, sep, value = pair.partition("=")
        if not sep:
            raise click.BadParameter(f"Expected NAME=VALUE, got {pair!r}", param_hint="--field")
        fields[name.strip()] = value

    storage, service = _open_service()
    try:
        response = service.remember(kind, **fields)
    finally:
        storage.close()

    _emit(ctx, response)


@cli.command("recall")
@click.argument("query", required=False)
@click.option(
    "-t",
    "--type",
    "recall_type",
    default="all",
    type=click.Choice(list(RECALL_TYPES)),
    help="What to recall",
)
@click.option("-c", "--category", help="Category filter for preferences and discoveries")
@click.option("--include-archived", is_flag=True, help="Search archived rows too")
@click.pass_context
def recall(
    ctx: click.Context,
    query: str | None,
    recall_type: str,
    category: str | None,
    include_archived: bool,
) -> None:
    """Search memories by keyword, or list them by type."""
    storage, service = _open_service()
    try:
        response = service.recall(
            recall_type, query=query, category=category, include_archived=include_archived
        )
    finally:
        storage.close()

    if not response.success:
        _fail(ctx, response)
    _emit(ctx, response, format_recall_text(response))


@cli.command("resolve")
@click.argument("question_id", type=int)
@click.argument("resolution")
@click.pass_context
def resolve(ctx: click.Context, question_id: int, resolution: str) -> None:
    """Mark an open question as resolved."""
    storage, service = _open_service()
    try:
        response = service.resolve_question(question_id, resolution)
    finally:
        storage.close()

    _emit(ctx, response)


@cli.command("archive")
@click.option("-d", "--days", type=int, help="Archive entries older than N days")
@click.option(
    "-k",
    "--kind",
    "kinds",
    multiple=True,
    type=KIND_CHOICE,
    help="Kinds to operate on (default: all)",
)
@click.option(
    "--id", "ids", multiple=True, type=int, help="Archive specific ids (needs one --kind)"
)
@click.option("--list", "list_only", is_flag=True, help="Show archived entry counts")
@click.option("--restore-all", is_flag=True, help="Restore all archived entries")
@click.option("--restore", is_flag=True, help="Restore the given --id values instead")
@click.pass_context
def archive(
    ctx: click.Context,
    days: int | None,
    kinds: tuple[str, ...],
    ids: tuple[int, ...],
    list_only: bool,
    restore_all: bool,
    restore: bool,
) -> None:
    """Archive (soft-delete) entries, or restore archived ones.

    Examples:

        # Archive everything older than 90 days
        memory-vault archive --days 90

        # Archive two decisions by id, then bring one back
        memory-vault archive --kind decisions --id 3 --id 7
        memory-vault archive --kind decisions --id 3 --restore

        # Show archived counts
        memory-vault archive --list
    """
    kind_list = list(kinds) or None
    id_list = list(ids)

    if not (list_only or restore_all or restore or days is not None or id_list):
        click.echo("Error: Provide --days, --id, --list, --restore or --restore-all", err=True)
        raise SystemExit(1)
    if restore and not id_list:
        click.echo("Error: --restore needs at least one --id", err=True)
        raise SystemExit(1)

    storage, service = _open_service()
    try:
        if list_only:
            response = service.status()
        elif restore_all:
            response = service.restore(kinds=kind_list)
        elif restore:
            response = service.restore(kinds=kind_list, ids=id_list)
        else:
            response = service.archive(days=days, kinds=kind_list, ids=id_list)
    finally:
        storage.close()

    if not response.success:
        _fail(ctx, response)
    if list_only:
        archived = {kind: s.archived for kind, s in response.kinds.items()}
        if ctx.obj["json"]:
            listing = LifecycleResponse(message="Archived entries", affected=archived)
            click.echo(listing.model_dump_json())
        else:
            click.echo("Archived Entries")
            click.echo("================")
            for kind, count in archived.items():
                click.echo(f"  {kind + ':':<16}{count}")
        return
    _emit(ctx, response, _lifecycle_text(response))


@cli.command("prune")
@click.option("-d", "--days", type=int, help="Delete entries older than N days")
@click.option(
    "-k",
    "--kind",
    "kinds",
    multiple=True,
    type=KIND_CHOICE,
    help="Kinds to operate on (default: all)",
)
@click.option("--archived-only", is_flag=True, help="Only delete archived entries")
@click.option("--purge-archived", is_flag=True, help="Delete all archived entries")
@click.option("-y", "--yes", is_flag=True, help="Confirm destructive operation (required)")
@click.pass_context
def prune(
    ctx: click.Context,
    days: int | None,
    kinds: tuple[str, ...],
    archived_only: bool,
    purge_archived: bool,
    yes: bool,
) -> None:
    """Permanently delete old or archived entries."""
    if not yes:
        click.echo("Error: Add --yes to confirm. This permanently deletes data.", err=True)
        raise SystemExit(1)
    if days is None and not purge_archived:
        click.echo("Error: Provide --days or --purge-archived", err=True)
        raise SystemExit(1)

    storage, service = _open_service()
    try:
        response = service.prune(
            days=days,
            kinds=list(kinds) or None,
            archived_only=archived_only,
            purge_archived=purge_archived,
        )
    finally:
        storage.close()

    if not response.success:
        _fail(ctx, response)
    _emit(ctx, response, _lifecycle_text(response))


def main() -> int:
    """Main CLI entry point."""
    try:
        cli(standalone_mode=False)
        return 0
    except click.ClickException as e:
        e.show()
        return 1
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 1
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 1


if __name__ == "__main__":
    sys.exit(main())
