"""
CLI interface for the knowledge base.

Usage:
    kbase create issues "Login fails" --content "Steps to reproduce..."
    kbase list issues --status Open
    kbase get issues 1
    kbase rebuild
"""

import json
import os
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import KnowledgeBase
from .errors import KBaseError, log_exception
from .logging_config import configure_quiet_mode, enable_debug_mode
from .types import Item, ListItem


# Configure quiet mode by default
# Set KBASE_VERBOSE=1 to enable debug mode via environment
if os.environ.get("KBASE_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    if value is not None:
        _store_override = value


app = typer.Typer(
    name="kbase",
    help="Typed knowledge base: markdown files with a SQLite index.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="KBASE_STORE_PATH",
        help="Path to the store directory (default: ./.kbase)",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Typed knowledge base: markdown files with a SQLite index."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

TagOption = Annotated[
    Optional[list[str]],
    typer.Option("--tag", "-t", help="Tag (repeatable)"),
]

RelatedOption = Annotated[
    Optional[list[str]],
    typer.Option("--related", "-r", help="Related item as type-id (repeatable)"),
]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _get_kb() -> KnowledgeBase:
    """Open the store, handling errors gracefully."""
    import atexit

    try:
        kb = KnowledgeBase(_store_override)
    except (OSError, ValueError, KBaseError) as e:
        log_exception(e, "opening store")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    atexit.register(kb.close)
    return kb


def _fail(e: Exception, context: str) -> None:
    """Report an error and exit 1. Typed errors print their message only."""
    if not isinstance(e, KBaseError):
        log_path = log_exception(e, context)
        typer.echo(f"Error: {e} (details in {log_path})", err=True)
    else:
        typer.echo(f"Error: {e}", err=True)
    raise typer.Exit(1)


def _to_jsonable(value):
    if is_dataclass(value):
        return asdict(value)
    if isinstance(value, dict):
        return {k: _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    return value


def _echo_json(value) -> None:
    typer.echo(json.dumps(_to_jsonable(value), indent=2, ensure_ascii=False, default=str))


def _format_item(item: Item) -> str:
    lines = [f"{item.type}-{item.id}: {item.title}"]
    for label, value in (
        ("description", item.description),
        ("status", item.status),
        ("priority", item.priority),
        ("start_date", item.start_date),
        ("end_date", item.end_date),
        ("tags", ", ".join(item.tags)),
        ("related", ", ".join(item.related)),
        ("created_at", item.created_at),
        ("updated_at", item.updated_at),
    ):
        if value:
            lines.append(f"  {label}: {value}")
    if item.content:
        lines.append("")
        lines.append(item.content)
    return "\n".join(lines)


def _format_row(row: ListItem) -> str:
    parts = [f"{row.type}-{row.id}"]
    if row.date:
        parts.append(row.date)
    if row.status:
        parts.append(f"[{row.status}]")
    parts.append(row.title)
    if row.tags:
        parts.append("#" + " #".join(row.tags))
    return "  ".join(parts)


def _echo_item(item: Item) -> None:
    if _get_json_output():
        _echo_json(item)
    else:
        typer.echo(_format_item(item))


def _echo_rows(rows: list[ListItem], empty: str = "No items.") -> None:
    if _get_json_output():
        _echo_json(rows)
    elif not rows:
        typer.echo(empty)
    else:
        for row in rows:
            typer.echo(_format_row(row))


# -----------------------------------------------------------------------------
# Item commands
# -----------------------------------------------------------------------------

@app.command()
def create(
    type: Annotated[str, typer.Argument(help="Item type (issues, plans, docs, knowledge, sessions, dailies, ...)")],
    title: Annotated[str, typer.Argument(help="Item title")],
    content: Annotated[Optional[str], typer.Option("--content", "-c", help="Body text ('-' reads stdin)")] = None,
    description: Annotated[Optional[str], typer.Option("--description", "-d")] = None,
    priority: Annotated[Optional[str], typer.Option("--priority", "-p", help="high, medium or low")] = None,
    status: Annotated[Optional[str], typer.Option("--status", help="Status name (default: Open)")] = None,
    start_date: Annotated[Optional[str], typer.Option("--start", help="Start date YYYY-MM-DD")] = None,
    end_date: Annotated[Optional[str], typer.Option("--end", help="End date YYYY-MM-DD")] = None,
    date: Annotated[Optional[str], typer.Option("--date", help="Date of a daily summary")] = None,
    id: Annotated[Optional[str], typer.Option("--id", help="Explicit session id")] = None,
    tag: TagOption = None,
    related: RelatedOption = None,
):
    """Create an item."""
    import sys

    if content == "-":
        content = sys.stdin.read()
    fields = {
        "content": content, "description": description, "priority": priority,
        "status": status, "start_date": start_date, "end_date": end_date,
        "tags": tag or [], "related": related or [],
    }
    if date is not None:
        fields["date"] = date
    if id is not None:
        fields["id"] = id
    kb = _get_kb()
    try:
        item = kb.create_item(type, title, **fields)
    except Exception as e:
        _fail(e, "create")
    _echo_item(item)


@app.command()
def get(
    type: Annotated[str, typer.Argument(help="Item type")],
    id: Annotated[str, typer.Argument(help="Item id")],
):
    """Show one item (read from its file)."""
    kb = _get_kb()
    try:
        item = kb.get_item(type, id)
    except Exception as e:
        _fail(e, "get")
    _echo_item(item)


@app.command()
def update(
    type: Annotated[str, typer.Argument(help="Item type")],
    id: Annotated[str, typer.Argument(help="Item id")],
    title: Annotated[Optional[str], typer.Option("--title")] = None,
    content: Annotated[Optional[str], typer.Option("--content", "-c", help="Body text ('-' reads stdin)")] = None,
    description: Annotated[Optional[str], typer.Option("--description", "-d")] = None,
    priority: Annotated[Optional[str], typer.Option("--priority", "-p")] = None,
    status: Annotated[Optional[str], typer.Option("--status")] = None,
    start_date: Annotated[Optional[str], typer.Option("--start")] = None,
    end_date: Annotated[Optional[str], typer.Option("--end")] = None,
    tag: Annotated[Optional[list[str]], typer.Option("--tag", "-t", help="Replace tags (repeatable)")] = None,
    related: Annotated[Optional[list[str]], typer.Option("--related", "-r", help="Replace related items (repeatable)")] = None,
):
    """Update the given fields of an item; everything else is left as is."""
    import sys

    if content == "-":
        content = sys.stdin.read()
    candidates = {
        "title": title, "content": content, "description": description,
        "priority": priority, "status": status, "start_date": start_date,
        "end_date": end_date, "tags": tag, "related": related,
    }
    fields = {k: v for k, v in candidates.items() if v is not None}
    if not fields:
        typer.echo("Error: nothing to update", err=True)
        raise typer.Exit(1)
    kb = _get_kb()
    try:
        item = kb.update_item(type, id, **fields)
    except Exception as e:
        _fail(e, "update")
    _echo_item(item)


@app.command()
def delete(
    type: Annotated[str, typer.Argument(help="Item type")],
    id: Annotated[list[str], typer.Argument(help="Item id(s)")],
):
    """Delete item(s). References from other items are left in place."""
    kb = _get_kb()
    missing = []
    for item_id in id:
        try:
            deleted = kb.delete_item(type, item_id)
        except Exception as e:
            _fail(e, "delete")
        if deleted:
            typer.echo(f"Deleted {type}-{item_id}")
        else:
            missing.append(item_id)
    if missing:
        typer.echo(f"Not found: {', '.join(f'{type}-{i}' for i in missing)}", err=True)
        raise typer.Exit(1)


@app.command("list")
def list_cmd(
    type: Annotated[str, typer.Argument(help="Item type")],
    status: Annotated[Optional[list[str]], typer.Option("--status", help="Only these statuses (repeatable)")] = None,
    include_closed: Annotated[bool, typer.Option("--all", "-a", help="Include closed items")] = False,
    start_date: Annotated[Optional[str], typer.Option("--since", help="From date YYYY-MM-DD")] = None,
    end_date: Annotated[Optional[str], typer.Option("--until", help="Until date YYYY-MM-DD")] = None,
    limit: Annotated[Optional[int], typer.Option("--limit", "-n", help="Maximum results")] = None,
):
    """List items of a type, newest first (from the index)."""
    kb = _get_kb()
    try:
        rows = kb.list_items(
            type, statuses=status or None, include_closed=include_closed,
            start_date=start_date, end_date=end_date, limit=limit,
        )
    except Exception as e:
        _fail(e, "list")
    _echo_rows(rows)


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Search text (matched as a phrase)")],
    type: Annotated[Optional[list[str]], typer.Option("--type", "-T", help="Restrict to type (repeatable)")] = None,
    tag: Annotated[bool, typer.Option("--tag", help="Treat the query as a tag name")] = False,
    limit: Annotated[int, typer.Option("--limit", "-n")] = 20,
    offset: Annotated[int, typer.Option("--offset")] = 0,
):
    """Full-text search over titles, descriptions, content and tags."""
    kb = _get_kb()
    try:
        if tag:
            rows = kb.search_by_tag(query, types=type)
        else:
            rows = kb.search(query, types=type, limit=limit, offset=offset)
    except Exception as e:
        _fail(e, "search")
    _echo_rows(rows, empty="No matches.")


@app.command()
def suggest(
    query: Annotated[str, typer.Argument(help="Partial title")],
    type: Annotated[Optional[list[str]], typer.Option("--type", "-T", help="Restrict to type (repeatable)")] = None,
    limit: Annotated[int, typer.Option("--limit", "-n")] = 10,
):
    """Complete a partial query to item titles."""
    kb = _get_kb()
    try:
        titles = kb.search_suggest(query, types=type, limit=limit)
    except Exception as e:
        _fail(e, "suggest")
    if _get_json_output():
        _echo_json(titles)
    else:
        for title in titles:
            typer.echo(title)


@app.command("latest-session")
def latest_session():
    """Show the most recently started session."""
    kb = _get_kb()
    try:
        item = kb.get_latest_session()
    except Exception as e:
        _fail(e, "latest-session")
    if item is None:
        typer.echo("No sessions.", err=True)
        raise typer.Exit(1)
    _echo_item(item)


@app.command("change-type")
def change_type(
    type: Annotated[str, typer.Argument(help="Current type")],
    id: Annotated[str, typer.Argument(help="Item id")],
    to_type: Annotated[str, typer.Argument(help="New type (same base kind)")],
):
    """Move an item to another type, rewriting references to it."""
    kb = _get_kb()
    try:
        item, rewritten = kb.change_item_type(type, id, to_type)
    except Exception as e:
        _fail(e, "change-type")
    if _get_json_output():
        _echo_json({"item": item, "references_updated": rewritten})
    else:
        typer.echo(f"{type}-{id} -> {item.ref} ({rewritten} reference(s) updated)")


# -----------------------------------------------------------------------------
# Registry commands
# -----------------------------------------------------------------------------

@app.command()
def tags(
    pattern: Annotated[Optional[str], typer.Argument(help="Only tags containing this text")] = None,
):
    """List tags with usage counts."""
    kb = _get_kb()
    found = kb.search_tags(pattern) if pattern else kb.list_tags()
    if _get_json_output():
        _echo_json(found)
        return
    if not found:
        typer.echo("No tags.")
    for t in found:
        typer.echo(f"{t.name}  ({t.usage_count})")


@app.command("tag-delete")
def tag_delete(
    name: Annotated[str, typer.Argument(help="Tag name")],
):
    """Delete a tag that no item uses."""
    kb = _get_kb()
    try:
        deleted = kb.delete_tag(name)
    except Exception as e:
        _fail(e, "tag-delete")
    if not deleted:
        typer.echo(f"Error: tag not found: {name}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Deleted tag {name}")


@app.command()
def types():
    """List item types."""
    kb = _get_kb()
    found = kb.list_types(include_builtin_dates=True)
    if _get_json_output():
        _echo_json(found)
        return
    for t in found:
        line = f"{t.name}  ({t.base_kind.value})"
        if t.description:
            line += f"  {t.description}"
        typer.echo(line)


@app.command("type-add")
def type_add(
    name: Annotated[str, typer.Argument(help="Type name (lowercase, digits, underscores)")],
    base: Annotated[str, typer.Option("--base", "-b", help="tasks or documents")] = "tasks",
    description: Annotated[Optional[str], typer.Option("--description", "-d")] = None,
):
    """Register a custom type."""
    kb = _get_kb()
    try:
        type_def = kb.register_type(name, base, description)
    except Exception as e:
        _fail(e, "type-add")
    typer.echo(f"Registered {type_def.name} ({type_def.base_kind.value})")


@app.command("type-delete")
def type_delete(
    name: Annotated[str, typer.Argument(help="Type name")],
):
    """Delete a custom type with no items."""
    kb = _get_kb()
    try:
        kb.delete_type(name)
    except Exception as e:
        _fail(e, "type-delete")
    typer.echo(f"Deleted type {name}")


@app.command()
def statuses():
    """List statuses."""
    kb = _get_kb()
    found = kb.list_statuses()
    if _get_json_output():
        _echo_json(found)
        return
    for s in found:
        typer.echo(f"{s.id}  {s.name}{'  (closed)' if s.is_closed else ''}")


@app.command("status-add")
def status_add(
    name: Annotated[str, typer.Argument(help="Status name")],
    closed: Annotated[bool, typer.Option("--closed", help="Items in this status count as closed")] = False,
):
    """Add a status."""
    kb = _get_kb()
    try:
        status = kb.create_status(name, closed)
    except Exception as e:
        _fail(e, "status-add")
    typer.echo(f"Added status {status.id} {status.name}")


# -----------------------------------------------------------------------------
# Recovery
# -----------------------------------------------------------------------------

@app.command()
def rebuild(
    type: Annotated[Optional[str], typer.Argument(help="Rebuild one type (default: all)")] = None,
):
    """Rebuild the index from the item files."""
    kb = _get_kb()
    try:
        counts = kb.rebuild(type)
    except Exception as e:
        _fail(e, "rebuild")
    if _get_json_output():
        _echo_json(counts)
        return
    for name, count in counts.items():
        typer.echo(f"{name}: {count}")
    typer.echo(f"Rebuilt {sum(counts.values())} item(s)")


def main():
    app()


if __name__ == "__main__":
    main()
