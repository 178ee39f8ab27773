"""
CLI interface for the recipe store.

Usage:
    kitchen create "Deploy to Fly" --id deploy-fly --file deploy.md
    kitchen save deploy-fly --file deploy.md
    kitchen search "deployment"
    kitchen queue --errors
"""

import json
import os
import sys
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import Kitchen
from .errors import KitchenError, NoChangeError, NotFoundError
from .logging_config import configure_quiet_mode, enable_debug_mode
from .types import QueueItem, Recipe, RecipeVersion

# SDK chatter stays hidden unless --verbose
# Set KITCHEN_VERBOSE=1 to enable debug mode via environment
if os.environ.get("KITCHEN_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"kitchen {version('neural-kitchen')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Set by the eager global-option callbacks below
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="kitchen",
    help="Versioned recipes with AI summaries and hybrid search.",
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
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="KITCHEN_STORE_PATH",
        help="Path to the store directory (default: ~/.kitchen/)",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Versioned recipes with AI summaries and hybrid search."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

StoreOption = Annotated[
    Optional[Path],
    typer.Option(
        "--store", "-s",
        help="Path to the store directory (default: ~/.kitchen/)"
    )
]

LimitOption = Annotated[
    int,
    typer.Option(
        "--limit", "-n",
        help="Maximum results to return"
    )
]

ContentOption = Annotated[
    Optional[str],
    typer.Option(
        "--content", "-c",
        help="Recipe content (markdown)"
    )
]

FileOption = Annotated[
    Optional[Path],
    typer.Option(
        "--file", "-f",
        help="Read content from a file ('-' for stdin)"
    )
]

ProjectOption = Annotated[
    Optional[list[str]],
    typer.Option(
        "--project", "-p",
        help="Project short id (repeatable)"
    )
]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _get_kitchen(store: Optional[Path]) -> Kitchen:
    """Open the store, handling errors gracefully."""
    import atexit

    actual_store = store if store is not None else _get_store_override()
    try:
        kitchen = Kitchen(actual_store)
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    atexit.register(kitchen.close)
    return kitchen


@contextmanager
def _cli_errors():
    """Turn store errors into a one-line message and exit status."""
    try:
        yield
    except NoChangeError as e:
        # Not a failure: nothing to save
        typer.echo(str(e), err=True)
        raise typer.Exit(0)
    except KitchenError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _read_content(content: Optional[str], file: Optional[Path]) -> str:
    if content is not None and file is not None:
        typer.echo("Error: use either --content or --file, not both", err=True)
        raise typer.Exit(1)
    if content is not None:
        return content
    if file is None:
        typer.echo("Error: content required (--content or --file)", err=True)
        raise typer.Exit(1)
    if str(file) == "-":
        return sys.stdin.read()
    try:
        return file.expanduser().read_text(encoding="utf-8")
    except OSError as e:
        typer.echo(f"Error: cannot read {file}: {e}", err=True)
        raise typer.Exit(1)


def _resolve_projects(kitchen: Kitchen, short_ids: Optional[list[str]]) -> Optional[list[str]]:
    """Map project short ids to row ids."""
    if not short_ids:
        return None
    by_short_id = {p.short_id.casefold(): p.id for p in kitchen.list_projects()}
    ids = []
    for short_id in short_ids:
        if short_id.casefold() not in by_short_id:
            raise NotFoundError(f"Project not found: {short_id}")
        ids.append(by_short_id[short_id.casefold()])
    return ids


def _resolve_tags(kitchen: Kitchen, names: Optional[list[str]]) -> Optional[list[str]]:
    """Map tag names to row ids, creating tags that don't exist yet."""
    if not names:
        return None
    by_name = {t.name.casefold(): t.id for t in kitchen.list_tags()}
    ids = []
    for name in names:
        tag_id = by_name.get(name.strip().casefold())
        if tag_id is None:
            tag_id = kitchen.create_tag(name).id
            by_name[name.strip().casefold()] = tag_id
        ids.append(tag_id)
    return ids


def _echo_json(data) -> None:
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _version_dict(version: RecipeVersion, with_content: bool = True) -> dict:
    data = asdict(version)
    if not with_content:
        data.pop("content")
    return data


def _recipe_dict(recipe: Recipe) -> dict:
    data = asdict(recipe)
    data["current_version"] = (
        _version_dict(recipe.current_version) if recipe.current_version else None
    )
    return data


def _queue_line(item: QueueItem) -> str:
    line = f"  {item.id}  {item.shortid:<24} {item.status:<10} {item.created_at[:19]}"
    if item.error:
        line += f"\n      {item.error}"
    return line


def _print_version_saved(recipe_short_id: str, version: RecipeVersion) -> None:
    if _get_json_output():
        _echo_json(_version_dict(version, with_content=False))
    else:
        typer.echo(f"Saved {recipe_short_id} {version.version_id}")


# -----------------------------------------------------------------------------
# Recipe commands
# -----------------------------------------------------------------------------

@app.command()
def create(
    title: Annotated[str, typer.Argument(help="Recipe title")],
    short_id: Annotated[str, typer.Option(
        "--id", "-i",
        help="Short id (letters, numbers, hyphens, underscores)"
    )],
    content: ContentOption = None,
    file: FileOption = None,
    tag: Annotated[Optional[list[str]], typer.Option(
        "--tag", "-t",
        help="Tag name (repeatable, created if missing)"
    )] = None,
    project: ProjectOption = None,
    store: StoreOption = None,
):
    """
    Create a recipe (version 1) and queue it for enrichment.

    \b
    Examples:
        kitchen create "Deploy to Fly" --id deploy-fly --file deploy.md
        cat notes.md | kitchen create "Notes" --id notes --file -
    """
    text = _read_content(content, file)
    kitchen = _get_kitchen(store)
    with _cli_errors():
        recipe = kitchen.create_recipe(
            title, short_id, text,
            tag_ids=_resolve_tags(kitchen, tag),
            project_ids=_resolve_projects(kitchen, project),
        )
    if _get_json_output():
        _echo_json(_recipe_dict(recipe))
    else:
        typer.echo(f"Created {recipe.short_id} v1")


@app.command()
def save(
    id: Annotated[str, typer.Argument(help="Recipe short id or id")],
    content: ContentOption = None,
    file: FileOption = None,
    title: Annotated[Optional[str], typer.Option(
        "--title",
        help="New title (default: keep current)"
    )] = None,
    store: StoreOption = None,
):
    """Save new content as the next version."""
    text = _read_content(content, file)
    kitchen = _get_kitchen(store)
    with _cli_errors():
        version = kitchen.save_recipe(id, text, title=title)
        recipe = kitchen.get_recipe(version.recipe_id)
    _print_version_saved(recipe.short_id if recipe else id, version)


@app.command()
def revert(
    id: Annotated[str, typer.Argument(help="Recipe short id or id")],
    version: Annotated[int, typer.Argument(help="Version number to restore (e.g. 2 for v2)")],
    store: StoreOption = None,
):
    """Restore an earlier version's content as a new version."""
    kitchen = _get_kitchen(store)
    with _cli_errors():
        new_version = kitchen.revert_recipe(id, version)
        recipe = kitchen.get_recipe(new_version.recipe_id)
    _print_version_saved(recipe.short_id if recipe else id, new_version)


@app.command()
def get(
    id: Annotated[str, typer.Argument(help="Recipe short id or id")],
    version: Annotated[Optional[int], typer.Option(
        "--version", "-V",
        help="Get a specific version number"
    )] = None,
    summary: Annotated[bool, typer.Option(
        "--summary", "-S",
        help="Show the AI summary instead of the content"
    )] = False,
    store: StoreOption = None,
):
    """Print a recipe (current version unless --version is given)."""
    kitchen = _get_kitchen(store)
    with _cli_errors():
        if version is not None:
            shown = kitchen.get_version(id, version)
        else:
            recipe = kitchen.get_recipe(id)
            if recipe is None or recipe.current_version is None:
                raise NotFoundError(f"Recipe not found: {id}")
            shown = recipe.current_version

    if _get_json_output():
        _echo_json(_version_dict(shown))
    elif summary:
        typer.echo(shown.ai_summary or "(no summary yet)")
    else:
        typer.echo(f"# {shown.title}\n\n{shown.content}")


@app.command("list")
def list_cmd(
    store: StoreOption = None,
):
    """List recipes by title."""
    kitchen = _get_kitchen(store)
    recipes = kitchen.list_recipes()
    if _get_json_output():
        _echo_json([_recipe_dict(r) for r in recipes])
        return
    if not recipes:
        typer.echo("No recipes.")
        return
    width = max(len(r.short_id) for r in recipes)
    for r in recipes:
        label = r.current_version.version_id if r.current_version else "-"
        typer.echo(f"{r.short_id:<{width}}  {label:<4}  {r.title}")


@app.command()
def history(
    id: Annotated[str, typer.Argument(help="Recipe short id or id")],
    store: StoreOption = None,
):
    """List versions, newest first."""
    kitchen = _get_kitchen(store)
    with _cli_errors():
        versions = kitchen.get_history(id)
    if _get_json_output():
        _echo_json([_version_dict(v, with_content=False) for v in versions])
        return
    for v in versions:
        marker = "*" if v.is_current else " "
        summarized = "" if v.ai_summary else "  (not summarized)"
        typer.echo(f"{marker} {v.version_id:<5} {v.created_at[:19]}  {v.title}{summarized}")


@app.command()
def rename(
    id: Annotated[str, typer.Argument(help="Recipe short id or id")],
    title: Annotated[Optional[str], typer.Option("--title", help="New title")] = None,
    new_id: Annotated[Optional[str], typer.Option("--id", "-i", help="New short id")] = None,
    store: StoreOption = None,
):
    """Change a recipe's title or short id (no new version)."""
    if title is None and new_id is None:
        typer.echo("Error: nothing to change (use --title and/or --id)", err=True)
        raise typer.Exit(1)
    kitchen = _get_kitchen(store)
    with _cli_errors():
        recipe = kitchen.rename_recipe(id, title=title, short_id=new_id)
    if _get_json_output():
        _echo_json(_recipe_dict(recipe))
    else:
        typer.echo(f"Renamed to {recipe.short_id}: {recipe.title}")


@app.command()
def delete(
    id: Annotated[str, typer.Argument(help="Recipe short id or id")],
    store: StoreOption = None,
):
    """Soft-delete a recipe and all its versions."""
    kitchen = _get_kitchen(store)
    with _cli_errors():
        recipe = kitchen.delete_recipe(id)
    typer.echo(f"Deleted {recipe.short_id}. Restore with: kitchen restore {recipe.id}")


@app.command()
def restore(
    id: Annotated[str, typer.Argument(help="Recipe id (as printed by delete)")],
    store: StoreOption = None,
):
    """Restore a soft-deleted recipe."""
    kitchen = _get_kitchen(store)
    with _cli_errors():
        recipe = kitchen.restore_recipe(id)
    typer.echo(f"Restored {recipe.short_id}")


# -----------------------------------------------------------------------------
# Search
# -----------------------------------------------------------------------------

@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Search text")],
    text: Annotated[bool, typer.Option(
        "--text", "-T",
        help="Text search only (skip embeddings)"
    )] = False,
    project: ProjectOption = None,
    limit: LimitOption = 10,
    store: StoreOption = None,
):
    """
    Search recipes (vector search, falling back to text search).

    \b
    Examples:
        kitchen search "deploy a python app"
        kitchen search docker --text
        kitchen search auth -p backend -p infra
    """
    kitchen = _get_kitchen(store)
    with _cli_errors():
        results = kitchen.search(query, limit=limit, project_ids=project, text_only=text)

    if _get_json_output():
        _echo_json([asdict(r) for r in results])
        return
    if not results:
        typer.echo(f"No recipes found for query: {query}")
        return
    for i, r in enumerate(results, 1):
        typer.echo(f"{i}. {r.title} [{r.short_id}] ({r.source} {r.similarity:.2f})")
        if r.summary:
            first = r.summary.strip().splitlines()[0]
            typer.echo(f"   {first[:200]}")


# -----------------------------------------------------------------------------
# Queue and processing
# -----------------------------------------------------------------------------

@app.command()
def queue(
    errors: Annotated[bool, typer.Option(
        "--errors", "-e",
        help="List recent failures"
    )] = False,
    retry: Annotated[Optional[str], typer.Option(
        "--retry",
        help="Send one failed item back to pending"
    )] = None,
    retry_all: Annotated[bool, typer.Option(
        "--retry-all",
        help="Send all failed items back to pending"
    )] = False,
    remove: Annotated[Optional[str], typer.Option(
        "--remove",
        help="Drop one item from the queue"
    )] = None,
    cleanup: Annotated[bool, typer.Option(
        "--cleanup",
        help="Remove finished items older than the retention window"
    )] = False,
    limit: LimitOption = 10,
    store: StoreOption = None,
):
    """Show enrichment queue status, failures and retries."""
    kitchen = _get_kitchen(store)

    with _cli_errors():
        if retry:
            item = kitchen.retry(retry)
            typer.echo(f"Requeued {item.shortid} ({item.id})")
            return
        if retry_all:
            n = kitchen.retry_all()
            typer.echo(f"Requeued {n} failed items." if n else "No failed items to retry.")
            return
        if remove:
            kitchen.remove_queue_item(remove)
            typer.echo(f"Removed {remove} from the queue.")
            return
        if cleanup:
            n = kitchen.cleanup_queue()
            typer.echo(f"Removed {n} finished items.")
            return

    if errors:
        items = kitchen.recent_errors(limit)
        if _get_json_output():
            _echo_json([asdict(i) for i in items])
        elif not items:
            typer.echo("No failed items.")
        else:
            for item in items:
                typer.echo(_queue_line(item))
        return

    stats = kitchen.queue_stats()
    if _get_json_output():
        _echo_json(stats)
        return
    typer.echo(
        f"{stats['pending']} pending, {stats['processing']} processing, "
        f"{stats['completed']} completed, {stats['failed']} failed"
    )
    for item in kitchen.pending(limit):
        typer.echo(_queue_line(item))
    if stats["failed"]:
        typer.echo("Use --errors to see failures, --retry-all to requeue them.")


@app.command()
def process(
    once: Annotated[bool, typer.Option(
        "--once",
        help="Drain the queue and exit"
    )] = False,
    limit: Annotated[Optional[int], typer.Option(
        "--limit", "-n",
        help="Maximum items to process with --once"
    )] = None,
    store: StoreOption = None,
):
    """
    Run the enrichment processor.

    Without --once, runs until Ctrl-C or SIGTERM.
    """
    import signal
    import threading

    kitchen = _get_kitchen(store)

    if once:
        result = kitchen.process_pending(limit)
        if _get_json_output():
            _echo_json(result)
        else:
            typer.echo(f"Processed {result['processed']}, failed {result['failed']}.")
            for error in result["errors"]:
                typer.echo(f"  {error}", err=True)
        if result["failed"]:
            raise typer.Exit(1)
        return

    if not kitchen.start_processor():
        typer.echo(
            "Error: no embedding/summarization provider configured. "
            "Set OPENAI_API_KEY or edit kitchen.toml.",
            err=True,
        )
        raise typer.Exit(1)

    stopping = threading.Event()

    def handle_signal(signum, frame):
        stopping.set()

    signal.signal(signal.SIGTERM, handle_signal)
    typer.echo("Processing enrichment queue (Ctrl-C to stop)...", err=True)
    try:
        while not stopping.wait(1.0):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        kitchen.stop_processor()
        typer.echo("Stopped.", err=True)


# -----------------------------------------------------------------------------
# Projects
# -----------------------------------------------------------------------------

project_app = typer.Typer(
    name="project",
    help="Create and list projects (used to filter search).",
    no_args_is_help=True,
)
app.add_typer(project_app)


@project_app.command("add")
def project_add(
    short_id: Annotated[str, typer.Argument(help="Project short id")],
    title: Annotated[str, typer.Argument(help="Project title")],
    description: Annotated[Optional[str], typer.Option(
        "--description", "-d",
        help="Optional description"
    )] = None,
    store: StoreOption = None,
):
    """Create a project."""
    kitchen = _get_kitchen(store)
    with _cli_errors():
        project = kitchen.create_project(short_id, title, description)
    typer.echo(f"Created project {project.short_id}")


@project_app.command("list")
def project_list(
    store: StoreOption = None,
):
    """List projects."""
    kitchen = _get_kitchen(store)
    projects = kitchen.list_projects()
    if _get_json_output():
        _echo_json([asdict(p) for p in projects])
        return
    for p in projects:
        typer.echo(f"{p.short_id}  {p.title}")


@app.command()
def mcp(
    store: StoreOption = None,
):
    """Start MCP stdio server for AI agent integration."""
    if store is not None:
        os.environ["KITCHEN_STORE_PATH"] = str(store)
    elif _get_store_override() is not None:
        os.environ["KITCHEN_STORE_PATH"] = str(_get_store_override())
    from .mcp import main as mcp_main
    mcp_main()


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        raise SystemExit(130)
    except Exception as e:
        # Traceback to the error log, one line to the terminal
        from .errors import log_exception
        log_path = log_exception(e, context="kitchen CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
