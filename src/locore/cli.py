"""CLI entry point for the local code review store."""

import asyncio
import json
import re
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, NoReturn, TypeVar

import click

from locore import __version__
from locore.config import get_settings
from locore.controller import CommentThread, bind_thread, change_state
from locore.locking import LockTimeout
from locore.logging import get_logger, init_logger
from locore.models import Range, ThreadState
from locore.paths import NoWorkspaceError, find_workspace_root, location_key
from locore.service import RestoredThread, ReviewService, ReviewWriteError

T = TypeVar("T")

_RANGE_PATTERN = re.compile(r"^\s*(\d+):(\d+)\s*-\s*(\d+):(\d+)\s*$")


def parse_range(value: str) -> Range:
    """
    Parse a zero-based range in START_LINE:START_CHAR-END_LINE:END_CHAR form.

    Raises:
        ValueError: If the text is malformed or start is after end
    """
    match = _RANGE_PATTERN.match(value)
    if match is None:
        raise ValueError(
            f"Invalid range: {value}\nExpected format: START_LINE:START_CHAR-END_LINE:END_CHAR (e.g., 3:0-3:12)"
        )
    return Range.from_coords(*(int(group) for group in match.groups()))


def _fail(message: str, code: int, suggestion: str | None = None) -> NoReturn:
    get_logger().error(message, suggestion=suggestion)
    sys.exit(code)


def _service(ctx: click.Context) -> ReviewService:
    """Build the review service for the selected workspace, or exit if there is none."""
    root = ctx.obj["root"]
    try:
        workspace_root = root.resolve() if root is not None else find_workspace_root()
    except NoWorkspaceError as e:
        _fail(str(e), 2, suggestion="Run inside a git checkout or pass --root")
    return ReviewService(workspace_root, settings=ctx.obj["settings"], logger=get_logger())


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a service coroutine, turning store failures into an error exit."""
    try:
        return asyncio.run(coro)
    except (ReviewWriteError, LockTimeout) as e:
        _fail(str(e), 2)


def _find_thread(service: ReviewService, thread_id: str) -> RestoredThread:
    restored = _run(service.get_thread(thread_id))
    if restored is None:
        _fail(f"Thread not found: {thread_id}", 1, suggestion="Run 'locore list' to see thread IDs")
    return restored


def _live_thread(service: ReviewService, restored: RestoredThread) -> CommentThread:
    try:
        return bind_thread(service, restored)
    except ValueError as e:
        _fail(str(e), 1)


def _format_thread_line(restored: RestoredThread) -> str:
    entry = restored.entry
    count = entry.comment_count
    return (
        f"{restored.thread_id}  {entry.location}:{entry.range}  [{entry.state.value}]  "
        f"{count} comment{'' if count == 1 else 's'}"
    )


@click.group()
@click.version_option(version=__version__, prog_name="locore")
@click.option(
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    help="Workspace root (defaults to the nearest parent containing .git)",
)
@click.option("-v", "--verbose", is_flag=True, help="Print debug output")
@click.pass_context
def cli(ctx: click.Context, root: Path | None, verbose: bool):
    """Review comment threads anchored to ranges in your workspace files."""
    ctx.ensure_object(dict)
    ctx.obj["root"] = root
    settings = get_settings()
    if verbose:
        settings.verbose = True
    ctx.obj["settings"] = settings
    init_logger(verbose=settings.verbose)


@cli.command()
@click.pass_context
def init(ctx: click.Context):
    """Create the review store and repair its index against the log."""
    service = _service(ctx)
    report = _run(service.initialize())
    click.echo(f"Review store ready: {service.review_dir}")
    click.echo(f"  Threads: {report.threads_checked}")
    click.echo(f"  Last seq: {report.last_seq_after}")


@cli.command()
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "-r",
    "--range",
    "range_text",
    required=True,
    metavar="L:C-L:C",
    help="Zero-based range to anchor the thread (e.g., -r 3:0-3:12)",
)
@click.option("-a", "--author", default=None, help="Author name (defaults to the current user)")
@click.argument("body", required=True)
@click.pass_context
def add(ctx: click.Context, file_path: Path, range_text: str, author: str | None, body: str):
    """
    Comment on a range, creating the thread if the range has none yet.

    Examples:

        locore add src/main.py -r 41:0-44:0 "Fix this function"

        locore add README.md -r 0:0-0:8 --author=alice "Title is wrong"
    """
    try:
        rng = parse_range(range_text)
    except ValueError as e:
        _fail(str(e), 1)

    service = _service(ctx)
    thread = CommentThread(uri=file_path.resolve().as_uri(), range=rng)
    result = _run(service.upsert_comment(thread, body, author=author))

    if result.is_new_thread:
        click.echo(f"Created thread {result.thread_id}")
    else:
        click.echo(f"Added comment to existing thread {result.thread_id}")
    click.echo(f"  File: {service.resolver.location_key(thread)}")
    click.echo(f"  Range: {rng}")
    click.echo(f"  Seq: {result.row.seq}")


@cli.command()
@click.argument("thread_id", required=True)
@click.option("-a", "--author", default=None, help="Author name (defaults to the current user)")
@click.argument("body", required=True)
@click.pass_context
def reply(ctx: click.Context, thread_id: str, author: str | None, body: str):
    """
    Add a comment to an existing thread.

    Example:

        locore reply 01HQABCDEFGHIJKLMNOPQRSTUV "Fixed in the next commit"
    """
    service = _service(ctx)
    thread = _live_thread(service, _find_thread(service, thread_id))
    result = _run(service.upsert_comment(thread, body, author=author))
    click.echo(f"Added comment {result.row.comment_id} to thread {result.thread_id}")


def _set_state(ctx: click.Context, thread_id: str, state: ThreadState) -> None:
    service = _service(ctx)
    thread = _live_thread(service, _find_thread(service, thread_id))
    message = _run(change_state(service, thread, state))
    click.echo(f"{message} ({thread_id})")


@cli.command()
@click.argument("thread_id", required=True)
@click.pass_context
def close(ctx: click.Context, thread_id: str):
    """Mark a thread as closed (resolved)."""
    _set_state(ctx, thread_id, ThreadState.CLOSED)


@cli.command()
@click.argument("thread_id", required=True)
@click.pass_context
def reopen(ctx: click.Context, thread_id: str):
    """Mark a closed thread as open again."""
    _set_state(ctx, thread_id, ThreadState.OPEN)


@cli.command(name="list")
@click.argument("file_path", type=click.Path(path_type=Path), required=False)
@click.option(
    "--state",
    type=click.Choice(["open", "closed"], case_sensitive=False),
    help="Filter by thread state",
)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def list_threads(ctx: click.Context, file_path: Path | None, state: str | None, json_output: bool):
    """List review threads, optionally for one file."""
    service = _service(ctx)
    location = None
    if file_path is not None:
        location = location_key(file_path.resolve().as_uri(), service.workspace_root)

    threads = _run(service.list_threads(location=location, state=state.lower() if state else None))

    if json_output:
        click.echo(json.dumps([t.to_json_data() for t in threads], indent=2, ensure_ascii=False))
        return

    if not threads:
        click.echo("No threads found.")
        return
    for restored in threads:
        click.echo(_format_thread_line(restored))


@cli.command()
@click.argument("thread_id", required=True)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def show(ctx: click.Context, thread_id: str, json_output: bool):
    """Show a thread and all of its comments."""
    service = _service(ctx)
    restored = _find_thread(service, thread_id)

    if json_output:
        click.echo(json.dumps(restored.to_json_data(), indent=2, ensure_ascii=False))
        return

    entry = restored.entry
    click.echo(f"Thread {restored.thread_id}")
    click.echo(f"  File: {entry.location}")
    click.echo(f"  Range: {entry.range}")
    click.echo(f"  State: {entry.state.value}")
    click.echo(f"  Created: {entry.created_at}")
    click.echo(f"  Updated: {entry.updated_at}")
    for row in restored.comments:
        click.echo("")
        click.echo(f"  #{row.seq} {row.author} ({row.created_at})")
        for line in row.body.splitlines() or [""]:
            click.echo(f"    {line}")


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def repair(ctx: click.Context, json_output: bool):
    """Recount index statistics from the comment log."""
    service = _service(ctx)
    report = _run(service.repair_index())

    if json_output:
        click.echo(json.dumps(report.model_dump(), indent=2))
        return

    click.echo(f"Threads checked: {report.threads_checked}")
    click.echo(f"Threads repaired: {report.threads_repaired}")
    click.echo(f"Orphaned log rows: {report.orphaned_rows}")
    click.echo(f"Duplicate seqs: {report.duplicate_seqs}")
    click.echo(f"Last seq: {report.last_seq_before} -> {report.last_seq_after}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
