"""Tests for live thread helpers: submitting, state changes, startup restore."""

from pathlib import Path
from unittest.mock import patch

import pytest

from locore.config import Settings
from locore.controller import (
    COMMENT_CONTEXT,
    CONTEXT_RESOLVED,
    CONTEXT_UNRESOLVED,
    CollapsibleState,
    CommentController,
    CommentThread,
    RenderedComment,
    ThreadDisplayState,
    bind_thread,
    change_state,
    restore_existing_threads,
    submit_comment,
    thread_for_entry,
)
from locore.logging import Logger
from locore.models import CommentLogRow, IndexDocument, Range, ThreadEntry, ThreadState
from locore.service import ReviewService, ReviewWriteError


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    (root / ".git").mkdir(parents=True)
    (root / "notes.md").write_text("# Notes\n\nSome text\n")
    return root.resolve()


@pytest.fixture
def service(workspace: Path) -> ReviewService:
    return ReviewService(
        workspace,
        settings=Settings(),
        logger=Logger(use_colors=False),
        author_provider=lambda: "alice",
    )


def notes_thread(workspace: Path) -> CommentThread:
    return CommentThread(uri=(workspace / "notes.md").as_uri(), range=Range.from_coords(0, 0, 0, 7))


@pytest.mark.asyncio
async def test_submit_comment_updates_thread_after_save(
    service: ReviewService, workspace: Path
) -> None:
    thread = notes_thread(workspace)

    assert await submit_comment(service, thread, "Title case?") == "Review created."
    assert await submit_comment(service, thread, "Agreed") == "Reply added."

    assert [(c.author, c.body) for c in thread.comments] == [("alice", "Title case?"), ("alice", "Agreed")]
    assert all(c.context_value == COMMENT_CONTEXT for c in thread.comments)
    assert thread.context_value == CONTEXT_UNRESOLVED


@pytest.mark.asyncio
async def test_reply_shows_closed_thread_as_unresolved(service: ReviewService, workspace: Path) -> None:
    thread = notes_thread(workspace)
    result = await service.upsert_comment(thread, "first")
    await change_state(service, thread, ThreadState.CLOSED)
    assert thread.state == ThreadDisplayState.RESOLVED

    await submit_comment(service, thread, "one more thing")

    assert thread.state == ThreadDisplayState.UNRESOLVED
    assert thread.context_value == CONTEXT_UNRESOLVED
    # Stored state only changes on an explicit transition
    assert service.index_store.load().threads[result.thread_id].state == ThreadState.CLOSED


@pytest.mark.asyncio
async def test_submit_comment_failure_leaves_thread(service: ReviewService, workspace: Path) -> None:
    thread = notes_thread(workspace)

    with patch.object(service.log_store, "append", side_effect=OSError("disk full")):
        with pytest.raises(ReviewWriteError):
            await submit_comment(service, thread, "lost")

    assert thread.comments == []
    assert thread.context_value is None


@pytest.mark.asyncio
async def test_change_state_messages(service: ReviewService, workspace: Path) -> None:
    thread = notes_thread(workspace)

    assert await change_state(service, thread, ThreadState.CLOSED) == "Thread closed."
    assert thread.context_value == CONTEXT_RESOLVED
    assert await change_state(service, thread, "open") == "Thread reopened."
    assert thread.state == ThreadDisplayState.UNRESOLVED


@pytest.mark.asyncio
async def test_restore_existing_threads(service: ReviewService, workspace: Path) -> None:
    open_thread = notes_thread(workspace)
    await submit_comment(service, open_thread, "one")
    await submit_comment(service, open_thread, "two")
    closed_thread = CommentThread(uri=open_thread.uri, range=Range.from_coords(2, 0, 2, 4))
    await submit_comment(service, closed_thread, "three")
    await change_state(service, closed_thread, ThreadState.CLOSED)

    controller = CommentController()
    restored = await restore_existing_threads(controller, service)

    assert controller.threads == restored
    assert len(restored) == 2
    first, second = restored
    assert [c.body for c in first.comments] == ["one", "two"]
    assert first.collapsible_state == CollapsibleState.COLLAPSED
    assert first.state == ThreadDisplayState.UNRESOLVED
    assert first.context_value == CONTEXT_UNRESOLVED
    assert second.state == ThreadDisplayState.RESOLVED
    assert second.context_value == CONTEXT_RESOLVED


@pytest.mark.asyncio
async def test_restored_threads_keep_identity(service: ReviewService, workspace: Path) -> None:
    await submit_comment(service, notes_thread(workspace), "one")
    (thread,) = await restore_existing_threads(CommentController(), service)

    # Moving the thread in the editor does not lose its identity this session
    thread.range = Range.from_coords(5, 0, 5, 7)
    assert await submit_comment(service, thread, "follow-up") == "Reply added."


@pytest.mark.asyncio
async def test_restore_repairs_index_first(service: ReviewService) -> None:
    index = IndexDocument(last_seq=0)
    index.add_thread(ThreadEntry(thread_id="t1", location="notes.md", range=Range.zero()))
    service.index_store.save(index)
    service.log_store.append(CommentLogRow(thread_id="t1", seq=4, body="logged"))

    (thread,) = await restore_existing_threads(CommentController(), service)

    assert [c.body for c in thread.comments] == ["logged"]
    assert service.index_store.load().last_seq == 4


@pytest.mark.asyncio
async def test_restore_isolates_failing_thread(
    service: ReviewService, workspace: Path, capsys: pytest.CaptureFixture
) -> None:
    await submit_comment(service, notes_thread(workspace), "one")
    await submit_comment(service, CommentThread(uri=notes_thread(workspace).uri, range=Range.zero()), "two")

    controller = CommentController()
    original = controller.create_thread
    calls = {"n": 0}

    def flaky_create(uri, range, comments):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("editor refused")
        return original(uri, range, comments)

    controller.create_thread = flaky_create

    restored = await restore_existing_threads(controller, service)

    assert len(restored) == 1
    assert "editor refused" in capsys.readouterr().err


def test_thread_for_entry(workspace: Path) -> None:
    entry = ThreadEntry(thread_id="t1", location="notes.md", range=Range.from_coords(1, 0, 1, 3))

    thread = thread_for_entry(entry, workspace)

    assert thread.uri == (workspace / "notes.md").as_uri()
    assert thread.range.coords() == (1, 0, 1, 3)


@pytest.mark.asyncio
async def test_bind_thread_targets_its_own_entry(service: ReviewService, workspace: Path) -> None:
    uri = (workspace / "notes.md").as_uri()
    index = IndexDocument()
    index.add_thread(ThreadEntry(thread_id="legacy", location=uri, range=Range.from_coords(0, 0, 0, 5)))
    index.add_thread(ThreadEntry(thread_id="current", location="notes.md", range=Range.from_coords(0, 0, 0, 5)))
    service.index_store.save(index)

    restored = await service.get_thread("legacy")
    thread = bind_thread(service, restored)
    result = await service.upsert_comment(thread, "for legacy")

    assert result.thread_id == "legacy"
    assert service.log_store.read_all()[0].thread_id == "legacy"


def test_rendered_comment_from_row() -> None:
    row = CommentLogRow(thread_id="t1", author="bob", body="**bold**", created_at="2026-01-01T00:00:00Z")
    comment = RenderedComment.from_row(row)
    assert (comment.author, comment.body, comment.timestamp) == ("bob", "**bold**", "2026-01-01T00:00:00Z")

