"""In-memory comment threads as the UI layer sees them.

The review service never draws anything; it only needs live thread handles
exposing a URI, a range, and a few display fields. ``CommentThread`` and
``CommentController`` are the concrete handles used by the CLI, the MCP
server, and tests. An editor integration can supply its own objects as long
as they satisfy ``LiveThread``.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from locore.models import CommentLogRow, Range, ThreadEntry, ThreadState
from locore.paths import parse_stored_location

if TYPE_CHECKING:
    from locore.service import RestoredThread, ReviewService

CONTEXT_RESOLVED = "locore:resolved"
CONTEXT_UNRESOLVED = "locore:unresolved"
COMMENT_CONTEXT = "locore"


class ThreadDisplayState(str, Enum):
    """Resolved indicator shown on a thread."""

    UNRESOLVED = "unresolved"
    RESOLVED = "resolved"


class CollapsibleState(str, Enum):
    COLLAPSED = "collapsed"
    EXPANDED = "expanded"


@dataclass
class RenderedComment:
    """A comment as displayed in a thread (markdown body)."""

    author: str
    body: str
    timestamp: str
    context_value: str = COMMENT_CONTEXT

    @classmethod
    def from_row(cls, row: CommentLogRow) -> "RenderedComment":
        return cls(author=row.author, body=row.body, timestamp=row.created_at)


class LiveThread(Protocol):
    uri: str
    range: Any
    comments: list[RenderedComment]
    state: ThreadDisplayState
    collapsible_state: CollapsibleState
    context_value: str | None


@dataclass(eq=False)
class CommentThread:
    """A live thread handle. Hashed by identity, so it can key the resolver cache."""

    uri: str
    range: Range | None = None
    comments: list[RenderedComment] = field(default_factory=list)
    state: ThreadDisplayState = ThreadDisplayState.UNRESOLVED
    collapsible_state: CollapsibleState = CollapsibleState.EXPANDED
    context_value: str | None = None


class CommentController:
    """Creates and tracks the live threads of one review session."""

    def __init__(self) -> None:
        self.threads: list[CommentThread] = []

    def create_thread(
        self, uri: str, range: Range | None, comments: list[RenderedComment]
    ) -> CommentThread:
        thread = CommentThread(uri=uri, range=range, comments=list(comments))
        self.threads.append(thread)
        return thread


def sync_display_state(thread: LiveThread, state: ThreadState) -> None:
    """Mirror a persisted state onto the thread's resolved flag and context tag."""
    if state == ThreadState.CLOSED:
        thread.state = ThreadDisplayState.RESOLVED
        thread.context_value = CONTEXT_RESOLVED
    else:
        thread.state = ThreadDisplayState.UNRESOLVED
        thread.context_value = CONTEXT_UNRESOLVED


def thread_for_entry(entry: ThreadEntry, workspace_root: Path) -> CommentThread:
    """
    Build a live handle for an indexed thread.

    Raises:
        ValueError: If the stored location cannot be turned into a URI
    """
    return CommentThread(
        uri=parse_stored_location(entry.location, workspace_root),
        range=entry.range,
    )


def bind_thread(service: "ReviewService", restored: "RestoredThread") -> CommentThread:
    """
    Build a live handle for a persisted thread, already bound to its id.

    Writes through the handle go to restored.thread_id even when another
    entry is filed with the same location and range.

    Raises:
        ValueError: If the stored location cannot be turned into a URI
    """
    thread = thread_for_entry(restored.entry, service.workspace_root)
    service.resolver.remember(thread, restored.thread_id)
    return thread


async def submit_comment(service: "ReviewService", thread: LiveThread, text: str) -> str:
    """
    Persist a comment, then show it on the thread.

    The thread is only touched after the store accepted the comment. It is
    shown as unresolved; a closed thread keeps its stored state until an
    explicit state change.

    Returns:
        Notification text for the user
    """
    result = await service.upsert_comment(thread, text)
    thread.comments = [*thread.comments, RenderedComment.from_row(result.row)]
    sync_display_state(thread, ThreadState.OPEN)
    return "Review created." if result.is_new_thread else "Reply added."


async def change_state(
    service: "ReviewService", thread: LiveThread, state: ThreadState | str
) -> str:
    state = ThreadState(state)
    await service.set_state(thread, state)
    return "Thread closed." if state == ThreadState.CLOSED else "Thread reopened."


async def restore_existing_threads(
    controller: CommentController, service: "ReviewService"
) -> list[CommentThread]:
    """
    Recreate every persisted thread in the controller at startup.

    Restored threads start collapsed with their stored state. A thread that
    fails to restore is logged and skipped; the rest still load.

    Returns:
        The live threads that were created
    """
    await service.initialize()

    threads: list[CommentThread] = []
    for restored in await service.restore_all():
        try:
            thread = controller.create_thread(
                restored.uri,
                restored.entry.range,
                [RenderedComment.from_row(row) for row in restored.comments],
            )
            thread.collapsible_state = CollapsibleState.COLLAPSED
            sync_display_state(thread, restored.entry.state)
        except Exception as e:
            service.logger.warning(f"Failed to restore thread {restored.thread_id}: {e}")
            continue
        service.resolver.remember(thread, restored.thread_id)
        threads.append(thread)
    return threads
