"""Review service: reconciles live comment threads with the index and the log.

Write path (``upsert_comment``, ``set_state``): resolve or mint the thread's
identity, append to the log, then rewrite the index. The log is always
written before the index, so a crash in between leaves the log ahead of the
index; ``repair_index`` recounts from the log on the next start.

Read path (``restore_all``): group log rows by thread, order them by seq,
and pair them with their index entries.
"""

import getpass
from collections import Counter, defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from locore.config import Settings, get_settings
from locore.controller import sync_display_state
from locore.locking import ReviewLock
from locore.logging import Logger
from locore.models import (
    CommentLogRow,
    IndexDocument,
    RepairReport,
    ThreadEntry,
    ThreadState,
    coerce_range,
    new_id,
    utc_now,
)
from locore.paths import NoWorkspaceError, parse_stored_location
from locore.resolver import ThreadIdentityResolver
from locore.storage import IndexStore, LogStore

if TYPE_CHECKING:
    from locore.controller import LiveThread


class ReviewWriteError(Exception):
    """Raised when persisting a review change fails. Chained to the OSError."""

    pass


@dataclass
class UpsertResult:
    thread_id: str
    is_new_thread: bool
    row: CommentLogRow


@dataclass
class RestoredThread:
    """A persisted thread with its comments in seq order."""

    thread_id: str
    entry: ThreadEntry
    comments: list[CommentLogRow]
    uri: str

    def to_json_data(self) -> dict:
        return {
            "thread": self.entry.model_dump(mode="json", by_alias=True, exclude_none=True),
            "comments": [row.to_json_data() for row in self.comments],
        }


def current_user(settings: Settings) -> str:
    """Author name for new comments: configured override, else the OS user."""
    if settings.author:
        return settings.author
    try:
        return getpass.getuser() or "unknown"
    except (KeyError, OSError):
        return "unknown"


def group_rows(rows: list[CommentLogRow]) -> dict[str, list[CommentLogRow]]:
    """Group log rows by thread id, each group sorted by seq (file order breaks ties)."""
    by_thread: dict[str, list[CommentLogRow]] = defaultdict(list)
    for row in rows:
        by_thread[row.thread_id].append(row)
    for group in by_thread.values():
        group.sort(key=lambda r: r.seq)
    return dict(by_thread)


class ReviewService:
    """Persistence engine for one workspace's review directory.

    Construct one per workspace and share it: the write lock that keeps
    sequence numbers unique lives on the instance.
    """

    def __init__(
        self,
        workspace_root: Path | None,
        *,
        settings: Settings | None = None,
        resolver: ThreadIdentityResolver | None = None,
        logger: Logger | None = None,
        author_provider: Callable[[], str] | None = None,
        clock: Callable[[], str] | None = None,
    ) -> None:
        if workspace_root is None:
            raise NoWorkspaceError("No workspace is open.")

        settings = settings or get_settings()
        self.settings = settings
        self.workspace_root = workspace_root
        self.review_dir = settings.review_dir(workspace_root)
        self.logger = logger or Logger(verbose=settings.verbose)
        self.index_store = IndexStore(self.review_dir / settings.index_filename, self.logger)
        self.log_store = LogStore(self.review_dir / settings.log_filename)
        self.resolver = resolver or ThreadIdentityResolver(workspace_root)
        self.lock = ReviewLock(self.review_dir, timeout=settings.lock_timeout)
        self._author_provider = author_provider or (lambda: current_user(settings))
        self._clock = clock or utc_now

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def ensure_stores(self) -> None:
        """Create index.json and review.jsonl if missing. Failures are only warned about."""
        try:
            self.index_store.ensure_exists()
        except OSError as e:
            self.logger.warning(f"Failed to initialize {self.index_store.path}: {e}")
        try:
            self.log_store.ensure_exists()
        except OSError as e:
            self.logger.warning(f"Failed to initialize {self.log_store.path}: {e}")

    async def initialize(self) -> RepairReport:
        """Startup hook: create the stores and bring index counters in line with the log."""
        self.ensure_stores()
        return await self.repair_index()

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def resolve_identity(self, thread: "LiveThread") -> str | None:
        """Return the thread id for a live thread, or None if it was never persisted."""
        return self.resolver.resolve(thread, self.index_store.load())

    def _resolve_or_mint(
        self, thread: "LiveThread", index: IndexDocument, now: str
    ) -> tuple[str, bool]:
        key = self.resolver.location_key(thread)
        thread_id = self.resolver.resolve(thread, index)

        if thread_id is None:
            entry = ThreadEntry(
                thread_id=new_id(),
                location=key,
                range=coerce_range(thread.range),
                state=ThreadState.OPEN,
                created_at=now,
                updated_at=now,
                comment_count=0,
            )
            index.add_thread(entry)
            return entry.thread_id, True

        # Entries written by older versions are filed under the full URI
        entry = index.threads[thread_id]
        if entry.location != key:
            index.unfile(entry.location, thread_id)
            entry.location = key
            index.file_under(key, thread_id)
        return thread_id, False

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def upsert_comment(
        self, thread: "LiveThread", text: str, author: str | None = None
    ) -> UpsertResult:
        """
        Record a comment on a live thread, creating the thread on first use.

        Args:
            thread: Live thread handle (uri + range)
            text: Comment body (markdown)
            author: Author name (defaults to the current user)

        Returns:
            UpsertResult with the thread id, whether the thread is new, and
            the appended log row

        Raises:
            ReviewWriteError: If reading or writing the store fails
            LockTimeout: If another write holds the review lock too long
        """
        async with self.lock.hold():
            self.ensure_stores()
            try:
                index = self.index_store.load()
                now = self._clock()
                thread_id, is_new = self._resolve_or_mint(thread, index, now)

                next_seq = index.last_seq + 1
                row = CommentLogRow(
                    thread_id=thread_id,
                    comment_id=new_id(),
                    seq=next_seq,
                    created_at=now,
                    author=author or self._author_provider(),
                    body=text,
                )
                self.log_store.append(row)

                index.threads[thread_id].record_comment(next_seq, now)
                index.last_seq = next_seq
                self.index_store.save(index)
            except OSError as e:
                raise ReviewWriteError(f"Failed to save comment: {e}") from e

        self.resolver.remember(thread, thread_id)
        self.logger.debug("Comment saved", thread_id=thread_id, seq=next_seq, new_thread=is_new)
        return UpsertResult(thread_id=thread_id, is_new_thread=is_new, row=row)

    async def set_state(self, thread: "LiveThread", state: ThreadState | str) -> str:
        """
        Open or close a thread. No log row is written; state lives in the index.

        A thread without identity gets one here, with no comments.

        Returns:
            The thread id

        Raises:
            ReviewWriteError: If reading or writing the store fails
            LockTimeout: If another write holds the review lock too long
        """
        state = ThreadState(state)
        async with self.lock.hold():
            self.ensure_stores()
            try:
                index = self.index_store.load()
                now = self._clock()
                thread_id, _ = self._resolve_or_mint(thread, index, now)

                entry = index.threads[thread_id]
                entry.state = state
                entry.updated_at = now
                self.index_store.save(index)
            except OSError as e:
                raise ReviewWriteError(f"Failed to save thread state: {e}") from e

        self.resolver.remember(thread, thread_id)
        sync_display_state(thread, state)
        self.logger.debug("Thread state saved", thread_id=thread_id, state=state.value)
        return thread_id

    async def repair_index(self) -> RepairReport:
        """
        Recompute index counters from the log.

        For every indexed thread, ``commentCount``/``firstSeq``/``lastSeq``
        are recounted from its log rows, ``byUri`` is refiled from the
        entries' locations, and the global ``lastSeq`` is raised to the
        highest logged seq so the next comment cannot reuse a number. The
        index is only written when something changed.

        Raises:
            ReviewWriteError: If reading or writing the store fails
        """
        async with self.lock.hold():
            try:
                index = self.index_store.load()
                rows = self.log_store.read_all()
                by_thread = group_rows(rows)

                repaired = 0
                for thread_id, entry in index.threads.items():
                    thread_rows = by_thread.get(thread_id, [])
                    if thread_rows:
                        expected = (len(thread_rows), thread_rows[0].seq, thread_rows[-1].seq)
                    else:
                        expected = (0, None, None)
                    if (entry.comment_count, entry.first_seq, entry.last_seq) != expected:
                        entry.comment_count, entry.first_seq, entry.last_seq = expected
                        repaired += 1

                buckets_changed = _refile(index)

                seq_counts = Counter(row.seq for row in rows)
                last_seq_before = index.last_seq
                index.last_seq = max([last_seq_before, *seq_counts])

                report = RepairReport(
                    threads_checked=len(index.threads),
                    threads_repaired=repaired,
                    orphaned_rows=sum(
                        len(group) for tid, group in by_thread.items() if tid not in index.threads
                    ),
                    duplicate_seqs=sum(1 for count in seq_counts.values() if count > 1),
                    last_seq_before=last_seq_before,
                    last_seq_after=index.last_seq,
                )
                if report.changed or buckets_changed:
                    self.index_store.save(index)
            except OSError as e:
                raise ReviewWriteError(f"Failed to repair review index: {e}") from e

        if report.changed:
            self.logger.info(
                f"Repaired review index: {report.threads_repaired} thread(s), "
                f"lastSeq {report.last_seq_before} -> {report.last_seq_after}"
            )
        if report.orphaned_rows:
            self.logger.warning(
                f"{report.orphaned_rows} logged comment(s) belong to threads missing from the index"
            )
        if report.duplicate_seqs:
            self.logger.warning(f"{report.duplicate_seqs} sequence number(s) appear more than once in the log")
        return report

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def restore_all(self) -> list[RestoredThread]:
        """
        Load every indexed thread with its comments ordered by seq.

        Threads without comments are included with an empty list. A thread
        whose stored location cannot be turned into a URI is logged and
        skipped.
        """
        index = self.index_store.load()
        by_thread = group_rows(self.log_store.read_all())

        restored: list[RestoredThread] = []
        for thread_id, entry in index.threads.items():
            try:
                uri = parse_stored_location(entry.location, self.workspace_root)
            except ValueError as e:
                self.logger.warning(f"Failed to restore thread {thread_id}: {e}")
                continue
            restored.append(
                RestoredThread(
                    thread_id=thread_id,
                    entry=entry,
                    comments=by_thread.get(thread_id, []),
                    uri=uri,
                )
            )
        return restored

    async def get_thread(self, thread_id: str) -> RestoredThread | None:
        for restored in await self.restore_all():
            if restored.thread_id == thread_id:
                return restored
        return None

    async def list_threads(
        self, location: str | None = None, state: ThreadState | str | None = None
    ) -> list[RestoredThread]:
        """Restored threads, optionally filtered by location key and state."""
        wanted_state = ThreadState(state) if state is not None else None
        return [
            restored
            for restored in await self.restore_all()
            if (location is None or restored.entry.location == location)
            and (wanted_state is None or restored.entry.state == wanted_state)
        ]


def _refile(index: IndexDocument) -> bool:
    """Rebuild byUri from the entries' locations. Returns True if it changed."""
    refiled: dict[str, list[str]] = {}
    for key, ids in index.by_uri.items():
        for thread_id in ids:
            entry = index.threads.get(thread_id)
            if entry is not None and entry.location == key and thread_id not in refiled.get(key, []):
                refiled.setdefault(key, []).append(thread_id)
    for thread_id, entry in index.threads.items():
        ids = refiled.setdefault(entry.location, [])
        if thread_id not in ids:
            ids.append(thread_id)

    if refiled == index.by_uri:
        return False
    index.by_uri = refiled
    return True
