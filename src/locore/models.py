"""Data models for the review index, the comment log, and thread anchors."""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictStr,
    model_validator,
)
from pydantic.alias_generators import to_camel
from ulid import new as new_ulid

INDEX_SCHEMA_VERSION = 1


def utc_now() -> str:
    """Current time as an ISO 8601 UTC timestamp (e.g., 2026-02-01T10:00:00Z)."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_id() -> str:
    """Generate an opaque, sortable identifier (26-character ULID)."""
    return str(new_ulid())


class _CamelModel(BaseModel):
    """Base for models stored with camelCase keys (threadId, lastSeq, ...)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ThreadState(str, Enum):
    """Thread lifecycle state."""

    OPEN = "open"
    CLOSED = "closed"


class Position(_CamelModel):
    """Zero-based line/character position in a text file."""

    line: int = Field(..., ge=0)
    character: int = Field(..., ge=0)

    def as_tuple(self) -> tuple[int, int]:
        return (self.line, self.character)


class Range(_CamelModel):
    """A start/end position pair; end is exclusive per editor convention."""

    start: Position
    end: Position

    @model_validator(mode="after")
    def validate_order(self) -> "Range":
        """Validate that start <= end (line first, then character)."""
        if self.start.as_tuple() > self.end.as_tuple():
            raise ValueError(
                f"Range start {self.start.line}:{self.start.character} is after "
                f"end {self.end.line}:{self.end.character}"
            )
        return self

    @classmethod
    def from_coords(
        cls, start_line: int, start_character: int, end_line: int, end_character: int
    ) -> "Range":
        return cls(
            start=Position(line=start_line, character=start_character),
            end=Position(line=end_line, character=end_character),
        )

    @classmethod
    def zero(cls) -> "Range":
        """Range used for live threads that carry no range."""
        return cls.from_coords(0, 0, 0, 0)

    def coords(self) -> tuple[int, int, int, int]:
        return (self.start.line, self.start.character, self.end.line, self.end.character)

    def __str__(self) -> str:
        return f"{self.start.line}:{self.start.character}-{self.end.line}:{self.end.character}"


class Anchors(_CamelModel):
    """Surrounding text snippets kept for future re-anchoring (not consumed)."""

    before: list[str] | None = None
    after: list[str] | None = None


class ThreadEntry(_CamelModel):
    """Index record for one logical review thread.

    ``location`` is written under the ``uri`` key, which is what existing
    review directories use; ``location`` is accepted as well when reading.
    """

    thread_id: str = Field(..., min_length=1)
    location: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("uri", "location"),
        serialization_alias="uri",
    )
    range: Range
    state: ThreadState = ThreadState.OPEN
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)
    comment_count: int = Field(default=0, ge=0)
    summary: str | None = None
    first_seq: int | None = None
    last_seq: int | None = None
    anchors: Anchors | None = Field(default_factory=Anchors)

    def record_comment(self, seq: int, timestamp: str) -> None:
        """Roll a newly appended comment into this entry's statistics."""
        self.comment_count += 1
        self.updated_at = timestamp
        if self.first_seq is None:
            self.first_seq = seq
        self.last_seq = seq


class IndexDocument(_CamelModel):
    """Root structure of index.json (schema version 1)."""

    version: Literal[1] = INDEX_SCHEMA_VERSION
    last_seq: int = Field(default=0, ge=0)
    threads: dict[str, ThreadEntry] = Field(default_factory=dict)
    by_uri: dict[str, list[str]] = Field(default_factory=dict)

    def add_thread(self, entry: ThreadEntry) -> None:
        """Insert a thread and file it under its location key."""
        self.threads[entry.thread_id] = entry
        self.file_under(entry.location, entry.thread_id)

    def file_under(self, key: str, thread_id: str) -> None:
        ids = self.by_uri.setdefault(key, [])
        if thread_id not in ids:
            ids.append(thread_id)

    def unfile(self, key: str, thread_id: str) -> None:
        """Remove a thread id from a location bucket, dropping empty buckets."""
        ids = self.by_uri.get(key)
        if ids is None:
            return
        remaining = [tid for tid in ids if tid != thread_id]
        if remaining:
            self.by_uri[key] = remaining
        else:
            del self.by_uri[key]

    def to_json_data(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CommentLogRow(_CamelModel):
    """One line of review.jsonl.

    Only ``threadId`` is required; rows from older writers missing other
    fields are still accepted. Unknown keys are ignored.
    """

    thread_id: StrictStr
    comment_id: str = ""
    seq: int = 0
    created_at: str = ""
    author: str = "unknown"
    body: str = ""

    def to_json_data(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class RepairReport(BaseModel):
    """Summary of an index repair pass against the comment log."""

    threads_checked: int = Field(..., ge=0, description="Threads present in the index")
    threads_repaired: int = Field(..., ge=0, description="Threads whose counters changed")
    orphaned_rows: int = Field(..., ge=0, description="Log rows whose thread is not indexed")
    duplicate_seqs: int = Field(..., ge=0, description="Sequence numbers logged more than once")
    last_seq_before: int = Field(..., ge=0)
    last_seq_after: int = Field(..., ge=0)

    @property
    def changed(self) -> bool:
        return self.threads_repaired > 0 or self.last_seq_after != self.last_seq_before


def coerce_range(value) -> Range:
    """
    Convert an editor range into a Range.

    Accepts a Range, None (treated as 0:0-0:0), or any object exposing
    ``start.line``, ``start.character``, ``end.line`` and ``end.character``.
    """
    if value is None:
        return Range.zero()
    if isinstance(value, Range):
        return value
    return Range.from_coords(
        value.start.line, value.start.character, value.end.line, value.end.character
    )
