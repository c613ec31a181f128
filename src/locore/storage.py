"""Review store I/O: the mutable index.json and the append-only review.jsonl."""

import json
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from locore.logging import Logger
from locore.models import INDEX_SCHEMA_VERSION, CommentLogRow, IndexDocument, ThreadEntry


def atomic_write_text(content: str, target_path: Path) -> None:
    """Write text to target_path atomically.

    Uses temp file + rename in the target's directory so that readers see
    either the old file or the new one, never a partial write.

    Raises:
        OSError: If write or rename fails
    """
    dir_path = target_path.parent
    dir_path.mkdir(parents=True, exist_ok=True)

    fd, temp_name = tempfile.mkstemp(dir=dir_path, prefix=".tmp_", suffix=target_path.suffix)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(temp_name, 0o644)
        Path(temp_name).replace(target_path)
    except BaseException:
        try:
            os.unlink(temp_name)
        except OSError:
            pass  # Already renamed or never created
        raise


def _has_known_version(data) -> bool:
    if not isinstance(data, dict):
        return False
    version = data.get("version")
    return type(version) is int and version == INDEX_SCHEMA_VERSION


class IndexStore:
    """Reads and writes index.json.

    Loading is self-healing. A file that is missing, unparsable, not a JSON
    object, or without a recognized version reads as an empty index. A
    versioned document is kept: invalid thread entries are dropped one by
    one with a warning and the remaining threads survive.
    """

    def __init__(self, path: Path, logger: Logger | None = None) -> None:
        self.path = path
        self.logger = logger or Logger()

    def load(self) -> IndexDocument:
        """
        Read the persisted index.

        Returns:
            The stored document (minus any invalid thread entries), or a
            fresh default document if the file is missing, unreadable, not a
            JSON object, or lacks a recognized version
        """
        try:
            data = self._read_json()
        except (OSError, ValueError) as e:
            self.logger.debug("Index unreadable, using empty index", path=str(self.path), error=str(e))
            return IndexDocument()

        if not _has_known_version(data):
            self.logger.debug("Index has no recognized version, using empty index", path=str(self.path))
            return IndexDocument()

        return self._salvage(data)

    def _salvage(self, data: dict) -> IndexDocument:
        """Build a document from a versioned object, keeping every valid part."""
        threads: dict[str, ThreadEntry] = {}
        raw_threads = data.get("threads")
        if not isinstance(raw_threads, dict):
            if raw_threads is not None:
                self.logger.warning(f"Ignoring malformed threads table in {self.path}")
            raw_threads = {}
        for thread_id, raw in raw_threads.items():
            try:
                threads[thread_id] = ThreadEntry.model_validate(raw)
            except ValidationError as e:
                self.logger.warning(
                    f"Dropping invalid thread {thread_id} from {self.path} "
                    f"({e.error_count()} validation error(s))"
                )

        by_uri: dict[str, list[str]] = {}
        raw_by_uri = data.get("byUri")
        if isinstance(raw_by_uri, dict):
            for key, ids in raw_by_uri.items():
                if not isinstance(ids, list):
                    continue
                kept = [tid for tid in ids if isinstance(tid, str) and tid in threads]
                if kept:
                    by_uri[key] = kept

        last_seq = data.get("lastSeq", 0)
        if type(last_seq) is not int or last_seq < 0:
            # Never hand out a seq an indexed thread already used
            last_seq = max((entry.last_seq or 0 for entry in threads.values()), default=0)
            self.logger.warning(f"Invalid lastSeq in {self.path}, using {last_seq}")

        return IndexDocument(last_seq=last_seq, threads=threads, by_uri=by_uri)

    def save(self, doc: IndexDocument) -> None:
        """
        Write the full document (2-space indent, trailing newline).

        Raises:
            OSError: If the write fails
        """
        json_str = json.dumps(doc.to_json_data(), indent=2, ensure_ascii=False) + "\n"
        atomic_write_text(json_str, self.path)

    def ensure_exists(self) -> None:
        """
        Write an empty index if the file is missing or unusable.

        Unusable means unparsable, not a JSON object, or without a recognized
        version. A versioned document with some invalid entries is left as is.
        """
        if self.path.exists():
            if self._is_usable():
                return
            self.logger.warning(f"Replacing unreadable review index {self.path}")
        self.save(IndexDocument())

    def _read_json(self):
        with open(self.path, encoding="utf-8") as f:
            return json.load(f)

    def _is_usable(self) -> bool:
        try:
            data = self._read_json()
        except (OSError, ValueError):
            return False
        return _has_known_version(data)


class LogStore:
    """Append-only JSON Lines log of every comment ever written."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def append(self, row: CommentLogRow) -> None:
        """
        Append one row as a single line.

        If the file ends in a truncated line (no trailing newline), a newline
        is written first so the new row is not glued onto the broken one.

        Raises:
            OSError: If the write fails
        """
        line = json.dumps(row.to_json_data(), ensure_ascii=False) + "\n"
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a+b") as f:
            if f.seek(0, os.SEEK_END) > 0:
                f.seek(-1, os.SEEK_END)
                if f.read(1) != b"\n":
                    line = "\n" + line
            f.write(line.encode("utf-8"))

    def read_all(self) -> list[CommentLogRow]:
        """
        Read every parseable row in file order.

        Lines that are not JSON objects with a string ``threadId`` are
        skipped; a missing file reads as empty.

        Raises:
            OSError: If the file exists but cannot be read
        """
        try:
            with open(self.path, encoding="utf-8", errors="replace") as f:
                text = f.read()
        except FileNotFoundError:
            return []

        rows: list[CommentLogRow] = []
        # str.splitlines() would also break on U+2028 inside comment bodies
        for raw in text.split("\n"):
            line = raw.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
                if isinstance(obj, dict):
                    rows.append(CommentLogRow.model_validate(obj))
            except ValueError:
                # Broken line (e.g. truncated by an interrupted write)
                continue
        return rows

    def ensure_exists(self) -> None:
        """Create the log file if needed without touching existing content."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch(exist_ok=True)
