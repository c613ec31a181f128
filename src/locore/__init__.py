"""Local code review: comment threads anchored to text ranges, stored beside the workspace.

This package contains:
- ReviewService, the engine reconciling live threads with index.json and review.jsonl
- Models for the index document and the comment log
- A click CLI (``locore``) and an MCP tool server (``locore-mcp``)
"""

__version__ = "0.1.0"

from .models import CommentLogRow, IndexDocument, Range, ThreadEntry, ThreadState
from .service import ReviewService, ReviewWriteError

__all__ = [
    "CommentLogRow",
    "IndexDocument",
    "Range",
    "ReviewService",
    "ReviewWriteError",
    "ThreadEntry",
    "ThreadState",
]
