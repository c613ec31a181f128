"""MCP server exposing review thread operations as tools.

All tools take JSON arguments and return a single JSON TextContent; failures
are reported as ``{"error": {"code": ..., "message": ...}}``.
"""

import json
from pathlib import Path
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool
from pydantic import BaseModel, Field, ValidationError

from locore.config import get_settings
from locore.controller import CommentThread, bind_thread, change_state
from locore.locking import LockTimeout
from locore.logging import Logger, get_logger, init_logger
from locore.models import Range, ThreadState
from locore.paths import NoWorkspaceError, find_workspace_root, location_key
from locore.service import ReviewService, ReviewWriteError

# ============================================================================
# Error Models
# ============================================================================


class ErrorResponse(BaseModel):
    """Structured error response for MCP tools."""

    code: str = Field(..., description="Error code (THREAD_NOT_FOUND, WRITE_FAILED, etc.)")
    message: str = Field(..., description="Human-readable error message")


# ============================================================================
# Request/Response Models
# ============================================================================


class ReviewAddRequest(BaseModel):
    """Request model for review_add tool."""

    file: str = Field(..., description="Path to source file (relative to workspace or absolute)")
    start_line: int = Field(..., ge=0, description="Start line (0-indexed)")
    start_character: int = Field(default=0, ge=0, description="Start character (0-indexed)")
    end_line: int = Field(..., ge=0, description="End line (0-indexed)")
    end_character: int = Field(default=0, ge=0, description="End character (0-indexed)")
    body: str = Field(..., min_length=1, description="Comment body (markdown)")
    author: str | None = Field(default=None, description="Author name")


class ReviewAddResponse(BaseModel):
    """Response model for review_add tool."""

    thread_id: str = Field(..., description="Thread ID (ULID)")
    is_new_thread: bool = Field(..., description="True if this comment created the thread")
    file: str = Field(..., description="Location key the thread is filed under")
    range: str = Field(..., description="Range (L:C-L:C)")
    seq: int = Field(..., description="Global sequence number of the comment")


class ReviewReplyRequest(BaseModel):
    """Request model for review_reply tool."""

    thread_id: str = Field(..., description="Thread ID (ULID)")
    body: str = Field(..., min_length=1, description="Reply body (markdown)")
    author: str | None = Field(default=None, description="Author name")


class ReviewReplyResponse(BaseModel):
    """Response model for review_reply tool."""

    thread_id: str = Field(..., description="Thread ID")
    comment_id: str = Field(..., description="New comment ID")
    seq: int = Field(..., description="Global sequence number of the comment")


class ReviewSetStateRequest(BaseModel):
    """Request model for review_set_state tool."""

    thread_id: str = Field(..., description="Thread ID (ULID)")
    state: ThreadState = Field(..., description="New state (open/closed)")


class ReviewSetStateResponse(BaseModel):
    """Response model for review_set_state tool."""

    thread_id: str = Field(..., description="Thread ID")
    state: str = Field(..., description="New state")


class ReviewListRequest(BaseModel):
    """Request model for review_list tool."""

    file: str | None = Field(default=None, description="Path to source file (omit for all)")
    state: ThreadState | None = Field(default=None, description="Filter by state")


class ReviewShowRequest(BaseModel):
    """Request model for review_show tool."""

    thread_id: str = Field(..., description="Thread ID (ULID)")


# ============================================================================
# MCP Server
# ============================================================================


mcp = Server("locore")

# One service per workspace root so the write lock covers every tool call
_services: dict[Path, ReviewService] = {}


def _error(code: str, message: str) -> list[TextContent]:
    error = ErrorResponse(code=code, message=message)
    return [TextContent(type="text", text=json.dumps({"error": error.model_dump()}, indent=2))]


def _ok(data: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(data, indent=2, ensure_ascii=False))]


def _logger() -> Logger:
    try:
        return get_logger()
    except RuntimeError:
        return init_logger(use_colors=False)


def _service_for_cwd() -> ReviewService:
    """
    Return the shared service for the workspace containing the working directory.

    Raises:
        NoWorkspaceError: If no workspace is found
    """
    root = find_workspace_root(Path.cwd())
    service = _services.get(root)
    if service is None:
        service = ReviewService(root, settings=get_settings(), logger=_logger())
        _services[root] = service
    return service


def _resolve_file(file: str, workspace_root: Path) -> Path:
    path = Path(file)
    if not path.is_absolute():
        path = workspace_root / path
    return path.resolve()


@mcp.list_tools()
async def list_tools() -> list[Tool]:
    """List all available MCP tools."""
    thread_id_schema = {"type": "string", "description": "Thread ID (ULID)"}
    author_schema = {"type": "string", "description": "Author name (default: current user)"}
    return [
        Tool(
            name="review_add",
            description="Comment on a file range, creating the review thread if needed",
            inputSchema={
                "type": "object",
                "properties": {
                    "file": {"type": "string", "description": "Path to source file"},
                    "start_line": {"type": "integer", "minimum": 0, "description": "Start line (0-indexed)"},
                    "start_character": {"type": "integer", "minimum": 0, "default": 0},
                    "end_line": {"type": "integer", "minimum": 0, "description": "End line (0-indexed)"},
                    "end_character": {"type": "integer", "minimum": 0, "default": 0},
                    "body": {"type": "string", "minLength": 1, "description": "Comment body"},
                    "author": author_schema,
                },
                "required": ["file", "start_line", "end_line", "body"],
            },
        ),
        Tool(
            name="review_reply",
            description="Add a reply to an existing review thread",
            inputSchema={
                "type": "object",
                "properties": {
                    "thread_id": thread_id_schema,
                    "body": {"type": "string", "minLength": 1, "description": "Reply body"},
                    "author": author_schema,
                },
                "required": ["thread_id", "body"],
            },
        ),
        Tool(
            name="review_set_state",
            description="Open or close a review thread",
            inputSchema={
                "type": "object",
                "properties": {
                    "thread_id": thread_id_schema,
                    "state": {"type": "string", "enum": ["open", "closed"]},
                },
                "required": ["thread_id", "state"],
            },
        ),
        Tool(
            name="review_list",
            description="List review threads, optionally filtered by file and state",
            inputSchema={
                "type": "object",
                "properties": {
                    "file": {"type": "string", "description": "Path to source file (omit for all)"},
                    "state": {"type": "string", "enum": ["open", "closed"]},
                },
                "required": [],
            },
        ),
        Tool(
            name="review_show",
            description="Show a review thread with all of its comments",
            inputSchema={
                "type": "object",
                "properties": {"thread_id": thread_id_schema},
                "required": ["thread_id"],
            },
        ),
        Tool(
            name="review_repair",
            description="Recount index statistics from the comment log",
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
    ]


@mcp.call_tool()
async def call_tool(name: str, arguments: Any) -> list[TextContent]:
    """Handle MCP tool calls."""
    handlers = {
        "review_add": handle_review_add,
        "review_reply": handle_review_reply,
        "review_set_state": handle_review_set_state,
        "review_list": handle_review_list,
        "review_show": handle_review_show,
        "review_repair": handle_review_repair,
    }
    handler = handlers.get(name)
    if handler is None:
        return _error("UNKNOWN_TOOL", f"Unknown tool: {name}")
    try:
        return await handler(arguments or {})
    except NoWorkspaceError as e:
        return _error("NO_WORKSPACE", str(e))
    except (ReviewWriteError, LockTimeout) as e:
        return _error("WRITE_FAILED", str(e))
    except Exception as e:
        _logger().exception(f"Tool {name} failed", e)
        return _error("INTERNAL_ERROR", str(e))


async def handle_review_add(arguments: Any) -> list[TextContent]:
    """Handle review_add tool call."""
    try:
        req = ReviewAddRequest(**arguments)
        rng = Range.from_coords(req.start_line, req.start_character, req.end_line, req.end_character)
    except ValidationError as e:
        return _error("VALIDATION_ERROR", f"Invalid input: {e}")

    service = _service_for_cwd()
    path = _resolve_file(req.file, service.workspace_root)
    if not path.is_file():
        return _error("INVALID_PATH", f"Source file not found: {path}")

    thread = CommentThread(uri=path.as_uri(), range=rng)
    result = await service.upsert_comment(thread, req.body, author=req.author)

    response = ReviewAddResponse(
        thread_id=result.thread_id,
        is_new_thread=result.is_new_thread,
        file=service.resolver.location_key(thread),
        range=str(rng),
        seq=result.row.seq,
    )
    return _ok(response.model_dump())


async def handle_review_reply(arguments: Any) -> list[TextContent]:
    """Handle review_reply tool call."""
    try:
        req = ReviewReplyRequest(**arguments)
    except ValidationError as e:
        return _error("VALIDATION_ERROR", f"Invalid input: {e}")

    service = _service_for_cwd()
    restored = await service.get_thread(req.thread_id)
    if restored is None:
        return _error("THREAD_NOT_FOUND", f"Thread {req.thread_id} not found")

    thread = bind_thread(service, restored)
    result = await service.upsert_comment(thread, req.body, author=req.author)

    response = ReviewReplyResponse(
        thread_id=result.thread_id,
        comment_id=result.row.comment_id,
        seq=result.row.seq,
    )
    return _ok(response.model_dump())


async def handle_review_set_state(arguments: Any) -> list[TextContent]:
    """Handle review_set_state tool call."""
    try:
        req = ReviewSetStateRequest(**arguments)
    except ValidationError as e:
        return _error("VALIDATION_ERROR", f"Invalid input: {e}")

    service = _service_for_cwd()
    restored = await service.get_thread(req.thread_id)
    if restored is None:
        return _error("THREAD_NOT_FOUND", f"Thread {req.thread_id} not found")

    thread = bind_thread(service, restored)
    await change_state(service, thread, req.state)

    response = ReviewSetStateResponse(thread_id=req.thread_id, state=req.state.value)
    return _ok(response.model_dump())


async def handle_review_list(arguments: Any) -> list[TextContent]:
    """Handle review_list tool call."""
    try:
        req = ReviewListRequest(**arguments)
    except ValidationError as e:
        return _error("VALIDATION_ERROR", f"Invalid input: {e}")

    service = _service_for_cwd()
    location = None
    if req.file is not None:
        path = _resolve_file(req.file, service.workspace_root)
        location = location_key(path.as_uri(), service.workspace_root)

    threads = await service.list_threads(location=location, state=req.state)
    return _ok({"threads": [restored.to_json_data() for restored in threads]})


async def handle_review_show(arguments: Any) -> list[TextContent]:
    """Handle review_show tool call."""
    try:
        req = ReviewShowRequest(**arguments)
    except ValidationError as e:
        return _error("VALIDATION_ERROR", f"Invalid input: {e}")

    service = _service_for_cwd()
    restored = await service.get_thread(req.thread_id)
    if restored is None:
        return _error("THREAD_NOT_FOUND", f"Thread {req.thread_id} not found")
    return _ok(restored.to_json_data())


async def handle_review_repair(arguments: Any) -> list[TextContent]:
    """Handle review_repair tool call."""
    service = _service_for_cwd()
    report = await service.repair_index()
    return _ok(report.model_dump())


# ============================================================================
# Main Entry Point
# ============================================================================


async def main() -> None:
    """Run the MCP server."""
    init_logger(verbose=get_settings().verbose, use_colors=False)
    async with stdio_server() as (read_stream, write_stream):
        await mcp.run(read_stream, write_stream, mcp.create_initialization_options())


def run_server() -> None:
    """Synchronous entry point for running the server."""
    import asyncio

    asyncio.run(main())


if __name__ == "__main__":
    run_server()
