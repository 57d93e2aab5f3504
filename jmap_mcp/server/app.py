"""MCP server exposing the read-only mail tools over stdio."""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from mcp import types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from jmap_mcp.config import Settings
from jmap_mcp.jmap.client import JMAPError
from jmap_mcp.jmap.types import DEFAULT_SEARCH_LIMIT, SearchCriteria
from jmap_mcp.mail.tools import DEFAULT_LATEST_LIMIT, MailTools, ToolResult, open_mail_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "Generic JMAP MCP"
SERVER_VERSION = "0.1.0"


class ToolCallError(Exception):
    """Raised inside the MCP handler so the SDK returns an ``isError`` result."""


# ── Tool definitions ───────────────────────────────────────────────────────────

_STRING = {"type": "string"}

TOOLS: list[types.Tool] = [
    types.Tool(
        name="get_mailboxes",
        description="List every mailbox (folder) in the account as JSON.",
        inputSchema={"type": "object", "properties": {}},
    ),
    types.Tool(
        name="search_emails",
        description=(
            "Search a mailbox, collapsing results by thread. `limit` caps the "
            "number of threads; every message of each matching thread is returned."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "mailboxId": {**_STRING, "description": "Mailbox to search in."},
                "limit": {"type": "integer", "default": DEFAULT_SEARCH_LIMIT},
                "excludeMailboxIds": {"type": "array", "items": _STRING},
                "receivedBefore": {**_STRING, "description": "UTC date-time, exclusive."},
                "receivedAfter": {**_STRING, "description": "UTC date-time, inclusive."},
                "hasKeyword": {**_STRING, "description": "e.g. $seen, $flagged"},
                "notKeyword": _STRING,
                "hasAttachment": {"type": "boolean"},
                "searchText": {**_STRING, "description": "Match anywhere in the message."},
                "searchFrom": _STRING,
                "searchTo": _STRING,
                "searchCc": _STRING,
                "searchBcc": _STRING,
                "searchSubject": _STRING,
                "searchBody": _STRING,
            },
            "required": ["mailboxId"],
        },
    ),
    types.Tool(
        name="fetch_latest_emails",
        description="Newest messages in a mailbox, one entry per message.",
        inputSchema={
            "type": "object",
            "properties": {
                "mailboxId": _STRING,
                "limit": {"type": "integer", "default": DEFAULT_LATEST_LIMIT},
            },
            "required": ["mailboxId"],
        },
    ),
    types.Tool(
        name="get_email_content",
        description="Headers and body text of a single email.",
        inputSchema={
            "type": "object",
            "properties": {"emailId": _STRING},
            "required": ["emailId"],
        },
    ),
]


# ── Dispatch ───────────────────────────────────────────────────────────────────

_Handler = Callable[[MailTools, dict[str, Any]], Awaitable[ToolResult]]


def _require(arguments: dict[str, Any], key: str) -> str:
    value = arguments.get(key)
    if not value:
        raise ValueError(f"{key} is required")
    return str(value)


def _limit(arguments: dict[str, Any], default: int) -> int:
    value = arguments.get("limit")
    return default if value is None else int(value)


_HANDLERS: dict[str, _Handler] = {
    "get_mailboxes": lambda tools, args: tools.get_mailboxes(),
    "search_emails": lambda tools, args: tools.search_emails(
        SearchCriteria.from_arguments(args)
    ),
    "fetch_latest_emails": lambda tools, args: tools.fetch_latest_emails(
        _require(args, "mailboxId"), _limit(args, DEFAULT_LATEST_LIMIT)
    ),
    "get_email_content": lambda tools, args: tools.get_email_content(
        _require(args, "emailId")
    ),
}


async def dispatch_tool(tools: MailTools, name: str, arguments: dict[str, Any]) -> ToolResult:
    """Run tool ``name``; every failure comes back as an error ToolResult."""
    handler = _HANDLERS.get(name)
    if handler is None:
        return ToolResult.error(f"Error: unknown tool {name!r}")
    try:
        return await handler(tools, arguments)
    except ValueError as exc:
        return ToolResult.error(f"Error: invalid arguments for {name}: {exc}")
    except JMAPError as exc:
        logger.error("Tool %s failed: %s", name, exc)
        return ToolResult.error(f"Error: {exc}")


def build_server(tools: MailTools) -> Server:
    """Register the tool list and call handler on a low-level MCP server."""
    server: Server = Server(SERVER_NAME, version=SERVER_VERSION)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[types.TextContent]:
        result = await dispatch_tool(tools, name, arguments or {})
        if result.is_error:
            raise ToolCallError(result.text)
        return [types.TextContent(type="text", text=result.text)]

    return server


async def serve(settings: Settings) -> None:
    """Resolve the account, then serve tool calls on stdin/stdout until EOF."""
    async with open_mail_tools(settings) as tools:
        server = build_server(tools)
        async with stdio_server() as (read_stream, write_stream):
            logger.info("%s %s ready on stdio", SERVER_NAME, SERVER_VERSION)
            await server.run(read_stream, write_stream, server.create_initialization_options())
