"""CLI entry point: run the MCP server or inspect the mailbox directly."""

import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import anyio
import click
from dotenv import load_dotenv
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from jmap_mcp.config import Settings
from jmap_mcp.jmap.client import JMAPError
from jmap_mcp.jmap.types import DEFAULT_SEARCH_LIMIT, EmailSummary, SearchCriteria
from jmap_mcp.mail.formatter import format_email
from jmap_mcp.mail.tools import ToolResult, open_mail_tools
from jmap_mcp.server.app import serve as serve_stdio

logger = logging.getLogger(__name__)
console = Console(width=200)

T = TypeVar("T")


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Read-only JMAP mail access: MCP server plus inspection commands."""
    load_dotenv()
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        stream=sys.stderr,  # stdout carries the MCP stream under `serve`
    )
    ctx.obj = settings


@cli.command()
@click.pass_obj
def serve(settings: Settings) -> None:
    """Serve the mail tools over stdio."""
    try:
        anyio.run(serve_stdio, settings)
    except KeyboardInterrupt:
        logger.info("Interrupted — goodbye")


@cli.command()
@click.pass_obj
def mailboxes(settings: Settings) -> None:
    """List the account's mailboxes."""

    async def _run() -> dict[str, Any]:
        async with open_mail_tools(settings) as tools:
            return await tools.list_mailboxes()

    response = _run_or_exit(_run)

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Name", max_width=40)
    table.add_column("Role", width=10)
    table.add_column("ID", max_width=30)
    table.add_column("Total", justify="right", width=7)
    table.add_column("Unread", justify="right", width=7)
    for mailbox in response.get("list", []):
        table.add_row(
            str(mailbox.get("name", "")),
            str(mailbox.get("role") or ""),
            str(mailbox.get("id", "")),
            str(mailbox.get("totalEmails", "")),
            str(mailbox.get("unreadEmails", "")),
        )
    console.print(table)


@cli.command()
@click.argument("mailbox_id")
@click.option("--limit", default=DEFAULT_SEARCH_LIMIT, show_default=True, help="Threads to return.")
@click.option("--text", default=None, help="Full-text search.")
@click.pass_obj
def search(settings: Settings, mailbox_id: str, limit: int, text: str | None) -> None:
    """Thread-collapsed search within MAILBOX_ID."""
    criteria = SearchCriteria(mailbox_id=mailbox_id, limit=limit, search_text=text)

    async def _run() -> list[EmailSummary]:
        async with open_mail_tools(settings) as tools:
            return await tools.search(criteria)

    summaries = _run_or_exit(_run)
    if not summaries:
        console.print("[yellow]No emails matched.[/yellow]")
        return
    for summary in summaries:
        console.print(f"[dim]{summary.id}[/dim]")
        console.print(format_email(summary), markup=False)
        console.print()


@cli.command()
@click.argument("email_id")
@click.pass_obj
def show(settings: Settings, email_id: str) -> None:
    """Print one email with its body."""

    async def _run() -> ToolResult:
        async with open_mail_tools(settings) as tools:
            return await tools.get_email_content(email_id)

    result = _run_or_exit(_run)
    if result.is_error:
        console.print(f"[red]{escape(result.text)}[/red]")
        sys.exit(1)
    console.print(result.text, markup=False)


def _run_or_exit(func: Callable[[], Awaitable[T]]) -> T:
    try:
        return anyio.run(func)
    except (JMAPError, ValueError) as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        sys.exit(1)
