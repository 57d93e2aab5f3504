"""Read-only mail operations behind the tool surface."""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from jmap_mcp.config import Settings
from jmap_mcp.jmap.client import JMAPClient, JMAPError, jmap_client
from jmap_mcp.jmap.filters import build_filter
from jmap_mcp.jmap.request_graph import RequestGraphResolver, fetch_latest, search_threads
from jmap_mcp.jmap.types import AccountContext, EmailDetail, EmailSummary, SearchCriteria
from jmap_mcp.mail.body import resolve_body
from jmap_mcp.mail.formatter import format_email

logger = logging.getLogger(__name__)

DETAIL_PROPERTIES: list[str] = [
    "id", "textBody", "htmlBody", "subject", "from", "to", "cc", "bcc", "sentAt", "receivedAt",
]

DEFAULT_LATEST_LIMIT = 5


@dataclass(frozen=True)
class ToolResult:
    """A single text payload, flagged when it describes a failure."""

    text: str
    is_error: bool = False

    @classmethod
    def error(cls, text: str) -> "ToolResult":
        return cls(text=text, is_error=True)


def _summaries_json(summaries: list[EmailSummary]) -> str:
    return json.dumps([s.as_jmap() for s in summaries], indent=2)


class MailTools:
    """The operations exposed as tools, bound to one account.

    The account context is resolved once by the caller and shared read-only
    by every invocation; no mailbox or email state is cached here.

    Usage::

        async with open_mail_tools(Settings.from_env()) as tools:
            result = await tools.get_email_content("M123")
    """

    def __init__(
        self,
        client: JMAPClient,
        account: AccountContext,
        resolver: RequestGraphResolver,
    ) -> None:
        self._client = client
        self._account = account
        self._resolver = resolver

    @property
    def account(self) -> AccountContext:
        return self._account

    # ── Raw operations ─────────────────────────────────────────────────────────

    async def list_mailboxes(self) -> dict[str, Any]:
        """Return the Mailbox/get response untouched. Upstream errors propagate."""
        return await self._client.call("Mailbox/get", {"accountId": self._account.account_id})

    async def search(self, criteria: SearchCriteria) -> list[EmailSummary]:
        """Thread-collapsed search returning every member of each matched thread."""
        return await search_threads(
            self._resolver, self._account, build_filter(criteria), criteria.limit
        )

    async def get_email(self, email_id: str) -> EmailDetail | None:
        """Fetch one email's headers and body-part pointers, or None if unknown."""
        response = await self._client.call(
            "Email/get",
            {
                "accountId": self._account.account_id,
                "ids": [email_id],
                "properties": DETAIL_PROPERTIES,
            },
        )
        emails = response.get("list") or []
        if not emails:
            return None
        return EmailDetail.from_jmap(emails[0])

    # ── Tool operations ────────────────────────────────────────────────────────

    async def get_mailboxes(self) -> ToolResult:
        mailboxes = await self.list_mailboxes()
        return ToolResult(json.dumps(mailboxes, indent=2))

    async def search_emails(self, criteria: SearchCriteria) -> ToolResult:
        logger.info("search_emails mailbox=%s limit=%d", criteria.mailbox_id, criteria.limit)
        try:
            summaries = await self.search(criteria)
        except JMAPError as exc:
            logger.error("Email search failed: %s", exc)
            return ToolResult.error(f"Error: search failed: {exc}")
        return ToolResult(_summaries_json(summaries))

    async def fetch_latest_emails(
        self, mailbox_id: str, limit: int = DEFAULT_LATEST_LIMIT
    ) -> ToolResult:
        logger.info("fetch_latest_emails mailbox=%s limit=%d", mailbox_id, limit)
        try:
            summaries = await fetch_latest(self._resolver, self._account, mailbox_id, limit)
        except JMAPError as exc:
            logger.error("Fetching latest emails failed: %s", exc)
            return ToolResult.error(f"Error: fetch failed: {exc}")
        return ToolResult(_summaries_json(summaries))

    async def get_email_content(self, email_id: str) -> ToolResult:
        logger.info("get_email_content id=%s", email_id)
        email = await self.get_email(email_id)
        if email is None:
            return ToolResult.error(f"Error: Email with ID {email_id} not found.")
        body = await resolve_body(self._client, self._account, email)
        return ToolResult(format_email(email, body))


@asynccontextmanager
async def open_mail_tools(settings: Settings) -> AsyncIterator[MailTools]:
    """Connect, resolve the mail account once, and yield ready MailTools."""
    async with jmap_client(settings) as client:
        account = await client.account_context()
        logger.info("Using JMAP account %s", account.account_id)
        resolver = RequestGraphResolver(client, batch_references=settings.batch_references)
        yield MailTools(client, account, resolver)
