"""Shared pytest fixtures and an in-memory JMAP server."""

from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from jmap_mcp.jmap.client import JMAPMethodError
from jmap_mcp.jmap.request_graph import evaluate_pointer
from jmap_mcp.jmap.types import AccountContext


class FakeJMAPServer:
    """Answers Email/query, Email/get, Thread/get and Mailbox/get from dicts.

    Back-references (``#ids``) are resolved in submission order the way a
    real server does, so batched and sequential graphs can be compared.
    Every call to `request()` is recorded in ``requests``.
    """

    def __init__(
        self,
        emails: list[dict[str, Any]],
        mailboxes: list[dict[str, Any]] | None = None,
    ) -> None:
        self.emails = {e["id"]: e for e in emails}
        self.mailboxes = mailboxes or []
        self.errors: dict[str, dict[str, Any]] = {}  # method → error payload
        self.requests: list[list[list[Any]]] = []

    async def request(self, method_calls: list[list[Any]]) -> list[list[Any]]:
        self.requests.append(method_calls)
        done: dict[str, list[Any]] = {}
        responses: list[list[Any]] = []
        for method, arguments, call_id in method_calls:
            response = self._invoke(method, arguments, call_id, done)
            done[call_id] = response
            responses.append(response)
        return responses

    async def call(self, method: str, arguments: dict[str, Any]) -> dict[str, Any]:
        name, payload, _ = (await self.request([[method, arguments, "0"]]))[0]
        if name == "error":
            raise JMAPMethodError(method, "0", payload)
        return payload

    # ── Internals ──────────────────────────────────────────────────────────────

    def _invoke(
        self, method: str, arguments: dict[str, Any], call_id: str, done: dict[str, list[Any]]
    ) -> list[Any]:
        resolved: dict[str, Any] = {}
        for key, value in arguments.items():
            if not key.startswith("#"):
                resolved[key] = value
                continue
            target = done.get(value["resultOf"])
            if target is None or target[0] != value["name"]:
                return ["error", {"type": "invalidResultReference"}, call_id]
            resolved[key[1:]] = evaluate_pointer(target[1], value["path"])

        if method in self.errors:
            return ["error", self.errors[method], call_id]
        handler = {
            "Email/query": self._email_query,
            "Email/get": self._email_get,
            "Thread/get": self._thread_get,
            "Mailbox/get": self._mailbox_get,
        }[method]
        return [method, handler(resolved), call_id]

    def _email_query(self, args: dict[str, Any]) -> dict[str, Any]:
        mailbox = args.get("filter", {}).get("inMailbox")
        matches = [e for e in self.emails.values() if mailbox in e.get("mailboxIds", {})]
        matches.sort(key=lambda e: e["receivedAt"], reverse=True)
        if args.get("collapseThreads"):
            seen: set[str] = set()
            exemplars = []
            for e in matches:
                if e["threadId"] not in seen:
                    seen.add(e["threadId"])
                    exemplars.append(e)
            matches = exemplars
        ids = [e["id"] for e in matches][: args.get("limit")]
        return {"accountId": args["accountId"], "ids": ids, "position": 0}

    def _email_get(self, args: dict[str, Any]) -> dict[str, Any]:
        found, missing = [], []
        for email_id in dict.fromkeys(args["ids"]):
            email = self.emails.get(email_id)
            if email is None:
                missing.append(email_id)
                continue
            props = args.get("properties")
            found.append({k: v for k, v in email.items() if props is None or k in props or k == "id"})
        return {"accountId": args["accountId"], "list": found, "notFound": missing}

    def _thread_get(self, args: dict[str, Any]) -> dict[str, Any]:
        threads = []
        for thread_id in dict.fromkeys(args["ids"]):
            members = [e for e in self.emails.values() if e["threadId"] == thread_id]
            members.sort(key=lambda e: e["receivedAt"])
            threads.append({"id": thread_id, "emailIds": [e["id"] for e in members]})
        return {"accountId": args["accountId"], "list": threads, "notFound": []}

    def _mailbox_get(self, args: dict[str, Any]) -> dict[str, Any]:
        return {"accountId": args["accountId"], "state": "s1", "list": self.mailboxes, "notFound": []}


def make_email(
    email_id: str,
    thread_id: str,
    received_at: str,
    mailbox_id: str = "inbox1",
    **extra: Any,
) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": email_id,
        "threadId": thread_id,
        "subject": f"Subject {email_id}",
        "from": [{"name": "Alice", "email": "alice@example.com"}],
        "receivedAt": received_at,
        "preview": f"Preview of {email_id}",
        "mailboxIds": {mailbox_id: True},
    }
    data.update(extra)
    return data


@pytest.fixture
def account() -> AccountContext:
    return AccountContext(account_id="A1")


@pytest.fixture
def one_thread_server() -> FakeJMAPServer:
    """A mailbox holding exactly one thread of three messages."""
    return FakeJMAPServer([
        make_email("m1", "t1", "2026-03-01T09:00:00Z"),
        make_email("m2", "t1", "2026-03-02T09:00:00Z"),
        make_email("m3", "t1", "2026-03-03T09:00:00Z"),
    ])


@pytest.fixture
def fetcher() -> AsyncMock:
    """A BlobFetcher whose download_blob returns 200 "body text" by default."""
    f = AsyncMock()
    f.download_blob = AsyncMock(return_value=httpx.Response(200, text="body text"))
    return f
