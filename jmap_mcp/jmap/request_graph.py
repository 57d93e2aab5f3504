"""Dependent JMAP request graphs built from back-referencing stages.

A search that JMAP cannot answer in one method call is expressed as a chain
of stages, where a later stage names an earlier stage's *future* result via
a ``ResultReference`` instead of literal ids.  The graph is plain data: it
can be built and inspected without a network client, then handed to a
``RequestGraphResolver`` which either

* submits every stage in one request and lets the server resolve the
  ``#``-prefixed references in order (RFC 8620 §3.7), or
* runs the stages one round trip at a time, evaluating each reference
  locally against the concrete result of the stage it points at.

Both modes return the same per-stage results.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from jmap_mcp.jmap.client import Invocation, JMAPError, JMAPMethodError
from jmap_mcp.jmap.types import AccountContext, EmailSummary

logger = logging.getLogger(__name__)

RECEIVED_NEWEST_FIRST: list[dict[str, Any]] = [
    {"property": "receivedAt", "isAscending": False}
]
SUMMARY_PROPERTIES: list[str] = ["id", "subject", "from", "receivedAt", "preview", "mailboxIds"]
LATEST_PROPERTIES: list[str] = ["id", "subject", "from", "receivedAt", "preview"]


class Transport(Protocol):
    """Anything that can POST a list of method calls and return the responses."""

    async def request(self, method_calls: list[Invocation]) -> list[Invocation]:
        ...


class InvalidGraphError(ValueError):
    """A stage references something that is not declared before it."""


# ── Graph model ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ResultReference:
    """Points at ``path`` inside the not-yet-known result of call ``result_of``."""

    result_of: str
    name: str
    path: str

    def as_jmap(self) -> dict[str, str]:
        return {"resultOf": self.result_of, "name": self.name, "path": self.path}


@dataclass(frozen=True)
class RequestStage:
    """One method call of a graph.

    ``arguments`` holds literal values; ``references`` maps argument names
    to values that only exist once an earlier stage has run.
    """

    call_id: str
    method: str
    arguments: dict[str, Any] = field(default_factory=dict)
    references: dict[str, ResultReference] = field(default_factory=dict)

    def as_invocation(self) -> Invocation:
        """Render as a JMAP invocation with ``#name`` back-references."""
        arguments = dict(self.arguments)
        for key, reference in self.references.items():
            arguments[f"#{key}"] = reference.as_jmap()
        return [self.method, arguments, self.call_id]

    def bind(self, values: dict[str, Any]) -> "RequestStage":
        """Return a copy whose references are replaced by literal ``values``."""
        return RequestStage(
            call_id=self.call_id,
            method=self.method,
            arguments={**self.arguments, **values},
        )


@dataclass(frozen=True)
class RequestGraph:
    """An ordered, validated sequence of stages.

    Every reference must point at a stage declared earlier and name that
    stage's method; this is checked on construction so an invalid graph can
    never be submitted.
    """

    stages: tuple[RequestStage, ...] = ()

    def __post_init__(self) -> None:
        methods: dict[str, str] = {}
        for stage in self.stages:
            if stage.call_id in methods:
                raise InvalidGraphError(f"Duplicate call id {stage.call_id!r}")
            for key, reference in stage.references.items():
                if key in stage.arguments:
                    raise InvalidGraphError(
                        f"{stage.call_id}: {key!r} is both literal and referenced"
                    )
                if reference.result_of not in methods:
                    raise InvalidGraphError(
                        f"{stage.call_id}: {key!r} references undeclared call "
                        f"{reference.result_of!r}"
                    )
                if methods[reference.result_of] != reference.name:
                    raise InvalidGraphError(
                        f"{stage.call_id}: {key!r} expects {reference.name} but "
                        f"{reference.result_of!r} is {methods[reference.result_of]}"
                    )
            methods[stage.call_id] = stage.method

    def then(self, stage: RequestStage) -> "RequestGraph":
        """Return a new graph with ``stage`` appended."""
        return RequestGraph(self.stages + (stage,))

    @property
    def final(self) -> RequestStage:
        if not self.stages:
            raise InvalidGraphError("Empty request graph")
        return self.stages[-1]

    def invocations(self) -> list[Invocation]:
        return [stage.as_invocation() for stage in self.stages]


# ── Reference evaluation ───────────────────────────────────────────────────────


class _PointerError(LookupError):
    pass


def evaluate_pointer(value: Any, path: str) -> Any:
    """Evaluate a JMAP result-reference path against a concrete result.

    This is JSON Pointer (RFC 6901) extended with ``*``: applied to an array
    it evaluates the rest of the path for every item and flattens any array
    results into a single list.

    Raises LookupError if the path does not exist in ``value``.
    """
    if path in ("", "/"):
        return value
    if not path.startswith("/"):
        raise _PointerError(f"Path must start with '/': {path!r}")
    tokens = [t.replace("~1", "/").replace("~0", "~") for t in path[1:].split("/")]
    return _walk(value, tokens)


def _walk(value: Any, tokens: Sequence[str]) -> Any:
    if not tokens:
        return value
    token, rest = tokens[0], tokens[1:]

    if token == "*":
        if not isinstance(value, list):
            raise _PointerError("'*' applied to a non-array value")
        flattened: list[Any] = []
        for item in value:
            result = _walk(item, rest)
            if isinstance(result, list):
                flattened.extend(result)
            else:
                flattened.append(result)
        return flattened

    if isinstance(value, dict):
        if token not in value:
            raise _PointerError(f"Missing key {token!r}")
        return _walk(value[token], rest)

    if isinstance(value, list):
        if not token.isdigit() or int(token) >= len(value):
            raise _PointerError(f"Bad array index {token!r}")
        return _walk(value[int(token)], rest)

    raise _PointerError(f"Cannot descend into {type(value).__name__} with {token!r}")


def _unique(values: list[Any]) -> list[Any]:
    """Drop repeats, keeping first occurrence order (as the server does for /get ids)."""
    seen: set[Any] = set()
    out: list[Any] = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out


# ── Resolver ───────────────────────────────────────────────────────────────────


class RequestGraphResolver:
    """Executes a RequestGraph and returns each stage's response arguments.

    Any stage that comes back as an ``error`` fails the whole graph with a
    JMAPMethodError carrying the upstream payload.  Nothing is retried and
    no partial results are returned.
    """

    def __init__(self, transport: Transport, *, batch_references: bool = True) -> None:
        self._transport = transport
        self._batch_references = batch_references

    async def execute(self, graph: RequestGraph) -> dict[str, dict[str, Any]]:
        """Run every stage of ``graph``; results are keyed by call id."""
        if self._batch_references:
            responses = await self._transport.request(graph.invocations())
            return _collect(graph.stages, responses)

        results: dict[str, dict[str, Any]] = {}
        for stage in graph.stages:
            bound = self._bind(stage, results)
            responses = await self._transport.request([bound.as_invocation()])
            results.update(_collect([bound], responses))
        return results

    @staticmethod
    def _bind(stage: RequestStage, results: dict[str, dict[str, Any]]) -> RequestStage:
        """Substitute each reference with the value it points at."""
        if not stage.references:
            return stage
        values: dict[str, Any] = {}
        for key, reference in stage.references.items():
            try:
                value = evaluate_pointer(results[reference.result_of], reference.path)
            except LookupError as exc:
                raise JMAPMethodError(
                    stage.method,
                    stage.call_id,
                    {"type": "invalidResultReference", "description": str(exc)},
                ) from exc
            if key == "ids" and isinstance(value, list):
                value = _unique(value)
            values[key] = value
            logger.debug(
                "Bound %s.%s from %s%s (%d value(s))",
                stage.call_id,
                key,
                reference.result_of,
                reference.path,
                len(value) if isinstance(value, list) else 1,
            )
        return stage.bind(values)


def _collect(
    stages: Sequence[RequestStage], responses: list[Invocation]
) -> dict[str, dict[str, Any]]:
    """Match responses to stages by call id, failing on the first error."""
    by_call_id: dict[str, tuple[str, dict[str, Any]]] = {}
    for name, payload, call_id in responses:
        # A call may emit extra implicit responses; the first one is its own.
        by_call_id.setdefault(call_id, (name, payload))

    results: dict[str, dict[str, Any]] = {}
    for stage in stages:
        if stage.call_id not in by_call_id:
            raise JMAPError(f"No response for {stage.method} ({stage.call_id})")
        name, payload = by_call_id[stage.call_id]
        if name == "error":
            raise JMAPMethodError(stage.method, stage.call_id, payload)
        results[stage.call_id] = payload
    return results


# ── Search graphs ──────────────────────────────────────────────────────────────


def build_thread_search_graph(
    account: AccountContext,
    email_filter: dict[str, Any],
    limit: int,
    sort: list[dict[str, Any]] | None = None,
) -> RequestGraph:
    """Query → thread ids → thread members → member summaries.

    ``limit`` caps the number of *threads*; every member of each matched
    thread is returned by the final stage.
    """
    account_id = account.account_id
    query = RequestStage(
        "query",
        "Email/query",
        {
            "accountId": account_id,
            "filter": email_filter,
            "sort": sort or RECEIVED_NEWEST_FIRST,
            "collapseThreads": True,
            "limit": limit,
        },
    )
    thread_ids = RequestStage(
        "threadIds",
        "Email/get",
        {"accountId": account_id, "properties": ["threadId"]},
        {"ids": ResultReference("query", "Email/query", "/ids")},
    )
    threads = RequestStage(
        "threads",
        "Thread/get",
        {"accountId": account_id},
        {"ids": ResultReference("threadIds", "Email/get", "/list/*/threadId")},
    )
    details = RequestStage(
        "details",
        "Email/get",
        {"accountId": account_id, "properties": SUMMARY_PROPERTIES},
        {"ids": ResultReference("threads", "Thread/get", "/list/*/emailIds")},
    )
    return RequestGraph((query, thread_ids, threads, details))


def build_latest_graph(account: AccountContext, mailbox_id: str, limit: int) -> RequestGraph:
    """Newest ``limit`` messages of a mailbox, without thread collapsing."""
    query = RequestStage(
        "query",
        "Email/query",
        {
            "accountId": account.account_id,
            "filter": {"inMailbox": mailbox_id},
            "sort": RECEIVED_NEWEST_FIRST,
            "limit": limit,
        },
    )
    return RequestGraph((query,)).then(
        RequestStage(
            "emails",
            "Email/get",
            {"accountId": account.account_id, "properties": LATEST_PROPERTIES},
            {"ids": ResultReference("query", "Email/query", "/ids")},
        )
    )


async def search_threads(
    resolver: RequestGraphResolver,
    account: AccountContext,
    email_filter: dict[str, Any],
    limit: int,
    sort: list[dict[str, Any]] | None = None,
) -> list[EmailSummary]:
    """Run the thread-collapsed search and flatten the final stage.

    Order is the order of the final stage: threads in query order, members
    in the server's thread order.  Members are not re-sorted by receipt time.
    """
    graph = build_thread_search_graph(account, email_filter, limit, sort)
    results = await resolver.execute(graph)
    return [EmailSummary.from_jmap(e) for e in results[graph.final.call_id].get("list", [])]


async def fetch_latest(
    resolver: RequestGraphResolver,
    account: AccountContext,
    mailbox_id: str,
    limit: int,
) -> list[EmailSummary]:
    graph = build_latest_graph(account, mailbox_id, limit)
    results = await resolver.execute(graph)
    return [EmailSummary.from_jmap(e) for e in results[graph.final.call_id].get("list", [])]
