"""JMAP HTTP client: session discovery, API requests and blob downloads."""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx

from jmap_mcp.config import Settings
from jmap_mcp.jmap.types import CORE_CAPABILITY, MAIL_CAPABILITY, AccountContext

logger = logging.getLogger(__name__)

#: One entry of a JMAP ``methodCalls`` / ``methodResponses`` array:
#: ``[method name, arguments, call id]``.
Invocation = list[Any]

_DEFAULT_BLOB_TYPE = "application/octet-stream"
_DEFAULT_BLOB_NAME = "body_part"


class JMAPError(Exception):
    """Raised when the JMAP server or the HTTP layer reports a failure."""


class JMAPTransportError(JMAPError):
    """The server could not be reached, or did not answer with JSON."""


class JMAPMethodError(JMAPError):
    """A method call inside a request came back as an ``error`` response."""

    def __init__(self, method: str, call_id: str, payload: dict[str, Any]) -> None:
        self.method = method
        self.call_id = call_id
        self.payload = payload
        self.error_type = str(payload.get("type", "unknown"))
        super().__init__(
            f"{method} ({call_id}) failed: {json.dumps(payload, sort_keys=True)}"
        )


@dataclass(frozen=True)
class JMAPSession:
    """The subset of the JMAP Session resource this client needs."""

    api_url: str
    download_url: str
    primary_accounts: dict[str, str] = field(default_factory=dict)
    accounts: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "JMAPSession":
        api_url = data.get("apiUrl")
        if not api_url:
            raise JMAPError("JMAP session response has no apiUrl")
        return cls(
            api_url=str(api_url),
            download_url=str(data.get("downloadUrl", "")),
            primary_accounts=dict(data.get("primaryAccounts") or {}),
            accounts=dict(data.get("accounts") or {}),
        )

    def account_for(self, capability: str = MAIL_CAPABILITY) -> AccountContext:
        """Return the primary account for ``capability``, else the first account."""
        account_id = self.primary_accounts.get(capability)
        if not account_id and self.accounts:
            account_id = next(iter(self.accounts))
        if not account_id:
            raise JMAPError(f"No JMAP account offers {capability}")
        return AccountContext(account_id=str(account_id), capability=capability)


def expand_download_url(template: str, **values: str) -> str:
    """Fill a downloadUrl URI template (RFC 8620 §2) with escaped values."""
    url = template
    for key, value in values.items():
        url = url.replace("{" + key + "}", quote(value, safe=""))
    return url


class JMAPClient:
    """Thin async wrapper around a JMAP endpoint.

    Owns one long-lived ``httpx.AsyncClient`` carrying the bearer token.
    The session is fetched lazily on first use and kept for the lifetime of
    the client.  Use the `jmap_client()` context manager to construct and
    tear down correctly.
    """

    def __init__(self, http: httpx.AsyncClient, session_url: str) -> None:
        self._http = http
        self._session_url = session_url
        self._session: JMAPSession | None = None

    # ── Session ────────────────────────────────────────────────────────────────

    async def session(self) -> JMAPSession:
        if self._session is None:
            logger.debug("Fetching JMAP session from %s", self._session_url)
            response = await self._send("session", "GET", self._session_url)
            self._session = JMAPSession.from_json(self._json(response, "session"))
            logger.info("JMAP session established (api=%s)", self._session.api_url)
        return self._session

    async def account_context(self) -> AccountContext:
        """Resolve the mail account for this session."""
        return (await self.session()).account_for(MAIL_CAPABILITY)

    # ── API ────────────────────────────────────────────────────────────────────

    async def request(self, method_calls: list[Invocation]) -> list[Invocation]:
        """POST one JMAP request and return its ``methodResponses`` verbatim.

        Method-level errors are left in the returned list for the caller to
        interpret; only HTTP and request-level failures raise here.
        """
        session = await self.session()
        logger.debug(
            "JMAP → %s",
            ", ".join(f"{call[0]}#{call[2]}" for call in method_calls),
        )
        response = await self._send(
            "API request",
            "POST",
            session.api_url,
            json={"using": [CORE_CAPABILITY, MAIL_CAPABILITY], "methodCalls": method_calls},
        )
        body = self._json(response, "API request")
        responses = body.get("methodResponses")
        if not isinstance(responses, list):
            raise JMAPError(f"Malformed JMAP response: {body!r}")
        return responses

    async def call(self, method: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Run a single method call and return its response arguments."""
        call_id = "0"
        responses = await self.request([[method, arguments, call_id]])
        for name, payload, response_id in responses:
            if response_id != call_id:
                continue
            if name == "error":
                raise JMAPMethodError(method, call_id, payload)
            return payload
        raise JMAPError(f"Missing response for {method}")

    async def download_blob(
        self,
        account: AccountContext,
        blob_id: str,
        mime_type: str | None = None,
        name: str | None = None,
    ) -> httpx.Response:
        """Fetch a blob through the session's download endpoint.

        The response is returned whatever its status so callers can decide
        how to treat a failed download.
        """
        session = await self.session()
        url = expand_download_url(
            session.download_url,
            accountId=account.account_id,
            blobId=blob_id,
            type=mime_type or _DEFAULT_BLOB_TYPE,
            name=name or _DEFAULT_BLOB_NAME,
        )
        return await self._http.get(url)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _send(self, what: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Issue one HTTP request; transport failures and non-2xx become JMAPError."""
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise JMAPTransportError(f"JMAP {what} failed: {exc!r}") from exc
        if not response.is_success:
            raise JMAPError(
                f"JMAP {what} failed with HTTP {response.status_code}: {response.text[:500]}"
            )
        return response

    @staticmethod
    def _json(response: httpx.Response, what: str) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise JMAPTransportError(
                f"JMAP {what} returned a non-JSON body: {response.text[:200]!r}"
            ) from exc
        if not isinstance(body, dict):
            raise JMAPError(f"Malformed JMAP response: {body!r}")
        return body


_CONNECT_RETRIES = 3
_RETRY_DELAY_SECONDS = 2


@asynccontextmanager
async def jmap_client(settings: Settings) -> AsyncIterator[JMAPClient]:
    """Async context manager that yields a JMAPClient with its session resolved.

    Retries the session fetch up to ``_CONNECT_RETRIES`` times on transport
    errors so a server started before the network is up still comes online.

    Example::

        async with jmap_client(Settings.from_env()) as client:
            account = await client.account_context()
    """
    if not settings.token:
        raise ValueError("JMAP_TOKEN must be set to authenticate with the JMAP server")

    http = httpx.AsyncClient(
        headers={"Authorization": f"Bearer {settings.token}"},
        follow_redirects=True,
    )
    client = JMAPClient(http, settings.session_url)
    try:
        for attempt in range(1, _CONNECT_RETRIES + 1):
            try:
                await client.session()
                break
            except JMAPTransportError as exc:
                if not isinstance(exc.__cause__, httpx.TransportError):
                    raise
                if attempt == _CONNECT_RETRIES:
                    raise JMAPError(
                        f"Could not reach {settings.session_url} after {attempt} attempts"
                    ) from exc
                logger.warning(
                    "JMAP session fetch failed (attempt %d/%d): %s — retrying in %ds",
                    attempt,
                    _CONNECT_RETRIES,
                    exc,
                    _RETRY_DELAY_SECONDS,
                )
                await asyncio.sleep(_RETRY_DELAY_SECONDS)
        yield client
    finally:
        await client.aclose()
