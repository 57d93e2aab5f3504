"""Data types shared across the JMAP client, resolvers and tool layer."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

MAIL_CAPABILITY = "urn:ietf:params:jmap:mail"
CORE_CAPABILITY = "urn:ietf:params:jmap:core"

NO_BODY_CONTENT = "No body content found."
HTML_BODY_LABEL = "[HTML Body - may contain tags]"


@dataclass(frozen=True)
class AccountContext:
    """The mail account every operation runs against.

    Resolved once from the JMAP session at startup and passed explicitly to
    each operation; never mutated afterwards.
    """

    account_id: str
    capability: str = MAIL_CAPABILITY


@dataclass(frozen=True)
class EmailAddress:
    """One addressee from a from/to/cc/bcc header."""

    email: str
    name: str | None = None

    @classmethod
    def from_jmap(cls, data: dict[str, Any]) -> "EmailAddress":
        return cls(email=str(data.get("email") or ""), name=data.get("name") or None)

    def display(self) -> str:
        """``Name <address>`` when a display name exists, else the bare address."""
        if self.name:
            return f"{self.name} <{self.email}>"
        return self.email


def _addresses(raw: Any) -> list[EmailAddress] | None:
    """Parse a JMAP address list; ``None`` stays ``None`` (header absent)."""
    if raw is None:
        return None
    return [EmailAddress.from_jmap(a) for a in raw if isinstance(a, dict)]


@dataclass(frozen=True)
class BodyPart:
    """A pointer to one body rendition; the bytes need a separate download."""

    blob_id: str | None
    type: str | None = None
    name: str | None = None
    part_id: str | None = None

    @classmethod
    def from_jmap(cls, data: dict[str, Any]) -> "BodyPart":
        return cls(
            blob_id=data.get("blobId"),
            type=data.get("type"),
            name=data.get("name"),
            part_id=data.get("partId"),
        )


# ── Email records ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EmailSummary:
    """List-view fields of an email, produced by the final search stage."""

    id: str
    subject: str | None = None
    sender: list[EmailAddress] | None = None
    received_at: str | None = None
    preview: str | None = None
    mailbox_ids: list[str] = field(default_factory=list)

    @classmethod
    def from_jmap(cls, data: dict[str, Any]) -> "EmailSummary":
        return cls(
            id=str(data.get("id", "")),
            subject=data.get("subject"),
            sender=_addresses(data.get("from")),
            received_at=data.get("receivedAt"),
            preview=data.get("preview"),
            mailbox_ids=[
                mailbox_id
                for mailbox_id, present in (data.get("mailboxIds") or {}).items()
                if present
            ],
        )

    def as_jmap(self) -> dict[str, Any]:
        """Render back into JMAP property names for JSON output."""
        return {
            "id": self.id,
            "subject": self.subject,
            "from": (
                [_address_as_jmap(a) for a in self.sender]
                if self.sender is not None
                else None
            ),
            "receivedAt": self.received_at,
            "preview": self.preview,
            "mailboxIds": {mailbox_id: True for mailbox_id in self.mailbox_ids},
        }


def _address_as_jmap(address: EmailAddress) -> dict[str, str | None]:
    return {"name": address.name, "email": address.email}


@dataclass(frozen=True)
class EmailDetail:
    """A single email with headers and its *unresolved* body-part pointers."""

    id: str
    subject: str | None = None
    sender: list[EmailAddress] | None = None
    to: list[EmailAddress] | None = None
    cc: list[EmailAddress] | None = None
    bcc: list[EmailAddress] | None = None
    sent_at: str | None = None
    received_at: str | None = None
    text_body: list[BodyPart] = field(default_factory=list)
    html_body: list[BodyPart] = field(default_factory=list)

    @classmethod
    def from_jmap(cls, data: dict[str, Any]) -> "EmailDetail":
        return cls(
            id=str(data.get("id", "")),
            subject=data.get("subject"),
            sender=_addresses(data.get("from")),
            to=_addresses(data.get("to")),
            cc=_addresses(data.get("cc")),
            bcc=_addresses(data.get("bcc")),
            sent_at=data.get("sentAt"),
            received_at=data.get("receivedAt"),
            text_body=[BodyPart.from_jmap(p) for p in data.get("textBody") or []],
            html_body=[BodyPart.from_jmap(p) for p in data.get("htmlBody") or []],
        )


# ── Body resolution result ─────────────────────────────────────────────────────


class BodySource(str, Enum):
    """Which rendition a resolved body came from."""

    TEXT = "text"
    HTML = "html"
    NONE = "none"


@dataclass(frozen=True)
class ResolvedBody:
    """Downloaded body text tagged with its rendition, or the empty sentinel."""

    text: str
    source: BodySource

    @classmethod
    def not_found(cls) -> "ResolvedBody":
        return cls(text=NO_BODY_CONTENT, source=BodySource.NONE)

    @property
    def found(self) -> bool:
        return self.source is not BodySource.NONE

    def render(self) -> str:
        """Body text as shown to the user; HTML bodies carry a warning label."""
        if self.source is BodySource.HTML:
            return f"{HTML_BODY_LABEL}\n{self.text}"
        return self.text


# ── Search criteria ────────────────────────────────────────────────────────────

# Tool argument name → SearchCriteria attribute
_ARGUMENT_FIELDS: dict[str, str] = {
    "mailboxId": "mailbox_id",
    "limit": "limit",
    "excludeMailboxIds": "exclude_mailbox_ids",
    "receivedBefore": "received_before",
    "receivedAfter": "received_after",
    "hasKeyword": "has_keyword",
    "notKeyword": "not_keyword",
    "hasAttachment": "has_attachment",
    "searchText": "search_text",
    "searchFrom": "search_from",
    "searchTo": "search_to",
    "searchCc": "search_cc",
    "searchBcc": "search_bcc",
    "searchSubject": "search_subject",
    "searchBody": "search_body",
}

DEFAULT_SEARCH_LIMIT = 15


@dataclass(frozen=True)
class SearchCriteria:
    """Optional search constraints; ``None`` always means "no constraint"."""

    mailbox_id: str
    limit: int = DEFAULT_SEARCH_LIMIT
    exclude_mailbox_ids: list[str] | None = None
    received_before: str | None = None
    received_after: str | None = None
    has_keyword: str | None = None
    not_keyword: str | None = None
    has_attachment: bool | None = None
    search_text: str | None = None
    search_from: str | None = None
    search_to: str | None = None
    search_cc: str | None = None
    search_bcc: str | None = None
    search_subject: str | None = None
    search_body: str | None = None

    @classmethod
    def from_arguments(cls, arguments: dict[str, Any]) -> "SearchCriteria":
        """Build criteria from camelCase tool arguments, ignoring unknown keys."""
        if not arguments.get("mailboxId"):
            raise ValueError("mailboxId is required")
        values = {
            attr: arguments[arg]
            for arg, attr in _ARGUMENT_FIELDS.items()
            if arguments.get(arg) is not None
        }
        return cls(**values)
