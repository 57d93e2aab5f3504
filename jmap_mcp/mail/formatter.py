"""Render emails as plain text blocks."""

from jmap_mcp.jmap.types import EmailAddress, EmailDetail, EmailSummary, ResolvedBody

NO_SUBJECT = "(No Subject)"
UNKNOWN_SENDER = "(Unknown Sender)"
UNKNOWN_RECIPIENT = "(Unknown Recipient)"
UNKNOWN_DATE = "(Unknown Date)"


def format_addresses(addresses: list[EmailAddress] | None, placeholder: str) -> str:
    """Join addressees with ", ", or return ``placeholder`` when there are none."""
    if not addresses:
        return placeholder
    return ", ".join(a.display() for a in addresses)


def format_email(email: EmailDetail | EmailSummary, body: ResolvedBody | None = None) -> str:
    """Subject/From/To/Date header block, a ``---`` separator, then the body.

    Summaries have no recipients or sent time, so their To line is always the
    placeholder and, without a resolved body, their preview is shown instead.
    """
    to = email.to if isinstance(email, EmailDetail) else None
    sent_at = email.sent_at if isinstance(email, EmailDetail) else None

    if body is not None:
        body_text = body.render()
    elif isinstance(email, EmailSummary):
        body_text = email.preview or ""
    else:
        body_text = ""

    return (
        f"Subject: {email.subject or NO_SUBJECT}\n"
        f"From: {format_addresses(email.sender, UNKNOWN_SENDER)}\n"
        f"To: {format_addresses(to, UNKNOWN_RECIPIENT)}\n"
        f"Date: {email.received_at or sent_at or UNKNOWN_DATE}\n"
        f"\n---\n\n"
        f"{body_text}"
    )
