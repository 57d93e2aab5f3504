"""Pick an email body part, download it, and fall back when there is none."""

import logging
from typing import Protocol

import httpx

from jmap_mcp.jmap.types import AccountContext, BodyPart, BodySource, EmailDetail, ResolvedBody

logger = logging.getLogger(__name__)


class BlobFetcher(Protocol):
    """The download half of JMAPClient."""

    async def download_blob(
        self,
        account: AccountContext,
        blob_id: str,
        mime_type: str | None = None,
        name: str | None = None,
    ) -> httpx.Response:
        ...


async def download_part_text(
    fetcher: BlobFetcher, account: AccountContext, part: BodyPart
) -> str | None:
    """Return the text of ``part``, or None if it cannot be downloaded.

    A part without a blob id, a non-2xx response, and a transport error all
    count as "no content"; none of them are raised.
    """
    if not part.blob_id:
        return None
    try:
        response = await fetcher.download_blob(account, part.blob_id, part.type, part.name)
    except httpx.HTTPError as exc:
        logger.error("Error downloading blob %s: %s", part.blob_id, exc)
        return None
    if not response.is_success:
        logger.error(
            "Failed to download blob %s: %d %s",
            part.blob_id,
            response.status_code,
            response.reason_phrase,
        )
        return None
    return response.text


async def resolve_body(
    fetcher: BlobFetcher, account: AccountContext, email: EmailDetail
) -> ResolvedBody:
    """Resolve the body to display for ``email``.

    Uses the first plain-text part.  Only when the plain-text part list is
    empty does it try the first HTML part instead; a text part that exists
    but fails to download yields the not-found sentinel without trying HTML.
    """
    if email.text_body:
        source, part = BodySource.TEXT, email.text_body[0]
    elif email.html_body:
        source, part = BodySource.HTML, email.html_body[0]
    else:
        return ResolvedBody.not_found()

    text = await download_part_text(fetcher, account, part)
    if text is None:
        return ResolvedBody.not_found()
    return ResolvedBody(text=text, source=source)
