"""Translate SearchCriteria into an Email/query filter condition."""

from collections.abc import Callable
from typing import Any

from jmap_mcp.jmap.types import SearchCriteria


def _supplied(value: Any) -> bool:
    # False is a real constraint for booleans; only None means "unset".
    return value is not None


#: (SearchCriteria attribute, FilterCondition key, inclusion predicate).
#: Each attribute maps to exactly one key.
FILTER_FIELDS: list[tuple[str, str, Callable[[Any], bool]]] = [
    ("exclude_mailbox_ids", "inMailboxOtherThan", _supplied),
    ("received_before", "before", _supplied),
    ("received_after", "after", _supplied),
    ("has_keyword", "hasKeyword", _supplied),
    ("not_keyword", "notKeyword", _supplied),
    ("has_attachment", "hasAttachment", _supplied),
    ("search_text", "text", _supplied),
    ("search_from", "from", _supplied),
    ("search_to", "to", _supplied),
    ("search_cc", "cc", _supplied),
    ("search_bcc", "bcc", _supplied),
    ("search_subject", "subject", _supplied),
    ("search_body", "body", _supplied),
]


def build_filter(criteria: SearchCriteria) -> dict[str, Any]:
    """Return the filter for ``criteria``, always scoped to its mailbox.

    A key appears in the result if and only if the matching criterion was
    supplied.  Values are copied through unvalidated; a bad mailbox id is
    reported by the server, not here.
    """
    condition: dict[str, Any] = {"inMailbox": criteria.mailbox_id}
    for attr, key, include in FILTER_FIELDS:
        value = getattr(criteria, attr)
        if include(value):
            condition[key] = list(value) if isinstance(value, list) else value
    return condition
