"""Resolve user-supplied knowledge references to Drive ids.

Operators paste whatever they have: a bare id, a Docs editor URL
(``/document/d/<id>/edit``), a folder URL (``/drive/folders/<id>``) or an
``open?id=<id>`` share link.
"""

from __future__ import annotations

import re

_URL_ID_PATTERNS = (
    re.compile(r"/d/([A-Za-z0-9_-]+)"),
    re.compile(r"/folders/([A-Za-z0-9_-]+)"),
    re.compile(r"[?&]id=([A-Za-z0-9_-]+)"),
)
_RAW_ID = re.compile(r"^[A-Za-z0-9_-]{10,}$")


def resolve_reference(reference: str) -> str | None:
    """
    Return the document or folder id embedded in ``reference``.

    Returns None when nothing id-shaped can be found.

    Side Effects:
        None (pure function)
    """
    value = reference.strip()
    if not value:
        return None

    if "://" in value or value.startswith("drive.google.com") or value.startswith("docs.google.com"):
        for pattern in _URL_ID_PATTERNS:
            match = pattern.search(value)
            if match and _RAW_ID.match(match.group(1)):
                return match.group(1)
        return None

    return value if _RAW_ID.match(value) else None
