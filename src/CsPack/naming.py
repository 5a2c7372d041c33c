"""Path normalisation rules and well-known names used inside a package.

Two path conventions meet in a package and they are never interchangeable:

* storage (content) names are forward-slash paths used as archive member names
  and as catalog keys, e.g. ``LocalContent/4f0c...``;
* layout file paths are backslash-rooted paths describing where a file lands
  inside a role, e.g. ``\\approot\\app.js``.  The hosting runtime expects this
  exact form, including the single leading backslash.
"""

from __future__ import annotations

import itertools
import threading
import uuid
from datetime import datetime, timezone
from typing import Protocol

__all__ = [
    "LOCAL_CONTENT",
    "NAMED_STREAMS",
    "SERVICE_DEFINITION",
    "PACKAGE_MANIFEST",
    "CONTENT_TYPES_PART",
    "RELATIONSHIPS_PART",
    "DEDUPLICATED_STORES",
    "IdGenerator",
    "UuidIdGenerator",
    "SequentialIdGenerator",
    "normalize_content_name",
    "normalize_file_path",
    "denormalize_file_path",
    "storage_path",
    "is_local_content",
    "layout_name_for_role",
    "format_timestamp",
]

LOCAL_CONTENT = "LocalContent"
NAMED_STREAMS = "NamedStreams"
SERVICE_DEFINITION = "ServiceDefinition"
PACKAGE_MANIFEST = "package.xml"
CONTENT_TYPES_PART = "[Content_Types].xml"
RELATIONSHIPS_PART = "_rels/.rels"

# Only LocalContent blobs are addressed by generated tokens and eligible for reuse.
DEDUPLICATED_STORES = frozenset({LOCAL_CONTENT})


class IdGenerator(Protocol):
    """Source of fresh storage tokens for generated content names."""

    def next(self) -> str:
        """Return a token that has not been handed out before."""


class UuidIdGenerator:
    """Generate random 32-character hexadecimal tokens."""

    def next(self) -> str:
        return uuid.uuid4().hex


class SequentialIdGenerator:
    """Deterministic generator yielding ``<prefix><n>`` tokens; safe across threads."""

    def __init__(self, prefix: str = "content", start: int = 1) -> None:
        self.prefix = prefix
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next(self) -> str:
        with self._lock:
            value = next(self._counter)
        return f"{self.prefix}{value:04d}"


def normalize_content_name(path: str) -> str:
    """Return ``path`` with every separator turned into ``/``."""

    return path.replace("\\", "/")


def normalize_file_path(path: str) -> str:
    """Return the layout form of ``path``: backslash separators behind one leading ``\\``.

    Examples:
        >>> normalize_file_path("approot/app.js")
        '\\\\approot\\\\app.js'
    """

    return "\\" + path.replace("/", "\\")


def denormalize_file_path(file_path: str) -> str:
    """Invert :func:`normalize_file_path`, recovering a forward-slash role path."""

    if file_path.startswith("\\"):
        file_path = file_path[1:]
    return file_path.replace("\\", "/")


def storage_path(store: str, name: str) -> str:
    """Join ``store`` and ``name`` into a normalised storage path."""

    if not store:
        raise ValueError("store must be a non-empty partition name")
    if not name:
        raise ValueError("name must be a non-empty content name")
    return normalize_content_name(f"{store}/{name}")


def is_local_content(name: str) -> bool:
    """Return ``True`` when the storage path lives in the LocalContent partition."""

    return normalize_content_name(name).startswith(LOCAL_CONTENT)


def layout_name_for_role(role_name: str) -> str:
    return f"Roles/{role_name}"


def format_timestamp(value: datetime) -> str:
    """Render ``value`` as UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
