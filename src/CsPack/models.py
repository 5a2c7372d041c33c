"""Data model for package contents, layouts, and the inputs that feed them.

NAVMAP:
  - FileOrigin / BufferOrigin: where the bytes of a content come from
  - Direct / Link: how a content is named (plain name vs. alias of earlier content)
  - IntegrityCheck: algorithm + encoded digest recorded in the manifest
  - ContentDefinition: one physical payload tracked by the catalog
  - FileDefinition / LayoutDefinition: per-role file tables
  - StoredStat: size and timestamps reported by a content store
  - Role / RoleFile / RuntimeModel: role table entries handed in by callers
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union

__all__ = [
    "FileOrigin",
    "BufferOrigin",
    "ContentOrigin",
    "Direct",
    "Link",
    "ContentRequest",
    "IntegrityCheck",
    "ContentDefinition",
    "FileDefinition",
    "LayoutDefinition",
    "StoredStat",
    "RoleType",
    "RuntimeModel",
    "RoleFile",
    "Role",
]


@dataclass(frozen=True, slots=True)
class FileOrigin:
    """Content copied from a file on disk."""

    path: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", Path(self.path))


@dataclass(frozen=True, slots=True)
class BufferOrigin:
    """Content supplied as in-memory bytes."""

    data: bytes

    @classmethod
    def from_text(cls, text: str, encoding: str = "utf-8") -> "BufferOrigin":
        return cls(text.encode(encoding))


ContentOrigin = Union[FileOrigin, BufferOrigin]


@dataclass(frozen=True, slots=True)
class Direct:
    """Request to register content under a plain logical name."""

    name: str


@dataclass(frozen=True, slots=True)
class Link:
    """Request to register ``name`` as byte-identical to content registered as ``links_to``."""

    name: str
    links_to: str


ContentRequest = Union[Direct, Link]


@dataclass(frozen=True, slots=True)
class IntegrityCheck:
    """Digest recorded for a content definition.

    Attributes:
        algorithm: Manifest spelling of the algorithm (``Sha256``, ``Sha1``, ...)
        value: Base64-encoded digest
    """

    algorithm: str
    value: str


@dataclass(slots=True)
class ContentDefinition:
    """One physical payload tracked in the package.

    ``name`` and ``data_store_path`` are the same normalised storage path.
    ``raw_name`` is the logical name the content was registered under; linked
    registrations share ``name`` with their target but carry their own
    ``raw_name``.  ``length_in_bytes`` stays ``None`` until the store write
    completes.
    """

    name: str
    raw_name: str
    data_store_path: str
    length_in_bytes: Optional[int] = None
    integrity: Optional[IntegrityCheck] = None

    @property
    def is_complete(self) -> bool:
        return self.length_in_bytes is not None

    def clone_as(self, raw_name: str) -> "ContentDefinition":
        """Return a copy sharing storage and hash but carrying ``raw_name``."""

        return dataclasses.replace(self, raw_name=raw_name)


@dataclass(frozen=True, slots=True)
class FileDefinition:
    """A file deployed into a layout, pointing at a content definition."""

    file_path: str
    data_content_reference: str
    created_time_utc: str
    modified_time_utc: str
    read_only: bool = False


@dataclass(slots=True)
class LayoutDefinition:
    """Ordered file table for one role (``Roles/<roleName>``)."""

    name: str
    files: List[FileDefinition] = field(default_factory=list)

    def find(self, file_path: str) -> Optional[FileDefinition]:
        for definition in self.files:
            if definition.file_path == file_path:
                return definition
        return None


@dataclass(frozen=True, slots=True)
class StoredStat:
    """Size and timestamps of a stored object."""

    size: int
    ctime: datetime
    mtime: datetime


class RoleType(str, Enum):
    """Kinds of roles a service definition can declare."""

    WORKER = "Worker"
    WEB = "Web"


@dataclass(frozen=True)
class RuntimeModel:
    net_fx_version: str = "v3.5"
    runtime_execution_context: str = "limited"
    protocol_version: str = "2011-03-08"


@dataclass(frozen=True)
class RoleFile:
    """One file a role contributes to its layout.

    Exactly one of ``origin`` or ``links_to`` drives the content: a plain file
    needs an origin, a link reuses the bytes registered under ``links_to``.
    """

    path: str
    origin: Optional[ContentOrigin] = None
    links_to: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.path:
            raise ValueError("role file path must not be empty")
        if self.origin is None and self.links_to is None:
            raise ValueError(f"role file '{self.path}' needs an origin or a link target")

    @property
    def is_link(self) -> bool:
        return self.links_to is not None

    def request(self) -> ContentRequest:
        if self.links_to is not None:
            return Link(self.path, self.links_to)
        return Direct(self.path)


@dataclass(frozen=True)
class Role:
    """Role table entry produced by service-definition parsing."""

    name: str
    type: RoleType = RoleType.WORKER
    runtime_model: RuntimeModel = field(default_factory=RuntimeModel)
    files: Tuple[RoleFile, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "files", tuple(self.files))
