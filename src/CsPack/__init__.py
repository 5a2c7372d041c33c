"""Build cloud-service packages from role layouts.

The package content model (:class:`ContentCatalog`) tracks every payload
destined for the archive, deduplicates identical ``LocalContent`` by hash, and
feeds :class:`ManifestWriter` and :class:`ArchiveAssembler`.
:class:`PackageBuilder` wires the pieces into a single concurrent build.
"""

from __future__ import annotations

from .builder import BuildResult, BuildState, PackageBuilder
from .catalog import ContentCatalog
from .dedup import HashDeduplication, NoDeduplication, strategy_for
from .errors import (
    ConfigError,
    ContentIOError,
    CsPackError,
    DanglingLinkError,
    DuplicateContentError,
    DuplicateLayoutError,
    HashError,
    IncompleteContentError,
    IntegrityError,
    NotFoundError,
    PackageStateError,
    UnknownLayoutError,
)
from .manifest import ManifestWriter, read_manifest
from .models import BufferOrigin, Direct, FileOrigin, Link, Role, RoleFile, RoleType
from .naming import SequentialIdGenerator, UuidIdGenerator
from .opc import ArchiveAssembler
from .settings import PackageSettings, load_config
from .store import FileContentStore, ZipContentStore
from .verify import verify_package

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "ArchiveAssembler",
    "BufferOrigin",
    "BuildResult",
    "BuildState",
    "ConfigError",
    "ContentCatalog",
    "ContentIOError",
    "CsPackError",
    "DanglingLinkError",
    "Direct",
    "DuplicateContentError",
    "DuplicateLayoutError",
    "FileContentStore",
    "FileOrigin",
    "HashDeduplication",
    "HashError",
    "IncompleteContentError",
    "IntegrityError",
    "Link",
    "ManifestWriter",
    "NoDeduplication",
    "NotFoundError",
    "PackageBuilder",
    "PackageSettings",
    "PackageStateError",
    "Role",
    "RoleFile",
    "RoleType",
    "SequentialIdGenerator",
    "UnknownLayoutError",
    "UuidIdGenerator",
    "ZipContentStore",
    "load_config",
    "read_manifest",
    "strategy_for",
    "verify_package",
]
