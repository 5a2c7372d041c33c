# === NAVMAP v1 ===
# {
#   "module": "CsPack.catalog",
#   "purpose": "Track package contents and role layouts with hash-based deduplication",
#   "sections": [
#     {
#       "id": "catalogsnapshot",
#       "name": "CatalogSnapshot",
#       "anchor": "class-catalogsnapshot",
#       "kind": "class"
#     },
#     {
#       "id": "contentcatalog",
#       "name": "ContentCatalog",
#       "anchor": "class-contentcatalog",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Package content model: contents, layouts, and deduplication.

The catalog is the single source of truth for what ends up in a package.  It
assigns storage paths, writes payloads through a :class:`ContentStore`, and
records one :class:`ContentDefinition` per physical blob plus one
:class:`LayoutDefinition` per role.

Responsibilities
----------------
- ``LocalContent`` payloads are stored under generated tokens
  (``LocalContent/<token>``) so several logical names can share one blob.
  Every other store uses the logical name as the physical name.
- With a hashing policy, a ``LocalContent`` payload whose digest is already in
  the catalog is not written again; the new logical name is registered as a
  clone pointing at the existing storage path.
- Links (``Link(name, links_to)``) reuse the payload registered under
  ``links_to``, preferring a file in the same layout over other layouts, and
  fail fast with :class:`DanglingLinkError` when it is absent.

Concurrency
-----------
All mutation goes through one re-entrant lock.  Hash lookups and inserts are
atomic as a unit: the first thread to see a new digest reserves it with a
:class:`concurrent.futures.Future`, and concurrent adds of the same digest
wait on that future instead of writing a second copy.  Store writes and
hashing happen outside the lock so role tasks do not serialise on disk I/O.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

from .dedup import DeduplicationStrategy, HashDeduplication
from .errors import (
    DanglingLinkError,
    DuplicateContentError,
    DuplicateLayoutError,
    PackageStateError,
    UnknownLayoutError,
)
from .models import (
    ContentDefinition,
    ContentOrigin,
    ContentRequest,
    Direct,
    FileDefinition,
    IntegrityCheck,
    LayoutDefinition,
    Link,
)
from .naming import (
    DEDUPLICATED_STORES,
    LOCAL_CONTENT,
    IdGenerator,
    UuidIdGenerator,
    format_timestamp,
    normalize_content_name,
    normalize_file_path,
    storage_path,
)
from .store import ContentStore

__all__ = [
    "PRODUCT_VERSION_KEY",
    "DEFAULT_PRODUCT_VERSION",
    "CatalogSnapshot",
    "ContentCatalog",
]

logger = logging.getLogger(__name__)

PRODUCT_VERSION_KEY = "http://schemas.microsoft.com/windowsazure/ProductVersion/"
DEFAULT_PRODUCT_VERSION = "1.8.31004.1351"

_DigestKey = Tuple[str, str]


@dataclass(frozen=True)
class CatalogSnapshot:
    """Consistent, ordered view of the catalog taken under its lock."""

    metadata: Tuple[Tuple[str, str], ...]
    contents: Tuple[ContentDefinition, ...]
    layouts: Tuple[Tuple[str, Tuple[FileDefinition, ...]], ...]


class ContentCatalog:
    """Track named, hashed content and per-role layouts for one package."""

    def __init__(
        self,
        store: ContentStore,
        *,
        product_version: str = DEFAULT_PRODUCT_VERSION,
        dedup: Optional[DeduplicationStrategy] = None,
        id_generator: Optional[IdGenerator] = None,
    ) -> None:
        self.store = store
        self.product_version = product_version
        self.dedup = dedup if dedup is not None else HashDeduplication()
        self.id_generator = id_generator or UuidIdGenerator()
        self._lock = threading.RLock()
        self._contents: Dict[str, ContentDefinition] = {}
        self._registrations: List[ContentDefinition] = []
        self._by_raw_name: Dict[str, ContentDefinition] = {}
        self._by_layout_raw_name: Dict[str, Dict[str, ContentDefinition]] = {}
        self._by_digest: Dict[_DigestKey, ContentDefinition] = {}
        self._pending: Dict[_DigestKey, "Future[ContentDefinition]"] = {}
        self._layouts: Dict[str, LayoutDefinition] = {}
        self._frozen = False

    # ------------------------------------------------------------------ state

    @property
    def metadata(self) -> List[Tuple[str, str]]:
        return [(PRODUCT_VERSION_KEY, self.product_version)]

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Reject further mutation; called once the manifest has been written."""

        with self._lock:
            self._frozen = True

    def _ensure_mutable(self) -> None:
        if self._frozen:
            raise PackageStateError("catalog is frozen; the manifest has already been written")

    def snapshot(self) -> CatalogSnapshot:
        with self._lock:
            return CatalogSnapshot(
                metadata=tuple(self.metadata),
                contents=tuple(self._contents.values()),
                layouts=tuple(
                    (layout.name, tuple(layout.files)) for layout in self._layouts.values()
                ),
            )

    @property
    def contents(self) -> List[ContentDefinition]:
        """Physical content definitions in insertion order."""

        with self._lock:
            return list(self._contents.values())

    @property
    def registrations(self) -> List[ContentDefinition]:
        """Every logical registration, including clones that share storage."""

        with self._lock:
            return list(self._registrations)

    @property
    def layouts(self) -> List[LayoutDefinition]:
        with self._lock:
            return list(self._layouts.values())

    # --------------------------------------------------------------- contents

    def add_content_definition(
        self,
        store: str,
        request: Union[ContentRequest, str, None],
        origin: Optional[ContentOrigin] = None,
        *,
        layout: Optional[str] = None,
    ) -> ContentDefinition:
        """Register content in ``store`` and write it unless a reusable blob exists.

        Args:
            store: Partition name (``LocalContent``, ``NamedStreams``, ...).
            request: Logical name, ``Direct`` request, or ``Link`` request.
                ``None`` generates a name.
            origin: Where the bytes come from; optional for links.
            layout: Layout the request belongs to.  Links resolve against that
                layout's own files before the catalog-wide raw-name index.

        Returns:
            The definition registered for the logical name.

        Raises:
            DanglingLinkError: If a link target was never registered.
            DuplicateContentError: If a literal-named content already exists.
            ContentIOError: If the origin cannot be read or the store write fails.
            HashError: If hashing the origin fails.
        """

        self._ensure_mutable()
        if request is None:
            request = Direct(self.id_generator.next())
        elif isinstance(request, str):
            request = Direct(request)

        raw_name = normalize_content_name(request.name)
        if isinstance(request, Link):
            return self._add_link(
                store, raw_name, normalize_content_name(request.links_to), origin, layout
            )
        if origin is None:
            raise ValueError(f"content '{raw_name}' needs an origin")

        integrity = self.dedup.fingerprint(origin)
        if integrity is not None and self.dedup.deduplicates(store):
            return self._add_deduplicated(store, raw_name, origin, integrity)
        return self._write_new(store, raw_name, origin, integrity)

    def _storage_path_for(self, store: str, raw_name: str) -> str:
        if store in DEDUPLICATED_STORES:
            return storage_path(store, self.id_generator.next())
        return storage_path(store, raw_name)

    def _write_new(
        self,
        store: str,
        raw_name: str,
        origin: ContentOrigin,
        integrity: Optional[IntegrityCheck],
    ) -> ContentDefinition:
        with self._lock:
            self._ensure_mutable()
            path = self._storage_path_for(store, raw_name)
            if path in self._contents:
                raise DuplicateContentError(path)
            definition = ContentDefinition(
                name=path,
                raw_name=raw_name,
                data_store_path=path,
                integrity=integrity,
            )
            # Reserve the slot now so manifest order follows registration order.
            self._contents[path] = definition

        try:
            stat = self.store.add_content(path, origin)
        except BaseException:
            with self._lock:
                self._contents.pop(path, None)
            raise

        with self._lock:
            definition.length_in_bytes = stat.size
            self._registrations.append(definition)
            self._by_raw_name.setdefault(raw_name, definition)
        logger.debug(
            "content stored",
            extra={"stage": "content", "content": path, "raw_name": raw_name, "size": stat.size},
        )
        return definition

    def _add_deduplicated(
        self,
        store: str,
        raw_name: str,
        origin: ContentOrigin,
        integrity: IntegrityCheck,
    ) -> ContentDefinition:
        key: _DigestKey = (integrity.algorithm, integrity.value)
        with self._lock:
            existing = self._by_digest.get(key)
            if existing is not None:
                return self._register_alias(existing, raw_name)
            pending = self._pending.get(key)
            if pending is None:
                reservation: "Future[ContentDefinition]" = Future()
                self._pending[key] = reservation

        if pending is not None:
            primary = pending.result()
            with self._lock:
                return self._register_alias(primary, raw_name)

        try:
            definition = self._write_new(store, raw_name, origin, integrity)
        except BaseException as exc:
            with self._lock:
                self._pending.pop(key, None)
            reservation.set_exception(exc)
            raise

        with self._lock:
            self._by_digest[key] = definition
            self._pending.pop(key, None)
        reservation.set_result(definition)
        return definition

    def _register_alias(self, primary: ContentDefinition, raw_name: str) -> ContentDefinition:
        # Caller holds the lock.
        self._ensure_mutable()
        if raw_name == primary.raw_name:
            return primary
        alias = primary.clone_as(raw_name)
        self._registrations.append(alias)
        self._by_raw_name.setdefault(raw_name, alias)
        logger.debug(
            "content reused",
            extra={"stage": "content", "content": primary.name, "raw_name": raw_name},
        )
        return alias

    def _add_link(
        self,
        store: str,
        raw_name: str,
        links_to: str,
        origin: Optional[ContentOrigin],
        layout: Optional[str],
    ) -> ContentDefinition:
        with self._lock:
            target = self._by_layout_raw_name.get(layout, {}).get(links_to) if layout else None
            if target is None:
                target = self._by_raw_name.get(links_to)
        if target is None:
            raise DanglingLinkError(raw_name, links_to)

        if origin is not None:
            integrity = self.dedup.fingerprint(origin)
            if (
                integrity is not None
                and target.integrity is not None
                and integrity != target.integrity
            ):
                logger.warning(
                    "link target differs from supplied content; storing separately",
                    extra={"stage": "content", "raw_name": raw_name, "links_to": links_to},
                )
                if self.dedup.deduplicates(store):
                    return self._add_deduplicated(store, raw_name, origin, integrity)
                return self._write_new(store, raw_name, origin, integrity)

        with self._lock:
            return self._register_alias(target, raw_name)

    def get_content_definition(self, name: str) -> Optional[ContentDefinition]:
        """Return the definition stored at storage path ``name``, or ``None``."""

        with self._lock:
            return self._contents.get(normalize_content_name(name))

    def get_content_definition_by_raw_name(self, raw_name: str) -> Optional[ContentDefinition]:
        with self._lock:
            return self._by_raw_name.get(normalize_content_name(raw_name))

    def get_content_definition_by_hash(self, algorithm: str, value: str) -> Optional[ContentDefinition]:
        with self._lock:
            return self._by_digest.get((algorithm, value))

    # ---------------------------------------------------------------- layouts

    def add_layout_definition(self, name: str) -> LayoutDefinition:
        """Register a new, empty layout.

        Raises:
            DuplicateLayoutError: If ``name`` is already registered; the first
                registration is left untouched.
        """

        if not name:
            raise ValueError("layout name must not be empty")
        with self._lock:
            self._ensure_mutable()
            if name in self._layouts:
                raise DuplicateLayoutError(name)
            layout = LayoutDefinition(name=name)
            self._layouts[name] = layout
        logger.debug("layout added", extra={"stage": "layout", "layout": name})
        return layout

    def get_layout_definition(self, name: str) -> Optional[LayoutDefinition]:
        with self._lock:
            return self._layouts.get(name)

    def add_file_definition(
        self,
        layout_name: str,
        role_path: Union[ContentRequest, str],
        origin: Optional[ContentOrigin] = None,
    ) -> FileDefinition:
        """Add a file to ``layout_name`` backed by ``LocalContent``.

        The file path is the layout form of the logical name
        (``approot/app.js`` -> ``\\approot\\app.js``).  Timestamps come from
        the stored object, so re-running over already-staged files is stable.

        Raises:
            UnknownLayoutError: If the layout has not been registered.
        """

        layout = self.get_layout_definition(layout_name)
        if layout is None:
            raise UnknownLayoutError(layout_name)

        request = Direct(role_path) if isinstance(role_path, str) else role_path
        definition = self.add_content_definition(LOCAL_CONTENT, request, origin, layout=layout_name)
        stat = self.store.get_content_stat(definition.data_store_path)
        file_definition = FileDefinition(
            file_path=normalize_file_path(request.name),
            data_content_reference=definition.data_store_path,
            created_time_utc=format_timestamp(stat.ctime),
            modified_time_utc=format_timestamp(stat.mtime),
            read_only=False,
        )
        with self._lock:
            self._ensure_mutable()
            layout.files.append(file_definition)
            self._by_layout_raw_name.setdefault(layout_name, {})[
                normalize_content_name(request.name)
            ] = definition
        return file_definition

    def get_file_definition(self, layout_name: str, role_path: str) -> Optional[FileDefinition]:
        """Look up a file by its role path.

        Raises:
            UnknownLayoutError: If the layout has not been registered.
        """

        with self._lock:
            layout = self._layouts.get(layout_name)
            if layout is None:
                raise UnknownLayoutError(layout_name)
            return layout.find(normalize_file_path(role_path))
