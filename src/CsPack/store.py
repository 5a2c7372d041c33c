"""Content store backends: a staging directory on disk or an in-memory archive.

Both backends are addressed by normalised storage paths
(``LocalContent/<token>``, ``NamedStreams/...``, ``package.xml``) and keep
payloads byte-for-byte: nothing is re-encoded and newlines are never
translated.

NAVMAP:
  - ContentStore: protocol consumed by the catalog, manifest writer, and assembler
  - FileContentStore: staging directory with real I/O and directory creation
  - ZipContentStore: in-memory member table, optionally loaded from an archive
"""

from __future__ import annotations

import io
import logging
import shutil
import threading
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Dict, List, Optional, Protocol, Set, Union, runtime_checkable

from .errors import ContentIOError, NotFoundError, PackageStateError
from .models import BufferOrigin, ContentOrigin, FileOrigin, StoredStat
from .naming import normalize_content_name

__all__ = [
    "ContentStore",
    "FileContentStore",
    "ZipContentStore",
]

logger = logging.getLogger(__name__)


@runtime_checkable
class ContentStore(Protocol):
    """Durable byte storage keyed by normalised storage path."""

    def add_content(self, name: str, origin: ContentOrigin) -> StoredStat:
        """Store ``origin`` under ``name`` and return the stored object's stat."""
        ...

    def add_content_from_file(self, name: str, source_path: Path) -> StoredStat:
        """Copy the file at ``source_path`` into the store under ``name``."""
        ...

    def add_content_from_buffer(self, name: str, data: bytes) -> StoredStat:
        """Write ``data`` under ``name``."""
        ...

    def add_content_from_string(self, name: str, text: str, encoding: str = "utf-8") -> StoredStat:
        """Write ``text`` encoded with ``encoding`` under ``name``."""
        ...

    def get_content(self, name: str) -> bytes:
        """Return the stored bytes; raise :class:`NotFoundError` when absent."""
        ...

    def open_content(self, name: str) -> BinaryIO:
        """Open the stored bytes for streaming reads."""
        ...

    def get_content_stat(self, name: str) -> StoredStat:
        """Return size and timestamps; raise :class:`NotFoundError` when absent."""
        ...

    def has_content(self, name: str) -> bool:
        ...

    def list_contents(self) -> List[str]:
        """Return stored names, excluding directory-only entries."""
        ...

    def seal(self) -> None:
        """Reject any further writes."""
        ...


def _validated_name(name: str) -> str:
    normalized = normalize_content_name(name)
    parts = PurePosixPath(normalized).parts
    if not normalized or normalized.startswith("/") or ".." in parts:
        raise ValueError(f"unsafe storage path: {name!r}")
    return normalized


class _StoreBase:
    """Shared dispatch and sealing for the concrete stores."""

    def __init__(self) -> None:
        self._sealed = False

    @property
    def sealed(self) -> bool:
        return self._sealed

    def seal(self) -> None:
        self._sealed = True

    def _ensure_writable(self, name: str) -> None:
        if self._sealed:
            raise PackageStateError(f"store is sealed; cannot write '{name}'")

    def add_content(self, name: str, origin: ContentOrigin) -> StoredStat:
        if isinstance(origin, FileOrigin):
            return self.add_content_from_file(name, origin.path)
        if isinstance(origin, BufferOrigin):
            return self.add_content_from_buffer(name, origin.data)
        raise TypeError(f"unsupported content origin: {origin!r}")

    def add_content_from_string(self, name: str, text: str, encoding: str = "utf-8") -> StoredStat:
        return self.add_content_from_buffer(name, text.encode(encoding))

    def add_content_from_file(self, name: str, source_path: Path) -> StoredStat:  # pragma: no cover
        raise NotImplementedError

    def add_content_from_buffer(self, name: str, data: bytes) -> StoredStat:  # pragma: no cover
        raise NotImplementedError


class FileContentStore(_StoreBase):
    """Staging directory backend.

    Every write creates the intermediate directories it needs.  The staging
    tree is removed with :meth:`destroy` once the archive has been written.
    """

    def __init__(self, root: Union[str, Path]) -> None:
        super().__init__()
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, name: str) -> Path:
        return self.root.joinpath(*PurePosixPath(_validated_name(name)).parts)

    def add_content_from_file(self, name: str, source_path: Path) -> StoredStat:
        self._ensure_writable(name)
        target = self._path(name)
        source = Path(source_path)
        try:
            same_file = target.exists() and source.resolve() == target.resolve()
            if not same_file:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(source, target)
        except OSError as exc:
            raise ContentIOError(
                f"Failed to copy {source} into staging as '{name}': {exc}", path=str(source)
            ) from exc
        logger.debug("staged file", extra={"stage": "content", "content": name, "source": str(source)})
        return self.get_content_stat(name)

    def add_content_from_buffer(self, name: str, data: bytes) -> StoredStat:
        self._ensure_writable(name)
        target = self._path(name)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise ContentIOError(f"Failed to write '{name}' to staging: {exc}", path=str(target)) from exc
        return self.get_content_stat(name)

    def get_content(self, name: str) -> bytes:
        path = self._path(name)
        try:
            return path.read_bytes()
        except (FileNotFoundError, IsADirectoryError) as exc:
            raise NotFoundError(name) from exc
        except OSError as exc:
            raise ContentIOError(f"Failed to read '{name}': {exc}", path=str(path)) from exc

    def open_content(self, name: str) -> BinaryIO:
        path = self._path(name)
        if not path.is_file():
            raise NotFoundError(name)
        return path.open("rb")

    def get_content_stat(self, name: str) -> StoredStat:
        path = self._path(name)
        try:
            info = path.stat()
        except FileNotFoundError as exc:
            raise NotFoundError(name) from exc
        if not path.is_file():
            raise NotFoundError(name)
        return StoredStat(
            size=info.st_size,
            ctime=datetime.fromtimestamp(info.st_ctime, tz=timezone.utc),
            mtime=datetime.fromtimestamp(info.st_mtime, tz=timezone.utc),
        )

    def has_content(self, name: str) -> bool:
        return self._path(name).is_file()

    def list_contents(self) -> List[str]:
        if not self.root.exists():
            return []
        names = [
            path.relative_to(self.root).as_posix()
            for path in self.root.rglob("*")
            if path.is_file()
        ]
        return sorted(names)

    def destroy(self) -> None:
        """Remove the staging directory and everything in it."""

        if self.root.exists():
            shutil.rmtree(self.root)
            logger.info("staging removed", extra={"stage": "archive", "staging": str(self.root)})


@dataclass(frozen=True)
class _Member:
    data: bytes
    date: datetime


class ZipContentStore(_StoreBase):
    """In-memory archive backend.

    Writes only mutate the member table; nothing touches disk until the
    archive assembler serialises the store.  Pass ``archive`` (a path or raw
    bytes) to read back an existing package.
    """

    def __init__(self, archive: Optional[Union[str, Path, bytes]] = None) -> None:
        super().__init__()
        self._members: Dict[str, _Member] = {}
        self._folders: Set[str] = set()
        self._lock = threading.Lock()
        if archive is not None:
            self._load(archive)

    def _load(self, archive: Union[str, Path, bytes]) -> None:
        if isinstance(archive, (bytes, bytearray)):
            buffer = io.BytesIO(bytes(archive))
            source = "<bytes>"
        else:
            try:
                buffer = io.BytesIO(Path(archive).read_bytes())
            except OSError as exc:
                raise ContentIOError(f"Failed to read archive {archive}: {exc}", path=str(archive)) from exc
            source = str(archive)
        try:
            with zipfile.ZipFile(buffer) as handle:
                for info in handle.infolist():
                    if info.is_dir():
                        self._folders.add(info.filename.rstrip("/"))
                        continue
                    self._members[info.filename] = _Member(
                        data=handle.read(info),
                        date=datetime(*info.date_time, tzinfo=timezone.utc),
                    )
        except zipfile.BadZipFile as exc:
            raise ContentIOError(f"{source} is not a valid archive: {exc}", path=source) from exc
        logger.debug(
            "archive loaded",
            extra={"stage": "archive", "archive": source, "members": len(self._members)},
        )

    def _register_folders(self, name: str) -> None:
        parent = PurePosixPath(name).parent
        while str(parent) not in ("", "."):
            self._folders.add(str(parent))
            parent = parent.parent

    def _put(self, name: str, data: bytes) -> StoredStat:
        normalized = _validated_name(name)
        self._ensure_writable(normalized)
        member = _Member(data=bytes(data), date=datetime.now(timezone.utc))
        with self._lock:
            self._register_folders(normalized)
            self._members[normalized] = member
        return StoredStat(size=len(member.data), ctime=member.date, mtime=member.date)

    def add_content_from_file(self, name: str, source_path: Path) -> StoredStat:
        try:
            data = Path(source_path).read_bytes()
        except OSError as exc:
            raise ContentIOError(f"Failed to read {source_path}: {exc}", path=str(source_path)) from exc
        return self._put(name, data)

    def add_content_from_buffer(self, name: str, data: bytes) -> StoredStat:
        return self._put(name, data)

    def _member(self, name: str) -> _Member:
        normalized = normalize_content_name(name)
        with self._lock:
            member = self._members.get(normalized)
        if member is None:
            raise NotFoundError(normalized)
        return member

    def get_content(self, name: str) -> bytes:
        return self._member(name).data

    def open_content(self, name: str) -> BinaryIO:
        return io.BytesIO(self._member(name).data)

    def get_content_stat(self, name: str) -> StoredStat:
        member = self._member(name)
        return StoredStat(size=len(member.data), ctime=member.date, mtime=member.date)

    def has_content(self, name: str) -> bool:
        with self._lock:
            return normalize_content_name(name) in self._members

    def list_contents(self) -> List[str]:
        with self._lock:
            return list(self._members)

    def list_folders(self) -> List[str]:
        with self._lock:
            return sorted(self._folders)

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)
