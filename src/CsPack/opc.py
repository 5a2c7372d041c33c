"""Fold a content store into the final package archive.

The archive is an Open Packaging Conventions container: every stored member
is copied verbatim, and two generated parts are added at the root:

``[Content_Types].xml``
    Extension defaults plus one ``Override`` per ``LocalContent`` member
    (those have no extension, so they need an explicit type).
``_rels/.rels``
    A single static relationship pointing at ``/package.xml``.

Members are stored uncompressed by default; ``deflated`` is accepted for
consumers that cope with it.  The archive is written to a temporary file next
to the destination and moved into place only once complete, so a failed
build never leaves a partial package behind.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Sequence, Tuple, Union

from .errors import ContentIOError, PackageStateError
from .naming import CONTENT_TYPES_PART, PACKAGE_MANIFEST, RELATIONSHIPS_PART, is_local_content
from .store import ContentStore, FileContentStore

__all__ = [
    "CONTENT_TYPES_NAMESPACE",
    "RELATIONSHIPS_NAMESPACE",
    "DEFAULT_CONTENT_TYPES",
    "COMPRESSION_MODES",
    "ContentTypes",
    "render_relationships",
    "ArchiveAssembler",
]

logger = logging.getLogger(__name__)

CONTENT_TYPES_NAMESPACE = "http://schemas.openxmlformats.org/package/2006/content-types"
RELATIONSHIPS_NAMESPACE = "http://schemas.openxmlformats.org/package/2006/relationships"
PACKAGE_DEFINITION_RELATIONSHIP = (
    "http://schemas.microsoft.com/windowsazure/PackageDefinition/Version/2012/03/15"
)
PACKAGE_DEFINITION_RELATIONSHIP_ID = "R039f121c8a0b4893"
OCTET_STREAM = "application/octet-stream"
RELATIONSHIPS_CONTENT_TYPE = "application/vnd.openxmlformats-package.relationships+xml"

DEFAULT_CONTENT_TYPES: Tuple[Tuple[str, str], ...] = (
    ("csdef", OCTET_STREAM),
    ("rd", OCTET_STREAM),
    ("rdsc", OCTET_STREAM),
    ("0", OCTET_STREAM),
    ("xml", OCTET_STREAM),
    ("rels", RELATIONSHIPS_CONTENT_TYPE),
)

COMPRESSION_MODES: Dict[str, int] = {
    "stored": zipfile.ZIP_STORED,
    "deflated": zipfile.ZIP_DEFLATED,
}

_XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>'
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


@dataclass
class ContentTypes:
    """Content-type declarations written to ``[Content_Types].xml``."""

    defaults: List[Tuple[str, str]] = field(default_factory=lambda: list(DEFAULT_CONTENT_TYPES))
    overrides: List[Tuple[str, str]] = field(default_factory=list)

    def add_override(self, part_name: str, content_type: str = OCTET_STREAM) -> None:
        self.overrides.append((part_name, content_type))

    @classmethod
    def for_members(cls, members: Sequence[str]) -> "ContentTypes":
        types = cls()
        for member in members:
            if is_local_content(member):
                types.add_override("/" + member)
        return types

    def render(self) -> bytes:
        root = ET.Element("Types", {"xmlns": CONTENT_TYPES_NAMESPACE})
        for extension, content_type in self.defaults:
            ET.SubElement(root, "Default", {"Extension": extension, "ContentType": content_type})
        for part_name, content_type in self.overrides:
            ET.SubElement(root, "Override", {"PartName": part_name, "ContentType": content_type})
        return (_XML_DECLARATION + ET.tostring(root, encoding="unicode")).encode("utf-8")


def render_relationships() -> bytes:
    """Return the package relationships part (fixed content)."""

    return (
        _XML_DECLARATION
        + f'<Relationships xmlns="{RELATIONSHIPS_NAMESPACE}">'
        + f'<Relationship Type="{PACKAGE_DEFINITION_RELATIONSHIP}" Target="/{PACKAGE_MANIFEST}" '
        + f'TargetMode="External" Id="{PACKAGE_DEFINITION_RELATIONSHIP_ID}" />'
        + "</Relationships>"
    ).encode("utf-8")


def _zip_date(value: datetime) -> Tuple[int, int, int, int, int, int]:
    stamp = (value.year, value.month, value.day, value.hour, value.minute, value.second)
    return max(stamp, _ZIP_EPOCH)


class ArchiveAssembler:
    """Produce the package archive from everything a content store holds.

    Args:
        store: Store holding the manifest and every content payload.
        compression: ``"stored"`` (default) or ``"deflated"``.
        keep_staging: Keep a :class:`FileContentStore` staging directory after
            a successful write instead of removing it.
    """

    def __init__(
        self,
        store: ContentStore,
        *,
        compression: str = "stored",
        keep_staging: bool = False,
    ) -> None:
        if compression not in COMPRESSION_MODES:
            raise ValueError(
                f"unsupported compression '{compression}'; expected one of {sorted(COMPRESSION_MODES)}"
            )
        self.store = store
        self.compression = compression
        self.keep_staging = keep_staging

    def _members(self) -> List[str]:
        generated = {CONTENT_TYPES_PART, RELATIONSHIPS_PART}
        members = [name for name in self.store.list_contents() if name not in generated]
        if PACKAGE_MANIFEST not in members:
            raise PackageStateError(f"store has no '{PACKAGE_MANIFEST}'; write the manifest first")
        return members

    def _add_generated_parts(self, members: Sequence[str]) -> None:
        self.store.add_content_from_buffer(CONTENT_TYPES_PART, ContentTypes.for_members(members).render())
        self.store.add_content_from_buffer(RELATIONSHIPS_PART, render_relationships())

    def _write_member(self, archive: zipfile.ZipFile, name: str) -> None:
        stat = self.store.get_content_stat(name)
        info = zipfile.ZipInfo(name, date_time=_zip_date(stat.mtime))
        info.compress_type = COMPRESSION_MODES[self.compression]
        info.file_size = stat.size
        with self.store.open_content(name) as source, archive.open(info, mode="w") as target:
            shutil.copyfileobj(source, target)

    def write_archive(self, handle) -> int:
        """Write the archive into the binary file object ``handle``; return the member count."""

        members = self._members()
        self._add_generated_parts(members)
        names = list(members) + [CONTENT_TYPES_PART, RELATIONSHIPS_PART]
        with zipfile.ZipFile(handle, mode="w", compression=COMPRESSION_MODES[self.compression]) as archive:
            for name in names:
                self._write_member(archive, name)
        return len(names)

    def assemble(self, output_path: Union[str, Path]) -> Path:
        """Write the archive to ``output_path`` and seal the store.

        On success the staging directory of a :class:`FileContentStore` is
        removed (unless ``keep_staging``).  On failure nothing is left at
        ``output_path`` and staging is preserved for diagnosis.

        Raises:
            ContentIOError: If reading a member or writing the archive fails.
            PackageStateError: If the manifest is missing or the store is sealed.
        """

        destination = Path(output_path).expanduser()
        destination.parent.mkdir(parents=True, exist_ok=True)
        handle = tempfile.NamedTemporaryFile(
            "wb", dir=str(destination.parent), prefix=f".{destination.name}.", delete=False
        )
        temp_path = Path(handle.name)
        try:
            with handle:
                count = self.write_archive(handle)
                handle.flush()
                try:
                    os.fsync(handle.fileno())
                except OSError:
                    pass
            temp_path.replace(destination)
        except OSError as exc:
            temp_path.unlink(missing_ok=True)
            logger.error(
                "archive write failed",
                extra={"stage": "archive", "archive": str(destination), "error": str(exc)},
            )
            raise ContentIOError(f"Failed to write package {destination}: {exc}", path=str(destination)) from exc
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

        self.store.seal()
        logger.info(
            "archive written",
            extra={
                "stage": "archive",
                "archive": str(destination),
                "members": count,
                "compression": self.compression,
            },
        )
        if isinstance(self.store, FileContentStore) and not self.keep_staging:
            self.store.destroy()
        return destination
