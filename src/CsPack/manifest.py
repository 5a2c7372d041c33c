"""Serialise the catalog into the package manifest (``package.xml``) and read it back.

The document shape is fixed by the hosting runtime::

    <PackageDefinition xmlns="http://schemas.microsoft.com/windowsazure" xmlns:i="...">
      <PackageMetaData><KeyValuePair><Key/><Value/></KeyValuePair></PackageMetaData>
      <PackageContents>
        <ContentDefinition>
          <Name/>
          <ContentDescription>
            <LengthInBytes/><IntegrityCheckHashAlgorithm/><IntegrityCheckHash/><DataStorePath/>
          </ContentDescription>
        </ContentDefinition>
      </PackageContents>
      <PackageLayouts>
        <LayoutDefinition>
          <Name/>
          <LayoutDescription>
            <FileDefinition>
              <FilePath/>
              <FileDescription>
                <DataContentReference/><CreatedTimeUtc/><ModifiedTimeUtc/><ReadOnly/>
              </FileDescription>
            </FileDefinition>
          </LayoutDescription>
        </LayoutDefinition>
      </PackageLayouts>
    </PackageDefinition>

Contents and layouts are emitted in catalog insertion order, so two builds over
the same inputs (with a deterministic id generator) yield identical bytes.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .catalog import CatalogSnapshot, ContentCatalog
from .errors import IncompleteContentError, IntegrityError
from .models import ContentDefinition, FileDefinition, IntegrityCheck, LayoutDefinition
from .naming import PACKAGE_MANIFEST

__all__ = [
    "MANIFEST_NAMESPACE",
    "XSI_NAMESPACE",
    "PackageManifest",
    "ManifestWriter",
    "render_manifest",
    "read_manifest",
]

logger = logging.getLogger(__name__)

MANIFEST_NAMESPACE = "http://schemas.microsoft.com/windowsazure"
XSI_NAMESPACE = "http://www.w3.org/2001/XMLSchema-instance"
XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>'
NO_HASH_ALGORITHM = "None"

# Older tooling wrote the misspelt element; accept it when reading.
_HASH_ALGORITHM_TAGS = ("IntegrityCheckHashAlgorithm", "IntegrityCheckHashAlgortihm")


@dataclass
class PackageManifest:
    """Parsed view of a package manifest."""

    metadata: List[Tuple[str, str]] = field(default_factory=list)
    contents: List[ContentDefinition] = field(default_factory=list)
    layouts: List[LayoutDefinition] = field(default_factory=list)

    def content(self, name: str) -> Optional[ContentDefinition]:
        for definition in self.contents:
            if definition.name == name:
                return definition
        return None

    def layout(self, name: str) -> Optional[LayoutDefinition]:
        for layout in self.layouts:
            if layout.name == name:
                return layout
        return None


def _text(parent: ET.Element, tag: str, value: str) -> ET.Element:
    element = ET.SubElement(parent, tag)
    element.text = value
    return element


def _content_element(parent: ET.Element, definition: ContentDefinition) -> None:
    if definition.length_in_bytes is None:
        raise IncompleteContentError(definition.name)
    node = ET.SubElement(parent, "ContentDefinition")
    _text(node, "Name", definition.name)
    description = ET.SubElement(node, "ContentDescription")
    _text(description, "LengthInBytes", str(definition.length_in_bytes))
    if definition.integrity is None:
        _text(description, "IntegrityCheckHashAlgorithm", NO_HASH_ALGORITHM)
    else:
        _text(description, "IntegrityCheckHashAlgorithm", definition.integrity.algorithm)
        _text(description, "IntegrityCheckHash", definition.integrity.value)
    _text(description, "DataStorePath", definition.data_store_path)


def _file_element(parent: ET.Element, definition: FileDefinition) -> None:
    node = ET.SubElement(parent, "FileDefinition")
    _text(node, "FilePath", definition.file_path)
    description = ET.SubElement(node, "FileDescription")
    _text(description, "DataContentReference", definition.data_content_reference)
    _text(description, "CreatedTimeUtc", definition.created_time_utc)
    _text(description, "ModifiedTimeUtc", definition.modified_time_utc)
    _text(description, "ReadOnly", "true" if definition.read_only else "false")


def _check_references(snapshot: CatalogSnapshot) -> None:
    names = {definition.name for definition in snapshot.contents}
    dangling = [
        (layout_name, file_definition.data_content_reference)
        for layout_name, files in snapshot.layouts
        for file_definition in files
        if file_definition.data_content_reference not in names
    ]
    if dangling:
        raise IntegrityError(
            f"{len(dangling)} file definition(s) reference unknown content",
            problems=[f"{layout}: {reference}" for layout, reference in dangling],
        )


def render_manifest(snapshot: CatalogSnapshot) -> bytes:
    """Render ``snapshot`` as UTF-8 manifest bytes.

    Raises:
        IncompleteContentError: If a content definition has no recorded length.
        IntegrityError: If a layout file references content that is not listed.
    """

    _check_references(snapshot)
    root = ET.Element(
        "PackageDefinition",
        {"xmlns": MANIFEST_NAMESPACE, "xmlns:i": XSI_NAMESPACE},
    )
    if snapshot.metadata:
        metadata = ET.SubElement(root, "PackageMetaData")
        for key, value in snapshot.metadata:
            pair = ET.SubElement(metadata, "KeyValuePair")
            _text(pair, "Key", key)
            _text(pair, "Value", value)
    if snapshot.contents:
        contents = ET.SubElement(root, "PackageContents")
        for definition in snapshot.contents:
            _content_element(contents, definition)
    if snapshot.layouts:
        layouts = ET.SubElement(root, "PackageLayouts")
        for name, files in snapshot.layouts:
            layout = ET.SubElement(layouts, "LayoutDefinition")
            _text(layout, "Name", name)
            description = ET.SubElement(layout, "LayoutDescription")
            for file_definition in files:
                _file_element(description, file_definition)
    body = ET.tostring(root, encoding="unicode")
    return (XML_DECLARATION + body).encode("utf-8")


class ManifestWriter:
    """Write the catalog's manifest into its content store."""

    def __init__(self, catalog: ContentCatalog, *, name: str = PACKAGE_MANIFEST) -> None:
        self.catalog = catalog
        self.name = name

    def render(self) -> bytes:
        return render_manifest(self.catalog.snapshot())

    def write(self) -> None:
        """Render the manifest, store it under ``package.xml``, and freeze the catalog."""

        payload = self.render()
        self.catalog.store.add_content_from_buffer(self.name, payload)
        self.catalog.freeze()
        logger.info(
            "manifest written",
            extra={"stage": "manifest", "manifest": self.name, "size": len(payload)},
        )


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(element: ET.Element, *tags: str) -> Optional[ET.Element]:
    for child in element:
        if _local(child.tag) in tags:
            return child
    return None


def _children(element: Optional[ET.Element], tag: str) -> List[ET.Element]:
    if element is None:
        return []
    return [child for child in element if _local(child.tag) == tag]


def _child_text(element: Optional[ET.Element], *tags: str) -> Optional[str]:
    if element is None:
        return None
    child = _child(element, *tags)
    if child is None:
        return None
    return child.text or ""


def _parse_content(node: ET.Element) -> ContentDefinition:
    name = _child_text(node, "Name") or ""
    description = _child(node, "ContentDescription")
    length_text = _child_text(description, "LengthInBytes")
    try:
        length = int(length_text) if length_text is not None else None
    except ValueError as exc:
        raise IntegrityError(f"content '{name}' has a non-numeric length: {length_text!r}") from exc
    algorithm = _child_text(description, *_HASH_ALGORITHM_TAGS)
    digest = _child_text(description, "IntegrityCheckHash")
    integrity = None
    if algorithm and algorithm != NO_HASH_ALGORITHM and digest:
        integrity = IntegrityCheck(algorithm=algorithm, value=digest)
    return ContentDefinition(
        name=name,
        raw_name=name,
        data_store_path=_child_text(description, "DataStorePath") or name,
        length_in_bytes=length,
        integrity=integrity,
    )


def _parse_file(node: ET.Element) -> FileDefinition:
    description = _child(node, "FileDescription")
    return FileDefinition(
        file_path=_child_text(node, "FilePath") or "",
        data_content_reference=_child_text(description, "DataContentReference") or "",
        created_time_utc=_child_text(description, "CreatedTimeUtc") or "",
        modified_time_utc=_child_text(description, "ModifiedTimeUtc") or "",
        read_only=(_child_text(description, "ReadOnly") or "false").strip().lower() == "true",
    )


def read_manifest(data: bytes) -> PackageManifest:
    """Parse manifest bytes into a :class:`PackageManifest`.

    Raises:
        IntegrityError: If ``data`` is not a well-formed package manifest.
    """

    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise IntegrityError(f"package manifest is not well-formed XML: {exc}") from exc
    if _local(root.tag) != "PackageDefinition":
        raise IntegrityError(f"unexpected manifest root element '{_local(root.tag)}'")

    manifest = PackageManifest()
    for pair in _children(_child(root, "PackageMetaData"), "KeyValuePair"):
        manifest.metadata.append((_child_text(pair, "Key") or "", _child_text(pair, "Value") or ""))
    for node in _children(_child(root, "PackageContents"), "ContentDefinition"):
        manifest.contents.append(_parse_content(node))
    for node in _children(_child(root, "PackageLayouts"), "LayoutDefinition"):
        layout = LayoutDefinition(name=_child_text(node, "Name") or "")
        for file_node in _children(_child(node, "LayoutDescription"), "FileDefinition"):
            layout.files.append(_parse_file(file_node))
        manifest.layouts.append(layout)
    return manifest
