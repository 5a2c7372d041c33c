"""Tests for archive assembly: generated parts, sealing, and staging cleanup."""

from __future__ import annotations

import xml.etree.ElementTree as ET
import zipfile
from pathlib import Path

import pytest

from CsPack.catalog import ContentCatalog
from CsPack.errors import ContentIOError, PackageStateError
from CsPack.manifest import ManifestWriter
from CsPack.models import BufferOrigin
from CsPack.naming import LOCAL_CONTENT, SequentialIdGenerator
from CsPack.opc import (
    CONTENT_TYPES_NAMESPACE,
    ArchiveAssembler,
    ContentTypes,
    render_relationships,
)
from CsPack.store import FileContentStore, ZipContentStore

CT = {"t": CONTENT_TYPES_NAMESPACE}


def _staged(store) -> ContentCatalog:
    catalog = ContentCatalog(store, id_generator=SequentialIdGenerator())
    catalog.add_layout_definition("Roles/WorkerRole1")
    catalog.add_file_definition("Roles/WorkerRole1", "approot/server.js", BufferOrigin(b"server"))
    store.add_content_from_string("NamedStreams/greeting", "hello")
    ManifestWriter(catalog).write()
    return catalog


def test_content_types_override_local_content_only() -> None:
    types = ContentTypes.for_members(["LocalContent/abc", "NamedStreams/x/1.0", "package.xml"])

    assert types.overrides == [("/LocalContent/abc", "application/octet-stream")]
    root = ET.fromstring(types.render())
    defaults = {
        node.get("Extension"): node.get("ContentType") for node in root.findall("t:Default", CT)
    }
    assert defaults == {
        "csdef": "application/octet-stream",
        "rd": "application/octet-stream",
        "rdsc": "application/octet-stream",
        "0": "application/octet-stream",
        "xml": "application/octet-stream",
        "rels": "application/vnd.openxmlformats-package.relationships+xml",
    }
    assert [node.get("PartName") for node in root.findall("t:Override", CT)] == ["/LocalContent/abc"]


def test_relationships_part_is_fixed() -> None:
    assert render_relationships() == (
        b'<?xml version="1.0" encoding="utf-8"?>'
        b'<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">'
        b'<Relationship Type="http://schemas.microsoft.com/windowsazure/PackageDefinition/Version/2012/03/15" '
        b'Target="/package.xml" TargetMode="External" Id="R039f121c8a0b4893" />'
        b"</Relationships>"
    )


def test_archive_round_trip(tmp_path: Path) -> None:
    store = ZipContentStore()
    _staged(store)
    output = ArchiveAssembler(store).assemble(tmp_path / "out" / "app.cspkg")

    reopened = ZipContentStore(output)
    assert reopened.get_content("NamedStreams/greeting") == b"hello"
    assert reopened.get_content("LocalContent/content0001") == b"server"
    assert set(reopened.list_contents()) == {
        "LocalContent/content0001",
        "NamedStreams/greeting",
        "package.xml",
        "[Content_Types].xml",
        "_rels/.rels",
    }
    with zipfile.ZipFile(output) as archive:
        assert {info.compress_type for info in archive.infolist()} == {zipfile.ZIP_STORED}
        types = ET.fromstring(archive.read("[Content_Types].xml"))
    assert [node.get("PartName") for node in types.findall("t:Override", CT)] == [
        "/LocalContent/content0001"
    ]


def test_deflated_compression(tmp_path: Path) -> None:
    store = ZipContentStore()
    _staged(store)
    output = ArchiveAssembler(store, compression="deflated").assemble(tmp_path / "app.cspkg")

    with zipfile.ZipFile(output) as archive:
        assert {info.compress_type for info in archive.infolist()} == {zipfile.ZIP_DEFLATED}
        assert archive.read("NamedStreams/greeting") == b"hello"


def test_unknown_compression_is_rejected() -> None:
    with pytest.raises(ValueError):
        ArchiveAssembler(ZipContentStore(), compression="bzip2")


def test_assembly_seals_the_store(tmp_path: Path) -> None:
    store = ZipContentStore()
    _staged(store)
    ArchiveAssembler(store).assemble(tmp_path / "app.cspkg")

    assert store.sealed
    with pytest.raises(PackageStateError):
        store.add_content_from_buffer("LocalContent/late", b"late")


def test_missing_manifest_writes_nothing(tmp_path: Path) -> None:
    store = ZipContentStore()
    store.add_content_from_buffer("LocalContent/abc", b"abc")

    with pytest.raises(PackageStateError):
        ArchiveAssembler(store).assemble(tmp_path / "app.cspkg")
    assert list(tmp_path.iterdir()) == []


def test_staging_removed_after_success(tmp_path: Path) -> None:
    store = FileContentStore(tmp_path / "staging")
    _staged(store)

    output = ArchiveAssembler(store).assemble(tmp_path / "app.cspkg")

    assert output.is_file()
    assert not (tmp_path / "staging").exists()
    assert ZipContentStore(output).get_content("NamedStreams/greeting") == b"hello"


def test_keep_staging(tmp_path: Path) -> None:
    store = FileContentStore(tmp_path / "staging")
    _staged(store)

    ArchiveAssembler(store, keep_staging=True).assemble(tmp_path / "app.cspkg")

    assert (tmp_path / "staging" / "package.xml").is_file()
    assert (tmp_path / "staging" / "[Content_Types].xml").is_file()


def test_failure_keeps_staging_and_leaves_no_archive(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = FileContentStore(tmp_path / "staging")
    _staged(store)
    original = store.open_content

    def flaky_open(name: str):
        if name.startswith(LOCAL_CONTENT):
            raise ContentIOError(f"disk went away reading {name}", path=name)
        return original(name)

    monkeypatch.setattr(store, "open_content", flaky_open)

    with pytest.raises(ContentIOError):
        ArchiveAssembler(store).assemble(tmp_path / "app.cspkg")

    assert not (tmp_path / "app.cspkg").exists()
    assert sorted(path.name for path in tmp_path.iterdir()) == ["staging"]
    assert (tmp_path / "staging" / "package.xml").is_file()
    assert not store.sealed
