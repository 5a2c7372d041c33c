"""End-to-end package builds through :class:`CsPack.builder.PackageBuilder`."""

from __future__ import annotations

import base64
import hashlib
from pathlib import Path
from typing import Dict

import pytest

from CsPack.builder import BuildState, PackageBuilder
from CsPack.errors import (
    ContentIOError,
    DanglingLinkError,
    DuplicateLayoutError,
    HashError,
    PackageStateError,
)
from CsPack.manifest import read_manifest
from CsPack.models import BufferOrigin, FileOrigin, Role, RoleFile
from CsPack.naming import SequentialIdGenerator
from CsPack.settings import PackageSettings
from CsPack.store import ZipContentStore
from CsPack.verify import verify_package

from cspack_helpers import BOOTSTRAPPER_CONFIG, CountingStore, bootstrapper_payload


def _worker_role(scaffold: Dict[str, Path], name: str = "WorkerRole1") -> Role:
    return Role(
        name=name,
        files=[RoleFile(path, FileOrigin(source)) for path, source in scaffold.items()],
    )


def test_scaffold_build_produces_expected_manifest(scaffold: Dict[str, Path], tmp_path: Path) -> None:
    builder = PackageBuilder(id_generator=SequentialIdGenerator())
    result = builder.build(
        [_worker_role(scaffold)],
        tmp_path / "out" / "app.cspkg",
        service_definitions={"ServiceDefinition.csdef": BufferOrigin(b"<ServiceDefinition/>")},
        named_streams={"RequiredFeatures/WorkerRole1/1.0": BufferOrigin(b"")},
    )

    assert builder.state is BuildState.SEALED
    assert result.layouts == ("Roles/WorkerRole1",)
    archive = ZipContentStore(result.archive)
    manifest = read_manifest(archive.get_content("package.xml"))

    layout = manifest.layout("Roles/WorkerRole1")
    entry = next(item for item in layout.files if item.file_path == "\\base\\x64\\WaHostBootstrapper.exe.config")
    content = manifest.content(entry.data_content_reference)
    expected = base64.b64encode(hashlib.sha256(bootstrapper_payload()).digest()).decode("ascii")
    assert content.length_in_bytes == 268
    assert content.integrity.algorithm == "Sha256"
    assert content.integrity.value == expected
    assert len(content.integrity.value) == 44

    assert archive.get_content("ServiceDefinition/ServiceDefinition.csdef") == b"<ServiceDefinition/>"
    assert archive.has_content("NamedStreams/RequiredFeatures/WorkerRole1/1.0")
    assert verify_package(archive) == []


def test_roles_share_identical_files(scaffold: Dict[str, Path], tmp_path: Path) -> None:
    store = CountingStore()
    builder = PackageBuilder(store, id_generator=SequentialIdGenerator())
    result = builder.build(
        [_worker_role(scaffold, "WorkerRole1"), _worker_role(scaffold, "WorkerRole2")],
        tmp_path / "app.cspkg",
    )

    assert result.layouts == ("Roles/WorkerRole1", "Roles/WorkerRole2")
    assert store.local_writes() == len(scaffold)
    manifest = read_manifest(ZipContentStore(result.archive).get_content("package.xml"))
    first, second = manifest.layouts
    assert [entry.data_content_reference for entry in first.files] == [
        entry.data_content_reference for entry in second.files
    ]


def test_links_are_processed_after_direct_files(tmp_path: Path) -> None:
    role = Role(
        name="WorkerRole1",
        files=[
            RoleFile("bin/alias.dll", links_to="bin/core.dll"),
            RoleFile("bin/core.dll", BufferOrigin(b"core")),
        ],
    )
    builder = PackageBuilder(id_generator=SequentialIdGenerator())
    builder.build([role], tmp_path / "app.cspkg")

    layout = builder.catalog.get_layout_definition("Roles/WorkerRole1")
    assert [entry.file_path for entry in layout.files] == ["\\bin\\core.dll", "\\bin\\alias.dll"]
    assert layout.files[0].data_content_reference == layout.files[1].data_content_reference


def test_failing_role_aborts_build(scaffold: Dict[str, Path], tmp_path: Path) -> None:
    broken = Role(
        name="BrokenRole",
        files=[RoleFile("approot/missing.js", FileOrigin(tmp_path / "does-not-exist.js"))],
    )
    staging = tmp_path / "staging"
    builder = PackageBuilder(staging_dir=staging)

    with pytest.raises(HashError):
        builder.build([_worker_role(scaffold), broken], tmp_path / "app.cspkg")

    assert builder.state is BuildState.FAILED
    assert not (tmp_path / "app.cspkg").exists()
    assert staging.is_dir()
    assert not (staging / "package.xml").exists()
    with pytest.raises(PackageStateError):
        builder.write_manifest()


def test_dangling_link_aborts_build(tmp_path: Path) -> None:
    role = Role(name="WorkerRole1", files=[RoleFile("bin/alias.dll", links_to="bin/never.dll")])
    builder = PackageBuilder()

    with pytest.raises(DanglingLinkError):
        builder.build([role], tmp_path / "app.cspkg")
    assert not (tmp_path / "app.cspkg").exists()


def test_duplicate_role_names_are_rejected(scaffold: Dict[str, Path], tmp_path: Path) -> None:
    builder = PackageBuilder()

    with pytest.raises(DuplicateLayoutError):
        builder.build([_worker_role(scaffold), _worker_role(scaffold)], tmp_path / "app.cspkg")
    assert builder.state is BuildState.FAILED


def test_pipeline_steps_must_run_in_order(tmp_path: Path) -> None:
    builder = PackageBuilder()
    with pytest.raises(PackageStateError):
        builder.seal(tmp_path / "app.cspkg")

    builder.process_roles([Role(name="WorkerRole1", files=[RoleFile("a.txt", BufferOrigin(b"a"))])])
    assert builder.state is BuildState.ROLE_PROCESSING
    builder.write_manifest()
    assert builder.state is BuildState.MANIFEST_WRITTEN
    with pytest.raises(PackageStateError):
        builder.process_roles([])
    with pytest.raises(PackageStateError):
        builder.add_named_streams({"late": BufferOrigin(b"late")})

    builder.seal(tmp_path / "app.cspkg")
    assert builder.state is BuildState.SEALED
    with pytest.raises(PackageStateError):
        builder.write_manifest()


def test_settings_control_hashing_and_compression(scaffold: Dict[str, Path], tmp_path: Path) -> None:
    settings = PackageSettings(hashing_algorithm="none", compression="deflated", max_workers=1)
    builder = PackageBuilder(settings=settings)
    result = builder.build([_worker_role(scaffold)], tmp_path / "app.cspkg")

    manifest = read_manifest(ZipContentStore(result.archive).get_content("package.xml"))
    assert all(content.integrity is None for content in manifest.contents)
    assert result.contents == len(scaffold)


def test_staging_directory_removed_after_build(scaffold: Dict[str, Path], tmp_path: Path) -> None:
    staging = tmp_path / "staging"
    result = PackageBuilder(staging_dir=staging).build([_worker_role(scaffold)], tmp_path / "app.cspkg")

    assert result.archive.is_file()
    assert not staging.exists()


@pytest.mark.parametrize("max_workers", [1, 4])
def test_links_resolve_to_their_own_roles_files(tmp_path: Path, max_workers: int) -> None:
    roles = [
        Role(name="WebRole", files=[RoleFile("approot/web.config", BufferOrigin(b"web role config"))]),
        Role(
            name="WorkerRole",
            files=[
                RoleFile("approot/web.config", BufferOrigin(b"worker role config")),
                RoleFile("approot/web.copy.config", links_to="approot/web.config"),
            ],
        ),
    ]
    builder = PackageBuilder(settings=PackageSettings(max_workers=max_workers))
    result = builder.build(roles, tmp_path / "app.cspkg")

    archive = ZipContentStore(result.archive)
    manifest = read_manifest(archive.get_content("package.xml"))
    layout = manifest.layout("Roles/WorkerRole")
    copy = next(item for item in layout.files if item.file_path == "\\approot\\web.copy.config")
    assert archive.get_content(copy.data_content_reference) == b"worker role config"
    assert verify_package(archive) == []


def test_archive_failure_marks_build_failed(tmp_path: Path) -> None:
    output = tmp_path / "app.cspkg"
    output.mkdir()
    role = Role(name="WorkerRole1", files=[RoleFile("a.txt", BufferOrigin(b"a"))])
    builder = PackageBuilder()

    with pytest.raises(ContentIOError):
        builder.build([role], output)
    assert builder.state is BuildState.FAILED
    assert output.is_dir()
    with pytest.raises(PackageStateError):
        builder.seal(tmp_path / "retry.cspkg")
