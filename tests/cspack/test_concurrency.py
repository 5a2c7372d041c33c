"""Property tests: concurrent additions of identical content are written once."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from hypothesis import given, settings, strategies as st

from CsPack.builder import PackageBuilder
from CsPack.catalog import ContentCatalog
from CsPack.manifest import ManifestWriter, read_manifest
from CsPack.models import BufferOrigin, Role, RoleFile
from CsPack.naming import LOCAL_CONTENT, SequentialIdGenerator

from cspack_helpers import CountingStore


@settings(max_examples=20, deadline=None)
@given(
    count=st.integers(min_value=8, max_value=16),
    delays=st.lists(st.floats(min_value=0.0, max_value=0.002), min_size=16, max_size=16),
    payload=st.binary(min_size=1, max_size=256),
)
def test_concurrent_identical_adds_write_once(count: int, delays, payload: bytes) -> None:
    store = CountingStore(delay=0.001)
    catalog = ContentCatalog(store, id_generator=SequentialIdGenerator())
    barrier = threading.Barrier(count)

    def add(index: int):
        barrier.wait()
        time.sleep(delays[index])
        return catalog.add_content_definition(LOCAL_CONTENT, f"role{index}/shared.bin", BufferOrigin(payload))

    with ThreadPoolExecutor(max_workers=count) as executor:
        definitions = list(executor.map(add, range(count)))

    assert store.local_writes() == 1
    assert len(catalog.contents) == 1
    primary = catalog.contents[0]
    assert {definition.name for definition in definitions} == {primary.name}
    for index in range(count):
        found = catalog.get_content_definition_by_raw_name(f"role{index}/shared.bin")
        assert found is not None
        assert found.name == primary.name
        assert found.integrity == primary.integrity
        assert found.length_in_bytes == len(payload)


@settings(max_examples=10, deadline=None)
@given(count=st.integers(min_value=8, max_value=12), workers=st.integers(min_value=2, max_value=8))
def test_concurrent_roles_share_one_blob(count: int, workers: int) -> None:
    store = CountingStore(delay=0.0005)
    roles = [
        Role(
            name=f"WorkerRole{index}",
            files=[
                RoleFile("base/shared.dll", BufferOrigin(b"shared runtime")),
                RoleFile("approot/own.txt", BufferOrigin(f"role {index}".encode())),
                RoleFile("approot/alias.dll", links_to="base/shared.dll"),
            ],
        )
        for index in range(count)
    ]
    builder = PackageBuilder(store, id_generator=SequentialIdGenerator())
    builder.settings.max_workers = workers

    builder.process_roles(roles)

    assert store.local_writes() == count + 1
    manifest = read_manifest(ManifestWriter(builder.catalog).render())
    names = [content.name for content in manifest.contents]
    assert len(names) == len(set(names)) == count + 1
    for layout in manifest.layouts:
        assert len(layout.files) == 3
        for entry in layout.files:
            assert names.count(entry.data_content_reference) == 1
