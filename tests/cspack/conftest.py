"""Fixtures shared by the package builder tests."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict

import pytest

from CsPack.catalog import ContentCatalog
from CsPack.naming import SequentialIdGenerator
from CsPack.store import FileContentStore, ZipContentStore

from cspack_helpers import BOOTSTRAPPER_CONFIG, CountingStore, bootstrapper_payload


@pytest.fixture(autouse=True)
def _clean_cspack_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.upper().startswith("CSPACK_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def zip_store() -> ZipContentStore:
    return ZipContentStore()


@pytest.fixture
def file_store(tmp_path: Path) -> FileContentStore:
    return FileContentStore(tmp_path / "staging")


@pytest.fixture
def counting_store() -> CountingStore:
    return CountingStore()


@pytest.fixture
def catalog(counting_store: CountingStore) -> ContentCatalog:
    return ContentCatalog(counting_store, id_generator=SequentialIdGenerator())


@pytest.fixture
def scaffold(tmp_path: Path) -> Dict[str, Path]:
    """Lay out a small SDK/application tree on disk and map role paths to files."""

    root = tmp_path / "scaffold"
    files = {
        BOOTSTRAPPER_CONFIG: bootstrapper_payload(),
        "base/x64/WaHostBootstrapper.exe": b"MZ\x90\x00\x03\x00\x00\x00\x04\x00\x00\x00\xff\xff",
        "approot/server.js": b"console.log('hello');\n",
        "approot/package.json": b'{"name": "worker", "version": "1.0.0"}\n',
    }
    mapping: Dict[str, Path] = {}
    for role_path, payload in files.items():
        target = root.joinpath(*role_path.split("/"))
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(payload)
        mapping[role_path] = target
    return mapping
