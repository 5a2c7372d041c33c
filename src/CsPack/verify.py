"""Consistency checks for a written package.

``verify_package`` re-reads ``package.xml`` from a store (a staging directory
or a reopened archive) and checks it against the stored bytes:

* every layout file reference resolves to exactly one content definition;
* every content definition exists in the store with the recorded length;
* recorded digests match the stored bytes.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from collections import Counter
from typing import Dict, List

from .checksums import MANIFEST_ALGORITHM_NAMES
from .errors import IntegrityError, NotFoundError
from .manifest import read_manifest
from .naming import PACKAGE_MANIFEST
from .store import ContentStore

__all__ = ["verify_package"]

logger = logging.getLogger(__name__)

_HASHLIB_NAMES: Dict[str, str] = {value: key for key, value in MANIFEST_ALGORITHM_NAMES.items()}


def _stored_digest(store: ContentStore, name: str, algorithm: str) -> str:
    hasher = hashlib.new(algorithm)
    with store.open_content(name) as handle:
        for chunk in iter(lambda: handle.read(65536), b""):
            hasher.update(chunk)
    return base64.b64encode(hasher.digest()).decode("ascii")


def verify_package(store: ContentStore, *, strict: bool = False) -> List[str]:
    """Check the manifest held by ``store`` against the stored contents.

    Args:
        store: Store holding ``package.xml`` and the payloads it references.
        strict: Raise :class:`IntegrityError` instead of returning problems.

    Returns:
        Human-readable problem descriptions; empty when the package is consistent.
    """

    manifest = read_manifest(store.get_content(PACKAGE_MANIFEST))
    problems: List[str] = []

    name_counts = Counter(definition.name for definition in manifest.contents)
    for layout in manifest.layouts:
        for file_definition in layout.files:
            matches = name_counts.get(file_definition.data_content_reference, 0)
            if matches != 1:
                problems.append(
                    f"{layout.name}: {file_definition.file_path} references "
                    f"'{file_definition.data_content_reference}' ({matches} matching contents)"
                )

    for definition in manifest.contents:
        try:
            stat = store.get_content_stat(definition.data_store_path)
        except NotFoundError:
            problems.append(f"{definition.name}: missing from store")
            continue
        if definition.length_in_bytes != stat.size:
            problems.append(
                f"{definition.name}: length {definition.length_in_bytes} recorded, {stat.size} stored"
            )
        if definition.integrity is None:
            continue
        algorithm = _HASHLIB_NAMES.get(definition.integrity.algorithm)
        if algorithm is None:
            problems.append(f"{definition.name}: unknown hash algorithm '{definition.integrity.algorithm}'")
            continue
        actual = _stored_digest(store, definition.data_store_path, algorithm)
        if actual != definition.integrity.value:
            problems.append(f"{definition.name}: hash mismatch")

    if problems:
        logger.warning(
            "package verification failed",
            extra={"stage": "verify", "problems": len(problems)},
        )
        if strict:
            raise IntegrityError(f"package failed verification with {len(problems)} problem(s)", problems=problems)
    else:
        logger.debug("package verified", extra={"stage": "verify", "contents": len(manifest.contents)})
    return problems
