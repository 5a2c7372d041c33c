"""Deduplication policies plugged into :class:`CsPack.catalog.ContentCatalog`.

A policy answers two questions for the catalog: what fingerprint (if any) a
content origin carries, and whether contents in a given store may be reused by
fingerprint.  ``NoDeduplication`` disables hashing entirely, so manifests omit
the integrity fields; ``HashDeduplication`` hashes every origin and reuses
``LocalContent`` blobs whose digest already appears in the catalog.
"""

from __future__ import annotations

from typing import Iterable, Optional, Protocol

from .checksums import ContentHasher, normalize_algorithm
from .models import ContentOrigin, IntegrityCheck
from .naming import DEDUPLICATED_STORES

__all__ = [
    "DeduplicationStrategy",
    "NoDeduplication",
    "HashDeduplication",
    "strategy_for",
]


class DeduplicationStrategy(Protocol):
    """Policy deciding how content identity is computed and reused."""

    def fingerprint(self, origin: ContentOrigin) -> Optional[IntegrityCheck]:
        """Return the digest recorded for ``origin``, or ``None`` when hashing is off."""
        ...

    def deduplicates(self, store: str) -> bool:
        """Return ``True`` when contents of ``store`` may be shared by digest."""
        ...


class NoDeduplication:
    """Never hash, never reuse."""

    def fingerprint(self, origin: ContentOrigin) -> Optional[IntegrityCheck]:
        return None

    def deduplicates(self, store: str) -> bool:
        return False

    def __repr__(self) -> str:
        return "NoDeduplication()"


class HashDeduplication:
    """Hash every origin and reuse identical payloads within the eligible stores."""

    def __init__(
        self,
        hasher: Optional[ContentHasher] = None,
        *,
        stores: Iterable[str] = DEDUPLICATED_STORES,
    ) -> None:
        self.hasher = hasher or ContentHasher()
        self.stores = frozenset(stores)

    def fingerprint(self, origin: ContentOrigin) -> Optional[IntegrityCheck]:
        return self.hasher.digest(origin)

    def deduplicates(self, store: str) -> bool:
        return store in self.stores

    def __repr__(self) -> str:
        return f"HashDeduplication(algorithm={self.hasher.algorithm!r}, stores={sorted(self.stores)!r})"


def strategy_for(algorithm: Optional[str]) -> DeduplicationStrategy:
    """Build the policy matching a configured hashing algorithm (``"none"`` disables it)."""

    normalized = normalize_algorithm(algorithm)
    if normalized is None:
        return NoDeduplication()
    return HashDeduplication(ContentHasher(normalized))
