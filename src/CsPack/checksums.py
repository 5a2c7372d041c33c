"""Content hashing used for deduplication and manifest integrity fields.

Digests are computed by streaming the origin in fixed-size chunks so large
payloads are never materialised in memory, and are recorded in the manifest as
base64 text alongside the algorithm's manifest spelling (``Sha256``).
"""

from __future__ import annotations

import base64
import hashlib
import logging
from pathlib import Path
from typing import Dict, Optional

from .errors import ConfigError, HashError
from .models import BufferOrigin, ContentOrigin, FileOrigin, IntegrityCheck

__all__ = [
    "MANIFEST_ALGORITHM_NAMES",
    "normalize_algorithm",
    "manifest_algorithm_name",
    "encode_digest",
    "compute_file_digest",
    "ContentHasher",
]

logger = logging.getLogger(__name__)

MANIFEST_ALGORITHM_NAMES: Dict[str, str] = {
    "sha1": "Sha1",
    "sha256": "Sha256",
    "sha512": "Sha512",
}
_CHUNK_SIZE = 65536


def normalize_algorithm(algorithm: Optional[str]) -> Optional[str]:
    """Return the lower-case hashlib name, or ``None`` when hashing is disabled."""

    candidate = (algorithm or "sha256").strip().lower()
    if candidate == "none":
        return None
    if candidate not in MANIFEST_ALGORITHM_NAMES:
        raise ConfigError(f"unsupported hashing algorithm '{candidate}'")
    return candidate


def manifest_algorithm_name(algorithm: str) -> str:
    return MANIFEST_ALGORITHM_NAMES[algorithm]


def encode_digest(digest: bytes) -> str:
    return base64.b64encode(digest).decode("ascii")


def compute_file_digest(path: Path, algorithm: str = "sha256", chunk_size: int = _CHUNK_SIZE) -> bytes:
    """Compute the raw digest of the file at ``path``.

    Raises:
        HashError: If the file cannot be opened or a read fails mid-stream.
    """

    hasher = hashlib.new(algorithm)
    try:
        with open(path, "rb") as handle:
            while True:
                chunk = handle.read(chunk_size)
                if not chunk:
                    break
                hasher.update(chunk)
    except OSError as exc:
        raise HashError(f"Failed to hash {path}: {exc}", path=str(path)) from exc
    return hasher.digest()


class ContentHasher:
    """Hash content origins with a fixed algorithm."""

    def __init__(self, algorithm: str = "sha256") -> None:
        normalized = normalize_algorithm(algorithm)
        if normalized is None:
            raise ConfigError("ContentHasher requires a hashing algorithm; got 'none'")
        self.algorithm = normalized

    @property
    def manifest_name(self) -> str:
        return manifest_algorithm_name(self.algorithm)

    def digest(self, origin: ContentOrigin) -> IntegrityCheck:
        """Return the encoded digest of ``origin``."""

        if isinstance(origin, FileOrigin):
            raw = compute_file_digest(origin.path, self.algorithm)
        elif isinstance(origin, BufferOrigin):
            raw = hashlib.new(self.algorithm, origin.data).digest()
        else:
            raise TypeError(f"unsupported content origin: {origin!r}")
        value = encode_digest(raw)
        logger.debug(
            "content hashed",
            extra={"stage": "content", "algorithm": self.algorithm, "digest": value},
        )
        return IntegrityCheck(algorithm=self.manifest_name, value=value)
