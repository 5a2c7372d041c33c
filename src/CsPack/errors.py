"""Exception hierarchy shared across content staging, manifest, and archive steps.

Packaging spans three phases: staging content into a store, describing it in
the package manifest, and sealing everything into the final archive.  This
module groups the failure modes into a small hierarchy so callers can react to
broad categories (I/O trouble vs. caller contract violations vs. invariant
breaks) while still having access to specialised subclasses.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "CsPackError",
    "ContentIOError",
    "HashError",
    "NotFoundError",
    "DuplicateLayoutError",
    "UnknownLayoutError",
    "DuplicateContentError",
    "DanglingLinkError",
    "IncompleteContentError",
    "PackageStateError",
    "IntegrityError",
    "ConfigError",
]


class CsPackError(RuntimeError):
    """Base exception for package staging, manifest, and archive failures."""


class ContentIOError(CsPackError):
    """Raised when source bytes cannot be read or a destination cannot be written."""

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class HashError(ContentIOError):
    """Raised when hashing a content origin fails part-way through."""


class NotFoundError(CsPackError, KeyError):
    """Raised when a store is asked for a name it does not hold."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Content '{name}' not found in data store")
        self.name = name

    def __str__(self) -> str:
        return self.args[0]


class DuplicateLayoutError(CsPackError):
    """Raised when a layout name is registered twice."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Layout '{name}' already exists")
        self.name = name


class UnknownLayoutError(CsPackError):
    """Raised when a file is added to (or looked up in) a layout that does not exist."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Layout '{name}' does not exist")
        self.name = name


class DuplicateContentError(CsPackError):
    """Raised when a literal-named content is registered twice in the same store."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Content '{name}' already exists")
        self.name = name


class DanglingLinkError(CsPackError):
    """Raised when a link refers to content that was never registered."""

    def __init__(self, name: str, links_to: str) -> None:
        super().__init__(f"Content '{name}' links to unregistered content '{links_to}'")
        self.name = name
        self.links_to = links_to


class IncompleteContentError(CsPackError):
    """Raised when the manifest meets a content definition whose write never completed."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Content '{name}' has no recorded length; its write did not complete")
        self.name = name


class PackageStateError(CsPackError):
    """Raised when a pipeline step runs out of order or after the package is sealed."""


class IntegrityError(CsPackError):
    """Raised when a sealed package fails manifest verification."""

    def __init__(self, message: str, *, problems: Optional[list] = None) -> None:
        super().__init__(message)
        self.problems = list(problems or [])


class ConfigError(CsPackError):
    """Raised when YAML configuration or environment overrides are invalid."""


# === NAVMAP v1 ===
# {
#   "module": "CsPack.errors",
#   "purpose": "Define the exception hierarchy used across staging, manifest, and archive steps",
#   "sections": [
#     {"id": "base", "name": "Base Exceptions", "anchor": "BAS", "kind": "api"},
#     {"id": "io", "name": "I/O & Hashing Errors", "anchor": "IO", "kind": "api"},
#     {"id": "contract", "name": "Caller Contract Violations", "anchor": "CON", "kind": "api"},
#     {"id": "invariant", "name": "Invariant & State Errors", "anchor": "INV", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
