"""Cooperative cancellation for concurrent role processing.

A package build processes roles in parallel.  When one role fails, the
remaining role tasks are asked to stop at their next file boundary instead of
being interrupted, so a task never abandons a half-written store entry.  Their
results are discarded by the builder either way.
"""

from __future__ import annotations

import threading

from .errors import CsPackError

__all__ = ["RoleCancelled", "CancellationToken", "CancellationTokenGroup"]


class RoleCancelled(CsPackError):
    """Raised inside a role task once its token has been cancelled."""


class CancellationToken:
    """Thread-safe flag checked by a role task between file additions.

    Examples:
        >>> token = CancellationToken()
        >>> token.cancel()
        >>> token.is_cancelled()
        True
    """

    def __init__(self) -> None:
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def raise_if_cancelled(self, what: str = "task") -> None:
        """Raise :class:`RoleCancelled` when cancellation has been requested."""

        if self._cancelled.is_set():
            raise RoleCancelled(f"{what} cancelled after a sibling failure")


class CancellationTokenGroup:
    """Tokens for every role task of one build, cancelled together on first failure."""

    def __init__(self) -> None:
        self._tokens: list[CancellationToken] = []
        self._lock = threading.Lock()
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def create_token(self) -> CancellationToken:
        """Return a new token; already cancelled if the group has been."""

        token = CancellationToken()
        with self._lock:
            self._tokens.append(token)
            if self._cancelled:
                token.cancel()
        return token

    def cancel_all(self) -> None:
        with self._lock:
            self._cancelled = True
            for token in self._tokens:
                token.cancel()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


# === NAVMAP v1 ===
# {
#   "module": "CsPack.cancellation",
#   "purpose": "Cooperative cancellation tokens shared by concurrent role tasks",
#   "sections": [
#     {"id": "token", "name": "CancellationToken", "anchor": "TOK", "kind": "api"},
#     {"id": "group", "name": "CancellationTokenGroup", "anchor": "GRP", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
