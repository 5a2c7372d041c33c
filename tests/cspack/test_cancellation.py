"""Tests for the cancellation primitives used by concurrent role processing."""

import pytest

from CsPack.cancellation import CancellationToken, CancellationTokenGroup, RoleCancelled
from CsPack.errors import CsPackError


def test_tokens_created_after_cancel_all_are_cancelled() -> None:
    group = CancellationTokenGroup()
    first = group.create_token()
    assert not first.is_cancelled()

    group.cancel_all()

    assert first.is_cancelled()
    assert group.create_token().is_cancelled()
    assert group.cancelled
    assert len(group) == 2


def test_raise_if_cancelled() -> None:
    token = CancellationToken()
    token.raise_if_cancelled("role 'WorkerRole1'")

    token.cancel()
    with pytest.raises(RoleCancelled, match="WorkerRole1") as excinfo:
        token.raise_if_cancelled("role 'WorkerRole1'")
    assert isinstance(excinfo.value, CsPackError)
