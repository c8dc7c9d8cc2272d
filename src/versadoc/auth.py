"""Caller identity providers.

Repositories never authenticate anyone themselves. They ask an
``AuthProvider`` who the current caller is and pass that identity down to
the store, which evaluates access rules per query.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Protocol, runtime_checkable


@runtime_checkable
class AuthProvider(Protocol):
    """Anything that can name the identity behind the current request."""

    def current_identity(self) -> str | None: ...


class StaticAuth:
    """Always reports the same identity (``None`` means anonymous)."""

    def __init__(self, identity: str | None = None) -> None:
        self.identity = identity

    def current_identity(self) -> str | None:
        return self.identity

    def __repr__(self) -> str:
        return f"StaticAuth({self.identity!r})"


class ContextAuth:
    """Request-scoped identity backed by a ``ContextVar``.

    Each thread and asyncio task sees its own value::

        auth = ContextAuth()
        with auth.acting_as("user-1"):
            repo.save(doc)
    """

    def __init__(self, name: str = "versadoc_identity") -> None:
        self._var: ContextVar[str | None] = ContextVar(name, default=None)

    def current_identity(self) -> str | None:
        return self._var.get()

    @contextmanager
    def acting_as(self, identity: str | None) -> Iterator[None]:
        token = self._var.set(identity)
        try:
            yield
        finally:
            self._var.reset(token)
