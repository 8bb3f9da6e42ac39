"""
Backend collaborator interface.

Cached accessors read from the hosted database through this interface:
- Query: a table/view select with filters, ordering, limit and row mode
- Backend: async select/rpc/close protocol implemented by concrete clients
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Protocol


class RowMode(str, Enum):
    """How many rows a select is expected to return."""

    MANY = "many"
    SINGLE = "single"
    MAYBE_SINGLE = "maybe_single"


@dataclass(frozen=True)
class Query:
    """Immutable description of a select against one table or view.

    Builder methods return a new Query, so a base query can be shared.
    """

    table: str
    columns: str = "*"
    filters: tuple[tuple[str, str, Any], ...] = ()
    order: tuple[tuple[str, bool], ...] = ()
    limit: int | None = None
    mode: RowMode = RowMode.MANY

    def eq(self, column: str, value: Any) -> Query:
        return replace(self, filters=self.filters + ((column, "eq", value),))

    def is_(self, column: str, value: Any) -> Query:
        return replace(self, filters=self.filters + ((column, "is", value),))

    def not_is(self, column: str, value: Any) -> Query:
        return replace(self, filters=self.filters + ((column, "not.is", value),))

    def order_by(self, column: str, ascending: bool = True) -> Query:
        return replace(self, order=self.order + ((column, ascending),))

    def limit_to(self, count: int) -> Query:
        if count < 1:
            raise ValueError("limit must be positive")
        return replace(self, limit=count)

    def single(self) -> Query:
        """Expect exactly one row; zero or several is an error."""
        return replace(self, mode=RowMode.SINGLE)

    def maybe_single(self) -> Query:
        """Expect zero or one row; zero yields None."""
        return replace(self, mode=RowMode.MAYBE_SINGLE)


def select(table: str, columns: str = "*") -> Query:
    """Start a query, normalizing multi-line column lists."""
    return Query(table=table, columns="".join(columns.split()))


class Backend(Protocol):
    """Async request/response access to the hosted database."""

    async def select(self, query: Query) -> Any: ...

    async def rpc(self, function: str, params: dict[str, Any] | None = None) -> Any: ...

    async def close(self) -> None: ...
