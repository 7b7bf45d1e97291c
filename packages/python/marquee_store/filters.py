from __future__ import annotations

from typing import Iterator

from sqlalchemy import Select, and_, true
from sqlalchemy.sql.elements import ColumnElement


class FilterSet:
    """
    Named optional predicates, AND-combined.

        filters = FilterSet()
        filters.add("user", wh.c.user_id == user_id)
        filters.add("library", m.c.library_id.notin_(excluded), when=bool(excluded))
        stmt = filters.apply(select(...))
    """

    def __init__(self) -> None:
        self._clauses: dict[str, ColumnElement[bool]] = {}

    def add(self, name: str, clause: ColumnElement[bool], *, when: bool = True) -> FilterSet:
        if when:
            self._clauses[name] = clause
        return self

    def drop(self, name: str) -> FilterSet:
        self._clauses.pop(name, None)
        return self

    @property
    def names(self) -> list[str]:
        return list(self._clauses)

    def __iter__(self) -> Iterator[ColumnElement[bool]]:
        return iter(self._clauses.values())

    def __len__(self) -> int:
        return len(self._clauses)

    def clause(self) -> ColumnElement[bool]:
        if not self._clauses:
            return true()
        return and_(*self._clauses.values())

    def apply(self, stmt: Select) -> Select:
        if not self._clauses:
            return stmt
        return stmt.where(*self._clauses.values())
