"""
Tag vocabulary and ARQL query builder.

Tags are the ledger's only retrieval mechanism, so a misspelled tag name makes
content permanently unqueryable. Tag names are therefore a closed enum, and
:class:`TagList` refuses anything outside it.

ARQL expressions are plain dicts::

    {"op": "equals", "expr1": "Package-Name", "expr2": "lodash"}
    {"op": "and", "expr1": <expr>, "expr2": <expr>}

``from`` and ``to`` are pseudo keys resolved by the gateway against the
transaction owner address and transfer target; ``to = ""`` selects data-only
transactions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

Expr = Dict[str, Any]


class TagName(str, Enum):
    CONTENT_TYPE = "Content-Type"
    APP_NAME = "App-Name"
    APP_VERSION = "App-Version"
    SOURCE = "Source"
    ENV = "ENV"
    PACKAGE_NAME = "Package-Name"
    FILE_NAME = "File-Name"
    PACKAGE_VERSION = "Package-Version"

    def __str__(self) -> str:
        return self.value


class QueryKey(str, Enum):
    FROM = "from"
    TO = "to"

    def __str__(self) -> str:
        return self.value


def _coerce_name(name: Union[TagName, str]) -> TagName:
    if isinstance(name, TagName):
        return name
    try:
        return TagName(name)
    except ValueError:
        raise ValueError(
            f"unknown tag name {name!r}; expected one of {[t.value for t in TagName]}"
        ) from None


@dataclass(frozen=True)
class Tag:
    name: TagName
    value: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _coerce_name(self.name))
        if not isinstance(self.value, str):
            object.__setattr__(self, "value", str(self.value))


class TagList:
    """
    Ordered list of tags restricted to :class:`TagName` keys.

    Order is preserved because it is part of the signed payload.
    """

    def __init__(self, tags: Optional[Iterable[Union[Tag, Tuple[Union[TagName, str], str]]]] = None) -> None:
        self._tags: List[Tag] = []
        for t in tags or ():
            if isinstance(t, Tag):
                self._tags.append(t)
            else:
                self.add(*t)

    def add(self, name: Union[TagName, str], value: str) -> "TagList":
        self._tags.append(Tag(_coerce_name(name), value))
        return self

    def extend(self, other: Iterable[Union[Tag, Tuple[Union[TagName, str], str]]]) -> "TagList":
        for t in TagList(other):
            self._tags.append(t)
        return self

    def get(self, name: Union[TagName, str]) -> Optional[str]:
        key = _coerce_name(name)
        for t in self._tags:
            if t.name is key:
                return t.value
        return None

    def pairs(self) -> List[Tuple[str, str]]:
        return [(t.name.value, t.value) for t in self._tags]

    def __iter__(self) -> Iterator[Tag]:
        return iter(self._tags)

    def __len__(self) -> int:
        return len(self._tags)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, TagList):
            return self._tags == other._tags
        return NotImplemented

    def __repr__(self) -> str:
        return f"TagList({self.pairs()!r})"


# ----------------------------- ARQL ----------------------------------------


def equals(key: Union[TagName, QueryKey, str], value: str) -> Expr:
    if isinstance(key, str) and not isinstance(key, Enum):
        key = QueryKey(key) if key in ("from", "to") else _coerce_name(key)
    return {"op": "equals", "expr1": str(key), "expr2": value}


def and_(*exprs: Expr) -> Expr:
    """
    Conjunction of ``exprs`` as nested binary ``and`` nodes (right-folded).
    A single expression is returned unchanged.
    """
    if not exprs:
        raise ValueError("and_() needs at least one expression")
    if len(exprs) == 1:
        return exprs[0]
    return {"op": "and", "expr1": exprs[0], "expr2": and_(*exprs[1:])}


@dataclass(frozen=True)
class Markers:
    """Fixed ``Source``/``ENV`` markers every query and write carries."""

    source: str
    env: str


def data_query(markers: Markers, *clauses: Expr, from_address: Optional[str] = None) -> Expr:
    """
    Standard conjunction: [from = address] AND to = "" AND Source AND ENV AND clauses...
    """
    parts: List[Expr] = []
    if from_address:
        parts.append(equals(QueryKey.FROM, from_address))
    parts.append(equals(QueryKey.TO, ""))
    parts.append(equals(TagName.SOURCE, markers.source))
    parts.append(equals(TagName.ENV, markers.env))
    parts.extend(clauses)
    return and_(*parts)


def flatten(expr: Expr) -> Sequence[Tuple[str, str]]:
    """(key, value) pairs of a pure conjunction of equalities."""
    if expr.get("op") == "equals":
        return [(expr["expr1"], expr["expr2"])]
    if expr.get("op") == "and":
        return [*flatten(expr["expr1"]), *flatten(expr["expr2"])]
    raise ValueError(f"unsupported ARQL op {expr.get('op')!r}")


__all__ = [
    "Expr",
    "TagName",
    "QueryKey",
    "Tag",
    "TagList",
    "Markers",
    "equals",
    "and_",
    "data_query",
    "flatten",
]
