# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Column filters and their translation to Mango selectors.

Filters are pushed to the store on a best-effort basis. The store may
ignore them, so every reader of a relation re-applies them locally with
``apply_filters`` and ``project``.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

from docbridge.core.models import Document

logger = logging.getLogger(__name__)

_MISSING = object()


class Filter:
    """Base class for column filters."""

    def matches(self, doc: Document) -> bool:
        raise NotImplementedError


def _lookup(doc: Document, attribute: str) -> Any:
    """Resolve a dotted attribute path, or _MISSING."""
    value: Any = doc
    for part in attribute.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _compare(doc: Document, attribute: str, op) -> bool:
    value = _lookup(doc, attribute)
    if value is _MISSING or value is None:
        return False
    try:
        return op(value)
    except TypeError:
        # Incomparable types never match, as in the store
        return False


@dataclass(frozen=True)
class EqualTo(Filter):
    attribute: str
    value: Any

    def matches(self, doc: Document) -> bool:
        return _compare(doc, self.attribute, lambda v: v == self.value)


@dataclass(frozen=True)
class GreaterThan(Filter):
    attribute: str
    value: Any

    def matches(self, doc: Document) -> bool:
        return _compare(doc, self.attribute, lambda v: v > self.value)


@dataclass(frozen=True)
class GreaterThanOrEqual(Filter):
    attribute: str
    value: Any

    def matches(self, doc: Document) -> bool:
        return _compare(doc, self.attribute, lambda v: v >= self.value)


@dataclass(frozen=True)
class LessThan(Filter):
    attribute: str
    value: Any

    def matches(self, doc: Document) -> bool:
        return _compare(doc, self.attribute, lambda v: v < self.value)


@dataclass(frozen=True)
class LessThanOrEqual(Filter):
    attribute: str
    value: Any

    def matches(self, doc: Document) -> bool:
        return _compare(doc, self.attribute, lambda v: v <= self.value)


@dataclass(frozen=True)
class In(Filter):
    attribute: str
    values: tuple

    def matches(self, doc: Document) -> bool:
        return _compare(doc, self.attribute, lambda v: v in self.values)


@dataclass(frozen=True)
class IsNull(Filter):
    attribute: str

    def matches(self, doc: Document) -> bool:
        value = _lookup(doc, self.attribute)
        return value is _MISSING or value is None


@dataclass(frozen=True)
class IsNotNull(Filter):
    attribute: str

    def matches(self, doc: Document) -> bool:
        return not IsNull(self.attribute).matches(doc)


@dataclass(frozen=True)
class StringStartsWith(Filter):
    attribute: str
    value: str

    def matches(self, doc: Document) -> bool:
        return _compare(
            doc, self.attribute,
            lambda v: isinstance(v, str) and v.startswith(self.value),
        )


@dataclass(frozen=True)
class And(Filter):
    left: Filter
    right: Filter

    def matches(self, doc: Document) -> bool:
        return self.left.matches(doc) and self.right.matches(doc)


@dataclass(frozen=True)
class Or(Filter):
    left: Filter
    right: Filter

    def matches(self, doc: Document) -> bool:
        return self.left.matches(doc) or self.right.matches(doc)


@dataclass(frozen=True)
class Not(Filter):
    child: Filter

    def matches(self, doc: Document) -> bool:
        return not self.child.matches(doc)


_OPERATORS = {
    EqualTo: "$eq",
    GreaterThan: "$gt",
    GreaterThanOrEqual: "$gte",
    LessThan: "$lt",
    LessThanOrEqual: "$lte",
}


def _filter_to_selector(f: Filter) -> Optional[dict]:
    """Translate one filter, or None if it cannot be pushed down."""
    op = _OPERATORS.get(type(f))
    if op is not None:
        return {f.attribute: {op: f.value}}
    if isinstance(f, In):
        return {f.attribute: {"$in": list(f.values)}}
    if isinstance(f, IsNull):
        # Missing and explicit null are both null to the query engine
        return {"$or": [{f.attribute: {"$exists": False}}, {f.attribute: None}]}
    if isinstance(f, IsNotNull):
        return {f.attribute: {"$exists": True, "$ne": None}}
    if isinstance(f, StringStartsWith):
        return {f.attribute: {"$regex": "^" + re.escape(f.value)}}
    if isinstance(f, (And, Or)):
        left = _filter_to_selector(f.left)
        right = _filter_to_selector(f.right)
        if left is None or right is None:
            return None
        return {"$and" if isinstance(f, And) else "$or": [left, right]}
    if isinstance(f, Not):
        child = _filter_to_selector(f.child)
        return None if child is None else {"$not": child}
    return None


def to_selector(
    filters: Sequence[Filter],
    base: Optional[dict] = None,
) -> tuple[Optional[dict], list[Filter]]:
    """
    Translate filters into a Mango selector.

    Args:
        filters: Filters to push down (implicitly AND-ed)
        base: Selector configured on the store, combined with the filters

    Returns:
        (selector, unsupported) tuple. ``selector`` is None when nothing
        could be pushed down and no base selector exists.
    """
    clauses = [base] if base else []
    unsupported = []
    for f in filters:
        clause = _filter_to_selector(f)
        if clause is None:
            unsupported.append(f)
        else:
            clauses.append(clause)

    if unsupported:
        logger.debug(f"Filters not pushed down: {unsupported}")

    if not clauses:
        return None, unsupported
    if len(clauses) == 1:
        return clauses[0], unsupported
    return {"$and": clauses}, unsupported


def apply_filters(doc: Document, filters: Iterable[Filter]) -> bool:
    """True if ``doc`` satisfies every filter."""
    return all(f.matches(doc) for f in filters)


def project(doc: Document, columns: Optional[Sequence[str]]) -> Document:
    """Keep only ``columns``, in order. Absent columns are read as null.

    ``None`` keeps every field; an empty sequence keeps none.
    """
    if columns is None:
        return doc
    return {c: doc.get(c) for c in columns}
