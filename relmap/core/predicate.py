"""Predicate trees for filters and join conditions.

Predicates are immutable values. ``and_`` and ``or_`` drop ``None``
operands, so optional filters compose without conditionals::

    and_(eq("users.id", user_id), gte("users.age", min_age) if min_age is not None else None)

A predicate that is entirely omitted (``None``) means "no condition".
"""

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

from relmap.validation import CompilationError


@dataclass(frozen=True)
class ColumnRef:
    """Reference to a column through a query alias.

    ``alias`` is ``None`` for bare column names, which bind to the root
    entity of the query they are used in.
    """

    alias: str | None
    column: str

    def __str__(self) -> str:
        return f"{self.alias}.{self.column}" if self.alias else self.column


@dataclass(frozen=True)
class AggRef:
    """Reference to an aggregate output by its alias (for HAVING/ORDER BY)."""

    name: str

    def __str__(self) -> str:
        return self.name


def col(ref: "str | ColumnRef") -> ColumnRef:
    """Parse ``"alias.column"`` (or a bare ``"column"``) into a ColumnRef."""
    if isinstance(ref, ColumnRef):
        return ref
    if not isinstance(ref, str) or not ref:
        raise CompilationError(f"Invalid column reference: {ref!r}")
    alias, sep, column = ref.rpartition(".")
    if sep and (not alias or not column):
        raise CompilationError(f"Invalid column reference: {ref!r}")
    return ColumnRef(alias or None, column)


def agg_ref(name: str) -> AggRef:
    return AggRef(name)


def _operand(ref) -> "ColumnRef | AggRef":
    if isinstance(ref, AggRef):
        return ref
    return col(ref)


class Predicate:
    """Base class for predicate tree nodes."""

    def refs(self) -> Iterator[ColumnRef]:
        """Yield every column reference in the tree."""
        raise NotImplementedError

    def bind(self, fn: Callable[[ColumnRef], ColumnRef]) -> "Predicate":
        """Return a copy with every column reference passed through ``fn``."""
        raise NotImplementedError

    def __and__(self, other: "Predicate | None") -> "Predicate":
        return and_(self, other)

    def __or__(self, other: "Predicate | None") -> "Predicate":
        return or_(self, other)

    def __invert__(self) -> "Predicate":
        return Not(self)


def _bind_operand(value, fn):
    return fn(value) if isinstance(value, ColumnRef) else value


@dataclass(frozen=True)
class Comparison(Predicate):
    left: ColumnRef | AggRef
    op: str
    right: Any

    def refs(self):
        for side in (self.left, self.right):
            if isinstance(side, ColumnRef):
                yield side

    def bind(self, fn):
        return Comparison(_bind_operand(self.left, fn), self.op, _bind_operand(self.right, fn))


@dataclass(frozen=True)
class NullCheck(Predicate):
    column: ColumnRef | AggRef
    negate: bool = False

    def refs(self):
        if isinstance(self.column, ColumnRef):
            yield self.column

    def bind(self, fn):
        return NullCheck(_bind_operand(self.column, fn), self.negate)


@dataclass(frozen=True)
class InList(Predicate):
    column: ColumnRef
    values: tuple
    negate: bool = False

    def refs(self):
        yield self.column

    def bind(self, fn):
        return InList(fn(self.column), self.values, self.negate)


@dataclass(frozen=True)
class Like(Predicate):
    column: ColumnRef
    pattern: str

    def refs(self):
        yield self.column

    def bind(self, fn):
        return Like(fn(self.column), self.pattern)


@dataclass(frozen=True)
class And(Predicate):
    operands: tuple[Predicate, ...]

    def refs(self):
        for operand in self.operands:
            yield from operand.refs()

    def bind(self, fn):
        return And(tuple(o.bind(fn) for o in self.operands))


@dataclass(frozen=True)
class Or(Predicate):
    operands: tuple[Predicate, ...]

    def refs(self):
        for operand in self.operands:
            yield from operand.refs()

    def bind(self, fn):
        return Or(tuple(o.bind(fn) for o in self.operands))


@dataclass(frozen=True)
class Not(Predicate):
    operand: Predicate

    def refs(self):
        yield from self.operand.refs()

    def bind(self, fn):
        return Not(self.operand.bind(fn))


def _compare(column, op: str, value) -> Predicate:
    if value is None:
        raise CompilationError(f"Cannot compare {column} with NULL using '{op}'; use is_null()")
    return Comparison(_operand(column), op, value)


def eq(column, value) -> Predicate:
    """``column = value``; a ``None`` value means ``IS NULL``."""
    if value is None:
        return NullCheck(_operand(column))
    return Comparison(_operand(column), "=", value)


def ne(column, value) -> Predicate:
    """``column <> value``; a ``None`` value means ``IS NOT NULL``."""
    if value is None:
        return NullCheck(_operand(column), negate=True)
    return Comparison(_operand(column), "!=", value)


def gt(column, value) -> Predicate:
    return _compare(column, ">", value)


def gte(column, value) -> Predicate:
    return _compare(column, ">=", value)


def lt(column, value) -> Predicate:
    return _compare(column, "<", value)


def lte(column, value) -> Predicate:
    return _compare(column, "<=", value)


def in_(column, values) -> Predicate:
    """``column IN (values)``; an empty list matches nothing."""
    return InList(col(column), tuple(values))


def not_in(column, values) -> Predicate:
    return InList(col(column), tuple(values), negate=True)


def like(column, pattern: str) -> Predicate:
    return Like(col(column), pattern)


def is_null(column) -> Predicate:
    return NullCheck(_operand(column))


def is_not_null(column) -> Predicate:
    return NullCheck(_operand(column), negate=True)


def _flatten(kind, operands) -> list[Predicate]:
    flat = []
    for operand in operands:
        if operand is None:
            continue
        if not isinstance(operand, Predicate):
            raise CompilationError(f"Expected a predicate, got {operand!r}")
        if isinstance(operand, kind):
            flat.extend(operand.operands)
        else:
            flat.append(operand)
    return flat


def and_(*operands: Predicate | None) -> Predicate | None:
    """Conjunction of the non-``None`` operands (``None`` if there are none)."""
    flat = _flatten(And, operands)
    if not flat:
        return None
    if len(flat) == 1:
        return flat[0]
    return And(tuple(flat))


def or_(*operands: Predicate | None) -> Predicate | None:
    """Disjunction of the non-``None`` operands (``None`` if there are none)."""
    flat = _flatten(Or, operands)
    if not flat:
        return None
    if len(flat) == 1:
        return flat[0]
    return Or(tuple(flat))


def not_(operand: Predicate | None) -> Predicate | None:
    if operand is None:
        return None
    return Not(operand)
