"""Select query descriptors and their immutable builders."""

from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, ClassVar, Literal

from relmap.core.join import JoinKind, JoinStep
from relmap.core.predicate import AggRef, And, ColumnRef, Comparison, Predicate, and_, col
from relmap.db.base import validate_identifier
from relmap.validation import CompilationError

if TYPE_CHECKING:
    from relmap.core.entity import Entity
    from relmap.core.registry import Registry

AggregateFunc = Literal["count", "count_distinct", "sum", "avg", "min", "max"]

_TYPE_FAMILIES = {"integer": "numeric", "real": "numeric", "boolean": "numeric", "text": "text"}


@dataclass(frozen=True)
class Ordering:
    """One ORDER BY item."""

    target: ColumnRef | AggRef
    desc: bool = False


def asc(ref) -> Ordering:
    return Ordering(ref if isinstance(ref, AggRef) else col(ref))


def desc(ref) -> Ordering:
    return Ordering(ref if isinstance(ref, AggRef) else col(ref), desc=True)


def _parse_ordering(item, aggregates: Sequence[str] = ()) -> Ordering:
    if isinstance(item, Ordering):
        return item
    if isinstance(item, (ColumnRef, AggRef)):
        return Ordering(item)
    if isinstance(item, str):
        descending = item.startswith("-")
        name = item[1:] if descending else item
        target = AggRef(name) if name in aggregates else col(name)
        return Ordering(target, desc=descending)
    raise CompilationError(f"Invalid ordering: {item!r}")


@dataclass(frozen=True)
class Aggregate:
    """Reducer over a column (``column`` is ``None`` for COUNT(*))."""

    func: AggregateFunc
    column: ColumnRef | None = None


def count(column=None) -> Aggregate:
    return Aggregate("count", col(column) if column is not None else None)


def count_distinct(column) -> Aggregate:
    return Aggregate("count_distinct", col(column))


def sum_(column) -> Aggregate:
    return Aggregate("sum", col(column))


def avg(column) -> Aggregate:
    return Aggregate("avg", col(column))


def min_(column) -> Aggregate:
    return Aggregate("min", col(column))


def max_(column) -> Aggregate:
    return Aggregate("max", col(column))


@dataclass(frozen=True)
class Fetch:
    """Nested relation fetch: related records attached to each parent record.

    Nesting ``fetch`` specs is how callers state the fetch depth.
    """

    relation: str
    columns: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    where: Predicate | None = None
    order_by: tuple = ()
    limit: int | None = None
    fetch: tuple["Fetch", ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "exclude", tuple(self.exclude))
        object.__setattr__(self, "order_by", tuple(self.order_by))
        object.__setattr__(self, "fetch", tuple(f if isinstance(f, Fetch) else Fetch(f) for f in self.fetch))


@dataclass(frozen=True)
class OutputColumn:
    """One column of a statement's result."""

    label: str
    type: str
    alias: str | None = None
    entity: str | None = None
    column: str | None = None
    aggregate: Aggregate | None = None


@dataclass(frozen=True)
class SelectDescriptor:
    """Fully specified SELECT. Produced by :meth:`Query.build`."""

    kind: ClassVar[str] = "select"

    entity: str
    alias: str
    columns: tuple[ColumnRef, ...] | None = None
    aggregates: tuple[tuple[str, Aggregate], ...] = ()
    joins: tuple[JoinStep, ...] = ()
    where: Predicate | None = None
    group_by: tuple[ColumnRef, ...] = ()
    having: Predicate | None = None
    order_by: tuple[Ordering, ...] = ()
    limit: int | None = None
    offset: int | None = None
    keyset: bool = False
    cursor: Any = None
    distinct: bool = False
    fetches: tuple[Fetch, ...] = ()
    outputs: tuple[OutputColumn, ...] = ()

    @property
    def aliases(self) -> dict[str, str]:
        """Alias to entity name for every entity in scope."""
        scope = {self.alias: self.entity}
        for step in self.joins:
            scope[step.alias] = step.entity
        return scope

    @property
    def projected_aliases(self) -> list[str]:
        seen = []
        for output in self.outputs:
            if output.alias is not None and output.alias not in seen:
                seen.append(output.alias)
        return seen


@dataclass(frozen=True)
class UnionDescriptor:
    """Deduplicated (or ``all``) union of structurally compatible selects."""

    kind: ClassVar[str] = "union"

    left: "SelectDescriptor | UnionDescriptor"
    right: SelectDescriptor
    all: bool = False
    outputs: tuple[OutputColumn, ...] = ()
    order_by: tuple[Ordering, ...] = ()
    limit: int | None = None
    offset: int | None = None


def _check_count(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise CompilationError(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise CompilationError(f"{name} must be non-negative, got {value}")
    return value


class Query:
    """Immutable SELECT builder.

    Every method returns a new Query; the wrapped descriptor is never
    modified. Column references are checked against the registry as they are
    added, and cross-clause rules are checked by :meth:`build`.

    Example:
        >>> posts = (
        ...     Query.from_entity(registry, "posts")
        ...     .where(gte("posts.created_at", since))
        ...     .order_by("-created_at", "-id")
        ...     .limit(10)
        ... )
    """

    def __init__(self, registry: "Registry", descriptor: SelectDescriptor):
        self.registry = registry
        self._descriptor = descriptor

    @classmethod
    def from_entity(cls, registry: "Registry", entity, alias: str | None = None) -> "Query":
        entity = registry.resolve(entity)
        alias = alias or entity.name
        try:
            validate_identifier(alias, "alias")
        except ValueError as e:
            raise CompilationError(str(e)) from e
        return cls(registry, SelectDescriptor(entity=entity.name, alias=alias))

    @property
    def descriptor(self) -> SelectDescriptor:
        return self._descriptor

    @property
    def entity(self) -> "Entity":
        return self.registry.resolve(self._descriptor.entity)

    def __repr__(self) -> str:
        return f"Query({self._descriptor!r})"

    def _replace(self, **changes) -> "Query":
        return Query(self.registry, replace(self._descriptor, **changes))

    def _entity_for(self, alias: str, aliases: dict[str, str] | None = None) -> "Entity":
        scope = aliases if aliases is not None else self._descriptor.aliases
        if alias not in scope:
            raise CompilationError(f"Unknown alias '{alias}' (in scope: {', '.join(scope)})")
        return self.registry.resolve(scope[alias])

    def _resolve(self, ref, aliases: dict[str, str] | None = None) -> ColumnRef:
        ref = col(ref)
        if ref.alias is None:
            ref = ColumnRef(self._descriptor.alias, ref.column)
        entity = self._entity_for(ref.alias, aliases)
        if entity.get_column(ref.column) is None:
            raise CompilationError(f"Unknown column '{ref.column}' on {ref.alias} ({entity.name})")
        return ref

    def _bind(self, predicate: Predicate, aliases: dict[str, str] | None = None) -> Predicate:
        if not isinstance(predicate, Predicate):
            raise CompilationError(f"Expected a predicate, got {predicate!r}")
        return predicate.bind(lambda ref: self._resolve(ref, aliases))

    def columns(self, *refs) -> "Query":
        """Project explicit columns.

        Each ref is ``"alias.column"``, a bare root column name, or a bare
        alias meaning every column of that entity.
        """
        scope = self._descriptor.aliases
        resolved = []
        for ref in refs:
            if isinstance(ref, str) and "." not in ref and ref in scope:
                entity = self._entity_for(ref)
                resolved.extend(ColumnRef(ref, name) for name in entity.column_names)
            else:
                resolved.append(self._resolve(ref))
        if not resolved:
            raise CompilationError("columns() requires at least one column")
        return self._replace(columns=tuple(dict.fromkeys(resolved)))

    def exclude(self, *names: str) -> "Query":
        """Project every root column except the named ones."""
        entity = self.entity
        unknown = [n for n in names if entity.get_column(n) is None]
        if unknown:
            raise CompilationError(f"Cannot exclude unknown columns {unknown} from {entity.name}")
        kept = [ColumnRef(self._descriptor.alias, c) for c in entity.column_names if c not in names]
        if not kept:
            raise CompilationError(f"Excluding {list(names)} leaves no columns of {entity.name}")
        return self._replace(columns=tuple(kept))

    def where(self, predicate: Predicate | None) -> "Query":
        """Add a filter (ANDed with existing filters). ``None`` adds nothing."""
        if predicate is None:
            return self
        if any(True for _ in _agg_refs(predicate)):
            raise CompilationError("Aggregates can only be filtered with having()")
        return self._replace(where=and_(self._descriptor.where, self._bind(predicate)))

    def join(self, entity, on: Predicate, alias: str | None = None, kind: JoinKind = "inner") -> "Query":
        """Join another entity on an explicit condition."""
        entity = self.registry.resolve(entity)
        alias = alias or entity.name
        try:
            validate_identifier(alias, "alias")
        except ValueError as e:
            raise CompilationError(str(e)) from e
        scope = self._descriptor.aliases
        if alias in scope:
            raise CompilationError(f"Alias '{alias}' is already in use; pass alias=")
        scope[alias] = entity.name
        step = JoinStep(entity=entity.name, alias=alias, on=self._bind(on, scope), kind=kind)
        return self._replace(joins=self._descriptor.joins + (step,))

    def left_join(self, entity, on: Predicate, alias: str | None = None) -> "Query":
        return self.join(entity, on, alias=alias, kind="left")

    def join_related(self, path, kind: JoinKind = "inner", max_depth: int | None = None) -> "Query":
        """Join along a relation path from the root entity."""
        plan = self.registry.relations.expand(
            self._descriptor.entity,
            path,
            max_depth=max_depth,
            kind=kind,
            root_alias=self._descriptor.alias,
            taken=list(self._descriptor.aliases),
        )
        return self._replace(joins=self._descriptor.joins + plan.steps)

    def order_by(self, *items) -> "Query":
        """Order by columns (``"col"``, ``"-col"``, ``asc()``, ``desc()``) or aggregate names."""
        names = [name for name, _ in self._descriptor.aggregates]
        orderings = []
        for item in items:
            ordering = _parse_ordering(item, names)
            if isinstance(ordering.target, AggRef):
                if ordering.target.name not in names:
                    raise CompilationError(f"Unknown aggregate '{ordering.target.name}' in order_by")
            else:
                ordering = Ordering(self._resolve(ordering.target), ordering.desc)
            orderings.append(ordering)
        return self._replace(order_by=self._descriptor.order_by + tuple(orderings))

    def limit(self, n: int) -> "Query":
        return self._replace(limit=_check_count(n, "limit"))

    def offset(self, n: int) -> "Query":
        if self._descriptor.keyset:
            raise CompilationError("Cannot combine offset pagination with keyset pagination")
        return self._replace(offset=_check_count(n, "offset"))

    def after(self, cursor) -> "Query":
        """Keyset pagination: rows strictly after ``cursor`` in the ordering.

        ``None`` selects the first page. Prefer keyset pagination for deep
        pages: offset pagination reads and discards every skipped row,
        whereas a keyset page costs the same wherever it starts.
        """
        if self._descriptor.offset is not None:
            raise CompilationError("Cannot combine keyset pagination with offset pagination")
        return self._replace(keyset=True, cursor=cursor)

    def distinct(self) -> "Query":
        return self._replace(distinct=True)

    def group_by(self, *refs) -> "Query":
        resolved = tuple(self._resolve(ref) for ref in refs)
        return self._replace(group_by=self._descriptor.group_by + resolved)

    def aggregate(self, **reducers: Aggregate) -> "Query":
        """Add named reducers (``total=sum_("orders.amount")``)."""
        added = []
        for name, reducer in reducers.items():
            if not isinstance(reducer, Aggregate):
                raise CompilationError(f"Aggregate '{name}' must be an Aggregate, got {reducer!r}")
            try:
                validate_identifier(name, "aggregate name")
            except ValueError as e:
                raise CompilationError(str(e)) from e
            column = self._resolve(reducer.column) if reducer.column is not None else None
            added.append((name, Aggregate(reducer.func, column)))
        existing = {name for name, _ in self._descriptor.aggregates}
        duplicates = existing & {name for name, _ in added}
        if duplicates:
            raise CompilationError(f"Duplicate aggregate names: {sorted(duplicates)}")
        return self._replace(aggregates=self._descriptor.aggregates + tuple(added))

    def having(self, predicate: Predicate | None) -> "Query":
        """Filter groups; compare aggregates through ``agg_ref(name)``."""
        if predicate is None:
            return self
        names = {name for name, _ in self._descriptor.aggregates}
        for node_ref in _agg_refs(predicate):
            if node_ref.name not in names:
                raise CompilationError(f"Unknown aggregate '{node_ref.name}' in having")
        return self._replace(having=and_(self._descriptor.having, self._bind(predicate)))

    def fetch(self, relation, **options) -> "Query":
        """Eagerly attach related records (see :class:`Fetch`)."""
        spec = relation if isinstance(relation, Fetch) else Fetch(relation, **options)
        spec = self._check_fetch(self._descriptor.entity, spec, [spec.relation])
        return self._replace(fetches=self._descriptor.fetches + (spec,))

    def _check_fetch(self, entity_name: str, spec: Fetch, path: list[str]) -> Fetch:
        relations = self.registry.relations
        relation = relations.get_relation(entity_name, spec.relation)
        # Nested fetch specs carry their depth explicitly
        relations.expand(self._descriptor.entity, path, max_depth=len(path))

        target = self.registry.resolve(relation.target)
        if spec.columns and spec.exclude:
            raise CompilationError(f"Fetch '{spec.relation}' cannot set both columns and exclude")
        for name in spec.columns + spec.exclude:
            if target.get_column(name) is None:
                raise CompilationError(f"Unknown column '{name}' on {target.name} in fetch '{spec.relation}'")

        def resolve(ref):
            ref = col(ref)
            if ref.alias not in (None, target.name) or target.get_column(ref.column) is None:
                raise CompilationError(f"Unknown column '{ref}' in fetch '{spec.relation}'")
            return ColumnRef(target.name, ref.column)

        where = spec.where.bind(resolve) if spec.where is not None else None
        order_by = []
        for item in spec.order_by:
            ordering = _parse_ordering(item)
            if isinstance(ordering.target, AggRef):
                raise CompilationError(f"Fetch '{spec.relation}' cannot order by aggregates")
            order_by.append(Ordering(resolve(ordering.target), ordering.desc))
        limit = _check_count(spec.limit, "limit") if spec.limit is not None else None
        if limit is not None and not relation.to_many:
            raise CompilationError(f"Fetch '{spec.relation}' is to-one and cannot be limited")

        nested = tuple(self._check_fetch(target.name, child, path + [child.relation]) for child in spec.fetch)
        return Fetch(
            relation=spec.relation,
            columns=spec.columns,
            exclude=spec.exclude,
            where=where,
            order_by=tuple(order_by),
            limit=limit,
            fetch=nested,
        )

    def union(self, other: "Query", all: bool = False) -> "UnionQuery":
        """Union with a structurally compatible query (checked now)."""
        left = self.build()
        right = other.build() if isinstance(other, Query) else other
        return UnionQuery(self.registry, _make_union(left, right, all))

    def output_columns(self) -> tuple[OutputColumn, ...]:
        return self.build().outputs

    def _outputs(self) -> tuple[OutputColumn, ...]:
        d = self._descriptor
        if d.columns is not None:
            refs = list(d.columns)
        elif d.aggregates:
            refs = list(d.group_by)
        elif d.joins:
            refs = [
                ColumnRef(alias, name)
                for alias in d.aliases
                for name in self._entity_for(alias).column_names
            ]
        else:
            refs = [ColumnRef(d.alias, name) for name in self.entity.column_names]

        qualified = len({ref.alias for ref in refs}) > 1
        outputs = []
        for ref in refs:
            entity = self._entity_for(ref.alias)
            column = entity.get_column(ref.column)
            label = f"{ref.alias}__{ref.column}" if qualified else ref.column
            outputs.append(
                OutputColumn(label=label, type=column.type, alias=ref.alias, entity=entity.name, column=ref.column)
            )
        for name, reducer in d.aggregates:
            outputs.append(OutputColumn(label=name, type=self._aggregate_type(reducer), aggregate=reducer))

        labels = [o.label for o in outputs]
        if len(labels) != len(set(labels)):
            raise CompilationError(f"Duplicate output column names: {labels}")
        return tuple(outputs)

    def _aggregate_type(self, reducer: Aggregate) -> str:
        if reducer.func in ("count", "count_distinct"):
            return "integer"
        if reducer.func == "avg":
            return "real"
        column = self._entity_for(reducer.column.alias).get_column(reducer.column.column)
        if column.type == "text" and reducer.func == "sum":
            raise CompilationError(f"Cannot sum text column {reducer.column}")
        if column.type == "boolean" and reducer.func == "sum":
            return "integer"
        return column.type

    def build(self) -> SelectDescriptor:
        """Validate cross-clause rules and return the final descriptor.

        Raises:
            CompilationError: If the query is malformed
        """
        d = self._descriptor
        outputs = self._outputs()

        if d.aggregates:
            grouped = set(d.group_by)
            loose = [str(ref) for ref in (d.columns or ()) if ref not in grouped]
            if loose:
                raise CompilationError(f"Columns {loose} must appear in group_by when aggregating")
        if d.having is not None and not (d.aggregates or d.group_by):
            raise CompilationError("having() requires aggregate() or group_by()")

        if d.fetches:
            if d.aggregates or d.group_by or d.distinct:
                raise CompilationError("Nested fetches cannot be combined with aggregation or distinct")
            if any(o.alias != d.alias for o in outputs):
                raise CompilationError("Nested fetches require a projection of the root entity only")

        if d.keyset:
            self._check_keyset(d)
        elif (d.limit is not None and d.limit > 0) or d.offset is not None:
            self._check_deterministic_order(d)

        return replace(d, outputs=outputs)

    def _check_keyset(self, d: SelectDescriptor) -> None:
        if d.offset is not None:
            raise CompilationError("Cannot combine keyset pagination with offset pagination")
        if len(d.order_by) != 1 or not isinstance(d.order_by[0].target, ColumnRef):
            raise CompilationError("Keyset pagination requires ordering by exactly one cursor column")
        ref = d.order_by[0].target
        entity = self._entity_for(ref.alias)
        if not entity.is_unique_key([ref.column]):
            raise CompilationError(
                f"Keyset cursor column {ref} must be unique (primary key or unique constraint)"
            )
        repeated = self._unpinned_aliases(d, [ref])
        if repeated:
            raise CompilationError(
                f"Keyset cursor column {ref} repeats across rows joined from {', '.join(repeated)}; "
                f"use limit/offset with an ordering that covers their keys"
            )
        if d.cursor is not None:
            expected = entity.get_column(ref.column).type
            numeric = isinstance(d.cursor, (int, float)) and not isinstance(d.cursor, bool)
            if (expected in ("integer", "real") and not numeric) or (expected == "text" and not isinstance(d.cursor, str)):
                raise CompilationError(f"Cursor {d.cursor!r} is not comparable with {expected} column {ref}")
            if expected == "boolean":
                raise CompilationError(f"Boolean column {ref} cannot be used as a keyset cursor")

    def _check_deterministic_order(self, d: SelectDescriptor) -> None:
        if d.aggregates or d.group_by:
            ordered = {o.target for o in d.order_by}
            if d.group_by and not set(d.group_by) <= ordered:
                raise CompilationError("Paginating grouped rows requires ordering by every group_by column")
            return
        if not d.order_by:
            raise CompilationError("limit/offset require an order_by ending in a unique column")
        ordered = [o.target for o in d.order_by if isinstance(o.target, ColumnRef)]
        unpinned = self._unpinned_aliases(d, ordered)
        if unpinned:
            entity = self._entity_for(unpinned[0])
            keys = ", ".join(f"{unpinned[0]}.{c}" for c in entity.primary_key_columns)
            raise CompilationError(
                f"Ordering must end with a unique tie-break for every row before limit/offset; "
                f"rows of {', '.join(unpinned)} are not identified (e.g. add {keys})"
            )

    def _unpinned_aliases(self, d: SelectDescriptor, ordered: Sequence[ColumnRef]) -> list[str]:
        """Aliases whose row is not identified by the ``ordered`` columns.

        Join equalities carry a known value from one side to the other; an
        alias is identified once one of its unique keys is fully known, and
        then every column of it is known.
        """
        links: dict[ColumnRef, set[ColumnRef]] = {}
        for step in d.joins:
            for left, right in _equalities(step.on):
                links.setdefault(left, set()).add(right)
                links.setdefault(right, set()).add(left)

        known = set(ordered)
        pinned: set[str] = set()
        while True:
            frontier = list(known)
            while frontier:
                for other in links.get(frontier.pop(), ()):
                    if other not in known:
                        known.add(other)
                        frontier.append(other)
            newly = [
                alias
                for alias in d.aliases
                if alias not in pinned
                and any(all(ColumnRef(alias, c) in known for c in key) for key in self._entity_for(alias).unique_keys)
            ]
            if not newly:
                return [alias for alias in d.aliases if alias not in pinned]
            for alias in newly:
                pinned.add(alias)
                known.update(ColumnRef(alias, c) for c in self._entity_for(alias).column_names)

    def with_tie_break(self) -> "Query":
        """Append primary keys until the ordering identifies every result row."""
        query = self
        for alias in self._descriptor.aliases:
            d = query.descriptor
            ordered = [o.target for o in d.order_by if isinstance(o.target, ColumnRef)]
            if alias not in query._unpinned_aliases(d, ordered):
                continue
            keys = [ColumnRef(alias, c) for c in self._entity_for(alias).primary_key_columns]
            query = query.order_by(*[key for key in keys if key not in ordered])
        return query


def _agg_refs(predicate: Predicate):
    """Yield AggRef operands in a predicate tree."""
    for node in _walk(predicate):
        for value in vars(node).values():
            if isinstance(value, AggRef):
                yield value


def _equalities(predicate: Predicate):
    """Yield column pairs a join condition holds equal (top-level conjuncts only)."""
    if isinstance(predicate, And):
        for operand in predicate.operands:
            yield from _equalities(operand)
    elif (
        isinstance(predicate, Comparison)
        and predicate.op == "="
        and isinstance(predicate.left, ColumnRef)
        and isinstance(predicate.right, ColumnRef)
    ):
        yield predicate.left, predicate.right


def _walk(predicate: Predicate):
    yield predicate
    for child in getattr(predicate, "operands", ()):
        yield from _walk(child)
    operand = getattr(predicate, "operand", None)
    if operand is not None:
        yield from _walk(operand)


def _make_union(left, right: SelectDescriptor, all: bool) -> UnionDescriptor:
    for branch in (left, right):
        if isinstance(branch, SelectDescriptor) and (
            branch.order_by or branch.limit is not None or branch.offset is not None or branch.keyset or branch.fetches
        ):
            raise CompilationError("Union branches cannot have ordering, pagination or nested fetches")
    if not isinstance(right, SelectDescriptor):
        raise CompilationError("The right side of a union must be a select query")

    left_outputs, right_outputs = left.outputs, right.outputs
    if len(left_outputs) != len(right_outputs):
        raise CompilationError(
            f"Union branches have {len(left_outputs)} and {len(right_outputs)} columns; they must match"
        )
    for position, (a, b) in enumerate(zip(left_outputs, right_outputs), start=1):
        if _TYPE_FAMILIES[a.type] != _TYPE_FAMILIES[b.type]:
            raise CompilationError(
                f"Union column {position} has incompatible types: {a.label} ({a.type}) vs {b.label} ({b.type})"
            )

    outputs = tuple(
        OutputColumn(label=a.label, type=a.type if a.type == b.type else "real" if "real" in (a.type, b.type) else "integer")
        for a, b in zip(left_outputs, right_outputs)
    )
    return UnionDescriptor(left=left, right=right, all=all, outputs=outputs)


class UnionQuery:
    """Immutable builder for unions; ordering refers to output column names."""

    def __init__(self, registry: "Registry", descriptor: UnionDescriptor):
        self.registry = registry
        self._descriptor = descriptor

    @property
    def descriptor(self) -> UnionDescriptor:
        return self._descriptor

    def _replace(self, **changes) -> "UnionQuery":
        return UnionQuery(self.registry, replace(self._descriptor, **changes))

    def union(self, other: Query, all: bool = False) -> "UnionQuery":
        d = self._descriptor
        if d.order_by or d.limit is not None or d.offset is not None:
            raise CompilationError("Cannot extend a union after ordering or pagination")
        return UnionQuery(self.registry, _make_union(d, other.build(), all))

    def order_by(self, *items) -> "UnionQuery":
        labels = [o.label for o in self._descriptor.outputs]
        orderings = []
        for item in items:
            ordering = _parse_ordering(item)
            target = ordering.target
            name = target.name if isinstance(target, AggRef) else target.column
            if (isinstance(target, ColumnRef) and target.alias is not None) or name not in labels:
                raise CompilationError(f"Unknown union output column '{target}' (available: {labels})")
            orderings.append(Ordering(ColumnRef(None, name), ordering.desc))
        return self._replace(order_by=self._descriptor.order_by + tuple(orderings))

    def limit(self, n: int) -> "UnionQuery":
        return self._replace(limit=_check_count(n, "limit"))

    def offset(self, n: int) -> "UnionQuery":
        return self._replace(offset=_check_count(n, "offset"))

    def output_columns(self) -> tuple[OutputColumn, ...]:
        return self._descriptor.outputs

    def build(self) -> UnionDescriptor:
        d = self._descriptor
        if (d.limit is not None and d.limit > 0) or d.offset is not None:
            ordered = {o.target.column for o in d.order_by}
            if not {o.label for o in d.outputs} <= ordered:
                raise CompilationError("Paginating a union requires ordering by every output column")
        return d


def build_descriptor(query):
    """Return the validated descriptor for a builder or descriptor."""
    if hasattr(query, "build"):
        return query.build()
    return query


