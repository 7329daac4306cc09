"""Compile query and mutation descriptors into parameterized SQL."""

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from sqlglot import exp

from relmap.core.mutation import DeleteDescriptor, Excluded, InsertDescriptor, ServerExpr, UpdateDescriptor
from relmap.core.predicate import AggRef, And, ColumnRef, Comparison, InList, Like, Not, NullCheck, Or, Predicate
from relmap.core.query import Aggregate, OutputColumn, SelectDescriptor, UnionDescriptor, build_descriptor
from relmap.validation import CompilationError

if TYPE_CHECKING:
    from relmap.core.column import Column
    from relmap.core.registry import Registry

# Named placeholders as rendered by sqlglot (":p0" for sqlite, "$p0" for duckdb)
_PLACEHOLDER = re.compile(r"[:$@]p(\d+)\b")

_COMPARISONS = {
    "=": exp.EQ,
    "!=": exp.NEQ,
    ">": exp.GT,
    ">=": exp.GTE,
    "<": exp.LT,
    "<=": exp.LTE,
}

_AGGREGATES = {
    "sum": exp.Sum,
    "avg": exp.Avg,
    "min": exp.Min,
    "max": exp.Max,
}

ShapeMode = Literal["records", "joined", "rows", "count", "none"]


@dataclass(frozen=True)
class ResultShape:
    """How the rows of a statement map back to Python values.

    - records: one record per row of ``entity``
    - joined: one dict per row, alias -> record (``None`` for unmatched left joins)
    - rows: one plain dict per row (aggregates, unions)
    - count: a single integer
    - none: no rows are returned
    """

    mode: ShapeMode
    outputs: tuple[OutputColumn, ...] = ()
    entity: str | None = None


@dataclass(frozen=True)
class Statement:
    """Compiled SQL with its positional parameters."""

    sql: str
    params: tuple = ()
    shape: ResultShape = ResultShape("none")
    kind: str = "select"
    descriptor: Any = field(default=None, compare=False, repr=False)

    @property
    def returns_rows(self) -> bool:
        return self.shape.mode != "none"


class Binder:
    """Collects bound values and rewrites placeholders to positional ``?``.

    Values are bound to numbered named placeholders while the statement is
    built; :meth:`finalize` renumbers them in the order they appear in the
    rendered SQL.
    """

    def __init__(self):
        self.values: list[Any] = []

    def bind(self, value: Any) -> exp.Placeholder:
        self.values.append(value)
        return exp.Placeholder(this=f"p{len(self.values) - 1}")

    def finalize(self, sql: str) -> tuple[str, tuple]:
        ordered = []

        def positional(match):
            ordered.append(self.values[int(match.group(1))])
            return "?"

        return _PLACEHOLDER.sub(positional, sql), tuple(ordered)


class SQLCompiler:
    """Generates SQL from descriptors using sqlglot.

    Example:
        >>> compiler = SQLCompiler(registry, dialect="sqlite")
        >>> statement = compiler.compile(query.where(eq("users.id", 1)))
        >>> statement.sql
        'SELECT "users"."id" AS "id", ... WHERE "users"."id" = ?'
    """

    def __init__(self, registry: "Registry", dialect: str = "sqlite"):
        self.registry = registry
        self.dialect = dialect

    def compile(self, query) -> Statement:
        """Compile a builder or descriptor into a statement.

        Raises:
            CompilationError: If the descriptor is malformed
        """
        descriptor = build_descriptor(query)
        binder = Binder()

        if isinstance(descriptor, SelectDescriptor):
            sql = self._select(descriptor, binder).sql(dialect=self.dialect)
            shape = self._select_shape(descriptor)
        elif isinstance(descriptor, UnionDescriptor):
            sql = self._union(descriptor, binder).sql(dialect=self.dialect)
            shape = ResultShape("rows", descriptor.outputs)
        elif isinstance(descriptor, InsertDescriptor):
            sql = self._insert(descriptor, binder)
            shape = self._returning_shape(descriptor)
        elif isinstance(descriptor, UpdateDescriptor):
            sql = self._update(descriptor, binder)
            shape = self._returning_shape(descriptor)
        elif isinstance(descriptor, DeleteDescriptor):
            sql = self._delete(descriptor, binder)
            shape = self._returning_shape(descriptor)
        else:
            raise CompilationError(f"Cannot compile {descriptor!r}")

        sql, params = binder.finalize(sql)
        return Statement(sql=sql, params=params, shape=shape, kind=descriptor.kind, descriptor=descriptor)

    def compile_count(self, query) -> Statement:
        """Compile ``SELECT COUNT(*)`` over the rows a select or union would return."""
        descriptor = build_descriptor(query)
        binder = Binder()
        count = exp.alias_(exp.Count(this=exp.Star()), "count", quoted=True)

        if isinstance(descriptor, UnionDescriptor):
            inner = self._union(descriptor, binder)
            counted = exp.select(count).from_(inner.subquery("counted"))
        elif isinstance(descriptor, SelectDescriptor):
            d = descriptor
            if d.aggregates or d.group_by or d.distinct or d.limit is not None or d.offset is not None:
                inner = self._select(d, binder)
                counted = exp.select(count).from_(inner.subquery("counted"))
            else:
                counted = self._from_clause(exp.select(count), d, binder)
        else:
            raise CompilationError(f"Only select queries and unions can be counted, got {descriptor.kind}")

        sql, params = binder.finalize(counted.sql(dialect=self.dialect))
        shape = ResultShape("count", (OutputColumn(label="count", type="integer"),))
        return Statement(sql=sql, params=params, shape=shape, kind="count", descriptor=descriptor)

    def _ident(self, name: str) -> exp.Identifier:
        return exp.to_identifier(name, quoted=True)

    def _quote(self, name: str) -> str:
        return self._ident(name).sql(dialect=self.dialect)

    def _table(self, entity_name: str, alias: str) -> exp.Table:
        entity = self.registry.resolve(entity_name)
        return exp.Table(this=self._ident(entity.table), alias=exp.TableAlias(this=self._ident(alias)))

    def _column(self, ref: ColumnRef, qualify: bool = True) -> exp.Column:
        if qualify and ref.alias is not None:
            return exp.Column(this=self._ident(ref.column), table=self._ident(ref.alias))
        return exp.Column(this=self._ident(ref.column))

    def _column_def(self, ref: ColumnRef, scope: dict[str, str]) -> "Column | None":
        entity_name = scope.get(ref.alias) if ref.alias is not None else None
        if entity_name is None:
            return None
        return self.registry.resolve(entity_name).get_column(ref.column)

    def _aggregate(self, reducer: Aggregate) -> exp.Expression:
        if reducer.column is None:
            return exp.Count(this=exp.Star())
        column = self._column(reducer.column)
        if reducer.func == "count":
            return exp.Count(this=column)
        if reducer.func == "count_distinct":
            return exp.Count(this=exp.Distinct(expressions=[column]))
        return _AGGREGATES[reducer.func](this=column)

    def _predicate(
        self,
        predicate: Predicate,
        binder: Binder,
        scope: dict[str, str],
        qualify: bool = True,
        aggregates: dict[str, Aggregate] | None = None,
    ) -> exp.Expression:
        """Translate a predicate tree; values are bound, never inlined."""

        def operand(ref):
            if isinstance(ref, AggRef):
                if aggregates is None or ref.name not in aggregates:
                    raise CompilationError(f"Unknown aggregate '{ref.name}'")
                return self._aggregate(aggregates[ref.name])
            return self._column(ref, qualify)

        def value(ref, raw):
            column = self._column_def(ref, scope) if isinstance(ref, ColumnRef) else None
            return binder.bind(column.to_db(raw) if column is not None else raw)

        def translate(node):
            if isinstance(node, Comparison):
                left = operand(node.left)
                right = operand(node.right) if isinstance(node.right, ColumnRef) else value(node.left, node.right)
                return _COMPARISONS[node.op](this=left, expression=right)
            if isinstance(node, NullCheck):
                check = exp.Is(this=operand(node.column), expression=exp.Null())
                return exp.Not(this=check) if node.negate else check
            if isinstance(node, InList):
                if not node.values:
                    # Empty IN matches nothing; NOT IN () matches everything
                    return exp.EQ(this=exp.Literal.number(1), expression=exp.Literal.number(1 if node.negate else 0))
                check = exp.In(this=operand(node.column), expressions=[value(node.column, v) for v in node.values])
                return exp.Not(this=check) if node.negate else check
            if isinstance(node, Like):
                return exp.Like(this=operand(node.column), expression=binder.bind(node.pattern))
            if isinstance(node, And):
                return exp.and_(*[translate(o) for o in node.operands])
            if isinstance(node, Or):
                return exp.or_(*[translate(o) for o in node.operands])
            if isinstance(node, Not):
                return exp.Not(this=exp.Paren(this=translate(node.operand)))
            raise CompilationError(f"Unsupported predicate {node!r}")

        return translate(predicate)

    def _from_clause(self, query: exp.Select, d: SelectDescriptor, binder: Binder) -> exp.Select:
        """Add FROM, joins and the row filter (including the keyset cursor)."""
        scope = d.aliases
        query = query.from_(self._table(d.entity, d.alias))
        for step in d.joins:
            on = self._predicate(step.on, binder, scope)
            query = query.join(self._table(step.entity, step.alias), on=on, join_type=step.kind)

        conditions = []
        if d.where is not None:
            conditions.append(self._predicate(d.where, binder, scope))
        if d.keyset and d.cursor is not None:
            ordering = d.order_by[0]
            column = self._column_def(ordering.target, scope)
            comparison = exp.LT if ordering.desc else exp.GT
            conditions.append(
                comparison(this=self._column(ordering.target), expression=binder.bind(column.to_db(d.cursor)))
            )
        if conditions:
            query = query.where(exp.and_(*conditions))
        return query

    def _select(self, d: SelectDescriptor, binder: Binder) -> exp.Select:
        projections = []
        for output in d.outputs:
            if output.aggregate is not None:
                expression = self._aggregate(output.aggregate)
            else:
                expression = self._column(ColumnRef(output.alias, output.column))
            projections.append(exp.alias_(expression, output.label, quoted=True))

        query = exp.select(*projections)
        if d.distinct:
            query = query.distinct()
        query = self._from_clause(query, d, binder)

        if d.group_by:
            query = query.group_by(*[self._column(ref) for ref in d.group_by])
        if d.having is not None:
            query = query.having(self._predicate(d.having, binder, d.aliases, aggregates=dict(d.aggregates)))

        if d.order_by:
            query = query.order_by(*[self._ordering(o.target, o.desc) for o in d.order_by], dialect=self.dialect)
        return self._paginate(query, d.limit, d.offset)

    def _ordering(self, target, descending: bool) -> str:
        if isinstance(target, AggRef):
            expression = self._ident(target.name)
        else:
            expression = self._column(target)
        # Rendered as text so sqlglot applies the dialect's null ordering
        return f"{expression.sql(dialect=self.dialect)} {'DESC' if descending else 'ASC'}"

    def _paginate(self, query: exp.Select, limit: int | None, offset: int | None) -> exp.Select:
        if limit is not None:
            query = query.limit(limit)
        if offset is not None:
            query = query.offset(offset)
        return query

    def _union(self, d: UnionDescriptor, binder: Binder) -> exp.Expression:
        left = self._union(d.left, binder) if isinstance(d.left, UnionDescriptor) else self._select(d.left, binder)
        right = self._select(d.right, binder)
        union = left.union(right, distinct=not d.all)
        if not (d.order_by or d.limit is not None or d.offset is not None):
            return union

        query = exp.select("*").from_(union.subquery("u"))
        if d.order_by:
            query = query.order_by(*[self._ordering(o.target, o.desc) for o in d.order_by], dialect=self.dialect)
        return self._paginate(query, d.limit, d.offset)

    def _select_shape(self, d: SelectDescriptor) -> ResultShape:
        if d.aggregates:
            return ResultShape("rows", d.outputs)
        aliases = d.projected_aliases
        if len(aliases) > 1:
            return ResultShape("joined", d.outputs)
        return ResultShape("records", d.outputs, d.aliases[aliases[0]])

    def _returning_shape(self, d) -> ResultShape:
        if not d.outputs:
            return ResultShape("none")
        return ResultShape("records", d.outputs, d.entity)

    def _assignment(self, name: str, value: Any, binder: Binder, entity) -> str:
        if isinstance(value, Excluded):
            rendered = f"excluded.{self._quote(value.column)}"
        elif isinstance(value, ServerExpr):
            rendered = f"({value.sql})"
        elif isinstance(value, ColumnRef):
            rendered = self._quote(value.column)
        else:
            rendered = binder.bind(entity.get_column(name).to_db(value)).sql(dialect=self.dialect)
        return f"{self._quote(name)} = {rendered}"

    def _returning(self, d) -> str:
        if not d.outputs:
            return ""
        return " RETURNING " + ", ".join(self._quote(o.column) for o in d.outputs)

    def _where(self, d, binder: Binder) -> str:
        if d.where is None:
            return ""
        scope = {d.entity: d.entity}
        return " WHERE " + self._predicate(d.where, binder, scope, qualify=False).sql(dialect=self.dialect)

    def _insert(self, d: InsertDescriptor, binder: Binder) -> str:
        entity = self.registry.resolve(d.entity)
        table = self._quote(entity.table)

        if d.columns:
            columns = ", ".join(self._quote(c) for c in d.columns)
            rows = []
            for row in d.rows:
                values = [
                    binder.bind(entity.get_column(name).to_db(value)).sql(dialect=self.dialect)
                    for name, value in zip(d.columns, row)
                ]
                rows.append(f"({', '.join(values)})")
            sql = f"INSERT INTO {table} ({columns}) VALUES {', '.join(rows)}"
        elif len(d.rows) == 1:
            sql = f"INSERT INTO {table} DEFAULT VALUES"
        else:
            raise CompilationError(f"Cannot insert several rows of {entity.name} without any column values")

        if d.conflict is not None:
            target = f" ({', '.join(self._quote(c) for c in d.conflict.target)})" if d.conflict.target else ""
            if d.conflict.action == "nothing":
                sql += f" ON CONFLICT{target} DO NOTHING"
            else:
                assignments = ", ".join(
                    self._assignment(name, value, binder, entity) for name, value in d.conflict.assignments
                )
                sql += f" ON CONFLICT{target} DO UPDATE SET {assignments}"

        return sql + self._returning(d)

    def _update(self, d: UpdateDescriptor, binder: Binder) -> str:
        entity = self.registry.resolve(d.entity)
        assignments = ", ".join(self._assignment(name, value, binder, entity) for name, value in d.assignments)
        return f"UPDATE {self._quote(entity.table)} SET {assignments}{self._where(d, binder)}{self._returning(d)}"

    def _delete(self, d: DeleteDescriptor, binder: Binder) -> str:
        entity = self.registry.resolve(d.entity)
        return f"DELETE FROM {self._quote(entity.table)}{self._where(d, binder)}{self._returning(d)}"
