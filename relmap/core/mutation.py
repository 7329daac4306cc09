"""Insert, update and delete descriptors and their immutable builders."""

from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, ClassVar, Literal

from relmap.core.predicate import ColumnRef, Predicate, and_, col
from relmap.core.query import OutputColumn
from relmap.validation import CompilationError

if TYPE_CHECKING:
    from relmap.core.entity import Entity
    from relmap.core.registry import Registry


@dataclass(frozen=True)
class Excluded:
    """The value proposed for insertion, inside an ON CONFLICT update."""

    column: str


@dataclass(frozen=True)
class ServerExpr:
    """SQL expression from the schema definition, evaluated by the store."""

    sql: str


def excluded(column: str) -> Excluded:
    return Excluded(column)


@dataclass(frozen=True)
class Conflict:
    """ON CONFLICT clause of an insert."""

    target: tuple[str, ...]
    action: Literal["update", "nothing"]
    assignments: tuple[tuple[str, Any], ...] = ()


@dataclass(frozen=True)
class InsertDescriptor:
    kind: ClassVar[str] = "insert"

    entity: str
    columns: tuple[str, ...] = ()
    rows: tuple[tuple[Any, ...], ...] = ()
    conflict: Conflict | None = None
    outputs: tuple[OutputColumn, ...] = ()


@dataclass(frozen=True)
class UpdateDescriptor:
    kind: ClassVar[str] = "update"

    entity: str
    assignments: tuple[tuple[str, Any], ...] = ()
    where: Predicate | None = None
    outputs: tuple[OutputColumn, ...] = ()


@dataclass(frozen=True)
class DeleteDescriptor:
    kind: ClassVar[str] = "delete"

    entity: str
    where: Predicate | None = None
    outputs: tuple[OutputColumn, ...] = ()


class _Mutation:
    """Shared behavior of the mutation builders."""

    def __init__(self, registry: "Registry", descriptor):
        self.registry = registry
        self._descriptor = descriptor

    @classmethod
    def into(cls, registry: "Registry", entity):
        return cls(registry, cls.descriptor_type(entity=registry.resolve(entity).name))

    @property
    def descriptor(self):
        return self._descriptor

    @property
    def entity(self) -> "Entity":
        return self.registry.resolve(self._descriptor.entity)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._descriptor!r})"

    def _replace(self, **changes):
        return type(self)(self.registry, replace(self._descriptor, **changes))

    def _resolve(self, ref) -> ColumnRef:
        ref = col(ref)
        entity = self.entity
        if ref.alias not in (None, entity.name) or entity.get_column(ref.column) is None:
            raise CompilationError(f"Unknown column '{ref}' on {entity.name}")
        return ColumnRef(entity.name, ref.column)

    def _check_writable(self, name: str) -> None:
        column = self.entity.get_column(name)
        if column is None:
            raise CompilationError(f"Unknown column '{name}' on {self.entity.name}")
        if column.generated:
            raise CompilationError(f"Generated column {self.entity.name}.{name} cannot be written")

    def _check_value(self, name: str, value: Any) -> Any:
        if isinstance(value, Excluded):
            self._check_writable(value.column)
        elif isinstance(value, ColumnRef):
            value = self._resolve(value)
        elif isinstance(value, Predicate):
            raise CompilationError(f"Cannot assign a predicate to {self.entity.name}.{name}")
        return value

    def _on_update_assignments(self, assigned) -> list[tuple[str, Any]]:
        """Assignments for columns with update hooks that were not set explicitly."""
        extra = []
        for column in self.entity.columns:
            if column.name in assigned:
                continue
            if column.on_update is not None:
                extra.append((column.name, column.on_update()))
            elif column.server_onupdate:
                extra.append((column.name, ServerExpr(column.server_onupdate)))
        return extra

    def returning(self, *columns: str):
        """Return the affected rows as records in the same round trip."""
        entity = self.entity
        names = columns or entity.column_names
        outputs = []
        for name in names:
            column = entity.get_column(name)
            if column is None:
                raise CompilationError(f"Unknown column '{name}' on {entity.name} in returning()")
            outputs.append(
                OutputColumn(label=name, type=column.type, alias=entity.name, entity=entity.name, column=name)
            )
        return self._replace(outputs=tuple(outputs))


class Insert(_Mutation):
    """Immutable INSERT builder."""

    descriptor_type = InsertDescriptor

    def values(self, *rows) -> "Insert":
        """Set the rows to insert (dicts keyed by column name).

        Client defaults (``default``/``default_factory``) are evaluated here
        for omitted columns; columns the store fills in are left out.
        """
        if len(rows) == 1 and not isinstance(rows[0], Mapping):
            rows = tuple(rows[0])
        if not rows:
            raise CompilationError("values() requires at least one row")

        entity = self.entity
        resolved = []
        for row in rows:
            if not isinstance(row, Mapping):
                raise CompilationError(f"Insert rows must be mappings, got {row!r}")
            for name in row:
                self._check_writable(name)
            values = {}
            for column in entity.columns:
                if column.name in row:
                    values[column.name] = row[column.name]
                elif column.has_client_default:
                    values[column.name] = column.client_default()
                elif column.required and not column.store_generated:
                    raise CompilationError(f"Missing value for required column {entity.name}.{column.name}")
            resolved.append(values)

        columns = [c for c in entity.column_names if any(c in values for values in resolved)]
        table_rows = []
        for values in resolved:
            for name in columns:
                if name in values:
                    continue
                column = entity.get_column(name)
                if column.store_generated or column.required:
                    raise CompilationError(
                        f"Rows must all supply {entity.name}.{name} or all leave it to the database"
                    )
                values[name] = None
            table_rows.append(tuple(values[name] for name in columns))

        return self._replace(columns=tuple(columns), rows=tuple(table_rows))

    def _conflict_target(self, target) -> tuple[str, ...]:
        target = (target,) if isinstance(target, str) else tuple(target)
        entity = self.entity
        keys = {frozenset(key) for key in entity.unique_keys}
        if frozenset(target) not in keys:
            raise CompilationError(
                f"Conflict target {list(target)} is not a unique key of {entity.name} "
                f"(unique keys: {[list(k) for k in entity.unique_keys]})"
            )
        return target

    def on_conflict_do_update(self, target, set_: Mapping[str, Any] | None = None) -> "Insert":
        """Update the conflicting row instead of inserting (single statement).

        Args:
            target: Unique key column(s) that identify the conflicting row
            set_: Column assignments; values may be literals, ``excluded(col)``
                or column references. Defaults to every inserted non-target
                column taken from the proposed row.
        """
        if not self._descriptor.rows:
            raise CompilationError("Call values() before on_conflict_do_update()")
        target = self._conflict_target(target)

        if set_ is None:
            assignments = [(c, Excluded(c)) for c in self._descriptor.columns if c not in target]
        else:
            assignments = []
            for name, value in set_.items():
                self._check_writable(name)
                assignments.append((name, self._check_value(name, value)))
        assignments += self._on_update_assignments({name for name, _ in assignments})
        if not assignments:
            # A no-op assignment keeps RETURNING populated for conflicting rows
            assignments = [(target[0], Excluded(target[0]))]

        return self._replace(conflict=Conflict(target=target, action="update", assignments=tuple(assignments)))

    def on_conflict_do_nothing(self, target=None) -> "Insert":
        """Skip rows that conflict on ``target`` (any unique key when omitted)."""
        target = self._conflict_target(target) if target is not None else ()
        return self._replace(conflict=Conflict(target=target, action="nothing"))

    def build(self) -> InsertDescriptor:
        if not self._descriptor.rows:
            raise CompilationError(f"Insert into {self._descriptor.entity} has no values()")
        return self._descriptor


class Update(_Mutation):
    """Immutable UPDATE builder; ``on_update`` hooks run at :meth:`build`."""

    descriptor_type = UpdateDescriptor

    def set(self, values: Mapping[str, Any] | None = None, **kwargs) -> "Update":
        merged = dict(self._descriptor.assignments)
        for name, value in {**(values or {}), **kwargs}.items():
            self._check_writable(name)
            if isinstance(value, Excluded):
                raise CompilationError("excluded() is only valid inside on_conflict_do_update()")
            merged[name] = self._check_value(name, value)
        return self._replace(assignments=tuple(merged.items()))

    def where(self, predicate: Predicate | None) -> "Update":
        if predicate is None:
            return self
        bound = predicate.bind(self._resolve)
        return self._replace(where=and_(self._descriptor.where, bound))

    def build(self) -> UpdateDescriptor:
        d = self._descriptor
        if not d.assignments:
            raise CompilationError(f"Update of {d.entity} has no set() values")
        assigned = {name for name, _ in d.assignments}
        return replace(d, assignments=d.assignments + tuple(self._on_update_assignments(assigned)))


class Delete(_Mutation):
    """Immutable DELETE builder."""

    descriptor_type = DeleteDescriptor

    def where(self, predicate: Predicate | None) -> "Delete":
        if predicate is None:
            return self
        bound = predicate.bind(self._resolve)
        return self._replace(where=and_(self._descriptor.where, bound))

    def build(self) -> DeleteDescriptor:
        return self._descriptor
