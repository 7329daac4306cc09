"""Database: the main API tying registry, compiler and backend together."""

import logging
import threading
from collections import defaultdict
from collections.abc import Iterator, Mapping
from dataclasses import replace
from pathlib import Path

from relmap.core.mapping import ResultSet, entity_values, map_result, to_record
from relmap.core.mutation import Delete, Insert, Update
from relmap.core.predicate import ColumnRef, eq, in_
from relmap.core.query import Fetch, Ordering, Query, SelectDescriptor, build_descriptor
from relmap.core.registry import Registry
from relmap.core.transaction import Transaction
from relmap.db import BaseDatabaseAdapter, create_adapter
from relmap.sql.compiler import SQLCompiler, Statement
from relmap.validation import CompilationError, ExecutionError, TransactionStateError

logger = logging.getLogger(__name__)

# Parent keys bound per nested-fetch query; stays under SQLite's bound-variable limit
FETCH_BATCH_SIZE = 500


class Database:
    """Query and mutation execution over one database session.

    Statements are serialized on the session by a reentrant lock; a
    transaction holds the lock for its whole lifetime. The registry is frozen
    the first time anything is compiled.

    Example:
        >>> db = Database(registry, "sqlite:///app.db")
        >>> recent = db.all(db.select("posts").order_by("-created_at", "-id").limit(10))
    """

    def __init__(
        self,
        registry: Registry,
        connection: str | BaseDatabaseAdapter = "sqlite:///:memory:",
        dialect: str | None = None,
        echo: bool = False,
    ):
        """Initialize database.

        Args:
            registry: Registry of entities and relations
            connection: Connection string (``sqlite:///...``, ``duckdb:///...``) or adapter instance
            dialect: SQL dialect for statement generation (defaults to the adapter's)
            echo: Log every statement and its parameters at INFO level
        """
        self.registry = registry
        self.adapter = connection if isinstance(connection, BaseDatabaseAdapter) else create_adapter(connection)
        self.dialect = dialect or self.adapter.dialect
        self.compiler = SQLCompiler(registry, self.dialect)
        self.echo = echo
        self._lock = threading.RLock()
        self._active: Transaction | None = None

    @classmethod
    def from_config(cls, registry: Registry, path: str | Path | None = None) -> "Database":
        """Create a database from a relmap.yaml/relmap.json file.

        Without ``path`` the file is searched for from the current directory
        upwards; if none is found an in-memory SQLite database is used.
        """
        from relmap.config import RelmapConfig, build_connection_string, find_config, load_config

        config_path = Path(path) if path is not None else find_config()
        config = load_config(config_path) if config_path is not None else RelmapConfig()
        return cls(registry, build_connection_string(config), echo=config.echo)

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        with self._lock:
            self.adapter.close()

    def select(self, entity, alias: str | None = None) -> Query:
        return Query.from_entity(self.registry, entity, alias)

    def insert(self, entity) -> Insert:
        return Insert.into(self.registry, entity)

    def update(self, entity) -> Update:
        return Update.into(self.registry, entity)

    def delete(self, entity) -> Delete:
        return Delete.into(self.registry, entity)

    def transaction(self) -> Transaction:
        """Create a transaction; use it as a context manager or call ``begin()``."""
        return Transaction(self)

    def compile(self, query) -> Statement:
        """Compile a query or mutation to SQL without executing it."""
        self.registry.freeze()
        return self.compiler.compile(query)

    def execute(self, query, tx: Transaction | None = None) -> ResultSet:
        """Execute a query, mutation or compiled statement.

        Args:
            query: Builder, descriptor or :class:`Statement`
            tx: Transaction to run in (defaults to the transaction active on
                this thread, if any)

        Raises:
            CompilationError: If the query is malformed (nothing is executed)
            ExecutionError: If the backend rejects the statement
        """
        if tx is not None:
            if tx.database is not self:
                raise TransactionStateError("Transaction belongs to another database")
            return tx.execute(query)
        active = self._active
        if active is not None and active.owned_by_current_thread():
            return active.execute(query)
        with self._lock:
            return self._execute(query)

    def all(self, query, tx: Transaction | None = None) -> list:
        return self.execute(query, tx).records

    def first(self, query, tx: Transaction | None = None):
        """First result, or ``None``.

        Select queries get ``LIMIT 1`` and primary key tie-breaks for every
        entity in scope whose rows the ordering does not identify, so the
        result is the same on every call. ``limit(0)`` is kept.
        """
        if isinstance(query, Query):
            d = query.descriptor
            if not (d.aggregates or d.group_by) and d.limit != 0:
                if not d.keyset:
                    query = query.with_tie_break()
                query = query.limit(1)
        return self.execute(query, tx).first()

    def count(self, query, tx: Transaction | None = None) -> int:
        """Number of rows the query would return, computed by the store."""
        self.registry.freeze()
        statement = self.compiler.compile_count(query)
        return int(self.execute(statement, tx).scalar() or 0)

    def paginate(self, query: Query, page_size: int, tx: Transaction | None = None) -> Iterator[list]:
        """Iterate over keyset pages of ``query``.

        The query must be ordered by exactly one unique, projected column.
        Pages are fetched lazily; iteration stops after the first short page.
        """
        if isinstance(page_size, bool) or not isinstance(page_size, int) or page_size < 1:
            raise CompilationError(f"page_size must be a positive integer, got {page_size!r}")
        d = query.descriptor
        if len(d.order_by) != 1 or not isinstance(d.order_by[0].target, ColumnRef):
            raise CompilationError("paginate() requires ordering by exactly one unique column")
        target = d.order_by[0].target
        labels = [o.label for o in query.output_columns() if o.alias == target.alias and o.column == target.column]
        if not labels:
            raise CompilationError(f"paginate() requires the cursor column {target} to be projected")
        cursor = d.cursor if d.keyset else None
        query.after(cursor).build()

        return self._pages(query, page_size, labels[0], cursor, tx)

    def _pages(self, query: Query, page_size: int, label: str, cursor, tx):
        while True:
            result = self.execute(query.after(cursor).limit(page_size), tx)
            if result.records:
                yield result.records
            if len(result.rows) < page_size:
                return
            cursor = result.rows[-1][label]

    def upsert(self, entity, values: Mapping, conflict_target, update_set: Mapping | None = None, tx=None):
        """Insert a row or update the row it conflicts with, in one statement.

        Args:
            entity: Entity (or name)
            values: Column values of the proposed row
            conflict_target: Unique key column(s) identifying the existing row
            update_set: Assignments applied on conflict (default: every
                inserted non-target column from the proposed row)

        Returns:
            The inserted or updated record
        """
        if not isinstance(values, Mapping):
            raise CompilationError("upsert() takes a single row mapping")
        statement = (
            self.insert(entity)
            .values(values)
            .on_conflict_do_update(conflict_target, update_set)
            .returning()
        )
        return self.execute(statement, tx).first()

    def _wrap_error(self, error: Exception, statement: Statement | None = None) -> ExecutionError:
        message = f"{type(error).__name__}: {error}"
        if statement is not None:
            message += f"\nSQL: {statement.sql}"
        return ExecutionError(message)

    def _run(self, statement: Statement) -> list[dict]:
        """Send one statement to the backend; the caller holds the session lock."""
        level = logging.INFO if self.echo else logging.DEBUG
        logger.log(level, "%s -- params: %s", statement.sql, list(statement.params))
        try:
            return self.adapter.execute(statement.sql, statement.params)
        except self.adapter.error_types as e:
            raise self._wrap_error(e, statement) from e

    def _execute(self, query) -> ResultSet:
        if isinstance(query, Statement):
            self.registry.freeze()
            statement = query
        else:
            descriptor = build_descriptor(query)
            if isinstance(descriptor, SelectDescriptor) and descriptor.fetches:
                return self._execute_with_fetches(descriptor)
            statement = self.compile(descriptor)

        rows = self._run(statement)
        return ResultSet(statement, rows, map_result(rows, statement, self.registry))

    def _execute_with_fetches(self, d: SelectDescriptor) -> ResultSet:
        """Run the root query, then one query per fetched relation level."""
        root = self.registry.resolve(d.entity)
        visible = [o.column for o in d.outputs]
        links = [self.registry.relations.get_relation(root.name, spec.relation).source_key for spec in d.fetches]
        extra = [c for c in dict.fromkeys(links) if c not in visible]
        if extra:
            columns = tuple(ColumnRef(d.alias, c) for c in visible + extra)
            d = Query(self.registry, replace(d, columns=columns, outputs=())).build()

        statement = self.compile(d)
        rows = self._run(statement)
        pairs = [(o.label, o.column) for o in statement.shape.outputs]
        nodes = [(entity_values(row, root, pairs), {}) for row in rows]
        self._load_fetches(root, nodes, d.fetches)
        records = [to_record(root, {c: values[c] for c in visible}, related) for values, related in nodes]
        return ResultSet(statement, rows, records)

    def _load_fetches(self, entity, nodes: list[tuple[dict, dict]], fetches: tuple[Fetch, ...]) -> None:
        """Attach fetched relations to ``nodes`` (column values, related records)."""
        for spec in fetches:
            relation = self.registry.relations.get_relation(entity.name, spec.relation)
            target = self.registry.resolve(relation.target)
            keys = list(dict.fromkeys(v[relation.source_key] for v, _ in nodes if v[relation.source_key] is not None))
            children = []
            for start in range(0, len(keys), FETCH_BATCH_SIZE):
                batch = keys[start : start + FETCH_BATCH_SIZE]
                children.extend(self._fetch_children(relation, target, spec, batch))
            self._load_fetches(target, [node for _, node in children], spec.fetch)

            grouped = defaultdict(list)
            for link, node in children:
                grouped[link].append(node)
            visible = list(spec.columns) or [c for c in target.column_names if c not in spec.exclude]
            for values, related in nodes:
                matches = grouped.get(values[relation.source_key], [])
                if spec.limit is not None:
                    matches = matches[: spec.limit]
                records = [to_record(target, {c: v[c] for c in visible}, r) for v, r in matches]
                if relation.to_many:
                    related[spec.relation] = records
                else:
                    related[spec.relation] = records[0] if records else None

    def _fetch_children(self, relation, target, spec: Fetch, keys: list) -> list[tuple]:
        visible = list(spec.columns) or [c for c in target.column_names if c not in spec.exclude]
        needed = set(visible)
        needed.update(self.registry.relations.get_relation(target.name, child.relation).source_key for child in spec.fetch)

        query = self.select(target.name)
        if relation.through:
            link = ColumnRef(relation.through, relation.through_source_key)
            on = eq(ColumnRef(relation.through, relation.through_target_key), ColumnRef(target.name, relation.target_key))
            query = query.join(relation.through, on=on)
            link_entity = self.registry.resolve(relation.through)
        else:
            link = ColumnRef(target.name, relation.target_key)
            needed.add(relation.target_key)
            link_entity = target

        refs = [ColumnRef(target.name, c) for c in target.column_names if c in needed]
        if relation.through:
            refs.append(link)
        ordered = {o.target for o in spec.order_by}
        tie_break = [Ordering(ColumnRef(target.name, c)) for c in target.primary_key_columns]
        query = (
            query.columns(*refs)
            .where(in_(link, keys))
            .where(spec.where)
            .order_by(*spec.order_by, *[o for o in tie_break if o.target not in ordered])
        )

        statement = self.compile(query)
        rows = self._run(statement)
        outputs = statement.shape.outputs
        pairs = [(o.label, o.column) for o in outputs if o.alias == target.name]
        link_label = next(o.label for o in outputs if o.alias == link.alias and o.column == link.column)
        link_column = link_entity.get_column(link.column)
        return [
            (link_column.from_db(row[link_label]), (entity_values(row, target, pairs), {}))
            for row in rows
        ]

