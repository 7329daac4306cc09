"""Map result rows to typed records."""

from collections.abc import Iterable, Mapping
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, ValidationError, create_model

from relmap.core.column import PYTHON_TYPES
from relmap.core.entity import Entity
from relmap.validation import MappingError

if TYPE_CHECKING:
    from relmap.core.registry import Registry
    from relmap.sql.compiler import Statement


class Record(BaseModel):
    """Base class of generated record models.

    Related records attached by nested fetches are stored as extra attributes.
    """

    model_config = ConfigDict(extra="allow")


def _model_name(entity: Entity) -> str:
    return "".join(part.capitalize() for part in entity.name.split("_")) + "Record"


@lru_cache(maxsize=256)
def record_model(entity: Entity, columns: tuple[str, ...]) -> type[Record]:
    """Pydantic model for a projection of ``entity`` (cached per projection)."""
    fields: dict[str, Any] = {}
    for name in columns:
        column = entity.get_column(name)
        if column is None:
            raise MappingError(f"Unknown column '{name}' on {entity.name}")
        annotation = column.python_type if column.required else column.python_type | None
        fields[name] = (annotation, ...)
    return create_model(_model_name(entity), __base__=Record, **fields)


def _absent(entity: Entity, name: str) -> Any:
    column = entity.get_column(name)
    if column.default is not None:
        return column.default
    if column.nullable:
        return None
    raise MappingError(f"Result row is missing required column {entity.name}.{name}")


def entity_values(row: Mapping[str, Any], entity: Entity, columns: Iterable[tuple[str, str]]) -> dict[str, Any]:
    """Convert stored values of one entity's columns.

    Args:
        row: Raw result row keyed by label
        entity: Entity the columns belong to
        columns: ``(label, column name)`` pairs

    Returns:
        Column name to Python value
    """
    values = {}
    for label, name in columns:
        if label in row:
            try:
                values[name] = entity.get_column(name).from_db(row[label])
            except (TypeError, ValueError) as e:
                raise MappingError(f"Cannot convert {entity.name}.{name} value {row[label]!r}: {e}") from e
        else:
            values[name] = _absent(entity, name)
    return values


def to_record(entity: Entity, values: dict[str, Any], related: dict[str, Any] | None = None) -> Record:
    """Build a record from converted column values plus attached relations."""
    model = record_model(entity, tuple(values))
    try:
        record = model(**values)
    except ValidationError as e:
        raise MappingError(f"Cannot map row to {entity.name}: {e}") from e
    for name, value in (related or {}).items():
        setattr(record, name, value)
    return record


def map_rows(rows: Iterable[Mapping[str, Any]], entity: Entity, columns: Iterable[str] | None = None) -> list[Record]:
    """Map raw rows keyed by column name to records of ``entity``.

    Args:
        rows: Raw rows
        entity: Entity the rows belong to
        columns: Projected columns (all columns when omitted)

    Raises:
        MappingError: If a required column is missing or a value has the wrong type
    """
    names = tuple(columns) if columns is not None else entity.column_names
    pairs = [(name, name) for name in names]
    return [to_record(entity, entity_values(row, entity, pairs)) for row in rows]


def _convert_plain(row: Mapping[str, Any], outputs) -> dict[str, Any]:
    values = {}
    for output in outputs:
        if output.label not in row:
            raise MappingError(f"Result row is missing column '{output.label}'")
        value = row[output.label]
        if value is not None and output.type in ("boolean", "real"):
            value = PYTHON_TYPES[output.type](value)
        values[output.label] = value
    return values


def map_result(rows: list[dict[str, Any]], statement: "Statement", registry: "Registry") -> list:
    """Map the raw rows of a statement according to its result shape."""
    shape = statement.shape
    if shape.mode == "none":
        return []
    if shape.mode in ("rows", "count"):
        return [_convert_plain(row, shape.outputs) for row in rows]
    if shape.mode == "records":
        entity = registry.resolve(shape.entity)
        pairs = [(o.label, o.column) for o in shape.outputs]
        return [to_record(entity, entity_values(row, entity, pairs)) for row in rows]

    groups: dict[str, list] = {}
    for output in shape.outputs:
        groups.setdefault(output.alias, []).append(output)
    mapped = []
    for row in rows:
        joined = {}
        for alias, outputs in groups.items():
            if all(row.get(o.label) is None for o in outputs):
                # Unmatched side of a left join
                joined[alias] = None
                continue
            entity = registry.resolve(outputs[0].entity)
            joined[alias] = to_record(entity, entity_values(row, entity, [(o.label, o.column) for o in outputs]))
        mapped.append(joined)
    return mapped


class ResultSet:
    """Mapped results of one executed statement."""

    def __init__(self, statement: "Statement", rows: list[dict[str, Any]], records: list):
        self.statement = statement
        self.rows = rows
        self.records = records

    def __iter__(self):
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def __getitem__(self, index):
        return self.records[index]

    def __repr__(self) -> str:
        return f"ResultSet({len(self.records)} {self.statement.kind} results)"

    def first(self):
        """First record, or ``None`` for an empty result."""
        return self.records[0] if self.records else None

    def scalar(self):
        """First column of the first raw row, or ``None``."""
        if not self.rows:
            return None
        return next(iter(self.rows[0].values()))
