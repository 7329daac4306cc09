"""Validation and error handling for the relational core."""

from typing import TYPE_CHECKING

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError

from relmap.db.base import validate_identifier

if TYPE_CHECKING:
    from relmap.core.entity import Entity
    from relmap.core.registry import Registry


class RelmapError(Exception):
    """Base class for every error raised by relmap."""

    pass


class RegistrationError(RelmapError):
    """Raised when an entity or relation definition is invalid or conflicting."""

    pass


class ConfigurationStateError(RegistrationError):
    """Raised when the registry is modified after it has been frozen."""

    pass


class ResolutionError(RelmapError):
    """Raised when an entity, column or relation path cannot be resolved."""

    pass


class CompilationError(RelmapError):
    """Raised when a query descriptor is malformed.

    Always raised before any statement reaches the backend.
    """

    pass


class ExecutionError(RelmapError):
    """Raised when the backend rejects or fails a statement."""

    pass


class TransactionStateError(ExecutionError):
    """Raised on an invalid transaction state transition."""

    pass


class MappingError(RelmapError):
    """Raised when a result row cannot be mapped to a record."""

    pass


def validate_entity(entity: "Entity", registry: "Registry") -> list[str]:
    """Validate an entity definition against the registry.

    Args:
        entity: Entity to validate
        registry: Registry the entity is being registered into

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    for value, label in ((entity.name, "entity name"), (entity.table, "table name")):
        try:
            validate_identifier(value, label)
        except ValueError as e:
            errors.append(str(e))

    if not entity.columns:
        errors.append(f"Entity '{entity.name}' must define at least one column")

    seen = set()
    for column in entity.columns:
        try:
            validate_identifier(column.name, "column name")
        except ValueError as e:
            errors.append(f"Entity '{entity.name}': {e}")
        if column.name in seen:
            errors.append(f"Entity '{entity.name}': duplicate column '{column.name}'")
        seen.add(column.name)

    flagged = [c.name for c in entity.columns if c.primary_key]
    if entity.primary_key and flagged and tuple(flagged) != tuple(entity.primary_key):
        errors.append(
            f"Entity '{entity.name}': primary_key {list(entity.primary_key)} conflicts with "
            f"columns flagged as primary key {flagged}"
        )
    pk = entity.primary_key_columns
    if not pk:
        errors.append(f"Entity '{entity.name}' must have a primary key defined")
    for name in pk:
        if name not in seen:
            errors.append(f"Entity '{entity.name}': primary key column '{name}' does not exist")

    for column in entity.columns:
        if column.autoincrement and (pk != (column.name,) or column.type != "integer"):
            errors.append(
                f"Entity '{entity.name}': autoincrement column '{column.name}' must be the single integer primary key"
            )
        if column.generated and (column.default is not None or column.default_factory or column.server_default):
            errors.append(f"Entity '{entity.name}': generated column '{column.name}' cannot declare a default")
        if column.generated:
            errors.extend(_validate_generated(entity, column.name, column.generated, seen))
        if column.references is not None:
            errors.extend(_validate_foreign_key(entity, column, registry))

    for constraint in entity.unique:
        for name in constraint:
            if name not in seen:
                errors.append(f"Entity '{entity.name}': unique constraint column '{name}' does not exist")

    index_names = set()
    for index in entity.indexes:
        if index.name in index_names:
            errors.append(f"Entity '{entity.name}': duplicate index '{index.name}'")
        index_names.add(index.name)
        for name in index.columns:
            if name not in seen:
                errors.append(f"Entity '{entity.name}': index '{index.name}' column '{name}' does not exist")

    return errors


def _validate_generated(entity: "Entity", column: str, expression: str, columns: set[str]) -> list[str]:
    try:
        parsed = sqlglot.parse_one(expression)
    except ParseError as e:
        return [f"Entity '{entity.name}': generated column '{column}' has invalid expression: {e}"]

    errors = []
    for ref in parsed.find_all(exp.Column):
        if ref.name == column:
            errors.append(f"Entity '{entity.name}': generated column '{column}' cannot reference itself")
        elif ref.name not in columns:
            errors.append(
                f"Entity '{entity.name}': generated column '{column}' references unknown column '{ref.name}'"
            )
    return errors


def _validate_foreign_key(entity: "Entity", column, registry: "Registry") -> list[str]:
    ref = column.references
    if ref.entity == entity.name:
        target = entity
    else:
        target = registry.entities.get(ref.entity)
    if target is None:
        return [
            f"Entity '{entity.name}': column '{column.name}' references unregistered entity '{ref.entity}'"
        ]

    target_column = target.get_column(ref.column)
    if target_column is None:
        return [
            f"Entity '{entity.name}': column '{column.name}' references unknown column '{ref.entity}.{ref.column}'"
        ]
    if target.primary_key_columns != (ref.column,):
        return [
            f"Entity '{entity.name}': column '{column.name}' must reference the primary key of "
            f"'{ref.entity}', not '{ref.column}'"
        ]
    if target_column.type != column.type:
        return [
            f"Entity '{entity.name}': column '{column.name}' ({column.type}) does not match the type of "
            f"'{ref.entity}.{ref.column}' ({target_column.type})"
        ]
    return []
