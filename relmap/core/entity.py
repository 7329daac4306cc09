"""Entity (table) definitions."""

from pydantic import BaseModel, ConfigDict, Field, model_validator

from relmap.core.column import Column


class Index(BaseModel):
    """Named index over one or more columns."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Index name")
    columns: tuple[str, ...] = Field(..., description="Indexed columns")
    unique: bool = Field(default=False, description="Unique index")


class Entity(BaseModel):
    """Entity (table) definition.

    Entities are immutable; the registry hands out the registered instance
    for the lifetime of the process.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Unique entity name")
    table: str = Field(default="", description="Physical table name (defaults to name)")
    description: str | None = Field(None, description="Human-readable description")
    columns: tuple[Column, ...] = Field(default=(), description="Column definitions")
    primary_key: tuple[str, ...] = Field(
        default=(), description="Composite primary key (alternative to flagging columns)"
    )
    unique: tuple[tuple[str, ...], ...] = Field(default=(), description="Unique constraints")
    indexes: tuple[Index, ...] = Field(default=(), description="Index definitions")

    @model_validator(mode="before")
    @classmethod
    def _default_table(cls, data):
        if isinstance(data, dict) and not data.get("table"):
            data = {**data, "table": data.get("name", "")}
        return data

    def __hash__(self) -> int:
        return hash(self.name)

    def get_column(self, name: str) -> Column | None:
        """Get column by name."""
        for column in self.columns:
            if column.name == name:
                return column
        return None

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    @property
    def primary_key_columns(self) -> tuple[str, ...]:
        """Primary key as a tuple of column names."""
        if self.primary_key:
            return tuple(self.primary_key)
        return tuple(c.name for c in self.columns if c.primary_key)

    @property
    def unique_keys(self) -> list[tuple[str, ...]]:
        """Every column set guaranteed unique per row (primary key first)."""
        keys = []
        if self.primary_key_columns:
            keys.append(self.primary_key_columns)
        keys.extend((c.name,) for c in self.columns if c.unique and not c.primary_key)
        keys.extend(tuple(constraint) for constraint in self.unique)
        keys.extend(tuple(index.columns) for index in self.indexes if index.unique)
        return keys

    def is_unique_key(self, columns) -> bool:
        """Whether the given column names cover a unique key."""
        given = set(columns)
        return any(set(key) <= given for key in self.unique_keys)

    def foreign_keys_to(self, target: str) -> list[Column]:
        """Columns of this entity that reference ``target``."""
        return [c for c in self.columns if c.references is not None and c.references.entity == target]
