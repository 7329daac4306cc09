"""Column definitions."""

from collections.abc import Callable
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ColumnType = Literal["integer", "text", "real", "boolean"]

PYTHON_TYPES: dict[str, type] = {
    "integer": int,
    "text": str,
    "real": float,
    "boolean": bool,
}


class ForeignKey(BaseModel):
    """Reference from a column to the primary key of another entity."""

    model_config = ConfigDict(frozen=True)

    entity: str = Field(..., description="Referenced entity name")
    column: str = Field(default="id", description="Referenced primary key column")

    def __str__(self) -> str:
        return f"{self.entity}.{self.column}"


class Column(BaseModel):
    """Typed column definition.

    Booleans are stored as integers (0/1) and converted back on read.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(..., description="Column name")
    type: ColumnType = Field(..., description="Semantic column type")
    primary_key: bool = Field(default=False, description="Part of the primary key")
    autoincrement: bool = Field(default=False, description="Integer key assigned by the store")
    nullable: bool = Field(default=True, description="Allows NULL values")
    unique: bool = Field(default=False, description="Values are unique across rows")
    default: Any = Field(default=None, description="Static value used when the column is omitted on insert")
    default_factory: Callable[[], Any] | None = Field(
        default=None, description="Callable evaluated at insert time when the column is omitted"
    )
    on_update: Callable[[], Any] | None = Field(
        default=None, description="Callable evaluated at update time when the column is not set"
    )
    server_default: str | None = Field(default=None, description="SQL default evaluated by the store")
    server_onupdate: str | None = Field(default=None, description="SQL expression assigned on every update")
    generated: str | None = Field(default=None, description="Stored generated column expression")
    references: ForeignKey | None = Field(default=None, description="Foreign key target")

    @field_validator("references", mode="before")
    @classmethod
    def _parse_reference(cls, value):
        if isinstance(value, str):
            entity, _, column = value.partition(".")
            return ForeignKey(entity=entity, column=column or "id")
        return value

    @model_validator(mode="before")
    @classmethod
    def _primary_key_not_null(cls, data):
        if isinstance(data, dict) and data.get("primary_key"):
            data = {**data, "nullable": False}
        return data

    @property
    def python_type(self) -> type:
        return PYTHON_TYPES[self.type]

    @property
    def required(self) -> bool:
        """Whether a row can never hold NULL in this column."""
        return not self.nullable

    @property
    def store_generated(self) -> bool:
        """Whether the store may supply the value on insert."""
        return bool(self.autoincrement or self.server_default or self.generated)

    @property
    def has_client_default(self) -> bool:
        return self.default is not None or self.default_factory is not None

    def client_default(self) -> Any:
        """Evaluate the client-side default for an insert."""
        if self.default_factory is not None:
            return self.default_factory()
        return self.default

    def to_db(self, value: Any) -> Any:
        """Convert a Python value to its stored representation."""
        if value is None:
            return None
        if self.type == "boolean":
            return 1 if value else 0
        return value

    def from_db(self, value: Any) -> Any:
        """Convert a stored value back to Python."""
        if value is None:
            return None
        if self.type == "boolean":
            return bool(value)
        if self.type == "real":
            return float(value)
        if self.type == "integer" and not isinstance(value, bool):
            return int(value)
        return value
