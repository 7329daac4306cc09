"""relmap: schema/relation registry and SQL query engine built on SQLGlot."""

__version__ = "0.1.0"

from relmap.core.column import Column, ForeignKey
from relmap.core.entity import Entity, Index
from relmap.core.mutation import excluded
from relmap.core.predicate import (
    agg_ref,
    and_,
    eq,
    gt,
    gte,
    in_,
    is_not_null,
    is_null,
    like,
    lt,
    lte,
    ne,
    not_,
    not_in,
    or_,
)
from relmap.core.query import Fetch, asc, avg, count, count_distinct, desc, max_, min_, sum_
from relmap.core.registry import Registry
from relmap.validation import (
    CompilationError,
    ConfigurationStateError,
    ExecutionError,
    MappingError,
    RegistrationError,
    RelmapError,
    ResolutionError,
    TransactionStateError,
)

__all__ = [
    "Column",
    "CompilationError",
    "ConfigurationStateError",
    "Database",
    "Entity",
    "ExecutionError",
    "Fetch",
    "ForeignKey",
    "Index",
    "MappingError",
    "Registry",
    "RegistrationError",
    "RelmapError",
    "ResolutionError",
    "TransactionStateError",
    "agg_ref",
    "and_",
    "asc",
    "avg",
    "count",
    "count_distinct",
    "desc",
    "eq",
    "excluded",
    "gt",
    "gte",
    "in_",
    "is_not_null",
    "is_null",
    "like",
    "lt",
    "lte",
    "max_",
    "min_",
    "ne",
    "not_",
    "not_in",
    "or_",
    "sum_",
]


def __getattr__(name):  # Lazy import to avoid opening backends on package import
    if name == "Database":
        from relmap.core.database import Database

        return Database
    raise AttributeError(name)
