"""Join plan definitions shared by explicit and relation-derived joins."""

from dataclasses import dataclass
from typing import Literal

from relmap.core.predicate import Predicate

JoinKind = Literal["inner", "left"]


@dataclass(frozen=True)
class JoinStep:
    """One join: bring ``entity`` into scope as ``alias`` under condition ``on``."""

    entity: str
    alias: str
    on: Predicate
    kind: JoinKind = "inner"
    relation: str | None = None  # relation name when derived from a relation path


@dataclass(frozen=True)
class JoinPlan:
    """Ordered join steps starting from ``root`` (aliased ``root_alias``)."""

    root: str
    root_alias: str
    steps: tuple[JoinStep, ...] = ()

    def __iter__(self):
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def aliases(self) -> dict[str, str]:
        """Alias to entity name for every entity in scope."""
        scope = {self.root_alias: self.root}
        for step in self.steps:
            scope[step.alias] = step.entity
        return scope

    @property
    def target_alias(self) -> str:
        """Alias of the last entity brought into scope."""
        return self.steps[-1].alias if self.steps else self.root_alias
