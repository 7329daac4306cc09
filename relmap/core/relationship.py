"""Relationship definitions between entities."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

RelationType = Literal["one_to_one", "one_to_many", "many_to_one", "many_to_many"]


class Relation(BaseModel):
    """Resolved, directed relation between two entities.

    Relation types:
    - many_to_one: source holds a foreign key to target
    - one_to_one: one side holds a unique reference to the other
    - one_to_many: target holds a foreign key to source
    - many_to_many: a join entity holds foreign keys to both sides

    ``source_key`` and ``target_key`` are the columns compared by the join.
    For many_to_many relations they are the two primary keys, and the join
    entity columns ``through_source_key``/``through_target_key`` point at them.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Relation name, unique per source entity")
    source: str = Field(..., description="Source entity name")
    target: str = Field(..., description="Target entity name")
    type: RelationType = Field(..., description="Cardinality")
    source_key: str = Field(..., description="Join column on the source entity")
    target_key: str = Field(..., description="Join column on the target entity")
    through: str | None = Field(default=None, description="Join entity for many_to_many relations")
    through_source_key: str | None = Field(
        default=None, description="Column in the join entity pointing to the source"
    )
    through_target_key: str | None = Field(
        default=None, description="Column in the join entity pointing to the target"
    )

    @property
    def to_many(self) -> bool:
        """Whether a source row relates to any number of target rows."""
        return self.type in ("one_to_many", "many_to_many")

    def edges(self) -> tuple["Relation", ...]:
        """Direct edges this relation traverses.

        A many_to_many relation is two edges: source one_to_many join entity,
        then join entity many_to_one target.
        """
        if self.type != "many_to_many":
            return (self,)
        return (
            Relation(
                name=self.name,
                source=self.source,
                target=self.through,
                type="one_to_many",
                source_key=self.source_key,
                target_key=self.through_source_key,
            ),
            Relation(
                name=self.name,
                source=self.through,
                target=self.target,
                type="many_to_one",
                source_key=self.through_target_key,
                target_key=self.target_key,
            ),
        )
