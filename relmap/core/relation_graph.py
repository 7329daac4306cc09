"""Relation graph: declared relations and join plan expansion."""

import logging
from collections import deque
from collections.abc import Sequence
from typing import TYPE_CHECKING

from relmap.core.join import JoinKind, JoinPlan, JoinStep
from relmap.core.predicate import ColumnRef, Comparison
from relmap.core.relationship import Relation, RelationType
from relmap.db.base import validate_identifier
from relmap.validation import RegistrationError, ResolutionError

if TYPE_CHECKING:
    from relmap.core.entity import Entity
    from relmap.core.registry import Registry

logger = logging.getLogger(__name__)


def _name(entity) -> str:
    return entity if isinstance(entity, str) else entity.name


class RelationGraph:
    """Relations between registered entities.

    The graph turns relation paths into :class:`JoinPlan` values; it never
    builds SQL itself, so join paths can be checked independently of the
    query compiler.
    """

    def __init__(self, registry: "Registry"):
        self.registry = registry
        self.relations: dict[str, dict[str, Relation]] = {}
        self._join_entities: dict[frozenset, str] = {}  # entity pair -> join entity

    def declare_relation(
        self,
        source,
        name: str,
        target,
        type: RelationType,
        foreign_key: str | None = None,
        references: str | None = None,
        through=None,
        through_source_key: str | None = None,
        through_target_key: str | None = None,
    ) -> Relation:
        """Declare a named relation from ``source`` to ``target``.

        Args:
            source: Source entity (or name)
            name: Relation name, used in relation paths and nested fetches
            target: Target entity (or name)
            type: one_to_one, one_to_many, many_to_one or many_to_many
            foreign_key: Foreign key column; on the source for many_to_one,
                on the target for one_to_many, on either side for one_to_one.
                Inferred when exactly one candidate exists.
            references: Referenced column (defaults to the foreign key's target)
            through: Join entity for many_to_many relations
            through_source_key: Join entity column referencing the source
            through_target_key: Join entity column referencing the target

        Returns:
            The resolved relation

        Raises:
            RegistrationError: If the relation is invalid or conflicts with an existing one
            ConfigurationStateError: If the registry is frozen
        """
        self.registry.check_writable()

        source_entity = self._entity(_name(source))
        target_entity = self._entity(_name(target))
        try:
            validate_identifier(name, "relation name")
        except ValueError as e:
            raise RegistrationError(str(e)) from e
        if source_entity.get_column(name) is not None:
            raise RegistrationError(f"Relation {source_entity.name}.{name} collides with a column of the same name")

        if type == "many_to_many":
            relation = self._many_to_many(
                source_entity, name, target_entity, _name(through) if through else None,
                through_source_key, through_target_key,
            )
        elif type == "many_to_one":
            fk = self._foreign_key(source_entity, target_entity, foreign_key, references)
            relation = Relation(
                name=name, source=source_entity.name, target=target_entity.name, type=type,
                source_key=fk.name, target_key=fk.references.column,
            )
        elif type == "one_to_many":
            fk = self._foreign_key(target_entity, source_entity, foreign_key, references)
            relation = Relation(
                name=name, source=source_entity.name, target=target_entity.name, type=type,
                source_key=fk.references.column, target_key=fk.name,
            )
        elif type == "one_to_one":
            relation = self._one_to_one(source_entity, name, target_entity, foreign_key, references)
        else:
            raise RegistrationError(f"Unknown relation type '{type}'")

        existing = self.relations.get(relation.source, {}).get(name)
        if existing is not None:
            if existing == relation:
                return existing
            raise RegistrationError(f"Relation {relation.source}.{name} already exists with a different definition")

        if relation.through:
            pair = frozenset((relation.source, relation.target))
            known = self._join_entities.get(pair)
            if known is not None and known != relation.through:
                raise RegistrationError(
                    f"Entities {relation.source} and {relation.target} are already related many-to-many "
                    f"through '{known}', not '{relation.through}'"
                )
            self._join_entities[pair] = relation.through

        self.relations.setdefault(relation.source, {})[name] = relation
        logger.debug("Declared relation %s.%s -> %s (%s)", relation.source, name, relation.target, relation.type)
        return relation

    def _entity(self, name: str) -> "Entity":
        entity = self.registry.entities.get(name)
        if entity is None:
            raise RegistrationError(f"Entity {name} is not registered")
        return entity

    def _foreign_key(self, holder: "Entity", referenced: "Entity", foreign_key, references):
        """Find the column of ``holder`` that references ``referenced``."""
        if foreign_key is not None:
            column = holder.get_column(foreign_key)
            if column is None:
                raise RegistrationError(f"Foreign key column {holder.name}.{foreign_key} does not exist")
            if column.references is None or column.references.entity != referenced.name:
                raise RegistrationError(
                    f"Column {holder.name}.{foreign_key} does not reference entity {referenced.name}"
                )
        else:
            candidates = holder.foreign_keys_to(referenced.name)
            if len(candidates) != 1:
                raise RegistrationError(
                    f"Cannot infer the foreign key from {holder.name} to {referenced.name}: "
                    f"{len(candidates)} candidates, pass foreign_key explicitly"
                )
            column = candidates[0]

        if references is not None and references != column.references.column:
            raise RegistrationError(
                f"Column {holder.name}.{column.name} references {column.references}, not {referenced.name}.{references}"
            )
        return column

    def _one_to_one(self, source: "Entity", name: str, target: "Entity", foreign_key, references) -> Relation:
        if foreign_key is not None:
            owner_is_source = source.get_column(foreign_key) is not None
        else:
            owner_is_source = bool(source.foreign_keys_to(target.name))
            if owner_is_source and target.foreign_keys_to(source.name) and source.name != target.name:
                raise RegistrationError(
                    f"Both {source.name} and {target.name} reference each other; pass foreign_key explicitly"
                )

        if owner_is_source:
            fk = self._foreign_key(source, target, foreign_key, references)
            source_key, target_key = fk.name, fk.references.column
        else:
            fk = self._foreign_key(target, source, foreign_key, references)
            source_key, target_key = fk.references.column, fk.name
        return Relation(
            name=name, source=source.name, target=target.name, type="one_to_one",
            source_key=source_key, target_key=target_key,
        )

    def _many_to_many(
        self, source: "Entity", name: str, target: "Entity", through: str | None,
        through_source_key: str | None, through_target_key: str | None,
    ) -> Relation:
        if through is None:
            raise RegistrationError(f"Many-to-many relation {source.name}.{name} requires a join entity")
        join = self._entity(through)

        if source.name == target.name and (through_source_key is None or through_target_key is None):
            raise RegistrationError(
                f"Self-referencing many-to-many relation {source.name}.{name} requires both join keys"
            )
        source_fk = self._foreign_key(join, source, through_source_key, None)
        target_candidates = [c for c in join.foreign_keys_to(target.name) if c.name != source_fk.name]
        if through_target_key is not None:
            target_fk = self._foreign_key(join, target, through_target_key, None)
        elif len(target_candidates) == 1:
            target_fk = target_candidates[0]
        else:
            raise RegistrationError(
                f"Cannot infer the join entity column of {join.name} pointing to {target.name}; "
                f"pass through_target_key explicitly"
            )

        if set(join.primary_key_columns) != {source_fk.name, target_fk.name}:
            raise RegistrationError(
                f"Join entity {join.name} must have the composite primary key "
                f"({source_fk.name}, {target_fk.name}), found {list(join.primary_key_columns)}"
            )

        return Relation(
            name=name, source=source.name, target=target.name, type="many_to_many",
            source_key=source_fk.references.column, target_key=target_fk.references.column,
            through=join.name, through_source_key=source_fk.name, through_target_key=target_fk.name,
        )

    def get_relation(self, entity, name: str) -> Relation:
        """Get relation by source entity and name.

        Raises:
            ResolutionError: If relation not found
        """
        relation = self.relations.get(_name(entity), {}).get(name)
        if relation is None:
            raise ResolutionError(f"Relation {_name(entity)}.{name} not found")
        return relation

    def relations_of(self, entity) -> list[Relation]:
        """All relations declared with ``entity`` as source."""
        return list(self.relations.get(_name(entity), {}).values())

    def expand(
        self,
        entity,
        path: str | Sequence[str],
        max_depth: int | None = None,
        kind: JoinKind = "inner",
        root_alias: str | None = None,
        taken: Sequence[str] = (),
    ) -> JoinPlan:
        """Expand a relation path into a join plan.

        Args:
            entity: Entity the path starts from
            path: Dotted relation path (``"posts.comments"``) or sequence of names
            max_depth: Explicit fetch depth; required for paths that revisit an entity
            kind: Join kind for every step
            root_alias: Alias of the starting entity (defaults to its name)
            taken: Aliases already used by the caller

        Returns:
            JoinPlan with one step per direct edge (two per many_to_many hop)

        Raises:
            ResolutionError: If a relation is unknown, the path is cyclic without
                an explicit depth, or the path is deeper than ``max_depth``
        """
        names = path.split(".") if isinstance(path, str) else list(path)
        if not names or any(not n for n in names):
            raise ResolutionError(f"Invalid relation path: {path!r}")
        if max_depth is not None and len(names) > max_depth:
            raise ResolutionError(f"Relation path {'.'.join(names)} exceeds max_depth {max_depth}")

        root = _name(entity)
        if root not in self.registry.entities:
            raise ResolutionError(f"Entity {root} not found")
        root_alias = root_alias or root

        used = {root_alias, *taken}
        visited = [root]
        steps = []
        current, left_alias = root, root_alias
        for depth, name in enumerate(names, start=1):
            relation = self.get_relation(current, name)
            if relation.target in visited and max_depth is None:
                trail = " -> ".join(visited + [relation.target])
                raise ResolutionError(f"Cyclic relation path {trail}; pass an explicit max_depth")

            hop = "__".join(names[:depth])
            edges = relation.edges()
            for i, edge in enumerate(edges):
                last = i == len(edges) - 1
                fallback = hop if last else f"{hop}__{edge.target}"
                alias = edge.target if edge.target not in used else fallback
                if alias in used:
                    raise ResolutionError(f"Alias {alias} is already in use; join {hop} under another alias")
                used.add(alias)
                on = Comparison(ColumnRef(left_alias, edge.source_key), "=", ColumnRef(alias, edge.target_key))
                steps.append(JoinStep(entity=edge.target, alias=alias, on=on, kind=kind, relation=relation.name))
                left_alias = alias

            visited.append(relation.target)
            current = relation.target

        return JoinPlan(root=root, root_alias=root_alias, steps=tuple(steps))

    def find_path(self, source, target) -> list[str]:
        """Find the shortest relation path between two entities using BFS.

        Args:
            source: Source entity (or name)
            target: Target entity (or name)

        Returns:
            List of relation names (empty when source == target)

        Raises:
            ResolutionError: If no relation path exists
        """
        source, target = _name(source), _name(target)
        for name in (source, target):
            if name not in self.registry.entities:
                raise ResolutionError(f"Entity {name} not found")
        if source == target:
            return []

        queue = deque([(source, [])])
        visited = {source}
        while queue:
            current, path = queue.popleft()
            for relation in self.relations_of(current):
                if relation.target in visited:
                    continue
                visited.add(relation.target)
                new_path = path + [relation.name]
                if relation.target == target:
                    return new_path
                queue.append((relation.target, new_path))

        raise ResolutionError(f"No relation path found between {source} and {target}")
