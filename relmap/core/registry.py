"""Schema registry for entities and their relations."""

import logging

from relmap.core.entity import Entity
from relmap.core.relation_graph import RelationGraph
from relmap.core.relationship import Relation
from relmap.validation import ConfigurationStateError, RegistrationError, ResolutionError, validate_entity

logger = logging.getLogger(__name__)


class Registry:
    """Registry of entity definitions and relations.

    A registry is written once, during startup, and is read-only afterwards.
    The owning :class:`~relmap.core.database.Database` freezes it on first
    use; after that, registering entities or relations raises
    :class:`ConfigurationStateError`. Reads need no synchronization.
    """

    def __init__(self):
        self.entities: dict[str, Entity] = {}
        self.relations = RelationGraph(self)
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Make the registry read-only for the rest of its lifetime."""
        if not self._frozen:
            self._frozen = True
            logger.debug("Registry frozen with %d entities", len(self.entities))

    def check_writable(self) -> None:
        if self._frozen:
            raise ConfigurationStateError(
                "Registry is frozen; entities and relations must be registered before the first query"
            )

    def register_entity(self, entity: Entity) -> Entity:
        """Register an entity.

        Registering an identical definition again returns the registered
        entity unchanged.

        Args:
            entity: Entity to register

        Returns:
            The registered entity

        Raises:
            RegistrationError: If the definition is invalid or conflicts with a registered one
            ConfigurationStateError: If the registry is frozen
        """
        self.check_writable()

        existing = self.entities.get(entity.name)
        if existing is not None:
            if existing == entity:
                return existing
            raise RegistrationError(f"Entity {entity.name} already exists with a different definition")

        for other in self.entities.values():
            if other.table == entity.table:
                raise RegistrationError(f"Table {entity.table} is already mapped by entity {other.name}")

        errors = validate_entity(entity, self)
        if errors:
            raise RegistrationError(
                f"Entity '{entity.name}' validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )

        self.entities[entity.name] = entity
        logger.debug("Registered entity %s (table %s)", entity.name, entity.table)
        return entity

    def register(self, *entities: Entity) -> list[Entity]:
        """Register several entities in order."""
        return [self.register_entity(entity) for entity in entities]

    def resolve(self, name) -> Entity:
        """Get entity by name.

        Raises:
            ResolutionError: If entity not found
        """
        if isinstance(name, Entity):
            name = name.name
        if name not in self.entities:
            raise ResolutionError(f"Entity {name} not found")
        return self.entities[name]

    def declare_relation(self, source, name: str, target, type, **options) -> Relation:
        """Declare a relation; see :meth:`RelationGraph.declare_relation`."""
        return self.relations.declare_relation(source, name, target, type, **options)

    def list_entities(self) -> list[str]:
        return list(self.entities.keys())
