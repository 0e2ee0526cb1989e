"""
Declared resources and their explicit ordering edges.

Pulumi resolves resource attributes lazily and only orders creation through
depends_on. Every entity that reads another entity's attribute must therefore
declare an explicit edge to it. DependencyGraph records what each binder
declares so the rule can be checked without running an update.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import pulumi

logger = logging.getLogger(__name__)


@dataclass
class Entity:
    name: str
    resource: Any
    reads: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)
    external: list[Any] = field(default_factory=list)


class DependencyGraph:
    """Records declared entities and the attributes they read."""

    def __init__(self):
        self._entities: dict[str, Entity] = {}

    def options(self, depends_on: Iterable[str] = (), external: Optional[list] = None,
                provider: Optional[pulumi.ProviderResource] = None) -> pulumi.ResourceOptions:
        """
        Builds ResourceOptions for a resource about to be created, ordered after
        the named entities and any external prerequisite resources.
        """
        resources = [self.resource(name) for name in depends_on] + list(external or [])
        return pulumi.ResourceOptions(provider=provider, depends_on=resources)

    def declare(self, name: str, resource: Any, reads: Iterable[str] = (),
                depends_on: Iterable[str] = (), external: Optional[list] = None) -> Entity:
        """
        Records an entity.

        reads: names of entities whose attributes this entity references.
        depends_on: names of entities this entity is explicitly ordered after.
            They must already be declared, so the graph is acyclic.
        external: caller-supplied prerequisite resources outside this graph.
        """
        if name in self._entities:
            raise ValueError(f"Entity '{name}' is already declared")
        depends_on = list(depends_on)
        unknown = [dep for dep in depends_on if dep not in self._entities]
        if unknown:
            raise ValueError(f"Entity '{name}' depends on undeclared entities: {unknown}")
        entity = Entity(name, resource, list(reads), depends_on, list(external or []))
        self._entities[name] = entity
        logger.debug(f"Declared {name} (reads={entity.reads}, depends_on={entity.depends_on})")
        return entity

    def entity(self, name: str) -> Entity:
        return self._entities[name]

    def resource(self, name: str) -> Any:
        return self._entities[name].resource

    def dependencies_of(self, name: str) -> list[str]:
        return list(self._entities[name].depends_on)

    def violations(self) -> list[tuple[str, str]]:
        """Returns (entity, read) pairs where a read has no explicit dependency edge."""
        return [
            (entity.name, read)
            for entity in self._entities.values()
            for read in entity.reads
            if read not in entity.depends_on
        ]

    def creation_order(self) -> list[str]:
        # Dependencies are declared before their dependents.
        return list(self._entities)

    def resources(self) -> list[Any]:
        return [entity.resource for entity in self._entities.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._entities

    def __iter__(self):
        return iter(self._entities.values())

    def __len__(self) -> int:
        return len(self._entities)
