"""
StubTap Relational Data Generator

Builds sets of related entities with referential integrity.

Two passes:
1. Allocate every entity (and its id) for every entity type.
2. Wire relationships, drawing ids only from the pools built in pass 1,
   so a relationship field can never reference a nonexistent entity.
"""

import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from ..common.errors import SchemaValidationError
from .generator import DataGenerator
from .model import SchemaNode


logger = logging.getLogger("stubtap.schema")

CARDINALITIES = ('one-to-one', 'one-to-many', 'many-to-one')

# Upper bound on ids assigned to one source entity in a one-to-many relationship
MAX_RELATED = 5


@dataclass(frozen=True)
class RelationshipSpec:
    """
    A link between two entity types.

    For ``one-to-many`` and ``one-to-one`` the ids are written to
    ``source_field`` on source entities. For ``many-to-one`` every target
    entity receives exactly one source id in ``target_field`` (defaults to
    ``source_field``).
    """

    source_entity: str
    source_field: str
    target_entity: str
    cardinality: str = 'one-to-many'
    target_field: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'RelationshipSpec':
        """Create RelationshipSpec from dictionary (snake_case or camelCase keys)."""
        return cls(
            source_entity=data.get('source_entity') or data.get('sourceEntityType'),
            source_field=data.get('source_field') or data.get('sourceField'),
            target_entity=data.get('target_entity') or data.get('targetEntityType'),
            cardinality=data.get('cardinality', 'one-to-many'),
            target_field=data.get('target_field') or data.get('targetField'),
        )


class RelationalDataGenerator:
    """
    Generates related entity collections.

    Example:
        relational = RelationalDataGenerator(DataGenerator(registry))
        data = relational.generate(
            {'user': user_schema, 'order': order_schema},
            {'user': 10, 'order': 30},
            [RelationshipSpec('user', 'orders', 'order', 'one-to-many')]
        )
        # every id in any user['orders'] is an id in data['order']
    """

    def __init__(self, data_generator: Optional[DataGenerator] = None, id_field: str = 'id'):
        """
        Initialize relational generator.

        Args:
            data_generator: Generator used for independent entity fields
            id_field: Name of the id field assigned to every entity
        """
        self.data_generator = data_generator or DataGenerator()
        self.id_field = id_field

    def generate(
        self,
        entity_schemas: Mapping[str, Any],
        counts: Mapping[str, int],
        relationships: Optional[List[Any]] = None,
        rng: Optional[random.Random] = None
    ) -> Dict[str, List[Dict[str, Any]]]:
        """
        Generate entity collections and wire their relationships.

        Args:
            entity_schemas: entity type -> SchemaNode (or schema dict)
            counts: entity type -> number of entities to create
            relationships: RelationshipSpec instances (or dicts)
            rng: Explicit random source (defaults to the generator's)

        Returns:
            entity type -> ordered list of entities

        Raises:
            SchemaValidationError: If a relationship names an unknown entity
                type or cardinality
        """
        rng = rng or self.data_generator.rng
        specs = [
            r if isinstance(r, RelationshipSpec) else RelationshipSpec.from_dict(r)
            for r in (relationships or [])
        ]
        for spec in specs:
            self._check_spec(spec, entity_schemas)

        # Pass 1: allocate entities and ids
        entities: Dict[str, List[Dict[str, Any]]] = {}
        for entity_type, schema in entity_schemas.items():
            node = SchemaNode.from_dict(schema)
            collection = []
            for index in range(counts.get(entity_type, 0)):
                value = self.data_generator.generate(node, rng=rng)
                entity = value if isinstance(value, dict) else {'value': value}
                entity[self.id_field] = f"{entity_type}_{index}"
                collection.append(entity)
            entities[entity_type] = collection

        pools = {
            entity_type: [e[self.id_field] for e in collection]
            for entity_type, collection in entities.items()
        }

        # Pass 2: wire relationships from the id pools
        for spec in specs:
            self._wire(spec, entities, pools, rng)

        logger.debug(
            f"Generated {sum(len(c) for c in entities.values())} entities "
            f"across {len(entities)} types with {len(specs)} relationships"
        )
        return entities

    def _check_spec(self, spec: RelationshipSpec, entity_schemas: Mapping[str, Any]):
        if spec.cardinality not in CARDINALITIES:
            raise SchemaValidationError(
                f"Unknown cardinality '{spec.cardinality}'",
                {'allowed': ', '.join(CARDINALITIES)}
            )
        for entity_type in (spec.source_entity, spec.target_entity):
            if entity_type not in entity_schemas:
                raise SchemaValidationError(f"Relationship references unknown entity type '{entity_type}'")

    def _wire(
        self,
        spec: RelationshipSpec,
        entities: Dict[str, List[Dict[str, Any]]],
        pools: Dict[str, List[str]],
        rng: random.Random
    ):
        sources = entities[spec.source_entity]
        target_ids = pools[spec.target_entity]

        if spec.cardinality == 'one-to-many':
            for entity in sources:
                if not target_ids:
                    entity[spec.source_field] = []
                    continue
                size = rng.randint(1, min(MAX_RELATED, len(target_ids)))
                entity[spec.source_field] = rng.sample(target_ids, size)

        elif spec.cardinality == 'many-to-one':
            source_ids = pools[spec.source_entity]
            field_name = spec.target_field or spec.source_field
            for entity in entities[spec.target_entity]:
                entity[field_name] = rng.choice(source_ids) if source_ids else None

        elif spec.cardinality == 'one-to-one':
            shuffled = list(target_ids)
            rng.shuffle(shuffled)
            for entity, target_id in zip(sources, shuffled):
                entity[spec.source_field] = target_id
            for entity in sources[len(shuffled):]:
                entity[spec.source_field] = None
