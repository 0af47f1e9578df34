"""
StubTap Schema Model

Immutable in-memory representation of data schemas loaded from a contract
document. Accepts both the compact ``kind`` vocabulary and OpenAPI/JSON
Schema style ``type`` / ``$ref`` keys.
"""

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterator, Mapping, Optional, Tuple

from ..common.errors import SchemaValidationError


KINDS = frozenset({'object', 'array', 'string', 'number', 'integer', 'boolean', 'ref'})


@dataclass(frozen=True)
class SchemaNode:
    """A single node of a schema tree. Never mutated after loading."""

    kind: str
    properties: Tuple[Tuple[str, 'SchemaNode'], ...] = ()
    required: FrozenSet[str] = frozenset()
    items: Optional['SchemaNode'] = None
    min_items: Optional[int] = None
    max_items: Optional[int] = None
    format: Optional[str] = None
    enum: Optional[Tuple[Any, ...]] = None
    pattern: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    ref: Optional[str] = None

    @property
    def property_map(self) -> Dict[str, 'SchemaNode']:
        """Declared properties as an ordered dict (a fresh copy)."""
        return dict(self.properties)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'SchemaNode':
        """
        Build a schema tree from a parsed document fragment.

        Args:
            data: Schema mapping, e.g. ``{"kind": "string", "format": "uuid"}``
                  or ``{"$ref": "#/components/schemas/User"}``

        Returns:
            Root SchemaNode

        Raises:
            SchemaValidationError: If the fragment is not a mapping or has no kind
        """
        if isinstance(data, SchemaNode):
            return data
        if not isinstance(data, Mapping):
            raise SchemaValidationError(
                "Schema node must be a mapping",
                {'got': type(data).__name__}
            )

        if '$ref' in data or 'ref' in data:
            target = str(data.get('$ref') or data.get('ref'))
            return cls(kind='ref', ref=target.rsplit('/', 1)[-1])

        kind = data.get('kind') or data.get('type')
        if isinstance(kind, (list, tuple)):
            # OpenAPI 3.1 style ["string", "null"]
            kind = next((k for k in kind if k != 'null'), None)
        if kind is None:
            if 'properties' in data:
                kind = 'object'
            elif 'items' in data:
                kind = 'array'
            elif data.get('enum'):
                kind = _enum_kind(data['enum'])
            else:
                raise SchemaValidationError("Schema node has no kind", {'keys': sorted(data.keys())})

        properties = tuple(
            (str(name), cls.from_dict(child))
            for name, child in (data.get('properties') or {}).items()
        )
        items = data.get('items')
        enum = data.get('enum')

        return cls(
            kind=str(kind),
            properties=properties,
            required=frozenset(data.get('required') or ()),
            items=cls.from_dict(items) if items is not None else None,
            min_items=_first(data, 'minItems', 'min_items'),
            max_items=_first(data, 'maxItems', 'max_items'),
            format=data.get('format'),
            enum=tuple(enum) if enum is not None else None,
            pattern=data.get('pattern'),
            min_length=_first(data, 'minLength', 'min_length'),
            max_length=_first(data, 'maxLength', 'max_length'),
            minimum=_first(data, 'minimum'),
            maximum=_first(data, 'maximum'),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to the compact ``kind`` vocabulary."""
        if self.kind == 'ref':
            return {'kind': 'ref', 'ref': self.ref}

        data: Dict[str, Any] = {'kind': self.kind}
        if self.properties:
            data['properties'] = {name: node.to_dict() for name, node in self.properties}
        if self.required:
            data['required'] = sorted(self.required)
        if self.items is not None:
            data['items'] = self.items.to_dict()
        optional = {
            'minItems': self.min_items,
            'maxItems': self.max_items,
            'format': self.format,
            'enum': list(self.enum) if self.enum is not None else None,
            'pattern': self.pattern,
            'minLength': self.min_length,
            'maxLength': self.max_length,
            'minimum': self.minimum,
            'maximum': self.maximum,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data


def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _enum_kind(values: Any) -> str:
    """JSON type shared by the enum values; mixed or non-scalar values stay strings."""
    kinds = set()
    for value in values:
        if isinstance(value, bool):
            kinds.add('boolean')
        elif isinstance(value, int):
            kinds.add('integer')
        elif isinstance(value, float):
            kinds.add('number')
        elif value is not None:
            kinds.add('string')
    if kinds == {'integer', 'number'}:
        return 'number'
    return kinds.pop() if len(kinds) == 1 else 'string'


class SchemaRegistry(Mapping):
    """
    Named schemas that ``ref`` nodes resolve against.

    Example:
        registry = SchemaRegistry.from_components({
            'User': {'kind': 'object', 'properties': {...}}
        })
        node = registry.resolve('User')
    """

    def __init__(self, schemas: Optional[Mapping[str, SchemaNode]] = None):
        self._schemas: Dict[str, SchemaNode] = dict(schemas or {})

    @classmethod
    def from_components(cls, components: Mapping[str, Any]) -> 'SchemaRegistry':
        """Parse a ``name -> schema dict`` mapping (e.g. OpenAPI components.schemas)."""
        return cls({name: SchemaNode.from_dict(schema) for name, schema in (components or {}).items()})

    def register(self, name: str, node: Any) -> SchemaNode:
        """Add (or replace) a named schema; dicts are parsed first."""
        parsed = SchemaNode.from_dict(node)
        self._schemas[name] = parsed
        return parsed

    def resolve(self, name: str) -> SchemaNode:
        """
        Look up a named schema.

        Raises:
            SchemaValidationError: If no schema has that name
        """
        try:
            return self._schemas[name]
        except KeyError:
            raise SchemaValidationError(f"Unresolved schema reference '{name}'") from None

    def clear(self):
        self._schemas.clear()

    def __call__(self, name: str) -> SchemaNode:
        return self.resolve(name)

    def __getitem__(self, name: str) -> SchemaNode:
        return self._schemas[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._schemas)

    def __len__(self) -> int:
        return len(self._schemas)
