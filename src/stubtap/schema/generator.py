"""
StubTap Data Generator

Synthesizes values from SchemaNode trees.

Features:
- Recursive generation for object / array / string / number / integer / boolean
- Format-aware strings (email, uuid, date, datetime, name, phone, url, password)
- Regex-driven strings for ``pattern`` constraints
- $ref resolution with cycle and depth detection
- Thread-local randomness, optionally seeded for reproducible output
"""

import logging
import math
import random
import string
import threading
import uuid
from datetime import timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from faker import Faker

from ..common.errors import SchemaCycleError, SchemaValidationError
from .model import SchemaNode, SchemaRegistry
from .patterns import generate_from_pattern


logger = logging.getLogger("stubtap.schema")

RefResolver = Callable[[str], SchemaNode]

DEFAULT_MAX_DEPTH = 10
DEFAULT_MIN_ITEMS = 1
DEFAULT_MAX_ITEMS = 10
DEFAULT_MIN_LENGTH = 5
DEFAULT_MAX_LENGTH = 20
DEFAULT_MINIMUM = 0
DEFAULT_MAXIMUM = 1_000_000

SCALAR_KINDS = frozenset({'string', 'number', 'integer', 'boolean'})

FORMAT_ALIASES = {
    'date-time': 'datetime',
    'uri': 'url',
    'full-name': 'name',
    'phone-number': 'phone',
}


class DataGenerator:
    """
    Schema-driven synthetic value generator.

    Pure with respect to shared state: every thread gets its own random
    source and Faker instance, so no locking is needed.

    Example:
        generator = DataGenerator(registry, seed=42)
        user = generator.generate(SchemaNode.from_dict({
            'kind': 'object',
            'properties': {
                'id': {'kind': 'string', 'format': 'uuid'},
                'age': {'kind': 'integer', 'minimum': 0, 'maximum': 120}
            }
        }))
    """

    def __init__(
        self,
        registry: Optional[SchemaRegistry] = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
        seed: Optional[int] = None
    ):
        """
        Initialize data generator.

        Args:
            registry: Named schemas for resolving ``ref`` nodes
            max_depth: Maximum nested $ref resolutions before giving up
            seed: Optional seed; each thread's random source starts from it
        """
        self.registry = registry if registry is not None else SchemaRegistry()
        self.max_depth = max_depth
        self.seed = seed
        self._local = threading.local()
        self._format_generators: Dict[str, Callable[[random.Random], str]] = {
            'email': self._gen_email,
            'uuid': self._gen_uuid,
            'date': self._gen_date,
            'datetime': self._gen_datetime,
            'name': self._gen_name,
            'phone': self._gen_phone,
            'url': self._gen_url,
            'password': self._gen_password,
        }

    @property
    def rng(self) -> random.Random:
        """This thread's random source."""
        rng = getattr(self._local, 'rng', None)
        if rng is None:
            rng = random.Random(self.seed)
            self._local.rng = rng
        return rng

    def _faker(self, rng: random.Random) -> Faker:
        fake = getattr(self._local, 'faker', None)
        if fake is None:
            fake = Faker('en_US')
            self._local.faker = fake
        fake.seed_instance(rng.getrandbits(64))
        return fake

    def generate(
        self,
        node: Any,
        ref_resolver: Optional[RefResolver] = None,
        path: Optional[Sequence[str]] = None,
        rng: Optional[random.Random] = None
    ) -> Any:
        """
        Generate a value for a schema node.

        Args:
            node: SchemaNode (or schema dict)
            ref_resolver: Callable resolving ref names (defaults to the registry)
            path: Ref names already being resolved by the caller
            rng: Explicit random source (defaults to this thread's)

        Returns:
            Generated value

        Raises:
            SchemaCycleError: If a $ref chain repeats or exceeds max_depth
            SchemaValidationError: If a node has an unrecognized kind
        """
        node = SchemaNode.from_dict(node)
        resolver = ref_resolver or self.registry.resolve
        path = list(path or [])
        self.check_refs(node, resolver, path)
        return self._generate(node, resolver, path, rng or self.rng)

    def generate_named(self, name: str, rng: Optional[random.Random] = None) -> Any:
        """Generate a value for a schema registered under ``name``."""
        return self.generate(SchemaNode(kind='ref', ref=name), rng=rng)

    def check_refs(self, node: SchemaNode, resolver: RefResolver, path: Optional[List[str]] = None):
        """
        Walk every $ref reachable from ``node`` before generating anything.

        Optional branches (e.g. empty arrays) would otherwise let a cyclic
        schema succeed on some runs and fail on others.

        Raises:
            SchemaCycleError: On a repeated name or a chain deeper than max_depth
        """
        depths: Dict[str, int] = {}
        self._ref_depth(node, resolver, list(path or []), depths)

    def _ref_depth(
        self,
        node: SchemaNode,
        resolver: RefResolver,
        path: List[str],
        depths: Dict[str, int]
    ) -> int:
        if node.kind == 'ref':
            name = node.ref
            if name in path:
                raise SchemaCycleError(f"Cyclic schema reference '{name}'", path + [name])
            if len(path) >= self.max_depth:
                raise SchemaCycleError(
                    f"Schema reference depth exceeds {self.max_depth}", path + [name]
                )
            if name not in depths:
                path.append(name)
                try:
                    depths[name] = 1 + self._ref_depth(resolver(name), resolver, path, depths)
                finally:
                    path.pop()
            if len(path) + depths[name] > self.max_depth:
                raise SchemaCycleError(
                    f"Schema reference depth exceeds {self.max_depth}", path + [name]
                )
            return depths[name]

        children = [child for _, child in node.properties]
        if node.items is not None:
            children.append(node.items)
        return max((self._ref_depth(c, resolver, path, depths) for c in children), default=0)

    def _generate(self, node: SchemaNode, resolver: RefResolver, path: List[str], rng: random.Random) -> Any:
        kind = node.kind

        if kind == 'object':
            return {
                name: self._generate(child, resolver, path, rng)
                for name, child in node.properties
            }

        elif kind == 'array':
            low = node.min_items if node.min_items is not None else DEFAULT_MIN_ITEMS
            high = node.max_items if node.max_items is not None else max(DEFAULT_MAX_ITEMS, low)
            if node.min_items is None:
                low = min(low, high)
            if high < low:
                raise SchemaValidationError("minItems exceeds maxItems", {'min': low, 'max': high})
            if node.items is None:
                raise SchemaValidationError("Array schema has no items")
            return [
                self._generate(node.items, resolver, path, rng)
                for _ in range(rng.randint(low, high))
            ]

        elif node.enum and kind in SCALAR_KINDS:
            return rng.choice(node.enum)

        elif kind == 'string':
            return self._generate_string(node, rng)

        elif kind in ('number', 'integer'):
            return self._generate_number(node, rng)

        elif kind == 'boolean':
            return rng.random() < 0.5

        elif kind == 'ref':
            name = node.ref
            if name in path:
                raise SchemaCycleError(f"Cyclic schema reference '{name}'", path + [name])
            if len(path) >= self.max_depth:
                raise SchemaCycleError(f"Schema reference depth exceeds {self.max_depth}", path + [name])
            return self._generate(resolver(name), resolver, path + [name], rng)

        raise SchemaValidationError(f"Unrecognized schema kind '{kind}'")

    def _generate_string(self, node: SchemaNode, rng: random.Random) -> str:
        fmt = FORMAT_ALIASES.get(node.format, node.format)
        if fmt in self._format_generators:
            return self._format_generators[fmt](rng)
        if node.format:
            logger.debug(f"Unknown string format '{node.format}', falling back")

        if node.pattern:
            return generate_from_pattern(node.pattern, rng)

        low = node.min_length if node.min_length is not None else DEFAULT_MIN_LENGTH
        high = node.max_length if node.max_length is not None else max(DEFAULT_MAX_LENGTH, low)
        low = min(low, high)
        length = rng.randint(low, high)
        return ''.join(rng.choices(string.ascii_letters + string.digits, k=length))

    def _generate_number(self, node: SchemaNode, rng: random.Random) -> Any:
        low, high = node.minimum, node.maximum
        if low is None:
            low = DEFAULT_MINIMUM if high is None or high >= DEFAULT_MINIMUM else high - DEFAULT_MAXIMUM
        if high is None:
            high = DEFAULT_MAXIMUM if low <= DEFAULT_MAXIMUM else low + DEFAULT_MAXIMUM

        if node.kind == 'integer':
            low_int, high_int = math.ceil(low), math.floor(high)
            if low_int > high_int:
                raise SchemaValidationError("No integer within range", {'minimum': low, 'maximum': high})
            return rng.randint(low_int, high_int)

        if low > high:
            raise SchemaValidationError("minimum exceeds maximum", {'minimum': low, 'maximum': high})
        value = round(rng.uniform(low, high), 2)
        return min(max(value, low), high)

    # Format generators

    def _gen_email(self, rng: random.Random) -> str:
        return self._faker(rng).email()

    def _gen_uuid(self, rng: random.Random) -> str:
        return str(uuid.UUID(int=rng.getrandbits(128), version=4))

    def _gen_date(self, rng: random.Random) -> str:
        return self._faker(rng).date_object().isoformat()

    def _gen_datetime(self, rng: random.Random) -> str:
        return self._faker(rng).date_time(tzinfo=timezone.utc).isoformat()

    def _gen_name(self, rng: random.Random) -> str:
        return self._faker(rng).name()

    def _gen_phone(self, rng: random.Random) -> str:
        return self._faker(rng).phone_number()

    def _gen_url(self, rng: random.Random) -> str:
        return self._faker(rng).url()

    def _gen_password(self, rng: random.Random) -> str:
        return self._faker(rng).password(length=12)
