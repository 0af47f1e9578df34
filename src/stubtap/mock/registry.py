"""
StubTap Stub Registry

Thread-safe storage of stub definitions.

Features:
- Validation before insert; rejected stubs leave no trace
- Monotonic registration sequence used to break priority ties
- Index keyed by (method, template shape) for candidate lookup
- Reader-writer lock: lookups run concurrently, register/remove are exclusive
"""

import itertools
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from ..common.concurrency import ReadWriteLock
from ..common.errors import ValidationError
from ..common.paths import split_path
from .models import StubDefinition


logger = logging.getLogger("stubtap.mock")

IndexKey = Tuple[str, Tuple[int, bool]]
StubFilter = Union[Mapping[str, Any], Callable[[StubDefinition], bool], None]


class StubRegistry:
    """
    Holds registered stubs and answers candidate lookups.

    Example:
        registry = StubRegistry()
        stub_id = registry.register(StubDefinition(method='GET', path='/users/{id}'))
        for stub, params in registry.candidates('GET', '/users/42'):
            print(stub.id, params)
    """

    def __init__(self):
        self._lock = ReadWriteLock()
        self._stubs: Dict[str, StubDefinition] = {}
        self._index: Dict[IndexKey, List[StubDefinition]] = {}
        self._seq = itertools.count(1)

    def register(self, stub: StubDefinition) -> str:
        """
        Validate and insert a stub.

        Args:
            stub: Stub definition; an id is generated when ``stub.id`` is None

        Returns:
            The registered stub id

        Raises:
            ValidationError: If the stub is malformed or its id is taken
        """
        stub.validate()

        with self._lock.write():
            seq = next(self._seq)
            stub_id = stub.id or f"stub-{seq}"
            if stub_id in self._stubs:
                raise ValidationError(f"Stub id '{stub_id}' is already registered")

            registered = stub.registered_copy(stub_id, seq)
            self._stubs[stub_id] = registered
            self._index.setdefault(self._key(registered), []).append(registered)

        logger.info(f"Registered stub {stub_id}: {registered.method} {registered.path} (priority {registered.priority})")
        return stub_id

    def remove(self, stub_id: str) -> bool:
        """
        Remove a stub.

        Returns:
            True if a stub was removed, False if the id was unknown
        """
        with self._lock.write():
            stub = self._stubs.pop(stub_id, None)
            if stub is None:
                return False
            bucket = self._index.get(self._key(stub), [])
            bucket[:] = [s for s in bucket if s.id != stub_id]
            if not bucket:
                self._index.pop(self._key(stub), None)

        logger.info(f"Removed stub {stub_id}")
        return True

    def get(self, stub_id: str) -> Optional[StubDefinition]:
        with self._lock.read():
            return self._stubs.get(stub_id)

    def list(self, stub_filter: StubFilter = None) -> List[StubDefinition]:
        """
        List stubs in registration order.

        Args:
            stub_filter: Callable predicate, or a mapping whose keys
                         (method, path, scenario, name, exhausted) must all equal

        Returns:
            Matching stubs, exhausted ones included
        """
        with self._lock.read():
            stubs = list(self._stubs.values())

        if stub_filter is None:
            return stubs
        if callable(stub_filter):
            return [s for s in stubs if stub_filter(s)]

        def accepts(stub: StubDefinition) -> bool:
            for key, expected in stub_filter.items():
                if key == 'method':
                    expected = str(expected).upper()
                actual = getattr(stub, key, None)
                if actual != expected:
                    return False
            return True

        return [s for s in stubs if accepts(s)]

    def candidates(self, method: str, path: str) -> List[Tuple[StubDefinition, Dict[str, str]]]:
        """
        Stubs whose method and path template structurally match the request.

        Returns:
            (stub, bound path params) pairs in registration order
        """
        method = method.upper()
        segment_count = len(split_path(path))
        keys = [(method, (segment_count, False))]
        # A wildcard template with k segments matches paths longer than k - 1
        keys.extend((method, (count, True)) for count in range(1, segment_count + 1))

        found = []
        with self._lock.read():
            for key in keys:
                for stub in self._index.get(key, ()):
                    params = stub.template.match(path)
                    if params is not None:
                        found.append((stub, params))

        found.sort(key=lambda pair: pair[0].registration_seq)
        return found

    def clear(self):
        """Remove every stub."""
        with self._lock.write():
            self._stubs.clear()
            self._index.clear()
        logger.info("Cleared stub registry")

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._stubs)

    @staticmethod
    def _key(stub: StubDefinition) -> IndexKey:
        return stub.method, stub.template.shape
