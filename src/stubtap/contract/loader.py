"""
StubTap Contract Loader

Turns a parsed contract document into endpoint specs plus a schema registry.
Parsing the document text is left to the caller (or ``DocumentLoader``);
this module only consumes the parsed structure.

Accepted shapes per response entry:
- OpenAPI: ``{"headers": {...}, "content": {"application/json": {"schema": {...}}}}``
- Compact: ``{"headers": {...}, "body": {...schema...}}``
"""

import json
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from ..common.errors import SchemaValidationError
from ..common.paths import PathTemplate
from ..schema.generator import DataGenerator
from ..schema.model import SchemaNode, SchemaRegistry


logger = logging.getLogger("stubtap.contract")

HTTP_METHODS = ('get', 'put', 'post', 'delete', 'options', 'head', 'patch', 'trace')


@dataclass(frozen=True)
class HeaderSpec:
    """A declared response header."""

    name: str
    required: bool = False
    schema: Optional[SchemaNode] = None

    @classmethod
    def from_dict(cls, name: str, data: Optional[Mapping[str, Any]]) -> 'HeaderSpec':
        data = data or {}
        schema = data.get('schema')
        if schema is None and 'pattern' in data:
            schema = {'kind': 'string', 'pattern': data['pattern']}
        return cls(
            name=name,
            required=bool(data.get('required', False)),
            schema=SchemaNode.from_dict(schema) if schema is not None else None
        )


@dataclass(frozen=True)
class ResponseSpec:
    """Expected headers and body for one status code."""

    headers: Tuple[HeaderSpec, ...] = ()
    body: Optional[SchemaNode] = None
    description: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'ResponseSpec':
        data = data or {}
        headers = tuple(
            HeaderSpec.from_dict(name, spec)
            for name, spec in (data.get('headers') or {}).items()
        )

        body = data.get('body')
        if body is None:
            content = data.get('content') or {}
            media = content.get('application/json') or next(iter(content.values()), None)
            if media:
                body = media.get('schema')

        return cls(
            headers=headers,
            body=SchemaNode.from_dict(body) if body is not None else None,
            description=data.get('description', '')
        )

    def synthesize(
        self,
        generator: DataGenerator,
        rng: Optional[random.Random] = None
    ) -> Tuple[Dict[str, str], Any]:
        """
        Generate headers and body that satisfy this response spec.

        Returns:
            (headers, body) tuple; body is None when no body schema is declared
        """
        headers = {}
        for header in self.headers:
            if header.schema is not None:
                value = generator.generate(header.schema, rng=rng)
                headers[header.name] = value if isinstance(value, str) else json.dumps(value)
            else:
                headers[header.name] = 'stubtap'
        body = generator.generate(self.body, rng=rng) if self.body is not None else None
        return headers, body


@dataclass
class ContractEndpointSpec:
    """Expected responses of one operation, keyed by status code (or ``default``)."""

    method: str
    path: str
    responses: Dict[str, ResponseSpec] = field(default_factory=dict)
    operation_id: Optional[str] = None

    def __post_init__(self):
        self.method = self.method.upper()
        self.template = PathTemplate.parse(self.path)

    def response_for(self, status: Any) -> Optional[ResponseSpec]:
        """Response spec for ``status``, falling back to ``default``."""
        return self.responses.get(str(status)) or self.responses.get('default')

    def matches(self, method: str, path: str) -> bool:
        """True if a concrete request path belongs to this operation."""
        return method.upper() == self.method and self.template.match(path) is not None


EndpointMap = Dict[Tuple[str, str], ContractEndpointSpec]


def load_contract(document: Mapping[str, Any]) -> Tuple[EndpointMap, SchemaRegistry]:
    """
    Build endpoint specs and the schema registry from a parsed document.

    Args:
        document: Parsed contract with ``paths`` and either
                  ``components.schemas`` or top-level ``schemas``

    Returns:
        ((METHOD, path) -> ContractEndpointSpec, SchemaRegistry)

    Raises:
        SchemaValidationError: If the document is not a mapping or a schema is malformed
    """
    if not isinstance(document, Mapping):
        raise SchemaValidationError("Contract document must be a mapping")

    components = (document.get('components') or {}).get('schemas') or document.get('schemas') or {}
    registry = SchemaRegistry.from_components(components)

    endpoints: EndpointMap = {}
    for path, operations in (document.get('paths') or {}).items():
        for method, operation in (operations or {}).items():
            if method.lower() not in HTTP_METHODS:
                continue
            operation = operation or {}
            responses = {
                str(status): ResponseSpec.from_dict(spec)
                for status, spec in (operation.get('responses') or {}).items()
            }
            endpoint = ContractEndpointSpec(
                method=method,
                path=path,
                responses=responses,
                operation_id=operation.get('operationId')
            )
            endpoints[(endpoint.method, path)] = endpoint

    logger.info(f"Loaded contract with {len(endpoints)} operations and {len(registry)} schemas")
    return endpoints, registry


def find_endpoint(endpoints: EndpointMap, method: str, path: str) -> Optional[ContractEndpointSpec]:
    """Find the operation a concrete request belongs to; literal templates win over parameterized ones."""
    exact = endpoints.get((method.upper(), path))
    if exact is not None:
        return exact
    candidates = [e for e in endpoints.values() if e.matches(method, path)]
    if not candidates:
        return None
    # Prefer templates with more literal segments
    return max(candidates, key=lambda e: len(e.template.segments) - len(e.template.params))
