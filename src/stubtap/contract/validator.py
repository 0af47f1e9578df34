"""
StubTap Contract Validator

Checks responses against contract specs for drift detection.

Features:
- Status lookup with ``default`` fallback
- Required header and header pattern checks (case-insensitive names)
- Body checks for type, required, enum, pattern, format, length, range and
  item counts, using the same constraints the DataGenerator honours
- Every violation is collected; content drift never raises
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ..common.errors import SchemaValidationError
from ..common.utils import normalize_headers, safe_json_parse
from ..schema.model import SchemaNode, SchemaRegistry
from .loader import ContractEndpointSpec


# Violation kinds
UNEXPECTED_STATUS = 'UnexpectedStatus'
MISSING_HEADER = 'MissingHeader'
HEADER_MISMATCH = 'HeaderMismatch'
TYPE_MISMATCH = 'TypeMismatch'
MISSING_REQUIRED = 'MissingRequired'
ENUM_MISMATCH = 'EnumMismatch'
PATTERN_MISMATCH = 'PatternMismatch'
FORMAT_MISMATCH = 'FormatMismatch'
LENGTH_VIOLATION = 'LengthViolation'
RANGE_VIOLATION = 'RangeViolation'
ITEMS_VIOLATION = 'ItemsViolation'
UNRESOLVED_REF = 'UnresolvedRef'
SCHEMA_CYCLE = 'SchemaCycle'
UNKNOWN_KIND = 'UnknownKind'

_EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
_PHONE_RE = re.compile(r'^\+?[0-9()\-.\sx]{7,}$')

_JSON_TYPES = frozenset({'object', 'array', 'string', 'number', 'integer', 'boolean'})


@dataclass
class ContractViolation:
    """A single contract violation."""

    kind: str
    path: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {'kind': self.kind, 'path': self.path, 'message': self.message}


@dataclass
class ValidationResult:
    """Outcome of validating one response."""

    valid: bool
    errors: List[ContractViolation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'valid': self.valid,
            'errors': [e.to_dict() for e in self.errors]
        }


def _json_type_of(value: Any) -> str:
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return 'boolean'
    if isinstance(value, int):
        return 'integer'
    if isinstance(value, float):
        return 'number'
    if isinstance(value, str):
        return 'string'
    if isinstance(value, list):
        return 'array'
    if isinstance(value, dict):
        return 'object'
    return type(value).__name__


def _is_iso_datetime(value: str) -> bool:
    try:
        datetime.fromisoformat(value.replace('Z', '+00:00'))
        return 'T' in value or ' ' in value
    except ValueError:
        return False


def _is_iso_date(value: str) -> bool:
    try:
        date.fromisoformat(value)
        return True
    except ValueError:
        return False


def _is_uuid(value: str) -> bool:
    try:
        return str(uuid.UUID(value)) == value.lower()
    except ValueError:
        return False


def _is_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


FORMAT_CHECKS = {
    'email': lambda v: bool(_EMAIL_RE.match(v)),
    'uuid': _is_uuid,
    'date': _is_iso_date,
    'datetime': _is_iso_datetime,
    'date-time': _is_iso_datetime,
    'name': lambda v: bool(v.strip()),
    'phone': lambda v: bool(_PHONE_RE.match(v)),
    'url': _is_url,
    'uri': _is_url,
    'password': lambda v: len(v) >= 8 and not any(c.isspace() for c in v),
}


class ContractValidator:
    """
    Validates responses against ContractEndpointSpecs.

    Example:
        endpoints, registry = load_contract(document)
        validator = ContractValidator(registry)
        result = validator.validate_response(
            endpoints[('GET', '/users/{id}')], 200, headers, body
        )
        if not result.valid:
            for error in result.errors:
                print(error.kind, error.path, error.message)
    """

    def __init__(self, registry: Optional[SchemaRegistry] = None, max_depth: int = 10):
        """
        Initialize validator.

        Args:
            registry: Named schemas for resolving ``ref`` nodes
            max_depth: Maximum consecutive $ref hops without consuming data
        """
        self.registry = registry if registry is not None else SchemaRegistry()
        self.max_depth = max_depth

    def validate_response(
        self,
        spec: ContractEndpointSpec,
        status: int,
        headers: Optional[Dict[str, Any]],
        body: Any
    ) -> ValidationResult:
        """
        Validate one response.

        Args:
            spec: Endpoint spec the response belongs to
            status: Response status code
            headers: Response headers
            body: Parsed body, or str/bytes holding JSON

        Returns:
            ValidationResult with every violation found
        """
        response_spec = spec.response_for(status)
        if response_spec is None:
            return ValidationResult(valid=False, errors=[ContractViolation(
                UNEXPECTED_STATUS,
                '$',
                f"Status {status} is not declared for {spec.method} {spec.path} and no default exists"
            )])

        errors: List[ContractViolation] = []
        actual_headers = normalize_headers(headers)

        for header in response_spec.headers:
            value = actual_headers.get(header.name.lower())
            location = f"headers.{header.name}"
            if value is None:
                if header.required:
                    errors.append(ContractViolation(MISSING_HEADER, location, f"Required header '{header.name}' is missing"))
                continue
            if header.schema is not None:
                for violation in self.validate_value(header.schema, self._coerce_header(header.schema, value), location):
                    violation.kind = HEADER_MISMATCH
                    errors.append(violation)

        if response_spec.body is not None:
            errors.extend(self.validate_value(response_spec.body, self._decode_body(response_spec.body, body)))

        return ValidationResult(valid=not errors, errors=errors)

    def validate_value(self, node: SchemaNode, value: Any, path: str = '$') -> List[ContractViolation]:
        """Collect every violation of ``node`` by ``value``."""
        errors: List[ContractViolation] = []
        self._check(node, value, path, [], errors)
        return errors

    def _decode_body(self, node: SchemaNode, body: Any) -> Any:
        if isinstance(body, (bytes, bytearray)):
            try:
                body = body.decode('utf-8')
            except UnicodeDecodeError:
                return body
        if isinstance(body, str) and node.kind != 'string':
            return safe_json_parse(body, default=body)
        return body

    def _coerce_header(self, node: SchemaNode, value: str) -> Any:
        if node.kind in ('integer', 'number', 'boolean'):
            return safe_json_parse(value, default=value)
        return value

    def _check(self, node: SchemaNode, value: Any, path: str, ref_chain: List[str], errors: List[ContractViolation]):
        kind = node.kind

        if kind == 'ref':
            name = node.ref
            if name in ref_chain or len(ref_chain) >= self.max_depth:
                errors.append(ContractViolation(SCHEMA_CYCLE, path, f"Cyclic schema reference '{name}'"))
                return
            try:
                target = self.registry.resolve(name)
            except SchemaValidationError:
                errors.append(ContractViolation(UNRESOLVED_REF, path, f"Unresolved schema reference '{name}'"))
                return
            self._check(target, value, path, ref_chain + [name], errors)
            return

        if kind not in _JSON_TYPES:
            errors.append(ContractViolation(UNKNOWN_KIND, path, f"Unrecognized schema kind '{kind}'"))
            return

        if not self._type_ok(kind, value):
            errors.append(ContractViolation(
                TYPE_MISMATCH, path, f"Expected {kind}, got {_json_type_of(value)}"
            ))
            return

        if node.enum is not None and value not in node.enum:
            errors.append(ContractViolation(
                ENUM_MISMATCH, path, f"Value {value!r} is not one of {list(node.enum)!r}"
            ))

        if kind == 'object':
            for name in sorted(node.required):
                if name not in value:
                    errors.append(ContractViolation(MISSING_REQUIRED, f"{path}.{name}", f"Required field '{name}' is missing"))
            for name, child in node.properties:
                if name in value:
                    self._check(child, value[name], f"{path}.{name}", [], errors)

        elif kind == 'array':
            if node.min_items is not None and len(value) < node.min_items:
                errors.append(ContractViolation(ITEMS_VIOLATION, path, f"Expected at least {node.min_items} items, got {len(value)}"))
            if node.max_items is not None and len(value) > node.max_items:
                errors.append(ContractViolation(ITEMS_VIOLATION, path, f"Expected at most {node.max_items} items, got {len(value)}"))
            if node.items is not None:
                for index, item in enumerate(value):
                    self._check(node.items, item, f"{path}[{index}]", [], errors)

        elif kind == 'string':
            self._check_string(node, value, path, errors)

        elif kind in ('number', 'integer'):
            if node.minimum is not None and value < node.minimum:
                errors.append(ContractViolation(RANGE_VIOLATION, path, f"{value} is below minimum {node.minimum}"))
            if node.maximum is not None and value > node.maximum:
                errors.append(ContractViolation(RANGE_VIOLATION, path, f"{value} is above maximum {node.maximum}"))

    def _check_string(self, node: SchemaNode, value: str, path: str, errors: List[ContractViolation]):
        if node.format:
            check = FORMAT_CHECKS.get(node.format)
            if check is not None and not check(value):
                errors.append(ContractViolation(FORMAT_MISMATCH, path, f"{value!r} is not a valid {node.format}"))
        if node.pattern:
            try:
                if not re.search(node.pattern, value):
                    errors.append(ContractViolation(PATTERN_MISMATCH, path, f"{value!r} does not match /{node.pattern}/"))
            except re.error as e:
                errors.append(ContractViolation(PATTERN_MISMATCH, path, f"Invalid pattern /{node.pattern}/: {e}"))
        # Length bounds apply to free text; enum, format and pattern define their own shape
        if node.enum is None and not node.format and not node.pattern:
            if node.min_length is not None and len(value) < node.min_length:
                errors.append(ContractViolation(LENGTH_VIOLATION, path, f"Length {len(value)} is below minLength {node.min_length}"))
            if node.max_length is not None and len(value) > node.max_length:
                errors.append(ContractViolation(LENGTH_VIOLATION, path, f"Length {len(value)} is above maxLength {node.max_length}"))

    @staticmethod
    def _type_ok(kind: str, value: Any) -> bool:
        if kind == 'object':
            return isinstance(value, dict)
        if kind == 'array':
            return isinstance(value, list)
        if kind == 'string':
            return isinstance(value, str)
        if kind == 'boolean':
            return isinstance(value, bool)
        if kind == 'integer':
            if isinstance(value, bool):
                return False
            return isinstance(value, int) or (isinstance(value, float) and value.is_integer())
        if kind == 'number':
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        return False

