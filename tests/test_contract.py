"""
Tests for StubTap Contracts

Tests contract loading and response validation including:
- OpenAPI and compact document shapes
- Endpoint lookup for concrete paths
- Status fallback, header and body checks
- Accumulation of every violation
- Generated responses validating against their own contract
"""

import random

import pytest

from stubtap.common.errors import SchemaValidationError
from stubtap.contract.loader import find_endpoint, load_contract
from stubtap.contract.validator import (
    ENUM_MISMATCH,
    FORMAT_MISMATCH,
    HEADER_MISMATCH,
    ITEMS_VIOLATION,
    LENGTH_VIOLATION,
    MISSING_HEADER,
    MISSING_REQUIRED,
    PATTERN_MISMATCH,
    RANGE_VIOLATION,
    SCHEMA_CYCLE,
    TYPE_MISMATCH,
    UNEXPECTED_STATUS,
    UNRESOLVED_REF,
    ContractValidator,
)
from stubtap.schema.generator import DataGenerator
from stubtap.schema.model import SchemaNode


@pytest.fixture
def contract():
    """OpenAPI-shaped contract document."""
    return {
        'openapi': '3.0.0',
        'paths': {
            '/users/{id}': {
                'parameters': [{'name': 'id', 'in': 'path'}],
                'get': {
                    'operationId': 'getUser',
                    'responses': {
                        '200': {
                            'headers': {
                                'X-Request-Id': {'required': True, 'schema': {'type': 'string', 'format': 'uuid'}},
                                'X-Rate-Remaining': {'schema': {'type': 'integer', 'minimum': 0}},
                            },
                            'content': {'application/json': {'schema': {'$ref': '#/components/schemas/User'}}}
                        },
                        'default': {
                            'content': {'application/json': {'schema': {'$ref': '#/components/schemas/Error'}}}
                        }
                    }
                }
            },
            '/users/me': {
                'get': {'responses': {'200': {'body': {'$ref': '#/components/schemas/User'}}}}
            },
            '/health': {
                'get': {'responses': {'204': {'description': 'alive'}}}
            }
        },
        'components': {
            'schemas': {
                'User': {
                    'type': 'object',
                    'required': ['id', 'email', 'role'],
                    'properties': {
                        'id': {'type': 'string', 'format': 'uuid'},
                        'email': {'type': 'string', 'format': 'email'},
                        'role': {'type': 'string', 'enum': ['admin', 'member']},
                        'age': {'type': 'integer', 'minimum': 0, 'maximum': 150},
                        'nickname': {'type': 'string', 'minLength': 2, 'maxLength': 8},
                        'code': {'type': 'string', 'pattern': r'^[A-Z]{3}$'},
                        'tags': {'type': 'array', 'minItems': 1, 'maxItems': 3, 'items': {'type': 'string'}},
                        'created': {'type': 'string', 'format': 'date-time'},
                        'site': {'type': 'string', 'format': 'uri'},
                    }
                },
                'Error': {
                    'type': 'object',
                    'required': ['message'],
                    'properties': {'message': {'type': 'string'}}
                }
            }
        }
    }


@pytest.fixture
def loaded(contract):
    """Endpoints and registry of the contract fixture."""
    return load_contract(contract)


@pytest.fixture
def validator(loaded):
    return ContractValidator(loaded[1])


def valid_user():
    return {
        'id': '3f2b8a9e-1c4d-4e5f-8a6b-7c8d9e0f1a2b',
        'email': 'ada@example.com',
        'role': 'admin',
        'age': 36,
        'nickname': 'ada',
        'code': 'ADA',
        'tags': ['math'],
        'created': '2024-01-02T03:04:05+00:00',
        'site': 'https://example.com/ada',
    }


class TestLoadContract:
    """Test contract loading."""

    def test_endpoints_and_schemas(self, loaded):
        """Test operations and schemas are extracted."""
        endpoints, registry = loaded

        assert set(endpoints) == {('GET', '/users/{id}'), ('GET', '/users/me'), ('GET', '/health')}
        assert set(registry) == {'User', 'Error'}
        assert endpoints[('GET', '/users/{id}')].operation_id == 'getUser'

    def test_response_shapes(self, loaded):
        """Test OpenAPI content and compact body shapes."""
        endpoints, _ = loaded

        assert endpoints[('GET', '/users/{id}')].responses['200'].body.ref == 'User'
        assert endpoints[('GET', '/users/me')].responses['200'].body.ref == 'User'
        assert endpoints[('GET', '/health')].responses['204'].body is None

    def test_header_specs(self, loaded):
        """Test header specs are parsed."""
        headers = endpoints_headers(loaded[0])

        assert headers == {'X-Request-Id': True, 'X-Rate-Remaining': False}

    def test_non_mapping_rejected(self):
        """Test documents must be mappings."""
        with pytest.raises(SchemaValidationError):
            load_contract(['paths'])

    def test_find_endpoint_prefers_literal(self, loaded):
        """Test literal templates win over parameterized ones."""
        endpoints, _ = loaded

        assert find_endpoint(endpoints, 'get', '/users/me').path == '/users/me'
        assert find_endpoint(endpoints, 'GET', '/users/42').path == '/users/{id}'
        assert find_endpoint(endpoints, 'POST', '/users/42') is None


def endpoints_headers(endpoints):
    spec = endpoints[('GET', '/users/{id}')].responses['200']
    return {h.name: h.required for h in spec.headers}


class TestValidateResponse:
    """Test response validation."""

    def test_valid_response(self, loaded, validator):
        """Test a conforming response has no violations."""
        endpoint = loaded[0][('GET', '/users/{id}')]

        result = validator.validate_response(
            endpoint, 200, {'x-request-id': '3f2b8a9e-1c4d-4e5f-8a6b-7c8d9e0f1a2b', 'X-Rate-Remaining': '5'},
            valid_user()
        )

        assert result.valid, result.to_dict()
        assert result.errors == []

    def test_body_as_json_bytes(self, loaded, validator):
        """Test serialized bodies are decoded first."""
        endpoint = loaded[0][('GET', '/users/me')]

        result = validator.validate_response(
            endpoint, 200, {}, b'{"id": "3f2b8a9e-1c4d-4e5f-8a6b-7c8d9e0f1a2b", "email": "a@b.io", "role": "member"}'
        )

        assert result.valid

    def test_default_response_used(self, loaded, validator):
        """Test undeclared statuses fall back to default."""
        endpoint = loaded[0][('GET', '/users/{id}')]

        result = validator.validate_response(endpoint, 500, {}, {'message': 'boom'})

        assert result.valid

    def test_unexpected_status(self, loaded, validator):
        """Test undeclared statuses without default."""
        endpoint = loaded[0][('GET', '/health')]

        result = validator.validate_response(endpoint, 200, {}, None)

        assert not result.valid
        assert [e.kind for e in result.errors] == [UNEXPECTED_STATUS]

    def test_header_violations(self, loaded, validator):
        """Test missing and malformed headers."""
        endpoint = loaded[0][('GET', '/users/{id}')]

        missing = validator.validate_response(endpoint, 200, {}, valid_user())
        malformed = validator.validate_response(
            endpoint, 200, {'X-Request-Id': 'not-a-uuid', 'X-Rate-Remaining': '-1'}, valid_user()
        )

        assert [e.kind for e in missing.errors] == [MISSING_HEADER]
        assert [e.kind for e in malformed.errors] == [HEADER_MISMATCH, HEADER_MISMATCH]
        assert malformed.errors[0].path == 'headers.X-Request-Id'

    def test_every_violation_collected(self, loaded, validator):
        """Test violations accumulate instead of stopping at the first."""
        endpoint = loaded[0][('GET', '/users/me')]
        body = {
            'id': 'nope',
            'role': 'owner',
            'age': 200,
            'nickname': 'x',
            'code': 'abc',
            'tags': [],
            'created': 'yesterday',
            'site': 'ftp//broken',
        }

        result = validator.validate_response(endpoint, 200, {}, body)
        kinds = sorted(e.kind for e in result.errors)

        assert not result.valid
        assert kinds == sorted([
            MISSING_REQUIRED,
            FORMAT_MISMATCH,
            ENUM_MISMATCH,
            RANGE_VIOLATION,
            LENGTH_VIOLATION,
            PATTERN_MISMATCH,
            ITEMS_VIOLATION,
            FORMAT_MISMATCH,
            FORMAT_MISMATCH,
        ])
        paths = {e.path for e in result.errors}
        assert '$.email' in paths
        assert '$.age' in paths

    def test_type_mismatch_stops_descent(self, loaded, validator):
        """Test a wrong type is reported once for that node."""
        endpoint = loaded[0][('GET', '/users/me')]

        result = validator.validate_response(endpoint, 200, {}, ['not', 'an', 'object'])

        assert [(e.kind, e.path) for e in result.errors] == [(TYPE_MISMATCH, '$')]

    def test_array_items_checked(self, validator):
        """Test item paths are reported with their index."""
        node = SchemaNode.from_dict({'kind': 'array', 'items': {'kind': 'integer'}})

        errors = validator.validate_value(node, [1, 'two', 3.0, True])

        assert [(e.kind, e.path) for e in errors] == [(TYPE_MISMATCH, '$[1]'), (TYPE_MISMATCH, '$[3]')]

    def test_unresolved_and_cyclic_refs(self):
        """Test reference problems are violations, not exceptions."""
        _, registry = load_contract({'schemas': {'Loop': {'$ref': '#/schemas/Loop'}}})
        validator = ContractValidator(registry)

        unresolved = validator.validate_value(SchemaNode(kind='ref', ref='Missing'), {})
        cyclic = validator.validate_value(SchemaNode(kind='ref', ref='Loop'), {})

        assert [e.kind for e in unresolved] == [UNRESOLVED_REF]
        assert [e.kind for e in cyclic] == [SCHEMA_CYCLE]


class TestGeneratedResponsesConform:
    """Test synthesized responses validate against their contract."""

    @pytest.mark.parametrize('seed', range(10))
    def test_synthesized_response_is_valid(self, loaded, validator, seed):
        endpoints, registry = loaded
        endpoint = endpoints[('GET', '/users/{id}')]
        spec = endpoint.response_for(200)

        headers, body = spec.synthesize(DataGenerator(registry), random.Random(seed))
        result = validator.validate_response(endpoint, 200, headers, body)

        assert result.valid, result.to_dict()

    @pytest.mark.parametrize('seed', range(10))
    def test_scalar_enums_round_trip(self, seed):
        endpoints, registry = load_contract({
            'paths': {
                '/levels': {
                    'get': {
                        'responses': {
                            '200': {
                                'content': {'application/json': {'schema': {
                                    'type': 'object',
                                    'required': ['level', 'ratio', 'flag', 'tier'],
                                    'properties': {
                                        'level': {'type': 'integer', 'enum': [1, 2, 3]},
                                        'ratio': {'type': 'number', 'enum': [0.25, 0.5]},
                                        'flag': {'type': 'boolean', 'enum': [True]},
                                        'tier': {'enum': [10, 20]},
                                    }
                                }}}
                            }
                        }
                    }
                }
            }
        })
        endpoint = endpoints[('GET', '/levels')]

        headers, body = endpoint.response_for(200).synthesize(DataGenerator(registry), random.Random(seed))
        result = ContractValidator(registry).validate_response(endpoint, 200, headers, body)

        assert result.valid, result.to_dict()
        assert body['level'] in (1, 2, 3)
        assert body['flag'] is True
