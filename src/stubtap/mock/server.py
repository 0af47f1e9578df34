"""
StubTap Mock Server

FastAPI application exposing a MockEngine over HTTP.

Features:
- Catch-all mock route backed by ``MockEngine.handle_async``
- Admin API for stubs, scenarios, the request log, contracts and metrics
- Debug headers naming the matched stub and contract validation outcome
- Error translation: invalid input -> 400, unknown stub / no match -> 404

Hosting (uvicorn, hypercorn, a test client) is left to the caller:
``create_app(engine)`` returns a plain ASGI application.
"""

from __future__ import annotations  # Enable forward references for type hints

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from ..common.errors import NotFoundError, StubTapError, ValidationError
from .engine import MockConfig, MockEngine
from .generator import MockResponse
from .models import RequestDescriptor


logger = logging.getLogger("stubtap.mock")

MOCK_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]
HEADERS_TO_SKIP = {'content-length', 'transfer-encoding', 'connection'}


def create_app(engine: MockEngine) -> FastAPI:
    """
    Create the FastAPI application for an engine.

    Args:
        engine: The MockEngine requests are routed to

    Returns:
        FastAPI application with admin routes under ``engine.config.admin_prefix``
    """
    app = FastAPI(
        title="StubTap Mock Server",
        description="Stateful mock HTTP server driven by registered stubs",
        version="1.0.0"
    )
    prefix = engine.config.admin_prefix.rstrip('/')

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={'error': 'validation', 'message': str(exc)})

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={'error': 'not_found', 'message': str(exc)})

    @app.exception_handler(StubTapError)
    async def stubtap_error_handler(request: Request, exc: StubTapError):
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=500, content={'error': type(exc).__name__, 'message': str(exc)})

    # Stubs

    @app.get(f"{prefix}/stubs")
    async def list_stubs(method: Optional[str] = None, scenario: Optional[str] = None):
        """List registered stubs in registration order."""
        stub_filter = {k: v for k, v in (('method', method), ('scenario', scenario)) if v}
        stubs = [s.to_dict() for s in engine.list_stubs(stub_filter or None)]
        return JSONResponse(content={'total': len(stubs), 'stubs': stubs})

    @app.post(f"{prefix}/stubs")
    async def create_stubs(request: Request):
        """Register one stub (object) or several (list)."""
        payload = await read_json(request)
        if isinstance(payload, list):
            ids = [engine.register_stub(entry) for entry in payload]
            return JSONResponse(status_code=201, content={'ids': ids})
        if not isinstance(payload, dict):
            raise ValidationError("Stub payload must be an object or a list of objects")
        return JSONResponse(status_code=201, content={'id': engine.register_stub(payload)})

    @app.get(f"{prefix}/stubs/{{stub_id}}")
    async def get_stub(stub_id: str):
        return JSONResponse(content=engine.get_stub(stub_id).to_dict())

    @app.delete(f"{prefix}/stubs/{{stub_id}}")
    async def delete_stub(stub_id: str):
        engine.remove_stub(stub_id)
        return JSONResponse(content={'status': 'removed', 'id': stub_id})

    # Scenarios

    @app.get(f"{prefix}/scenarios/active")
    async def get_active_scenario():
        return JSONResponse(content={'name': engine.active_scenario})

    @app.put(f"{prefix}/scenarios/active")
    async def set_active_scenario(request: Request):
        """Switch the active scenario: ``{"name": "checkout"}``."""
        payload = await read_json(request)
        if not isinstance(payload, dict):
            raise ValidationError("Expected an object with a 'name' field")
        engine.set_active_scenario(payload.get('name', ''))
        return JSONResponse(content={'name': engine.active_scenario})

    @app.get(f"{prefix}/scenarios/{{name}}")
    async def get_scenario(name: str):
        return JSONResponse(content=engine.get_scenario_state(name).to_dict())

    @app.post(f"{prefix}/scenarios/{{name}}/reset")
    async def reset_scenario(name: str):
        engine.reset_scenario(name)
        return JSONResponse(content={'status': 'reset', 'name': name})

    @app.post(f"{prefix}/reset")
    async def reset_all():
        """Drop all stubs, scenarios, schemas and logged requests."""
        engine.reset_all()
        return JSONResponse(content={'status': 'reset'})

    # Request log

    @app.get(f"{prefix}/requests")
    async def get_requests(
        method: Optional[str] = None,
        path: Optional[str] = None,
        stub_id: Optional[str] = None,
        matched: Optional[bool] = None
    ):
        """Logged requests, oldest first, optionally filtered."""
        log_filter = {
            k: v for k, v in (('method', method), ('path', path), ('stub_id', stub_id), ('matched', matched))
            if v is not None
        }
        entries = [e.to_dict() for e in engine.request_log_entries(log_filter or None)]
        return JSONResponse(content={'total': len(entries), 'requests': entries})

    @app.delete(f"{prefix}/requests")
    async def clear_requests():
        return JSONResponse(content={'status': 'cleared', 'cleared_count': engine.clear_request_log()})

    # Contracts

    @app.post(f"{prefix}/contract")
    async def upload_contract(request: Request, register_stubs: bool = False):
        """Load a parsed contract document; optionally register contract-backed stubs."""
        payload = await read_json(request)
        endpoints, schemas = engine.load_contract(payload)
        content: Dict[str, Any] = {'operations': len(endpoints), 'schemas': len(schemas)}
        if register_stubs:
            content['stub_ids'] = engine.register_contract_stubs()
        return JSONResponse(content=content)

    @app.get(f"{prefix}/metrics")
    async def get_metrics():
        """Get engine metrics."""
        return JSONResponse(content=engine.metrics.to_dict())

    # Main catch-all route for mocking
    @app.api_route("/{path:path}", methods=MOCK_METHODS)
    async def mock_request(request: Request, path: str):
        """Handle incoming requests and serve mock responses."""
        descriptor = await to_descriptor(request)
        response = await engine.handle_async(descriptor)
        return to_fastapi_response(response)

    return app


async def read_json(request: Request) -> Any:
    """Parse a JSON request body, rejecting malformed input as a ValidationError."""
    try:
        return await request.json()
    except ValueError as e:
        raise ValidationError(f"Request body is not valid JSON: {e}") from e


async def to_descriptor(request: Request) -> RequestDescriptor:
    """Convert a FastAPI request into a RequestDescriptor."""
    query: Dict[str, Union[str, List[str]]] = {}
    for key in request.query_params.keys():
        values = request.query_params.getlist(key)
        query[key] = values[0] if len(values) == 1 else values
    body = await request.body()
    return RequestDescriptor.build(request.method, request.url.path, dict(request.headers), query, body)


def to_fastapi_response(response: MockResponse) -> Response:
    """
    Create a FastAPI Response from a rendered MockResponse.

    Adds StubTap debug headers for developer visibility.
    """
    headers = {k: v for k, v in response.headers.items() if k.lower() not in HEADERS_TO_SKIP}
    if response.stub_id:
        headers['X-StubTap-Stub-Id'] = response.stub_id
    headers['X-StubTap-Scenario'] = response.scenario
    if response.validation is not None:
        headers['X-StubTap-Contract-Valid'] = 'true' if response.validation.valid else 'false'

    return Response(
        content=response.body_bytes(),
        status_code=response.status,
        headers=headers
    )


class MockServer:
    """
    Convenience wrapper bundling an engine with its FastAPI app.

    Example:
        server = MockServer(MockConfig(seed=3), stub_file='stubs.yaml')
        app = server.get_app()  # hand to any ASGI server or TestClient
    """

    def __init__(
        self,
        config: Optional[MockConfig] = None,
        stub_file: Optional[Union[str, Path]] = None,
        contract_file: Optional[Union[str, Path]] = None,
        engine: Optional[MockEngine] = None
    ):
        """
        Initialize mock server.

        Args:
            config: Optional MockConfig for engine behavior
            stub_file: Optional YAML/JSON stub file to register at startup
            contract_file: Optional YAML/JSON contract to load at startup
            engine: Optional pre-built MockEngine (config is then ignored)
        """
        self.engine = engine or MockEngine(config)
        self.config = self.engine.config
        if contract_file:
            self.engine.load_contract(contract_file)
        if stub_file:
            self.engine.load_stubs(stub_file)
        self.app = create_app(self.engine)

    def get_app(self) -> FastAPI:
        """
        Get the FastAPI app instance for testing or custom deployment.

        Returns:
            FastAPI application instance
        """
        return self.app


def create_mock_server(
    stub_file: Optional[Union[str, Path]] = None,
    contract_file: Optional[Union[str, Path]] = None,
    config_file: Optional[Union[str, Path]] = None,
    **overrides: Any
) -> MockServer:
    """
    Convenience function to create and configure a mock server.

    Args:
        stub_file: YAML/JSON stub file
        contract_file: YAML/JSON contract document
        config_file: YAML config file (see MockConfig.from_yaml)
        **overrides: MockConfig fields overriding the file values

    Returns:
        Configured MockServer instance

    Example:
        server = create_mock_server('stubs.yaml', seed=1, validate_contracts=True)
    """
    base = MockConfig.from_yaml(config_file).__dict__ if config_file else {}
    config = MockConfig.from_dict({**base, **overrides})
    return MockServer(config, stub_file=stub_file, contract_file=contract_file)
