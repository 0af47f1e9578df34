"""
StubTap Mock Engine

Transport-independent facade over the registry, matcher, synthesizer,
scenario store and contract validator. An HTTP adapter (see ``server``)
or a test harness drives it with RequestDescriptors.

Features:
- Stub registration from objects, dicts or YAML/JSON files
- Active scenario switching and per-scenario reset
- In-memory request log for "verify N calls" assertions
- Contract loading, optional response validation, contract-backed stubs
- Sync and async request handling with per-stub delays
"""

import asyncio
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field, fields
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from ..common.errors import NotFoundError, StubTapError, ValidationError
from ..common.paths import PathTemplate
from ..common.utils import DocumentLoader, filter_interesting_headers
from ..contract.loader import ContractEndpointSpec, EndpointMap, find_endpoint, load_contract
from ..contract.validator import ContractValidator
from ..schema.generator import DEFAULT_MAX_DEPTH, DataGenerator
from ..schema.model import SchemaRegistry
from .actions import ActionEvaluator
from .generator import GENERATE_KEY, MockResponse, ResponseSynthesizer
from .matcher import DEFAULT_CAS_RETRIES, DEFAULT_CLOSEST_LIMIT, MatchResult, RequestMatcher
from .models import DEFAULT_SCENARIO, RequestDescriptor, ResponseTemplate, StubDefinition
from .registry import StubFilter, StubRegistry
from .scenarios import ScenarioState, ScenarioStore


logger = logging.getLogger("stubtap.mock")

StubInput = Union[StubDefinition, Mapping[str, Any]]
LogFilter = Union[Mapping[str, Any], Callable[['LoggedRequest'], bool], None]


@dataclass
class MockConfig:
    """Configuration for mock engine behavior."""

    # Scenarios
    active_scenario: str = DEFAULT_SCENARIO  # Scenario active at startup and after reset_all

    # Generation
    max_ref_depth: int = DEFAULT_MAX_DEPTH  # Maximum nested $ref resolutions
    seed: Optional[int] = 0  # Base seed for reproducible responses (None = unseeded)

    # Matching
    cas_max_retries: int = DEFAULT_CAS_RETRIES  # Compare-and-swap attempts per match
    closest_matches_limit: int = DEFAULT_CLOSEST_LIMIT  # Near misses listed on 404

    # Request log
    request_log_limit: int = 1000  # Maximum entries kept (0 = unlimited, FIFO eviction)

    # Contracts
    validate_contracts: bool = False  # Validate responses against the loaded contract

    # Admin API
    admin_prefix: str = "/__admin__"

    # Logging
    log_level: str = "info"

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'MockConfig':
        """
        Create MockConfig from a dictionary, ignoring unknown keys.

        Raises:
            ValidationError: If a known key has an unusable value
        """
        known = {f.name for f in fields(cls)}
        config = cls(**{k: v for k, v in (data or {}).items() if k in known})
        if config.request_log_limit < 0:
            raise ValidationError("request_log_limit must not be negative")
        if config.cas_max_retries < 1:
            raise ValidationError("cas_max_retries must be at least 1")
        if config.max_ref_depth < 1:
            raise ValidationError("max_ref_depth must be at least 1")
        if not isinstance(logging.getLevelName(config.log_level.upper()), int):
            raise ValidationError(f"Unknown log level '{config.log_level}'")
        return config

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> 'MockConfig':
        """
        Load MockConfig from a YAML file (top-level ``mock:`` section optional).

        Raises:
            FileNotFoundError: If the file does not exist
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data.get('mock', data))


@dataclass
class MockMetrics:
    """Track mock engine metrics."""

    total_requests: int = 0
    matched_requests: int = 0
    unmatched_requests: int = 0
    start_time: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        uptime_seconds = (datetime.now() - datetime.fromisoformat(self.start_time)).total_seconds()
        return {
            'total_requests': self.total_requests,
            'matched_requests': self.matched_requests,
            'unmatched_requests': self.unmatched_requests,
            'match_rate': round((self.matched_requests / self.total_requests * 100) if self.total_requests > 0 else 0, 2),
            'uptime_seconds': round(uptime_seconds, 2),
            'start_time': self.start_time
        }


@dataclass
class LoggedRequest:
    """One entry of the request log."""

    request: RequestDescriptor
    status: int
    stub_id: Optional[str] = None
    scenario: str = DEFAULT_SCENARIO
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def matched(self) -> bool:
        return self.stub_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'request': self.request.to_dict(),
            'status': self.status,
            'stub_id': self.stub_id,
            'scenario': self.scenario,
            'matched': self.matched
        }


class MockEngine:
    """
    The mock engine a transport or test harness talks to.

    Example:
        engine = MockEngine(MockConfig(seed=1))
        engine.register_stub({
            'method': 'GET',
            'path': '/users/{id}',
            'response': {'status': 200, 'body': {'id': '{{request.path_params.id}}'}}
        })
        response = engine.handle(RequestDescriptor.build('GET', '/users/42'))
        assert response.body == {'id': '42'}
        assert len(engine.query_request_log({'path': '/users/42'})) == 1
    """

    def __init__(
        self,
        config: Optional[MockConfig] = None,
        registry: Optional[StubRegistry] = None,
        store: Optional[ScenarioStore] = None,
        evaluator: Optional[ActionEvaluator] = None
    ):
        """
        Initialize mock engine.

        Args:
            config: Optional MockConfig
            registry: Optional StubRegistry (a fresh one is created if None)
            store: Optional ScenarioStore (a fresh one is created if None)
            evaluator: Optional ActionEvaluator carrying custom named functions
        """
        self.config = config or MockConfig()
        logging.getLogger("stubtap").setLevel(getattr(logging, self.config.log_level.upper()))

        self.registry = registry if registry is not None else StubRegistry()
        self.store = store if store is not None else ScenarioStore()
        self.schemas = SchemaRegistry()
        self.data_generator = DataGenerator(self.schemas, max_depth=self.config.max_ref_depth, seed=self.config.seed)
        self.matcher = RequestMatcher(
            self.registry,
            cas_max_retries=self.config.cas_max_retries,
            closest_limit=self.config.closest_matches_limit
        )
        self.synthesizer = ResponseSynthesizer(
            self.store,
            data_generator=self.data_generator,
            evaluator=evaluator or ActionEvaluator(),
            seed=self.config.seed
        )
        self.validator = ContractValidator(self.schemas, max_depth=self.config.max_ref_depth)
        self.endpoints: EndpointMap = {}
        self.metrics = MockMetrics()

        self._active_scenario = self.config.active_scenario
        self._lock = threading.Lock()
        self._log: Deque[LoggedRequest] = deque(maxlen=self.config.request_log_limit or None)

    # Stubs

    def register_stub(self, stub: StubInput) -> str:
        """
        Register a stub (a StubDefinition or its dict form).

        Returns:
            The stub id

        Raises:
            ValidationError: If the stub is malformed; nothing is registered
        """
        if not isinstance(stub, StubDefinition):
            stub = StubDefinition.from_dict(stub)
        stub_id = self.registry.register(stub)
        if stub.initial_state is not None:
            self.store.configure(stub.scenario, stub.initial_state)
        return stub_id

    def load_stubs(self, file_path: Union[str, Path]) -> List[str]:
        """Register every stub in a YAML/JSON stub file."""
        loader = DocumentLoader(str(file_path))
        ids = [self.register_stub(entry) for entry in loader.load_stubs()]
        logger.info(f"Loaded {len(ids)} stubs from {file_path}")
        return ids

    def remove_stub(self, stub_id: str):
        """
        Remove a stub.

        Raises:
            NotFoundError: If no stub has that id
        """
        if not self.registry.remove(stub_id):
            raise NotFoundError(f"Unknown stub id '{stub_id}'")

    def get_stub(self, stub_id: str) -> StubDefinition:
        """
        Look up a stub by id.

        Raises:
            NotFoundError: If no stub has that id
        """
        stub = self.registry.get(stub_id)
        if stub is None:
            raise NotFoundError(f"Unknown stub id '{stub_id}'")
        return stub

    def list_stubs(self, stub_filter: StubFilter = None) -> List[StubDefinition]:
        return self.registry.list(stub_filter)

    # Scenarios

    @property
    def active_scenario(self) -> str:
        return self._active_scenario

    def set_active_scenario(self, name: str):
        if not name:
            raise ValidationError("Scenario name must not be empty")
        self._active_scenario = name
        logger.info(f"Active scenario is now '{name}'")

    def get_scenario_state(self, name: Optional[str] = None) -> ScenarioState:
        return self.store.get_state(name or self._active_scenario)

    def reset_scenario(self, name: str):
        """Reset one scenario's data and sequence cursors."""
        self.store.reset(name)

    def reset_all(self):
        """Drop every stub, scenario, schema and logged request."""
        self.registry.clear()
        self.store.clear()
        self.schemas.clear()
        self.endpoints = {}
        self.clear_request_log()
        self.metrics = MockMetrics()
        self._active_scenario = self.config.active_scenario
        logger.info("Reset mock engine")

    # Request log

    def request_log_entries(self, log_filter: LogFilter = None) -> List[LoggedRequest]:
        """
        Logged requests, oldest first.

        Args:
            log_filter: Callable predicate, or a mapping with any of
                        method, path, path_template, stub_id, scenario,
                        matched, status

        Returns:
            Matching LoggedRequest entries
        """
        with self._lock:
            entries = list(self._log)
        if log_filter is None:
            return entries
        if callable(log_filter):
            return [e for e in entries if log_filter(e)]

        template = None
        if 'path_template' in log_filter:
            template = PathTemplate.parse(log_filter['path_template'])

        def accepts(entry: LoggedRequest) -> bool:
            request = entry.request
            if 'method' in log_filter and request.method != str(log_filter['method']).upper():
                return False
            if 'path' in log_filter and request.path != log_filter['path']:
                return False
            if template is not None and template.match(request.path) is None:
                return False
            for key in ('stub_id', 'scenario', 'matched', 'status'):
                if key in log_filter and getattr(entry, key) != log_filter[key]:
                    return False
            return True

        return [e for e in entries if accepts(e)]

    def query_request_log(self, log_filter: LogFilter = None) -> List[RequestDescriptor]:
        """Recorded requests matching ``log_filter`` (see ``request_log_entries``)."""
        return [entry.request for entry in self.request_log_entries(log_filter)]

    def clear_request_log(self) -> int:
        with self._lock:
            count = len(self._log)
            self._log.clear()
        return count

    # Contracts

    def load_contract(self, document: Union[Mapping[str, Any], str, Path]) -> Tuple[EndpointMap, SchemaRegistry]:
        """
        Load a contract; its schemas become available to ``$generate`` fields.

        Args:
            document: Parsed contract document, or a YAML/JSON file path

        Returns:
            (endpoint map, schema registry) of the loaded contract
        """
        if isinstance(document, (str, Path)):
            document = DocumentLoader(str(document)).load()
        endpoints, schemas = load_contract(document)
        for name, node in schemas.items():
            self.schemas.register(name, node)
        self.endpoints.update(endpoints)
        return endpoints, schemas

    def register_contract_stubs(self, status: str = '200', scenario: str = DEFAULT_SCENARIO) -> List[str]:
        """
        Register one stub per contract operation that generates its response.

        Operations without a ``status`` response are skipped. The stubs use
        priority -1 so hand-written stubs take precedence.
        """
        ids = []
        for (method, path), endpoint in sorted(self.endpoints.items()):
            spec = endpoint.responses.get(str(status))
            if spec is None:
                continue
            headers = {
                h.name: {GENERATE_KEY: h.schema.to_dict()} if h.schema is not None else 'stubtap'
                for h in spec.headers
            }
            body = {GENERATE_KEY: spec.body.to_dict()} if spec.body is not None else None
            ids.append(self.register_stub(StubDefinition(
                method=method,
                path=path,
                response=ResponseTemplate(status=int(status), headers=headers, body=body),
                priority=-1,
                scenario=scenario,
                name=endpoint.operation_id or f"{method} {path}"
            )))
        logger.info(f"Registered {len(ids)} contract-backed stubs")
        return ids

    def contract_for(self, request: RequestDescriptor) -> Optional[ContractEndpointSpec]:
        return find_endpoint(self.endpoints, request.method, request.path)

    # Request handling

    def handle(self, request: RequestDescriptor) -> MockResponse:
        """
        Answer a request, sleeping in the calling thread for the stub's delay.

        Returns:
            The rendered response, or a 404 diagnostic response if nothing matched
        """
        response = self._dispatch(request)
        if response.delay > 0:
            time.sleep(response.delay)
        return response

    async def handle_async(self, request: RequestDescriptor) -> MockResponse:
        """Answer a request, suspending only this task for the stub's delay."""
        response = self._dispatch(request)
        if response.delay > 0:
            await asyncio.sleep(response.delay)
        return response

    def _dispatch(self, request: RequestDescriptor) -> MockResponse:
        scenario = self._active_scenario
        try:
            result = self.matcher.match(request, scenario)
        except NotFoundError as e:
            response = self._not_found_response(e, request, scenario)
            self._record(request, response, matched=False)
            return response

        try:
            response = self.synthesizer.render(result.stub, request, result.path_params, scenario)
        except StubTapError as e:
            logger.error(f"Stub {result.stub.id} failed to render for {request.method} {request.path}: {e}")
            response = self._render_error_response(e, result.stub, scenario)
            self._record(request, response, matched=True)
            return response

        if self.config.validate_contracts:
            self._validate(request, response)
        self._record(request, response, matched=True)
        logger.debug(f"{request.method} {request.path} -> {response.status} via {result.stub.id}")
        return response

    def match(self, request: RequestDescriptor) -> MatchResult:
        """Run the matcher alone against the active scenario (consumes a use)."""
        return self.matcher.match(request, self._active_scenario)

    def _validate(self, request: RequestDescriptor, response: MockResponse):
        endpoint = self.contract_for(request)
        if endpoint is None:
            return
        response.validation = self.validator.validate_response(endpoint, response.status, response.headers, response.body)
        if not response.validation.valid:
            logger.warning(
                f"Contract drift on {request.method} {request.path}: "
                f"{len(response.validation.errors)} violation(s)"
            )

    @staticmethod
    def _render_error_response(error: StubTapError, stub: StubDefinition, scenario: str) -> MockResponse:
        return MockResponse(
            status=500,
            headers={'Content-Type': 'application/json'},
            body={
                'error': 'Stub render failed',
                'type': type(error).__name__,
                'message': str(error),
                'stub_id': stub.id
            },
            stub_id=stub.id,
            scenario=scenario
        )

    @staticmethod
    def _not_found_response(error: NotFoundError, request: RequestDescriptor, scenario: str) -> MockResponse:
        return MockResponse(
            status=404,
            headers={'Content-Type': 'application/json'},
            body={
                'error': 'No matching stub',
                'message': error.message,
                'request': {
                    'method': request.method,
                    'path': request.path,
                    'headers': filter_interesting_headers(request.headers)
                },
                'closest_stubs': error.closest
            },
            scenario=scenario
        )

    def _record(self, request: RequestDescriptor, response: MockResponse, matched: bool):
        with self._lock:
            self.metrics.total_requests += 1
            if matched:
                self.metrics.matched_requests += 1
            else:
                self.metrics.unmatched_requests += 1
            self._log.append(LoggedRequest(
                request=request,
                status=response.status,
                stub_id=response.stub_id,
                scenario=response.scenario
            ))
