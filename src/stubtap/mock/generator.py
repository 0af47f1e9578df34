"""
StubTap Response Synthesizer

Builds the concrete response for a matched stub.

Features:
- Template variable substitution (``{{request.path_params.id}}``, ``{{state.x}}``)
- Schema-driven fields via ``{"$generate": <schema or schema name>}``
- Cyclic response sequences with per-step repeat counts
- Actions over the response and the scenario's working memory
- Reproducible output: each render is seeded from the scenario's match count
"""

import json
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from ..contract.validator import ValidationResult
from ..schema.generator import DataGenerator
from ..schema.model import SchemaNode
from .actions import ActionEvaluator, render_template
from .models import DEFAULT_SCENARIO, RequestDescriptor, StubDefinition
from .scenarios import ScenarioState, ScenarioStore, SequenceCursor


logger = logging.getLogger("stubtap.mock")

GENERATE_KEY = '$generate'


def _header_text(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


@dataclass
class MockResponse:
    """A rendered response, ready for the transport."""

    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    stub_id: Optional[str] = None
    scenario: str = DEFAULT_SCENARIO
    delay: float = 0.0
    validation: Optional[ValidationResult] = None

    def body_bytes(self) -> bytes:
        """Body encoded for the wire (structured bodies as JSON)."""
        if self.body is None:
            return b''
        if isinstance(self.body, (bytes, bytearray)):
            return bytes(self.body)
        if isinstance(self.body, str):
            return self.body.encode('utf-8')
        return json.dumps(self.body).encode('utf-8')

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'status': self.status,
            'headers': dict(self.headers),
            'body': self.body,
            'stub_id': self.stub_id,
            'scenario': self.scenario,
        }
        if self.validation is not None:
            data['validation'] = self.validation.to_dict()
        return data


class ResponseSynthesizer:
    """
    Renders stub responses and commits the scenario changes they cause.

    All per-request work (sequence cursor, rendering, actions) happens
    inside one ``ScenarioStore.apply`` call, so a failure leaves the
    scenario untouched and the response always matches the committed state.

    Example:
        synthesizer = ResponseSynthesizer(ScenarioStore(), DataGenerator(registry), seed=7)
        response = synthesizer.render(stub, request, {'id': '42'}, 'default')
        print(response.status, response.body)
    """

    def __init__(
        self,
        store: ScenarioStore,
        data_generator: Optional[DataGenerator] = None,
        evaluator: Optional[ActionEvaluator] = None,
        seed: Optional[int] = 0
    ):
        """
        Initialize response synthesizer.

        Args:
            store: Scenario store holding sequence cursors and scenario data
            data_generator: Generator for ``$generate`` fields
            evaluator: Action evaluator (with its named functions)
            seed: Base seed for per-render randomness; None uses the
                  generator's thread-local random source
        """
        self.store = store
        self.data_generator = data_generator or DataGenerator()
        self.evaluator = evaluator or ActionEvaluator()
        self.seed = seed

    def render(
        self,
        stub: StubDefinition,
        request: RequestDescriptor,
        path_params: Mapping[str, str],
        scenario: str = DEFAULT_SCENARIO
    ) -> MockResponse:
        """
        Produce the response for a matched stub.

        Args:
            stub: The stub selected by the matcher
            request: The incoming request
            path_params: Parameters bound by the path template
            scenario: Active scenario whose state the response reads and updates

        Returns:
            Rendered MockResponse

        Raises:
            SchemaCycleError, SchemaValidationError: If a ``$generate`` field fails
            ValidationError: If an action is invalid at render time
        """
        outcome: Dict[str, MockResponse] = {}

        def mutate(state: ScenarioState) -> ScenarioState:
            rng = self._rng_for(scenario, stub, state.match_count)
            status, headers, body = stub.response.status, dict(stub.response.headers), stub.response.body
            sequence_info = None

            if stub.sequence:
                key = stub.sequence_key
                cursor = state.sequences.get(key, SequenceCursor())
                step = stub.sequence[cursor.step_index]
                sequence_info = {'name': key, 'step': cursor.step_index, 'repeat': cursor.repeat_count}
                if step.status is not None:
                    status = step.status
                if step.headers is not None:
                    headers.update(step.headers)
                if step.body is not None:
                    body = step.body
                state.sequences[key] = cursor.advance([s.repeat for s in stub.sequence])

            context = self._context(request, path_params, state, scenario, stub, sequence_info)
            document = {
                'status': status,
                'headers': {str(k): _header_text(v) for k, v in self._materialize(headers, context, rng).items()},
                'body': self._materialize(body, context, rng),
                'state': state.data,
            }
            context['response'] = document

            self.evaluator.apply(stub.response.actions, document, context, rng)
            self.evaluator.apply(stub.state_actions, document, context, rng)

            state.data = document['state']
            state.match_count += 1

            response_headers = {str(k): _header_text(v) for k, v in (document['headers'] or {}).items()}
            if isinstance(document['body'], (dict, list)) and not any(
                k.lower() == 'content-type' for k in response_headers
            ):
                response_headers['Content-Type'] = 'application/json'

            outcome['response'] = MockResponse(
                status=int(document['status']),
                headers=response_headers,
                body=document['body'],
                stub_id=stub.id,
                scenario=scenario,
                delay=stub.delay
            )
            return state

        self.store.apply(scenario, mutate)
        response = outcome['response']
        logger.debug(f"Rendered {stub.id} -> {response.status} (scenario={scenario})")
        return response

    def _rng_for(self, scenario: str, stub: StubDefinition, counter: int) -> random.Random:
        if self.seed is None:
            return self.data_generator.rng
        return random.Random(f"{self.seed}:{scenario}:{stub.id}:{counter}")

    @staticmethod
    def _context(
        request: RequestDescriptor,
        path_params: Mapping[str, str],
        state: ScenarioState,
        scenario: str,
        stub: StubDefinition,
        sequence_info: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        request_data = request.to_dict()
        request_data['path_params'] = dict(path_params)
        return {
            'request': request_data,
            'state': state.data,
            'scenario': scenario,
            'stub': {'id': stub.id, 'name': stub.name},
            'sequence': sequence_info or {},
        }

    def _materialize(self, value: Any, context: Mapping[str, Any], rng: random.Random) -> Any:
        """Resolve ``$generate`` nodes and ``{{...}}`` placeholders in a template value."""
        if isinstance(value, dict):
            if GENERATE_KEY in value and len(value) == 1:
                return self._generate(value[GENERATE_KEY], rng)
            return {key: self._materialize(item, context, rng) for key, item in value.items()}
        if isinstance(value, list):
            return [self._materialize(item, context, rng) for item in value]
        if isinstance(value, str):
            return render_template(value, context)
        return value

    def _generate(self, schema: Any, rng: random.Random) -> Any:
        if isinstance(schema, str):
            return self.data_generator.generate(SchemaNode(kind='ref', ref=schema), rng=rng)
        return self.data_generator.generate(schema, rng=rng)
