"""
StubTap Request Matcher

Selects the single stub that answers an incoming request.

Features:
- Structural path matching (literal, ``{name}`` and trailing ``*`` segments)
- Scenario gating (``default`` stubs are always eligible)
- Query, header, body and path-param matchers (exact, subset, regex)
- Priority ordering with most-recent registration breaking ties
- Use consumption through compare-and-swap
- Closest-stub diagnostics for unmatched requests
"""

import logging
import re
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import Any, Dict, List, Mapping, Optional

from ..common.errors import ConcurrencyConflict, NotFoundError
from ..common.paths import PathTemplate, split_path
from .models import DEFAULT_SCENARIO, UNLIMITED, Matcher, RequestDescriptor, StubDefinition
from .registry import StubRegistry


logger = logging.getLogger("stubtap.mock")

DEFAULT_CAS_RETRIES = 16
DEFAULT_CLOSEST_LIMIT = 3


@dataclass
class MatchResult:
    """Result of matching a request."""

    stub: StubDefinition
    path_params: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'stub_id': self.stub.id,
            'priority': self.stub.priority,
            'path_params': dict(self.path_params),
        }


def _query_values(actual: Any) -> List[str]:
    if actual is None:
        return []
    if isinstance(actual, (list, tuple)):
        return [str(v) for v in actual]
    return [str(actual)]


def _expected_matches(kind: str, expected: Any, values: List[str]) -> bool:
    if not values:
        return False
    if kind == 'regex':
        return any(re.search(expected, v) for v in values)
    if isinstance(expected, (list, tuple)):
        return [str(e) for e in expected] == values
    if isinstance(expected, bool):
        expected = 'true' if expected else 'false'
    return str(expected) in values


def is_subset(expected: Any, actual: Any) -> bool:
    """
    True if ``expected`` is contained in ``actual``.

    Objects need every expected key with a contained value; arrays need
    every expected item contained in some actual item; scalars compare equal.
    """
    if isinstance(expected, dict):
        if not isinstance(actual, dict):
            return False
        return all(key in actual and is_subset(value, actual[key]) for key, value in expected.items())
    if isinstance(expected, list):
        if not isinstance(actual, list):
            return False
        return all(any(is_subset(item, candidate) for candidate in actual) for item in expected)
    return expected == actual


def matcher_accepts(matcher: Matcher, request: RequestDescriptor, path_params: Mapping[str, str]) -> bool:
    """Evaluate one matcher against a request."""
    target, kind, value = matcher.target, matcher.kind, matcher.value

    if target == 'body':
        if kind == 'regex':
            return re.search(value, request.body_text) is not None
        body = request.body
        if isinstance(body, (bytes, bytearray)):
            body = request.body_text
        if kind == 'subset':
            return is_subset(value, body)
        return body == value

    if target == 'query':
        if kind == 'exact' and set(request.query) != set(value):
            return False
        return all(
            _expected_matches(kind, expected, _query_values(request.query.get(name)))
            for name, expected in value.items()
        )

    if target == 'header':
        return all(
            _expected_matches(kind, expected, _query_values(request.headers.get(name.lower())))
            for name, expected in value.items()
        )

    # path_param
    return all(
        _expected_matches(kind, expected, _query_values(path_params.get(name)))
        for name, expected in value.items()
    )


class RequestMatcher:
    """
    Deterministic matcher over a StubRegistry.

    Example:
        matcher = RequestMatcher(registry)
        try:
            result = matcher.match(RequestDescriptor.build('GET', '/users/42'), 'default')
            print(result.stub.id, result.path_params)  # {'id': '42'}
        except NotFoundError as e:
            print(e.closest)
    """

    def __init__(
        self,
        registry: StubRegistry,
        cas_max_retries: int = DEFAULT_CAS_RETRIES,
        closest_limit: int = DEFAULT_CLOSEST_LIMIT
    ):
        """
        Initialize request matcher.

        Args:
            registry: Stub registry to match against
            cas_max_retries: Compare-and-swap attempts before ConcurrencyConflict
            closest_limit: Number of near-miss stubs reported on NotFoundError
        """
        self.registry = registry
        self.cas_max_retries = cas_max_retries
        self.closest_limit = closest_limit

    def match(self, request: RequestDescriptor, active_scenario: str = DEFAULT_SCENARIO) -> MatchResult:
        """
        Find and consume the stub answering ``request``.

        Args:
            request: Parsed request
            active_scenario: Currently active scenario name

        Returns:
            MatchResult with the winning stub and bound path params

        Raises:
            NotFoundError: If no stub survives filtering
            ConcurrencyConflict: If use consumption keeps losing races
        """
        try:
            return self._match_once(request, active_scenario)
        except ConcurrencyConflict:
            logger.warning(f"CAS contention on {request.method} {request.path}, retrying match")
            return self._match_once(request, active_scenario)

    def _match_once(self, request: RequestDescriptor, active_scenario: str) -> MatchResult:
        eligible = []
        for stub, params in self.registry.candidates(request.method, request.path):
            if stub.exhausted:
                continue
            if stub.scenario != DEFAULT_SCENARIO and stub.scenario != active_scenario:
                continue
            if all(matcher_accepts(m, request, params) for m in stub.matchers):
                eligible.append((stub, params))

        if not eligible:
            logger.warning(f"No stub matches {request.method} {request.path}")
            raise NotFoundError(
                f"No stub matches {request.method} {request.path}",
                {'scenario': active_scenario},
                closest=self.closest_stubs(request, active_scenario)
            )

        stub, params = max(eligible, key=lambda pair: (pair[0].priority, pair[0].registration_seq))
        self._consume(stub, request, active_scenario)
        logger.debug(f"Matched {request.method} {request.path} -> {stub.id} (priority {stub.priority})")
        return MatchResult(stub=stub, path_params=params)

    def _consume(self, stub: StubDefinition, request: RequestDescriptor, active_scenario: str):
        for _ in range(self.cas_max_retries):
            current = stub.uses.value
            if current == UNLIMITED:
                return
            if current == 0:
                raise NotFoundError(
                    f"Stub {stub.id} was exhausted by a concurrent request",
                    {'scenario': active_scenario},
                    closest=self.closest_stubs(request, active_scenario)
                )
            if stub.uses.compare_and_swap(current, current - 1):
                return
        raise ConcurrencyConflict(
            f"Could not consume a use of stub {stub.id}",
            {'retries': self.cas_max_retries}
        )

    def closest_stubs(
        self,
        request: RequestDescriptor,
        active_scenario: str = DEFAULT_SCENARIO,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Rank registered stubs by similarity to a request that matched none.

        Returns:
            Up to ``limit`` dicts with id, method, path, score and the
            reasons each stub was rejected
        """
        limit = self.closest_limit if limit is None else limit
        ranked = []
        for stub in self.registry.list():
            reasons = []
            method_ok = stub.method == request.method.upper()
            if not method_ok:
                reasons.append(f"method {stub.method} != {request.method.upper()}")

            params = stub.template.match(request.path)
            if params is None:
                reasons.append(f"path does not fit template {stub.path}")
            else:
                for m in stub.matchers:
                    if not matcher_accepts(m, request, params):
                        reasons.append(f"{m.target} {m.kind} matcher failed")
            if stub.exhausted:
                reasons.append("no remaining uses")
            if stub.scenario != DEFAULT_SCENARIO and stub.scenario != active_scenario:
                reasons.append(f"scenario '{stub.scenario}' is not active")

            score = 0.4 * method_ok + 0.6 * self._path_similarity(stub.template, request.path)
            ranked.append((score, stub.registration_seq, stub, reasons))

        ranked.sort(key=lambda entry: (entry[0], entry[1]), reverse=True)
        return [
            {
                'id': stub.id,
                'method': stub.method,
                'path': stub.path,
                'score': round(score, 3),
                'reasons': reasons
            }
            for score, _, stub, reasons in ranked[:limit]
        ]

    def _path_similarity(self, template: PathTemplate, path: str) -> float:
        """
        Calculate path similarity score.

        Supports:
        - Structural match: 1.0
        - Same segment count: share of literal-equal or parameter segments
        - Otherwise: difflib ratio, halved

        Returns:
            Similarity score 0.0 to 1.0
        """
        if template.match(path) is not None:
            return 1.0

        segments = split_path(path)
        if len(segments) != len(template.segments):
            return SequenceMatcher(None, template.raw.rstrip('/'), path.rstrip('/')).ratio() * 0.5

        matches = sum(
            1 for pattern, actual in zip(template.segments, segments)
            if pattern == actual or pattern.startswith('{')
        )
        return matches / len(segments) if segments else 0.0
