"""
StubTap Mock Models

Data types shared by the stub registry, request matcher and response
synthesizer: stub definitions, request matchers, response templates,
sequence steps and request descriptors.
"""

import json
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import urlparse, parse_qs

from ..common.concurrency import AtomicCounter
from ..common.errors import ValidationError
from ..common.paths import PathTemplate
from ..common.utils import normalize_headers, safe_json_parse
from .actions import Action, parse_actions


DEFAULT_SCENARIO = 'default'
UNLIMITED = -1

MATCH_KINDS = ('exact', 'subset', 'regex')
MATCH_TARGETS = ('path_param', 'query', 'header', 'body')


@dataclass(frozen=True)
class RequestDescriptor:
    """An incoming request, already parsed by the transport."""

    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)
    query: Dict[str, Union[str, List[str]]] = field(default_factory=dict)
    body: Any = None

    @classmethod
    def build(
        cls,
        method: str,
        path: str,
        headers: Optional[Mapping[str, Any]] = None,
        query: Optional[Mapping[str, Any]] = None,
        body: Any = None
    ) -> 'RequestDescriptor':
        """
        Create a descriptor with normalized method, headers and body.

        Bytes/str bodies holding JSON are parsed; anything else is kept raw.
        """
        if isinstance(body, (bytes, bytearray, str)) and body:
            body = safe_json_parse(body, default=body)
        elif isinstance(body, (bytes, bytearray, str)):
            body = None
        return cls(
            method=method.upper(),
            path=path.split('?', 1)[0] or '/',
            headers=normalize_headers(headers),
            query=dict(query or {}),
            body=body
        )

    @classmethod
    def from_url(
        cls,
        method: str,
        url: str,
        headers: Optional[Mapping[str, Any]] = None,
        body: Any = None
    ) -> 'RequestDescriptor':
        """Create a descriptor from a full or relative URL."""
        parsed = urlparse(url)
        query = {
            key: values[0] if len(values) == 1 else values
            for key, values in parse_qs(parsed.query, keep_blank_values=True).items()
        }
        return cls.build(method, parsed.path or '/', headers, query, body)

    @property
    def body_text(self) -> str:
        """Body serialized as text (JSON for structured bodies)."""
        if self.body is None:
            return ''
        if isinstance(self.body, (bytes, bytearray)):
            return self.body.decode('utf-8', errors='replace')
        if isinstance(self.body, str):
            return self.body
        return json.dumps(self.body, sort_keys=True)

    def to_dict(self) -> Dict[str, Any]:
        body = self.body
        if isinstance(body, (bytes, bytearray)):
            body = self.body_text
        return {
            'method': self.method,
            'path': self.path,
            'headers': dict(self.headers),
            'query': dict(self.query),
            'body': body
        }


@dataclass(frozen=True)
class Matcher:
    """
    One request predicate.

    ``target`` selects what is inspected; ``kind`` selects the comparison:
    - path_param / query / header: ``value`` maps names to expected values
      (exact and subset compare equal values; regex searches each value)
    - body: exact deep-equality, subset field-subset, or regex searched in
      the serialized body
    """

    target: str
    kind: str = 'exact'
    value: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Matcher':
        """Create Matcher from dictionary."""
        return cls(
            target=data.get('target', ''),
            kind=data.get('kind', 'exact'),
            value=data.get('value')
        )

    def validate(self):
        """
        Check the matcher is well formed.

        Raises:
            ValidationError: Unknown target or kind, bad value shape, or bad regex
        """
        if self.target not in MATCH_TARGETS:
            raise ValidationError(f"Unknown matcher target '{self.target}'", {'allowed': ', '.join(MATCH_TARGETS)})
        if self.kind not in MATCH_KINDS:
            raise ValidationError(
                f"Unknown match kind '{self.kind}' for {self.target} matcher",
                {'allowed': ', '.join(MATCH_KINDS)}
            )
        if self.target != 'body' and not isinstance(self.value, Mapping):
            raise ValidationError(f"{self.target} matcher value must be a mapping")
        if self.kind == 'regex':
            patterns = [self.value] if self.target == 'body' else list(self.value.values())
            for pattern in patterns:
                if not isinstance(pattern, str):
                    raise ValidationError(f"Regex for {self.target} matcher must be a string")
                try:
                    re.compile(pattern)
                except re.error as e:
                    raise ValidationError(f"Invalid regex /{pattern}/: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {'target': self.target, 'kind': self.kind, 'value': self.value}


@dataclass(frozen=True)
class SequenceStep:
    """One step of a cyclic response sequence."""

    repeat: int = 1
    status: Optional[int] = None
    headers: Optional[Dict[str, str]] = None
    body: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'SequenceStep':
        return cls(
            repeat=data.get('repeat', 1),
            status=data.get('status'),
            headers=data.get('headers'),
            body=data.get('body')
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {'repeat': self.repeat}
        for key in ('status', 'headers', 'body'):
            if getattr(self, key) is not None:
                data[key] = getattr(self, key)
        return data


@dataclass(frozen=True)
class ResponseTemplate:
    """
    Template for a stub's response.

    String values may contain ``{{request.path_params.id}}`` style
    placeholders; ``{"$generate": <schema or schema name>}`` nodes are
    replaced with synthesized data; ``actions`` run after rendering.
    """

    status: int = 200
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    actions: Tuple[Action, ...] = ()

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'ResponseTemplate':
        data = data or {}
        return cls(
            status=data.get('status', 200),
            headers=dict(data.get('headers') or {}),
            body=data.get('body'),
            actions=parse_actions(data.get('actions'))
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'headers': dict(self.headers),
            'body': self.body,
            'actions': [a.to_dict() for a in self.actions]
        }


@dataclass
class StubDefinition:
    """
    A registered request -> response rule.

    ``remaining_uses`` is the initial use count (-1 = unlimited); the live
    count is kept in an atomic counter so concurrent matches can never
    consume the same use twice.

    ``initial_state`` seeds the stub's scenario. Under ``default`` it is the
    base every other scenario starts from.
    """

    method: str
    path: str
    response: ResponseTemplate = field(default_factory=ResponseTemplate)
    matchers: Tuple[Matcher, ...] = ()
    priority: int = 0
    remaining_uses: int = UNLIMITED
    scenario: str = DEFAULT_SCENARIO
    delay: float = 0.0
    id: Optional[str] = None
    registration_seq: int = 0
    sequence: Tuple[SequenceStep, ...] = ()
    sequence_name: Optional[str] = None
    initial_state: Optional[Dict[str, Any]] = None
    state_actions: Tuple[Action, ...] = ()
    name: str = ""

    def __post_init__(self):
        self.method = str(self.method or '').upper()
        self.matchers = tuple(self.matchers)
        self.sequence = tuple(self.sequence)
        self.state_actions = tuple(self.state_actions)
        self.uses = AtomicCounter(self.remaining_uses)
        self.template: Optional[PathTemplate] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'StubDefinition':
        """
        Create StubDefinition from a loaded stub file entry.

        Accepts an explicit ``matchers`` list plus ``query``, ``headers``,
        ``path_params`` and ``body`` shorthands (``body_match`` selects the
        body kind, default ``exact``).
        """
        matchers = [Matcher.from_dict(m) for m in data.get('matchers') or []]
        for key, target in (('path_params', 'path_param'), ('query', 'query'), ('headers', 'header')):
            if data.get(key):
                matchers.append(Matcher(target=target, kind='subset', value=data[key]))
        if 'body' in data:
            matchers.append(Matcher(target='body', kind=data.get('body_match', 'exact'), value=data['body']))

        delay = data.get('delay', 0.0)
        if 'delay_ms' in data:
            delay = data['delay_ms']
            if isinstance(delay, (int, float)) and not isinstance(delay, bool):
                delay = delay / 1000

        return cls(
            id=data.get('id'),
            name=data.get('name', ''),
            method=data.get('method', ''),
            path=data.get('path', ''),
            matchers=tuple(matchers),
            response=ResponseTemplate.from_dict(data.get('response')),
            priority=data.get('priority', 0),
            remaining_uses=data.get('remaining_uses', data.get('times', UNLIMITED)),
            scenario=data.get('scenario', DEFAULT_SCENARIO),
            delay=delay,
            sequence=tuple(SequenceStep.from_dict(s) for s in data.get('sequence') or []),
            sequence_name=data.get('sequence_name'),
            initial_state=data.get('initial_state'),
            state_actions=parse_actions(data.get('state_actions')),
        )

    def validate(self):
        """
        Check the definition can be registered.

        Raises:
            ValidationError: On the first problem found
        """
        if not self.method or not self.method.strip():
            raise ValidationError("Stub method must not be empty", {'path': self.path})
        if not re.match(r'^[A-Z]+$', self.method):
            raise ValidationError(f"Invalid HTTP method '{self.method}'")
        self.template = PathTemplate.parse(self.path)
        for matcher in self.matchers:
            matcher.validate()
            if matcher.target == 'path_param':
                unknown = set(matcher.value) - set(self.template.params)
                if unknown:
                    raise ValidationError(
                        f"Path param matcher names unknown parameters: {', '.join(sorted(unknown))}",
                        {'path': self.path}
                    )
        if not isinstance(self.priority, int):
            raise ValidationError("Stub priority must be an integer")
        if not isinstance(self.remaining_uses, int) or self.remaining_uses < UNLIMITED:
            raise ValidationError("remaining_uses must be -1 (unlimited) or a non-negative integer")
        if not isinstance(self.delay, (int, float)) or isinstance(self.delay, bool):
            raise ValidationError("Stub delay must be a number of seconds", {'delay': self.delay})
        if self.delay < 0:
            raise ValidationError("Stub delay must not be negative")
        if not self.scenario:
            raise ValidationError("Stub scenario must not be empty")
        for step in self.sequence:
            if not isinstance(step.repeat, int) or step.repeat < 1:
                raise ValidationError("Sequence step repeat must be a positive integer")

    def registered_copy(self, stub_id: str, seq: int) -> 'StubDefinition':
        """A fresh copy carrying its registry id, sequence number and use counter."""
        copy = replace(self, id=stub_id, registration_seq=seq)
        copy.template = PathTemplate.parse(copy.path)
        return copy

    @property
    def uses_left(self) -> int:
        return self.uses.value

    @property
    def exhausted(self) -> bool:
        return self.uses.value == 0

    @property
    def sequence_key(self) -> str:
        return self.sequence_name or self.id or f"{self.method} {self.path}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'method': self.method,
            'path': self.path,
            'matchers': [m.to_dict() for m in self.matchers],
            'response': self.response.to_dict(),
            'priority': self.priority,
            'remaining_uses': self.uses_left,
            'scenario': self.scenario,
            'delay': self.delay,
            'registration_seq': self.registration_seq,
            'sequence': [s.to_dict() for s in self.sequence],
            'initial_state': self.initial_state,
            'state_actions': [a.to_dict() for a in self.state_actions],
        }
