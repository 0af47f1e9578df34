"""
StubTap Mock Module

Stateful request matching and response synthesis.

This module provides:
- Thread-safe stub registry with priority and use-count semantics
- Deterministic request matching with closest-stub diagnostics
- Scenario store with response sequences and working memory
- Templated, schema-driven response synthesis with actions
- Transport-independent MockEngine plus a FastAPI adapter
"""

from .models import (
    StubDefinition,
    Matcher,
    ResponseTemplate,
    SequenceStep,
    RequestDescriptor,
    DEFAULT_SCENARIO,
)
from .actions import ActionEvaluator, SetField, Concatenate, InvokeNamedFunction, render_template
from .registry import StubRegistry
from .scenarios import ScenarioStore, ScenarioState, SequenceCursor
from .matcher import RequestMatcher, MatchResult
from .generator import ResponseSynthesizer, MockResponse
from .engine import MockEngine, MockConfig, MockMetrics, LoggedRequest
from .server import MockServer, create_app, create_mock_server

__all__ = [
    # Models
    'StubDefinition',
    'Matcher',
    'ResponseTemplate',
    'SequenceStep',
    'RequestDescriptor',
    'DEFAULT_SCENARIO',

    # Actions
    'ActionEvaluator',
    'SetField',
    'Concatenate',
    'InvokeNamedFunction',
    'render_template',

    # Core
    'StubRegistry',
    'ScenarioStore',
    'ScenarioState',
    'SequenceCursor',
    'RequestMatcher',
    'MatchResult',
    'ResponseSynthesizer',
    'MockResponse',

    # Engine and server
    'MockEngine',
    'MockConfig',
    'MockMetrics',
    'LoggedRequest',
    'MockServer',
    'create_app',
    'create_mock_server',
]

__version__ = '1.0.0'
