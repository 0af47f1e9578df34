"""
StubTap Contract Module

Contract loading and response drift detection.

This module provides:
- Contract document loading into endpoint specs and a schema registry
- Response synthesis from a contract
- Response validation with complete violation lists
"""

from .loader import (
    ContractEndpointSpec,
    ResponseSpec,
    HeaderSpec,
    load_contract,
    find_endpoint,
)
from .validator import ContractValidator, ContractViolation, ValidationResult, UNEXPECTED_STATUS

__all__ = [
    'ContractEndpointSpec',
    'ResponseSpec',
    'HeaderSpec',
    'load_contract',
    'find_endpoint',
    'ContractValidator',
    'ContractViolation',
    'ValidationResult',
    'UNEXPECTED_STATUS',
]
