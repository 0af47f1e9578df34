"""
StubTap Schema Module

Schema-driven synthetic data generation.

This module provides:
- Immutable schema trees and a named-schema registry
- Recursive value generation with $ref cycle detection
- Regex-driven string generation
- Relational entity sets with referential integrity
"""

from .model import SchemaNode, SchemaRegistry, KINDS
from .generator import DataGenerator
from .patterns import generate_from_pattern
from .relational import RelationalDataGenerator, RelationshipSpec

__all__ = [
    'SchemaNode',
    'SchemaRegistry',
    'KINDS',
    'DataGenerator',
    'generate_from_pattern',
    'RelationalDataGenerator',
    'RelationshipSpec',
]
