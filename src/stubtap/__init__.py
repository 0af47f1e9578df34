"""
StubTap

Stateful HTTP mock engine with schema-driven synthetic data and contract
drift detection.
"""

__version__ = '1.0.0'
