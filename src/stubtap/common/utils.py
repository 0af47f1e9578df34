"""
StubTap Common Utilities

Shared loaders and helpers used across StubTap modules.
"""

import json
from pathlib import Path
from typing import List, Dict, Any, Optional

import yaml


def safe_json_parse(json_string: Any, default: Any = None) -> Any:
    """
    Safely parse JSON string with error handling.

    Args:
        json_string: JSON string (or bytes) to parse
        default: Default value to return if parsing fails

    Returns:
        Parsed JSON object, or default if parsing fails

    Example:
        body = safe_json_parse(request_bytes, default=request_bytes)
    """
    if not json_string:
        return default

    try:
        return json.loads(json_string)
    except (json.JSONDecodeError, TypeError, ValueError, UnicodeDecodeError):
        return default


def normalize_headers(headers: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Lower-case header names so lookups are case-insensitive."""
    return {str(k).lower(): str(v) for k, v in (headers or {}).items()}


def filter_interesting_headers(
    headers: Dict[str, str],
    additional_headers: Optional[List[str]] = None
) -> Dict[str, str]:
    """
    Filter headers to only include interesting ones for request logs and diagnostics.

    Args:
        headers: Dictionary of headers to filter
        additional_headers: Optional list of additional header names to include

    Returns:
        Filtered dictionary containing only interesting headers
    """
    interesting = [
        'authorization',
        'cookie',
        'x-api-key',
        'x-request-id',
        'x-correlation-id',
        'x-scenario',
        'content-type',
        'accept',
    ]

    if additional_headers:
        interesting.extend(h.lower() for h in additional_headers)

    return {k: v for k, v in headers.items() if k.lower() in interesting}


class DocumentLoader:
    """
    Standardized loader for stub files and contract documents.

    Handles YAML (.yaml/.yml) and JSON files. Stub files may be:
    - Format 1: {"stubs": [...]}  (wrapped format)
    - Format 2: [...]             (direct list format)

    Example:
        loader = DocumentLoader("stubs.yaml")
        for stub in loader.load_stubs():
            engine.register_stub(stub)
    """

    def __init__(self, file_path: str):
        """
        Initialize document loader.

        Args:
            file_path: Path to YAML or JSON document
        """
        self.file_path = Path(file_path)

    def load(self) -> Any:
        """
        Load and parse the document.

        Returns:
            Parsed document (dict or list)

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the document cannot be parsed
        """
        if not self.file_path.exists():
            raise FileNotFoundError(f"Document not found: {self.file_path}")

        with open(self.file_path, 'r', encoding='utf-8') as f:
            text = f.read()

        try:
            if self.file_path.suffix.lower() in ('.yaml', '.yml'):
                return yaml.safe_load(text)
            return json.loads(text)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ValueError(f"Could not parse {self.file_path}: {e}") from e

    def load_stubs(self) -> List[Dict[str, Any]]:
        """
        Load raw stub definitions from the document.

        Raises:
            ValueError: If the document shape is unrecognized
        """
        data = self.load()

        if isinstance(data, dict):
            if 'stubs' in data:
                return data['stubs']
            raise ValueError(
                f"Unexpected format in {self.file_path}. "
                f"Expected dict with 'stubs' key or a list of stubs. "
                f"Found keys: {list(data.keys())}"
            )
        elif isinstance(data, list):
            return data

        raise ValueError(
            f"Unexpected format in {self.file_path}. "
            f"Expected dict or list, got {type(data).__name__}"
        )
