"""
StubTap Path Templates

Parsing and structural matching of path templates such as
``/users/{id}/orders`` or ``/static/*``.

Rules:
- Templates start with ``/``
- ``{name}`` segments bind one path segment to ``name``
- ``*`` (last segment only) matches the remaining suffix of one or more segments
- Every other segment must equal the request segment literally
"""

import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple
from urllib.parse import unquote

from .errors import ValidationError


WILDCARD = '*'
_PARAM_RE = re.compile(r'^\{([A-Za-z_][A-Za-z0-9_\-]*)\}$')


def split_path(path: str) -> Tuple[str, ...]:
    """Split a request path into decoded segments, ignoring query and trailing slash."""
    path = path.split('?', 1)[0]
    return tuple(unquote(s) for s in path.strip('/').split('/') if s != '')


@dataclass(frozen=True)
class PathTemplate:
    """A parsed path template."""

    raw: str
    segments: Tuple[str, ...]
    params: Tuple[str, ...]
    has_wildcard: bool

    @classmethod
    def parse(cls, template: str) -> 'PathTemplate':
        """
        Parse and validate a path template.

        Raises:
            ValidationError: If the template is malformed
        """
        if not isinstance(template, str) or not template.startswith('/'):
            raise ValidationError("Path template must start with '/'", {'path': template})
        if '?' in template or '#' in template:
            raise ValidationError("Path template must not contain a query or fragment", {'path': template})

        body = template.strip('/')
        segments = tuple(body.split('/')) if body else ()
        params = []
        has_wildcard = False

        for index, segment in enumerate(segments):
            if segment == '':
                raise ValidationError("Path template has an empty segment", {'path': template})
            if segment == WILDCARD:
                if index != len(segments) - 1:
                    raise ValidationError("Wildcard '*' is only allowed as the last segment", {'path': template})
                has_wildcard = True
                continue
            if '{' in segment or '}' in segment:
                match = _PARAM_RE.match(segment)
                if not match:
                    raise ValidationError(f"Malformed path parameter '{segment}'", {'path': template})
                name = match.group(1)
                if name in params:
                    raise ValidationError(f"Duplicate path parameter '{name}'", {'path': template})
                params.append(name)
            elif '*' in segment:
                raise ValidationError(f"Wildcard must be a whole segment, got '{segment}'", {'path': template})

        return cls(raw=template, segments=segments, params=tuple(params), has_wildcard=has_wildcard)

    @property
    def shape(self) -> Tuple[int, bool]:
        """Segment count and wildcard flag, used to bucket templates for lookup."""
        return len(self.segments), self.has_wildcard

    def match(self, path: str) -> Optional[Dict[str, str]]:
        """
        Structurally match a request path.

        Args:
            path: Request path (query string is ignored)

        Returns:
            Bound path parameters (wildcard suffix under ``'*'``), or None
        """
        request_segments = split_path(path)
        fixed = self.segments[:-1] if self.has_wildcard else self.segments

        if self.has_wildcard:
            if len(request_segments) <= len(fixed):
                return None
        elif len(request_segments) != len(fixed):
            return None

        bound: Dict[str, str] = {}
        for pattern, actual in zip(fixed, request_segments):
            param = _PARAM_RE.match(pattern)
            if param:
                bound[param.group(1)] = actual
            elif pattern != actual:
                return None

        if self.has_wildcard:
            bound[WILDCARD] = '/'.join(request_segments[len(fixed):])
        return bound

    def __str__(self) -> str:
        return self.raw
