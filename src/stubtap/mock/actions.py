"""
StubTap Response Actions

Templating and post-render actions for stub responses.

Features:
- ``{{request.path_params.id}}`` / ``{{state.count}}`` placeholders
- SetField: write a literal, a rendered template or a context lookup
- Concatenate: join rendered parts into one string
- InvokeNamedFunction: call a registered function with rendered arguments
- Targets are dotted paths rooted at ``body``, ``headers``, ``status`` or ``state``
"""

import random
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from ..common.errors import ValidationError


TARGET_ROOTS = ('body', 'headers', 'status', 'state')

_PLACEHOLDER_RE = re.compile(r'\{\{\s*([^{}]+?)\s*\}\}')
_MISSING = object()


def resolve_path(context: Mapping[str, Any], path: str) -> Any:
    """
    Look up a dotted path (``request.body.items[0].id``) in the context.

    Returns:
        The value, or a sentinel compared via ``is_missing`` when absent
    """
    current: Any = context
    if path.startswith('$'):
        path = path[1:]
    for part in re.findall(r'[^.\[\]]+|\[\d+\]', path):
        if part.startswith('['):
            index = int(part[1:-1])
            if not isinstance(current, list) or index >= len(current):
                return _MISSING
            current = current[index]
        elif isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def is_missing(value: Any) -> bool:
    return value is _MISSING


def render_template(value: Any, context: Mapping[str, Any]) -> Any:
    """
    Substitute ``{{path}}`` placeholders throughout a JSON-like value.

    A string that is exactly one placeholder takes the referenced value
    with its type intact; placeholders inside longer strings are replaced
    by their text. Unknown placeholders are left untouched.
    """
    if isinstance(value, str):
        whole = _PLACEHOLDER_RE.fullmatch(value)
        if whole:
            resolved = resolve_path(context, whole.group(1))
            return value if is_missing(resolved) else resolved

        def replacer(match):
            resolved = resolve_path(context, match.group(1))
            if is_missing(resolved):
                return match.group(0)
            return '' if resolved is None else str(resolved)

        return _PLACEHOLDER_RE.sub(replacer, value)
    if isinstance(value, dict):
        return {key: render_template(item, context) for key, item in value.items()}
    if isinstance(value, list):
        return [render_template(item, context) for item in value]
    return value


def _check_target(target: str):
    if not isinstance(target, str) or not target:
        raise ValidationError("Action target must be a non-empty dotted path")
    root = target.split('.', 1)[0]
    if root not in TARGET_ROOTS:
        raise ValidationError(
            f"Action target '{target}' must start with one of: {', '.join(TARGET_ROOTS)}"
        )
    if root == 'status' and target != 'status':
        raise ValidationError("Action target 'status' takes no sub-path")


@dataclass(frozen=True)
class SetField:
    """Set ``target`` to ``value`` (rendered) or to the context value at path ``source``."""

    target: str
    value: Any = None
    source: Optional[str] = None

    def __post_init__(self):
        _check_target(self.target)
        if self.source is not None and not (isinstance(self.source, str) and self.source.strip('$.')):
            raise ValidationError(f"Invalid source path '{self.source}'")

    def to_dict(self) -> Dict[str, Any]:
        data = {'type': 'set_field', 'target': self.target}
        if self.source is not None:
            data['source'] = self.source
        else:
            data['value'] = self.value
        return data


@dataclass(frozen=True)
class Concatenate:
    """Join rendered ``parts`` with ``separator`` and store the string at ``target``."""

    target: str
    parts: Tuple[Any, ...] = ()
    separator: str = ''

    def __post_init__(self):
        _check_target(self.target)

    def to_dict(self) -> Dict[str, Any]:
        return {'type': 'concatenate', 'target': self.target, 'parts': list(self.parts), 'separator': self.separator}


@dataclass(frozen=True)
class InvokeNamedFunction:
    """Call a registered function with rendered ``args`` and store its result."""

    target: str
    function: str
    args: Tuple[Any, ...] = ()

    def __post_init__(self):
        _check_target(self.target)
        if not self.function:
            raise ValidationError("InvokeNamedFunction requires a function name")

    def to_dict(self) -> Dict[str, Any]:
        return {'type': 'invoke', 'target': self.target, 'function': self.function, 'args': list(self.args)}


Action = Union[SetField, Concatenate, InvokeNamedFunction]


def action_from_dict(data: Mapping[str, Any]) -> Action:
    """
    Build an action from its dictionary form.

    Raises:
        ValidationError: Unknown action type or invalid target
    """
    action_type = data.get('type')
    if action_type == 'set_field':
        return SetField(target=data.get('target'), value=data.get('value'), source=data.get('source'))
    if action_type == 'concatenate':
        return Concatenate(
            target=data.get('target'),
            parts=tuple(data.get('parts') or ()),
            separator=data.get('separator', '')
        )
    if action_type == 'invoke':
        return InvokeNamedFunction(
            target=data.get('target'),
            function=data.get('function', ''),
            args=tuple(data.get('args') or ())
        )
    raise ValidationError(f"Unknown action type '{action_type}'", {'allowed': 'set_field, concatenate, invoke'})


def parse_actions(data: Optional[List[Any]]) -> Tuple[Action, ...]:
    """Parse a list of action dicts (already-built actions pass through)."""
    return tuple(
        item if isinstance(item, (SetField, Concatenate, InvokeNamedFunction)) else action_from_dict(item)
        for item in data or ()
    )


# Built-in named functions; each receives the render RNG first

def _fn_uuid(rng: random.Random) -> str:
    return str(uuid.UUID(int=rng.getrandbits(128), version=4))


def _fn_random_int(rng: random.Random, low: int = 0, high: int = 1000) -> int:
    return rng.randint(int(low), int(high))


def _fn_now(rng: random.Random) -> str:
    return datetime.now(timezone.utc).isoformat()


def _fn_add(rng: random.Random, *values: Any) -> Any:
    total = 0
    for value in values:
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"add() expects numbers, got {value!r}")
        total += value
    return total


def _fn_length(rng: random.Random, value: Any) -> int:
    return len(value) if value is not None else 0


BUILTIN_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    'uuid': _fn_uuid,
    'random_int': _fn_random_int,
    'now': _fn_now,
    'add': _fn_add,
    'upper': lambda rng, value: str(value).upper(),
    'lower': lambda rng, value: str(value).lower(),
    'length': _fn_length,
}


class ActionEvaluator:
    """
    Applies actions to a rendered response document.

    The document is a dict with ``status``, ``headers``, ``body`` and
    ``state`` keys. The render context sees the same ``state`` object and
    the document as ``response``, so later actions observe earlier ones.

    Example:
        evaluator = ActionEvaluator()
        evaluator.register_function('slug', lambda rng, text: text.lower().replace(' ', '-'))
        evaluator.apply(
            [InvokeNamedFunction(target='body.slug', function='slug', args=('{{request.body.title}}',))],
            document, context, rng
        )
    """

    def __init__(self, functions: Optional[Dict[str, Callable[..., Any]]] = None):
        self.functions: Dict[str, Callable[..., Any]] = dict(BUILTIN_FUNCTIONS)
        if functions:
            self.functions.update(functions)

    def register_function(self, name: str, function: Callable[..., Any]):
        """
        Register a named function.

        Args:
            name: Name used by InvokeNamedFunction actions
            function: Callable taking the render RNG followed by the action args
        """
        self.functions[name] = function

    def evaluate(self, action: Action, context: Mapping[str, Any], rng: random.Random) -> Any:
        """
        Compute the value an action writes.

        Raises:
            ValidationError: If an InvokeNamedFunction names an unknown function
        """
        if isinstance(action, SetField):
            if action.source is not None:
                value = resolve_path(context, action.source)
                return None if is_missing(value) else value
            return render_template(action.value, context)

        if isinstance(action, Concatenate):
            rendered = [render_template(part, context) for part in action.parts]
            return action.separator.join('' if part is None else str(part) for part in rendered)

        function = self.functions.get(action.function)
        if function is None:
            raise ValidationError(f"Unknown function '{action.function}'", {'target': action.target})
        args = [render_template(arg, context) for arg in action.args]
        return function(rng, *args)

    def apply(
        self,
        actions: Tuple[Action, ...],
        document: Dict[str, Any],
        context: Dict[str, Any],
        rng: random.Random
    ) -> Dict[str, Any]:
        """Run actions in order, writing each result into ``document``."""
        for action in actions:
            set_path(document, action.target, self.evaluate(action, context, rng))
        return document


def set_path(document: Dict[str, Any], target: str, value: Any):
    """
    Write ``value`` at a dotted path inside ``document``, creating objects as needed.

    Raises:
        ValidationError: If the path runs through a non-object value
    """
    parts = target.split('.')
    if len(parts) == 1:
        document[parts[0]] = value
        return

    current = document
    for part in parts[:-1]:
        child = current.get(part) if isinstance(current, dict) else None
        if child is None:
            child = {}
            current[part] = child
        elif not isinstance(child, dict):
            raise ValidationError(f"Cannot set '{target}': '{part}' is not an object")
        current = child
    current[parts[-1]] = value
