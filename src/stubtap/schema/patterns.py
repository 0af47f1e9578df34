"""
StubTap Pattern Strings

Generates random strings that match a regular expression. Supports the
subset of regex syntax that shows up in API contracts: literals, ``.``,
character classes and ranges, ``\\d \\w \\s`` (and negations), groups,
alternation, anchors and the ``* + ? {n} {n,} {n,m}`` quantifiers.
Backreferences and lookaround are rejected.
"""

import random
import string
from typing import List, Optional, Tuple

from ..common.errors import SchemaValidationError


# Upper bound added to the minimum of an open-ended quantifier (*, +, {n,})
MAX_OPEN_REPEAT = 8

_UNIVERSE = [c for c in string.printable if c not in '\t\n\r\x0b\x0c']
_DIGITS = list(string.digits)
_WORD = list(string.ascii_letters + string.digits + '_')
_SPACE = [' ']

_CLASS_ESCAPES = {
    'd': _DIGITS,
    'w': _WORD,
    's': _SPACE,
    'D': [c for c in _UNIVERSE if c not in _DIGITS],
    'W': [c for c in _UNIVERSE if c not in _WORD],
    'S': [c for c in _UNIVERSE if c != ' '],
}
_LITERAL_ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', 'f': '\f', 'v': '\v'}
_ZERO_WIDTH_ESCAPES = set('bBAZz')


class _Parser:
    """Recursive-descent parser producing a small tuple-based AST."""

    def __init__(self, pattern: str):
        self.pattern = pattern
        self.pos = 0

    def error(self, message: str) -> SchemaValidationError:
        return SchemaValidationError(message, {'pattern': self.pattern, 'position': self.pos})

    def peek(self) -> Optional[str]:
        return self.pattern[self.pos] if self.pos < len(self.pattern) else None

    def take(self) -> str:
        char = self.pattern[self.pos]
        self.pos += 1
        return char

    def parse(self):
        node = self.parse_alternation()
        if self.pos != len(self.pattern):
            raise self.error("Unbalanced parenthesis in pattern")
        return node

    def parse_alternation(self):
        branches = [self.parse_sequence()]
        while self.peek() == '|':
            self.take()
            branches.append(self.parse_sequence())
        return branches[0] if len(branches) == 1 else ('alt', branches)

    def parse_sequence(self):
        items = []
        while self.peek() is not None and self.peek() not in '|)':
            atom = self.parse_atom()
            if atom is not None:
                items.append(self.parse_quantifier(atom))
        return ('seq', items)

    def parse_atom(self):
        char = self.take()
        if char in '^$':
            return None
        if char == '.':
            return ('set', _UNIVERSE)
        if char == '[':
            return self.parse_class()
        if char == '(':
            return self.parse_group()
        if char == '\\':
            return self.parse_escape()
        if char in '*+?':
            raise self.error("Nothing to repeat")
        return ('lit', char)

    def parse_group(self):
        if self.pattern.startswith('?:', self.pos):
            self.pos += 2
        elif self.pattern.startswith('?P<', self.pos) or self.pattern.startswith('?<', self.pos):
            if self.pattern.startswith('?<=', self.pos) or self.pattern.startswith('?<!', self.pos):
                raise self.error("Lookbehind is not supported")
            end = self.pattern.find('>', self.pos)
            if end == -1:
                raise self.error("Unterminated group name")
            self.pos = end + 1
        elif self.peek() == '?':
            raise self.error("Lookaround and inline flags are not supported")
        node = self.parse_alternation()
        if self.peek() != ')':
            raise self.error("Missing closing parenthesis")
        self.take()
        return node

    def parse_escape(self):
        if self.peek() is None:
            raise self.error("Dangling backslash")
        char = self.take()
        if char in _CLASS_ESCAPES:
            return ('set', _CLASS_ESCAPES[char])
        if char in _ZERO_WIDTH_ESCAPES:
            return None
        if char.isdigit():
            raise self.error("Backreferences are not supported")
        return ('lit', _LITERAL_ESCAPES.get(char, char))

    def parse_class(self):
        negate = False
        if self.peek() == '^':
            self.take()
            negate = True
        members: List[str] = []
        first = True
        while True:
            char = self.peek()
            if char is None:
                raise self.error("Unterminated character class")
            if char == ']' and not first:
                self.take()
                break
            first = False
            self.take()
            if char == '\\':
                escaped = self.take()
                if escaped in _CLASS_ESCAPES:
                    members.extend(_CLASS_ESCAPES[escaped])
                    continue
                char = _LITERAL_ESCAPES.get(escaped, escaped)
            if self.peek() == '-' and self.pos + 1 < len(self.pattern) and self.pattern[self.pos + 1] != ']':
                self.take()
                end = self.take()
                if end == '\\':
                    end = self.take()
                if ord(end) < ord(char):
                    raise self.error("Bad character range")
                members.extend(chr(c) for c in range(ord(char), ord(end) + 1))
            else:
                members.append(char)

        if negate:
            excluded = set(members)
            members = [c for c in _UNIVERSE if c not in excluded]
        if not members:
            raise self.error("Character class matches nothing")
        return ('set', sorted(set(members)))

    def parse_quantifier(self, atom):
        char = self.peek()
        bounds: Optional[Tuple[int, Optional[int]]] = None
        if char == '*':
            bounds = (0, None)
        elif char == '+':
            bounds = (1, None)
        elif char == '?':
            bounds = (0, 1)
        elif char == '{':
            bounds = self._brace_bounds()
            if bounds is None:
                return atom
            self.pos = self.pattern.index('}', self.pos)
        else:
            return atom
        self.take()
        if self.peek() in ('?', '+'):
            # lazy / possessive suffix does not change the language
            self.take()
        low, high = bounds
        if high is not None and high < low:
            raise self.error("Bad repetition bounds")
        return ('rep', atom, low, high if high is not None else low + MAX_OPEN_REPEAT)

    def _brace_bounds(self) -> Optional[Tuple[int, Optional[int]]]:
        end = self.pattern.find('}', self.pos)
        if end == -1:
            return None
        body = self.pattern[self.pos + 1:end]
        low, sep, high = body.partition(',')
        if not low.isdigit() or (high and not high.isdigit()):
            return None
        if not sep:
            return int(low), int(low)
        return int(low), int(high) if high else None


def _emit(node, rng: random.Random, out: List[str]):
    tag = node[0]
    if tag == 'lit':
        out.append(node[1])
    elif tag == 'set':
        out.append(rng.choice(node[1]))
    elif tag == 'seq':
        for child in node[1]:
            _emit(child, rng, out)
    elif tag == 'alt':
        _emit(rng.choice(node[1]), rng, out)
    elif tag == 'rep':
        for _ in range(rng.randint(node[2], node[3])):
            _emit(node[1], rng, out)


def generate_from_pattern(pattern: str, rng: Optional[random.Random] = None) -> str:
    """
    Generate a random string matching ``pattern``.

    Args:
        pattern: Regular expression (unanchored semantics; ^ and $ are accepted)
        rng: Random source (defaults to the module-level generator)

    Returns:
        A string ``s`` such that ``re.search(pattern, s)`` succeeds

    Raises:
        SchemaValidationError: If the pattern uses unsupported syntax
    """
    tree = _Parser(pattern).parse()
    out: List[str] = []
    _emit(tree, rng or random, out)
    return ''.join(out)
