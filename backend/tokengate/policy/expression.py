"""
Applicability predicate language.

    expr := term (("&&" | "||") term)*
    term := IDENT "==" (STRING_LITERAL | BOOLEAN_LITERAL)

``&&`` binds tighter than ``||``; evaluation is left to right and
short-circuits. A comparison against a fact that is absent from the
record is false, as is a comparison between values of different types.
Only unparsable syntax raises MalformedExpression.

Expressions are parsed into a small immutable AST; nothing is ever handed
to ``eval``. Templates are immutable once published, so parsed trees are
cached by expression text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Mapping, Union

from tokengate.errors import MalformedExpression

_MISSING = object()

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<and>&&)
  | (?P<or>\|\|)
  | (?P<eq>==)
  | (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
  | (?P<ident>[A-Za-z_][A-Za-z0-9_.]*)
    """,
    re.VERBOSE,
)

_BOOLEANS = {"true": True, "false": False}


@dataclass(frozen=True)
class Token:
    kind: str      # "ident" | "string" | "bool" | "eq" | "and" | "or"
    value: object
    position: int


@dataclass(frozen=True)
class Comparison:
    field: str
    value: Union[str, bool]

    def matches(self, facts: Mapping) -> bool:
        actual = facts.get(self.field, _MISSING)
        if actual is _MISSING or actual is None:
            return False
        # bool is a subclass of int; compare types explicitly
        if isinstance(self.value, bool) or isinstance(actual, bool):
            return type(actual) is bool and type(self.value) is bool and actual == self.value
        return isinstance(actual, str) and actual == self.value


@dataclass(frozen=True)
class AllOf:
    terms: tuple[Comparison, ...]

    def matches(self, facts: Mapping) -> bool:
        return all(term.matches(facts) for term in self.terms)


@dataclass(frozen=True)
class AnyOf:
    branches: tuple[AllOf, ...]

    def matches(self, facts: Mapping) -> bool:
        return any(branch.matches(facts) for branch in self.branches)


def _unescape(literal: str) -> str:
    body = literal[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


def tokenize(expr: str) -> list[Token]:
    tokens: list[Token] = []
    pos = 0
    while pos < len(expr):
        m = _TOKEN_RE.match(expr, pos)
        if not m:
            raise MalformedExpression(expr, f"unexpected character {expr[pos]!r}", pos)
        kind = m.lastgroup
        text = m.group()
        if kind == "string":
            tokens.append(Token("string", _unescape(text), pos))
        elif kind == "ident":
            if text in _BOOLEANS:
                tokens.append(Token("bool", _BOOLEANS[text], pos))
            else:
                tokens.append(Token("ident", text, pos))
        elif kind != "ws":
            tokens.append(Token(kind, text, pos))
        pos = m.end()
    return tokens


class _Parser:
    def __init__(self, expr: str):
        self.expr = expr
        self.tokens = tokenize(expr)
        self.index = 0

    def _peek(self) -> Token | None:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _expect(self, *kinds: str) -> Token:
        token = self._peek()
        if token is None:
            raise MalformedExpression(
                self.expr, f"unexpected end of expression, expected {' or '.join(kinds)}", len(self.expr),
            )
        if token.kind not in kinds:
            raise MalformedExpression(
                self.expr, f"expected {' or '.join(kinds)}, got {token.value!r}", token.position,
            )
        self.index += 1
        return token

    def _term(self) -> Comparison:
        ident = self._expect("ident")
        self._expect("eq")
        literal = self._expect("string", "bool")
        return Comparison(field=str(ident.value), value=literal.value)

    def parse(self) -> AnyOf:
        if not self.tokens:
            raise MalformedExpression(self.expr, "empty expression", 0)

        branches: list[AllOf] = []
        current: list[Comparison] = [self._term()]
        while self._peek() is not None:
            op = self._expect("and", "or")
            if op.kind == "or":
                branches.append(AllOf(tuple(current)))
                current = []
            current.append(self._term())
        branches.append(AllOf(tuple(current)))
        return AnyOf(tuple(branches))


@lru_cache(maxsize=1024)
def parse(expr: str) -> AnyOf:
    """Parse an applicability expression into an OR-of-ANDs tree."""
    return _Parser(expr).parse()


def evaluate(expr: str, facts: Mapping) -> bool:
    """Evaluate ``expr`` against a flat fact record. Pure and deterministic."""
    return parse(expr).matches(facts)


def matched_terms(expr: str, facts: Mapping) -> list[Comparison]:
    """Comparisons of the first satisfied ``&&`` branch, or [] if none match."""
    for branch in parse(expr).branches:
        if branch.matches(facts):
            return list(branch.terms)
    return []


def referenced_fields(expr: str) -> list[str]:
    """Fact fields referenced by the expression, in first-use order."""
    seen: dict[str, None] = {}
    for branch in parse(expr).branches:
        for term in branch.terms:
            seen.setdefault(term.field, None)
    return list(seen)
