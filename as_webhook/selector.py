"""Selector expressions evaluated against incoming events.

Selectors use a CEL-compatible subset bound to a single variable, ``event``,
holding the event as plain JSON data:

    event.type == 'm.room.message' && event.content.body.contains('alert')

Expressions are parsed once into a tree of nodes. Unknown identifiers,
functions and methods are rejected at compile time; missing fields and type
mismatches only surface when a concrete event is evaluated.
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Callable

EVENT_VARIABLE = "event"
CATCH_ALL = "true"


class SelectorError(ValueError):
    """Base class for selector failures."""


class SelectorCompileError(SelectorError):
    """Raised when a selector expression is malformed."""


class SelectorEvalError(SelectorError):
    """Raised when a selector cannot be evaluated against an event."""


# Tokenizer

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<number>\d+\.\d*(?:[eE][+-]?\d+)?|\d+[eE][+-]?\d+|\d+)
    |(?P<string>'(?:[^'\\\n]|\\.)*'|"(?:[^"\\\n]|\\.)*")
    |(?P<ident>[A-Za-z_][A-Za-z0-9_]*)
    |(?P<op>&&|\|\||==|!=|<=|>=|[<>!\-.,()\[\]?:])
    """,
    re.VERBOSE,
)

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"'}

_KEYWORDS = {"true": True, "false": False, "null": None}


@dataclass(frozen=True)
class _Token:
    kind: str
    value: Any
    pos: int


def _unescape(raw: str, pos: int) -> str:
    out: list[str] = []
    chars = iter(raw)
    for ch in chars:
        if ch != "\\":
            out.append(ch)
            continue
        nxt = next(chars, "")
        if nxt not in _ESCAPES:
            raise SelectorCompileError(f"invalid escape '\\{nxt}' in string at {pos}")
        out.append(_ESCAPES[nxt])
    return "".join(out)


def _tokenize(expression: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(expression):
        m = _TOKEN_RE.match(expression, pos)
        if not m:
            raise SelectorCompileError(
                f"unexpected character {expression[pos]!r} at {pos}"
            )
        kind = m.lastgroup
        text = m.group()
        if kind == "number":
            value: Any = float(text) if any(c in text for c in ".eE") else int(text)
            tokens.append(_Token("literal", value, pos))
        elif kind == "string":
            tokens.append(_Token("literal", _unescape(text[1:-1], pos), pos))
        elif kind == "ident":
            if text in _KEYWORDS:
                tokens.append(_Token("literal", _KEYWORDS[text], pos))
            elif text == "in":
                tokens.append(_Token("op", "in", pos))
            else:
                tokens.append(_Token("ident", text, pos))
        elif kind == "op":
            tokens.append(_Token("op", text, pos))
        pos = m.end()
    tokens.append(_Token("eof", None, pos))
    return tokens


# Value helpers


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if _is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "list"
    if isinstance(value, dict):
        return "map"
    return type(value).__name__


def _equals(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    if isinstance(left, list) and isinstance(right, list):
        return len(left) == len(right) and all(_equals(a, b) for a, b in zip(left, right))
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(_equals(v, right[k]) for k, v in left.items())
    return left == right


def _require_bool(value: Any, context: str) -> bool:
    if not isinstance(value, bool):
        raise SelectorEvalError(f"{context} expects bool, got {_type_name(value)}")
    return value


def _require_str(value: Any, context: str) -> str:
    if not isinstance(value, str):
        raise SelectorEvalError(f"{context} expects string, got {_type_name(value)}")
    return value


def _size(value: Any) -> int:
    if isinstance(value, (str, list, dict)):
        return len(value)
    raise SelectorEvalError(f"size() not supported for {_type_name(value)}")


def _matches(value: Any, pattern: Any) -> bool:
    text = _require_str(value, "matches()")
    try:
        return re.search(_require_str(pattern, "matches()"), text) is not None
    except re.error as e:
        raise SelectorEvalError(f"invalid regex {pattern!r}: {e}") from e


_METHODS: dict[str, tuple[int, Callable[..., Any]]] = {
    "contains": (1, lambda s, x: _require_str(x, "contains()") in _require_str(s, "contains()")),
    "startsWith": (1, lambda s, x: _require_str(s, "startsWith()").startswith(_require_str(x, "startsWith()"))),
    "endsWith": (1, lambda s, x: _require_str(s, "endsWith()").endswith(_require_str(x, "endsWith()"))),
    "matches": (1, _matches),
    "size": (0, _size),
}


# Expression nodes

Env = dict[str, Any]


class _Node:
    def eval(self, env: Env) -> Any:
        raise NotImplementedError


@dataclass(frozen=True)
class _Literal(_Node):
    value: Any

    def eval(self, env: Env) -> Any:
        return self.value


@dataclass(frozen=True)
class _Ident(_Node):
    name: str

    def eval(self, env: Env) -> Any:
        return env[self.name]


@dataclass(frozen=True)
class _List(_Node):
    items: tuple[_Node, ...]

    def eval(self, env: Env) -> Any:
        return [item.eval(env) for item in self.items]


@dataclass(frozen=True)
class _Select(_Node):
    operand: _Node
    field: str

    def eval(self, env: Env) -> Any:
        target = self.operand.eval(env)
        if not isinstance(target, dict):
            raise SelectorEvalError(
                f"cannot select field '{self.field}' from {_type_name(target)}"
            )
        if self.field not in target:
            raise SelectorEvalError(f"no such key: '{self.field}'")
        return target[self.field]


@dataclass(frozen=True)
class _Has(_Node):
    select: _Select

    def eval(self, env: Env) -> Any:
        target = self.select.operand.eval(env)
        if not isinstance(target, dict):
            raise SelectorEvalError(
                f"has() cannot test field '{self.select.field}' on {_type_name(target)}"
            )
        return self.select.field in target


@dataclass(frozen=True)
class _Index(_Node):
    operand: _Node
    key: _Node

    def eval(self, env: Env) -> Any:
        target = self.operand.eval(env)
        key = self.key.eval(env)
        if isinstance(target, dict):
            if not isinstance(key, str):
                raise SelectorEvalError(f"map key must be string, got {_type_name(key)}")
            if key not in target:
                raise SelectorEvalError(f"no such key: '{key}'")
            return target[key]
        if isinstance(target, list):
            if not _is_number(key) or not math.isfinite(key) or int(key) != key:
                raise SelectorEvalError(f"list index must be integral, got {key!r}")
            idx = int(key)
            if idx < 0 or idx >= len(target):
                raise SelectorEvalError(f"index {idx} out of range")
            return target[idx]
        raise SelectorEvalError(f"cannot index {_type_name(target)}")


@dataclass(frozen=True)
class _Call(_Node):
    name: str
    receiver: _Node
    args: tuple[_Node, ...]

    def eval(self, env: Env) -> Any:
        _, func = _METHODS[self.name]
        receiver = self.receiver.eval(env)
        return func(receiver, *(arg.eval(env) for arg in self.args))


@dataclass(frozen=True)
class _Not(_Node):
    operand: _Node

    def eval(self, env: Env) -> Any:
        return not _require_bool(self.operand.eval(env), "!")


@dataclass(frozen=True)
class _Negate(_Node):
    operand: _Node

    def eval(self, env: Env) -> Any:
        value = self.operand.eval(env)
        if not _is_number(value):
            raise SelectorEvalError(f"- expects number, got {_type_name(value)}")
        return -value


@dataclass(frozen=True)
class _Logical(_Node):
    """``&&`` / ``||`` with CEL error absorption.

    A decisive operand (``false`` for ``&&``, ``true`` for ``||``) wins even if
    the other operand fails to evaluate.
    """

    op: str
    left: _Node
    right: _Node

    def eval(self, env: Env) -> Any:
        decisive = self.op == "||"
        error: SelectorEvalError | None = None
        for side in (self.left, self.right):
            try:
                value = _require_bool(side.eval(env), self.op)
            except SelectorEvalError as e:
                error = error or e
                continue
            if value is decisive:
                return decisive
        if error is not None:
            raise error
        return not decisive


def _ordered(op: str, left: Any, right: Any) -> bool:
    comparable = (_is_number(left) and _is_number(right)) or (
        isinstance(left, str) and isinstance(right, str)
    )
    if not comparable:
        raise SelectorEvalError(
            f"no such overload: {_type_name(left)} {op} {_type_name(right)}"
        )
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    return left >= right


def _contained(item: Any, container: Any) -> bool:
    if isinstance(container, list):
        return any(_equals(item, x) for x in container)
    if isinstance(container, dict):
        return isinstance(item, str) and item in container
    raise SelectorEvalError(f"'in' not supported for {_type_name(container)}")


@dataclass(frozen=True)
class _Compare(_Node):
    op: str
    left: _Node
    right: _Node

    def eval(self, env: Env) -> Any:
        left = self.left.eval(env)
        right = self.right.eval(env)
        if self.op == "==":
            return _equals(left, right)
        if self.op == "!=":
            return not _equals(left, right)
        if self.op == "in":
            return _contained(left, right)
        return _ordered(self.op, left, right)


@dataclass(frozen=True)
class _Conditional(_Node):
    condition: _Node
    then: _Node
    otherwise: _Node

    def eval(self, env: Env) -> Any:
        if _require_bool(self.condition.eval(env), "?:"):
            return self.then.eval(env)
        return self.otherwise.eval(env)


# Parser

_RELATIONS = ("==", "!=", "<", "<=", ">", ">=", "in")


class _Parser:
    def __init__(self, expression: str):
        self._tokens = _tokenize(expression)
        self._pos = 0

    def _peek(self) -> _Token:
        return self._tokens[self._pos]

    def _next(self) -> _Token:
        tok = self._tokens[self._pos]
        self._pos += 1
        return tok

    def _accept(self, op: str) -> bool:
        tok = self._peek()
        if tok.kind == "op" and tok.value == op:
            self._pos += 1
            return True
        return False

    def _expect(self, op: str) -> None:
        tok = self._peek()
        if not self._accept(op):
            found = tok.value if tok.kind != "eof" else "end of expression"
            raise SelectorCompileError(f"expected '{op}' at {tok.pos}, found {found!r}")

    def parse(self) -> _Node:
        node = self._expr()
        tok = self._peek()
        if tok.kind != "eof":
            raise SelectorCompileError(f"unexpected {tok.value!r} at {tok.pos}")
        return node

    def _expr(self) -> _Node:
        node = self._or()
        if self._accept("?"):
            then = self._expr()
            self._expect(":")
            return _Conditional(node, then, self._expr())
        return node

    def _or(self) -> _Node:
        node = self._and()
        while self._accept("||"):
            node = _Logical("||", node, self._and())
        return node

    def _and(self) -> _Node:
        node = self._relation()
        while self._accept("&&"):
            node = _Logical("&&", node, self._relation())
        return node

    def _relation(self) -> _Node:
        node = self._unary()
        while True:
            tok = self._peek()
            if tok.kind == "op" and tok.value in _RELATIONS:
                self._pos += 1
                node = _Compare(tok.value, node, self._unary())
            else:
                return node

    def _unary(self) -> _Node:
        if self._accept("!"):
            return _Not(self._unary())
        if self._accept("-"):
            operand = self._unary()
            if isinstance(operand, _Literal) and _is_number(operand.value):
                return _Literal(-operand.value)
            return _Negate(operand)
        return self._member()

    def _member(self) -> _Node:
        node = self._primary()
        while True:
            if self._accept("."):
                tok = self._next()
                if tok.kind != "ident":
                    raise SelectorCompileError(f"expected field name at {tok.pos}")
                if self._accept("("):
                    node = self._method(tok, node, self._args(")"))
                else:
                    node = _Select(node, tok.value)
            elif self._accept("["):
                key = self._expr()
                self._expect("]")
                node = _Index(node, key)
            else:
                return node

    def _method(self, tok: _Token, receiver: _Node, args: tuple[_Node, ...]) -> _Node:
        if tok.value not in _METHODS:
            raise SelectorCompileError(f"undeclared method '{tok.value}' at {tok.pos}")
        arity, _ = _METHODS[tok.value]
        if len(args) != arity:
            raise SelectorCompileError(
                f"{tok.value}() takes {arity} argument(s), got {len(args)}"
            )
        return _Call(tok.value, receiver, args)

    def _args(self, closing: str) -> tuple[_Node, ...]:
        args: list[_Node] = []
        if self._accept(closing):
            return ()
        while True:
            args.append(self._expr())
            if self._accept(closing):
                return tuple(args)
            self._expect(",")

    def _primary(self) -> _Node:
        tok = self._next()
        if tok.kind == "literal":
            return _Literal(tok.value)
        if tok.kind == "ident":
            if self._accept("("):
                return self._function(tok, self._args(")"))
            if tok.value != EVENT_VARIABLE:
                raise SelectorCompileError(
                    f"undeclared reference to '{tok.value}' at {tok.pos}"
                )
            return _Ident(tok.value)
        if tok.kind == "op" and tok.value == "(":
            node = self._expr()
            self._expect(")")
            return node
        if tok.kind == "op" and tok.value == "[":
            return _List(self._args("]"))
        if tok.kind == "eof":
            raise SelectorCompileError("unexpected end of expression")
        raise SelectorCompileError(f"unexpected {tok.value!r} at {tok.pos}")

    def _function(self, tok: _Token, args: tuple[_Node, ...]) -> _Node:
        if tok.value == "has":
            if len(args) != 1 or not isinstance(args[0], _Select):
                raise SelectorCompileError("has() expects a single field selection")
            return _Has(args[0])
        if tok.value == "size":
            if len(args) != 1:
                raise SelectorCompileError("size() takes 1 argument")
            return _Call("size", args[0], ())
        raise SelectorCompileError(f"undeclared function '{tok.value}' at {tok.pos}")


class CompiledSelector:
    """An immutable, reusable selector program."""

    __slots__ = ("_expression", "_root")

    def __init__(self, expression: str, root: _Node):
        self._expression = expression
        self._root = root

    @property
    def expression(self) -> str:
        return self._expression

    def evaluate(self, event: Any) -> bool:
        """Evaluate against a JSON-normalized event.

        Returns True only when the expression yields the boolean ``true``.
        Raises SelectorEvalError on missing fields or type mismatches.
        """
        result = self._root.eval({EVENT_VARIABLE: event})
        return result is True

    def __repr__(self) -> str:
        return f"CompiledSelector({self._expression!r})"


def compile_selector(expression: str | None) -> CompiledSelector:
    """Compile a selector; an empty expression is the catch-all ``true``."""
    expression = (expression or "").strip() or CATCH_ALL
    return CompiledSelector(expression, _Parser(expression).parse())
