"""flowspec expressions — a small, explicitly-scoped expression language.

Used by template placeholders (``{{ ctx.user.name }}``) and router
conditions (``ctx.score >= 5 && ctx.score < 8``).  Expressions are parsed by
a dedicated recursive-descent parser and interpreted against a fixed set of
names (``ctx``, ``result``, ``exec``, ``item``, ``params``); nothing else in
the process is reachable.

Grammar
-------
    expr        := or
    or          := and    (("||" | "or")  and)*
    and         := not    (("&&" | "and") not)*
    not         := ("!" | "not") not | compare
    compare     := sum    (("==" | "!=" | "===" | "!==" | "<" | "<=" | ">" | ">=" | "in") sum)?
    sum         := product (("+" | "-") product)*
    product     := unary  (("*" | "/" | "%") unary)*
    unary       := "-" unary | postfix
    postfix     := primary ("." NAME ["(" args ")"] | "[" expr "]")*
    primary     := NUMBER | STRING | "true" | "false" | "null" | "undefined"
                 | NAME ["(" args ")"] | "(" expr ")" | "[" args "]"

Property access never raises: a missing key, index or attribute yields
:data:`UNDEFINED`, and so does any access on ``UNDEFINED`` or ``None``.
Everything else that goes wrong raises :class:`EvaluationError`.
"""

from __future__ import annotations

import json
import re
from functools import lru_cache
from typing import Any, Callable, Mapping

from flowspec.errors import EvaluationError


class _Undefined:
    """Result of resolving a path that does not exist."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "undefined"


UNDEFINED = _Undefined()

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<number>\d+(?:\.\d+)?)
      | (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
      | (?P<op>===|!==|==|!=|<=|>=|&&|\|\||[-+*/%<>!().,\[\]])
      | (?P<name>[A-Za-z_$][A-Za-z0-9_$]*)
    )
    """,
    re.VERBOSE,
)

_KEYWORDS = {"true": True, "True": True, "false": False, "False": False,
             "null": None, "None": None}
_WORD_OPS = {"and", "or", "not", "in"}
_COMPARE_OPS = {"==", "!=", "===", "!==", "<", "<=", ">", ">=", "in"}


def _tokenize(source: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    source = source.strip()
    while pos < len(source):
        m = _TOKEN_RE.match(source, pos)
        if m is None or m.end() == pos:
            raise EvaluationError(source, f"unexpected character at offset {pos}: {source[pos]!r}")
        pos = m.end()
        kind = m.lastgroup
        text = m.group(kind)
        if kind == "name" and text in _WORD_OPS:
            kind = "op"
        tokens.append((kind, text))
    tokens.append(("end", ""))
    return tokens


class _Parser:
    """Turns a token list into nested tuples: ``(node_type, *operands)``."""

    def __init__(self, source: str):
        self.source = source
        self.tokens = _tokenize(source)
        self.pos = 0

    def _peek(self) -> tuple[str, str]:
        return self.tokens[self.pos]

    def _next(self) -> tuple[str, str]:
        tok = self.tokens[self.pos]
        self.pos += 1
        return tok

    def _accept(self, *ops: str) -> str | None:
        kind, text = self._peek()
        if kind == "op" and text in ops:
            self.pos += 1
            return text
        return None

    def _expect(self, op: str) -> None:
        if self._accept(op) is None:
            raise EvaluationError(self.source, f"expected '{op}', got {self._peek()[1]!r}")

    def parse(self) -> tuple:
        node = self._or()
        if self._peek()[0] != "end":
            raise EvaluationError(self.source, f"unexpected token {self._peek()[1]!r}")
        return node

    def _or(self) -> tuple:
        node = self._and()
        while self._accept("||", "or"):
            node = ("or", node, self._and())
        return node

    def _and(self) -> tuple:
        node = self._not()
        while self._accept("&&", "and"):
            node = ("and", node, self._not())
        return node

    def _not(self) -> tuple:
        if self._accept("!", "not"):
            return ("not", self._not())
        return self._compare()

    def _compare(self) -> tuple:
        node = self._sum()
        kind, text = self._peek()
        if kind == "op" and text in _COMPARE_OPS:
            self.pos += 1
            node = ("cmp", text, node, self._sum())
        return node

    def _sum(self) -> tuple:
        node = self._product()
        while (op := self._accept("+", "-")):
            node = ("arith", op, node, self._product())
        return node

    def _product(self) -> tuple:
        node = self._unary()
        while (op := self._accept("*", "/", "%")):
            node = ("arith", op, node, self._unary())
        return node

    def _unary(self) -> tuple:
        if self._accept("-"):
            return ("neg", self._unary())
        return self._postfix()

    def _postfix(self) -> tuple:
        node = self._primary()
        while True:
            if self._accept("."):
                kind, text = self._next()
                if kind == "number":
                    # "items.0.1" tokenises the indices as the float "0.1"
                    for part in text.split("."):
                        node = ("get", node, ("lit", part))
                    continue
                if kind != "name" and not (kind == "op" and text in _WORD_OPS):
                    raise EvaluationError(self.source, f"expected a property name after '.', got {text!r}")
                if self._accept("("):
                    node = ("method", node, text, self._args(")"))
                else:
                    node = ("get", node, ("lit", text))
            elif self._accept("["):
                key = self._or()
                self._expect("]")
                node = ("get", node, key)
            else:
                return node

    def _args(self, closer: str) -> list[tuple]:
        args: list[tuple] = []
        if self._accept(closer):
            return args
        while True:
            args.append(self._or())
            if self._accept(closer):
                return args
            self._expect(",")

    def _primary(self) -> tuple:
        kind, text = self._next()
        if kind == "number":
            return ("lit", float(text) if "." in text else int(text))
        if kind == "string":
            return ("lit", _unquote(text))
        if kind == "name":
            if text in _KEYWORDS:
                return ("lit", _KEYWORDS[text])
            if text == "undefined":
                return ("lit", UNDEFINED)
            if self._accept("("):
                return ("call", text, self._args(")"))
            return ("name", text)
        if kind == "op" and text == "(":
            node = self._or()
            self._expect(")")
            return node
        if kind == "op" and text == "[":
            return ("list", self._args("]"))
        raise EvaluationError(self.source, f"unexpected token {text!r}" if text else "unexpected end of expression")


def _unquote(text: str) -> str:
    body = text[1:-1]
    return re.sub(r"\\(.)", lambda m: {"n": "\n", "t": "\t"}.get(m.group(1), m.group(1)), body)


@lru_cache(maxsize=512)
def parse(source: str) -> tuple:
    """Parse *source* into an expression tree (cached)."""
    if not source or not source.strip():
        raise EvaluationError(source, "empty expression")
    return _Parser(source).parse()


# ── Values ────────────────────────────────────────────────────────────────────

def truthy(value: Any) -> bool:
    if value is UNDEFINED or value is None:
        return False
    return bool(value)


def stringify(value: Any) -> str:
    """Render a value the way template placeholders show it."""
    if isinstance(value, str):
        return value
    if value is UNDEFINED:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return to_json(value)
    return str(value)


def to_json(value: Any) -> str:
    if value is UNDEFINED:
        return "null"
    return json.dumps(value, ensure_ascii=False, default=str)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_number(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return float(value) if any(c in value for c in ".eE") else int(value)
        except ValueError:
            return value
    return value


def _coerce_pair(left: Any, right: Any) -> tuple[Any, Any]:
    # "9" >= 8 compares numerically, as saved template values are strings
    if _is_number(left) and isinstance(right, str):
        return left, _as_number(right)
    if _is_number(right) and isinstance(left, str):
        return _as_number(left), right
    return left, right


def _lookup(container: Any, key: Any) -> Any:
    if container is UNDEFINED or container is None:
        return UNDEFINED
    if isinstance(container, Mapping) or hasattr(container, "keys") and hasattr(container, "__getitem__"):
        if key == "length" and key not in container:
            return len(container)
        return container[key] if key in container else UNDEFINED
    if isinstance(container, (list, tuple, str)):
        if key == "length":
            return len(container)
        try:
            return container[int(key)]
        except (ValueError, TypeError, IndexError):
            return UNDEFINED
    if isinstance(key, str) and not key.startswith("_") and hasattr(container, key):
        return getattr(container, key)
    return UNDEFINED


def _includes(container: Any, needle: Any) -> bool:
    if isinstance(container, str):
        return stringify(needle) in container
    if isinstance(container, (list, tuple, set, dict)):
        return needle in container
    return False


def _exists(value: Any) -> bool:
    return value is not UNDEFINED and value is not None


FUNCTIONS: dict[str, Callable[..., Any]] = {
    "json": to_json,
    "stringify": to_json,
    "parse": lambda s: json.loads(s),
    "len": lambda v: len(v),
    "lower": lambda s: stringify(s).lower(),
    "upper": lambda s: stringify(s).upper(),
    "str": stringify,
    "int": lambda v: int(_as_number(v)) if not _is_number(v) else int(v),
    "float": lambda v: float(v),
    "bool": truthy,
    "contains": _includes,
    "exists": _exists,
}

METHODS: dict[str, Callable[..., Any]] = {
    "includes": _includes,
    "startsWith": lambda s, p: isinstance(s, str) and s.startswith(stringify(p)),
    "endsWith": lambda s, p: isinstance(s, str) and s.endswith(stringify(p)),
    "toLowerCase": lambda s: stringify(s).lower(),
    "toUpperCase": lambda s: stringify(s).upper(),
    "trim": lambda s: stringify(s).strip(),
}


# ── Interpreter ───────────────────────────────────────────────────────────────

def evaluate(source: str, names: Mapping[str, Any]) -> Any:
    """Evaluate *source* with only *names* in scope.

    Raises :class:`EvaluationError` for syntax errors, unknown names or
    functions, and type errors (e.g. ``"a" - 1``).
    """
    tree = parse(source)
    try:
        return _eval(tree, names, source)
    except EvaluationError:
        raise
    except (TypeError, ValueError, ZeroDivisionError, KeyError) as exc:
        raise EvaluationError(source, str(exc)) from exc


def _eval(node: tuple, names: Mapping[str, Any], source: str) -> Any:
    kind = node[0]
    if kind == "lit":
        return node[1]
    if kind == "name":
        if node[1] not in names:
            raise EvaluationError(source, f"unknown name '{node[1]}'")
        return names[node[1]]
    if kind == "get":
        return _lookup(_eval(node[1], names, source), _eval(node[2], names, source))
    if kind == "list":
        return [_eval(a, names, source) for a in node[1]]
    if kind == "or":
        left = _eval(node[1], names, source)
        return left if truthy(left) else _eval(node[2], names, source)
    if kind == "and":
        left = _eval(node[1], names, source)
        return _eval(node[2], names, source) if truthy(left) else left
    if kind == "not":
        return not truthy(_eval(node[1], names, source))
    if kind == "neg":
        value = _as_number(_eval(node[1], names, source))
        if not _is_number(value):
            raise EvaluationError(source, f"cannot negate {value!r}")
        return -value
    if kind == "cmp":
        return _compare(node[1], _eval(node[2], names, source), _eval(node[3], names, source), source)
    if kind == "arith":
        return _arith(node[1], _eval(node[2], names, source), _eval(node[3], names, source), source)
    if kind == "call":
        fn = FUNCTIONS.get(node[1])
        if fn is None:
            raise EvaluationError(source, f"unknown function '{node[1]}'")
        return fn(*[_eval(a, names, source) for a in node[2]])
    if kind == "method":
        fn = METHODS.get(node[2])
        if fn is None:
            raise EvaluationError(source, f"unknown method '{node[2]}'")
        receiver = _eval(node[1], names, source)
        if receiver is UNDEFINED or receiver is None:
            raise EvaluationError(source, f"cannot call '{node[2]}' on {stringify(receiver)}")
        return fn(receiver, *[_eval(a, names, source) for a in node[3]])
    raise EvaluationError(source, f"unsupported node '{kind}'")


def _strict_equal(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return left == right
    return type(left) is type(right) and left == right


def _compare(op: str, left: Any, right: Any, source: str) -> bool:
    if op == "===":
        return _strict_equal(left, right)
    if op == "!==":
        return not _strict_equal(left, right)
    if op == "in":
        return _includes(right, left)
    left, right = _coerce_pair(left, right)
    if op == "==":
        return left == right
    if op == "!=":
        return left != right
    if left is UNDEFINED or right is UNDEFINED or left is None or right is None:
        return False
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    if op == ">=":
        return left >= right
    raise EvaluationError(source, f"unknown operator '{op}'")


def _arith(op: str, left: Any, right: Any, source: str) -> Any:
    if op == "+" and (isinstance(left, str) or isinstance(right, str)):
        return stringify(left) + stringify(right)
    left, right = _as_number(left), _as_number(right)
    if not (_is_number(left) and _is_number(right)):
        raise EvaluationError(source, f"'{op}' needs numbers, got {stringify(left)!r} and {stringify(right)!r}")
    if op == "+":
        return left + right
    if op == "-":
        return left - right
    if op == "*":
        return left * right
    if op == "/":
        return left / right
    return left % right
