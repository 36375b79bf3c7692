"""
Security rule expression language.

Rule conditions are small boolean expressions evaluated over the decision
context. They are tokenized and parsed into an AST and run by an interpreter;
there is no ``eval`` and no access to Python objects beyond plain lookups.

Grammar:

    expr       := or_expr
    or_expr    := and_expr ("or" and_expr)*
    and_expr   := not_expr ("and" not_expr)*
    not_expr   := "not" not_expr | comparison
    comparison := operand [op operand]
    op         := == | != | < | <= | > | >= | in | not in | contains
    operand    := literal | path | call | list | "(" expr ")" | "-" NUMBER
    path       := IDENT ("." IDENT)*
    call       := IDENT "(" [expr ("," expr)*] ")"
    literal    := STRING | NUMBER | true | false | null

Examples:

    action == "delete" and resource in ["properties", "tenants"]
    hour(now()) < 8 or hour(now()) >= 18
    not (user.metadata.department == resource_data.department)
    lower(context.channel) contains "api"
"""

import re
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from accessctl.core.conditions import values_equal
from accessctl.core.errors import ExpressionError
from accessctl.utils.helpers import ensure_utc

MAX_EXPRESSION_LENGTH = 2000
MAX_NESTING_DEPTH = 32

KEYWORDS = {"and", "or", "not", "in", "contains", "true", "false", "null"}
COMPARISON_OPS = {"==", "!=", "<", "<=", ">", ">=", "in", "not in", "contains"}

_TOKEN_RE = re.compile(r"""
    (?P<ws>\s+)
  | (?P<number>\d+(?:\.\d+)?)
  | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
  | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<op>==|!=|<=|>=|<|>)
  | (?P<punct>[()\[\],.\-])
""", re.VERBOSE)


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    position: int


def tokenize(source: str) -> List[Token]:
    """Split an expression into tokens."""
    tokens: List[Token] = []
    position = 0
    while position < len(source):
        match = _TOKEN_RE.match(source, position)
        if not match:
            raise ExpressionError(f"Unexpected character {source[position]!r} at position {position}")
        kind = match.lastgroup
        text = match.group(kind)
        if kind == "ident" and text in KEYWORDS:
            kind = "keyword"
        if kind != "ws":
            tokens.append(Token(kind, text, position))
        position = match.end()
    tokens.append(Token("eof", "", position))
    return tokens


# AST nodes

@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Path:
    parts: Tuple[str, ...]


@dataclass(frozen=True)
class ListExpr:
    items: Tuple[Any, ...]


@dataclass(frozen=True)
class Call:
    name: str
    args: Tuple[Any, ...]


@dataclass(frozen=True)
class Compare:
    op: str
    left: Any
    right: Any


@dataclass(frozen=True)
class And:
    operands: Tuple[Any, ...]


@dataclass(frozen=True)
class Or:
    operands: Tuple[Any, ...]


@dataclass(frozen=True)
class Not:
    operand: Any


def _to_datetime(value: Any, name: str) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            pass
    raise ExpressionError(f"{name}() expects a timestamp, got {type(value).__name__}")


def _fn_hour(value: Any) -> int:
    return _to_datetime(value, "hour").hour


def _fn_minute(value: Any) -> int:
    return _to_datetime(value, "minute").minute


def _fn_weekday(value: Any) -> int:
    return _to_datetime(value, "weekday").weekday()


def _fn_lower(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ExpressionError(f"lower() expects a string, got {type(value).__name__}")
    return value.lower()


def _fn_len(value: Any) -> int:
    if value is None:
        return 0
    if not isinstance(value, (str, list, tuple, dict)):
        raise ExpressionError(f"len() expects a string or list, got {type(value).__name__}")
    return len(value)


# name -> (arity, implementation); now() is resolved from the evaluation clock
FUNCTIONS: Dict[str, Tuple[int, Optional[Callable[[Any], Any]]]] = {
    "now": (0, None),
    "hour": (1, _fn_hour),
    "minute": (1, _fn_minute),
    "weekday": (1, _fn_weekday),
    "lower": (1, _fn_lower),
    "len": (1, _fn_len),
}


class Parser:
    """Recursive-descent parser producing AST nodes."""

    def __init__(self, source: str):
        if len(source) > MAX_EXPRESSION_LENGTH:
            raise ExpressionError(f"Expression longer than {MAX_EXPRESSION_LENGTH} characters")
        self.source = source
        self.tokens = tokenize(source)
        self.pos = 0
        self.depth = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def _check(self, kind: str, value: Optional[str] = None) -> bool:
        token = self.current
        return token.kind == kind and (value is None or token.value == value)

    def _expect(self, kind: str, value: Optional[str] = None) -> Token:
        if not self._check(kind, value):
            expected = value or kind
            raise ExpressionError(
                f"Expected {expected!r} at position {self.current.position}, found {self.current.value or 'end'!r}"
            )
        return self._advance()

    def _enter(self):
        self.depth += 1
        if self.depth > MAX_NESTING_DEPTH:
            raise ExpressionError("Expression nested too deeply")

    def parse(self):
        if self._check("eof"):
            raise ExpressionError("Empty expression")
        node = self._parse_or()
        if not self._check("eof"):
            raise ExpressionError(f"Unexpected {self.current.value!r} at position {self.current.position}")
        return node

    def _parse_or(self):
        operands = [self._parse_and()]
        while self._check("keyword", "or"):
            self._advance()
            operands.append(self._parse_and())
        return operands[0] if len(operands) == 1 else Or(tuple(operands))

    def _parse_and(self):
        operands = [self._parse_not()]
        while self._check("keyword", "and"):
            self._advance()
            operands.append(self._parse_not())
        return operands[0] if len(operands) == 1 else And(tuple(operands))

    def _parse_not(self):
        if self._check("keyword", "not"):
            self._advance()
            self._enter()
            node = Not(self._parse_not())
            self.depth -= 1
            return node
        return self._parse_comparison()

    def _parse_comparison(self):
        left = self._parse_operand()
        op = None
        if self._check("op"):
            op = self._advance().value
        elif self._check("keyword", "in") or self._check("keyword", "contains"):
            op = self._advance().value
        elif self._check("keyword", "not") and self.tokens[self.pos + 1].kind == "keyword" \
                and self.tokens[self.pos + 1].value == "in":
            self.pos += 2
            op = "not in"
        if op is None:
            return left
        return Compare(op, left, self._parse_operand())

    def _parse_operand(self):
        token = self.current
        if token.kind == "number":
            self._advance()
            return Literal(float(token.value) if "." in token.value else int(token.value))
        if token.kind == "punct" and token.value == "-":
            self._advance()
            number = self._expect("number")
            return Literal(-(float(number.value) if "." in number.value else int(number.value)))
        if token.kind == "string":
            self._advance()
            return Literal(_unquote(token.value))
        if token.kind == "keyword" and token.value in ("true", "false", "null"):
            self._advance()
            return Literal({"true": True, "false": False, "null": None}[token.value])
        if token.kind == "punct" and token.value == "(":
            self._advance()
            self._enter()
            node = self._parse_or()
            self.depth -= 1
            self._expect("punct", ")")
            return node
        if token.kind == "punct" and token.value == "[":
            return self._parse_list()
        if token.kind == "ident":
            return self._parse_path_or_call()
        raise ExpressionError(f"Unexpected {token.value or 'end'!r} at position {token.position}")

    def _parse_list(self):
        self._expect("punct", "[")
        self._enter()
        items = []
        if not self._check("punct", "]"):
            items.append(self._parse_operand())
            while self._check("punct", ","):
                self._advance()
                items.append(self._parse_operand())
        self.depth -= 1
        self._expect("punct", "]")
        return ListExpr(tuple(items))

    def _parse_path_or_call(self):
        name = self._advance().value
        if self._check("punct", "("):
            if name not in FUNCTIONS:
                raise ExpressionError(f"Unknown function '{name}'")
            self._advance()
            self._enter()
            args = []
            if not self._check("punct", ")"):
                args.append(self._parse_or())
                while self._check("punct", ","):
                    self._advance()
                    args.append(self._parse_or())
            self._expect("punct", ")")
            self.depth -= 1
            arity = FUNCTIONS[name][0]
            if len(args) != arity:
                raise ExpressionError(f"{name}() takes {arity} argument(s), got {len(args)}")
            return Call(name, tuple(args))

        parts = [name]
        while self._check("punct", "."):
            self._advance()
            parts.append(self._expect("ident").value)
        return Path(tuple(parts))


def _unquote(text: str) -> str:
    body = text[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


class Expression:
    """A compiled rule expression."""

    def __init__(self, source: str):
        self.source = source
        self.ast = Parser(source).parse()

    def evaluate(self, bag: Mapping[str, Any], now: datetime) -> bool:
        """Evaluate to a boolean against a context bag.

        Raises:
            ExpressionError: On type errors that cannot be decided safely.
        """
        result = _Interpreter(bag, now).eval(self.ast)
        return _truth(result, self.source)

    def __repr__(self) -> str:
        return f"Expression({self.source!r})"


@lru_cache(maxsize=512)
def compile_expression(source: str) -> Expression:
    """Parse and cache an expression."""
    return Expression(source.strip())


def _resolve(bag: Mapping[str, Any], parts: Tuple[str, ...]) -> Any:
    """Walk mappings only; anything else, or a missing key, is null."""
    current: Any = bag
    for part in parts:
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def _truth(value: Any, where: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    raise ExpressionError(f"Expression {where!r} produced {type(value).__name__}, expected boolean")


def _orderable(left: Any, right: Any) -> bool:
    numbers = (int, float)
    if isinstance(left, bool) or isinstance(right, bool):
        return False
    if isinstance(left, numbers) and isinstance(right, numbers):
        return True
    if isinstance(left, str) and isinstance(right, str):
        return True
    return isinstance(left, datetime) and isinstance(right, datetime)


class _Interpreter:
    def __init__(self, bag: Mapping[str, Any], now: datetime):
        self.bag = bag
        self.now = now

    def eval(self, node) -> Any:
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, Path):
            return _resolve(self.bag, node.parts)
        if isinstance(node, ListExpr):
            return [self.eval(item) for item in node.items]
        if isinstance(node, Call):
            if node.name == "now":
                return self.now
            implementation = FUNCTIONS[node.name][1]
            return implementation(*[self.eval(arg) for arg in node.args])
        if isinstance(node, Not):
            return not _truth(self.eval(node.operand), "not")
        if isinstance(node, And):
            return all(_truth(self.eval(operand), "and") for operand in node.operands)
        if isinstance(node, Or):
            return any(_truth(self.eval(operand), "or") for operand in node.operands)
        if isinstance(node, Compare):
            return self._compare(node.op, self.eval(node.left), self.eval(node.right))
        raise ExpressionError(f"Unsupported node {type(node).__name__}")

    def _compare(self, op: str, left: Any, right: Any) -> bool:
        if op == "==":
            return left is None and right is None or values_equal(left, right)
        if op == "!=":
            return not (left is None and right is None or values_equal(left, right))
        if left is None or right is None:
            return False
        if op in ("<", "<=", ">", ">="):
            if isinstance(left, datetime):
                left = ensure_utc(left)
            if isinstance(right, datetime):
                right = ensure_utc(right)
            if not _orderable(left, right):
                raise ExpressionError(
                    f"Cannot order {type(left).__name__} and {type(right).__name__} with '{op}'"
                )
            return {
                "<": left < right,
                "<=": left <= right,
                ">": left > right,
                ">=": left >= right,
            }[op]
        if op in ("in", "not in"):
            if isinstance(right, str) and isinstance(left, str):
                member = left in right
            elif isinstance(right, (list, tuple)):
                member = any(values_equal(left, item) for item in right)
            else:
                raise ExpressionError(f"Right side of '{op}' must be a list or string")
            return member if op == "in" else not member
        if op == "contains":
            if isinstance(left, str) and isinstance(right, str):
                return right.lower() in left.lower()
            if isinstance(left, (list, tuple)):
                return any(values_equal(right, item) for item in left)
            raise ExpressionError("Left side of 'contains' must be a list or string")
        raise ExpressionError(f"Unknown operator '{op}'")
