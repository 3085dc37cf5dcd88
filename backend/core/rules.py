"""JsonLogic rule engine for permission rules.

Permission rules are stored as JSON text on workflows, processes and
forms and evaluated against a context built from the requesting user,
the entity's teams and the submitted data. Rules use the JsonLogic
format:

    {"or": [{"in": ["HR", {"var": "user.teams"}]},
            {"==": [{"var": "data.amount"}, "0"]}]}

A rule is parsed into a small immutable AST (``Literal``, ``ListNode``,
``VarRef``, ``Op``) and interpreted by a pure recursive evaluator.
Nothing is ever passed to ``eval``.

Conventions:
    - ``{}``, an empty string and ``None`` deny (falsy result)
    - ``True`` / ``"true"`` allow without evaluating anything
    - a malformed rule raises ``RuleSyntaxError``; callers deny
"""

import json
import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Optional, Union

from core.exceptions import RuleSyntaxError

MAX_DEPTH = 64


# ─── AST ───────────────────────────────────────────────


@dataclass(frozen=True)
class Literal:
    """A constant value (string, number, bool, None, plain list or ``{}``)."""

    value: Any


@dataclass(frozen=True)
class ListNode:
    """An array whose elements contain operators and are evaluated one by one."""

    items: tuple


@dataclass(frozen=True)
class VarRef:
    """``{"var": path}`` or ``{"var": [path, default]}`` lookup into the data."""

    path: "RuleNode"
    default: Optional["RuleNode"] = None


@dataclass(frozen=True)
class Op:
    """``{name: [args...]}`` operator application."""

    name: str
    args: tuple


RuleNode = Union[Literal, ListNode, VarRef, Op]

DENY = Literal({})


# ─── Value semantics ───────────────────────────────────


def is_truthy(value: Any) -> bool:
    """Truthiness of a rule result.

    Empty arrays are falsy as in JsonLogic. Unlike json-logic-js, an empty
    object is falsy too: ``{}`` is the stored "deny everyone" rule, so a
    rule that evaluates to ``{}`` must never grant access.
    """
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    return bool(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if _is_number(value):
        try:
            return float(value)
        except OverflowError:
            return math.inf if value > 0 else -math.inf
    if value is None:
        return 0.0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def _to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(_to_str(v) for v in value)
    return str(value)


def _normalize(number: float) -> Any:
    if math.isnan(number) or math.isinf(number):
        return None
    if number.is_integer():
        return int(number)
    return number


def _loose_eq(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return a is None and b is None
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    if isinstance(a, (list, dict)) or isinstance(b, (list, dict)):
        return a == b
    return _to_number(a) == _to_number(b)


def _strict_eq(a: Any, b: Any) -> bool:
    if _is_number(a) and _is_number(b):
        return a == b
    return type(a) is type(b) and a == b


def _less(a: Any, b: Any, or_equal: bool = False) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        return a <= b if or_equal else a < b
    x, y = _to_number(a), _to_number(b)
    if math.isnan(x) or math.isnan(y):
        return False
    return x <= y if or_equal else x < y


# ─── Operators ─────────────────────────────────────────


def _op_in(needle: Any = None, haystack: Any = None, *_: Any) -> bool:
    if isinstance(haystack, (list, tuple)):
        return any(_strict_eq(needle, item) for item in haystack)
    if isinstance(haystack, str):
        if needle is None:
            return False
        return _to_str(needle) in haystack
    return False


def _op_cat(*args: Any) -> str:
    return "".join(_to_str(a) for a in args)


def _op_merge(*args: Any) -> list:
    merged: list = []
    for arg in args:
        if isinstance(arg, (list, tuple)):
            merged.extend(arg)
        else:
            merged.append(arg)
    return merged


def _op_add(*args: Any) -> Any:
    return _normalize(sum(_to_number(a) for a in args))


def _op_sub(a: Any = None, b: Any = None, *_: Any) -> Any:
    if b is None:
        return _normalize(-_to_number(a))
    return _normalize(_to_number(a) - _to_number(b))


def _op_mul(*args: Any) -> Any:
    result = 1.0
    for arg in args:
        result *= _to_number(arg)
    return _normalize(result)


def _op_div(a: Any = None, b: Any = None, *_: Any) -> Any:
    divisor = _to_number(b)
    if divisor == 0:
        return None
    return _normalize(_to_number(a) / divisor)


def _op_mod(a: Any = None, b: Any = None, *_: Any) -> Any:
    dividend, divisor = _to_number(a), _to_number(b)
    if divisor == 0 or not math.isfinite(dividend):
        return None
    return _normalize(math.fmod(dividend, divisor))


def _op_min(*args: Any) -> Any:
    numbers = [_to_number(a) for a in args]
    if not numbers or any(math.isnan(n) for n in numbers):
        return None
    return _normalize(min(numbers))


def _op_max(*args: Any) -> Any:
    numbers = [_to_number(a) for a in args]
    if not numbers or any(math.isnan(n) for n in numbers):
        return None
    return _normalize(max(numbers))


def _chain(compare: Callable[[Any, Any], bool]) -> Callable[..., bool]:
    """Build ``<``/``<=`` supporting the 3-argument "between" form."""

    def operator(a: Any = None, b: Any = None, c: Any = None, *_: Any) -> bool:
        if c is None:
            return compare(a, b)
        return compare(a, b) and compare(b, c)

    return operator


_EAGER_OPERATIONS: dict[str, Callable[..., Any]] = {
    "==": lambda a=None, b=None, *_: _loose_eq(a, b),
    "!=": lambda a=None, b=None, *_: not _loose_eq(a, b),
    "===": lambda a=None, b=None, *_: _strict_eq(a, b),
    "!==": lambda a=None, b=None, *_: not _strict_eq(a, b),
    "!": lambda a=None, *_: not is_truthy(a),
    "!!": lambda a=None, *_: is_truthy(a),
    "<": _chain(lambda a, b: _less(a, b)),
    "<=": _chain(lambda a, b: _less(a, b, or_equal=True)),
    ">": lambda a=None, b=None, *_: _less(b, a),
    ">=": lambda a=None, b=None, *_: _less(b, a, or_equal=True),
    "in": _op_in,
    "cat": _op_cat,
    "merge": _op_merge,
    "+": _op_add,
    "-": _op_sub,
    "*": _op_mul,
    "/": _op_div,
    "%": _op_mod,
    "min": _op_min,
    "max": _op_max,
}

# Operators that receive unevaluated nodes (short-circuit or data access)
_LAZY_OPERATIONS = {"and", "or", "if", "?:", "some", "all", "none", "missing", "missing_some"}

OPERATORS = frozenset(_EAGER_OPERATIONS) | _LAZY_OPERATIONS | {"var"}


# ─── Parsing ───────────────────────────────────────────


def _parse_value(value: Any, depth: int) -> RuleNode:
    if depth > MAX_DEPTH:
        raise RuleSyntaxError("Rule is nested too deeply")

    if isinstance(value, list):
        items = tuple(_parse_value(v, depth + 1) for v in value)
        if all(isinstance(item, Literal) for item in items):
            return Literal([item.value for item in items])
        return ListNode(items)

    if not isinstance(value, dict):
        return Literal(value)

    if not value:
        return DENY
    if len(value) != 1:
        raise RuleSyntaxError(f"Rule object must have exactly one operator, got {sorted(value)}")

    name, raw_args = next(iter(value.items()))
    if name not in OPERATORS:
        raise RuleSyntaxError(f"Unknown operator: {name!r}")

    if name == "var":
        if isinstance(raw_args, list):
            if len(raw_args) > 2:
                raise RuleSyntaxError("var takes a path and an optional default")
            path = _parse_value(raw_args[0], depth + 1) if raw_args else Literal("")
            default = _parse_value(raw_args[1], depth + 1) if len(raw_args) == 2 else None
            return VarRef(path, default)
        return VarRef(_parse_value(raw_args, depth + 1))

    # Unary sugar: {"!": x} == {"!": [x]}
    args = raw_args if isinstance(raw_args, list) else [raw_args]
    return Op(name, tuple(_parse_value(a, depth + 1) for a in args))


@lru_cache(maxsize=512)
def _parse_text(text: str) -> RuleNode:
    try:
        value = json.loads(text)
    except ValueError as e:
        raise RuleSyntaxError(f"Rule is not valid JSON: {e}") from e
    return _parse_value(value, 0)


def parse_rule(raw: Any) -> RuleNode:
    """Parse a stored rule into an AST.

    Args:
        raw: JSON text, an already decoded JSON value, or a parsed node

    Returns:
        Root node of the rule tree

    Raises:
        RuleSyntaxError: If the rule is not valid JSON or uses an
            unknown/malformed operator
    """
    if isinstance(raw, (Literal, ListNode, VarRef, Op)):
        return raw
    if raw is None:
        return DENY
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return DENY
        return _parse_text(text)
    return _parse_value(raw, 0)


def is_allow_all(raw: Any) -> bool:
    """True for the "no restriction configured" shorthand."""
    if raw is True:
        return True
    return isinstance(raw, str) and raw.strip() == "true"


# ─── Evaluation ────────────────────────────────────────

_NOT_FOUND = object()


def _resolve_path(data: Any, path: Any) -> Any:
    """Resolve a dot path like ``data.items.0.name``; numeric segments index lists."""
    if path is None or path == "" or path == []:
        return data
    if _is_number(path):
        segments = [_to_str(path)]
    else:
        segments = str(path).split(".")

    current = data
    for segment in segments:
        if isinstance(current, dict):
            if segment not in current:
                return _NOT_FOUND
            current = current[segment]
        elif isinstance(current, (list, tuple)):
            try:
                index = int(segment)
            except ValueError:
                return _NOT_FOUND
            if not 0 <= index < len(current):
                return _NOT_FOUND
            current = current[index]
        else:
            return _NOT_FOUND
    return current


def _missing(keys: list, data: Any) -> list:
    if len(keys) == 1 and isinstance(keys[0], list):
        keys = keys[0]
    missing = []
    for key in keys:
        value = _resolve_path(data, key)
        if value is _NOT_FOUND or value is None or value == "":
            missing.append(key)
    return missing


def _apply_lazy(node: Op, data: Any) -> Any:
    name, args = node.name, node.args

    if name == "and":
        value = None
        for arg in args:
            value = apply(arg, data)
            if not is_truthy(value):
                return value
        return value

    if name == "or":
        value = None
        for arg in args:
            value = apply(arg, data)
            if is_truthy(value):
                return value
        return value

    if name in ("if", "?:"):
        index = 0
        while index < len(args) - 1:
            if is_truthy(apply(args[index], data)):
                return apply(args[index + 1], data)
            index += 2
        if len(args) % 2 == 1:
            return apply(args[-1], data)
        return None

    if name in ("some", "all", "none"):
        items = apply(args[0], data) if args else None
        inner = args[1] if len(args) > 1 else DENY
        if not isinstance(items, (list, tuple)):
            items = []
        if name == "some":
            return any(is_truthy(apply(inner, item)) for item in items)
        if name == "all":
            return bool(items) and all(is_truthy(apply(inner, item)) for item in items)
        return not any(is_truthy(apply(inner, item)) for item in items)

    if name == "missing":
        return _missing([apply(a, data) for a in args], data)

    # missing_some
    values = [apply(a, data) for a in args]
    need = _to_number(values[0]) if values else 0
    keys = values[1] if len(values) > 1 and isinstance(values[1], list) else []
    missing = _missing(keys, data) if keys else []
    if len(keys) - len(missing) >= need:
        return []
    return missing


def apply(node: RuleNode, data: Any) -> Any:
    """Evaluate a parsed rule against ``data`` and return the raw result."""
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, ListNode):
        return [apply(item, data) for item in node.items]
    if isinstance(node, VarRef):
        value = _resolve_path(data, apply(node.path, data))
        if value is _NOT_FOUND:
            return apply(node.default, data) if node.default is not None else None
        return value
    if node.name in _LAZY_OPERATIONS:
        return _apply_lazy(node, data)
    return _EAGER_OPERATIONS[node.name](*(apply(arg, data) for arg in node.args))


def evaluate(rule: Any, context: dict) -> bool:
    """Decide a permission rule against a context.

    Args:
        rule: Stored rule (JSON text, decoded JSON value or parsed node)
        context: Evaluation context, see ``core.permission_context``

    Returns:
        True if the rule allows

    Raises:
        RuleSyntaxError: If the rule is malformed
    """
    if is_allow_all(rule):
        return True
    return is_truthy(apply(parse_rule(rule), context))


def validate_rule(raw: Any) -> None:
    """Raise ``RuleSyntaxError`` unless ``raw`` parses."""
    if not is_allow_all(raw):
        parse_rule(raw)
