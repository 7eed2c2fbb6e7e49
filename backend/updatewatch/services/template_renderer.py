"""Safe rendering of user-authored notification templates.

Templates contain ``${expr}`` placeholders. Expressions are evaluated by a
small grammar, tried in precedence order:

    ternary      cond ? a : b
    logical and  a && b
    concat       a + b
    literal      "text" / 'text' / -12.5
    method call  container.name.substring(0, 15)
    path         container.updateKind.kind

Operators are located with a single linear scan that tracks parenthesis depth,
quote state and backslash escapes. Expressions only ever see plain dicts,
lists and scalars, and path segments starting with ``_`` are never resolved.
Evaluation never raises: every failure renders as an empty string.
"""

import json
import logging
import math
import re
from typing import Any, Callable, Mapping, Sequence

logger = logging.getLogger(__name__)

# Upper bound for strings produced by repeat/padStart/padEnd
MAX_GENERATED_LENGTH = 10_000

DEFAULT_SIMPLE_TITLE = "New ${container.updateKind.kind} found for container ${container.name}"
DEFAULT_SIMPLE_BODY = (
    "Container ${container.name} running with ${container.updateKind.kind} "
    "${container.updateKind.localValue} can be updated to ${container.updateKind.kind} "
    "${container.updateKind.remoteValue}"
    '${container.result && container.result.link ? "\\n" + container.result.link : ""}'
)
DEFAULT_BATCH_TITLE = "${containers.length} updates available"

ALLOWED_METHODS = frozenset(
    {
        "substring",
        "slice",
        "toLowerCase",
        "toUpperCase",
        "trim",
        "trimStart",
        "trimEnd",
        "replace",
        "split",
        "indexOf",
        "lastIndexOf",
        "startsWith",
        "endsWith",
        "includes",
        "charAt",
        "padStart",
        "padEnd",
        "repeat",
        "toString",
    }
)

_PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}")
_IDENTIFIER_RE = re.compile(r"^[a-zA-Z_]\w*$", re.ASCII)
_NUMBER_LITERAL_RE = re.compile(r"^-?\d+(\.\d+)?$", re.ASCII)
_NUMERIC_STRING_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$", re.ASCII)

# Returned by a grammar rule that does not apply to the expression
_NO_MATCH = object()
# Missing method argument (renders as "undefined")
_MISSING = object()


class _TemplateError(Exception):
    """Raised inside method evaluation; always rendered as an empty string."""


# Value conversion


def is_truthy(value: Any) -> bool:
    """Return the truthiness of a template value (empty containers are truthy)."""
    if value is None or value is _MISSING or value is False:
        return False
    if isinstance(value, (int, float)):
        return value != 0 and not (isinstance(value, float) and math.isnan(value))
    if isinstance(value, str):
        return value != ""
    return True


def _format_number(value: float | int) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


def to_template_string(value: Any) -> str:
    """Stringify an evaluated value for output."""
    if value is None or value is _MISSING:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return _format_number(value)
    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError):
        return ""


def _argument_string(value: Any) -> str:
    """String conversion for method arguments and ``toString``."""
    if value is _MISSING:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return _format_number(value)
    if isinstance(value, list):
        return ",".join("" if item is None else _argument_string(item) for item in value)
    return "[object Object]"


def _to_number(value: Any) -> float:
    if value is _MISSING:
        return math.nan
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if text == "":
            return 0.0
        if text in ("Infinity", "+Infinity"):
            return math.inf
        if text == "-Infinity":
            return -math.inf
        if _NUMERIC_STRING_RE.match(text):
            return float(text)
        return math.nan
    return math.nan


def _to_integer(value: Any) -> float:
    """Integer conversion for method arguments (NaN becomes 0, infinities are kept)."""
    number = _to_number(value)
    if math.isnan(number):
        return 0
    if math.isinf(number):
        return number
    return math.trunc(number)


def _clamp(value: float, lower: int, upper: int) -> int:
    return int(min(max(value, lower), upper))


def _relative_index(value: Any, length: int, default: int) -> int:
    if value is _MISSING:
        return default
    position = _to_integer(value)
    if position < 0:
        return _clamp(length + position, 0, length)
    return _clamp(position, 0, length)


def _arg(args: Sequence[Any], index: int) -> Any:
    return args[index] if index < len(args) else _MISSING


def _strict_equals(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if type(left) is not type(right):
        return False
    if isinstance(left, (dict, list)):
        return left is right
    return left == right


# String methods


def _substring(text: str, args: Sequence[Any]) -> str:
    length = len(text)
    start = _clamp(_to_integer(_arg(args, 0)), 0, length)
    end_arg = _arg(args, 1)
    end = length if end_arg is _MISSING else _clamp(_to_integer(end_arg), 0, length)
    if start > end:
        start, end = end, start
    return text[start:end]


def _slice(value: str | list, args: Sequence[Any]) -> str | list:
    length = len(value)
    start = _relative_index(_arg(args, 0), length, 0)
    end = _relative_index(_arg(args, 1), length, length)
    if start >= end:
        return value[:0]
    return value[start:end]


def _replace(text: str, args: Sequence[Any]) -> str:
    pattern = _argument_string(_arg(args, 0))
    replacement = _argument_string(_arg(args, 1))
    position = text.find(pattern)
    if position == -1:
        return text
    return text[:position] + replacement + text[position + len(pattern):]


def _split(text: str, args: Sequence[Any]) -> list[str]:
    separator = _arg(args, 0)
    limit_arg = _arg(args, 1)
    limit = None if limit_arg is _MISSING else _clamp(_to_integer(limit_arg), 0, 2**32 - 1)
    if separator is _MISSING:
        parts = [text]
    else:
        separator = _argument_string(separator)
        parts = list(text) if separator == "" else text.split(separator)
    return parts if limit is None else parts[:limit]


def _index_of(text: str, args: Sequence[Any]) -> int:
    search = _argument_string(_arg(args, 0))
    start = _clamp(_to_integer(_arg(args, 1)), 0, len(text))
    return text.find(search, start)


def _last_index_of(text: str, args: Sequence[Any]) -> int:
    search = _argument_string(_arg(args, 0))
    position_number = _to_number(_arg(args, 1))
    if math.isnan(position_number):
        position = len(text)
    else:
        position = _clamp(_to_integer(position_number), 0, len(text))
    return text.rfind(search, 0, position + len(search))


def _starts_with(text: str, args: Sequence[Any]) -> bool:
    search = _argument_string(_arg(args, 0))
    start = _clamp(_to_integer(_arg(args, 1)), 0, len(text))
    return text.startswith(search, start)


def _ends_with(text: str, args: Sequence[Any]) -> bool:
    search = _argument_string(_arg(args, 0))
    end_arg = _arg(args, 1)
    end = len(text) if end_arg is _MISSING else _clamp(_to_integer(end_arg), 0, len(text))
    return text.endswith(search, 0, end)


def _includes(text: str, args: Sequence[Any]) -> bool:
    search = _argument_string(_arg(args, 0))
    start = _clamp(_to_integer(_arg(args, 1)), 0, len(text))
    return search in text[start:]


def _char_at(text: str, args: Sequence[Any]) -> str:
    index = _to_integer(_arg(args, 0))
    if 0 <= index < len(text):
        return text[int(index)]
    return ""


def _pad(text: str, args: Sequence[Any], at_start: bool) -> str:
    target = _to_integer(_arg(args, 0))
    fill_arg = _arg(args, 1)
    fill = " " if fill_arg is _MISSING else _argument_string(fill_arg)
    if target <= len(text) or fill == "":
        return text
    if target > MAX_GENERATED_LENGTH:
        raise _TemplateError(f"Padded length {target} exceeds {MAX_GENERATED_LENGTH}")
    missing = int(target) - len(text)
    padding = (fill * (missing // len(fill) + 1))[:missing]
    return padding + text if at_start else text + padding


def _repeat(text: str, args: Sequence[Any]) -> str:
    count = _to_integer(_arg(args, 0))
    if count < 0 or math.isinf(count):
        raise _TemplateError(f"Invalid repeat count: {count}")
    if len(text) * count > MAX_GENERATED_LENGTH:
        raise _TemplateError(f"Repeated length exceeds {MAX_GENERATED_LENGTH}")
    return text * int(count)


_STRING_METHODS: dict[str, Callable[[str, Sequence[Any]], Any]] = {
    "substring": _substring,
    "slice": _slice,
    "toLowerCase": lambda text, args: text.lower(),
    "toUpperCase": lambda text, args: text.upper(),
    "trim": lambda text, args: text.strip(),
    "trimStart": lambda text, args: text.lstrip(),
    "trimEnd": lambda text, args: text.rstrip(),
    "replace": _replace,
    "split": _split,
    "indexOf": _index_of,
    "lastIndexOf": _last_index_of,
    "startsWith": _starts_with,
    "endsWith": _ends_with,
    "includes": _includes,
    "charAt": _char_at,
    "padStart": lambda text, args: _pad(text, args, at_start=True),
    "padEnd": lambda text, args: _pad(text, args, at_start=False),
    "repeat": _repeat,
    "toString": lambda text, args: text,
}


# List methods


def _list_index_of(items: list, args: Sequence[Any]) -> int:
    search = _arg(args, 0)
    start = _relative_index(_arg(args, 1), len(items), 0)
    for index in range(start, len(items)):
        if _strict_equals(items[index], search):
            return index
    return -1


def _list_last_index_of(items: list, args: Sequence[Any]) -> int:
    search = _arg(args, 0)
    from_arg = _arg(args, 1)
    if from_arg is _MISSING:
        start = len(items) - 1
    else:
        position = _to_integer(from_arg)
        start = int(min(position, len(items) - 1)) if position >= 0 else int(len(items) + position)
    for index in range(start, -1, -1):
        if _strict_equals(items[index], search):
            return index
    return -1


def _list_includes(items: list, args: Sequence[Any]) -> bool:
    return _list_index_of(items, args) != -1


_LIST_METHODS: dict[str, Callable[[list, Sequence[Any]], Any]] = {
    "slice": _slice,
    "indexOf": _list_index_of,
    "lastIndexOf": _list_last_index_of,
    "includes": _list_includes,
    "toString": lambda items, args: _argument_string(items),
}


def _call_method(target: Any, method: str, args: Sequence[Any]) -> Any:
    if isinstance(target, str):
        implementation = _STRING_METHODS.get(method)
        return implementation(target, args) if implementation else ""
    if isinstance(target, list):
        implementation = _LIST_METHODS.get(method)
        return implementation(target, args) if implementation else ""
    if method == "toString":
        return _argument_string(target)
    return ""


# Path resolution


def _is_valid_property_path(text: str) -> bool:
    return all(_IDENTIFIER_RE.match(part) for part in text.split("."))


def _resolve_segment(current: Any, key: str) -> Any:
    if key.startswith("_"):
        return None
    if isinstance(current, Mapping):
        return current.get(key)
    if isinstance(current, (str, list)) and key == "length":
        return len(current)
    return None


def _resolve_path(variables: Mapping[str, Any], path: str) -> Any:
    current: Any = variables
    for key in path.split("."):
        if current is None:
            return None
        current = _resolve_segment(current, key)
    return current


# Top-level operator scanning


def _find_top_level(text: str, predicate: Callable[[str, int], bool]) -> int:
    """Return the index of the first top-level position matching predicate, or -1.

    Positions inside quotes or parentheses are never top-level. A backslash
    skips the following character.
    """
    depth = 0
    in_double = False
    in_single = False
    skip_next = False
    for index, char in enumerate(text):
        if skip_next:
            skip_next = False
            continue
        if char == "\\":
            skip_next = True
            continue
        if char == '"' and not in_single:
            in_double = not in_double
            continue
        if char == "'" and not in_double:
            in_single = not in_single
            continue
        if in_double or in_single:
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if depth == 0 and predicate(text, index):
            return index
    return -1


def _operator(op: str) -> Callable[[str, int], bool]:
    return lambda text, index: text.startswith(op, index)


def _is_plus_operator(text: str, index: int) -> bool:
    if text[index] != "+" or text[index + 1 : index + 2] == "+":
        return False
    return text[:index].strip() != ""


# Grammar rules


def _eval_ternary(expr: str, variables: Mapping[str, Any]) -> Any:
    question = _find_top_level(expr, _operator("?"))
    if question == -1:
        return _NO_MATCH
    rest = expr[question + 1 :]
    colon = _find_top_level(rest, _operator(":"))
    if colon == -1:
        return _NO_MATCH
    if is_truthy(_safe_eval(expr[:question], variables)):
        return _safe_eval(rest[:colon], variables)
    return _safe_eval(rest[colon + 1 :], variables)


def _eval_logical_and(expr: str, variables: Mapping[str, Any]) -> Any:
    position = _find_top_level(expr, _operator("&&"))
    if position == -1:
        return _NO_MATCH
    left = _safe_eval(expr[:position], variables)
    if not is_truthy(left):
        return left
    return _safe_eval(expr[position + 2 :], variables)


def _eval_concat(expr: str, variables: Mapping[str, Any]) -> Any:
    position = _find_top_level(expr, _is_plus_operator)
    if position == -1:
        return _NO_MATCH
    left = to_template_string(_safe_eval(expr[:position], variables))
    right = to_template_string(_safe_eval(expr[position + 1 :], variables))
    return left + right


def _eval_string_literal(expr: str) -> Any:
    if len(expr) >= 2 and expr[0] == expr[-1] and expr[0] in ("'", '"'):
        return (
            expr[1:-1]
            .replace("\\n", "\n")
            .replace("\\t", "\t")
            .replace('\\"', '"')
            .replace("\\'", "'")
        )
    return _NO_MATCH


def _eval_number_literal(expr: str) -> Any:
    if _NUMBER_LITERAL_RE.match(expr):
        return _format_number(float(expr))
    return _NO_MATCH


def _parse_method_call(expr: str) -> tuple[str, str, str] | None:
    if not expr.endswith(")"):
        return None
    open_paren = expr.find("(")
    if open_paren == -1:
        return None
    raw_args = expr[open_paren + 1 : -1]
    if ")" in raw_args:
        return None
    path_part = expr[:open_paren]
    last_dot = path_part.rfind(".")
    if last_dot == -1:
        return None
    object_path = path_part[:last_dot]
    method = path_part[last_dot + 1 :]
    if not _is_valid_property_path(object_path) or not _IDENTIFIER_RE.match(method):
        return None
    return object_path, method, raw_args


def _eval_method_call(expr: str, variables: Mapping[str, Any]) -> Any:
    parsed = _parse_method_call(expr)
    if parsed is None:
        return _NO_MATCH
    object_path, method, raw_args = parsed
    target = _safe_eval(object_path, variables)
    if target is None or method not in ALLOWED_METHODS:
        return ""
    args = [] if raw_args.strip() == "" else [_safe_eval(arg, variables) for arg in raw_args.split(",")]
    return _call_method(target, method, args)


def _eval_property_path(expr: str, variables: Mapping[str, Any]) -> Any:
    if not _is_valid_property_path(expr):
        return _NO_MATCH
    value = _resolve_path(variables, expr)
    return "" if value is None else value


def _safe_eval(expr: str, variables: Mapping[str, Any]) -> Any:
    trimmed = expr.strip()
    for rule in (_eval_ternary, _eval_logical_and, _eval_concat):
        value = rule(trimmed, variables)
        if value is not _NO_MATCH:
            return value
    for literal in (_eval_string_literal, _eval_number_literal):
        value = literal(trimmed)
        if value is not _NO_MATCH:
            return value
    for rule in (_eval_method_call, _eval_property_path):
        value = rule(trimmed, variables)
        if value is not _NO_MATCH:
            return value
    return ""


def evaluate(expr: str, variables: Mapping[str, Any]) -> Any:
    """Evaluate a single template expression.

    Args:
        expr: Expression text (without the surrounding ``${}``)
        variables: Variables visible to the expression

    Returns:
        The evaluated value; ``""`` for anything unrecognized or failing
    """
    try:
        return _safe_eval(expr, variables)
    except Exception as e:
        logger.debug(f"Template expression evaluation failed: {e}")
        return ""


def safe_interpolate(template: str | None, variables: Mapping[str, Any]) -> str:
    """Replace every ``${expr}`` placeholder in template with its evaluated value."""
    if template is None:
        return ""

    def _replace_placeholder(match: re.Match) -> str:
        return to_template_string(evaluate(match.group(1), variables))

    return _PLACEHOLDER_RE.sub(_replace_placeholder, str(template))


def _as_template_dict(container: Any) -> dict:
    if hasattr(container, "to_template_dict"):
        return container.to_template_dict()
    if isinstance(container, Mapping):
        return dict(container)
    return {}


def render_simple(template: str | None, container: Any) -> str:
    """Render a title or body template for a single container.

    Args:
        template: Template text
        container: Container model (or an already-dumped mapping)

    Returns:
        Rendered text
    """
    data = _as_template_dict(container)
    update_kind = data.get("updateKind")
    if not isinstance(update_kind, Mapping):
        update_kind = {}
    result = data.get("result")
    if not isinstance(result, Mapping):
        result = {}
    variables = {
        "container": data,
        # Deprecated flat aliases
        "id": data.get("id"),
        "name": data.get("name"),
        "watcher": data.get("watcher"),
        "kind": update_kind.get("kind") or "",
        "semver": update_kind.get("semverDiff") or "",
        "local": update_kind.get("localValue") or "",
        "remote": update_kind.get("remoteValue") or "",
        "link": result.get("link") or "",
    }
    return safe_interpolate(template, variables)


def render_batch(template: str | None, containers: Sequence[Any]) -> str:
    """Render a title or body template for a list of containers."""
    dumped = [_as_template_dict(container) for container in containers]
    variables = {
        "containers": dumped,
        # Deprecated alias
        "count": len(dumped),
    }
    return safe_interpolate(template, variables)
