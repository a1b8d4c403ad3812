"""Cycle-safe, depth-bounded serialization of runtime values into JSON-safe data.

Every value is first classified into a ValueKind by ``classify`` and then
rendered by the matching branch of ``serialize``. The result only contains
None, bool, int, float, str, lists and str-keyed dicts, so it can always be
passed to ``json.dumps``.

Limits come from CaptureOptions:

- strings longer than ``max_string_length`` are cut and get a ``...`` suffix
- sequences keep ``max_array`` items plus a ``... (N more)`` marker
- mappings keep ``max_props`` keys plus a ``__truncated__`` key
- containers at ``max_depth`` collapse to ``[Array(N)]`` / ``[Object]``
- a container that is already on the current recursion path becomes ``[Circular]``
- a container that raises while being enumerated becomes ``[Unserializable <type>]``

Keys that collide after ``str()`` conversion get a ``~N`` suffix.
"""

import collections
import datetime
import enum
import json
import math
import traceback
from collections.abc import Mapping

from console_relay.config import CaptureOptions

CIRCULAR = "[Circular]"
TRUNCATION_SUFFIX = "..."
TRUNCATED_KEY = "__truncated__"
# Largest integer a JSON consumer can hold exactly (IEEE-754 double)
MAX_SAFE_INTEGER = 2**53 - 1

_ARRAY_TYPES = (list, tuple, set, frozenset, collections.deque)


class ValueKind(enum.Enum):
    PRIMITIVE = "primitive"
    SYMBOLIC = "symbolic"
    STRING = "string"
    CALLABLE = "callable"
    ERROR = "error"
    DATE = "date"
    HANDLE = "handle"
    CYCLIC = "cyclic"
    ARRAY = "array"
    MAPPING = "mapping"


def _handle_tag(value) -> str | None:
    """Return the tag name of a UI-element-like handle, if value is one."""
    try:
        tag = getattr(value, "tag_name", None)
    except Exception:
        return None
    return tag if isinstance(tag, str) and tag else None


def classify(value, visiting=frozenset()) -> ValueKind:
    """Assign value to exactly one ValueKind. Never raises."""
    if value is None or isinstance(value, bool):
        return ValueKind.PRIMITIVE
    if isinstance(value, enum.Enum):
        return ValueKind.SYMBOLIC
    if isinstance(value, int):
        if -MAX_SAFE_INTEGER <= value <= MAX_SAFE_INTEGER:
            return ValueKind.PRIMITIVE
        return ValueKind.SYMBOLIC
    if isinstance(value, float):
        return ValueKind.PRIMITIVE if math.isfinite(value) else ValueKind.SYMBOLIC
    if isinstance(value, (str, bytes, bytearray)):
        return ValueKind.STRING
    if isinstance(value, BaseException):
        return ValueKind.ERROR
    if callable(value):
        return ValueKind.CALLABLE
    if isinstance(value, (datetime.date, datetime.time)):
        return ValueKind.DATE
    if _handle_tag(value) is not None:
        return ValueKind.HANDLE
    if id(value) in visiting:
        return ValueKind.CYCLIC
    if isinstance(value, _ARRAY_TYPES):
        return ValueKind.ARRAY
    if isinstance(value, Mapping) or _object_fields(value) is not None:
        return ValueKind.MAPPING
    return ValueKind.SYMBOLIC


def _object_fields(value) -> list[tuple[str, object]] | None:
    """Own attributes of a plain object, or None if it has none to expose."""
    try:
        attrs = vars(value)
    except TypeError:
        attrs = None
    if attrs is not None:
        return list(attrs.items())

    slots = []
    for cls in type(value).__mro__:
        names = getattr(cls, "__slots__", ())
        if isinstance(names, str):
            names = (names,)
        slots.extend(names)
    if not slots:
        return None
    fields = []
    for name in slots:
        try:
            fields.append((name, getattr(value, name)))
        except Exception:
            continue
    return fields


def _items(value) -> list[tuple[str, object]]:
    if isinstance(value, Mapping):
        return [(key if isinstance(key, str) else _safe_str(key), item) for key, item in value.items()]
    return _object_fields(value) or []


def _safe_str(value) -> str:
    try:
        return str(value)
    except Exception:
        return f"<unprintable {type(value).__name__}>"


def _truncate(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[:limit] + TRUNCATION_SUFFIX
    return text


def _serialize_error(error: BaseException, options: CaptureOptions) -> dict:
    stack = None
    if error.__traceback__ is not None:
        stack = _truncate(
            "".join(traceback.format_exception(type(error), error, error.__traceback__)),
            options.max_string_length,
        )
    return {
        "name": type(error).__name__,
        "message": _truncate(_safe_str(error), options.max_string_length),
        "stack": stack,
    }


def serialize(value, options: CaptureOptions, depth: int = 0, visiting=None):
    """Convert value into a bounded, JSON-safe structure."""
    if visiting is None:
        visiting = set()

    kind = classify(value, visiting)

    if kind is ValueKind.PRIMITIVE:
        return value
    if kind is ValueKind.SYMBOLIC:
        return _safe_str(value)
    if kind is ValueKind.STRING:
        if isinstance(value, (bytes, bytearray)):
            value = bytes(value).decode("utf-8", errors="replace")
        return _truncate(value, options.max_string_length)
    if kind is ValueKind.CALLABLE:
        name = getattr(value, "__name__", None)
        if not name or name == "<lambda>":
            name = "anonymous"
        return f"[Function {name}]"
    if kind is ValueKind.ERROR:
        return _serialize_error(value, options)
    if kind is ValueKind.DATE:
        return value.isoformat()
    if kind is ValueKind.HANDLE:
        element_id = getattr(value, "id", None)
        tag = _handle_tag(value).lower()
        return f"<{tag}#{element_id}>" if element_id else f"<{tag}>"
    if kind is ValueKind.CYCLIC:
        return CIRCULAR

    if depth >= options.max_depth:
        if kind is ValueKind.ARRAY:
            return f"[Array({len(value)})]"
        return "[Object]"

    visiting.add(id(value))
    try:
        if kind is ValueKind.ARRAY:
            return _serialize_array(value, options, depth, visiting)
        return _serialize_mapping(value, options, depth, visiting)
    finally:
        # Only ancestors on the current path count as cycles, not siblings
        visiting.discard(id(value))


def _unserializable(value) -> str:
    return f"[Unserializable {type(value).__name__}]"


def _unique_key(key: str, taken: dict) -> str:
    """key, or key with a ``~N`` suffix if an earlier key already claimed it."""
    if key not in taken:
        return key
    n = 2
    while f"{key}~{n}" in taken:
        n += 1
    return f"{key}~{n}"


def _serialize_array(value, options, depth, visiting):
    try:
        items = list(value)
    except Exception:
        return _unserializable(value)
    limit = min(len(items), options.max_array)
    result = [serialize(item, options, depth + 1, visiting) for item in items[:limit]]
    if len(items) > limit:
        result.append(f"... ({len(items) - limit} more)")
    return result


def _serialize_mapping(value, options, depth, visiting):
    try:
        items = _items(value)
    except Exception:
        return _unserializable(value)
    limit = min(len(items), options.max_props)
    result = {}
    for key, item in items[:limit]:
        result[_unique_key(key, result)] = serialize(item, options, depth + 1, visiting)
    if len(items) > limit:
        result[_unique_key(TRUNCATED_KEY, result)] = f"{len(items) - limit} more keys"
    return result


def serialize_values(values, options: CaptureOptions) -> list:
    """Serialize each argument of a capture call independently."""
    return [serialize(value, options, 0, set()) for value in values]


def preview_value(value) -> str:
    """One-line text preview: strings verbatim, everything else as JSON or str()."""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError, OverflowError, RecursionError):
        return _safe_str(value)


def format_preview(values) -> str:
    return " ".join(preview_value(value) for value in values)
