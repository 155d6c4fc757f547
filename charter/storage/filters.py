"""Evaluation of store ``where`` filters against plain documents.

Supported shapes::

    {"status": {"equals": "awaiting payment"}}
    {"status": {"in": ["pending", "awaiting payment"]}}
    {"status": {"not_equals": "cancelled"}}
    {"coupon": {"exists": True}}
    {"and": [{...}, {...}]}
    {"or": [{...}, {...}]}
    {"status": "pending"}            # bare value means equals
"""

from typing import Any, Optional

_OPERATORS = ("equals", "in", "not_equals", "exists", "not_in")


def _normalise(value: Any) -> Any:
    if isinstance(value, dict) and "id" in value:
        return value["id"]
    if hasattr(value, "value") and not isinstance(value, (str, bytes)):
        return value.value
    return value


def _match_condition(actual: Any, condition: Any) -> bool:
    actual = _normalise(actual)
    if not isinstance(condition, dict) or not any(op in condition for op in _OPERATORS):
        return actual == _normalise(condition)

    for op, expected in condition.items():
        if op == "equals":
            if actual != _normalise(expected):
                return False
        elif op == "not_equals":
            if actual == _normalise(expected):
                return False
        elif op == "in":
            if actual not in [_normalise(v) for v in expected]:
                return False
        elif op == "not_in":
            if actual in [_normalise(v) for v in expected]:
                return False
        elif op == "exists":
            present = actual not in (None, "")
            if present != bool(expected):
                return False
        else:
            raise ValueError(f"Unsupported filter operator: {op}")
    return True


def matches(document: dict[str, Any], where: Optional[dict[str, Any]]) -> bool:
    """Return True when the document satisfies the filter."""
    if not where:
        return True
    for key, condition in where.items():
        if key == "and":
            if not all(matches(document, clause) for clause in condition):
                return False
        elif key == "or":
            if not any(matches(document, clause) for clause in condition):
                return False
        elif not _match_condition(document.get(key), condition):
            return False
    return True
