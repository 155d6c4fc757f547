"""Relationship values crossing the document store boundary.

A relationship field holds either a bare id (depth 0) or the expanded
related document (depth >= 1). Both shapes are normalised into a tagged
union so callers never branch on ``isinstance(value, dict)``.
"""

from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, PlainSerializer


class Reference(BaseModel):
    """Unexpanded relationship: only the related document's id."""

    kind: Literal["reference"] = "reference"
    id: str

    @property
    def record(self) -> None:
        return None


class Expanded(BaseModel):
    """Expanded relationship: the full related document."""

    kind: Literal["expanded"] = "expanded"
    record: dict[str, Any]

    @property
    def id(self) -> Optional[str]:
        value = self.record.get("id")
        return str(value) if value not in (None, "") else None


Relation = Annotated[Union[Reference, Expanded], Field(discriminator="kind")]


def to_relation(value: Any) -> Optional[Union[Reference, Expanded]]:
    """Normalise a raw store value into a relation (None for empty values)."""
    if value is None or value == "":
        return None
    if isinstance(value, (Reference, Expanded)):
        return value
    if isinstance(value, dict):
        if value.get("kind") == "reference" and "id" in value:
            return Reference(id=str(value["id"]))
        if value.get("kind") == "expanded" and isinstance(value.get("record"), dict):
            return Expanded(record=value["record"])
        return Expanded(record=value)
    return Reference(id=str(value))


def resolve_id(value: Any) -> Optional[str]:
    """Return the related document id for any relationship shape."""
    relation = to_relation(value)
    return relation.id if relation is not None else None


def _money_to_json(value: Decimal) -> Union[int, float]:
    if value == value.to_integral_value():
        return int(value)
    return float(value)


# Monetary amounts: Decimal in memory, plain JSON numbers in stored documents
Money = Annotated[
    Decimal,
    PlainSerializer(_money_to_json, return_type=Union[int, float], when_used="json"),
]
