"""
Activity.entity_type/entity_id as a closed variant.

Rows arrive with a string discriminator; everything past the data boundary
works with ``CustomerRef`` or ``DealRef`` instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class CustomerRef:
    id: int


@dataclass(frozen=True)
class DealRef:
    id: int


RelatedRef = Union[CustomerRef, DealRef]

_BY_TYPE = {
    "customer": CustomerRef,
    "deal": DealRef,
}


def parse_related(entity_type: str | None, entity_id: Any) -> RelatedRef:
    cls = _BY_TYPE.get(entity_type or "")
    if cls is None:
        raise ValueError(f"Unknown entity_type {entity_type!r}")
    try:
        return cls(int(entity_id))
    except (TypeError, ValueError):
        raise ValueError(f"Invalid entity_id {entity_id!r} for {entity_type}")


def parse_option(entity_type: str | None, value: Any) -> RelatedRef:
    """
    Dropdown values are tagged ("deal:5"). The tag must agree with the
    selected entity_type; a bare id is read as that type.
    """
    kind, sep, raw = str(value or "").partition(":")
    if not sep:
        return parse_related(entity_type, value)
    ref = parse_related(kind, raw)
    if kind != entity_type:
        raise ValueError(f"Please select a {entity_type} record.")
    return ref


def option_value(ref: RelatedRef) -> str:
    kind = "customer" if isinstance(ref, CustomerRef) else "deal"
    return f"{kind}:{ref.id}"


def to_columns(ref: RelatedRef) -> dict[str, Any]:
    if isinstance(ref, CustomerRef):
        return {"entity_type": "customer", "entity_id": ref.id}
    return {"entity_type": "deal", "entity_id": ref.id}


def related_name(row: dict[str, Any]) -> str:
    """
    Name of the row an activity points at. Only the embed matching the
    variant is consulted, even when both embeds are populated.
    """
    try:
        ref = parse_related(row.get("entity_type"), row.get("entity_id"))
    except ValueError:
        return "-"
    embedded = row.get("customers") if isinstance(ref, CustomerRef) else row.get("deals")
    return (embedded or {}).get("name") or "-"


def related_endpoint(ref: RelatedRef) -> tuple[str, dict[str, int]]:
    if isinstance(ref, CustomerRef):
        return "customers.customer_detail", {"customer_id": ref.id}
    return "deals.deal_detail", {"deal_id": ref.id}
