from __future__ import annotations

from typing import Any

from app.crm.constants import ACTIVITY_ENTITY_TYPES, ACTIVITY_TYPES
from app.crm.datalist import EntityConfig, FieldSpec
from app.crm.errors import FieldError, ValidationError
from app.crm.modules.activities.relations import parse_option, to_columns
from app.crm.store import Embed


def _relation_columns(payload: dict[str, Any]) -> dict[str, Any]:
    out = dict(payload)
    try:
        ref = parse_option(out.pop("entity_type"), out.pop("entity_id"))
    except ValueError as e:
        raise ValidationError([FieldError("entity_id", str(e))])
    out.update(to_columns(ref))
    return out


ACTIVITIES = EntityConfig(
    table="activities",
    label="Activity",
    plural="activities",
    embeds=(
        Embed("customers", "customers", "entity_id"),
        Embed("deals", "deals", "entity_id"),
    ),
    order_by="created_at",
    fields=(
        FieldSpec("type", "Type", required=True, choices=ACTIVITY_TYPES, required_message="Please select activity type!"),
        FieldSpec("title", "Title", required=True, required_message="Please input activity title!"),
        FieldSpec("description", "Description", kind="textarea"),
        FieldSpec(
            "entity_type",
            "Related To",
            required=True,
            choices=ACTIVITY_ENTITY_TYPES,
            required_message="Please select related entity type!",
        ),
        FieldSpec("entity_id", "Related record", required=True, kind="relation", required_message="Please select a customer or deal!"),
        FieldSpec("due_date", "Due Date", kind="date"),
    ),
    prepare=_relation_columns,
)


def status_label(activity: dict[str, Any]) -> str:
    return "Completed" if activity.get("completed_at") else "Pending"
