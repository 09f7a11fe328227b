from __future__ import annotations

from app.crm.constants import DEAL_STAGES
from app.crm.datalist import EntityConfig, FieldSpec, Related
from app.crm.store import Embed

CUSTOMER_NAME = Embed("customers", "customers", "customer_id")

DEALS = EntityConfig(
    table="deals",
    label="Deal",
    plural="deals",
    embeds=(CUSTOMER_NAME,),
    search_field="name",
    fields=(
        FieldSpec("name", "Deal Name", required=True, required_message="Please input deal name!"),
        FieldSpec("customer_id", "Customer", required=True, kind="ref", required_message="Please select a customer!"),
        FieldSpec("amount", "Amount", kind="number", min_value=0),
        FieldSpec("stage", "Stage", required=True, choices=DEAL_STAGES, required_message="Please select a stage!"),
        FieldSpec("expected_close_date", "Expected Close Date", kind="date"),
        FieldSpec("probability", "Probability", kind="integer", min_value=0, max_value=100),
    ),
)

DEAL_RELATED = (
    Related(
        "activities",
        "activities",
        "entity_id",
        match=(("entity_type", "deal"),),
        order_by="created_at",
    ),
)
