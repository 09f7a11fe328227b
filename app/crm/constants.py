"""
Central constants for the CRM application.
"""
from __future__ import annotations

# Deal lifecycle, in pipeline order.
DEAL_STAGES = ("lead", "qualified", "proposal", "negotiation", "closed_won", "closed_lost")
CLOSED_STAGES = frozenset({"closed_won", "closed_lost"})

ACTIVITY_TYPES = ("note", "call", "email", "meeting", "task")

# Activity.entity_type discriminator -> table holding the referenced row
ACTIVITY_ENTITY_TABLES = {
    "customer": "customers",
    "deal": "deals",
}
ACTIVITY_ENTITY_TYPES = tuple(ACTIVITY_ENTITY_TABLES)

PROFILE_ROLES = ("admin", "manager", "agent")

DEFAULT_CUSTOMER_STATUS = "active"
