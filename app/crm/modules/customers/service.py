from __future__ import annotations

from app.crm.constants import DEFAULT_CUSTOMER_STATUS
from app.crm.datalist import EntityConfig, FieldSpec, Related

CUSTOMERS = EntityConfig(
    table="customers",
    label="Customer",
    plural="customers",
    search_field="name",
    fields=(
        FieldSpec("name", "Name", required=True, required_message="Please input customer name!"),
        FieldSpec("company", "Company"),
        FieldSpec("industry", "Industry"),
        FieldSpec("email", "Email", kind="email"),
        FieldSpec("phone", "Phone"),
        FieldSpec("address", "Address", kind="textarea"),
        FieldSpec("status", "Status"),
    ),
    defaults={"status": DEFAULT_CUSTOMER_STATUS},
)

CONTACTS = EntityConfig(
    table="contacts",
    label="Contact",
    plural="contacts",
    fields=(
        FieldSpec("first_name", "First name", required=True, required_message="Please input first name!"),
        FieldSpec("last_name", "Last name", required=True, required_message="Please input last name!"),
        FieldSpec("email", "Email", kind="email"),
        FieldSpec("phone", "Phone"),
        FieldSpec("position", "Position"),
        FieldSpec("is_primary", "Primary contact", kind="bool"),
    ),
)

CUSTOMER_RELATED = (
    Related("deals", "deals", "customer_id"),
    Related("contacts", "contacts", "customer_id"),
)


def contacts_for(customer_id: int) -> EntityConfig:
    """Contact form bound to one customer."""
    return EntityConfig(
        table=CONTACTS.table,
        label=CONTACTS.label,
        plural=CONTACTS.plural,
        fields=CONTACTS.fields,
        defaults={"customer_id": customer_id},
    )


def contact_name(contact: dict) -> str:
    return f"{contact.get('first_name') or ''} {contact.get('last_name') or ''}".strip()
