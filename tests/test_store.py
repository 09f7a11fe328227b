from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event

from app.crm.models import Base
from app.crm.store import Embed, StoreClient


@pytest.fixture()
def client(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path/'store.db'}", connect_args={"check_same_thread": False})

    @event.listens_for(engine, "connect")
    def _fk(dbapi_connection, connection_record):
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    Base.metadata.create_all(bind=engine)
    yield StoreClient(engine, Base.metadata, actor_id=None)
    engine.dispose()


def _customer(client, name, **extra):
    return client.table("customers").insert({"name": name, "status": "active", **extra}).execute().unwrap()[0]


def test_insert_returns_rows_with_generated_ids(client):
    row = _customer(client, "Acme Co", email="ops@acme.test")
    assert row["id"] > 0
    assert row["name"] == "Acme Co"
    assert row["created_at"] is not None


def test_insert_refuses_explicit_id(client):
    result = client.table("customers").insert({"id": 7, "name": "X"}).execute()
    assert not result.ok
    assert result.error.code == "immutable_column"


def test_select_with_search_and_order(client):
    for name in ("Beta Corp", "acme north", "Acme South"):
        _customer(client, name)
    rows = client.table("customers").select("id, name").ilike("name", "%acme%").order("name").execute().unwrap()
    assert sorted(r["name"].lower() for r in rows) == ["acme north", "acme south"]
    assert set(rows[0]) == {"id", "name"}


def test_embed_attaches_parent_name(client):
    acme = _customer(client, "Acme Co")
    client.table("deals").insert(
        {"customer_id": acme["id"], "name": "Renewal", "amount": Decimal("5000"), "stage": "proposal"}
    ).execute().unwrap()

    rows = client.table("deals").select("*", embed=[Embed("customers", "customers", "customer_id")]).execute().unwrap()
    assert rows[0]["customers"] == {"name": "Acme Co"}
    assert Decimal(str(rows[0]["amount"])) == Decimal("5000")


def test_count(client):
    _customer(client, "A")
    _customer(client, "B")
    result = client.table("customers").select("id", count=True).execute()
    assert result.count == 2


def test_single_not_found(client):
    result = client.table("deals").select().eq("id", 999).single().execute()
    assert result.data is None
    assert result.error.code == "not_found"


def test_unknown_table_is_an_error_result(client):
    result = client.table("invoices").select().execute()
    assert result.error is not None
    assert result.error.code == "undefined_table"


def test_unknown_column_is_an_error_result(client):
    result = client.table("customers").select("id, nickname").execute()
    assert result.error.code == "undefined_column"


def test_foreign_key_failure_is_an_error_result(client):
    result = client.table("deals").insert({"customer_id": 404, "name": "Orphan", "stage": "lead"}).execute()
    assert result.error is not None
    with pytest.raises(Exception):
        result.unwrap()


def test_activity_reference_must_exist(client):
    result = client.table("activities").insert(
        {"type": "call", "title": "Intro", "entity_type": "deal", "entity_id": 41}
    ).execute()
    assert result.error.code == "foreign_key_violation"


def test_activity_reference_to_existing_customer(client):
    acme = _customer(client, "Acme Co")
    row = client.table("activities").insert(
        {"type": "call", "title": "Intro", "entity_type": "customer", "entity_id": acme["id"], "due_date": date(2026, 1, 5)}
    ).execute().unwrap()[0]
    assert row["entity_type"] == "customer"
    assert row["due_date"] == date(2026, 1, 5)


def test_update_requires_filter(client):
    result = client.table("customers").update({"status": "inactive"}).execute()
    assert result.error.code == "unfiltered_update"


def test_update_touches_updated_at(client):
    acme = _customer(client, "Acme Co")
    actor_client = StoreClient(client.engine, client.metadata, actor_id=None)
    rows = actor_client.table("customers").update({"status": "inactive"}).eq("id", acme["id"]).execute().unwrap()
    assert rows[0]["status"] == "inactive"
    assert rows[0]["updated_at"] >= acme["updated_at"]
