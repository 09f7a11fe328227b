from datetime import datetime
from decimal import Decimal

from conftest import form
from app.crm.datalist import Related
from app.crm.db import session_scope
from app.crm.modules.customers import views as customer_views
from app.crm.models import Activity, AuditEvent, Contact, Customer, Deal


def _seed_customer(app, name="Acme Co", **extra):
    with session_scope(app) as s:
        c = Customer(name=name, status="active", **extra)
        s.add(c)
        s.flush()
        return c.id


def _seed_deal(app, customer_id, name="Big Deal", amount="5000", stage="proposal", **extra):
    with session_scope(app) as s:
        d = Deal(customer_id=customer_id, name=name, amount=Decimal(amount), stage=stage, **extra)
        s.add(d)
        s.flush()
        return d.id


class TestDashboard:
    def test_empty_dashboard(self, logged_in):
        r = logged_in.get("/")
        assert r.status_code == 200
        html = r.get_data(as_text=True)
        assert '<div class="stat-value" id="total-customers">0</div>' in html
        assert "$0.00" in html

    def test_stats(self, app, logged_in):
        acme = _seed_customer(app)
        _seed_customer(app, "Globex")
        _seed_deal(app, acme, amount="5000", stage="proposal")
        _seed_deal(app, acme, name="Done", amount="1000", stage="closed_won")

        html = logged_in.get("/").get_data(as_text=True)
        assert 'id="total-customers">2<' in html
        assert 'id="total-deals">2<' in html
        assert 'id="open-deals">1<' in html
        assert "$6,000.00" in html


class TestCustomers:
    def test_list_and_search(self, app, logged_in):
        _seed_customer(app, "Acme Co", email="ops@acme.test")
        _seed_customer(app, "Globex")

        html = logged_in.get("/customers").get_data(as_text=True)
        assert "Acme Co" in html and "Globex" in html

        html = logged_in.get("/customers?q=acm").get_data(as_text=True)
        assert "Acme Co" in html
        assert "Globex" not in html

    def test_empty_list(self, logged_in):
        html = logged_in.get("/customers").get_data(as_text=True)
        assert "No data" in html
        assert "notification-danger" not in html
        assert "<dialog" not in html

    def test_modal_opens(self, logged_in):
        html = logged_in.get("/customers?new=1").get_data(as_text=True)
        assert "<dialog open" in html
        assert "Add Customer" in html

    def test_create_customer(self, app, logged_in):
        r = logged_in.post("/customers/new", data=form(name="Initech", email="Hello@Initech.test"))
        assert r.status_code == 302

        html = logged_in.get(r.headers["Location"]).get_data(as_text=True)
        assert "Customer added successfully" in html
        assert "Initech" in html
        assert "<dialog" not in html

        with session_scope(app) as s:
            c = s.query(Customer).filter(Customer.name == "Initech").one()
            assert c.status == "active"
            assert c.email == "hello@initech.test"
            assert c.created_by_user_id is not None
            assert s.query(AuditEvent).filter(AuditEvent.action == "customers.create").count() == 1

    def test_create_requires_name(self, app, logged_in):
        r = logged_in.post("/customers/new", data=form(name="", company="Nameless"))
        assert r.status_code == 400
        html = r.get_data(as_text=True)
        assert html.count("Please input customer name!") == 1
        assert "<dialog open" in html
        assert 'value="Nameless"' in html
        with session_scope(app) as s:
            assert s.query(Customer).count() == 0

    def test_detail_with_deals_and_contacts(self, app, logged_in):
        acme = _seed_customer(app, company="Acme Holdings")
        _seed_deal(app, acme, name="Renewal", amount="5000", stage="closed_won")
        with session_scope(app) as s:
            s.add(Contact(customer_id=acme, first_name="Wile", last_name="Coyote", is_primary=True))

        r = logged_in.get(f"/customers/{acme}")
        assert r.status_code == 200
        html = r.get_data(as_text=True)
        assert "Acme Holdings" in html
        assert "Renewal" in html
        assert "CLOSED WON" in html
        assert "$5,000" in html
        assert "Wile Coyote" in html

    def test_detail_not_found(self, logged_in):
        r = logged_in.get("/customers/999")
        assert r.status_code == 302
        assert r.headers["Location"].endswith("/customers")
        html = logged_in.get("/customers").get_data(as_text=True)
        assert "Failed to fetch customer data" in html

    def test_detail_fails_when_a_related_collection_fails(self, app, logged_in, monkeypatch):
        acme = _seed_customer(app)
        monkeypatch.setattr(
            customer_views,
            "CUSTOMER_RELATED",
            (Related("deals", "deals", "customer_id"), Related("contacts", "contact_archive", "customer_id")),
        )

        r = logged_in.get(f"/customers/{acme}")
        assert r.status_code == 302
        assert r.headers["Location"].endswith("/customers")

        html = logged_in.get("/customers").get_data(as_text=True)
        assert html.count("Failed to fetch customer data") == 1
        assert html.count("notification-danger") == 1

    def test_add_contact(self, app, logged_in):
        acme = _seed_customer(app)
        r = logged_in.post(f"/customers/{acme}/contacts", data=form(first_name="Road", last_name="Runner", is_primary="1"))
        assert r.status_code == 302
        html = logged_in.get(r.headers["Location"]).get_data(as_text=True)
        assert "Contact added successfully" in html
        assert "Road Runner" in html

    def test_add_contact_validation(self, app, logged_in):
        acme = _seed_customer(app)
        r = logged_in.post(f"/customers/{acme}/contacts", data=form(first_name="Road"))
        assert r.status_code == 400
        assert "Please input last name!" in r.get_data(as_text=True)


class TestDeals:
    def test_create_deal_shows_stage_and_amount(self, app, logged_in):
        acme = _seed_customer(app)
        r = logged_in.post(
            "/deals/new",
            data=form(name="Acme Renewal", customer_id=str(acme), amount="5000", stage="proposal"),
        )
        assert r.status_code == 302

        html = logged_in.get("/deals").get_data(as_text=True)
        assert "Deal added successfully" in html
        assert "Acme Renewal" in html
        assert "Acme Co" in html
        assert "PROPOSAL" in html
        assert "$5,000" in html

    def test_create_deal_validation(self, app, logged_in):
        r = logged_in.post("/deals/new", data=form(amount="-1"))
        assert r.status_code == 400
        html = r.get_data(as_text=True)
        assert html.count("Please input deal name!") == 1
        assert html.count("Please select a customer!") == 1
        assert "Amount must be at least 0." in html
        with session_scope(app) as s:
            assert s.query(Deal).count() == 0

    def test_create_deal_unknown_customer(self, app, logged_in):
        r = logged_in.post("/deals/new", data=form(name="Ghost", customer_id="404", stage="lead"))
        assert r.status_code == 200
        html = r.get_data(as_text=True)
        assert "Failed to add deal" in html
        assert "<dialog open" in html

    def test_customer_dropdown(self, app, logged_in):
        acme = _seed_customer(app)
        html = logged_in.get("/deals?new=1").get_data(as_text=True)
        assert f'<option value="{acme}"' in html

    def test_detail(self, app, logged_in):
        acme = _seed_customer(app)
        deal = _seed_deal(app, acme, probability=40)
        with session_scope(app) as s:
            s.add(Activity(type="call", title="Kickoff call", entity_type="deal", entity_id=deal))
            s.add(Activity(type="note", title="Customer-level note", entity_type="customer", entity_id=acme))

        html = logged_in.get(f"/deals/{deal}").get_data(as_text=True)
        assert "Big Deal" in html
        assert "40%" in html
        assert "PROPOSAL" in html
        assert "Kickoff call" in html
        assert "Customer-level note" not in html

    def test_detail_not_found(self, logged_in):
        r = logged_in.get("/deals/999")
        assert r.status_code == 302
        assert r.headers["Location"].endswith("/deals")
        assert "Failed to fetch deal data" in logged_in.get("/deals").get_data(as_text=True)


class TestActivities:
    def test_related_name_follows_entity_type(self, app, logged_in):
        acme = _seed_customer(app, "Acme Co")
        _seed_deal(app, acme, name="Big Deal")
        with session_scope(app) as s:
            # Customer 1 and deal 1 share an id; only the customer may be shown.
            s.add(Activity(type="call", title="Intro", entity_type="customer", entity_id=acme))

        html = logged_in.get("/activities").get_data(as_text=True)
        assert f'<a href="/customers/{acme}">Acme Co</a>' in html
        assert "Big Deal" not in html
        assert "Pending" in html

    def test_create_activity_for_deal(self, app, logged_in):
        acme = _seed_customer(app)
        deal = _seed_deal(app, acme)
        r = logged_in.post(
            "/activities/new",
            data=form(type="meeting", title="Negotiate", entity_type="deal", entity_id=f"deal:{deal}", due_date="2026-01-05"),
        )
        assert r.status_code == 302
        html = logged_in.get("/activities").get_data(as_text=True)
        assert "Activity added successfully" in html
        assert "MEETING" in html
        assert "Jan 5, 2026" in html
        assert f'<a href="/deals/{deal}">Big Deal</a>' in html

    def test_related_options_are_tagged_by_kind(self, app, logged_in):
        acme = _seed_customer(app, "Acme Co")
        deal = _seed_deal(app, acme, name="Big Deal")
        html = logged_in.get("/activities?new=1").get_data(as_text=True)
        assert f'<option value="customer:{acme}"' in html
        assert f'<option value="deal:{deal}"' in html

    def test_related_record_must_match_entity_type(self, app, logged_in):
        acme = _seed_customer(app, "Acme Co")
        deal = _seed_deal(app, acme, name="Big Deal")
        assert acme == deal

        r = logged_in.post(
            "/activities/new",
            data=form(type="call", title="Mixed up", entity_type="customer", entity_id=f"deal:{deal}"),
        )
        assert r.status_code == 400
        html = r.get_data(as_text=True)
        assert '<div class="field-error" data-field="entity_id">Please select a customer record.</div>' in html
        assert "<dialog open" in html
        with session_scope(app) as s:
            assert s.query(Activity).count() == 0

        r = logged_in.post(
            "/activities/new",
            data=form(type="call", title="Sorted", entity_type="deal", entity_id=f"deal:{deal}"),
        )
        assert r.status_code == 302
        with session_scope(app) as s:
            saved = s.query(Activity).one()
            assert (saved.entity_type, saved.entity_id) == ("deal", deal)

    def test_create_activity_missing_reference(self, app, logged_in):
        r = logged_in.post(
            "/activities/new",
            data=form(type="call", title="Ghost", entity_type="deal", entity_id="deal:404"),
        )
        assert r.status_code == 200
        assert "Failed to add activity" in r.get_data(as_text=True)
        with session_scope(app) as s:
            assert s.query(Activity).count() == 0

    def test_create_activity_validation(self, logged_in):
        r = logged_in.post("/activities/new", data=form(type="call"))
        assert r.status_code == 400
        html = r.get_data(as_text=True)
        assert "Please input activity title!" in html
        assert "Please select related entity type!" in html

    def test_complete(self, app, logged_in):
        acme = _seed_customer(app)
        with session_scope(app) as s:
            a = Activity(type="task", title="Send quote", entity_type="customer", entity_id=acme)
            s.add(a)
            s.flush()
            activity_id = a.id

        r = logged_in.post(f"/activities/{activity_id}/complete", data=form())
        assert r.status_code == 302
        html = logged_in.get("/activities").get_data(as_text=True)
        assert "Completed" in html
        with session_scope(app) as s:
            assert isinstance(s.get(Activity, activity_id).completed_at, datetime)
