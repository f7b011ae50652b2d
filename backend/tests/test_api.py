import pytest

from unobill import create_app
from unobill.api.routes import STORE_EXTENSION
from unobill.db.repository import PersistenceSubscriber


@pytest.fixture()
def app():
    app = create_app(
        {
            "TESTING": True,
            "DATABASE_URL": "",
            "SETTLEMENT_MODE": "hub",
            "DEFAULT_MEMBERS": ("A", "B", "C"),
        }
    )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def add_expense(client, **overrides):
    payload = {
        "payer": "A",
        "participants": ["A", "B", "C"],
        "amount": 90,
        "item_name": "Dinner",
        "split_method": "EVENLY",
    }
    payload.update(overrides)
    return client.post("/api/expenses", json=payload)


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.get_json() == {"status": "ok"}


def test_list_members_returns_default_roster(client):
    r = client.get("/api/members")
    assert r.status_code == 200
    assert r.get_json() == {"members": ["A", "B", "C"], "custom_members": []}


def test_create_member_is_idempotent(client):
    r = client.post("/api/members", json={"name": "  Dana "})
    assert r.status_code == 201
    assert r.get_json()["members"] == ["A", "B", "C", "Dana"]

    r = client.post("/api/members", json={"name": "Dana"})
    assert r.status_code == 200
    assert r.get_json()["created"] is False


def test_create_member_requires_name(client):
    r = client.post("/api/members", json={"name": "   "})
    assert r.status_code == 400
    assert "name" in r.get_json()["error"]["message"]


def test_create_expense(client):
    r = add_expense(client)
    assert r.status_code == 201
    body = r.get_json()
    assert body["id"].startswith("exp-")
    assert body["participants"] == ["A", "B", "C"]
    assert body["amount"] == 90.0

    r = client.get("/api/expenses")
    assert r.get_json()["total_amount"] == 90.0
    assert [e["id"] for e in r.get_json()["expenses"]] == [body["id"]]


def test_create_expense_reads_dot_as_decimal_point(client):
    r = add_expense(client, amount="0.500", participants=["A", "B"])
    assert r.status_code == 201
    assert r.get_json()["amount"] == 0.5

    body = client.get("/api/balances").get_json()
    assert body["balances"] == {"A": 0.25, "B": -0.25, "C": 0.0}


@pytest.mark.parametrize(
    "overrides, fragment",
    [
        ({"payer": "Q"}, "unknown member"),
        ({"participants": []}, "participants"),
        ({"participants": ["A", "A"]}, "unique"),
        ({"amount": 0}, "amount"),
        ({"amount": "abc"}, "amount"),
        ({"item_name": " "}, "item_name"),
        ({"split_method": "WEIGHTED"}, "split method"),
        ({"split_method": "MANUALLY", "manual_splits": {"A": 10, "B": 10}}, "add up"),
        ({"split_method": "MANUALLY", "manual_splits": {"A": 90, "Q": 0}}, "non-participant"),
        ({"split_method": "MANUALLY"}, "manual_splits"),
    ],
)
def test_create_expense_validation(client, overrides, fragment):
    r = add_expense(client, **overrides)
    assert r.status_code == 400
    assert fragment in r.get_json()["error"]["message"].lower()


def test_delete_expense(client):
    expense_id = add_expense(client).get_json()["id"]

    r = client.delete(f"/api/expenses/{expense_id}")
    assert r.status_code == 200
    assert client.get("/api/expenses").get_json()["expenses"] == []

    r = client.delete(f"/api/expenses/{expense_id}")
    assert r.status_code == 404


def test_balance_preview_does_not_archive(client):
    add_expense(client)

    r = client.get("/api/balances")
    assert r.status_code == 200
    body = r.get_json()
    assert body["balances"] == {"A": 60.0, "B": -30.0, "C": -30.0}
    assert body["main_creditor"] == "A"
    assert body["debtors"] == [{"member": "B", "amount": 30.0}, {"member": "C", "amount": 30.0}]
    assert body["transactions"] == [
        {"from": "B", "to": "A", "amount": 30.0},
        {"from": "C", "to": "A", "amount": 30.0},
    ]
    assert len(client.get("/api/expenses").get_json()["expenses"]) == 1


def test_balance_preview_rejects_unknown_mode(client):
    r = client.get("/api/balances?mode=pairwise")
    assert r.status_code == 400


def test_settle_requires_active_expenses(client):
    r = client.post("/api/settle", json={})
    assert r.status_code == 409
    assert r.get_json()["error"]["code"] == "no_active_expenses"


def test_settle_archives_expenses(client):
    add_expense(client, split_method="MANUALLY", manual_splits={"A": 30, "B": 60}, participants=["A", "B"])

    r = client.post("/api/settle", json={"mode": "hub"})
    assert r.status_code == 201
    body = r.get_json()
    assert body["already_settled"] is False
    assert body["bill"]["main_creditor"] == "A"
    assert body["bill"]["transactions"] == [{"from": "B", "to": "A", "amount": 60.0}]
    assert len(body["bill"]["expenses"]) == 1

    assert client.get("/api/expenses").get_json()["expenses"] == []

    bills = client.get("/api/bills").get_json()
    assert bills["active_bill_id"] == body["bill"]["id"]
    assert [b["id"] for b in bills["bills"]] == [body["bill"]["id"]]


def test_settle_self_paid_expense_reports_already_settled(client):
    add_expense(client, participants=["A"])

    body = client.post("/api/settle").get_json()
    assert body["already_settled"] is True
    assert body["bill"]["transactions"] == []
    assert body["bill"]["main_creditor"] is None


def test_bill_detail(client):
    add_expense(client)
    bill_id = client.post("/api/settle", json={}).get_json()["bill"]["id"]

    r = client.get(f"/api/bills/{bill_id}")
    assert r.status_code == 200
    body = r.get_json()
    assert [s["member"] for s in body["summary"]] == ["A", "B", "C"]
    assert body["summary"][0] == {"member": "A", "paid": 90.0, "owes": 30.0, "net": 60.0}

    by_member = {i["member"]: i for i in body["instructions"]}
    assert by_member["B"]["to_pay"] == [{"from": "B", "to": "A", "amount": 30.0}]
    assert by_member["B"]["message"].startswith("B pays 30 ₫ to A")
    assert len(by_member["A"]["to_receive"]) == 2


def test_bill_detail_unknown_id(client):
    r = client.get("/api/bills/settled-0")
    assert r.status_code == 404


def test_set_active_bill(client):
    add_expense(client)
    bill_id = client.post("/api/settle").get_json()["bill"]["id"]

    r = client.put("/api/bills/active", json={"bill_id": None})
    assert r.status_code == 200
    assert client.get("/api/bills").get_json()["active_bill_id"] is None

    r = client.put("/api/bills/active", json={"bill_id": bill_id})
    assert r.get_json() == {"active_bill_id": bill_id}

    r = client.put("/api/bills/active", json={"bill_id": "settled-0"})
    assert r.status_code == 404


def test_clear_data(client):
    client.post("/api/members", json={"name": "Dana"})
    add_expense(client)
    client.post("/api/settle")
    add_expense(client)

    r = client.delete("/api/data")
    assert r.status_code == 200
    assert client.get("/api/members").get_json()["members"] == ["A", "B", "C"]
    assert client.get("/api/expenses").get_json()["expenses"] == []
    assert client.get("/api/bills").get_json()["bills"] == []


def test_settle_survives_persistence_failure(app, client):
    class BrokenRepo:
        enabled = True

        def save_records(self, key, records):
            raise RuntimeError("database is down")

    store = app.extensions[STORE_EXTENSION]
    store.subscribe(PersistenceSubscriber(BrokenRepo()))

    add_expense(client)
    r = client.post("/api/settle", json={})

    assert r.status_code == 201
    assert store.state.expenses == ()
    assert len(store.state.settled_bills) == 1


def test_settle_uses_configured_mode():
    app = create_app(
        {
            "TESTING": True,
            "DATABASE_URL": "",
            "SETTLEMENT_MODE": "minimal",
            "DEFAULT_MEMBERS": ("A", "B", "C", "D"),
        }
    )
    client = app.test_client()
    add_expense(client, payer="A", participants=["C"], amount=100)
    add_expense(client, payer="B", participants=["D"], amount=50)

    body = client.post("/api/settle", json={}).get_json()
    assert body["bill"]["transactions"] == [
        {"from": "C", "to": "A", "amount": 100.0},
        {"from": "D", "to": "B", "amount": 50.0},
    ]
