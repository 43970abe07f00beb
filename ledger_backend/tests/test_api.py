import pytest
from sqlmodel import Session, select

from ledger_backend.models import Transaction


def _create_customer(client, **overrides):
    payload = {"name": "Ravi Traders", "phone": "9876543210", "address": "Market Road"}
    payload.update(overrides)
    response = client.post("/api/customers", json=payload)
    assert response.status_code == 201
    return response.json()["customer"]


def _add_txn(client, customer_id, txn_type, amount, **extra):
    payload = {"customerId": customer_id, "type": txn_type, "amount": amount}
    payload.update(extra)
    return client.post("/api/transactions", json=payload)


def test_create_customer_envelope(client):
    response = client.post("/api/customers", json={"name": "  Meena  ", "phone": "+91 98765 43210"})
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    customer = body["customer"]
    assert customer["name"] == "Meena"
    assert customer["address"] is None
    assert customer["currentBalance"] == 0
    assert customer["balanceLabel"] == "Clear ₹0.00"
    assert "createdAt" in customer and "updatedAt" in customer


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"name": ""},
        {"name": "   "},
        {"name": "Bad phone", "phone": "12345"},
        {"name": "Bad phone", "phone": "call me"},
    ],
)
def test_create_customer_validation(client, payload):
    response = client.post("/api/customers", json=payload)
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Invalid data"
    assert body["errors"]


def test_customers_sorted_by_name_with_balances(client):
    zed = _create_customer(client, name="zed")
    _create_customer(client, name="Amit")
    _create_customer(client, name="bharat")
    _add_txn(client, zed["id"], "payment", 50)

    response = client.get("/api/customers")
    assert response.status_code == 200
    customers = response.json()["customers"]
    assert [c["name"] for c in customers] == ["Amit", "bharat", "zed"]
    assert customers[-1]["currentBalance"] == pytest.approx(-50)
    assert customers[-1]["balanceStatus"] == "credit"


def test_get_customer_not_found(client):
    response = client.get("/api/customers/12345")
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Customer not found"}


def test_update_customer_full_replace(client):
    customer = _create_customer(client)
    response = client.put(f"/api/customers/{customer['id']}", json={"name": "Ravi & Sons"})
    assert response.status_code == 200
    updated = response.json()["customer"]
    assert updated["name"] == "Ravi & Sons"
    assert updated["phone"] is None
    assert updated["address"] is None

    assert client.put("/api/customers/999", json={"name": "Nobody"}).status_code == 404
    assert client.put(f"/api/customers/{customer['id']}", json={"name": ""}).status_code == 400


def test_delete_customer(client):
    customer = _create_customer(client)
    response = client.delete(f"/api/customers/{customer['id']}")
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert client.get(f"/api/customers/{customer['id']}").status_code == 404
    assert client.delete(f"/api/customers/{customer['id']}").status_code == 404


def test_scenario_balance_and_label(client):
    customer = _create_customer(client)
    _add_txn(client, customer["id"], "debt", 500)
    _add_txn(client, customer["id"], "payment", 200)
    response = _add_txn(client, customer["id"], "debt", 100, description="sugar")

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["currentBalance"] == pytest.approx(400)
    assert body["customerId"] == customer["id"]
    assert body["type"] == "debt"
    assert body["description"] == "sugar"

    detail = client.get(f"/api/customers/{customer['id']}").json()["customer"]
    assert detail["currentBalance"] == pytest.approx(400)
    assert detail["balanceLabel"] == "Owes ₹400.00"


def test_transaction_for_missing_customer(client):
    response = _add_txn(client, 404, "debt", 10)
    assert response.status_code == 404
    assert response.json()["message"] == "Customer not found"
    with Session(client._engine) as session:
        assert session.exec(select(Transaction)).all() == []


@pytest.mark.parametrize("amount", [0, -10, 1e26, 0.004])
def test_transaction_with_invalid_amount(client, amount):
    customer = _create_customer(client)
    _add_txn(client, customer["id"], "debt", 70)

    response = _add_txn(client, customer["id"], "debt", amount)

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert any(error["field"] == "amount" for error in body["errors"])
    txns = client.get(f"/api/transactions/customer/{customer['id']}").json()["txns"]
    assert len(txns) == 1
    detail = client.get(f"/api/customers/{customer['id']}").json()["customer"]
    assert detail["currentBalance"] == pytest.approx(70)


def test_transaction_with_unknown_type(client):
    customer = _create_customer(client)
    response = _add_txn(client, customer["id"], "loan", 10)
    assert response.status_code == 400
    assert any(error["field"] == "type" for error in response.json()["errors"])


def test_list_transactions_most_recent_first(client):
    customer = _create_customer(client)
    for day in ("2024-01-10", "2024-03-05", "2024-02-20"):
        assert _add_txn(client, customer["id"], "debt", 1, date=day).status_code == 201

    response = client.get(f"/api/transactions/customer/{customer['id']}")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert [txn["date"][:10] for txn in body["txns"]] == ["2024-03-05", "2024-02-20", "2024-01-10"]


def test_list_transactions_for_unknown_customer_is_empty(client):
    response = client.get("/api/transactions/customer/777")
    assert response.status_code == 200
    assert response.json() == {"success": True, "txns": []}


def test_date_defaults_to_creation_time(client):
    customer = _create_customer(client)
    body = _add_txn(client, customer["id"], "debt", 5).json()
    assert body["date"] == body["createdAt"]


def test_update_transaction_recomputes_balance(client):
    customer = _create_customer(client)
    debt = _add_txn(client, customer["id"], "debt", 500, description="flour", date="2024-04-01").json()
    _add_txn(client, customer["id"], "payment", 100)

    response = client.put(
        f"/api/transactions/{debt['id']}",
        json={"type": "debt", "amount": 250},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["amount"] == pytest.approx(250)
    assert body["currentBalance"] == pytest.approx(150)
    assert body["description"] is None
    assert body["date"] == body["createdAt"]


def test_update_transaction_can_flip_type(client):
    customer = _create_customer(client)
    txn = _add_txn(client, customer["id"], "debt", 80).json()
    response = client.put(f"/api/transactions/{txn['id']}", json={"type": "payment", "amount": 80})
    assert response.json()["currentBalance"] == pytest.approx(-80)


def test_update_transaction_errors(client):
    customer = _create_customer(client)
    txn = _add_txn(client, customer["id"], "debt", 80).json()
    assert client.put("/api/transactions/999", json={"type": "debt", "amount": 5}).status_code == 404
    assert client.put(f"/api/transactions/{txn['id']}", json={"type": "debt", "amount": 0}).status_code == 400
    assert client.put(f"/api/transactions/{txn['id']}", json={"amount": 5}).status_code == 400


def test_delete_only_transaction_settles(client):
    customer = _create_customer(client)
    txn = _add_txn(client, customer["id"], "debt", 320).json()

    response = client.delete(f"/api/transactions/{txn['id']}")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["currentBalance"] == 0
    assert client.delete(f"/api/transactions/{txn['id']}").status_code == 404


def test_deleting_customer_leaves_orphaned_transactions(client):
    customer = _create_customer(client)
    txn = _add_txn(client, customer["id"], "debt", 45).json()
    client.delete(f"/api/customers/{customer['id']}")

    txns = client.get(f"/api/transactions/customer/{customer['id']}").json()["txns"]
    assert [row["id"] for row in txns] == [txn["id"]]


def test_malformed_ids_are_validation_errors(client):
    response = client.get("/api/customers/not-a-number")
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_unknown_route_uses_envelope(client):
    response = client.get("/api/nothing-here")
    assert response.status_code == 404
    assert response.json()["success"] is False
