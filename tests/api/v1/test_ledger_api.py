from unittest.mock import AsyncMock, MagicMock
from datetime import datetime, timezone
from app.api.v1.endpoints.ledger import get_ledger_repository
from app.main import app
from app.utils.ledger_validation import UpstreamError

SUPPLIER = "65f1a0c2e4b0a1b2c3d4e5f1"
OTHER = "65f1a0c2e4b0a1b2c3d4e5f2"
ORDER = "65f1a0c2e4b0a1b2c3d4e601"


def _entry(entry_id, tx_type, date, entity=SUPPLIER, debit=0, credit=0, **fields):
    doc = {
        "_id": entry_id,
        "type": "supplier",
        "transactionType": tx_type,
        "entityId": entity,
        "referenceId": ORDER,
        "referenceModel": "DispatchOrder",
        "debit": debit,
        "credit": credit,
        "date": date,
    }
    doc.update(fields)
    return doc


LEDGER = [
    # Newest first, the way the store returns them
    _entry("e3", "payment", "2024-03-09T10:00:00Z", credit=300, paymentMethod="bank"),
    _entry("e2", "payment", "2024-03-05T10:00:00Z", credit=200, paymentMethod="cash"),
    _entry("e1", "purchase", "2024-03-01T10:00:00Z", debit=500,
           entityId={"_id": SUPPLIER, "name": "Acme Textiles"},
           referenceId={"_id": ORDER, "orderNumber": "DO-1001"}),
]


def _mock_repository(entries=None):
    repo = MagicMock()
    repo.fetch_entries = AsyncMock(return_value=entries if entries is not None else LEDGER)

    def _echo(entry):
        doc = entry.model_dump(by_alias=True, exclude_none=True, mode="json")
        doc["_id"] = f"new-{repo.create_entry.await_count}"
        doc["createdAt"] = datetime(2024, 3, 20, tzinfo=timezone.utc).isoformat()
        return doc

    repo.create_entry = AsyncMock(side_effect=_echo)
    return repo


def test_get_counterparty_ledger(client):
    repo = _mock_repository()
    app.dependency_overrides[get_ledger_repository] = lambda: repo

    try:
        response = client.get(f"/api/v1/ledger/supplier/{SUPPLIER}")

        assert response.status_code == 200
        data = response.json()
        assert data["currentBalance"] == 0
        assert [e["id"] for e in data["entries"]] == ["e3", "e2", "e1"]
        assert [e["balance"] for e in data["entries"]] == [0, 300, 500]
        assert data["entries"][2]["counterpartyName"] == "Acme Textiles"
        assert data["entries"][2]["referenceLabel"] == "DO-1001"
        assert data["entries"][0]["bankPaid"] == 300
        repo.fetch_entries.assert_awaited_once_with(entity_id=SUPPLIER, ledger_type="supplier")
    finally:
        app.dependency_overrides.clear()


def test_get_all_ledgers_sums_independent_balances(client):
    entries = LEDGER + [
        _entry("e4", "purchase", "2024-03-02T10:00:00Z", entity=OTHER, debit=800),
    ]
    repo = _mock_repository(entries)
    app.dependency_overrides[get_ledger_repository] = lambda: repo

    try:
        response = client.get("/api/v1/ledger/supplier")

        assert response.status_code == 200
        data = response.json()
        assert data["totalBalance"] == 800
        assert data["counterpartyCount"] == 2
        other_rows = [e for e in data["entries"] if e["counterpartyId"] == OTHER]
        assert other_rows[0]["balance"] == 800
        repo.fetch_entries.assert_awaited_once_with(entity_id=None, ledger_type="supplier")
    finally:
        app.dependency_overrides.clear()


def test_unknown_ledger_type_is_rejected(client):
    app.dependency_overrides[get_ledger_repository] = lambda: _mock_repository()

    try:
        response = client.get("/api/v1/ledger/vendor")
        assert response.status_code == 422
    finally:
        app.dependency_overrides.clear()


def test_ledger_summary_with_filters(client):
    app.dependency_overrides[get_ledger_repository] = lambda: _mock_repository()

    try:
        response = client.get(
            f"/api/v1/ledger/supplier/{SUPPLIER}/summary",
            params={"method": "cash", "dateFrom": "2024-03-01", "dateTo": "2024-03-31"},
        )

        assert response.status_code == 200
        data = response.json()
        assert [r["id"] for r in data["records"]] == ["e2"]
        assert data["records"][0]["balance"] == 300
        assert data["totals"]["totalPaid"] == 200
        assert data["totals"]["cashPaid"] == 200
        assert data["totals"]["count"] == 1
    finally:
        app.dependency_overrides.clear()


def test_summary_for_all_counterparties(client):
    app.dependency_overrides[get_ledger_repository] = lambda: _mock_repository()

    try:
        response = client.get("/api/v1/ledger/supplier/summary", params={"ledgerFilter": "bank"})

        assert response.status_code == 200
        data = response.json()
        assert [r["id"] for r in data["records"]] == ["e3"]
        assert data["totals"]["bankPaid"] == 300
    finally:
        app.dependency_overrides.clear()


def test_summary_rejects_unknown_method(client):
    app.dependency_overrides[get_ledger_repository] = lambda: _mock_repository()

    try:
        response = client.get("/api/v1/ledger/supplier/summary", params={"method": "card"})

        assert response.status_code == 400
        assert response.json()["field"] == "method"
    finally:
        app.dependency_overrides.clear()


def test_create_payment_entry(client):
    repo = _mock_repository()
    app.dependency_overrides[get_ledger_repository] = lambda: repo

    try:
        response = client.post(
            "/api/v1/ledger/entry",
            json={
                "type": "supplier",
                "entityId": SUPPLIER,
                "amount": 200,
                "paymentMethod": "cash",
                "referenceId": ORDER,
                "referenceModel": "DispatchOrder",
                "remainingBalance": 500,
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["id"] == "new-1"
        assert data["transactionType"] == "payment"
        assert data["credit"] == 200
        assert data["paymentMethod"] == "cash"
        repo.create_entry.assert_awaited_once()
    finally:
        app.dependency_overrides.clear()


def test_create_payment_rejects_bad_amount(client):
    repo = _mock_repository()
    app.dependency_overrides[get_ledger_repository] = lambda: repo

    try:
        response = client.post(
            "/api/v1/ledger/entry",
            json={"entityId": SUPPLIER, "amount": 0, "paymentMethod": "cash"},
        )

        assert response.status_code == 400
        assert response.json()["field"] == "amount"
        repo.create_entry.assert_not_awaited()
    finally:
        app.dependency_overrides.clear()


def test_split_payment(client):
    repo = _mock_repository()
    app.dependency_overrides[get_ledger_repository] = lambda: repo

    try:
        response = client.post(
            f"/api/v1/ledger/supplier/{SUPPLIER}/split-payment",
            json={"cashAmount": 100, "bankAmount": 50},
        )

        assert response.status_code == 201
        data = response.json()
        assert [(d["paymentMethod"], d["credit"]) for d in data] == [("cash", 100), ("bank", 50)]
    finally:
        app.dependency_overrides.clear()


def test_distribute_payment_uses_outstanding_references(client):
    second_order = "65f1a0c2e4b0a1b2c3d4e602"
    entries = [
        _entry("e1", "purchase", "2024-03-01T10:00:00Z", debit=500),
        _entry("e2", "payment", "2024-03-05T10:00:00Z", credit=200, paymentMethod="cash"),
        _entry("e3", "purchase", "2024-03-06T10:00:00Z", debit=100, referenceId=second_order),
    ]
    repo = _mock_repository(entries)
    app.dependency_overrides[get_ledger_repository] = lambda: repo

    try:
        response = client.post(
            f"/api/v1/ledger/supplier/{SUPPLIER}/distribute-payment",
            json={"amount": 450, "paymentMethod": "bank"},
        )

        assert response.status_code == 201
        data = response.json()
        assert [(d.get("referenceId"), d["credit"]) for d in data] == [
            (ORDER, 300),
            (second_order, 100),
            (None, 50),
        ]
    finally:
        app.dependency_overrides.clear()


def test_debit_adjustment(client):
    repo = _mock_repository()
    app.dependency_overrides[get_ledger_repository] = lambda: repo

    try:
        response = client.post(
            f"/api/v1/ledger/logistics/{SUPPLIER}/debit-adjustment",
            json={"amount": 75.5, "description": "Detention charge"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["transactionType"] == "adjustment"
        assert data["debit"] == 75.5
        assert data["type"] == "logistics"
    finally:
        app.dependency_overrides.clear()


def test_store_failure_maps_to_bad_gateway(client):
    repo = _mock_repository()
    repo.fetch_entries = AsyncMock(side_effect=UpstreamError("fetch", "timed out"))
    app.dependency_overrides[get_ledger_repository] = lambda: repo

    try:
        response = client.get(f"/api/v1/ledger/supplier/{SUPPLIER}")

        assert response.status_code == 502
        assert response.json()["retryable"] is True
    finally:
        app.dependency_overrides.clear()


def test_summary_filters_by_entity_query_param(client):
    entries = LEDGER + [
        _entry("e4", "purchase", "2024-03-02T10:00:00Z", entity=OTHER, debit=800),
    ]
    app.dependency_overrides[get_ledger_repository] = lambda: _mock_repository(entries)

    try:
        response = client.get("/api/v1/ledger/supplier/summary", params={"entityId": OTHER})

        assert response.status_code == 200
        data = response.json()
        assert [r["id"] for r in data["records"]] == ["e4"]
        assert data["totals"]["totalDebit"] == 800
    finally:
        app.dependency_overrides.clear()


def test_get_balance(client):
    entries = LEDGER[1:]
    repo = _mock_repository(entries)
    app.dependency_overrides[get_ledger_repository] = lambda: repo

    try:
        response = client.get(f"/api/v1/ledger/balance/supplier/{SUPPLIER}")

        assert response.status_code == 200
        assert response.json() == {
            "entityId": SUPPLIER,
            "ledgerType": "supplier",
            "currentBalance": 300,
        }
        repo.fetch_entries.assert_awaited_once_with(entity_id=SUPPLIER, ledger_type="supplier")
    finally:
        app.dependency_overrides.clear()


def test_get_balance_without_entries(client):
    app.dependency_overrides[get_ledger_repository] = lambda: _mock_repository([])

    try:
        response = client.get(f"/api/v1/ledger/balance/buyer/{OTHER}")

        assert response.status_code == 200
        assert response.json()["currentBalance"] == 0
    finally:
        app.dependency_overrides.clear()


def test_non_numeric_amount_is_a_field_error(client):
    repo = _mock_repository()
    app.dependency_overrides[get_ledger_repository] = lambda: repo

    try:
        response = client.post(
            "/api/v1/ledger/entry",
            json={"entityId": SUPPLIER, "amount": "abc", "paymentMethod": "cash"},
        )
        assert response.status_code == 400
        assert response.json()["field"] == "amount"

        response = client.post(
            f"/api/v1/ledger/supplier/{SUPPLIER}/debit-adjustment",
            json={"amount": "ten"},
        )
        assert response.status_code == 400
        assert response.json()["field"] == "amount"
        repo.create_entry.assert_not_awaited()
    finally:
        app.dependency_overrides.clear()
