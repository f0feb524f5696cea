import itertools
import pytest
from unittest.mock import AsyncMock, MagicMock
from fastapi.testclient import TestClient
from app.main import app
from app.services.normalizer import normalize_entries

SUPPLIER_ID = "65f1a0c2e4b0a1b2c3d4e5f1"
OTHER_SUPPLIER_ID = "65f1a0c2e4b0a1b2c3d4e5f2"
ORDER_ID = "65f1a0c2e4b0a1b2c3d4e601"
OTHER_ORDER_ID = "65f1a0c2e4b0a1b2c3d4e602"


@pytest.fixture
def ids():
    """Well-known ids shared across ledger tests."""
    return {
        "supplier": SUPPLIER_ID,
        "other_supplier": OTHER_SUPPLIER_ID,
        "order": ORDER_ID,
        "other_order": OTHER_ORDER_ID,
    }


@pytest.fixture
def make_entry():
    """Factory for raw ledger entries shaped like the store returns them."""
    counter = itertools.count(1)

    def _make(transaction_type="purchase", date="2024-03-01T10:00:00Z", **fields):
        entry = {
            "_id": f"entry-{next(counter)}",
            "type": "supplier",
            "transactionType": transaction_type,
            "entityId": SUPPLIER_ID,
            "referenceId": ORDER_ID,
            "referenceModel": "DispatchOrder",
            "debit": 0,
            "credit": 0,
            "date": date,
        }
        entry.update(fields)
        return entry

    return _make


@pytest.fixture
def purchase_and_payments(make_entry):
    """Purchase of 500 settled by 200 cash then 300 bank."""
    return [
        make_entry("purchase", "2024-03-01T10:00:00Z", debit=500),
        make_entry("payment", "2024-03-05T10:00:00Z", credit=200, paymentMethod="cash"),
        make_entry("payment", "2024-03-09T10:00:00Z", credit=300, paymentMethod="bank"),
    ]


@pytest.fixture
def normalized(purchase_and_payments):
    return normalize_entries(purchase_and_payments)


@pytest.fixture
def mock_db():
    """Motor database double: db[...] and attribute access share one collection."""
    collection = MagicMock()
    collection.insert_one = AsyncMock()
    collection.create_index = AsyncMock()

    db = MagicMock()
    db.__getitem__.return_value = collection
    db.ledgers = collection
    return db


@pytest.fixture
def client():
    """Test client without lifespan events, so no MongoDB connection is made."""
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()
