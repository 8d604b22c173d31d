# Make the sandbox modules ('main', 'repo') importable and point them at an in-memory DB
import os
import sys
from pathlib import Path

import pytest

os.environ.setdefault("SANDBOX_DATABASE_URL", "sqlite://")

SERVICE_DIR = Path(__file__).resolve().parent.parent
p = str(SERVICE_DIR)
if p not in sys.path:
    sys.path.insert(0, p)


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers(client):
    r = client.post(
        "/tokenized/checkout/token/grant",
        json={"app_key": "sandbox-app-key", "app_secret": "sandbox-app-secret"},
        headers={"username": "sandbox-user", "password": "sandbox-password"},
    )
    return {"Authorization": r.json()["id_token"], "X-APP-Key": "sandbox-app-key"}


@pytest.fixture
def created(client, auth_headers):
    r = client.post(
        "/tokenized/checkout/create",
        json={
            "mode": "0011",
            "payerReference": "TRK-T1-1-ABCDEF",
            "callbackURL": "http://merchant.test/api/payments/bkash/callback?trackId=T1&sig=abc",
            "amount": "500.00",
            "currency": "BDT",
            "intent": "sale",
            "merchantInvoiceNumber": "TRK-T1-1-ABCDEF",
        },
        headers=auth_headers,
    )
    return r.json()
