import pytest
from fastapi.testclient import TestClient

from lessonpay.main import app as fastapi_app
from lessonpay.core.deps import get_payment_provider
from lessonpay.payments.fake_provider import FakeStripeProvider


@pytest.fixture
def provider():
    # fresh in-memory processor per test
    return FakeStripeProvider()


@pytest.fixture
def client(provider):
    fastapi_app.dependency_overrides[get_payment_provider] = lambda: provider
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def create_customer(client):
    def _create(email="ada@example.com", name="Ada Lovelace"):
        resp = client.post("/create-client", json={"name": name, "email": email})
        assert resp.status_code == 200, resp.text
        return resp.json()["customerId"]

    return _create


@pytest.fixture
def customer_with_card(client, provider, create_customer):
    """A customer holding one default visa ending 4242."""
    customer_id = create_customer()
    pm_id = provider.seed_payment_method(brand="visa", last4="4242")
    resp = client.post("/lessons", json={"id": customer_id, "paymentMethodId": pm_id})
    assert resp.status_code == 200, resp.text
    return customer_id
