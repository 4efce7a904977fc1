def _attached(provider, customer_id):
    return sorted(pm["id"] for pm in provider.payment_methods.values() if pm["customer"] == customer_id)


def _default(provider, customer_id):
    return provider.customers[customer_id]["invoice_settings"]["default_payment_method"]


# --- create-client ---

def test_create_client_returns_customer_id(client, provider):
    resp = client.post(
        "/create-client",
        json={"name": "Ada Lovelace", "email": "ada@example.com", "firstLesson": "2024-02-25"},
    )

    assert resp.status_code == 200
    customer_id = resp.json()["customerId"]
    assert customer_id.startswith("cus_")
    assert provider.customers[customer_id]["metadata"]["first_lesson"] == "2024-02-25"


def test_create_client_duplicate_email_conflict(client, provider, create_customer):
    create_customer(email="ada@example.com")

    resp = client.post("/create-client", json={"name": "Someone Else", "email": "ada@example.com"})

    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "email_exists"
    assert len(provider.customers) == 1


def test_create_client_requires_email(client):
    resp = client.post("/create-client", json={"name": "No Email"})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"


# --- setup intents ---

def test_create_setup_intent_returns_client_secret(client):
    resp = client.get("/create-setup-intent")

    assert resp.status_code == 200
    assert "_secret_" in resp.json()["clientSecret"]


def test_create_setup_intent_for_unknown_customer(client):
    resp = client.get("/create-setup-intent", params={"customerId": "cus_missing"})

    assert resp.status_code == 404


# --- attach (POST /lessons) ---

def test_attach_returns_last_four(client, provider, create_customer):
    customer_id = create_customer()
    pm_id = provider.seed_payment_method(brand="mastercard", last4="4444", exp_month=4, exp_year=2031)

    resp = client.post("/lessons", json={"id": customer_id, "paymentMethodId": pm_id})

    assert resp.status_code == 200
    assert resp.json() == {
        "paymentMethodId": pm_id,
        "lastFour": "4444",
        "brand": "mastercard",
        "expMonth": 4,
        "expYear": 2031,
    }
    assert _default(provider, customer_id) == pm_id


def test_attach_accepts_test_tokens(client, create_customer):
    customer_id = create_customer()

    resp = client.post("/lessons", json={"customer_id": customer_id, "payment_method_id": "pm_card_visa"})

    assert resp.status_code == 200
    assert resp.json()["lastFour"] == "4242"


def test_attach_replaces_every_existing_method(client, provider, create_customer):
    customer_id = create_customer()
    old_a = provider.seed_payment_method(last4="1111", customer_id=customer_id)
    old_b = provider.seed_payment_method(last4="2222", customer_id=customer_id)
    new = provider.seed_payment_method(last4="3333")

    resp = client.post("/lessons", json={"id": customer_id, "paymentMethodId": new})

    assert resp.status_code == 200
    assert _attached(provider, customer_id) == [new]
    assert provider.payment_methods[old_a]["customer"] is None
    assert provider.payment_methods[old_b]["customer"] is None
    assert _default(provider, customer_id) == new


def test_attach_unknown_customer_not_found(client, provider):
    pm_id = provider.seed_payment_method()

    resp = client.post("/lessons", json={"id": "cus_missing", "paymentMethodId": pm_id})

    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "resource_missing"
    assert provider.payment_methods[pm_id]["customer"] is None


def test_attach_detach_failures_are_best_effort(client, provider, create_customer):
    customer_id = create_customer()
    stuck = provider.seed_payment_method(last4="1111", customer_id=customer_id)
    loose = provider.seed_payment_method(last4="2222", customer_id=customer_id)
    provider.fail_detach.add(stuck)
    new = provider.seed_payment_method(last4="3333")

    resp = client.post("/lessons", json={"id": customer_id, "paymentMethodId": new})

    assert resp.status_code == 200
    # the failing detach does not stop the others or the attach
    assert provider.payment_methods[loose]["customer"] is None
    assert _attached(provider, customer_id) == sorted([stuck, new])
    assert _default(provider, customer_id) == new


def test_attach_failure_restores_previous_default(client, provider, customer_with_card):
    previous = _default(provider, customer_with_card)
    rejected = provider.seed_payment_method(last4="0341")
    provider.fail_attach.add(rejected)

    resp = client.post("/lessons", json={"id": customer_with_card, "paymentMethodId": rejected})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "card_declined"
    assert _attached(provider, customer_with_card) == [previous]
    assert _default(provider, customer_with_card) == previous


def test_replaced_card_cannot_be_attached_again(client, provider, customer_with_card):
    previous = _default(provider, customer_with_card)
    new = provider.seed_payment_method(last4="4444")
    client.post("/lessons", json={"id": customer_with_card, "paymentMethodId": new})

    resp = client.post("/lessons", json={"id": customer_with_card, "paymentMethodId": previous})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "payment_method_unexpected_state"
    assert _attached(provider, customer_with_card) == [new]
    assert _default(provider, customer_with_card) == new


# --- account-update ---

def test_account_update_returns_persisted_fields(client, create_customer):
    customer_id = create_customer(email="ada@example.com", name="Ada")

    resp = client.post(f"/account-update/{customer_id}", json={"name": "Ada King", "email": "ada.king@example.com"})

    assert resp.status_code == 200
    assert resp.json() == {"updatedName": "Ada King", "updatedEmail": "ada.king@example.com"}


def test_account_update_keeping_own_email_is_allowed(client, create_customer):
    customer_id = create_customer(email="ada@example.com")

    resp = client.post(f"/account-update/{customer_id}", json={"name": "Ada K", "email": "ada@example.com"})

    assert resp.status_code == 200
    assert resp.json()["updatedEmail"] == "ada@example.com"


def test_account_update_email_of_other_customer_conflicts(client, provider, create_customer):
    create_customer(email="taken@example.com", name="First")
    second = create_customer(email="second@example.com", name="Second")

    resp = client.post(f"/account-update/{second}", json={"name": "Second", "email": "taken@example.com"})

    assert resp.status_code == 409
    assert provider.customers[second]["email"] == "second@example.com"


def test_account_update_unknown_customer(client):
    resp = client.post("/account-update/cus_missing", json={"name": "Nobody", "email": "nobody@example.com"})

    assert resp.status_code == 404


def test_account_update_requires_a_field(client, create_customer):
    customer_id = create_customer()

    resp = client.post(f"/account-update/{customer_id}", json={})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"


# --- payment-method summary ---

def test_payment_method_summary(client, customer_with_card):
    resp = client.get(f"/payment-method/{customer_with_card}")

    assert resp.status_code == 200
    body = resp.json()
    assert body["customer"] == {"id": customer_with_card, "email": "ada@example.com", "name": "Ada Lovelace"}
    assert body["card"]["last4"] == "4242"
    assert body["card"]["brand"] == "visa"
    assert body["card"]["exp_month"] == 12


def test_payment_method_summary_without_card(client, create_customer):
    customer_id = create_customer()

    resp = client.get(f"/payment-method/{customer_id}")

    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "no_payment_method"


# --- delete-account ---

def test_delete_account_refused_while_payments_uncaptured(client, provider, customer_with_card):
    first = client.post("/schedule-lesson", json={"customer_id": customer_with_card, "amount": 4500}).json()
    second = client.post("/schedule-lesson", json={"customer_id": customer_with_card, "amount": 3000}).json()

    resp = client.post(f"/delete-account/{customer_with_card}")

    assert resp.status_code == 200
    assert sorted(resp.json()["uncaptured_payments"]) == sorted([first["payment"]["id"], second["payment"]["id"]])
    assert "deleted" not in resp.json()
    assert customer_with_card in provider.customers


def test_delete_account_after_capture(client, provider, customer_with_card):
    payment = client.post("/schedule-lesson", json={"customer_id": customer_with_card, "amount": 4500}).json()
    client.post("/complete-lesson-payment", json={"payment_intent_id": payment["payment"]["id"]})

    resp = client.post(f"/delete-account/{customer_with_card}")

    assert resp.status_code == 200
    assert resp.json() == {"deleted": True}
    assert customer_with_card not in provider.customers


def test_delete_unknown_account(client):
    resp = client.post("/delete-account/cus_missing")

    assert resp.status_code == 404
