import asyncio

import pytest

from lessonpay.core.errors import DeclinedError, UpstreamError
from lessonpay.engine.customers import CustomerManager


@pytest.fixture
def payments(mocker):
    p = mocker.MagicMock()
    p.retrieve_customer = mocker.AsyncMock(
        return_value={"id": "cus_1", "invoice_settings": {"default_payment_method": "pm_old"}}
    )
    p.list_payment_methods = mocker.AsyncMock(return_value=[{"id": "pm_stale"}, {"id": "pm_old"}])
    p.detach_payment_method = mocker.AsyncMock(side_effect=lambda pid: {"id": pid})
    p.attach_payment_method = mocker.AsyncMock(return_value={"id": "pm_new", "card": {"last4": "4242"}})
    p.update_customer = mocker.AsyncMock(return_value={"id": "cus_1"})
    return p


def test_previous_default_detached_after_new_default_is_set(mocker, payments):
    calls = mocker.MagicMock()
    calls.attach_mock(payments.detach_payment_method, "detach")
    calls.attach_mock(payments.attach_payment_method, "attach")
    calls.attach_mock(payments.update_customer, "update")

    resp = asyncio.run(CustomerManager(payments).attach_payment_method("cus_1", "pm_new"))

    assert resp.paymentMethodId == "pm_new"
    assert calls.mock_calls == [
        mocker.call.detach("pm_stale"),
        mocker.call.attach("pm_new", customer_id="cus_1"),
        mocker.call.update("cus_1", default_payment_method="pm_new"),
        mocker.call.detach("pm_old"),
    ]


def test_attach_failure_keeps_previous_default_attached(mocker, payments):
    payments.attach_payment_method = mocker.AsyncMock(side_effect=DeclinedError("Your card was declined."))

    with pytest.raises(DeclinedError):
        asyncio.run(CustomerManager(payments).attach_payment_method("cus_1", "pm_new"))

    payments.detach_payment_method.assert_awaited_once_with("pm_stale")
    payments.update_customer.assert_awaited_once_with("cus_1", default_payment_method="pm_old")


def test_restore_failure_still_raises_attach_error(mocker, payments):
    payments.attach_payment_method = mocker.AsyncMock(side_effect=DeclinedError("Your card was declined."))
    payments.update_customer = mocker.AsyncMock(side_effect=UpstreamError("processor unavailable"))

    with pytest.raises(DeclinedError):
        asyncio.run(CustomerManager(payments).attach_payment_method("cus_1", "pm_new"))

    assert payments.attach_payment_method.await_count == 1


def test_reattaching_current_default_detaches_nothing_for_it(payments):
    payments.attach_payment_method.return_value = {"id": "pm_old", "card": {"last4": "4242"}}

    asyncio.run(CustomerManager(payments).attach_payment_method("cus_1", "pm_old"))

    payments.detach_payment_method.assert_awaited_once_with("pm_stale")


def test_unexpected_detach_error_propagates(mocker, payments):
    payments.detach_payment_method = mocker.AsyncMock(side_effect=RuntimeError("bug"))

    with pytest.raises(RuntimeError):
        asyncio.run(CustomerManager(payments).attach_payment_method("cus_1", "pm_new"))

    payments.attach_payment_method.assert_not_awaited()
