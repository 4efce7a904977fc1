# lessonpay/core/deps.py
from functools import lru_cache
from fastapi import Depends
from lessonpay.core.settings import settings
from lessonpay.engine.customers import CustomerManager
from lessonpay.engine.lessons import LessonPaymentController
from lessonpay.payments.stripe_provider import StripePaymentProvider
from lessonpay.payments.fake_provider import FakeStripeProvider
from lessonpay.payments.types import PaymentProvider


@lru_cache(maxsize=1)
def _payments_singleton():
    if settings.PAYMENTS_BACKEND == "fake" or not settings.STRIPE_SECRET_KEY:
        return FakeStripeProvider()
    return StripePaymentProvider(
        api_key=settings.STRIPE_SECRET_KEY,
        max_network_retries=settings.STRIPE_MAX_NETWORK_RETRIES,
    )


def get_payment_provider():
    # FastAPI will call this each request, but we return the cached singleton
    return _payments_singleton()


def get_customer_manager(provider: PaymentProvider = Depends(get_payment_provider)) -> CustomerManager:
    return CustomerManager(provider)


def get_lesson_controller(provider: PaymentProvider = Depends(get_payment_provider)) -> LessonPaymentController:
    return LessonPaymentController(provider)
