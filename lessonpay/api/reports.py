# lessonpay/api/reports.py
from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from lessonpay.core.deps import get_lesson_controller
from lessonpay.engine.lessons import LessonPaymentController
from lessonpay.schemas.api_models import FailedPaymentRecord, RevenueTotals

router = APIRouter(tags=["Reports"])


@router.get("/calculate-lesson-total", response_model=RevenueTotals)
async def calculate_lesson_total(
    window_hours: Optional[int] = Query(None, ge=1, description="Trailing window; default REPORT_WINDOW_HOURS (36)"),
    controller: LessonPaymentController = Depends(get_lesson_controller),
):
    """
    Gross, fee and net totals (minor units) of succeeded charges in the window.
    """
    return await controller.revenue_window(window_hours)


@router.get("/find-customers-with-failed-payments", response_model=List[FailedPaymentRecord])
async def find_customers_with_failed_payments(
    window_hours: Optional[int] = Query(None, ge=1),
    controller: LessonPaymentController = Depends(get_lesson_controller),
):
    """
    Customers whose latest payment attempt failed and who still hold the
    card it failed on.
    """
    return await controller.customers_with_failed_payments(window_hours)
