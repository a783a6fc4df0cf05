"""Delivery of approved treatment plans to the patient."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

from analysis.errors import InvalidTransition
from analysis.review import AnalysisNotFound, ReviewStatus
from api.config_models import AnalysisTypeEnum
from storage.database import Database, utc_now

logger = logging.getLogger(__name__)


class DeliveryMethod(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    PORTAL = "portal"


class NotDeliverable(ValueError):
    """Analysis is not a treatment plan."""


def deliver_plan(
    store: Database,
    company_id: str,
    analysis_id: str,
    user_id: str,
    method: DeliveryMethod | str,
    message: Optional[str] = None,
) -> dict[str, Any]:
    """Record delivery of an approved treatment plan.

    Sending itself is handled outside this service; the analysis keeps a
    delivery record (method, message, who and when).
    """
    method = DeliveryMethod(method)
    record = store.get_analysis(company_id, analysis_id)
    if record is None:
        raise AnalysisNotFound(analysis_id)
    if record["analysis_type"] != AnalysisTypeEnum.TREATMENT_PLAN.value:
        raise NotDeliverable(
            f"Only treatment plans can be delivered (got {record['analysis_type']})"
        )
    if record["status"] != ReviewStatus.APPROVED.value:
        raise InvalidTransition(
            record["status"],
            "delivered",
            analysis_id=analysis_id,
            message="Only approved treatment plans can be delivered",
        )

    delivery = {
        "method": method.value,
        "message": message,
        "deliveredBy": user_id,
        "deliveredAt": utc_now(),
    }
    ok = store.update_analysis(
        company_id, analysis_id, {"delivery": delivery},
        expected_status=ReviewStatus.APPROVED.value,
    )
    if not ok:
        raise InvalidTransition(
            "unknown", "delivered", analysis_id=analysis_id,
            message="Analysis changed concurrently; not delivered",
        )
    logger.info("Treatment plan %s delivered via %s by %s", analysis_id, method.value, user_id)
    return store.get_analysis(company_id, analysis_id)
