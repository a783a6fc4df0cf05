"""
Review workflow for analysis results.

    draft --> completed --> reviewed --> approved
      |                         +--> rejected
      +-----> error

``transition`` is the only place the allowed moves are defined. Writes go
through Database.update_analysis with the expected current status, so two
reviewers racing on the same record cannot both win.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

from analysis.errors import InvalidTransition
from api.config_models import AnalysisTypeEnum
from llm.response_parser import validate_content
from storage.database import Database, utc_now

logger = logging.getLogger(__name__)


class ReviewStatus(str, Enum):
    DRAFT = "draft"
    COMPLETED = "completed"
    REVIEWED = "reviewed"
    APPROVED = "approved"
    REJECTED = "rejected"
    ERROR = "error"


ALLOWED_TRANSITIONS: dict[ReviewStatus, frozenset[ReviewStatus]] = {
    ReviewStatus.DRAFT: frozenset({ReviewStatus.COMPLETED, ReviewStatus.ERROR}),
    ReviewStatus.COMPLETED: frozenset({ReviewStatus.REVIEWED}),
    ReviewStatus.REVIEWED: frozenset({ReviewStatus.APPROVED, ReviewStatus.REJECTED}),
    ReviewStatus.APPROVED: frozenset(),
    ReviewStatus.REJECTED: frozenset(),
    ReviewStatus.ERROR: frozenset(),
}

# States whose result content may still be edited by the professional.
EDITABLE_STATES = frozenset({ReviewStatus.COMPLETED, ReviewStatus.REVIEWED})
# States where review notes may be written.
NOTE_STATES = frozenset({
    ReviewStatus.COMPLETED, ReviewStatus.REVIEWED,
    ReviewStatus.APPROVED, ReviewStatus.REJECTED,
})


def transition(
    current: ReviewStatus | str,
    target: ReviewStatus | str,
    analysis_id: Optional[str] = None,
) -> ReviewStatus:
    """Return ``target`` if the move is allowed, else raise InvalidTransition."""
    try:
        cur = ReviewStatus(current)
        tgt = ReviewStatus(target)
    except ValueError:
        raise InvalidTransition(str(current), str(target), analysis_id=analysis_id)
    if tgt not in ALLOWED_TRANSITIONS[cur]:
        raise InvalidTransition(cur.value, tgt.value, analysis_id=analysis_id)
    return tgt


class AnalysisNotFound(LookupError):
    def __init__(self, analysis_id: str):
        super().__init__(f"Analysis {analysis_id} not found")
        self.analysis_id = analysis_id


def _load(store: Database, company_id: str, analysis_id: str) -> dict[str, Any]:
    record = store.get_analysis(company_id, analysis_id)
    if record is None:
        raise AnalysisNotFound(analysis_id)
    return record


def _write(
    store: Database,
    company_id: str,
    analysis_id: str,
    current: ReviewStatus,
    target: ReviewStatus,
    fields: dict[str, Any],
) -> dict[str, Any]:
    ok = store.update_analysis(
        company_id, analysis_id, fields, expected_status=current.value,
    )
    if not ok:
        latest = store.get_analysis(company_id, analysis_id)
        now_status = latest["status"] if latest else "missing"
        raise InvalidTransition(
            now_status,
            target.value,
            analysis_id=analysis_id,
            message=(
                f"Analysis changed concurrently (expected '{current.value}', "
                f"found '{now_status}')"
            ),
        )
    return _load(store, company_id, analysis_id)


def annotate(
    store: Database,
    company_id: str,
    analysis_id: str,
    user_id: str,
    notes: str,
) -> dict[str, Any]:
    """Record review notes.

    A completed analysis moves to reviewed. Already reviewed, approved or
    rejected analyses only get their notes replaced.
    """
    record = _load(store, company_id, analysis_id)
    current = ReviewStatus(record["status"])
    if current not in NOTE_STATES:
        raise InvalidTransition(current.value, ReviewStatus.REVIEWED.value, analysis_id=analysis_id)

    fields: dict[str, Any] = {"review_notes": notes}
    target = current
    if current == ReviewStatus.COMPLETED:
        target = transition(current, ReviewStatus.REVIEWED, analysis_id)
        fields.update(status=target.value, reviewed_by=user_id, reviewed_at=utc_now())

    updated = _write(store, company_id, analysis_id, current, target, fields)
    logger.info("Analysis %s annotated by %s (%s)", analysis_id, user_id, target.value)
    return updated


def decide(
    store: Database,
    company_id: str,
    analysis_id: str,
    user_id: str,
    approved: bool,
    notes: Optional[str] = None,
) -> dict[str, Any]:
    """Approve or reject a reviewed analysis."""
    record = _load(store, company_id, analysis_id)
    current = ReviewStatus(record["status"])
    target = transition(
        current,
        ReviewStatus.APPROVED if approved else ReviewStatus.REJECTED,
        analysis_id,
    )
    fields: dict[str, Any] = {
        "status": target.value,
        "decided_by": user_id,
        "decided_at": utc_now(),
    }
    if notes is not None:
        fields["review_notes"] = notes

    updated = _write(store, company_id, analysis_id, current, target, fields)
    logger.info("Analysis %s %s by %s", analysis_id, target.value, user_id)
    return updated


def edit_content(
    store: Database,
    company_id: str,
    analysis_id: str,
    analysis: dict[str, Any],
) -> dict[str, Any]:
    """Replace the structured result. Only completed/reviewed analyses are editable.

    The new content is validated against the stage schema first; a
    MalformedResponse leaves the stored result untouched.
    """
    record = _load(store, company_id, analysis_id)
    current = ReviewStatus(record["status"])
    if current not in EDITABLE_STATES:
        raise InvalidTransition(
            current.value,
            current.value,
            analysis_id=analysis_id,
            message=f"Analysis in status '{current.value}' is read-only",
        )
    validated = validate_content(analysis, AnalysisTypeEnum(record["analysis_type"]))
    return _write(store, company_id, analysis_id, current, current, {"analysis": validated})
