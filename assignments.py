"""
Activity assignment status.

Overdue is derived, not stored: a pending or in-progress assignment whose due
date has passed reports `not-completed`. `mark_overdue_assignments()` is the
separate batch job that writes that state back for querying; reads never
mutate.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pymongo.database import Database

from database import ASSIGNMENTS

logger = logging.getLogger(__name__)

OPEN_STATUSES = ("pending", "in-progress")


def is_overdue(assignment: Dict[str, Any], now: datetime) -> bool:
    due: Optional[datetime] = assignment.get("due_date")
    return (
        due is not None
        and assignment.get("completion_status", "pending") in OPEN_STATUSES
        and due < now
    )


def effective_status(assignment: Dict[str, Any], now: datetime) -> str:
    if is_overdue(assignment, now):
        return "not-completed"
    return assignment.get("completion_status", "pending")


def mark_overdue_assignments(db: Database, now: datetime) -> int:
    """Persist `not-completed` on overdue open assignments. Safe to re-run."""
    result = db[ASSIGNMENTS].update_many(
        {
            "is_active": True,
            "completion_status": {"$in": list(OPEN_STATUSES)},
            "due_date": {"$ne": None, "$lt": now},
        },
        {"$set": {"completion_status": "not-completed", "updated_at": now}},
    )
    if result.modified_count:
        logger.info("Marked %s overdue assignments as not-completed", result.modified_count)
    return result.modified_count
