"""Per-child log statistics for the child detail page."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from dateutil.relativedelta import relativedelta

from .schemas import ChildLogStats, LogStatus, LogStatusBadge, LogWithDetails

LOG_STATUS_LABELS = {
    LogStatus.FOLLOW_UP_PENDING: "Follow-up pending",
    LogStatus.REVIEWED: "Reviewed",
    LogStatus.NOT_REVIEWED: "Not reviewed",
}


def _follow_up_pending(log: LogWithDetails) -> bool:
    return log.follow_up_required and log.follow_up_date is None


def child_log_stats(logs: List[LogWithDetails], now: Optional[datetime] = None) -> ChildLogStats:
    """Summarize a child's logs; ``logs`` is expected newest first."""

    now = now or datetime.now(timezone.utc)
    week_start = now - timedelta(weeks=1)
    month_start = now - relativedelta(months=1)
    return ChildLogStats(
        total_logs=len(logs),
        logs_this_week=len([log for log in logs if log.created_at > week_start]),
        logs_this_month=len([log for log in logs if log.created_at > month_start]),
        last_log_date=logs[0].created_at if logs else None,
        pending_reviews=len([log for log in logs if not log.reviewed_by]),
        follow_ups_required=len([log for log in logs if _follow_up_pending(log)]),
    )


def log_status(log: LogWithDetails) -> LogStatusBadge:
    if _follow_up_pending(log):
        status = LogStatus.FOLLOW_UP_PENDING
        variant = "destructive"
    else:
        status = LogStatus.REVIEWED if log.reviewer_name else LogStatus.NOT_REVIEWED
        variant = "secondary"
    return LogStatusBadge(status=status, label=LOG_STATUS_LABELS[status], variant=variant)
