"""Report filters, statistics and metric cards computed over fetched logs."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from .schemas import LogWithDetails, MetricCard, MetricColor, ReportFilters, ReportStats


def get_mood_scores(logs: List[LogWithDetails]) -> List[int]:
    return [log.mood_score for log in logs if log.mood_score is not None]


def calculate_average(scores: List[float]) -> float:
    if not scores:
        return 0.0
    return sum(scores) / len(scores)


def calculate_improvement_trend(logs: List[LogWithDetails]) -> float:
    """Mean mood of the later half of ``logs`` minus the mean of the earlier half."""

    if len(logs) < 2:
        return 0.0
    ordered = sorted(logs, key=lambda log: log.created_at)
    mid = len(ordered) // 2
    first_avg = calculate_average(get_mood_scores(ordered[:mid]))
    second_avg = calculate_average(get_mood_scores(ordered[mid:]))
    return second_avg - first_avg


def default_report_range(
    now: Optional[datetime] = None,
    months: int = 1,
) -> Tuple[datetime, datetime]:
    now = now or datetime.now(timezone.utc)
    return now - relativedelta(months=months), now


def filter_logs(logs: List[LogWithDetails], filters: ReportFilters) -> List[LogWithDetails]:
    def matches(log: LogWithDetails) -> bool:
        if filters.date_from is not None and filters.date_to is not None:
            if not filters.date_from <= log.log_date <= filters.date_to:
                return False
        if filters.child_id != "all" and log.child_id != filters.child_id:
            return False
        if filters.category_id != "all" and log.category_id != filters.category_id:
            return False
        return True

    return [log for log in logs if matches(log)]


def calculate_report_stats(logs: List[LogWithDetails]) -> ReportStats:
    category_names = {log.category.name for log in logs if log.category and log.category.name}
    return ReportStats(
        total_logs=len(logs),
        avg_mood_score=calculate_average(get_mood_scores(logs)),
        improvement_trend=calculate_improvement_trend(logs),
        active_categories=len(category_names),
        follow_ups_required=len([log for log in logs if log.follow_up_required]),
        active_days=len({log.log_date.date() for log in logs}),
    )


def _mood_color(avg_mood: float) -> MetricColor:
    if avg_mood >= 4:
        return MetricColor.GREEN
    if avg_mood >= 3:
        return MetricColor.ORANGE
    return MetricColor.RED


def _trend_card(trend: float) -> MetricCard:
    if trend > 0:
        icon, color, subtitle = "trending-up", MetricColor.GREEN, "Improving"
    elif trend < 0:
        icon, color, subtitle = "alert-triangle", MetricColor.RED, "Declining"
    else:
        icon, color, subtitle = "target", MetricColor.GRAY, "Stable"
    return MetricCard(title="Trend", value=f"{trend:.1f}", icon=icon, color=color, subtitle=subtitle)


def report_metric_cards(stats: ReportStats) -> List[MetricCard]:
    return [
        MetricCard(
            title="Total logs",
            value=stats.total_logs,
            icon="file-text",
            color=MetricColor.BLUE,
            subtitle="In the selected period",
        ),
        MetricCard(
            title="Mood",
            value=f"{stats.avg_mood_score:.1f}",
            suffix="/5",
            icon="heart",
            color=_mood_color(stats.avg_mood_score),
            subtitle="Average mood score",
        ),
        _trend_card(stats.improvement_trend),
        MetricCard(
            title="Active categories",
            value=stats.active_categories,
            icon="pie-chart",
            color=MetricColor.PURPLE,
            subtitle="Categories in use",
        ),
        MetricCard(
            title="Follow-up required",
            value=stats.follow_ups_required,
            icon="alert-triangle",
            color=MetricColor.ORANGE,
            subtitle="Entries flagged for follow-up",
        ),
        MetricCard(
            title="Active days",
            value=stats.active_days,
            icon="calendar",
            color=MetricColor.BLUE,
            subtitle="Days with entries",
        ),
    ]
