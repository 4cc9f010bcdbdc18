from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..auth_state import AuthState, require_user
from ..config import CONFIG
from ..queries import fetch_categories, fetch_children, fetch_logs
from ..reports import (
    calculate_report_stats,
    default_report_range,
    filter_logs,
    report_metric_cards,
)
from ..schemas import Category, LogWithDetails, MetricCard, ReportFilters, ReportStats
from ..supabase import resolve_optional_uuid

router = APIRouter(prefix="/api/v1", tags=["reports"])
logger = logging.getLogger(__name__)


class ChildOption(BaseModel):
    id: str
    name: str


class ReportOut(BaseModel):
    filters: ReportFilters
    stats: ReportStats
    cards: List[MetricCard]
    logs: List[LogWithDetails]
    children: List[ChildOption]
    categories: List[Category]


@router.get("/reports", response_model=ReportOut)
async def report_endpoint(
    child_id: str = Query("all", description="Child id or 'all'"),
    category_id: str = Query("all", description="Category id or 'all'"),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    state: AuthState = Depends(require_user),
) -> ReportOut:
    resolved_child_id = resolve_optional_uuid(child_id, "child_id")
    resolved_category_id = resolve_optional_uuid(category_id, "category_id")
    if date_from is None and date_to is None:
        date_from, date_to = default_report_range(months=CONFIG.report_window_months)
    filters = ReportFilters(
        child_id=resolved_child_id or "all",
        category_id=resolved_category_id or "all",
        date_from=date_from,
        date_to=date_to,
    )

    children = await fetch_children(state.supabase, state.user.id)
    logs = await fetch_logs(state.supabase, child_id=resolved_child_id)
    categories = await fetch_categories(state.supabase)

    filtered = filter_logs(logs, filters)
    stats = calculate_report_stats(filtered)
    logger.info(
        "report computed",
        extra={
            "user_id": state.user.id,
            "child_id": resolved_child_id,
            "fetched": len(logs),
            "count": stats.total_logs,
        },
    )
    return ReportOut(
        filters=filters,
        stats=stats,
        cards=report_metric_cards(stats),
        logs=filtered,
        children=[ChildOption(id=child.id, name=child.name) for child in children],
        categories=categories,
    )
