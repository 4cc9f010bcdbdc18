from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from ..auth_state import AuthState, require_user
from ..child_logs import child_log_stats, log_status
from ..children import (
    calculate_age,
    child_links,
    children_stats,
    children_stats_cards,
    filter_children,
    relation_user_count,
    relationship_color,
    relationship_label,
)
from ..queries import fetch_children, fetch_logs, get_child_by_id
from ..schemas import (
    ChildFilters,
    ChildLinks,
    ChildLogStats,
    ChildrenStats,
    ChildWithRelation,
    LogStatusBadge,
    LogWithDetails,
    MetricCard,
    MetricColor,
    RelationshipType,
)
from ..supabase import resolve_optional_uuid

router = APIRouter(prefix="/api/v1", tags=["children"])
logger = logging.getLogger(__name__)


class ChildSummary(ChildWithRelation):
    age: Optional[int] = None
    relationship_label: str
    relationship_color: MetricColor
    user_count: int
    links: ChildLinks


class ChildrenListOut(BaseModel):
    children: List[ChildSummary]
    stats: ChildrenStats
    cards: List[MetricCard]
    filters: ChildFilters


class LogEntry(LogWithDetails):
    status: LogStatusBadge


class ChildDetailOut(BaseModel):
    child: ChildSummary
    stats: ChildLogStats
    logs: List[LogEntry]


def _summarize(child: ChildWithRelation) -> ChildSummary:
    return ChildSummary(
        **child.model_dump(),
        age=calculate_age(child.birth_date),
        relationship_label=relationship_label(child.relationship_type),
        relationship_color=relationship_color(child.relationship_type),
        user_count=relation_user_count(child),
        links=child_links(child),
    )


@router.get("/children", response_model=ChildrenListOut)
async def list_children_endpoint(
    search: Optional[str] = Query(None, description="Matches name or diagnosis"),
    is_active: Optional[bool] = Query(None),
    relationship_type: Optional[RelationshipType] = Query(None),
    min_age: Optional[int] = Query(None, ge=0),
    max_age: Optional[int] = Query(None, ge=0),
    include_inactive: bool = Query(False, description="Also fetch inactive children"),
    state: AuthState = Depends(require_user),
) -> ChildrenListOut:
    filters = ChildFilters(
        search=search,
        is_active=is_active,
        relationship_type=relationship_type,
        min_age=min_age,
        max_age=max_age,
    )
    children = await fetch_children(
        state.supabase,
        state.user.id,
        include_inactive=include_inactive,
    )
    filtered = filter_children(children, filters)
    stats = children_stats(children)
    logger.info(
        "children list",
        extra={"user_id": state.user.id, "total": stats.total, "filtered": len(filtered)},
    )
    return ChildrenListOut(
        children=[_summarize(child) for child in filtered],
        stats=stats,
        cards=children_stats_cards(stats),
        filters=filters,
    )


@router.get("/children/{child_id}", response_model=ChildDetailOut)
async def child_detail_endpoint(
    child_id: str,
    state: AuthState = Depends(require_user),
) -> ChildDetailOut:
    child_uuid = resolve_optional_uuid(child_id, "child_id")
    if not child_uuid:
        raise HTTPException(status_code=400, detail="Invalid child_id")
    logger.info(
        "child-scoped request",
        extra={"method": "GET", "path": "/api/v1/children/{child_id}", "child_id": child_uuid},
    )
    children = await fetch_children(state.supabase, state.user.id, include_inactive=True)
    child = get_child_by_id(children, child_uuid)
    if child is None:
        raise HTTPException(status_code=404, detail="Child not found")
    logs = await fetch_logs(state.supabase, child_id=child_uuid)
    return ChildDetailOut(
        child=_summarize(child),
        stats=child_log_stats(logs),
        logs=[LogEntry(**log.model_dump(), status=log_status(log)) for log in logs],
    )
