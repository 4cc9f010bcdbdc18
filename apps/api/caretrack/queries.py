"""Fetchers for the collections the dashboard pages filter and aggregate."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .schemas import Category, ChildWithRelation, LogWithDetails
from .supabase import SupabaseClient

logger = logging.getLogger(__name__)

CHILD_COLUMNS = (
    "id,name,birth_date,diagnosis,notes,is_active,created_at,updated_at,"
    "relationship_type,can_edit,can_export,is_relation_active,creator_name"
)

LOG_COLUMNS = (
    "id,child_id,category_id,title,content,mood_score,intensity_level,"
    "follow_up_required,follow_up_date,reviewed_by,reviewer_name,log_date,created_at,"
    "child_name,category:categories(id,name,color)"
)


async def fetch_children(
    supabase: SupabaseClient,
    user_id: str,
    *,
    include_inactive: bool = False,
) -> List[ChildWithRelation]:
    params: Dict[str, Any] = {
        "select": CHILD_COLUMNS,
        "user_id": f"eq.{user_id}",
        "order": "created_at.desc",
    }
    if not include_inactive:
        params["is_active"] = "eq.true"
    rows = await supabase.select("user_children_view", params=params)
    logger.info("children fetched", extra={"user_id": user_id, "count": len(rows)})
    return [ChildWithRelation.model_validate(row) for row in rows]


def get_child_by_id(children: List[ChildWithRelation], child_id: str) -> Optional[ChildWithRelation]:
    return next((child for child in children if child.id == child_id), None)


async def fetch_logs(
    supabase: SupabaseClient,
    *,
    child_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[LogWithDetails]:
    """Return logs newest first, optionally scoped to one child."""

    params: Dict[str, Any] = {
        "select": LOG_COLUMNS,
        "order": "created_at.desc",
    }
    if child_id:
        params["child_id"] = f"eq.{child_id}"
    if limit:
        params["limit"] = str(limit)
    rows = await supabase.select("logs_with_details", params=params)
    logger.info("logs fetched", extra={"child_id": child_id, "count": len(rows)})
    return [LogWithDetails.model_validate(row) for row in rows]


async def fetch_categories(supabase: SupabaseClient) -> List[Category]:
    rows = await supabase.select(
        "categories",
        params={"select": "id,name,color", "is_active": "eq.true", "order": "name.asc"},
    )
    return [Category.model_validate(row) for row in rows]
