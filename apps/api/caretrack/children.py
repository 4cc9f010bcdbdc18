"""Children list filtering, statistics and presentation helpers."""
from __future__ import annotations

from datetime import date
from typing import Dict, List, Optional

from .schemas import (
    ChildFilters,
    ChildLinks,
    ChildrenStats,
    ChildWithRelation,
    MetricCard,
    MetricColor,
    RelationshipType,
)

RELATIONSHIP_LABELS: Dict[RelationshipType, str] = {
    RelationshipType.PARENT: "Parent",
    RelationshipType.TEACHER: "Teacher",
    RelationshipType.SPECIALIST: "Specialist",
    RelationshipType.OBSERVER: "Observer",
    RelationshipType.FAMILY: "Family",
}

RELATIONSHIP_COLORS: Dict[RelationshipType, MetricColor] = {
    RelationshipType.PARENT: MetricColor.BLUE,
    RelationshipType.TEACHER: MetricColor.GREEN,
    RelationshipType.SPECIALIST: MetricColor.PURPLE,
    RelationshipType.OBSERVER: MetricColor.GRAY,
    RelationshipType.FAMILY: MetricColor.YELLOW,
}


def relationship_label(relationship_type: RelationshipType) -> str:
    return RELATIONSHIP_LABELS[relationship_type]


def relationship_color(relationship_type: RelationshipType) -> MetricColor:
    return RELATIONSHIP_COLORS[relationship_type]


def calculate_age(birth_date: Optional[date], today: Optional[date] = None) -> Optional[int]:
    """Whole years since ``birth_date``, not counting a birthday still to come this year."""

    if birth_date is None:
        return None
    today = today or date.today()
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def _matches(child: ChildWithRelation, filters: ChildFilters, today: Optional[date]) -> bool:
    if filters.search:
        needle = filters.search.strip().lower()
        haystack = [child.name.lower(), (child.diagnosis or "").lower()]
        if needle and not any(needle in value for value in haystack):
            return False
    if filters.is_active is not None and child.is_active != filters.is_active:
        return False
    if filters.relationship_type is not None and child.relationship_type != filters.relationship_type:
        return False
    if filters.min_age is not None or filters.max_age is not None:
        age = calculate_age(child.birth_date, today)
        if age is None:
            return False
        if filters.min_age is not None and age < filters.min_age:
            return False
        if filters.max_age is not None and age > filters.max_age:
            return False
    return True


def filter_children(
    children: List[ChildWithRelation],
    filters: ChildFilters,
    *,
    today: Optional[date] = None,
) -> List[ChildWithRelation]:
    return [child for child in children if _matches(child, filters, today)]


def children_stats(children: List[ChildWithRelation]) -> ChildrenStats:
    return ChildrenStats(
        total=len(children),
        active=len([c for c in children if c.is_active]),
        editable=len([c for c in children if c.can_edit]),
        with_diagnosis=len([c for c in children if c.diagnosis]),
    )


def children_stats_cards(stats: ChildrenStats) -> List[MetricCard]:
    return [
        MetricCard(title="Total children", value=stats.total, icon="users", color=MetricColor.BLUE),
        MetricCard(title="Active", value=stats.active, icon="book-open", color=MetricColor.GREEN),
        MetricCard(title="Editable", value=stats.editable, icon="edit", color=MetricColor.PURPLE),
        MetricCard(
            title="With diagnosis",
            value=stats.with_diagnosis,
            icon="trending-up",
            color=MetricColor.ORANGE,
        ),
    ]


def child_links(child: ChildWithRelation) -> ChildLinks:
    base = f"/dashboard/children/{child.id}"
    return ChildLinks(details=base, edit=f"{base}/edit", users=f"{base}/users")


def relation_user_count(child: ChildWithRelation) -> int:
    # Only the caller's own relationship is fetched, so this is 0 or 1.
    return 1 if child.is_relation_active else 0
