"""Pydantic schemas shared across the API."""
from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator


def _ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UserRole(str, Enum):
    PARENT = "parent"
    TEACHER = "teacher"
    SPECIALIST = "specialist"
    OBSERVER = "observer"
    ADMIN = "admin"


def self_assignable_role(value: Optional[UserRole]) -> Optional[UserRole]:
    """Admin is granted by operators in the database, never by the user themselves."""
    if value == UserRole.ADMIN:
        raise ValueError("admin role cannot be self-assigned")
    return value


class RelationshipType(str, Enum):
    PARENT = "parent"
    TEACHER = "teacher"
    SPECIALIST = "specialist"
    OBSERVER = "observer"
    FAMILY = "family"


class Profile(BaseModel):
    id: str
    email: str = ""
    full_name: str = ""
    role: UserRole = UserRole.PARENT
    avatar_url: Optional[str] = None
    phone: Optional[str] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    normalize_timestamps = field_validator("last_login", "created_at", "updated_at")(_ensure_utc)


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[UserRole] = None

    check_role = field_validator("role")(self_assignable_role)

    @field_validator("full_name")
    @classmethod
    def full_name_not_null(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            raise ValueError("full_name cannot be null")
        return value


class Child(BaseModel):
    id: str
    name: str
    birth_date: Optional[date] = None
    diagnosis: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool = True
    created_at: datetime
    updated_at: Optional[datetime] = None

    normalize_timestamps = field_validator("created_at", "updated_at")(_ensure_utc)


class ChildWithRelation(Child):
    """Child row joined with the caller's relationship (a view, not a table)."""

    relationship_type: RelationshipType
    can_edit: bool = False
    can_export: bool = False
    is_relation_active: bool = True
    creator_name: Optional[str] = None


class Category(BaseModel):
    id: str
    name: str
    color: Optional[str] = None


class LogWithDetails(BaseModel):
    id: str
    child_id: str
    category_id: Optional[str] = None
    title: str = ""
    content: str = ""
    mood_score: Optional[int] = None
    intensity_level: Optional[str] = None
    follow_up_required: bool = False
    follow_up_date: Optional[date] = None
    reviewed_by: Optional[str] = None
    reviewer_name: Optional[str] = None
    log_date: datetime
    created_at: datetime
    category: Optional[Category] = None
    child_name: Optional[str] = None

    normalize_timestamps = field_validator("log_date", "created_at")(_ensure_utc)


class ChildFilters(BaseModel):
    search: Optional[str] = None
    is_active: Optional[bool] = None
    relationship_type: Optional[RelationshipType] = None
    min_age: Optional[int] = Field(default=None, ge=0)
    max_age: Optional[int] = Field(default=None, ge=0)


class ReportFilters(BaseModel):
    child_id: str = "all"
    category_id: str = "all"
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    normalize_timestamps = field_validator("date_from", "date_to")(_ensure_utc)


class MetricColor(str, Enum):
    BLUE = "blue"
    RED = "red"
    PURPLE = "purple"
    GREEN = "green"
    ORANGE = "orange"
    GRAY = "gray"
    YELLOW = "yellow"


class MetricCard(BaseModel):
    title: str
    value: Union[int, float, str]
    suffix: str = ""
    icon: str
    color: MetricColor
    subtitle: Optional[str] = None


class ChildrenStats(BaseModel):
    total: int = 0
    active: int = 0
    editable: int = 0
    with_diagnosis: int = 0


class ChildLogStats(BaseModel):
    total_logs: int = 0
    logs_this_week: int = 0
    logs_this_month: int = 0
    last_log_date: Optional[datetime] = None
    pending_reviews: int = 0
    follow_ups_required: int = 0


class ReportStats(BaseModel):
    total_logs: int = 0
    avg_mood_score: float = 0.0
    improvement_trend: float = 0.0
    active_categories: int = 0
    follow_ups_required: int = 0
    active_days: int = 0


class LogStatus(str, Enum):
    FOLLOW_UP_PENDING = "follow_up_pending"
    REVIEWED = "reviewed"
    NOT_REVIEWED = "not_reviewed"


class LogStatusBadge(BaseModel):
    status: LogStatus
    label: str
    variant: str


class ChildLinks(BaseModel):
    details: str
    edit: str
    users: str

