"""Pydantic document models for Golf Improver.

Documents are persisted with ``to_document()``: optional fields that were
never supplied are dropped rather than written as ``null``, and datetimes become
fixed-width UTC ISO strings.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

EFFORT_CATEGORIES = (
    "practiceSessions",
    "fullSwingWork",
    "shortGameWork",
    "puttingWork",
    "mentalGame",
    "strengthTraining",
    "mobilityExercises",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_iso(value: datetime) -> str:
    """Fixed-width UTC ISO-8601 text, so string order matches time order."""
    return _aware(value).astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return _aware(value)
    if not value:
        return None
    try:
        return _aware(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None


def jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, dict):
        return {key: jsonable(item) for key, item in value.items() if item is not None}
    if isinstance(value, (list, tuple)):
        return [jsonable(item) for item in value]
    return value


class Document(BaseModel):
    """Base class for stored documents."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        return jsonable(self.model_dump(exclude_none=True))


class UserProfile(Document):
    email: str
    name: Optional[str] = None
    handicap: Optional[float] = Field(default=None, ge=-10, le=54)
    hasCompletedTutorial: bool = False
    createdAt: datetime = Field(default_factory=utcnow)


class Goal(Document):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: str
    currentValue: Optional[float] = None
    startValue: Optional[float] = None
    targetValue: float
    targetDate: datetime
    createdAt: datetime = Field(default_factory=utcnow)

    @field_validator("targetDate", "createdAt")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        return _aware(value)


class Drill(Document):
    name: str
    duration: Optional[str] = None
    description: Optional[str] = None
    goal: Optional[str] = None
    keyThought: Optional[str] = None
    completed: Optional[bool] = None

    @field_validator("duration", mode="before")
    @classmethod
    def duration_as_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)):
            return f"{value} mins"
        return value


class PracticeSession(Document):
    day: str
    focus: str
    duration: str
    location: Optional[str] = None
    warmup: Optional[str] = None
    drills: List[Drill] = Field(default_factory=list)

    @field_validator("duration", mode="before")
    @classmethod
    def duration_as_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)):
            return f"{value} mins"
        return value


class PracticePlan(Document):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    goal: Optional[str] = None
    focusAreas: Optional[List[str]] = None
    sessions: List[PracticeSession] = Field(default_factory=list)
    timePerSession: int = Field(..., gt=0)
    aiGenerated: bool = False
    startDate: datetime
    endDate: datetime
    createdAt: datetime = Field(default_factory=utcnow)

    @field_validator("startDate", "endDate", "createdAt")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        return _aware(value)


class PracticeLog(Document):
    type: Literal["structured", "activity"] = "structured"
    sessionTitle: str
    notes: str = ""
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    duration: int = Field(..., ge=0)
    drills: Optional[List[Drill]] = None
    categories: Optional[List[str]] = None
    otherCategory: Optional[str] = None
    planId: Optional[str] = None
    date: datetime
    createdAt: datetime = Field(default_factory=utcnow)

    @field_validator("date", "createdAt")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        return _aware(value)


class EffortScores(Document):
    practiceSessions: int = Field(default=1, ge=1, le=5)
    fullSwingWork: int = Field(default=1, ge=1, le=5)
    shortGameWork: int = Field(default=1, ge=1, le=5)
    puttingWork: int = Field(default=1, ge=1, le=5)
    mentalGame: int = Field(default=1, ge=1, le=5)
    strengthTraining: int = Field(default=1, ge=1, le=5)
    mobilityExercises: int = Field(default=1, ge=1, le=5)


def validate_month(value: str) -> str:
    if not isinstance(value, str) or not MONTH_PATTERN.match(value):
        raise ValueError("Invalid month format. Use YYYY-MM")
    return value


class MonthlyRecap(Document):
    month: str
    effortScores: EffortScores
    autoSuggestedScores: Optional[EffortScores] = None
    handicapStartOfMonth: float
    handicapEndOfMonth: float
    notes: Optional[str] = None
    autoGenerated: bool = False
    userReviewed: bool = False
    createdAt: datetime = Field(default_factory=utcnow)

    @field_validator("month")
    @classmethod
    def check_month(cls, value: str) -> str:
        return validate_month(value)

    @field_validator("createdAt")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        return _aware(value)


class Notification(Document):
    title: str
    message: str
    timestamp: datetime = Field(default_factory=utcnow)
    read: bool = False
    type: str
    link: Optional[str] = None


class Feedback(Document):
    type: str
    message: str = Field(..., min_length=1)
    userId: Optional[str] = None
    userEmail: Optional[str] = None
    deviceInfo: Optional[str] = None
    status: str = "new"
    createdAt: datetime = Field(default_factory=utcnow)
