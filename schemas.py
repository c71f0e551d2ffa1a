"""
Database Schemas

Firestore collection schemas for the learning hub, as Pydantic models.
These schemas validate and normalize documents before they are stored.

Fields are snake_case in Python and camelCase in Firestore (the browser
reads the same documents), so every model dumps with ``by_alias=True``:
- User -> "users" collection
- Course -> "courses" collection
- ShowcaseProject -> "showcaseProjects" collection
"""

import math
import re
import secrets
import time
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

USERS = "users"
COURSES = "courses"
ANNOUNCEMENTS = "announcements"
USER_COURSES = "userCourses"
PROJECTS = "showcaseProjects"
COMMENTS = "showcaseComments"
SUGGESTIONS = "showcaseSuggestions"
UPVOTES = "showcaseUpvotes"
QUICK_SHORTS = "quickShorts"
CONFIG = "config"

Role = Literal["User", "Admin"]


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id(prefix: str) -> str:
    return f"{prefix}-{now_ms()}-{secrets.token_hex(6)}"


def parse_timestamp(value) -> Optional[datetime]:
    """Read an ISO-8601 string, epoch milliseconds or datetime as an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        if not math.isfinite(value):
            return None
        try:
            dt = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        s = str(value or "").strip()
        if not s:
            return None
        try:
            dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_iso(value) -> str:
    dt = parse_timestamp(value) or datetime.now(timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def normalize_tags(tags) -> List[str]:
    if not tags:
        return []
    items = tags if isinstance(tags, (list, tuple)) else str(tags).split(",")
    out = []
    for t in items:
        cleaned = re.sub(r"\s+", " ", str(t if t is not None else "").strip())
        if cleaned:
            out.append(cleaned)
    return out


def _text(value) -> str:
    return str(value if value is not None else "").strip()


def coerce_count(value) -> int:
    try:
        n = float(value)
    except (TypeError, ValueError):
        return 0
    return int(n) if math.isfinite(n) else 0


class Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Users, courses and announcements

class User(Document):
    """
    Users collection schema
    Collection name: "users" (document id: lower-cased email)
    """
    email: str = Field(..., description="Work email, unique")
    name: str = Field("", description="Display name")
    employee_id: str = Field("", description="Employee id, AUTO-<ms> until an admin sets it")
    role: Role = Field("User", description="Access level")
    last_active: str = Field("", description="Last login time")
    reset_assessment_flag: bool = Field(False, description="Ask the user to retake assessments")

    @field_validator("email", mode="before")
    @classmethod
    def _lower_email(cls, v):
        return _text(v).lower()


class Course(Document):
    """
    Courses collection schema
    Collection name: "courses"
    """
    id: str = Field(default_factory=lambda: str(now_ms()))
    name: str
    type: str = Field("beginner", description="Course level or category")
    video_id: str = Field(..., description="YouTube video id")
    upload_date: str = Field(default_factory=lambda: datetime.now().strftime("%m/%d/%Y"))
    created_at: str = Field(default_factory=lambda: to_iso(None))

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, v):
        # dashboard builds used Date.now() numbers as ids
        return _text(v) or str(now_ms())


class Announcement(Document):
    """
    Announcements collection schema
    Collection name: "announcements"
    """
    id: str = Field(default_factory=lambda: str(now_ms()))
    text: str
    date: str = Field(default_factory=lambda: datetime.now().strftime("%m/%d/%Y"))
    created_at: str = Field(default_factory=lambda: to_iso(None))

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, v):
        return _text(v) or str(now_ms())


class UserCourse(Document):
    """
    Assigned courses
    Collection name: "userCourses" (document id: "<email>_<videoId>")
    """
    email: str
    video_id: str
    topic: str = ""
    definition: str = ""
    uses: str = ""
    level: str = ""
    progress: int = Field(0, ge=0, le=100)
    completed: bool = False
    assigned_at: str = Field(default_factory=lambda: to_iso(None))

    @property
    def key(self) -> str:
        return f"{self.email}_{self.video_id}"


# Showcase forum

class ShowcaseProject(Document):
    """
    Showcase projects
    Collection name: "showcaseProjects"
    """
    id: str = Field(default_factory=lambda: new_id("p"))
    name: str = "Untitled Project"
    tagline: str = ""
    description: str = ""
    demo_url: str = ""
    demo_video_url: str = ""
    code_url: str = ""
    code_snippet: str = ""
    image_url: str = ""
    tags: List[str] = Field(default_factory=list)
    maker_name: str = "Anonymous"
    maker_email: str = ""
    maker_id: str = ""
    created_at: str = Field(default_factory=lambda: to_iso(None))
    # denormalized counters, bumped opportunistically
    upvotes: int = 0
    comments_count: int = 0
    suggestions_count: int = 0

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, v):
        return _text(v) or new_id("p")

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v):
        return _text(v) or "Untitled Project"

    @field_validator("maker_name", mode="before")
    @classmethod
    def _maker_name(cls, v):
        return _text(v) or "Anonymous"

    @field_validator(
        "tagline", "description", "demo_url", "demo_video_url", "code_url",
        "code_snippet", "image_url", "maker_email", "maker_id", mode="before",
    )
    @classmethod
    def _strip(cls, v):
        return _text(v)

    @field_validator("tags", mode="before")
    @classmethod
    def _tags(cls, v):
        return normalize_tags(v)

    @field_validator("created_at", mode="before")
    @classmethod
    def _created_at(cls, v):
        return to_iso(v)

    @field_validator("upvotes", "comments_count", "suggestions_count", mode="before")
    @classmethod
    def _counter(cls, v):
        return coerce_count(v)


class ShowcaseComment(Document):
    """
    Threaded comments; parent_id None means top-level
    Collection name: "showcaseComments"
    """
    id: str = Field(default_factory=lambda: new_id("c"))
    project_id: str
    parent_id: Optional[str] = None
    author_name: str = "Anonymous"
    author_email: str = ""
    author_id: str = ""
    body: str = ""
    created_at: str = Field(default_factory=lambda: to_iso(None))

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, v):
        return _text(v) or new_id("c")

    @field_validator("parent_id", mode="before")
    @classmethod
    def _parent(cls, v):
        return _text(v) or None

    @field_validator("author_name", mode="before")
    @classmethod
    def _author(cls, v):
        return _text(v) or "Anonymous"

    @field_validator("project_id", "author_email", "author_id", "body", mode="before")
    @classmethod
    def _strip(cls, v):
        return _text(v)

    @field_validator("created_at", mode="before")
    @classmethod
    def _created_at(cls, v):
        return to_iso(v)


class ShowcaseSuggestion(Document):
    """
    "Suggest this project to a colleague"
    Collection name: "showcaseSuggestions"
    """
    id: str = Field(default_factory=lambda: new_id("s"))
    project_id: str
    project_name: str = ""
    to_name: str
    to_name_lower: str = ""
    from_name: str = "Anonymous"
    from_email: str = ""
    from_id: str = ""
    created_at: str = Field(default_factory=lambda: to_iso(None))

    @field_validator("project_id", "project_name", "to_name", "from_email", "from_id", mode="before")
    @classmethod
    def _strip(cls, v):
        return _text(v)

    @field_validator("from_name", mode="before")
    @classmethod
    def _from_name(cls, v):
        return _text(v) or "Anonymous"

    @model_validator(mode="after")
    def _recipient_key(self):
        self.to_name_lower = (_text(self.to_name_lower) or self.to_name).lower()
        return self


class ShowcaseUpvote(Document):
    """
    One document per (project, voter) so upvotes toggle
    Collection name: "showcaseUpvotes"
    """
    project_id: str
    voter_id: str
    created_at: str = Field(default_factory=lambda: to_iso(None))


# Quick learning

class QuickShort(Document):
    """
    Quick learning feed entries
    Collection name: "quickShorts" (document id: videoId)
    """
    video_id: str = Field(..., pattern=r"^[a-zA-Z0-9_-]{11}$")
    title: str = ""
    topic: str = ""
    source_handle: str = ""
    embeddable: bool = True
    added_at_ms: int = Field(default_factory=now_ms)
    added_by: str = "scheduler"
