"""
Showcase forum logic

Comment threading, trending order and the submission rules for projects.
Everything here works on stored documents (camelCase dicts) and never
touches the database.
"""

from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional
from urllib.parse import quote, urlparse

from schemas import coerce_count, parse_timestamp
from youtube import extract_video_id

TRENDING_EXPONENT = 0.7
MIN_DESCRIPTION_LENGTH = 40

_UNKNOWN_TIME = datetime.max.replace(tzinfo=timezone.utc)
_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def build_thread_tree(comments: List[dict]) -> List[dict]:
    """Nest a flat comment list by ``parentId``.

    Each node is a copy of the comment with a ``replies`` list sorted oldest
    first. Roots keep their input order. A comment becomes a root when its
    parent is missing, is itself, or was created after it; every comment is
    emitted exactly once.
    """
    created = [parse_timestamp(c.get("createdAt")) for c in comments]
    first_index: Dict[str, int] = {}
    for i, c in enumerate(comments):
        first_index.setdefault(c.get("id"), i)

    def parent_of(i: int) -> Optional[int]:
        parent_id = comments[i].get("parentId")
        if not parent_id:
            return None
        j = first_index.get(parent_id)
        if j is None or j == i:
            return None
        if created[j] and created[i] and created[j] > created[i]:
            return None
        return j

    roots: List[int] = []
    children: Dict[int, List[int]] = defaultdict(list)
    for i in range(len(comments)):
        parent = parent_of(i)
        if parent is None:
            roots.append(i)
        else:
            children[parent].append(i)

    for kids in children.values():
        kids.sort(key=lambda k: created[k] or _UNKNOWN_TIME)

    visited = set()

    def build(i: int) -> dict:
        visited.add(i)
        replies = [build(k) for k in children[i] if k not in visited]
        return {**comments[i], "replies": replies}

    tree = [build(i) for i in roots]
    # parent links that loop back on themselves never reach a root
    for i in range(len(comments)):
        if i not in visited:
            tree.append(build(i))
    return tree


def compute_trending_score(project: dict, now: Optional[datetime] = None) -> float:
    """(2 * upvotes + comments) / age_hours ** 0.7, with age floored at one hour."""
    now = now or datetime.now(timezone.utc)
    upvotes = coerce_count(project.get("upvotes"))
    comments = coerce_count(project.get("commentsCount"))
    created = parse_timestamp(project.get("createdAt")) or now
    age_hours = max(1.0, (now - created).total_seconds() / 3600)
    return (upvotes * 2 + comments) / age_hours ** TRENDING_EXPONENT


def filter_and_sort_projects(
    projects: Iterable[dict],
    query: Optional[str] = None,
    tag: Optional[str] = None,
    sort: str = "trending",
    now: Optional[datetime] = None,
) -> List[dict]:
    items = list(projects)
    q = (query or "").strip().lower()
    if q:
        items = [p for p in items if q in str(p.get("name") or "").lower()]
    if tag:
        items = [p for p in items if tag in (p.get("tags") or [])]

    if sort == "newest":
        items.sort(key=lambda p: parse_timestamp(p.get("createdAt")) or _EARLIEST, reverse=True)
    else:
        now = now or datetime.now(timezone.utc)
        items.sort(key=lambda p: compute_trending_score(p, now), reverse=True)
    return items


def collect_tags(projects: Iterable[dict]) -> List[str]:
    tags = {t for p in projects for t in (p.get("tags") or []) if t}
    return sorted(tags, key=str.casefold)


def can_delete_project(project: dict, user_id: str = "", user_email: str = "", is_admin: bool = False) -> bool:
    if is_admin:
        return True
    maker_id = str(project.get("makerId") or "").strip()
    maker_email = str(project.get("makerEmail") or "").strip().lower()
    my_id = (user_id or "").strip()
    my_email = (user_email or "").strip().lower()
    if maker_id and my_id and maker_id == my_id:
        return True
    if maker_email and my_email and maker_email == my_email:
        return True
    return False


def is_valid_url(url: Optional[str]) -> bool:
    """Blank is allowed; anything else must be an absolute http(s) URL."""
    s = (url or "").strip()
    if not s:
        return True
    parsed = urlparse(s)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def submission_problems(project: dict) -> List[str]:
    """Rules of the project submission wizard, in the order the wizard checks them."""
    problems = []
    if not str(project.get("name") or "").strip():
        problems.append("Please enter a Project Name.")
    if not str(project.get("tagline") or "").strip():
        problems.append("Please add a one-line hook.")
    if len(str(project.get("description") or "").strip()) < MIN_DESCRIPTION_LENGTH:
        problems.append("Please write a longer description (at least ~40 characters).")
    for field, label in (
        ("imageUrl", "Preview image URL"),
        ("demoUrl", "Live demo URL"),
        ("demoVideoUrl", "Demo video URL"),
        ("codeUrl", "Code URL"),
    ):
        if not is_valid_url(project.get(field)):
            problems.append(f"{label} must be http(s), or leave it blank.")
    if not (str(project.get("codeUrl") or "").strip() or str(project.get("codeSnippet") or "").strip()):
        problems.append("Please include a Code URL or paste a Code Snippet.")
    return problems


def preview_image_url(project: dict) -> str:
    direct = str(project.get("imageUrl") or "").strip()
    if direct:
        return direct
    video_id = extract_video_id(project.get("demoVideoUrl"))
    if video_id:
        return f"https://img.youtube.com/vi/{quote(video_id)}/hqdefault.jpg"
    return ""
