import logging
from datetime import datetime, timezone
from typing import Any, List, Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import settings
from database import DocumentStore, get_store, now_iso, store as default_store
from forum import (
    build_thread_tree,
    can_delete_project,
    collect_tags,
    compute_trending_score,
    filter_and_sort_projects,
    preview_image_url,
    submission_problems,
)
from gemini import GeminiClient, GeminiError, get_gemini
from quick_learning import list_quick_shorts, refresh_quick_shorts
from schemas import (
    ANNOUNCEMENTS,
    COMMENTS,
    COURSES,
    PROJECTS,
    SUGGESTIONS,
    UPVOTES,
    USER_COURSES,
    USERS,
    Announcement,
    Course,
    Role,
    ShowcaseComment,
    ShowcaseProject,
    ShowcaseSuggestion,
    ShowcaseUpvote,
    User,
    UserCourse,
    coerce_count,
    now_ms,
)
from youtube import CheckError, YouTubeScraper, get_scraper

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Learning Hub API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Utilities

def by_newest(docs: List[dict], field: str = "createdAt") -> List[dict]:
    return sorted(docs, key=lambda d: str(d.get(field) or ""), reverse=True)


def error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def check_failed(e: CheckError, **extra) -> JSONResponse:
    return JSONResponse(status_code=e.status_code, content={"ok": False, "reason": e.reason, **extra})


def get_caller(
    x_user_email: Optional[str] = Header(default=None, alias="X-User-Email"),
    x_user_name: Optional[str] = Header(default=None, alias="X-User-Name"),
    store: DocumentStore = Depends(get_store),
) -> dict:
    """The signed-in employee as the browser reports them; anonymous when absent."""
    email = (x_user_email or "").strip().lower()
    user = store.get(USERS, email) if email else None
    user = user or {}
    name = (x_user_name or "").strip() or user.get("name") or (email.split("@")[0] if email else "Guest")
    return {
        "id": user.get("employeeId") or email,
        "email": email,
        "name": name,
        "role": user.get("role", "User"),
    }


def require_admin(caller: dict = Depends(get_caller)) -> dict:
    if not caller["email"]:
        raise HTTPException(status_code=401, detail="Missing X-User-Email")
    if caller["role"] != "Admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return caller


def get_project_or_404(store: DocumentStore, project_id: str) -> dict:
    doc = store.get(PROJECTS, project_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Project not found")
    return ShowcaseProject.model_validate(doc).model_dump(by_alias=True)


# Models for requests

class LoginRequest(BaseModel):
    email: str
    name: Optional[str] = None


class UserCreate(BaseModel):
    employeeId: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    role: Role = "User"


class UserUpdate(BaseModel):
    name: Optional[str] = None
    employeeId: Optional[str] = None
    role: Optional[Role] = None
    resetAssessmentFlag: Optional[bool] = None


class CourseCreate(BaseModel):
    name: str = Field(..., min_length=1)
    type: str = "beginner"
    videoId: str = Field(..., min_length=1)


class AnnouncementCreate(BaseModel):
    text: str = Field(..., min_length=1)
    date: Optional[str] = None


class UserCourseCreate(BaseModel):
    videoId: str = Field(..., min_length=1)
    topic: str = ""
    definition: str = ""
    uses: str = ""
    level: str = ""


class DataAction(BaseModel):
    action: str
    type: Literal["courses", "announcements"]
    data: Any = None
    id: Any = None


class ProjectCreate(BaseModel):
    name: str = ""
    tagline: str = ""
    description: str = ""
    demoUrl: str = ""
    demoVideoUrl: str = ""
    codeUrl: str = ""
    codeSnippet: str = ""
    imageUrl: str = ""
    tags: Any = None


class ProjectUpdate(BaseModel):
    name: Optional[str] = None
    tagline: Optional[str] = None
    description: Optional[str] = None
    demoUrl: Optional[str] = None
    demoVideoUrl: Optional[str] = None
    codeUrl: Optional[str] = None
    codeSnippet: Optional[str] = None
    imageUrl: Optional[str] = None
    tags: Any = None


class CommentCreate(BaseModel):
    body: str = Field(..., min_length=1)
    parentId: Optional[str] = None


class UpvoteToggle(BaseModel):
    voterId: Optional[str] = None


class SuggestionCreate(BaseModel):
    toName: str


class GeminiPrompt(BaseModel):
    prompt: Optional[str] = None
    model: Optional[str] = None


class GeminiCustom(BaseModel):
    body: Optional[dict] = None
    model: Optional[str] = None


class RefreshRequest(BaseModel):
    maxNew: int = Field(40, ge=1, le=200)
    maxPerSource: int = Field(200, ge=1, le=2000)


# Seeding demo data if empty

def seed_demo(store: DocumentStore):
    if store.list(COURSES):
        return
    course = Course(id="1735382400000", name="Excel Basic", type="beginner",
                    video_id="RRY-wTT6-ds", upload_date="12/28/2025")
    store.put(COURSES, course.id, course)

seed_demo(default_store)

@app.get("/")
def root():
    return {"message": "Learning Hub API running"}

@app.get("/api/health")
def health():
    return {"status": "ok", "message": "Server is running"}

@app.get("/test")
def test_database(store: DocumentStore = Depends(get_store)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_project": None,
        "connection_status": "Not Connected",
        "collections": [],
        "local_cache": store.cache.collections(),
    }
    try:
        if store.remote is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            try:
                response["collections"] = store.remote_collections()[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️  Not configured, using local cache"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    response["database_project"] = "✅ Set" if settings.firebase_project_id() else "❌ Not Set"
    return response

# Runtime config

@app.get("/api/runtime-config")
def runtime_config():
    firebase = settings.firebase_config()
    missing = [k for k, v in firebase.items() if not v]
    if missing:
        return error(500, f"Firebase runtime config not configured (missing: {', '.join(missing)})")
    return JSONResponse(content={"firebase": firebase}, headers={"Cache-Control": "no-store"})

# Gemini proxy

@app.post("/api/gemini")
def gemini_prompt(payload: GeminiPrompt, client: GeminiClient = Depends(get_gemini)):
    if not (payload.prompt or "").strip():
        return error(400, "Prompt is required")
    try:
        return client.generate(payload.prompt, payload.model)
    except GeminiError as e:
        return error(e.status_code, e.message)

@app.post("/api/gemini/custom")
def gemini_custom(payload: GeminiCustom, client: GeminiClient = Depends(get_gemini)):
    if not payload.body:
        return error(400, "Request body is required")
    try:
        return client.generate_custom(payload.body, payload.model)
    except GeminiError as e:
        return error(e.status_code, e.message)

# Link and video checks

NO_STORE = {"Cache-Control": "no-store"}

@app.get("/api/url/check")
def url_check(url: Optional[str] = None, scraper: YouTubeScraper = Depends(get_scraper)):
    try:
        return scraper.check_url(url)
    except CheckError as e:
        return check_failed(e)
    except Exception as e:
        logger.exception("URL check failed for %s", url)
        return JSONResponse(status_code=500, content={"ok": False, "reason": str(e) or "Unknown error"})

@app.get("/api/youtube/check")
def youtube_check(videoId: Optional[str] = None, scraper: YouTubeScraper = Depends(get_scraper)):
    try:
        return JSONResponse(content=scraper.check_video(videoId), headers=NO_STORE)
    except CheckError as e:
        return check_failed(e)
    except Exception as e:
        logger.exception("YouTube check failed for %s", videoId)
        return JSONResponse(status_code=500, content={"ok": False, "reason": str(e) or "Unknown error"})

@app.get("/api/youtube/search")
def youtube_search(
    query: Optional[str] = None,
    q: Optional[str] = None,
    limit: int = Query(15, ge=1, le=30, alias="max"),
    scraper: YouTubeScraper = Depends(get_scraper),
):
    try:
        return JSONResponse(content=scraper.search_video_ids(query or q, limit), headers=NO_STORE)
    except CheckError as e:
        return check_failed(e, videoIds=[])
    except Exception as e:
        logger.exception("YouTube search failed")
        return JSONResponse(status_code=500, content={"ok": False, "reason": str(e), "videoIds": []})

@app.get("/api/youtube/channel-shorts")
def youtube_channel_shorts(
    handle: Optional[str] = None,
    h: Optional[str] = None,
    limit: int = Query(1000, ge=1, le=2000, alias="max"),
    scraper: YouTubeScraper = Depends(get_scraper),
):
    try:
        return JSONResponse(content=scraper.channel_shorts(handle or h, limit), headers=NO_STORE)
    except CheckError as e:
        return check_failed(e, videoIds=[])
    except Exception as e:
        logger.exception("YouTube channel shorts failed")
        return JSONResponse(status_code=500, content={"ok": False, "reason": str(e), "videoIds": []})

# Users

@app.post("/api/auth/login")
def login(payload: LoginRequest, store: DocumentStore = Depends(get_store)):
    email = payload.email.strip().lower()
    if not email.endswith(f"@{settings.ALLOWED_EMAIL_DOMAIN}"):
        raise HTTPException(status_code=403, detail=f"Access Denied: Please use your @{settings.ALLOWED_EMAIL_DOMAIN} email.")

    existing = store.get(USERS, email)
    stamp = now_iso()
    if existing:
        return store.patch(USERS, email, {"lastActive": stamp, "updatedAt": stamp})

    user = User(
        email=email,
        name=(payload.name or "").strip() or email.split("@")[0],
        employee_id=f"AUTO-{now_ms()}",
        role="Admin" if email in settings.admin_emails() else "User",
        last_active=stamp,
    )
    logger.info("First login for %s", email)
    return store.put(USERS, email, {**user.model_dump(by_alias=True), "updatedAt": stamp})

@app.get("/api/users")
def list_users(store: DocumentStore = Depends(get_store), _: dict = Depends(require_admin)):
    return {"items": store.list(USERS)}

@app.post("/api/users")
def add_user(payload: UserCreate, store: DocumentStore = Depends(get_store), _: dict = Depends(require_admin)):
    user = User(email=payload.email, name=payload.name.strip(), employee_id=payload.employeeId.strip(), role=payload.role)
    return store.put(USERS, user.email, {**user.model_dump(by_alias=True), "updatedAt": now_iso()})

@app.patch("/api/users/{email}")
def update_user(email: str, payload: UserUpdate, store: DocumentStore = Depends(get_store),
                _: dict = Depends(require_admin)):
    key = email.strip().lower()
    if not store.get(USERS, key):
        raise HTTPException(status_code=404, detail="User not found")
    update = payload.model_dump(exclude_none=True)
    update["updatedAt"] = now_iso()
    return store.patch(USERS, key, update)

@app.delete("/api/users/{email}")
def delete_user(email: str, store: DocumentStore = Depends(get_store), _: dict = Depends(require_admin)):
    if not store.delete(USERS, email.strip().lower()):
        raise HTTPException(status_code=404, detail="User not found")
    return {"ok": True}

# Assigned courses

@app.get("/api/users/{email}/courses")
def list_user_courses(email: str, store: DocumentStore = Depends(get_store)):
    return {"items": store.list(USER_COURSES, where=("email", email.strip().lower()))}

@app.post("/api/users/{email}/courses")
def assign_course(email: str, payload: UserCourseCreate, store: DocumentStore = Depends(get_store),
                  _: dict = Depends(require_admin)):
    assigned = UserCourse(email=email.strip().lower(), **payload.model_dump())
    return store.put(USER_COURSES, assigned.key, assigned)

@app.delete("/api/users/{email}/courses/{video_id}")
def unassign_course(email: str, video_id: str, store: DocumentStore = Depends(get_store),
                    _: dict = Depends(require_admin)):
    store.delete(USER_COURSES, f"{email.strip().lower()}_{video_id}")
    return {"ok": True}

# Courses and announcements

@app.get("/api/courses")
def list_courses(store: DocumentStore = Depends(get_store)):
    return {"items": store.list(COURSES)}

@app.post("/api/courses")
def add_course(payload: CourseCreate, store: DocumentStore = Depends(get_store), _: dict = Depends(require_admin)):
    course = Course(name=payload.name.strip(), type=payload.type, video_id=payload.videoId.strip())
    return store.put(COURSES, course.id, {**course.model_dump(by_alias=True), "updatedAt": now_iso()})

@app.delete("/api/courses/{course_id}")
def delete_course(course_id: str, store: DocumentStore = Depends(get_store), _: dict = Depends(require_admin)):
    if not store.delete(COURSES, course_id):
        raise HTTPException(status_code=404, detail="Course not found")
    return {"ok": True}

@app.get("/api/announcements")
def list_announcements(store: DocumentStore = Depends(get_store)):
    return {"items": by_newest(store.list(ANNOUNCEMENTS))}

@app.post("/api/announcements")
def add_announcement(payload: AnnouncementCreate, store: DocumentStore = Depends(get_store),
                     _: dict = Depends(require_admin)):
    announcement = Announcement(text=payload.text.strip(), **({"date": payload.date} if payload.date else {}))
    return store.put(ANNOUNCEMENTS, announcement.id, announcement)

@app.post("/api/data")
def shared_data(payload: DataAction, store: DocumentStore = Depends(get_store), caller: dict = Depends(get_caller)):
    model = Course if payload.type == "courses" else Announcement
    if payload.action == "get":
        return {"success": True, "data": store.list(payload.type)}
    if payload.action not in ("add", "delete", "set"):
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid action"})
    if caller["role"] != "Admin":
        raise HTTPException(status_code=403, detail="Admin access required")

    try:
        if payload.action == "add":
            doc = model.model_validate(payload.data or {})
            store.put(payload.type, doc.id, doc)
        elif payload.action == "delete":
            store.delete(payload.type, str(payload.id))
        else:
            docs = [model.model_validate(d) for d in (payload.data or [])]
            for existing in store.list(payload.type):
                store.delete(payload.type, str(existing["id"]))
            for doc in docs:
                store.put(payload.type, doc.id, doc)
    except ValueError as e:
        return JSONResponse(status_code=400, content={"success": False, "error": str(e)})
    return {"success": True, "data": store.list(payload.type)}

@app.post("/api/admin/sync")
def sync_local_cache(store: DocumentStore = Depends(get_store), _: dict = Depends(require_admin)):
    return store.sync_to_remote()

# Showcase forum

@app.get("/api/showcase/projects")
def list_projects(
    q: Optional[str] = None,
    tag: Optional[str] = None,
    sort: Literal["trending", "newest"] = Query("trending"),
    store: DocumentStore = Depends(get_store),
):
    now = datetime.now(timezone.utc)
    projects = [ShowcaseProject.model_validate(p).model_dump(by_alias=True) for p in store.list(PROJECTS)]
    items = filter_and_sort_projects(projects, query=q, tag=tag, sort=sort, now=now)
    for p in items:
        p["previewImageUrl"] = preview_image_url(p)
        p["trendingScore"] = compute_trending_score(p, now)
    return {"items": items, "total": len(items), "tags": collect_tags(projects)}

@app.get("/api/showcase/tags")
def list_tags(store: DocumentStore = Depends(get_store)):
    return {"items": collect_tags(store.list(PROJECTS))}

@app.get("/api/showcase/projects/{project_id}")
def get_project(project_id: str, store: DocumentStore = Depends(get_store)):
    project = get_project_or_404(store, project_id)
    project["previewImageUrl"] = preview_image_url(project)
    return project

@app.post("/api/showcase/projects")
def create_project(payload: ProjectCreate, store: DocumentStore = Depends(get_store),
                   caller: dict = Depends(get_caller)):
    problems = submission_problems(payload.model_dump())
    if problems:
        raise HTTPException(status_code=400, detail=problems)
    project = ShowcaseProject.model_validate({
        **payload.model_dump(),
        "makerName": caller["name"],
        "makerEmail": caller["email"],
        "makerId": caller["email"] or caller["id"],
    })
    return store.put(PROJECTS, project.id, project)

@app.patch("/api/showcase/projects/{project_id}")
def update_project(project_id: str, payload: ProjectUpdate, store: DocumentStore = Depends(get_store),
                   caller: dict = Depends(get_caller)):
    project = get_project_or_404(store, project_id)
    if not can_delete_project(project, caller["id"], caller["email"], caller["role"] == "Admin"):
        raise HTTPException(status_code=403, detail="Only the maker or an admin can edit this project")
    patch = payload.model_dump(exclude_none=True)
    problems = submission_problems({**project, **patch})
    if problems:
        raise HTTPException(status_code=400, detail=problems)
    # run the patch through the schema so stored fields stay normalized
    normalized = ShowcaseProject.model_validate({**project, **patch}).model_dump(by_alias=True)
    return store.patch(PROJECTS, project_id, {k: normalized[k] for k in patch})

@app.delete("/api/showcase/projects/{project_id}")
def delete_project(project_id: str, store: DocumentStore = Depends(get_store), caller: dict = Depends(get_caller)):
    project = get_project_or_404(store, project_id)
    if not can_delete_project(project, caller["id"], caller["email"], caller["role"] == "Admin"):
        raise HTTPException(status_code=403, detail="Only the maker or an admin can delete this project")
    comments = store.delete_where(COMMENTS, "projectId", project_id)
    suggestions = store.delete_where(SUGGESTIONS, "projectId", project_id)
    store.delete_where(UPVOTES, "projectId", project_id)
    store.delete(PROJECTS, project_id)
    logger.info("Deleted project %s with %d comments and %d suggestions", project_id, comments, suggestions)
    return {"ok": True, "deletedComments": comments, "deletedSuggestions": suggestions}

@app.get("/api/showcase/projects/{project_id}/comments")
def list_comments(project_id: str, threaded: bool = True, store: DocumentStore = Depends(get_store)):
    comments = [
        ShowcaseComment.model_validate(c).model_dump(by_alias=True)
        for c in store.list(COMMENTS, where=("projectId", project_id))
    ]
    comments.sort(key=lambda c: c["createdAt"])
    return {"items": build_thread_tree(comments) if threaded else comments, "total": len(comments)}

@app.post("/api/showcase/projects/{project_id}/comments")
def add_comment(project_id: str, payload: CommentCreate, store: DocumentStore = Depends(get_store),
                caller: dict = Depends(get_caller)):
    project = get_project_or_404(store, project_id)
    if not payload.body.strip():
        raise HTTPException(status_code=400, detail="Comment body is required")
    comment = ShowcaseComment(
        project_id=project_id,
        parent_id=payload.parentId,
        author_name=caller["name"],
        author_email=caller["email"],
        author_id=caller["id"],
        body=payload.body,
    )
    saved = store.put(COMMENTS, comment.id, comment)
    store.patch(PROJECTS, project_id, {"commentsCount": project["commentsCount"] + 1})
    return saved

@app.post("/api/showcase/projects/{project_id}/upvote")
def toggle_upvote(project_id: str, payload: Optional[UpvoteToggle] = None, store: DocumentStore = Depends(get_store),
                  caller: dict = Depends(get_caller)):
    project = get_project_or_404(store, project_id)
    # a signed-in caller always votes as themselves
    voter = caller["id"] or ((payload.voterId if payload else None) or "").strip()
    if not voter:
        raise HTTPException(status_code=400, detail="Missing voter identifier")

    key = f"{project_id}_{voter}"
    current = coerce_count(project.get("upvotes"))
    if store.get(UPVOTES, key):
        store.delete(UPVOTES, key)
        status, upvotes = "unvoted", max(0, current - 1)
    else:
        store.put(UPVOTES, key, ShowcaseUpvote(project_id=project_id, voter_id=voter))
        status, upvotes = "upvoted", current + 1
    store.patch(PROJECTS, project_id, {"upvotes": upvotes})
    return {"status": status, "upvotes": upvotes}

@app.post("/api/showcase/projects/{project_id}/suggestions")
def add_suggestion(project_id: str, payload: SuggestionCreate, store: DocumentStore = Depends(get_store),
                   caller: dict = Depends(get_caller)):
    project = get_project_or_404(store, project_id)
    if not payload.toName.strip():
        raise HTTPException(status_code=400, detail="Missing recipient name")
    suggestion = ShowcaseSuggestion(
        project_id=project_id,
        project_name=project["name"],
        to_name=payload.toName,
        from_name=caller["name"],
        from_email=caller["email"],
        from_id=caller["id"],
    )
    saved = store.put(SUGGESTIONS, suggestion.id, suggestion)
    store.patch(PROJECTS, project_id, {"suggestionsCount": project["suggestionsCount"] + 1})
    return saved

@app.get("/api/showcase/suggestions")
def list_suggestions(to: str, store: DocumentStore = Depends(get_store)):
    key = to.strip().lower()
    if not key:
        raise HTTPException(status_code=400, detail="Missing recipient name")
    return {"items": by_newest(store.list(SUGGESTIONS, where=("toNameLower", key)))}

# Quick learning

@app.get("/api/quick-shorts")
def quick_shorts(topic: Optional[str] = None, store: DocumentStore = Depends(get_store)):
    return {"items": list_quick_shorts(store, topic)}

@app.post("/api/quick-shorts/refresh")
def quick_shorts_refresh(
    payload: Optional[RefreshRequest] = None,
    store: DocumentStore = Depends(get_store),
    scraper: YouTubeScraper = Depends(get_scraper),
    _: dict = Depends(require_admin),
):
    payload = payload or RefreshRequest()
    return refresh_quick_shorts(store, scraper, payload.maxNew, payload.maxPerSource)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
