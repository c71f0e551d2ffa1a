"""Tests for the HTTP API."""

import pytest

from conftest import FakeResponse
from schemas import ANNOUNCEMENTS, COMMENTS, PROJECTS, SUGGESTIONS, UPVOTES, USERS
from settings import FIREBASE_ENV_KEYS

PROJECT = {
    "name": "Timesheet Bot",
    "tagline": "Fills in timesheets for you",
    "description": "A small bot that reads your calendar and drafts the weekly timesheet.",
    "codeUrl": "https://github.com/acme/timesheet-bot",
    "tags": "Automation, Python",
}


@pytest.fixture
def project(client, user_headers):
    """Create a project as the regular employee and return it."""
    response = client.post("/api/showcase/projects", json=PROJECT, headers=user_headers)
    assert response.status_code == 200
    return response.json()


class TestService:
    """Health and configuration endpoints."""

    def test_root_and_health(self, client):
        assert client.get("/").status_code == 200
        assert client.get("/api/health").json() == {"status": "ok", "message": "Server is running"}

    def test_database_status(self, client):
        body = client.get("/test").json()
        assert body["backend"] == "✅ Running"
        assert body["connection_status"] == "Not Connected"

    def test_runtime_config_missing(self, client, monkeypatch):
        for env in FIREBASE_ENV_KEYS.values():
            monkeypatch.delenv(env, raising=False)
        response = client.get("/api/runtime-config")
        assert response.status_code == 500
        assert "missing: apiKey" in response.json()["error"]

    def test_runtime_config(self, client, monkeypatch):
        for key, env in FIREBASE_ENV_KEYS.items():
            monkeypatch.setenv(env, f"value-{key}")
        response = client.get("/api/runtime-config")
        assert response.status_code == 200
        assert response.headers["cache-control"] == "no-store"
        assert response.json()["firebase"]["projectId"] == "value-projectId"


class TestLogin:
    """Domain-restricted sign-in."""

    def test_other_domain_rejected(self, client):
        response = client.post("/api/auth/login", json={"email": "someone@gmail.com"})
        assert response.status_code == 403

    def test_first_login_creates_user(self, client, store, monkeypatch):
        monkeypatch.delenv("ADMIN_EMAILS", raising=False)
        body = client.post("/api/auth/login", json={"email": "New.Hire@OneOrigin.us", "name": "New Hire"}).json()
        assert body["email"] == "new.hire@oneorigin.us"
        assert body["employeeId"].startswith("AUTO-")
        assert body["role"] == "User"
        assert store.get(USERS, "new.hire@oneorigin.us")["name"] == "New Hire"

    def test_configured_admin(self, client, monkeypatch):
        monkeypatch.setenv("ADMIN_EMAILS", "boss@oneorigin.us, other@oneorigin.us")
        body = client.post("/api/auth/login", json={"email": "boss@oneorigin.us"}).json()
        assert body["role"] == "Admin"
        assert body["name"] == "boss"

    def test_returning_user_keeps_record(self, client, user_headers):
        body = client.post("/api/auth/login", json={"email": "sam@oneorigin.us"}).json()
        assert body["employeeId"] == "E-200"
        assert body["lastActive"]


class TestUsers:
    """Admin user management."""

    def test_requires_identity(self, client):
        assert client.get("/api/users").status_code == 401

    def test_requires_admin(self, client, user_headers):
        assert client.get("/api/users", headers=user_headers).status_code == 403

    def test_crud(self, client, admin_headers):
        created = client.post("/api/users", headers=admin_headers, json={
            "employeeId": "E-300", "name": "Lee", "email": "Lee@OneOrigin.us", "role": "User",
        }).json()
        assert created["email"] == "lee@oneorigin.us"

        updated = client.patch("/api/users/lee@oneorigin.us", headers=admin_headers, json={"role": "Admin"}).json()
        assert updated["role"] == "Admin"
        assert updated["employeeId"] == "E-300"

        emails = {u["email"] for u in client.get("/api/users", headers=admin_headers).json()["items"]}
        assert emails == {"admin@oneorigin.us", "lee@oneorigin.us"}

        assert client.delete("/api/users/lee@oneorigin.us", headers=admin_headers).status_code == 200
        assert client.delete("/api/users/lee@oneorigin.us", headers=admin_headers).status_code == 404

    def test_update_missing_user(self, client, admin_headers):
        response = client.patch("/api/users/ghost@oneorigin.us", headers=admin_headers, json={"name": "x"})
        assert response.status_code == 404

    def test_assigned_courses(self, client, admin_headers):
        url = "/api/users/sam@oneorigin.us/courses"
        saved = client.post(url, headers=admin_headers, json={"videoId": "RRY-wTT6-ds", "topic": "Excel"}).json()
        assert saved["id"] == "sam@oneorigin.us_RRY-wTT6-ds"
        assert saved["progress"] == 0

        assert [c["videoId"] for c in client.get(url).json()["items"]] == ["RRY-wTT6-ds"]
        client.delete(f"{url}/RRY-wTT6-ds", headers=admin_headers)
        assert client.get(url).json()["items"] == []


class TestCoursesAndAnnouncements:
    """Shared catalog data."""

    def test_course_lifecycle(self, client, admin_headers):
        course = client.post("/api/courses", headers=admin_headers,
                             json={"name": "SQL Joins", "videoId": "abcdefghijk"}).json()
        assert course["type"] == "beginner"
        assert [c["name"] for c in client.get("/api/courses").json()["items"]] == ["SQL Joins"]

        assert client.delete(f"/api/courses/{course['id']}", headers=admin_headers).status_code == 200
        assert client.delete(f"/api/courses/{course['id']}", headers=admin_headers).status_code == 404

    def test_course_creation_is_admin_only(self, client, user_headers):
        response = client.post("/api/courses", headers=user_headers, json={"name": "x", "videoId": "y"})
        assert response.status_code == 403

    def test_announcements_newest_first(self, client, store):
        store.put(ANNOUNCEMENTS, "1", {"text": "Old", "createdAt": "2025-01-01T00:00:00Z"})
        store.put(ANNOUNCEMENTS, "2", {"text": "New", "createdAt": "2025-03-01T00:00:00Z"})
        items = client.get("/api/announcements").json()["items"]
        assert [a["text"] for a in items] == ["New", "Old"]

    def test_post_announcement(self, client, admin_headers):
        saved = client.post("/api/announcements", headers=admin_headers, json={"text": " Town hall Friday "}).json()
        assert saved["text"] == "Town hall Friday"
        assert saved["date"]


class TestDataAction:
    """The action-style /api/data endpoint."""

    def test_get(self, client):
        body = client.post("/api/data", json={"action": "get", "type": "courses"}).json()
        assert body["success"] is True
        assert body["data"] == []

    def test_add_accepts_numeric_ids(self, client, admin_headers):
        body = client.post("/api/data", headers=admin_headers, json={
            "action": "add", "type": "courses", "data": {"id": 1735382400000, "name": "Excel", "videoId": "RRY-wTT6-ds"},
        }).json()
        assert [c["id"] for c in body["data"]] == ["1735382400000"]

    def test_set_replaces_everything(self, client, admin_headers, store):
        store.put(ANNOUNCEMENTS, "old", {"text": "Old"})
        body = client.post("/api/data", headers=admin_headers, json={
            "action": "set", "type": "announcements",
            "data": [{"id": "a", "text": "One"}, {"id": "b", "text": "Two"}],
        }).json()
        assert sorted(a["id"] for a in body["data"]) == ["a", "b"]

    def test_delete(self, client, admin_headers, store):
        store.put(ANNOUNCEMENTS, "a", {"text": "One"})
        body = client.post("/api/data", headers=admin_headers,
                           json={"action": "delete", "type": "announcements", "id": "a"}).json()
        assert body["data"] == []

    def test_invalid_action(self, client):
        response = client.post("/api/data", json={"action": "drop", "type": "courses"})
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Invalid action"}

    def test_writes_need_admin(self, client, user_headers):
        response = client.post("/api/data", headers=user_headers,
                               json={"action": "delete", "type": "courses", "id": "1"})
        assert response.status_code == 403

    def test_admin_sync_without_remote(self, client, admin_headers):
        assert client.post("/api/admin/sync", headers=admin_headers).json() == {"written": 0, "failed": 0}


class TestShowcase:
    """Projects, comments, upvotes and suggestions."""

    def test_create_rejects_incomplete(self, client, user_headers):
        response = client.post("/api/showcase/projects", json={"name": "x"}, headers=user_headers)
        assert response.status_code == 400
        assert "Please add a one-line hook." in response.json()["detail"]

    def test_create_records_maker(self, project):
        assert project["id"].startswith("p-")
        assert project["makerName"] == "Sam Maker"
        assert project["makerId"] == "sam@oneorigin.us"
        assert project["tags"] == ["Automation", "Python"]
        assert project["upvotes"] == 0

    def test_list_search_and_tags(self, client, project):
        body = client.get("/api/showcase/projects", params={"q": "timesheet"}).json()
        assert [p["id"] for p in body["items"]] == [project["id"]]
        assert body["tags"] == ["Automation", "Python"]
        assert "trendingScore" in body["items"][0]

        assert client.get("/api/showcase/projects", params={"tag": "Excel"}).json()["items"] == []
        assert client.get("/api/showcase/tags").json()["items"] == ["Automation", "Python"]

    def test_listing_survives_bad_timestamp(self, client, project, store):
        store.put(PROJECTS, "p-bad", {"name": "Bad", "createdAt": 1.7e18})
        response = client.get("/api/showcase/projects")
        assert response.status_code == 200
        assert {p["id"] for p in response.json()["items"]} == {project["id"], "p-bad"}
        assert client.get("/api/showcase/projects/p-bad").status_code == 200

    def test_unknown_project(self, client):
        assert client.get("/api/showcase/projects/p-missing").status_code == 404

    def test_threaded_comments(self, client, project, user_headers, store):
        url = f"/api/showcase/projects/{project['id']}/comments"
        top = client.post(url, json={"body": "Nice work"}, headers=user_headers).json()
        client.post(url, json={"body": "Thanks!", "parentId": top["id"]}, headers=user_headers)

        tree = client.get(url).json()["items"]
        assert [c["body"] for c in tree] == ["Nice work"]
        assert [r["body"] for r in tree[0]["replies"]] == ["Thanks!"]

        flat = client.get(url, params={"threaded": "false"}).json()
        assert flat["total"] == 2
        assert store.get(PROJECTS, project["id"])["commentsCount"] == 2

    def test_blank_comment_rejected(self, client, project):
        url = f"/api/showcase/projects/{project['id']}/comments"
        assert client.post(url, json={"body": "   "}).status_code == 400

    def test_upvote_toggles(self, client, project, user_headers, store):
        url = f"/api/showcase/projects/{project['id']}/upvote"
        assert client.post(url, headers=user_headers).json() == {"status": "upvoted", "upvotes": 1}
        assert store.get(UPVOTES, f"{project['id']}_E-200") is not None
        assert client.post(url, headers=user_headers).json() == {"status": "unvoted", "upvotes": 0}

    def test_upvote_never_negative(self, client, project, store):
        store.put(UPVOTES, f"{project['id']}_guest-1", {"projectId": project["id"], "voterId": "guest-1"})
        url = f"/api/showcase/projects/{project['id']}/upvote"
        assert client.post(url, json={"voterId": "guest-1"}).json()["upvotes"] == 0

    def test_signed_in_voter_cannot_pick_voter_id(self, client, project, user_headers, store):
        url = f"/api/showcase/projects/{project['id']}/upvote"
        client.post(url, json={"voterId": "sock-1"}, headers=user_headers)
        body = client.post(url, json={"voterId": "sock-2"}, headers=user_headers).json()
        assert body == {"status": "unvoted", "upvotes": 0}
        assert store.get(UPVOTES, f"{project['id']}_sock-1") is None

    def test_anonymous_upvote_needs_voter(self, client, project):
        url = f"/api/showcase/projects/{project['id']}/upvote"
        assert client.post(url).status_code == 400

    def test_suggestions(self, client, project, user_headers, store):
        url = f"/api/showcase/projects/{project['id']}/suggestions"
        saved = client.post(url, json={"toName": "Alex Kim"}, headers=user_headers).json()
        assert saved["toNameLower"] == "alex kim"
        assert saved["projectName"] == "Timesheet Bot"
        assert store.get(PROJECTS, project["id"])["suggestionsCount"] == 1

        items = client.get("/api/showcase/suggestions", params={"to": "ALEX KIM"}).json()["items"]
        assert [s["id"] for s in items] == [saved["id"]]

    def test_update_by_maker(self, client, project, user_headers):
        url = f"/api/showcase/projects/{project['id']}"
        updated = client.patch(url, json={"tagline": "Never fill a timesheet again"}, headers=user_headers).json()
        assert updated["tagline"] == "Never fill a timesheet again"
        assert updated["name"] == "Timesheet Bot"

    def test_stranger_cannot_delete(self, client, project):
        headers = {"X-User-Email": "stranger@oneorigin.us"}
        assert client.delete(f"/api/showcase/projects/{project['id']}", headers=headers).status_code == 403

    def test_delete_cascades(self, client, project, user_headers, store):
        pid = project["id"]
        client.post(f"/api/showcase/projects/{pid}/comments", json={"body": "one"}, headers=user_headers)
        client.post(f"/api/showcase/projects/{pid}/comments", json={"body": "two"}, headers=user_headers)
        client.post(f"/api/showcase/projects/{pid}/suggestions", json={"toName": "Alex"}, headers=user_headers)

        body = client.delete(f"/api/showcase/projects/{pid}", headers=user_headers).json()

        assert body == {"ok": True, "deletedComments": 2, "deletedSuggestions": 1}
        assert store.list(COMMENTS) == []
        assert store.list(SUGGESTIONS) == []
        assert client.get(f"/api/showcase/projects/{pid}").status_code == 404

    def test_admin_can_delete(self, client, project, admin_headers):
        assert client.delete(f"/api/showcase/projects/{project['id']}", headers=admin_headers).status_code == 200


class TestProxies:
    """Gemini and YouTube passthroughs."""

    def test_gemini_requires_prompt(self, client):
        response = client.post("/api/gemini", json={})
        assert response.status_code == 400
        assert response.json() == {"error": "Prompt is required"}

    def test_gemini_custom_requires_body(self, client):
        assert client.post("/api/gemini/custom", json={}).json() == {"error": "Request body is required"}

    def test_gemini_forwards(self, client, http):
        http.routes.append((":generateContent", FakeResponse(200, json_data={"candidates": []})))
        assert client.post("/api/gemini", json={"prompt": "hi"}).json() == {"candidates": []}

    def test_gemini_upstream_error(self, client, http):
        http.routes.append((":generateContent", FakeResponse(503, text="busy")))
        response = client.post("/api/gemini", json={"prompt": "hi"})
        assert response.status_code == 503
        assert response.json() == {"error": "Gemini API error: busy"}

    def test_url_check_rejects_private_hosts(self, client):
        response = client.get("/api/url/check", params={"url": "http://192.168.1.1/admin"})
        assert response.status_code == 400
        assert response.json() == {"ok": False, "reason": "Blocked hostname"}

    def test_youtube_check_bad_id(self, client):
        response = client.get("/api/youtube/check", params={"videoId": "nope"})
        assert response.status_code == 400
        assert response.json()["reason"] == "Invalid videoId format"

    def test_youtube_search(self, client, http):
        http.routes.append(("/results", FakeResponse(200, '"/watch?v=abcdefghijk"')))
        response = client.get("/api/youtube/search", params={"query": "excel", "max": 5})
        assert response.headers["cache-control"] == "no-store"
        assert response.json()["videoIds"] == ["abcdefghijk"]

    def test_youtube_search_limit_range(self, client):
        assert client.get("/api/youtube/search", params={"query": "excel", "max": 31}).status_code == 422

    def test_channel_shorts_missing_handle(self, client):
        response = client.get("/api/youtube/channel-shorts")
        assert response.status_code == 400
        assert response.json() == {"ok": False, "reason": "Missing handle", "videoIds": []}


class TestQuickShorts:
    """Feed endpoints."""

    def test_list(self, client, store):
        store.put("quickShorts", "abcdefghijk", {"videoId": "abcdefghijk", "topic": "SQL", "addedAtMs": 5})
        items = client.get("/api/quick-shorts", params={"topic": "sql"}).json()["items"]
        assert [s["videoId"] for s in items] == ["abcdefghijk"]

    def test_refresh_is_admin_only(self, client, user_headers):
        assert client.post("/api/quick-shorts/refresh", headers=user_headers).status_code == 403

    def test_refresh(self, client, admin_headers):
        # no routes on the fake session, so every source comes back empty
        body = client.post("/api/quick-shorts/refresh", headers=admin_headers, json={"maxNew": 5}).json()
        assert body["ok"] is True
        assert body["committed"] == 0
