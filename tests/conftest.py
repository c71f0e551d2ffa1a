"""Pytest fixtures for the learning hub API tests."""

import copy

import pytest
from fastapi.testclient import TestClient

from database import DocumentStore, LocalCache, get_store
from gemini import GeminiClient, get_gemini
from schemas import USERS
from youtube import YouTubeScraper, get_scraper


# HTTP doubles

class FakeResponse:
    """Just enough of requests.Response for the scrapers and proxies."""

    def __init__(self, status_code=200, text="", json_data=None, headers=None, url=""):
        self.status_code = status_code
        self.text = text
        self._json = json_data
        self.headers = headers or {}
        self.url = url

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json


class FakeSession:
    """Answers requests from (url substring, response) routes; first match wins."""

    def __init__(self, routes=None, head_status=200):
        self.routes = list(routes or [])
        self.head_status = head_status
        self.calls = []

    def _answer(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        for fragment, response in self.routes:
            if fragment in url:
                if isinstance(response, Exception):
                    raise response
                if not response.url:
                    response.url = url
                return response
        return FakeResponse(404, url=url)

    def get(self, url, **kwargs):
        return self._answer("GET", url, **kwargs)

    def head(self, url, **kwargs):
        self.calls.append(("HEAD", url, kwargs))
        return FakeResponse(self.head_status, url=url)

    def post(self, url, **kwargs):
        return self._answer("POST", url, **kwargs)


# Firestore doubles

class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data) if self._data is not None else None


class FakeDocumentRef:
    def __init__(self, db, collection, doc_id):
        self._db = db
        self._collection = collection
        self.id = doc_id

    def _docs(self):
        return self._db.data.setdefault(self._collection, {})

    def get(self):
        return FakeSnapshot(self, self._docs().get(self.id))

    def set(self, data, merge=False):
        docs = self._docs()
        base = docs.get(self.id, {}) if merge else {}
        docs[self.id] = {**base, **copy.deepcopy(data)}

    def update(self, data):
        docs = self._docs()
        if self.id not in docs:
            raise LookupError(f"No document to update: {self._collection}/{self.id}")
        docs[self.id].update(copy.deepcopy(data))

    def delete(self):
        self._docs().pop(self.id, None)


class FakeQuery:
    def __init__(self, db, collection, filters=()):
        self._db = db
        self._collection = collection
        self._filters = tuple(filters)

    def where(self, filter):
        return FakeQuery(self._db, self._collection, self._filters + (filter,))

    def stream(self):
        for doc_id, data in list(self._db.data.get(self._collection, {}).items()):
            if all(f.op_string == "==" and data.get(f.field_path) == f.value for f in self._filters):
                yield FakeSnapshot(FakeDocumentRef(self._db, self._collection, doc_id), data)


class FakeCollection(FakeQuery):
    def __init__(self, db, name):
        super().__init__(db, name)
        self.id = name

    def document(self, doc_id):
        return FakeDocumentRef(self._db, self._collection, doc_id)


class FakeBatch:
    def __init__(self, db):
        self._db = db
        self._ops = []

    def delete(self, reference):
        self._ops.append(reference)

    def commit(self):
        self._db.commits += 1
        for reference in self._ops:
            reference.delete()
        self._ops = []


class FakeFirestore:
    """In-memory stand-in for google.cloud.firestore.Client."""

    def __init__(self):
        self.data = {}
        self.commits = 0

    def collection(self, name):
        return FakeCollection(self, name)

    def batch(self):
        return FakeBatch(self)

    def collections(self):
        return [FakeCollection(self, name) for name in self.data]


class UnreachableFirestore:
    """A remote whose every call fails, like Firestore with no network."""

    def collection(self, name):
        raise ConnectionError("firestore unreachable")

    def batch(self):
        raise ConnectionError("firestore unreachable")

    def collections(self):
        raise ConnectionError("firestore unreachable")


# Fixtures

@pytest.fixture
def fake_firestore():
    """Return an empty in-memory Firestore."""
    return FakeFirestore()


@pytest.fixture
def store():
    """Return a cache-only document store."""
    return DocumentStore(remote=None, cache=LocalCache())


@pytest.fixture
def remote_store(fake_firestore):
    """Return a store backed by the in-memory Firestore."""
    return DocumentStore(remote=fake_firestore, cache=LocalCache())


@pytest.fixture
def offline_store():
    """Return a store whose remote always fails."""
    return DocumentStore(remote=UnreachableFirestore(), cache=LocalCache())


@pytest.fixture
def http():
    """Return a fake HTTP session with no routes."""
    return FakeSession()


@pytest.fixture
def scraper(http):
    return YouTubeScraper(session=http, timeout=1)


@pytest.fixture
def gemini(http):
    return GeminiClient(api_key="test-key", session=http, timeout=1)


@pytest.fixture
def client(store, scraper, gemini):
    """Return a TestClient wired to the cache-only store and fake HTTP session."""
    from main import app

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_scraper] = lambda: scraper
    app.dependency_overrides[get_gemini] = lambda: gemini
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(store):
    """Register an admin and return the headers that identify them."""
    store.put(USERS, "admin@oneorigin.us", {
        "email": "admin@oneorigin.us",
        "name": "Ada Admin",
        "employeeId": "E-100",
        "role": "Admin",
    })
    return {"X-User-Email": "admin@oneorigin.us"}


@pytest.fixture
def user_headers(store):
    """Register a regular employee and return the headers that identify them."""
    store.put(USERS, "sam@oneorigin.us", {
        "email": "sam@oneorigin.us",
        "name": "Sam Maker",
        "employeeId": "E-200",
        "role": "User",
    })
    return {"X-User-Email": "sam@oneorigin.us"}
