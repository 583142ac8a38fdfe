"""
Shared fixtures: an in-memory DocumentStore with the same unique constraints
as the Mongo indexes, a recording asset store, and a TestClient wired to both.
"""

import copy
import os
import threading
from collections import defaultdict
from datetime import datetime, timezone

os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ADMIN_EMAIL", "admin@blog.io")
os.environ["DATABASE_URL"] = ""
os.environ["ENV"] = "dev"

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pydantic import BaseModel

from assets import AssetStore, StoredAsset
from cascade import CascadeDeleter
from database import DocumentStore
from errors import ConflictError, UpstreamAssetError
from reconciler import OrphanReconciler
from schemas import REACTION, USER

UNIQUE = {
    USER: [("username",), ("email",)],
    REACTION: [("post_id", "user_id")],
}


def _field(doc, key):
    return doc.get(key)


def _match_value(value, cond):
    if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
        for op, operand in cond.items():
            if op == "$in" and value not in operand:
                return False
            if op == "$nin" and value in operand:
                return False
            if op == "$ne" and value == operand:
                return False
            if op == "$exists" and (value is not None) != bool(operand):
                return False
            if op == "$gt" and not (value is not None and value > operand):
                return False
        return True
    return value == cond


def matches(doc, filter_dict):
    for key, cond in (filter_dict or {}).items():
        if key == "$or":
            if not any(matches(doc, f) for f in cond):
                return False
        elif key == "$and":
            if not all(matches(doc, f) for f in cond):
                return False
        elif not _match_value(_field(doc, key), cond):
            return False
    return True


def _project(doc, projection):
    if not projection:
        return doc
    if all(v == 0 for v in projection.values()):
        return {k: v for k, v in doc.items() if k not in projection}
    keep = {k for k, v in projection.items() if v}
    return {k: v for k, v in doc.items() if k in keep or k == "id"}


class InMemoryStore(DocumentStore):
    """DocumentStore double. `fail_on[(operation, collection)] = exc` makes a call raise."""

    def __init__(self):
        self.data = defaultdict(dict)
        self.fail_on = {}
        self.calls = []
        self._lock = threading.Lock()

    def _check(self, operation, collection):
        self.calls.append((operation, collection))
        exc = self.fail_on.get((operation, collection))
        if exc is not None:
            raise exc

    def get(self, collection, doc_id):
        with self._lock:
            self._check("get", collection)
            doc = self.data[collection].get(doc_id)
            return copy.deepcopy(doc)

    def find(self, collection, filter_dict=None, sort=None, limit=None, projection=None):
        with self._lock:
            self._check("find", collection)
            docs = [d for d in self.data[collection].values() if matches(d, filter_dict)]
            for key, direction in reversed(list(sort or [])):
                docs.sort(key=lambda d: (d.get(key) is not None, d.get(key)), reverse=direction < 0)
            if limit:
                docs = docs[:limit]
            return [copy.deepcopy(_project(d, projection)) for d in docs]

    def create(self, collection, data):
        doc = data.model_dump(mode="json") if isinstance(data, BaseModel) else dict(data)
        with self._lock:
            self._check("create", collection)
            for fields in UNIQUE.get(collection, []):
                key = tuple(doc.get(f) for f in fields)
                if any(tuple(d.get(f) for f in fields) == key for d in self.data[collection].values()):
                    raise ConflictError(f"Duplicate value in {collection}")
            doc_id = str(ObjectId())
            now = datetime.now(timezone.utc)
            doc.update(id=doc_id, created_at=now, updated_at=now)
            self.data[collection][doc_id] = doc
            return doc_id

    def update_by_id(self, collection, doc_id, patch):
        with self._lock:
            self._check("update", collection)
            doc = self.data[collection].get(doc_id)
            if doc is None:
                return None
            doc.update({k: v for k, v in patch.items() if k != "id"})
            doc["updated_at"] = datetime.now(timezone.utc)
            return copy.deepcopy(doc)

    def delete_by_id(self, collection, doc_id):
        with self._lock:
            self._check("delete", collection)
            return self.data[collection].pop(doc_id, None) is not None

    def delete_many(self, collection, filter_dict):
        with self._lock:
            self._check("delete_many", collection)
            ids = [i for i, d in self.data[collection].items() if matches(d, filter_dict)]
            for i in ids:
                del self.data[collection][i]
            return len(ids)

    def count(self, collection, filter_dict=None):
        with self._lock:
            self._check("count", collection)
            return sum(1 for d in self.data[collection].values() if matches(d, filter_dict))

    def aggregate_group_by(self, collection, filter_dict, field):
        with self._lock:
            self._check("aggregate", collection)
            counts = defaultdict(int)
            for d in self.data[collection].values():
                if matches(d, filter_dict):
                    counts[d.get(field)] += 1
            return dict(counts)

    # Test helpers

    def insert(self, collection, **doc):
        """Insert a raw document, bypassing unique checks."""
        doc_id = doc.pop("id", None) or str(ObjectId())
        now = datetime.now(timezone.utc)
        self.data[collection][doc_id] = {"id": doc_id, "created_at": now, "updated_at": now, **doc}
        return doc_id


class RecordingAssetStore(AssetStore):
    def __init__(self):
        self.stored = {}
        self.deleted = []
        self.fail_deletes = False
        self.fail_uploads = False

    def store(self, data, content_type):
        if self.fail_uploads:
            raise UpstreamAssetError()
        key = f"posts/cover-{len(self.stored) + 1}"
        self.stored[key] = data
        return StoredAsset(url=f"https://assets.test/{key}.png", key=key)

    def delete(self, key):
        if not key:
            return True
        if self.fail_deletes:
            return False
        self.deleted.append(key)
        self.stored.pop(key, None)
        return True


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def assets():
    return RecordingAssetStore()


@pytest.fixture
def cascade(store, assets):
    return CascadeDeleter(store, assets)


@pytest.fixture
def reconciler(store, cascade):
    return OrphanReconciler(store, cascade)


@pytest.fixture
def client(store, assets):
    from dependencies import get_assets, get_store
    from main import app

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_assets] = lambda: assets
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# ----------------- API helpers -----------------

PASSWORD = "correct horse"


def register(client, username, email, password=PASSWORD):
    res = client.post("/register", json={"username": username, "email": email, "password": password})
    assert res.status_code == 200, res.text
    return res.json()["id"]


def login(client, email, password=PASSWORD):
    """Log in and return the token; the cookie is dropped so tests pick the user per request."""
    res = client.post("/login", json={"email": email, "password": password})
    assert res.status_code == 200, res.text
    client.cookies.clear()
    return res.json()["token"]


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def create_post(client, token, title="Hello"):
    res = client.post(
        "/post",
        data={"title": title, "summary": "A summary", "content": "Body text"},
        files={"file": ("cover.png", b"\x89PNG fake", "image/png")},
        headers=auth(token),
    )
    assert res.status_code == 201, res.text
    return res.json()
