import copy
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import ai_client
import database
from config import get_settings


def _matches(doc: Dict[str, Any], query: Optional[Dict[str, Any]]) -> bool:
    for key, cond in (query or {}).items():
        value = doc.get(key)
        if isinstance(cond, dict) and "$in" in cond:
            if value not in cond["$in"]:
                return False
        elif value != cond:
            return False
    return True


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]) -> None:
        self._docs = docs

    def sort(self, key_or_list, direction=None):
        keys = key_or_list if isinstance(key_or_list, list) else [(key_or_list, direction or 1)]
        for key, order in reversed(keys):
            self._docs.sort(key=lambda d: d.get(key), reverse=order < 0)
        return self

    def limit(self, n: int):
        if n:
            self._docs = self._docs[:n]
        return self

    def __iter__(self):
        return iter(self._docs)


class FakeCollection:
    """Just enough of pymongo's Collection for the app's queries."""

    def __init__(self) -> None:
        self.docs: List[Dict[str, Any]] = []
        self.indexes: List[Any] = []

    def create_index(self, keys, **kwargs):
        self.indexes.append((keys, kwargs))
        return str(keys)

    def insert_one(self, doc: Dict[str, Any]):
        doc.setdefault("_id", ObjectId())
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    def find_one(self, query=None):
        for doc in self.docs:
            if _matches(doc, query):
                return copy.deepcopy(doc)
        return None

    def find(self, query=None):
        return FakeCursor([copy.deepcopy(d) for d in self.docs if _matches(d, query)])

    def find_one_and_update(self, query, update, return_document=None):
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(update.get("$set", {}))
                return copy.deepcopy(doc)
        return None

    def delete_one(self, query):
        for i, doc in enumerate(self.docs):
            if _matches(doc, query):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    def count_documents(self, query) -> int:
        return sum(1 for d in self.docs if _matches(d, query))


class FakeDB:
    def __init__(self) -> None:
        self._collections: Dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        return self._collections.setdefault(name, FakeCollection())

    def list_collection_names(self) -> List[str]:
        return list(self._collections)


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "unit-test-secret")
    monkeypatch.setenv("GROQ_API_KEY", "")
    monkeypatch.setenv("OCR_SPACE_API_KEY", "")
    monkeypatch.setattr(ai_client, "_client", None)
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def fake_db(monkeypatch) -> FakeDB:
    db = FakeDB()
    monkeypatch.setattr(database, "db", db)
    return db


@pytest.fixture
def client(fake_db) -> TestClient:
    from main import app

    return TestClient(app)


@pytest.fixture
def register(client):
    def _register(email: str = "alice@studymail.com", name: str = "Alice", password: str = "s3cret-pass") -> Dict[str, str]:
        resp = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
        assert resp.status_code == 201, resp.text
        return {"Authorization": f"Bearer {resp.json()['token']}"}

    return _register


@pytest.fixture
def auth_headers(register) -> Dict[str, str]:
    return register()
