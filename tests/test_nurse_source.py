import json
from contextlib import contextmanager

import pytest

from app.config import Settings
from app.db.nurse_source import NurseSource, normalize_nurse

STATIC = [
    {"id": "s1", "name": "Static One", "city": "Tel Aviv", "services": ["Wound Care"], "extra": {"keep": True}},
    {"id": "s2", "name": "Static Two", "city": "Haifa", "services": []},
]


@pytest.fixture
def static_path(tmp_path):
    p = tmp_path / "nurses.json"
    p.write_text(json.dumps(STATIC), encoding="utf-8")
    return str(p)


class _FakeCursor:
    def __init__(self, pool):
        self.pool = pool
        self._rows = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql):
        self.pool.queries.append(sql)
        if self.pool.fail_queries:
            raise RuntimeError("relation \"nurses\" does not exist")
        self._rows = [{"count": len(self.pool.rows)}] if "COUNT" in sql else list(self.pool.rows)

    def fetchall(self):
        return self._rows

    def fetchone(self):
        return self._rows[0] if self._rows else None


class _FakeConn:
    def __init__(self, pool):
        self.pool = pool

    def execute(self, sql):
        if self.pool.fail_probe:
            raise ConnectionError("could not connect to server")

    def cursor(self, row_factory=None):
        return _FakeCursor(self.pool)


class _FakePool:
    def __init__(self, rows=(), fail_probe=False, fail_queries=False):
        self.rows = list(rows)
        self.fail_probe = fail_probe
        self.fail_queries = fail_queries
        self.queries = []
        self.closed = False

    @contextmanager
    def connection(self):
        yield _FakeConn(self)

    def close(self):
        self.closed = True


class _FakeCollection:
    def __init__(self, docs):
        self.docs = docs

    def find(self, query, projection):
        return iter(self.docs)

    def count_documents(self, query):
        return len(self.docs)


class _FakeMongoDb:
    def __init__(self, client):
        self.client = client

    def command(self, name):
        if self.client.fail_ping:
            raise ConnectionError("server selection timeout")
        return {"ok": 1}

    def __getitem__(self, name):
        return _FakeCollection(self.client.docs)


class _FakeMongoClient:
    def __init__(self, docs=(), fail_ping=False):
        self.docs = list(docs)
        self.fail_ping = fail_ping
        self.closed = False

    def __getitem__(self, name):
        return _FakeMongoDb(self)

    def close(self):
        self.closed = True


def _settings(static_path, **kw):
    return Settings(nurses_json_path=static_path, **kw)


def test_disabled_serves_static_file(static_path):
    src = NurseSource(_settings(static_path))
    src.init()
    assert src.mode == "disabled"
    assert src.load_nurses() == STATIC
    health = src.health()["database"]
    assert health["enabled"] is False
    assert health["connected"] is False
    assert "disabled" in health["message"].lower()


def test_postgres_connect_failure_degrades_and_releases_pool(static_path):
    pool = _FakePool(fail_probe=True)
    src = NurseSource(
        _settings(static_path, use_db=True, db_kind="postgres", database_url="postgresql://u:pw@db/x"),
        pg_pool_factory=lambda url: pool,
    )
    src.init()
    assert pool.closed is True
    assert src.mode == "disabled"
    assert "could not connect" in src.init_error
    assert src.load_nurses() == STATIC
    assert src.load_nurses() == STATIC
    health = src.health()["database"]
    assert health["enabled"] is True
    assert health["kind"] == "postgres"
    assert health["connected"] is False
    assert "could not connect" in health["message"]


def test_postgres_missing_url_is_init_failure(static_path):
    calls = []
    src = NurseSource(
        _settings(static_path, use_db=True, db_kind="postgres"),
        pg_pool_factory=lambda url: calls.append(url),
    )
    src.init()
    assert calls == []
    assert src.init_error == "DATABASE_URL not configured"
    assert src.load_nurses() == STATIC


def test_unknown_kind_is_init_failure(static_path):
    src = NurseSource(_settings(static_path, use_db=True, db_kind="sqlite"))
    src.init()
    assert "Unknown DB_KIND" in src.init_error
    assert src.load_nurses() == STATIC


def test_postgres_rows_are_normalized(static_path):
    pool = _FakePool(rows=[
        {"id": 7, "name": "Row Nurse", "services": None, "expertiseTags": ["ICU"], "availability": None,
         "city": "Haifa", "state": "HA", "rating": "4.5", "reviews": "12"},
    ])
    src = NurseSource(
        _settings(static_path, use_db=True, database_url="postgresql://db/x"),
        pg_pool_factory=lambda url: pool,
    )
    src.init()
    assert src.mode == "postgres"
    assert src.load_nurses() == [{
        "id": "7", "name": "Row Nurse", "services": [], "expertiseTags": ["ICU"], "availability": [],
        "city": "Haifa", "state": "HA", "rating": 4.5, "reviewsCount": 12,
    }]
    health = src.health()["database"]
    assert health["connected"] is True
    assert health["count"] == 1
    src.close()
    assert pool.closed is True
    assert src.mode == "disabled"


def test_postgres_query_error_falls_back_to_static(static_path):
    pool = _FakePool(rows=[{"id": "x"}])
    src = NurseSource(
        _settings(static_path, use_db=True, database_url="postgresql://db/x"),
        pg_pool_factory=lambda url: pool,
    )
    src.init()
    pool.fail_queries = True
    assert src.load_nurses() == STATIC
    health = src.health()["database"]
    assert health["connected"] is False
    assert health["message"].startswith("Database error")


def test_mongo_documents_loaded(static_path):
    client = _FakeMongoClient(docs=[
        {"id": "m1", "name": "Doc Nurse", "services": ["Home Care"], "rating": 4, "reviewsCount": 3,
         "lat": 32.1, "lng": 34.8},
    ])
    src = NurseSource(
        _settings(static_path, use_db=True, db_kind="mongodb", mongodb_uri="mongodb://db"),
        mongo_client_factory=lambda uri: client,
    )
    src.init()
    assert src.mode == "mongodb"
    nurses = src.load_nurses()
    assert nurses[0]["id"] == "m1"
    assert nurses[0]["reviewsCount"] == 3
    assert nurses[0]["lat"] == 32.1
    assert src.health()["database"]["count"] == 1


def test_mongo_ping_failure_closes_client(static_path):
    client = _FakeMongoClient(fail_ping=True)
    src = NurseSource(
        _settings(static_path, use_db=True, db_kind="mongodb", mongodb_uri="mongodb://user:pw@db"),
        mongo_client_factory=lambda uri: client,
    )
    src.init()
    assert client.closed is True
    assert src.mode == "disabled"
    assert src.load_nurses() == STATIC


def test_normalize_nurse_defaults():
    n = normalize_nurse({"id": "a", "rating": None})
    assert n["rating"] == 0.0
    assert n["reviewsCount"] == 0
    assert n["services"] == []
    assert "lat" not in n


def test_postgres_rows_carry_location(static_path):
    pool = _FakePool(rows=[{"id": "p1", "name": "Geo Nurse", "lat": "32.08", "lng": 34.78}])
    src = NurseSource(
        _settings(static_path, use_db=True, database_url="postgresql://db/x"),
        pg_pool_factory=lambda url: pool,
    )
    src.init()
    nurse = src.load_nurses()[0]
    assert (nurse["lat"], nurse["lng"]) == (32.08, 34.78)
    select = pool.queries[-1]
    assert "lat" in select and "lng" in select
