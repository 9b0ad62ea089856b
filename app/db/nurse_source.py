"""Nurse candidate source: PostgreSQL, MongoDB, or the bundled JSON file.

The store is chosen once at startup from Settings (USE_DB / DB_KIND). If the
store can't be initialized the source degrades to the JSON file and keeps the
failure reason for /health. Per-request query errors are logged and answered
from the JSON file as well; they never reach the caller.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Optional

from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool
from pymongo import MongoClient

from app.config import Settings
from app.services.redact import excerpt

logger = logging.getLogger(__name__)

KIND_POSTGRES = "postgres"
KIND_MONGODB = "mongodb"
MODE_DISABLED = "disabled"

_PG_SELECT = """
    SELECT
        id,
        name,
        services,
        expertise_tags AS "expertiseTags",
        availability,
        city,
        state,
        rating,
        reviews,
        lat,
        lng
    FROM nurses
    ORDER BY id
"""

_MONGO_PROJECTION = {
    "_id": 0,
    "id": 1,
    "name": 1,
    "services": 1,
    "expertiseTags": 1,
    "availability": 1,
    "city": 1,
    "state": 1,
    "rating": 1,
    "reviews": 1,
    "reviewsCount": 1,
    "lat": 1,
    "lng": 1,
}


def open_pg_pool(conninfo: str) -> ConnectionPool:
    return ConnectionPool(conninfo, min_size=1, max_size=5, timeout=5.0, open=True)


def open_mongo_client(uri: str) -> MongoClient:
    return MongoClient(uri, serverSelectionTimeoutMS=5000, connectTimeoutMS=5000)


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def normalize_nurse(row: Dict[str, Any]) -> Dict[str, Any]:
    """Map a store row/document onto the candidate shape used everywhere else."""
    reviews = row.get("reviewsCount")
    if reviews is None:
        reviews = row.get("reviews")
    nurse = {
        "id": str(row.get("id")),
        "name": row.get("name"),
        "services": list(row.get("services") or []),
        "expertiseTags": list(row.get("expertiseTags") or []),
        "availability": row.get("availability") or [],
        "city": row.get("city"),
        "state": row.get("state"),
        "rating": _to_float(row.get("rating")),
        "reviewsCount": _to_int(reviews),
    }
    if row.get("lat") is not None and row.get("lng") is not None:
        nurse["lat"] = _to_float(row["lat"])
        nurse["lng"] = _to_float(row["lng"])
    return nurse


class NurseSource:
    def __init__(
        self,
        settings: Settings,
        *,
        pg_pool_factory: Callable[[str], Any] = open_pg_pool,
        mongo_client_factory: Callable[[str], Any] = open_mongo_client,
    ) -> None:
        self.settings = settings
        self.enabled = settings.use_db
        self.kind = settings.db_kind
        self.json_path = settings.nurses_json_path
        self.init_error: Optional[str] = None
        self._pg_pool_factory = pg_pool_factory
        self._mongo_client_factory = mongo_client_factory
        self._pool = None
        self._mongo_client = None
        self._mongo_db = None

    @property
    def mode(self) -> str:
        if self._pool is not None:
            return KIND_POSTGRES
        if self._mongo_db is not None:
            return KIND_MONGODB
        return MODE_DISABLED

    def _secrets(self):
        return (self.settings.database_url, self.settings.mongodb_uri)

    def init(self) -> None:
        """Connect to the configured store; on any failure fall back to JSON."""
        if not self.enabled:
            logger.info("Database disabled (USE_DB=false), using JSON fallback")
            return
        try:
            if self.kind == KIND_POSTGRES:
                if not self.settings.database_url:
                    raise RuntimeError("DATABASE_URL not configured")
                self._pool = self._pg_pool_factory(self.settings.database_url)
                with self._pool.connection() as conn:
                    conn.execute("SELECT 1")
                logger.info("Connected to PostgreSQL database")
            elif self.kind == KIND_MONGODB:
                if not self.settings.mongodb_uri:
                    raise RuntimeError("MONGODB_URI not configured")
                self._mongo_client = self._mongo_client_factory(self.settings.mongodb_uri)
                db = self._mongo_client[self.settings.mongodb_db]
                db.command("ping")
                self._mongo_db = db
                logger.info("Connected to MongoDB database %s", self.settings.mongodb_db)
            else:
                raise RuntimeError(f"Unknown DB_KIND: {self.kind}")
        except Exception as exc:
            self.init_error = excerpt(str(exc), secrets=self._secrets())
            logger.error("Database initialization failed: %s. Falling back to JSON data", self.init_error)
            self.close()

    def close(self) -> None:
        """Release any open pool/client. Safe to call more than once."""
        pool, self._pool = self._pool, None
        client, self._mongo_client = self._mongo_client, None
        self._mongo_db = None
        if pool is not None:
            try:
                pool.close()
            except Exception as exc:
                logger.warning("Error closing PostgreSQL pool: %s", exc)
        if client is not None:
            try:
                client.close()
            except Exception as exc:
                logger.warning("Error closing MongoDB client: %s", exc)

    def load_static(self) -> List[Dict[str, Any]]:
        with open(self.json_path, "r", encoding="utf-8") as f:
            return json.load(f)

    def load_nurses(self) -> List[Dict[str, Any]]:
        mode = self.mode
        if mode == MODE_DISABLED:
            logger.debug("Loading nurses from JSON file %s", self.json_path)
            return self.load_static()
        try:
            if mode == KIND_POSTGRES:
                return self._load_postgres()
            return self._load_mongo()
        except Exception as exc:
            logger.error(
                "Error loading nurses from %s: %s. Falling back to JSON data",
                mode,
                excerpt(str(exc), secrets=self._secrets()),
            )
            return self.load_static()

    def _load_postgres(self) -> List[Dict[str, Any]]:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(_PG_SELECT)
                rows = cur.fetchall()
        return [normalize_nurse(r) for r in rows]

    def _load_mongo(self) -> List[Dict[str, Any]]:
        collection = self._mongo_db[self.settings.mongodb_collection]
        return [normalize_nurse(doc) for doc in collection.find({}, _MONGO_PROJECTION)]

    def health(self) -> Dict[str, Any]:
        db: Dict[str, Any] = {
            "enabled": self.enabled,
            "kind": self.kind,
            "connected": False,
            "message": "",
            "count": 0,
        }
        if not self.enabled:
            db["message"] = "Database disabled (JSON fallback)"
            return {"database": db}
        try:
            mode = self.mode
            if mode == KIND_POSTGRES:
                with self._pool.connection() as conn:
                    with conn.cursor(row_factory=dict_row) as cur:
                        cur.execute("SELECT COUNT(*) AS count FROM nurses")
                        row = cur.fetchone()
                db["connected"] = True
                db["count"] = _to_int((row or {}).get("count"))
                db["message"] = "PostgreSQL connected"
            elif mode == KIND_MONGODB:
                collection = self._mongo_db[self.settings.mongodb_collection]
                db["count"] = int(collection.count_documents({}))
                db["connected"] = True
                db["message"] = "MongoDB connected"
            elif self.init_error:
                db["message"] = f"Database not initialized: {self.init_error}"
            else:
                db["message"] = "Database not initialized"
        except Exception as exc:
            db["connected"] = False
            db["message"] = f"Database error: {excerpt(str(exc), secrets=self._secrets())}"
        return {"database": db}
