"""Process configuration for the nurse matching service.

All settings come from environment variables. A ``.env`` file at the project
root is loaded first when present; it never overrides variables that are
already set in the process environment.

Model endpoint:

- AZURE_OPENAI_URI (full endpoint URI), or AZURE_OPENAI_ENDPOINT +
  AZURE_OPENAI_API_VERSION to build one
- AZURE_OPENAI_KEY, AZURE_OPENAI_DEPLOYMENT
- LLM_API_VARIANT (responses | chat, default: responses)
- LLM_TIMEOUT_SECONDS, LLM_MAX_CANDIDATES, LLM_MAX_RETRIES, LLM_BACKOFF_INITIAL_MS

Candidate store:

- USE_DB (true/false), DB_KIND (postgres | mongodb)
- DATABASE_URL, MONGODB_URI, MONGODB_DB, MONGODB_COLLECTION
- NURSES_JSON_PATH (static fallback file)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
DEFAULT_NURSES_JSON = os.path.join(PROJECT_ROOT, "sample_data", "nurses.json")


@dataclass(frozen=True)
class Settings:
    azure_openai_uri: Optional[str] = None
    azure_openai_endpoint: Optional[str] = None
    azure_openai_api_version: Optional[str] = None
    azure_openai_key: Optional[str] = None
    azure_openai_deployment: Optional[str] = None
    llm_api_variant: str = "responses"
    llm_timeout_seconds: float = 20.0
    llm_max_candidates: int = 50
    llm_max_retries: int = 2
    llm_backoff_initial_ms: int = 250

    use_db: bool = False
    db_kind: str = "postgres"
    database_url: Optional[str] = None
    mongodb_uri: Optional[str] = None
    mongodb_db: str = "wondercare"
    mongodb_collection: str = "nurses"
    nurses_json_path: str = DEFAULT_NURSES_JSON

    log_level: str = "INFO"

    @property
    def retry_delays(self) -> Tuple[float, ...]:
        return backoff_delays(self.llm_backoff_initial_ms / 1000.0, self.llm_max_retries)


def backoff_delays(initial: float, retries: int) -> Tuple[float, ...]:
    """Precomputed delay table: ``initial`` doubling once per retry."""
    return tuple(initial * (2 ** i) for i in range(max(0, retries)))


def load_env_file(path: Optional[str] = None) -> None:
    """Load KEY=VALUE lines from a .env file into os.environ.

    Only sets variables that aren't already present in the process environment.
    """
    env_path = path or os.path.join(PROJECT_ROOT, ".env")
    if not os.path.isfile(env_path):
        return
    try:
        with open(env_path, "r", encoding="utf-8") as f:
            for line in f:
                s = line.strip()
                if not s or s.startswith("#") or "=" not in s:
                    continue
                key, val = s.split("=", 1)
                key = key.strip()
                val = val.strip().strip('"').strip("'")
                if key and not os.environ.get(key):
                    os.environ[key] = val
    except OSError as exc:
        logger.warning("Could not read %s: %s", env_path, exc)


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %s", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Build Settings from the environment (after loading .env if present)."""
    load_env_file(env_file)
    return Settings(
        azure_openai_uri=_env("AZURE_OPENAI_URI"),
        azure_openai_endpoint=_env("AZURE_OPENAI_ENDPOINT"),
        azure_openai_api_version=_env("AZURE_OPENAI_API_VERSION"),
        azure_openai_key=_env("AZURE_OPENAI_KEY"),
        azure_openai_deployment=_env("AZURE_OPENAI_DEPLOYMENT"),
        llm_api_variant=(_env("LLM_API_VARIANT") or "responses").lower(),
        llm_timeout_seconds=_env_float("LLM_TIMEOUT_SECONDS", 20.0),
        llm_max_candidates=_env_int("LLM_MAX_CANDIDATES", 50),
        llm_max_retries=_env_int("LLM_MAX_RETRIES", 2),
        llm_backoff_initial_ms=_env_int("LLM_BACKOFF_INITIAL_MS", 250),
        use_db=(_env("USE_DB") or "").lower() == "true",
        db_kind=(_env("DB_KIND") or "postgres").lower(),
        database_url=_env("DATABASE_URL"),
        mongodb_uri=_env("MONGODB_URI"),
        mongodb_db=_env("MONGODB_DB") or "wondercare",
        mongodb_collection=_env("MONGODB_COLLECTION") or "nurses",
        nurses_json_path=_env("NURSES_JSON_PATH") or DEFAULT_NURSES_JSON,
        log_level=(_env("LOG_LEVEL") or "INFO").upper(),
    )
