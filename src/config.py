"""Centralized configuration for the Nova agent.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/nova-agent/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or the call fails.
    Errors are logged but never raised so that local-dev fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415  lazy import keeps boto3 off the test path

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/nova-agent/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _resolve(name: str) -> str | None:
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value
    if _ON_AWS:
        return _get_ssm_parameter(name)
    return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = _resolve(name)
    if value:
        return value
    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /nova-agent/{name} (AWS)."
    )


def _optional_secret(name: str) -> str:
    return _resolve(name) or ""


# ── Runtime environment ─────────────────────────────────────────────
APP_ENV: str = os.getenv("APP_ENV", "development").lower()
IS_PRODUCTION: bool = APP_ENV == "production"

# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
MODEL_MAX_TOKENS: int = int(os.getenv("MODEL_MAX_TOKENS", "2048"))
MODEL_MAX_RETRIES: int = int(os.getenv("MODEL_MAX_RETRIES", "3"))
MODEL_INITIAL_BACKOFF_SECONDS: float = float(os.getenv("MODEL_INITIAL_BACKOFF_SECONDS", "1.0"))

# ── Agent loop ──────────────────────────────────────────────────────
AGENT_MAX_ITERATIONS: int = int(os.getenv("AGENT_MAX_ITERATIONS", "10"))
AGENT_TURN_TIMEOUT_SECONDS: float = float(os.getenv("AGENT_TURN_TIMEOUT_SECONDS", "120"))

# ── Durable store ───────────────────────────────────────────────────
DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///nova_agent.db")

# ── Google (Calendar + Gmail) ───────────────────────────────────────
GOOGLE_CLIENT_ID: str = _optional_secret("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET: str = _optional_secret("GOOGLE_CLIENT_SECRET")
GOOGLE_API_BASE_URL: str = "https://www.googleapis.com"
GOOGLE_TOKEN_URL: str = "https://oauth2.googleapis.com/token"
GOOGLE_API_TIMEOUT_SECONDS: float = float(os.getenv("GOOGLE_API_TIMEOUT_SECONDS", "15"))
CALENDAR_TIMEZONE: str = os.getenv("CALENDAR_TIMEZONE", "UTC")

# ── Embeddings / semantic search ────────────────────────────────────
HUGGINGFACE_API_KEY: str = _optional_secret("HUGGINGFACE_API_KEY")
EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "BAAI/bge-small-en-v1.5")
EMBEDDING_DIMENSIONS: int = int(os.getenv("EMBEDDING_DIMENSIONS", "384"))
EMBEDDING_BASE_URL: str = "https://api-inference.huggingface.co"
EMBEDDING_TIMEOUT_SECONDS: float = float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "20"))
SEMANTIC_MATCH_THRESHOLD: float = float(os.getenv("SEMANTIC_MATCH_THRESHOLD", "0.5"))

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
