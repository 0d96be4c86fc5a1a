from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Load .env if present
load_dotenv()

# Public web-client bearer; every session starts from it.
DEFAULT_BEARER_TOKEN = (
    "AAAAAAAAAAAAAAAAAAAAANRILgAAAAAAnNwIzUejRCOuH5E6I8xnZz4puTs%3D"
    "1Zv7ttfk8LF81IUq16cHjhLTvJu4FA33AGWWjCpTnA"
)


@dataclass(frozen=True)
class Settings:
    bearer_token: str = os.getenv("TWITTER_BEARER_TOKEN", DEFAULT_BEARER_TOKEN)
    username: str = os.getenv("TWITTER_USERNAME", "")
    password: str = os.getenv("TWITTER_PASSWORD", "")
    email: str = os.getenv("TWITTER_EMAIL", "")
    two_factor_secret: str = os.getenv("TWITTER_TWO_FACTOR_SECRET", "")
    http_timeout: float = float(os.getenv("HTTP_TIMEOUT", "30"))
    guest_token_ttl_hours: float = float(os.getenv("GUEST_TOKEN_TTL_HOURS", "3"))
    max_flow_steps: int = int(os.getenv("MAX_FLOW_STEPS", "32"))
    session_ttl_hours: int = int(os.getenv("SESSION_TTL_HOURS", "24"))
    session_db_path: str = os.getenv("SESSION_DB_PATH", ".twitter_session.sqlite")
    log_level: str = os.getenv("LOG_LEVEL", "WARNING")


settings = Settings()
