# chatorders/config.py
import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse, parse_qs, urlencode, urlunparse, ParseResult

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./chatorders.db"


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def strip_query_params(url: str, drop_keys=("sslmode", "channel_binding")) -> str:
    p = urlparse(url)
    qs = parse_qs(p.query, keep_blank_values=True)
    for k in list(qs.keys()):
        if k in drop_keys:
            qs.pop(k)
    new_query = urlencode({k: v[0] for k, v in qs.items()})
    newp = ParseResult(
        scheme=p.scheme, netloc=p.netloc, path=p.path,
        params=p.params, query=new_query, fragment=p.fragment
    )
    return urlunparse(newp)


def normalize_database_url(url: str) -> str:
    # Ensure async driver
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql+asyncpg://"):
        url = strip_query_params(url)
    return url


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the order engine service."""
    database_url: str
    db_echo: bool
    nlu_url: Optional[str]
    nlu_timeout: float
    telegram_bot_token: Optional[str]
    log_level: str
    log_json: bool
    port: int


def load_settings() -> Settings:
    """Build Settings from environment variables (a local .env is loaded on import).

    Invalid NLU_TIMEOUT / PORT values raise ValueError at startup.
    """
    return Settings(
        database_url=normalize_database_url(os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL),
        db_echo=_env_flag("DB_ECHO"),
        nlu_url=os.getenv("NLU_URL") or None,
        nlu_timeout=float(os.getenv("NLU_TIMEOUT", "20")),
        telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN") or None,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_json=_env_flag("LOG_JSON"),
        port=int(os.getenv("PORT", "8000")),
    )
