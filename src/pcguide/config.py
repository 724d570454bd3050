from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Literal

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[2]
DEFAULT_PARTS_PATH = ROOT / "data" / "parts.json"
DEFAULT_DB_PATH = ROOT / "data" / "pcguide.db"
DEFAULT_GUIDES_PATH = ROOT / "data" / "guides.json"

CartStore = Literal["memory", "sqlite"]

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    parts_path: Path = DEFAULT_PARTS_PATH
    guides_path: Path = DEFAULT_GUIDES_PATH
    cart_store: CartStore = "memory"
    db_path: Path = DEFAULT_DB_PATH
    session_ttl_seconds: int = 7 * 24 * 3600
    session_cleanup_interval_seconds: int = 3600
    tax_rate: float = 0.0825
    currency: str = "USD"
    region: str = "US"
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])


def load_settings() -> Settings:
    load_dotenv(ROOT / ".env")
    cart_store = _env_str("PCGUIDE_CART_STORE", "memory").lower()
    origins = [o.strip() for o in _env_str("PCGUIDE_CORS_ORIGINS", "*").split(",") if o.strip()]
    return Settings(
        parts_path=Path(_env_str("PCGUIDE_PARTS_PATH", str(DEFAULT_PARTS_PATH))),
        guides_path=Path(_env_str("PCGUIDE_GUIDES_PATH", str(DEFAULT_GUIDES_PATH))),
        cart_store="sqlite" if cart_store == "sqlite" else "memory",
        db_path=Path(_env_str("PCGUIDE_DB_PATH", str(DEFAULT_DB_PATH))),
        session_ttl_seconds=_env_int("PCGUIDE_SESSION_TTL_SECONDS", 7 * 24 * 3600),
        session_cleanup_interval_seconds=_env_int("PCGUIDE_SESSION_CLEANUP_INTERVAL_SECONDS", 3600),
        tax_rate=_env_float("PCGUIDE_TAX_RATE", 0.0825),
        currency=_env_str("PCGUIDE_CURRENCY", "USD"),
        region=_env_str("PCGUIDE_REGION", "US"),
        log_level=_env_str("PCGUIDE_LOG_LEVEL", "INFO").upper(),
        cors_origins=origins or ["*"],
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
