from __future__ import annotations

import os
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Engine, make_url
from sqlmodel import create_engine

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg://iam:iam@db:5432/iam_service",
)
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_ECHO = os.getenv("DB_ECHO", "false").lower() in {"1", "true", "yes"}


def build_engine(url: str = DATABASE_URL) -> Engine:
    options: dict[str, Any] = {"pool_pre_ping": True, "echo": DB_ECHO}
    if make_url(url).get_backend_name() == "sqlite":
        # Request handlers run on a threadpool.
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["pool_size"] = DB_POOL_SIZE
    return create_engine(url, **options)


engine = build_engine()


def get_engine() -> Engine:
    return engine


def check_db_ready() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
