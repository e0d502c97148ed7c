from __future__ import annotations

import os

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlmodel import create_engine

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg://church:church@db:5432/churchhub",
)

engine = create_engine(DATABASE_URL, pool_pre_ping=True)


def get_engine() -> Engine:
    return engine


def check_db_ready() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
