# qbu_api/db/session.py
from __future__ import annotations

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from qbu_api.core.config import settings


def _database_url(url: str) -> str:
    # Render / Heroku 形式の postgres:// を psycopg(v3) 用に補正
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    return url


def make_engine(url: str) -> Engine:
    # pool_pre_ping: avoid stale connections (useful for Postgres)
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(
        _database_url(url),
        echo=False,
        future=True,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


engine = make_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
)


# FastAPI Dependency
def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# BackgroundTasks 用（リクエストのセッションは閉じた後に動くので別セッションを作る）
def get_session_factory() -> sessionmaker:
    return SessionLocal
