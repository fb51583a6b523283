# qbu_api/models/base.py
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import DeclarativeBase

# Postgres は bigserial、SQLite は INTEGER PRIMARY KEY（autoincrement が効く型）
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


def utcnow() -> datetime:
    """UTC now (timezone aware)"""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """
    すべてのSQLAlchemyモデルの共通Baseクラス
    Alembicがテーブルを検出するためにも必要
    """
    pass
