from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Mapping

from fastapi import Request
from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from qbu_api.models.print_order import OPTIONAL_SNAPSHOT_COLUMNS, PrintOrderORM

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchemaCapabilities:
    """
    起動時に 1 回だけ print_orders の列を確認した結果。
    マイグレーション途中の DB でも、存在しない snapshot 列だけを外して INSERT できるようにする。
    """

    print_order_columns: FrozenSet[str] = field(default_factory=frozenset)
    detected: bool = False

    @classmethod
    def assume_current(cls) -> "SchemaCapabilities":
        return cls(frozenset(c.name for c in PrintOrderORM.__table__.columns), detected=False)

    @classmethod
    def detect(cls, engine: Engine) -> "SchemaCapabilities":
        try:
            cols = inspect(engine).get_columns(PrintOrderORM.__tablename__)
        except SQLAlchemyError:
            logger.warning("schema inspection failed; assuming current schema", exc_info=True)
            return cls.assume_current()

        names = frozenset(c["name"] for c in cols)
        if not names:
            logger.warning("print_orders table not found; assuming current schema")
            return cls.assume_current()

        caps = cls(names, detected=True)
        if caps.missing_optional:
            logger.warning("print_orders is missing optional columns: %s", ", ".join(sorted(caps.missing_optional)))
        return caps

    @property
    def missing_optional(self) -> FrozenSet[str]:
        return frozenset(c for c in OPTIONAL_SNAPSHOT_COLUMNS if c not in self.print_order_columns)

    def filter_print_order_values(self, values: Mapping[str, Any]) -> dict[str, Any]:
        missing = self.missing_optional
        return {k: v for k, v in values.items() if k not in missing}


def get_schema_capabilities(request: Request) -> SchemaCapabilities:
    caps = getattr(request.app.state, "schema_capabilities", None)
    return caps if caps is not None else SchemaCapabilities.assume_current()
