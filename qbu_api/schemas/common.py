from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelIn(BaseModel):
    """snake_case / camelCase どちらのキーでも受け付ける入力モデル"""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="ignore")


def clip_text(v: Any, max_len: int) -> Optional[str]:
    """文字列なら trim して max_len で切る。空や文字列以外は None"""
    if not isinstance(v, str):
        return None
    s = v.strip()[:max_len]
    return s or None
