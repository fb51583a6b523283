"""
Models package.

目的:
- Alembic / アプリ起動時に全モデルモジュールを import し、
  Base.metadata に確実にテーブル定義を登録する。
"""

from __future__ import annotations

# NOTE:
# import すること自体が目的（副作用で Base.metadata に登録される）なので noqa を付ける。
# FK の参照先があるので順番は pricing → ticket/shipping → print_order の順。

from qbu_api.models import pricing_config  # noqa: F401
from qbu_api.models import shipping  # noqa: F401
from qbu_api.models import ticket  # noqa: F401
from qbu_api.models import print_order  # noqa: F401
from qbu_api.models import audit  # noqa: F401
from qbu_api.models import admin_role  # noqa: F401
