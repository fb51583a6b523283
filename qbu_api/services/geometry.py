from __future__ import annotations

"""
geometry.py

ブロック座標まわり

- ベースブロック: キー "x,y,z"（整数、ブロック中心）。1 辺 1 unit
- 補完ブロック: キー "sx,sy,sz"（0.5 unit グリッド上の最小角）。1 辺 0.5 unit
"""

from collections import deque
from dataclasses import dataclass
from typing import Iterable, Set, Tuple

Coord = Tuple[int, int, int]

SUPPORT_EDGE_WORLD = 0.5

_NEIGHBORS: tuple[Coord, ...] = (
    (1, 0, 0),
    (-1, 0, 0),
    (0, 1, 0),
    (0, -1, 0),
    (0, 0, 1),
    (0, 0, -1),
)


@dataclass(frozen=True)
class MixedBBox:
    min: Tuple[float, float, float]
    max: Tuple[float, float, float]
    size: Tuple[float, float, float]

    @property
    def max_dim(self) -> float:
        return max(self.size)


def parse_key(key: str) -> Coord:
    """
    "x,y,z" → (x, y, z)

    Raises:
        ValueError: 3 要素の整数でない
    """
    parts = str(key).split(",")
    if len(parts) != 3:
        raise ValueError(f"bad block key: {key!r}")
    x, y, z = (int(p.strip()) for p in parts)
    return (x, y, z)


def parse_keys(keys: Iterable[str]) -> Set[Coord]:
    return {parse_key(k) for k in keys}


def base_to_sub_cells(c: Coord) -> list[Coord]:
    """ベースブロック 1 個を 0.5 unit の 8 セルに分解（最小角は 2x-1）"""
    mx, my, mz = 2 * c[0] - 1, 2 * c[1] - 1, 2 * c[2] - 1
    return [(mx + dx, my + dy, mz + dz) for dx in (0, 1) for dy in (0, 1) for dz in (0, 1)]


def compute_mixed_bbox(base: Iterable[Coord], support: Iterable[Coord]) -> MixedBBox:
    lo = [float("inf")] * 3
    hi = [float("-inf")] * 3

    for c in base:
        for i in range(3):
            lo[i] = min(lo[i], c[i] - 0.5)
            hi[i] = max(hi[i], c[i] + 0.5)

    for s in support:
        for i in range(3):
            w = s[i] * SUPPORT_EDGE_WORLD
            lo[i] = min(lo[i], w)
            hi[i] = max(hi[i], w + SUPPORT_EDGE_WORLD)

    if lo[0] == float("inf"):
        # 空なら 1 unit 扱い
        lo = [-0.5, -0.5, -0.5]
        hi = [0.5, 0.5, 0.5]

    return MixedBBox(
        min=(lo[0], lo[1], lo[2]),
        max=(hi[0], hi[1], hi[2]),
        size=(hi[0] - lo[0], hi[1] - lo[1], hi[2] - lo[2]),
    )


def count_components(base: Iterable[Coord], support: Iterable[Coord]) -> int:
    """
    面で接しているものを 1 パーツとして数える（0.5 unit グリッド上で 6 近傍）。
    """
    cells: Set[Coord] = set(support)
    for c in base:
        cells.update(base_to_sub_cells(c))

    seen: Set[Coord] = set()
    components = 0
    for start in cells:
        if start in seen:
            continue
        components += 1
        seen.add(start)
        queue = deque([start])
        while queue:
            x, y, z = queue.popleft()
            for dx, dy, dz in _NEIGHBORS:
                n = (x + dx, y + dy, z + dz)
                if n in cells and n not in seen:
                    seen.add(n)
                    queue.append(n)
    return components
