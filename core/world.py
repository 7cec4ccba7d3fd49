"""
World — 已加载区块集合

加载一次、只读快照：
- World.from_test()      一个测试区块，位于网格原点
- World.from_storage()   逐个坐标向存储层请求区块

错误传播策略:
- StorageUnavailable 直接向调用方抛出（整个世界加载失败）
- MalformedSection / CorruptChunk 只影响当前区块：记录错误并以空区块占位
- 未生成的区块 (get_chunk 返回 None) 以空区块占位，不算错误
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import numpy as np

from core.chunk_builder import Chunk, ChunkBuilder
from core.errors import CorruptChunk, MalformedSection

logger = logging.getLogger(__name__)

ChunkCoord = Tuple[int, int]


@dataclass
class WorldLoadReport:
    """世界加载统计"""
    requested: int = 0
    loaded: int = 0
    not_generated: int = 0
    failed: int = 0
    total_blocks: int = 0
    elapsed_sec: float = 0.0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0


@dataclass(frozen=True)
class World:
    loaded_chunks: Tuple[Chunk, ...] = ()
    report: WorldLoadReport = field(default_factory=WorldLoadReport, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "loaded_chunks", tuple(self.loaded_chunks))

    # ── 构造 ────────────────────────────────────────────────────

    @classmethod
    def from_test(cls) -> "World":
        chunk = ChunkBuilder.build_test()
        report = WorldLoadReport(requested=1, loaded=1, total_blocks=chunk.block_count)
        return cls((chunk,), report)

    @classmethod
    def from_storage(
        cls,
        storage,
        coords: Iterable[ChunkCoord],
        builder: Optional[ChunkBuilder] = None,
    ) -> "World":
        """
        从存储层加载指定坐标的区块。

        Parameters
        ----------
        storage : 任何提供 get_chunk(x, z) -> Optional[ChunkDescriptor] 的对象
        coords : 区块网格坐标序列，加载顺序即结果顺序
        builder : 可选 ChunkBuilder（自定义方块注册表时使用）

        Raises
        ------
        StorageUnavailable
            存储不可读
        """
        builder = builder or ChunkBuilder()
        report = WorldLoadReport()
        chunks: List[Chunk] = []
        t0 = time.perf_counter()

        for x, z in coords:
            report.requested += 1
            try:
                descriptor = storage.get_chunk(x, z)
                if descriptor is None:
                    chunk = builder.build_empty(x, z)
                    report.not_generated += 1
                else:
                    chunk = builder.build(descriptor)
                    report.loaded += 1
            except (MalformedSection, CorruptChunk) as exc:
                logger.error("Failed to load chunk (%d, %d): %s", x, z, exc)
                report.errors.append(f"({x}, {z}): {exc}")
                report.failed += 1
                chunk = builder.build_empty(x, z)

            report.total_blocks += chunk.block_count
            chunks.append(chunk)

        report.elapsed_sec = time.perf_counter() - t0
        logger.info(
            "World loaded: %d chunks requested, %d loaded, %d not generated, "
            "%d failed, %d blocks (%.2fs)",
            report.requested, report.loaded, report.not_generated,
            report.failed, report.total_blocks, report.elapsed_sec,
        )
        return cls(tuple(chunks), report)

    # ── 查询 ────────────────────────────────────────────────────

    def chunk_at(self, x: int, z: int) -> Optional[Chunk]:
        for chunk in self.loaded_chunks:
            if chunk.chunk_x == x and chunk.chunk_z == z:
                return chunk
        return None

    @property
    def block_count(self) -> int:
        return sum(c.block_count for c in self.loaded_chunks)

    def block_statistics(self) -> Dict[int, int]:
        """统计各 BlockId 的数量"""
        stats: Dict[int, int] = {}
        for chunk in self.loaded_chunks:
            ids, counts = _unique_ids(chunk)
            for block_id, n in zip(ids, counts):
                stats[block_id] = stats.get(block_id, 0) + n
        return dict(sorted(stats.items(), key=lambda kv: -kv[1]))

    def __iter__(self) -> Iterator[Chunk]:
        return iter(self.loaded_chunks)

    def __len__(self) -> int:
        return len(self.loaded_chunks)

    def __repr__(self) -> str:
        return f"World(chunks={len(self.loaded_chunks)}, blocks={self.block_count})"


def _unique_ids(chunk: Chunk) -> Tuple[List[int], List[int]]:
    if chunk.is_empty:
        return [], []
    ids, counts = np.unique(chunk.blocks["id"], return_counts=True)
    return [int(i) for i in ids], [int(n) for n in counts]


# ── 坐标生成 ────────────────────────────────────────────────────

def square_coords(center_x: int, center_z: int, radius: int) -> List[ChunkCoord]:
    """以 (center_x, center_z) 为中心、边长 2r+1 的区块方阵，行优先"""
    if radius < 0:
        raise ValueError("radius must be >= 0")
    return [
        (x, z)
        for z in range(center_z - radius, center_z + radius + 1)
        for x in range(center_x - radius, center_x + radius + 1)
    ]


def spiral_coords(radius: int, center_x: int = 0, center_z: int = 0) -> List[ChunkCoord]:
    """从中心向外螺旋展开的区块坐标，共 (2r+1)^2 个"""
    if radius < 0:
        raise ValueError("radius must be >= 0")
    coords = []
    x = z = 0
    dx, dz = 0, -1
    for _ in range((radius * 2 + 1) ** 2):
        coords.append((center_x + x, center_z + z))
        if x == z or (x < 0 and x == -z) or (x > 0 and x == 1 - z):
            dx, dz = -dz, dx
        x += dx
        z += dz
    return coords
