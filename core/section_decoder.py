"""
SectionDecoder — 调色板 Section → 稀疏方块列表

一个 Section 覆盖 16×16×16 体素：
- data 为 None: 均匀 Section，整块都是 palette[0]
- data 为 4096 个调色板索引: 索引 i 对应局部坐标
      x = i & 0xF,  z = (i >> 4) & 0xF,  y = y_index*16 + (i >> 8)
  调色板槽位 0 视为空气，不输出方块

输出是 BLOCK_DTYPE 结构化数组，按体素索引 i 升序排列。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

import numpy as np

from core.block_registry import AIR, BlockRegistry
from core.errors import MalformedSection

logger = logging.getLogger(__name__)

SECTION_SIZE = 16
SECTION_VOLUME = SECTION_SIZE ** 3  # 4096

# 每条记录 = 一个 Block，坐标相对区块水平原点，y 为世界绝对高度
BLOCK_DTYPE = np.dtype([
    ("id", "<u4"),
    ("x", "<i4"),
    ("y", "<i4"),
    ("z", "<i4"),
])

_ALL_INDICES = np.arange(SECTION_VOLUME, dtype=np.int32)

_default_registry: Optional[BlockRegistry] = None


def default_registry() -> BlockRegistry:
    """进程内共享的默认注册表（未知名称只警告一次）"""
    global _default_registry
    if _default_registry is None:
        _default_registry = BlockRegistry()
    return _default_registry


@dataclass(frozen=True)
class Block:
    """单个解码后的方块"""
    id: int
    x: int
    y: int
    z: int

    @classmethod
    def from_record(cls, record) -> "Block":
        return cls(int(record["id"]), int(record["x"]), int(record["y"]), int(record["z"]))


@dataclass(frozen=True)
class Section:
    """一个 16×16×16 的 Section（存储层的输入）"""
    y_index: int
    palette: Tuple[str, ...]
    data: Optional[np.ndarray] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "palette", tuple(self.palette))
        if self.data is not None and not isinstance(self.data, np.ndarray):
            object.__setattr__(self, "data", np.asarray(self.data))

    def __eq__(self, other) -> bool:
        if not isinstance(other, Section):
            return NotImplemented
        if (self.y_index, self.palette) != (other.y_index, other.palette):
            return False
        if self.data is None or other.data is None:
            return self.data is None and other.data is None
        return bool(np.array_equal(self.data, other.data))

    @property
    def y_offset(self) -> int:
        return self.y_index * SECTION_SIZE

    @property
    def is_uniform(self) -> bool:
        return self.data is None


def empty_blocks() -> np.ndarray:
    return np.empty(0, dtype=BLOCK_DTYPE)


def local_coords(i: int, y_index: int = 0) -> Tuple[int, int, int]:
    """体素索引 → (x, y, z)，y 已加上 Section 偏移"""
    return i & 0xF, y_index * SECTION_SIZE + (i >> 8), (i >> 4) & 0xF


def section_index(x: int, y: int, z: int, y_index: int = 0) -> int:
    """(x, y, z) → 体素索引，local_coords 的逆运算"""
    return x + (z << 4) + ((y - y_index * SECTION_SIZE) << 8)


def _fill(indices: np.ndarray, ids, y_offset: int) -> np.ndarray:
    out = np.empty(indices.shape[0], dtype=BLOCK_DTYPE)
    out["id"] = ids
    out["x"] = indices & 0xF
    out["z"] = (indices >> 4) & 0xF
    out["y"] = y_offset + (indices >> 8)
    return out


def decode_section(section: Section, registry: Optional[BlockRegistry] = None) -> np.ndarray:
    """
    解码一个 Section。

    Raises
    ------
    MalformedSection
        调色板为空、data 长度不是 4096、data 非整数、或调色板索引越界
    """
    registry = registry or default_registry()
    palette = section.palette

    if len(palette) == 0:
        raise MalformedSection(f"section y={section.y_index}: empty palette")

    # ── 均匀 Section ──
    if section.data is None:
        block_id = registry.resolve(palette[0])
        if block_id == AIR:
            return empty_blocks()
        return _fill(_ALL_INDICES, block_id, section.y_offset)

    # ── 索引 Section ──
    data = section.data
    if data.ndim != 1 or data.shape[0] != SECTION_VOLUME:
        raise MalformedSection(
            f"section y={section.y_index}: index array has {data.size} entries, "
            f"expected {SECTION_VOLUME}"
        )
    if data.dtype.kind not in "iu":
        raise MalformedSection(
            f"section y={section.y_index}: index array dtype {data.dtype} is not integer"
        )

    data = data.astype(np.int64, copy=False)
    lo, hi = int(data.min()), int(data.max())
    if lo < 0 or hi >= len(palette):
        bad = lo if lo < 0 else hi
        raise MalformedSection(
            f"section y={section.y_index}: palette index {bad} out of range "
            f"(palette size {len(palette)})"
        )

    # 槽位 0 固定为空气；其余槽位若恰好是空气变体也不输出
    lut = np.empty(len(palette), dtype=np.uint32)
    lut[0] = AIR
    lut[1:] = registry.resolve_palette(palette[1:])

    voxel_ids = lut[data]
    indices = np.flatnonzero(voxel_ids)
    return _fill(indices, voxel_ids[indices], section.y_offset)


class SectionDecoder:
    """
    绑定注册表的解码器

    Usage::

        decoder = SectionDecoder(BlockRegistry())
        blocks = decoder.decode(Section(y_index=-4, palette=["minecraft:stone"]))
        len(blocks)   # -> 4096
    """

    def __init__(self, registry: Optional[BlockRegistry] = None) -> None:
        self.registry = registry or default_registry()

    def decode(self, section: Section) -> np.ndarray:
        return decode_section(section, self.registry)

    def decode_all(self, sections: Sequence[Section]) -> np.ndarray:
        """解码并按输入顺序拼接多个 Section"""
        parts = [self.decode(s) for s in sections]
        if not parts:
            return empty_blocks()
        return np.concatenate(parts)
