"""
Instance 展平 — World → 渲染器实例缓冲

每个非空气方块对应一个 16 字节的实例记录：
    i32 x, i32 y, i32 z, u32 block   (小端，无填充)
字段顺序与宽度是与渲染器之间的二进制约定。

纯函数、全量重建：相同的 World 永远得到相同内容、相同顺序的实例。
"""

from __future__ import annotations

import logging

import numpy as np

from core.chunk_builder import CHUNK_LENGTH, CHUNK_WIDTH, Chunk

logger = logging.getLogger(__name__)

INSTANCE_DTYPE = np.dtype([
    ("position", "<i4", (3,)),
    ("block", "<u4"),
])
INSTANCE_SIZE = INSTANCE_DTYPE.itemsize  # 16

assert INSTANCE_SIZE == 16


def flatten_chunk(chunk: Chunk) -> np.ndarray:
    """将单个区块的方块平移到世界坐标"""
    blocks = chunk.blocks
    out = np.empty(blocks.shape[0], dtype=INSTANCE_DTYPE)
    pos = out["position"]
    pos[:, 0] = blocks["x"] + chunk.chunk_x * CHUNK_WIDTH
    pos[:, 1] = blocks["y"]
    pos[:, 2] = blocks["z"] + chunk.chunk_z * CHUNK_LENGTH
    out["block"] = blocks["id"]
    return out


def flatten(world) -> np.ndarray:
    """
    生成整个世界的实例数组。

    顺序：区块加载顺序，其次区块内方块顺序（不做空间排序）。
    """
    parts = [flatten_chunk(c) for c in world.loaded_chunks]
    if not parts:
        return np.empty(0, dtype=INSTANCE_DTYPE)
    instances = np.concatenate(parts)
    logger.debug("Flattened %d chunks into %d instances", len(parts), instances.shape[0])
    return instances


def instance_bytes(instances: np.ndarray) -> bytes:
    """渲染器使用的原始实例缓冲"""
    if instances.dtype != INSTANCE_DTYPE:
        raise TypeError(f"expected INSTANCE_DTYPE array, got {instances.dtype}")
    return np.ascontiguousarray(instances).tobytes()


def instance_count(instances: np.ndarray) -> int:
    return int(instances.shape[0])
