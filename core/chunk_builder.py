"""
ChunkBuilder — 已解析的区块描述 → Chunk

Chunk 是一个 16×N×16 的柱体，只保存非空气方块（BLOCK_DTYPE 数组，只读）。
构建后不再修改；世界有变化时整体重建。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional, Tuple

import numpy as np

from core.block_registry import MOSS, BlockRegistry
from core.errors import MalformedSection
from core.section_decoder import (
    BLOCK_DTYPE, SECTION_SIZE, Block, Section, SectionDecoder, empty_blocks,
)

logger = logging.getLogger(__name__)

CHUNK_WIDTH = SECTION_SIZE
CHUNK_LENGTH = SECTION_SIZE


@dataclass(frozen=True)
class ChunkDescriptor:
    """存储层给出的结构化区块 (区块网格坐标 + Section 列表)"""
    x: int
    z: int
    sections: Tuple[Section, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "sections", tuple(self.sections))


@dataclass(frozen=True)
class Chunk:
    """一个已加载区块"""
    chunk_x: int
    chunk_z: int
    blocks: np.ndarray = field(default_factory=empty_blocks, compare=False)

    def __post_init__(self) -> None:
        blocks = np.asarray(self.blocks)
        if blocks.dtype != BLOCK_DTYPE:
            blocks = blocks.astype(BLOCK_DTYPE)
        if blocks.flags.writeable:
            blocks = blocks.copy()
            blocks.setflags(write=False)
        object.__setattr__(self, "blocks", blocks)

    @property
    def position(self) -> Tuple[int, int]:
        return (self.chunk_x, self.chunk_z)

    @property
    def block_count(self) -> int:
        return int(self.blocks.shape[0])

    @property
    def is_empty(self) -> bool:
        return self.block_count == 0

    def iter_blocks(self) -> Iterator[Block]:
        for record in self.blocks:
            yield Block.from_record(record)

    def __len__(self) -> int:
        return self.block_count

    def __repr__(self) -> str:
        return f"Chunk(x={self.chunk_x}, z={self.chunk_z}, blocks={self.block_count})"


class ChunkBuilder:
    """
    Usage::

        builder = ChunkBuilder()
        chunk = builder.build(descriptor)     # 来自存储
        test = builder.build_test()           # 无需存储的测试区块
    """

    def __init__(self, registry: Optional[BlockRegistry] = None) -> None:
        self.decoder = SectionDecoder(registry)

    @property
    def registry(self) -> BlockRegistry:
        return self.decoder.registry

    def build(self, descriptor: ChunkDescriptor) -> Chunk:
        """
        解码所有 Section 并拼接成 Chunk。

        没有 Section 的区块得到空 Chunk。Section 数据非法时抛出
        MalformedSection，并附带区块坐标。
        """
        pos = (descriptor.x, descriptor.z)
        try:
            blocks = self.decoder.decode_all(descriptor.sections)
        except MalformedSection as exc:
            exc.chunk = pos
            raise

        logger.debug(
            "Built chunk %s: %d sections, %d blocks",
            pos, len(descriptor.sections), blocks.shape[0],
        )
        return Chunk(descriptor.x, descriptor.z, blocks)

    @staticmethod
    def build_empty(x: int, z: int) -> Chunk:
        """未生成 / 加载失败的区块"""
        return Chunk(x, z, empty_blocks())

    @staticmethod
    def build_test(x: int = 0, z: int = 0) -> Chunk:
        """
        测试区块：y=0 铺满 16×16 苔藓地板，外加 (1, 1, 1) 一个方块。
        共 257 个方块。
        """
        xs, zs = np.meshgrid(
            np.arange(CHUNK_WIDTH, dtype=np.int32),
            np.arange(CHUNK_LENGTH, dtype=np.int32),
            indexing="ij",
        )
        blocks = np.empty(CHUNK_WIDTH * CHUNK_LENGTH + 1, dtype=BLOCK_DTYPE)
        blocks["id"] = MOSS

        floor = blocks[:-1]
        floor["x"] = xs.ravel()
        floor["y"] = 0
        floor["z"] = zs.ravel()

        blocks[-1] = (MOSS, 1, 1, 1)
        return Chunk(x, z, blocks)
