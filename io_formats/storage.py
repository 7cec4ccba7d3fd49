"""
区块存储后端

World.from_storage() 只依赖 get_chunk(x, z) -> Optional[ChunkDescriptor]：
- 返回 None 表示区块尚未生成（不是错误）
- 存储本身不可读时抛出 StorageUnavailable
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

from core.chunk_builder import ChunkDescriptor
from core.errors import StorageUnavailable
from io_formats.region import (
    RegionFile, parse_chunk, parse_region_filename, region_coords_for_chunk,
    region_filename,
)

logger = logging.getLogger(__name__)


class ChunkStorage(ABC):
    """区块存储能力接口"""

    @abstractmethod
    def get_chunk(self, x: int, z: int) -> Optional[ChunkDescriptor]:
        ...

    def close(self) -> None:
        pass

    def __enter__(self) -> "ChunkStorage":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class RegionStorage(ChunkStorage):
    """
    从存档目录读取 .mca 区域文件

    接受三种路径:
    - 存档根目录（包含 region/ 子目录）
    - region 目录本身
    - 单个 r.X.Z.mca 文件（只提供该区域内的区块）

    Usage::

        with RegionStorage("saves/MyWorld") as storage:
            descriptor = storage.get_chunk(0, 0)
    """

    def __init__(self, path: str | Path) -> None:
        path = Path(path)
        self._single: Optional[Tuple[int, int]] = None

        if path.is_file():
            coords = parse_region_filename(path.name)
            if coords is None:
                raise StorageUnavailable(f"not a region file name: {path.name}")
            self._single = coords
            self.region_dir = path.parent
        elif path.is_dir():
            self.region_dir = path / "region" if (path / "region").is_dir() else path
        else:
            raise StorageUnavailable(f"world path does not exist: {path}")

        self._regions: Dict[Tuple[int, int], Optional[RegionFile]] = {}
        logger.info("Region storage opened: %s", self.region_dir)

    def _region(self, region_x: int, region_z: int) -> Optional[RegionFile]:
        key = (region_x, region_z)
        if key not in self._regions:
            if self._single is not None and key != self._single:
                self._regions[key] = None
            else:
                file_path = self.region_dir / region_filename(region_x, region_z)
                if file_path.exists():
                    self._regions[key] = RegionFile.open(file_path)
                else:
                    logger.debug("Region %s missing, treating as ungenerated", file_path.name)
                    self._regions[key] = None
        return self._regions[key]

    def get_chunk(self, x: int, z: int) -> Optional[ChunkDescriptor]:
        region = self._region(*region_coords_for_chunk(x, z))
        if region is None:
            return None
        root = region.read_chunk_nbt(x, z)
        if root is None:
            return None
        return parse_chunk(root, x, z)

    def available_regions(self) -> Iterable[Tuple[int, int]]:
        """目录中存在的区域坐标"""
        if self._single is not None:
            return [self._single]
        found = []
        for p in sorted(self.region_dir.glob("r.*.*.mca")):
            coords = parse_region_filename(p.name)
            if coords is not None:
                found.append(coords)
        return found

    def close(self) -> None:
        self._regions.clear()


class MemoryStorage(ChunkStorage):
    """内存中的区块存储（测试 / 合成世界）"""

    def __init__(self, chunks: Optional[Iterable[ChunkDescriptor]] = None) -> None:
        self._chunks: Dict[Tuple[int, int], ChunkDescriptor] = {}
        for descriptor in chunks or ():
            self.put(descriptor)

    def put(self, descriptor: ChunkDescriptor) -> None:
        self._chunks[(descriptor.x, descriptor.z)] = descriptor

    def get_chunk(self, x: int, z: int) -> Optional[ChunkDescriptor]:
        return self._chunks.get((x, z))

    def __len__(self) -> int:
        return len(self._chunks)
