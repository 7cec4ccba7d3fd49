"""AnvilView io_formats — NBT 与 Anvil 区域文件读取"""

from io_formats.region import RegionFile, parse_chunk  # noqa: F401
from io_formats.storage import ChunkStorage, MemoryStorage, RegionStorage  # noqa: F401

__all__ = [
    "nbt",
    "region",
    "storage",
    "RegionFile",
    "parse_chunk",
    "ChunkStorage",
    "MemoryStorage",
    "RegionStorage",
]
