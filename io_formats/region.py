"""
MCA (Anvil) 区域文件读取器

.mca 文件结构:
- 每个 .mca 文件覆盖 32×32 个区块 (一个 Region)
- 0x0000-0x0FFF: 位置表 (1024 × 4 bytes) — offset(3 bytes, 单位 sector) + sector 数(1 byte)
- 0x1000-0x1FFF: 时间戳表 (1024 × 4 bytes)
- 0x2000+: 区块数据 — length(4) + compression_type(1) + 压缩的 NBT

区块 NBT 布局:
- 1.18+:      root.sections[].block_states.{palette, data}
- 1.16–1.17:  root.Level.Sections[].{Palette, BlockStates}
"""

from __future__ import annotations

import gzip
import logging
import re
import struct
import zlib
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from core.chunk_builder import ChunkDescriptor
from core.errors import CorruptChunk, MalformedSection, StorageUnavailable
from core.section_decoder import SECTION_VOLUME, Section
from io_formats.nbt import NBTDecodeError, NBTDecoder

logger = logging.getLogger(__name__)

SECTOR_BYTES = 4096
HEADER_BYTES = SECTOR_BYTES * 2
REGION_CHUNKS = 32

COMPRESSION_GZIP = 1
COMPRESSION_ZLIB = 2
COMPRESSION_NONE = 3

_REGION_NAME = re.compile(r"^r\.(-?\d+)\.(-?\d+)\.mca$")


def region_filename(region_x: int, region_z: int) -> str:
    return f"r.{region_x}.{region_z}.mca"


def region_coords_for_chunk(chunk_x: int, chunk_z: int) -> Tuple[int, int]:
    return chunk_x >> 5, chunk_z >> 5


def parse_region_filename(name: str) -> Optional[Tuple[int, int]]:
    m = _REGION_NAME.match(name)
    if not m:
        return None
    return int(m.group(1)), int(m.group(2))


class RegionFile:
    """
    一个 .mca 文件（只读）

    Usage::

        region = RegionFile.open("world/region/r.0.0.mca")
        root = region.read_chunk_nbt(3, 7)     # -> dict 或 None (未生成)
    """

    def __init__(
        self,
        data: bytes,
        region_x: Optional[int] = None,
        region_z: Optional[int] = None,
        name: str = "<memory>",
    ) -> None:
        if 0 < len(data) < HEADER_BYTES:
            raise StorageUnavailable(
                f"{name}: truncated region header ({len(data)} bytes)"
            )
        self._data = data
        self.region_x = region_x
        self.region_z = region_z
        self.name = name

        if data:
            raw = struct.unpack(">1024I", data[:SECTOR_BYTES])
            self._locations = [(v >> 8, v & 0xFF) for v in raw]
            self._timestamps = list(struct.unpack(">1024I", data[SECTOR_BYTES:HEADER_BYTES]))
        else:
            # 空文件：游戏有时会创建 0 字节的区域文件
            self._locations = [(0, 0)] * 1024
            self._timestamps = [0] * 1024

    @classmethod
    def open(cls, path: str | Path) -> "RegionFile":
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise StorageUnavailable(f"cannot read region file {path}: {exc}") from exc

        coords = parse_region_filename(path.name)
        rx, rz = coords if coords else (None, None)
        region = cls(data, rx, rz, name=path.name)
        logger.debug("Opened region %s (%d chunks present)", path.name, region.chunk_count)
        return region

    # ── 头部 ────────────────────────────────────────────────────

    @staticmethod
    def _index(chunk_x: int, chunk_z: int) -> int:
        return (chunk_x & 0x1F) + (chunk_z & 0x1F) * REGION_CHUNKS

    def _check_owner(self, chunk_x: int, chunk_z: int) -> None:
        if self.region_x is None or self.region_z is None:
            return
        if region_coords_for_chunk(chunk_x, chunk_z) != (self.region_x, self.region_z):
            raise ValueError(
                f"chunk ({chunk_x}, {chunk_z}) is not in region "
                f"({self.region_x}, {self.region_z})"
            )

    def has_chunk(self, chunk_x: int, chunk_z: int) -> bool:
        offset, count = self._locations[self._index(chunk_x, chunk_z)]
        return offset != 0 and count != 0

    def timestamp(self, chunk_x: int, chunk_z: int) -> int:
        return self._timestamps[self._index(chunk_x, chunk_z)]

    @property
    def chunk_count(self) -> int:
        return sum(1 for offset, count in self._locations if offset and count)

    def present_chunks(self) -> List[Tuple[int, int]]:
        """文件中存在的区块（区域内局部坐标）"""
        return [
            (i % REGION_CHUNKS, i // REGION_CHUNKS)
            for i, (offset, count) in enumerate(self._locations)
            if offset and count
        ]

    # ── 区块数据 ────────────────────────────────────────────────

    def read_chunk_bytes(self, chunk_x: int, chunk_z: int) -> Optional[bytes]:
        """返回解压后的区块 NBT 字节，区块不存在时返回 None"""
        self._check_owner(chunk_x, chunk_z)
        offset, count = self._locations[self._index(chunk_x, chunk_z)]
        if offset == 0 or count == 0:
            return None

        where = f"{self.name} chunk ({chunk_x}, {chunk_z})"
        start = offset * SECTOR_BYTES
        if offset < 2 or start + 5 > len(self._data):
            raise CorruptChunk(f"{where}: sector offset {offset} outside file")

        length, compression = struct.unpack(">IB", self._data[start:start + 5])
        end = start + 4 + length
        if length < 1 or end > len(self._data):
            raise CorruptChunk(f"{where}: invalid payload length {length}")
        payload = self._data[start + 5:end]

        if compression & 0x80:
            raise CorruptChunk(f"{where}: external .mcc chunk storage not supported")
        try:
            if compression == COMPRESSION_ZLIB:
                return zlib.decompress(payload)
            if compression == COMPRESSION_GZIP:
                return gzip.decompress(payload)
            if compression == COMPRESSION_NONE:
                return bytes(payload)
        except (zlib.error, OSError, EOFError) as exc:
            raise CorruptChunk(f"{where}: decompression failed: {exc}") from exc
        raise CorruptChunk(f"{where}: unsupported compression type {compression}")

    def read_chunk_nbt(self, chunk_x: int, chunk_z: int) -> Optional[Dict[str, Any]]:
        raw = self.read_chunk_bytes(chunk_x, chunk_z)
        if raw is None:
            return None
        try:
            _, root = NBTDecoder.decode(raw)
        except NBTDecodeError as exc:
            raise CorruptChunk(
                f"{self.name} chunk ({chunk_x}, {chunk_z}): bad NBT: {exc}"
            ) from exc
        return root


# ── 方块状态解包 ────────────────────────────────────────────────

def bits_per_block(palette_size: int) -> int:
    """1.16+ block_states 每个索引占用的位数（最少 4 位）"""
    return max(4, (palette_size - 1).bit_length())


def unpack_block_states(longs, palette_size: int) -> np.ndarray:
    """
    将 packed long array 解包为 4096 个调色板索引。

    1.16+ 格式：索引不跨越 long 边界，每个 long 的高位可能留空。
    """
    bits = bits_per_block(palette_size)
    per_long = 64 // bits
    needed = -(-SECTION_VOLUME // per_long)

    packed = np.ascontiguousarray(longs, dtype=np.int64).view(np.uint64)
    if packed.shape[0] < needed:
        raise MalformedSection(
            f"block state array has {packed.shape[0]} longs, expected {needed} "
            f"for {bits} bits per block"
        )

    shifts = np.arange(per_long, dtype=np.uint64) * np.uint64(bits)
    mask = np.uint64((1 << bits) - 1)
    values = (packed[:needed, None] >> shifts[None, :]) & mask
    return values.reshape(-1)[:SECTION_VOLUME].astype(np.int64)


def pack_block_states(indices, palette_size: int) -> np.ndarray:
    """unpack_block_states 的逆运算 (用于构造区域文件)"""
    bits = bits_per_block(palette_size)
    per_long = 64 // bits
    mask = (1 << bits) - 1
    flat = np.asarray(indices).ravel()
    n_longs = (len(flat) + per_long - 1) // per_long

    longs = []
    for i in range(n_longs):
        val = 0
        for j in range(per_long):
            idx = i * per_long + j
            if idx < len(flat):
                val |= (int(flat[idx]) & mask) << (j * bits)
        # 转为有符号 long
        if val >= (1 << 63):
            val -= (1 << 64)
        longs.append(val)
    return np.array(longs, dtype=np.int64)


# ── NBT → ChunkDescriptor ──────────────────────────────────────

def _palette_names(palette: Any) -> List[str]:
    if not isinstance(palette, list):
        raise CorruptChunk(f"palette is {type(palette).__name__}, expected a list")
    names = []
    for entry in palette:
        if isinstance(entry, dict) and isinstance(entry.get("Name"), str):
            names.append(entry["Name"])
        elif isinstance(entry, str):
            names.append(entry)
        else:
            raise CorruptChunk(f"palette entry without a block name: {entry!r}")
    return names


def _block_states(data: Any) -> Optional[np.ndarray]:
    if data is None:
        return None
    if not isinstance(data, np.ndarray) or data.ndim != 1 or data.dtype.kind not in "iu":
        raise CorruptChunk(f"block state data is {type(data).__name__}, expected a long array")
    return data if data.shape[0] else None


def _build_section(y_index: int, palette: Any, data: Any) -> Section:
    names = _palette_names(palette)
    packed = _block_states(data)
    if packed is None or not names:
        return Section(y_index, names, None)
    return Section(y_index, names, unpack_block_states(packed, len(names)))


def _section_y(raw: Dict[str, Any]) -> int:
    y = raw.get("Y")
    if not isinstance(y, int):
        raise CorruptChunk(f"section without a Y index: keys {sorted(raw)}")
    return y


def _section_list(raw_sections: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw_sections, list):
        raise CorruptChunk(
            f"section list is {type(raw_sections).__name__}, expected a list"
        )
    for raw in raw_sections:
        if not isinstance(raw, dict):
            raise CorruptChunk(f"section is {type(raw).__name__}, expected a compound")
    return raw_sections


def _sections_modern(raw_sections: Any) -> List[Section]:
    sections = []
    for raw in _section_list(raw_sections):
        states = raw.get("block_states")
        if states is None:
            continue
        if not isinstance(states, dict):
            raise CorruptChunk(f"block_states is {type(states).__name__}, expected a compound")
        if "palette" not in states:
            continue
        sections.append(_build_section(_section_y(raw), states["palette"], states.get("data")))
    return sections


def _sections_legacy(raw_sections: Any) -> List[Section]:
    sections = []
    for raw in _section_list(raw_sections):
        # 仅含光照数据的 Section 没有调色板
        if "Palette" not in raw:
            continue
        sections.append(_build_section(_section_y(raw), raw["Palette"], raw.get("BlockStates")))
    return sections


def parse_chunk(root: Dict[str, Any], chunk_x: int, chunk_z: int) -> ChunkDescriptor:
    """
    将区块 NBT 根转换为 ChunkDescriptor。

    Raises
    ------
    CorruptChunk
        既不是 1.18+ 也不是 1.16–1.17 布局，标签类型不符，或调色板条目缺少名称
    MalformedSection
        block state 数组过短
    """
    try:
        if "sections" in root:
            level = root
            sections = _sections_modern(root["sections"])
        elif isinstance(root.get("Level"), dict):
            level = root["Level"]
            sections = _sections_legacy(level.get("Sections", []))
        else:
            raise CorruptChunk("no section list in NBT")
    except CorruptChunk as exc:
        raise CorruptChunk(f"chunk ({chunk_x}, {chunk_z}): {exc}") from exc

    nbt_pos = (level.get("xPos"), level.get("zPos"))
    if nbt_pos != (None, None) and nbt_pos != (chunk_x, chunk_z):
        logger.warning(
            "Chunk (%d, %d) stores position %s in its NBT", chunk_x, chunk_z, nbt_pos,
        )

    return ChunkDescriptor(chunk_x, chunk_z, sections)
