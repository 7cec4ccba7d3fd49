"""
共享夹具 — 在 tmp_path 中构造 .mca 区域文件
"""

import gzip
import struct
import sys
import zlib
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

SECTOR = 4096


def _section_tag(y, palette, indices=None, legacy=False):
    from io_formats.nbt import (
        TAG_COMPOUND, nbt_byte, nbt_compound, nbt_list, nbt_long_array, nbt_string,
    )
    from io_formats.region import pack_block_states

    palette_tags = [{"Name": nbt_string(name)} for name in palette]
    packed = None
    if indices is not None:
        packed = nbt_long_array(pack_block_states(indices, len(palette)))

    if legacy:
        tag = {"Y": nbt_byte(y), "Palette": nbt_list(TAG_COMPOUND, palette_tags)}
        if packed is not None:
            tag["BlockStates"] = packed
        return tag

    states = {"palette": nbt_list(TAG_COMPOUND, palette_tags)}
    if packed is not None:
        states["data"] = packed
    return {"Y": nbt_byte(y), "block_states": nbt_compound(states)}


def _chunk_nbt(cx, cz, sections, legacy=False):
    """
    sections: [(y_index, palette_names, indices 或 None), ...]
    """
    from io_formats.nbt import (
        TAG_COMPOUND, NBTEncoder, nbt_compound, nbt_int, nbt_list, nbt_long, nbt_string,
    )

    section_tags = [_section_tag(*s, legacy=legacy) for s in sections]
    if legacy:
        root = {
            "DataVersion": nbt_int(2586),
            "Level": nbt_compound({
                "xPos": nbt_int(cx),
                "zPos": nbt_int(cz),
                "LastUpdate": nbt_long(0),
                "Sections": nbt_list(TAG_COMPOUND, section_tags),
            }),
        }
    else:
        root = {
            "DataVersion": nbt_int(3700),
            "xPos": nbt_int(cx),
            "zPos": nbt_int(cz),
            "yPos": nbt_int(-4),
            "Status": nbt_string("minecraft:full"),
            "sections": nbt_list(TAG_COMPOUND, section_tags),
        }
    return NBTEncoder.encode_compound("", root)


def _compress(data, compression):
    if compression == 1:
        return gzip.compress(data)
    if compression == 2:
        return zlib.compress(data)
    return data


def _write_region(path, chunks, compression=2):
    """
    chunks: {(cx, cz): nbt_bytes 或 (compression_type, 原始 payload)}
    """
    locations = bytearray(SECTOR)
    timestamps = bytearray(SECTOR)
    payloads = bytearray()
    current_sector = 2

    for (cx, cz), value in chunks.items():
        if isinstance(value, tuple):
            ctype, data = value
        else:
            ctype, data = compression, _compress(value, compression)

        idx = ((cx & 0x1F) + (cz & 0x1F) * 32) * 4
        payload = struct.pack(">I", len(data) + 1) + struct.pack(">B", ctype) + data
        sectors_needed = -(-len(payload) // SECTOR)
        padded = payload.ljust(sectors_needed * SECTOR, b"\x00")

        locations[idx:idx + 3] = struct.pack(">I", current_sector)[1:]
        locations[idx + 3] = sectors_needed
        timestamps[idx:idx + 4] = struct.pack(">I", 1700000000)

        payloads.extend(padded)
        current_sector += sectors_needed

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.write(locations)
        f.write(timestamps)
        f.write(payloads)
    return path


@pytest.fixture
def chunk_nbt():
    return _chunk_nbt


@pytest.fixture
def write_region():
    return _write_region
