"""
测试 io_formats — NBT 编解码, block state 解包, .mca 区域读取, 存储后端
"""

import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

AIR_NAME = "minecraft:air"
STONE = "minecraft:stone"
DIRT = "minecraft:dirt"


# ── NBT ────────────────────────────────────────────────────────

class TestNBT:

    def test_decode_encoded_compound(self):
        from io_formats.nbt import (
            TAG_BYTE_ARRAY, TAG_COMPOUND, TAG_DOUBLE, TAG_INT_ARRAY, TAG_SHORT, TAG_STRING,
            NBTDecoder, NBTEncoder, NBTTag, nbt_byte, nbt_compound, nbt_int, nbt_list,
            nbt_long, nbt_long_array, nbt_string,
        )
        raw = NBTEncoder.encode_compound("root", {
            "b": nbt_byte(-3),
            "s": NBTTag(TAG_SHORT, 1234),
            "i": nbt_int(-70000),
            "l": nbt_long(1 << 40),
            "d": NBTTag(TAG_DOUBLE, 0.25),
            "ba": NBTTag(TAG_BYTE_ARRAY, b"\x01\x02"),
            "name": nbt_string("minecraft:moss_block"),
            "ia": NBTTag(TAG_INT_ARRAY, [1, -2, 3]),
            "la": nbt_long_array([-1, 2 ** 62]),
            "strings": nbt_list(TAG_STRING, ["a", "b"]),
            "empty": nbt_list(TAG_COMPOUND, []),
            "nested": nbt_compound({"Name": nbt_string("x")}),
        })
        assert raw[0] == 10

        name, root = NBTDecoder.decode(raw)
        assert name == "root"
        assert root["b"] == -3
        assert root["s"] == 1234
        assert root["i"] == -70000
        assert root["l"] == 1 << 40
        assert root["d"] == 0.25
        assert root["ba"] == b"\x01\x02"
        assert root["name"] == "minecraft:moss_block"
        assert root["ia"].tolist() == [1, -2, 3]
        assert root["la"].dtype == np.int64
        assert root["la"].tolist() == [-1, 2 ** 62]
        assert root["strings"] == ["a", "b"]
        assert root["empty"] == []
        assert root["nested"] == {"Name": "x"}

    def test_truncated_rejected(self):
        from io_formats.nbt import NBTDecodeError, NBTDecoder, NBTEncoder, nbt_string
        raw = NBTEncoder.encode_compound("", {"Name": nbt_string("minecraft:stone")})
        with pytest.raises(NBTDecodeError):
            NBTDecoder.decode(raw[:-4])

    def test_root_must_be_compound(self):
        from io_formats.nbt import NBTDecodeError, NBTDecoder
        with pytest.raises(NBTDecodeError):
            NBTDecoder.decode(b"\x08\x00\x00\x00\x00")

    def test_unknown_tag_rejected(self):
        from io_formats.nbt import NBTDecodeError, NBTDecoder
        # Compound 根，内含类型 99 的标签
        raw = b"\x0a\x00\x00" + b"\x63\x00\x01a" + b"\x00"
        with pytest.raises(NBTDecodeError):
            NBTDecoder.decode(raw)


# ── block state 解包 ───────────────────────────────────────────

class TestBlockStates:

    def test_bits_per_block(self):
        from io_formats.region import bits_per_block
        assert bits_per_block(1) == 4
        assert bits_per_block(16) == 4
        assert bits_per_block(17) == 5
        assert bits_per_block(300) == 9

    def test_known_packing(self):
        from io_formats.region import unpack_block_states
        longs = np.zeros(256, dtype=np.int64)
        longs[0] = 0x21          # 索引 0 = 1, 索引 1 = 2
        longs[255] = -(1 << 60)  # 最高 4 位 = 0xF（有符号 long）
        indices = unpack_block_states(longs, 16)
        assert indices.shape == (4096,)
        assert indices[:3].tolist() == [1, 2, 0]
        assert indices[-1] == 15

    def test_no_straddling(self):
        """5 位时每个 long 存 12 个索引，高 4 位留空"""
        from io_formats.region import pack_block_states, unpack_block_states
        rng = np.random.default_rng(1)
        indices = rng.integers(0, 17, 4096)
        longs = pack_block_states(indices, 17)
        assert longs.shape == (342,)
        assert unpack_block_states(longs, 17).tolist() == indices.tolist()

    def test_too_short_rejected(self):
        from core.errors import MalformedSection
        from io_formats.region import unpack_block_states
        with pytest.raises(MalformedSection):
            unpack_block_states(np.zeros(100, dtype=np.int64), 2)


# ── RegionFile ─────────────────────────────────────────────────

class TestRegionFile:

    @pytest.fixture
    def region_path(self, tmp_path, chunk_nbt, write_region):
        return write_region(tmp_path / "r.0.0.mca", {
            (0, 0): chunk_nbt(0, 0, [(0, [STONE], None)]),
            (3, 1): chunk_nbt(3, 1, [(-4, [AIR_NAME], None)]),
        })

    def test_header(self, region_path):
        from io_formats.region import RegionFile
        region = RegionFile.open(region_path)
        assert (region.region_x, region.region_z) == (0, 0)
        assert region.chunk_count == 2
        assert region.has_chunk(3, 1)
        assert not region.has_chunk(5, 5)
        assert sorted(region.present_chunks()) == [(0, 0), (3, 1)]
        assert region.timestamp(0, 0) == 1700000000

    def test_read_chunk(self, region_path):
        from io_formats.region import RegionFile
        root = RegionFile.open(region_path).read_chunk_nbt(0, 0)
        assert root["xPos"] == 0
        assert root["sections"][0]["block_states"]["palette"] == [{"Name": STONE}]

    def test_absent_chunk(self, region_path):
        from io_formats.region import RegionFile
        assert RegionFile.open(region_path).read_chunk_nbt(5, 5) is None

    def test_other_region_rejected(self, region_path):
        from io_formats.region import RegionFile
        with pytest.raises(ValueError):
            RegionFile.open(region_path).read_chunk_nbt(32, 0)

    @pytest.mark.parametrize("compression", [1, 2, 3])
    def test_compression_types(self, tmp_path, chunk_nbt, write_region, compression):
        from io_formats.region import RegionFile
        path = write_region(
            tmp_path / "r.0.0.mca",
            {(1, 2): chunk_nbt(1, 2, [(0, [DIRT], None)])},
            compression=compression,
        )
        root = RegionFile.open(path).read_chunk_nbt(1, 2)
        assert root["zPos"] == 2

    def test_unsupported_compression(self, tmp_path, write_region):
        from core.errors import CorruptChunk
        from io_formats.region import RegionFile
        path = write_region(tmp_path / "r.0.0.mca", {(0, 0): (4, b"\x00" * 16)})
        with pytest.raises(CorruptChunk, match="compression"):
            RegionFile.open(path).read_chunk_nbt(0, 0)

    def test_corrupt_payload(self, tmp_path, write_region):
        from core.errors import CorruptChunk
        from io_formats.region import RegionFile
        path = write_region(tmp_path / "r.0.0.mca", {(0, 0): (2, b"not zlib at all")})
        with pytest.raises(CorruptChunk):
            RegionFile.open(path).read_chunk_nbt(0, 0)

    def test_bad_nbt(self, tmp_path, write_region):
        import zlib
        from core.errors import CorruptChunk
        from io_formats.region import RegionFile
        path = write_region(tmp_path / "r.0.0.mca", {(0, 0): (2, zlib.compress(b"\x0a\x00"))})
        with pytest.raises(CorruptChunk, match="NBT"):
            RegionFile.open(path).read_chunk_nbt(0, 0)

    def test_truncated_header(self, tmp_path):
        from core.errors import StorageUnavailable
        from io_formats.region import RegionFile
        path = tmp_path / "r.0.0.mca"
        path.write_bytes(b"\x00" * 100)
        with pytest.raises(StorageUnavailable):
            RegionFile.open(path)

    def test_empty_file(self, tmp_path):
        from io_formats.region import RegionFile
        path = tmp_path / "r.2.-1.mca"
        path.write_bytes(b"")
        region = RegionFile.open(path)
        assert (region.region_x, region.region_z) == (2, -1)
        assert region.chunk_count == 0
        assert region.read_chunk_nbt(64, -32) is None

    def test_missing_file(self, tmp_path):
        from core.errors import StorageUnavailable
        from io_formats.region import RegionFile
        with pytest.raises(StorageUnavailable):
            RegionFile.open(tmp_path / "r.0.0.mca")


# ── parse_chunk ────────────────────────────────────────────────

class TestParseChunk:

    def _root(self, raw):
        from io_formats.nbt import NBTDecoder
        return NBTDecoder.decode(raw)[1]

    def test_modern_layout(self, chunk_nbt):
        from io_formats.region import parse_chunk
        indices = np.zeros(4096, dtype=np.int64)
        indices[5] = 2
        raw = chunk_nbt(4, 5, [(-4, [STONE], None), (0, [AIR_NAME, DIRT, STONE], indices)])
        desc = parse_chunk(self._root(raw), 4, 5)
        assert (desc.x, desc.z) == (4, 5)
        assert len(desc.sections) == 2
        uniform, indexed = desc.sections
        assert uniform.y_index == -4 and uniform.data is None
        assert uniform.palette == (STONE,)
        assert indexed.palette == (AIR_NAME, DIRT, STONE)
        assert indexed.data.shape == (4096,)
        assert indexed.data[5] == 2
        assert int(indexed.data.sum()) == 2

    def test_legacy_layout(self, chunk_nbt):
        from io_formats.region import parse_chunk
        indices = np.ones(4096, dtype=np.int64)
        raw = chunk_nbt(0, 0, [(1, [AIR_NAME, STONE], indices)], legacy=True)
        desc = parse_chunk(self._root(raw), 0, 0)
        assert len(desc.sections) == 1
        assert desc.sections[0].y_index == 1
        assert desc.sections[0].data.tolist() == [1] * 4096

    def test_sections_without_palette_skipped(self):
        from io_formats.region import parse_chunk
        root = {"Level": {"xPos": 0, "zPos": 0, "Sections": [{"Y": -1, "SkyLight": b""}]}}
        assert parse_chunk(root, 0, 0).sections == ()

    def test_no_sections_rejected(self):
        from core.errors import CorruptChunk
        from io_formats.region import parse_chunk
        with pytest.raises(CorruptChunk):
            parse_chunk({"DataVersion": 3700}, 0, 0)

    def test_palette_without_name_rejected(self):
        from core.errors import CorruptChunk
        from io_formats.region import parse_chunk
        root = {"sections": [{"Y": 0, "block_states": {"palette": [{"Properties": {}}]}}]}
        with pytest.raises(CorruptChunk):
            parse_chunk(root, 0, 0)

    def test_missing_y_rejected(self):
        from core.errors import CorruptChunk
        from io_formats.region import parse_chunk
        root = {"sections": [{"block_states": {"palette": [{"Name": STONE}]}}]}
        with pytest.raises(CorruptChunk):
            parse_chunk(root, 0, 0)

    @pytest.mark.parametrize("root", [
        {"sections": [1, 2]},
        {"sections": 5},
        {"sections": [{"Y": 0, "block_states": 3}]},
        {"sections": [{"Y": 0, "block_states": {"palette": "minecraft:stone"}}]},
        {"sections": [{"Y": 0, "block_states": {"palette": [{"Name": STONE}], "data": 7}}]},
        {"sections": [{"Y": 0, "block_states": {
            "palette": [{"Name": STONE}], "data": np.zeros(256, dtype=np.float64)}}]},
        {"Level": {"Sections": "none"}},
        {"Level": {"Sections": [{"Y": 0, "Palette": [{"Name": STONE}], "BlockStates": [1]}]}},
    ])
    def test_wrong_tag_types_rejected(self, root):
        from core.errors import CorruptChunk
        from io_formats.region import parse_chunk
        with pytest.raises(CorruptChunk, match=r"chunk \(2, 3\)"):
            parse_chunk(root, 2, 3)

    def test_empty_long_array_is_uniform(self):
        from io_formats.region import parse_chunk
        root = {"sections": [{"Y": 0, "block_states": {
            "palette": [{"Name": STONE}], "data": np.zeros(0, dtype=np.int64)}}]}
        section = parse_chunk(root, 0, 0).sections[0]
        assert section.is_uniform


# ── 存储后端 ───────────────────────────────────────────────────

class TestRegionStorage:

    @pytest.fixture
    def world_dir(self, tmp_path, chunk_nbt, write_region):
        indices = np.zeros(4096, dtype=np.int64)
        indices[0] = 1
        write_region(tmp_path / "region" / "r.0.0.mca", {
            (0, 0): chunk_nbt(0, 0, [(-4, [STONE], None), (4, [AIR_NAME, DIRT], indices)]),
            (1, 0): chunk_nbt(1, 0, [(0, [AIR_NAME], None)]),
            (2, 0): (2, b"garbage"),
        })
        write_region(tmp_path / "region" / "r.-1.-1.mca", {
            (-1, -1): chunk_nbt(-1, -1, [(0, [AIR_NAME, STONE], indices)]),
        })
        return tmp_path

    def test_missing_path(self, tmp_path):
        from core.errors import StorageUnavailable
        from io_formats.storage import RegionStorage
        with pytest.raises(StorageUnavailable):
            RegionStorage(tmp_path / "nope")

    def test_world_and_region_dirs(self, world_dir):
        from io_formats.storage import RegionStorage
        for path in (world_dir, world_dir / "region"):
            storage = RegionStorage(path)
            desc = storage.get_chunk(0, 0)
            assert len(desc.sections) == 2
            assert sorted(storage.available_regions()) == [(-1, -1), (0, 0)]

    def test_missing_region_is_not_generated(self, world_dir):
        from io_formats.storage import RegionStorage
        with RegionStorage(world_dir) as storage:
            assert storage.get_chunk(100, 100) is None
            assert storage.get_chunk(5, 5) is None

    def test_single_file(self, world_dir):
        from io_formats.storage import RegionStorage
        storage = RegionStorage(world_dir / "region" / "r.-1.-1.mca")
        assert storage.get_chunk(-1, -1) is not None
        assert storage.get_chunk(0, 0) is None

    def test_memory_storage(self):
        from core.chunk_builder import ChunkDescriptor
        from io_formats.storage import MemoryStorage
        storage = MemoryStorage([ChunkDescriptor(1, 2)])
        assert len(storage) == 1
        assert storage.get_chunk(1, 2).x == 1
        assert storage.get_chunk(2, 1) is None


class TestWorldFromRegion:

    @pytest.fixture
    def world_dir(self, tmp_path, chunk_nbt, write_region):
        indices = np.zeros(4096, dtype=np.int64)
        indices[0] = 1
        write_region(tmp_path / "region" / "r.0.0.mca", {
            (0, 0): chunk_nbt(0, 0, [(-4, [STONE], None), (4, [AIR_NAME, DIRT], indices)]),
            (2, 0): (2, b"garbage"),
            (3, 0): chunk_nbt(3, 0, [(0, [], None)]),
        })
        write_region(tmp_path / "region" / "r.-1.-1.mca", {
            (-1, -1): chunk_nbt(-1, -1, [(0, [AIR_NAME, STONE], indices)]),
        })
        return tmp_path

    def test_end_to_end(self, world_dir):
        from core.instances import flatten
        from core.world import World
        from io_formats.storage import RegionStorage

        with RegionStorage(world_dir) as storage:
            world = World.from_storage(storage, [(0, 0), (1, 0), (2, 0), (3, 0), (-1, -1), (40, 0)])

        assert [c.position for c in world] == [(0, 0), (1, 0), (2, 0), (3, 0), (-1, -1), (40, 0)]
        assert world.chunk_at(0, 0).block_count == 4097
        assert world.chunk_at(1, 0).is_empty
        assert world.chunk_at(2, 0).is_empty
        assert world.chunk_at(3, 0).is_empty
        assert world.chunk_at(40, 0).is_empty
        assert world.report.loaded == 2
        assert world.report.not_generated == 2
        assert world.report.failed == 2

        instances = flatten(world)
        assert instances.shape == (4098,)
        positions = instances["position"]
        # chunk (0,0) 的 y=-64 层
        assert positions[0].tolist() == [0, -64, 0]
        # chunk (0,0) 中 y_index=4 的单个方块
        assert positions[4096].tolist() == [0, 64, 0]
        # chunk (-1,-1) 的单个方块
        assert positions[-1].tolist() == [-16, 0, -16]

    def test_wrong_tag_types_stay_chunk_scoped(self, tmp_path, chunk_nbt, write_region):
        from core.world import World
        from io_formats.nbt import (
            TAG_COMPOUND, TAG_INT, NBTEncoder, nbt_byte, nbt_compound, nbt_int, nbt_list,
            nbt_string,
        )
        from io_formats.storage import RegionStorage

        int_sections = NBTEncoder.encode_compound("", {
            "sections": nbt_list(TAG_INT, [1, 2]),
        })
        int_data = NBTEncoder.encode_compound("", {
            "sections": nbt_list(TAG_COMPOUND, [{
                "Y": nbt_byte(0),
                "block_states": nbt_compound({
                    "palette": nbt_list(TAG_COMPOUND, [{"Name": nbt_string(STONE)}]),
                    "data": nbt_int(7),
                }),
            }]),
        })
        write_region(tmp_path / "region" / "r.0.0.mca", {
            (0, 0): int_sections,
            (1, 0): chunk_nbt(1, 0, [(0, [STONE], None)]),
            (2, 0): int_data,
        })

        with RegionStorage(tmp_path) as storage:
            world = World.from_storage(storage, [(0, 0), (1, 0), (2, 0)])

        assert world.report.failed == 2
        assert world.report.loaded == 1
        assert world.chunk_at(0, 0).is_empty
        assert world.chunk_at(1, 0).block_count == 4096
        assert world.chunk_at(2, 0).is_empty
