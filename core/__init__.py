"""AnvilView core — 区块解码与实例生成"""

from core.block_registry import AIR, MOSS, BlockRegistry
from core.section_decoder import BLOCK_DTYPE, Block, Section, SectionDecoder, decode_section
from core.chunk_builder import Chunk, ChunkBuilder, ChunkDescriptor
from core.world import World, WorldLoadReport
from core.instances import INSTANCE_DTYPE, flatten, instance_bytes
from core.camera import Camera
from core.errors import (
    AnvilViewError, CorruptChunk, MalformedSection, RendererUnavailable, StorageUnavailable,
)

__all__ = [
    "AIR",
    "MOSS",
    "BlockRegistry",
    "BLOCK_DTYPE",
    "Block",
    "Section",
    "SectionDecoder",
    "decode_section",
    "Chunk",
    "ChunkBuilder",
    "ChunkDescriptor",
    "World",
    "WorldLoadReport",
    "INSTANCE_DTYPE",
    "flatten",
    "instance_bytes",
    "Camera",
    "AnvilViewError",
    "CorruptChunk",
    "MalformedSection",
    "RendererUnavailable",
    "StorageUnavailable",
]
