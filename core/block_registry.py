"""
BlockRegistry — 方块名称 → 渲染 BlockId 映射

目前只有两种视觉类型：
- AIR  (0): 空气，不生成任何方块/实例
- MOSS (1): 通用实心方块，所有非空气方块都折叠到这一类

表是故意不完整的：未登记的名称宽松地解析为 MOSS，并在首次出现时记录警告。
需要区分材质时通过 register() 扩展。
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

AIR = 0
MOSS = 1

AIR_NAMES = frozenset({
    "minecraft:air",
    "minecraft:cave_air",
    "minecraft:void_air",
})

DEFAULT_BLOCKS: Dict[str, int] = {
    "minecraft:moss_block": MOSS,
}


class BlockRegistry:
    """
    Usage::

        registry = BlockRegistry()
        registry.resolve("minecraft:air")         # -> 0
        registry.resolve("minecraft:stone")       # -> 1 (记录一次警告)
        registry.unresolved_names                 # -> ["minecraft:stone"]
    """

    def __init__(
        self,
        blocks: Optional[Dict[str, int]] = None,
        fallback_id: int = MOSS,
    ) -> None:
        if fallback_id == AIR:
            raise ValueError("fallback_id must not be air")
        self._ids: Dict[str, int] = dict(DEFAULT_BLOCKS if blocks is None else blocks)
        self._fallback = fallback_id
        self._unresolved: Dict[str, None] = {}  # 保持首次出现的顺序

    def register(self, name: str, block_id: int) -> None:
        """登记一个方块名称。空气名称不可重新映射。"""
        if name in AIR_NAMES:
            raise ValueError(f"cannot remap air block {name!r}")
        if block_id == AIR:
            raise ValueError(f"block id 0 is reserved for air ({name!r})")
        self._ids[name] = block_id
        self._unresolved.pop(name, None)

    @staticmethod
    def is_air(name: str) -> bool:
        return name in AIR_NAMES

    def resolve(self, name: str) -> int:
        if name in AIR_NAMES:
            return AIR
        block_id = self._ids.get(name)
        if block_id is not None:
            return block_id

        if name not in self._unresolved:
            self._unresolved[name] = None
            logger.warning(
                "Palette resolution gap: %r not registered, using block id %d",
                name, self._fallback,
            )
        return self._fallback

    def resolve_palette(self, palette: Iterable[str]) -> List[int]:
        return [self.resolve(name) for name in palette]

    @property
    def unresolved_names(self) -> List[str]:
        return list(self._unresolved)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, name: str) -> bool:
        return name in AIR_NAMES or name in self._ids
