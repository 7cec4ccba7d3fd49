"""
AnvilView 异常类型

- StorageUnavailable: 区域文件/目录无法打开 → 整个世界加载失败
- MalformedSection:   Section 数据非法 → 仅该区块加载失败
- CorruptChunk:       单个区块压缩/NBT 数据损坏 → 仅该区块加载失败
- RendererUnavailable: 预览渲染器初始化失败

"区块未生成" 不是异常，存储层返回 None 表示。
"""

from __future__ import annotations

from typing import Optional, Tuple


class AnvilViewError(Exception):
    """所有 AnvilView 异常的基类"""


class StorageUnavailable(AnvilViewError, OSError):
    """区域存储不可读（目录不存在、文件头损坏等）"""


class MalformedSection(AnvilViewError, ValueError):
    """Section 调色板为空、索引数组长度不是 4096、或索引越界"""

    def __init__(self, message: str, chunk: Optional[Tuple[int, int]] = None) -> None:
        super().__init__(message)
        self.chunk = chunk

    def __str__(self) -> str:
        msg = super().__str__()
        if self.chunk is not None:
            return f"chunk {self.chunk}: {msg}"
        return msg


class CorruptChunk(AnvilViewError):
    """单个区块的压缩数据或 NBT 结构无法解析"""


class RendererUnavailable(AnvilViewError, RuntimeError):
    """渲染后端不可用"""
