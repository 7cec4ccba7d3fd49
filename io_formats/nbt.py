"""
NBT 编解码 — Minecraft NBT 二进制格式 (大端)

支持所有 NBT 标签类型:
TAG_End(0), TAG_Byte(1), TAG_Short(2), TAG_Int(3), TAG_Long(4),
TAG_Float(5), TAG_Double(6), TAG_Byte_Array(7), TAG_String(8),
TAG_List(9), TAG_Compound(10), TAG_Int_Array(11), TAG_Long_Array(12)

解码结果是普通 Python 结构：
compound → dict, list → list, int/long array → numpy 数组。
编码器用于构造区域文件（测试夹具等）。
"""

from __future__ import annotations

import io
import logging
import struct
from typing import Any, BinaryIO, Dict, Tuple

import numpy as np

logger = logging.getLogger(__name__)

# ── NBT 标签类型 ID ──────────────────────────────────────────
TAG_END = 0
TAG_BYTE = 1
TAG_SHORT = 2
TAG_INT = 3
TAG_LONG = 4
TAG_FLOAT = 5
TAG_DOUBLE = 6
TAG_BYTE_ARRAY = 7
TAG_STRING = 8
TAG_LIST = 9
TAG_COMPOUND = 10
TAG_INT_ARRAY = 11
TAG_LONG_ARRAY = 12

# 定长标量: tag → (struct 格式, 字节数)
_SCALARS = {
    TAG_BYTE: (">b", 1),
    TAG_SHORT: (">h", 2),
    TAG_INT: (">i", 4),
    TAG_LONG: (">q", 8),
    TAG_FLOAT: (">f", 4),
    TAG_DOUBLE: (">d", 8),
}

MAX_DEPTH = 512


class NBTDecodeError(ValueError):
    """NBT 数据截断或结构非法"""


# ── 解码 ────────────────────────────────────────────────────────

class NBTDecoder:
    """
    Usage::

        name, root = NBTDecoder.decode(raw_bytes)
        sections = root["sections"]
    """

    def __init__(self, data: bytes) -> None:
        self._data = memoryview(data)
        self._pos = 0

    @classmethod
    def decode(cls, data: bytes) -> Tuple[str, Dict[str, Any]]:
        """解码一个以命名 Compound 为根的 NBT 文档"""
        reader = cls(data)
        tag_type = reader._read_scalar(TAG_BYTE)
        if tag_type != TAG_COMPOUND:
            raise NBTDecodeError(f"root tag must be TAG_Compound, got {tag_type}")
        name = reader._read_string()
        root = reader._read_compound(0)
        return name, root

    def _take(self, n: int) -> memoryview:
        end = self._pos + n
        if n < 0 or end > len(self._data):
            raise NBTDecodeError(
                f"unexpected end of data at offset {self._pos} (need {n} bytes)"
            )
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def _read_scalar(self, tag_type: int):
        fmt, size = _SCALARS[tag_type]
        return struct.unpack(fmt, self._take(size))[0]

    def _read_string(self) -> str:
        length = struct.unpack(">H", self._take(2))[0]
        return bytes(self._take(length)).decode("utf-8", errors="replace")

    def _read_array(self, dtype: str) -> np.ndarray:
        length = self._read_scalar(TAG_INT)
        itemsize = np.dtype(dtype).itemsize
        raw = self._take(length * itemsize)
        return np.frombuffer(raw, dtype=dtype).astype(dtype.replace(">", "<"))

    def _read_payload(self, tag_type: int, depth: int) -> Any:
        if depth > MAX_DEPTH:
            raise NBTDecodeError("NBT nesting too deep")

        if tag_type in _SCALARS:
            return self._read_scalar(tag_type)
        if tag_type == TAG_BYTE_ARRAY:
            length = self._read_scalar(TAG_INT)
            return bytes(self._take(length))
        if tag_type == TAG_STRING:
            return self._read_string()
        if tag_type == TAG_LIST:
            elem_type = self._read_scalar(TAG_BYTE)
            length = self._read_scalar(TAG_INT)
            if elem_type == TAG_END or length <= 0:
                return []
            return [self._read_payload(elem_type, depth + 1) for _ in range(length)]
        if tag_type == TAG_COMPOUND:
            return self._read_compound(depth + 1)
        if tag_type == TAG_INT_ARRAY:
            return self._read_array(">i4")
        if tag_type == TAG_LONG_ARRAY:
            return self._read_array(">i8")
        raise NBTDecodeError(f"Unknown tag type: {tag_type}")

    def _read_compound(self, depth: int) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        while True:
            tag_type = self._read_scalar(TAG_BYTE)
            if tag_type == TAG_END:
                return result
            name = self._read_string()
            result[name] = self._read_payload(tag_type, depth)


# ── 编码 ────────────────────────────────────────────────────────

class NBTTag:
    """NBT 标签值包装"""
    __slots__ = ("tag_type", "value")

    def __init__(self, tag_type: int, value: Any) -> None:
        self.tag_type = tag_type
        self.value = value

    def __repr__(self) -> str:
        return f"NBTTag(type={self.tag_type}, value={self.value!r})"


class NBTEncoder:
    """
    Usage::

        raw = NBTEncoder.encode_compound("", {
            "xPos": nbt_int(0),
            "sections": nbt_list(TAG_COMPOUND, [...]),
        })
    """

    @staticmethod
    def encode_compound(name: str, tags: Dict[str, NBTTag]) -> bytes:
        """编码一个命名的 Compound 标签"""
        buf = io.BytesIO()
        buf.write(struct.pack(">b", TAG_COMPOUND))
        name_bytes = name.encode("utf-8")
        buf.write(struct.pack(">H", len(name_bytes)))
        buf.write(name_bytes)
        NBTEncoder._write_compound_payload(buf, tags)
        return buf.getvalue()

    @staticmethod
    def _write_compound_payload(buf: BinaryIO, tags: Dict[str, NBTTag]) -> None:
        for key, tag in tags.items():
            buf.write(struct.pack(">b", tag.tag_type))
            name_bytes = key.encode("utf-8")
            buf.write(struct.pack(">H", len(name_bytes)))
            buf.write(name_bytes)
            NBTEncoder._write_payload(buf, tag)
        buf.write(struct.pack(">b", TAG_END))

    @staticmethod
    def _write_payload(buf: BinaryIO, tag: NBTTag) -> None:
        t = tag.tag_type
        v = tag.value

        if t in _SCALARS:
            buf.write(struct.pack(_SCALARS[t][0], v))
        elif t == TAG_BYTE_ARRAY:
            data = bytes(v)
            buf.write(struct.pack(">i", len(data)))
            buf.write(data)
        elif t == TAG_STRING:
            s = v.encode("utf-8")
            buf.write(struct.pack(">H", len(s)))
            buf.write(s)
        elif t == TAG_LIST:
            elem_type, elements = v
            buf.write(struct.pack(">b", elem_type if elements else TAG_END))
            buf.write(struct.pack(">i", len(elements)))
            for elem in elements:
                NBTEncoder._write_payload(buf, NBTTag(elem_type, elem))
        elif t == TAG_COMPOUND:
            if not isinstance(v, dict):
                raise TypeError(f"TAG_COMPOUND value must be dict, got {type(v)}")
            NBTEncoder._write_compound_payload(buf, v)
        elif t == TAG_INT_ARRAY:
            arr = np.asarray(v, dtype=">i4")
            buf.write(struct.pack(">i", arr.shape[0]))
            buf.write(arr.tobytes())
        elif t == TAG_LONG_ARRAY:
            arr = np.asarray(v, dtype=">i8")
            buf.write(struct.pack(">i", arr.shape[0]))
            buf.write(arr.tobytes())
        else:
            raise ValueError(f"Unknown tag type: {t}")


# ── 便捷构造函数 ────────────────────────────────────────────────

def nbt_byte(v: int) -> NBTTag:
    return NBTTag(TAG_BYTE, v)

def nbt_int(v: int) -> NBTTag:
    return NBTTag(TAG_INT, v)

def nbt_long(v: int) -> NBTTag:
    return NBTTag(TAG_LONG, v)

def nbt_string(v: str) -> NBTTag:
    return NBTTag(TAG_STRING, v)

def nbt_long_array(v) -> NBTTag:
    return NBTTag(TAG_LONG_ARRAY, v)

def nbt_list(elem_type: int, elements: list) -> NBTTag:
    return NBTTag(TAG_LIST, (elem_type, elements))

def nbt_compound(v: Dict[str, NBTTag]) -> NBTTag:
    return NBTTag(TAG_COMPOUND, v)
