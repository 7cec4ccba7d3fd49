"""
Camera — 环绕区块中心的相机，生成 4×4 view-projection 矩阵

动画是已用时间的纯函数：epoch 在构造时显式传入，
orbit_position(elapsed) 不读取任何全局时钟。
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np

Vec3 = Tuple[float, float, float]

# OpenGL 裁剪空间 z ∈ [-1, 1] → wgpu/Vulkan z ∈ [0, 1]
OPENGL_TO_WGPU_MATRIX = np.array([
    [1.0, 0.0, 0.0, 0.0],
    [0.0, 1.0, 0.0, 0.0],
    [0.0, 0.0, 0.5, 0.5],
    [0.0, 0.0, 0.0, 1.0],
], dtype=np.float32)

ORBIT_RADIUS = 32.0
ORBIT_CENTER = (16.0, -120.0, 16.0)
ORBIT_MS_PER_DEGREE = 50.0


def look_at_rh(eye: Vec3, target: Vec3, up: Vec3) -> np.ndarray:
    """右手系 view 矩阵"""
    eye_v = np.asarray(eye, dtype=np.float64)
    f = np.asarray(target, dtype=np.float64) - eye_v
    f /= np.linalg.norm(f)
    s = np.cross(f, np.asarray(up, dtype=np.float64))
    s /= np.linalg.norm(s)
    u = np.cross(s, f)

    m = np.identity(4)
    m[0, :3] = s
    m[1, :3] = u
    m[2, :3] = -f
    m[0, 3] = -np.dot(s, eye_v)
    m[1, 3] = -np.dot(u, eye_v)
    m[2, 3] = np.dot(f, eye_v)
    return m


def perspective(fovy_deg: float, aspect: float, znear: float, zfar: float) -> np.ndarray:
    """OpenGL 风格透视投影"""
    f = 1.0 / math.tan(math.radians(fovy_deg) / 2.0)
    m = np.zeros((4, 4))
    m[0, 0] = f / aspect
    m[1, 1] = f
    m[2, 2] = (zfar + znear) / (znear - zfar)
    m[2, 3] = (2.0 * zfar * znear) / (znear - zfar)
    m[3, 2] = -1.0
    return m


def orbit_position(elapsed: float) -> Vec3:
    """elapsed 秒后相机所在位置：每 50ms 转 1°，半径 32"""
    degrees = elapsed * 1000.0 / ORBIT_MS_PER_DEGREE
    angle = math.radians(degrees)
    cx, cy, cz = ORBIT_CENTER
    return (
        math.sin(angle) * ORBIT_RADIUS + cx,
        cy,
        math.cos(angle) * ORBIT_RADIUS + cz,
    )


@dataclass
class Camera:
    """
    Usage::

        cam = Camera(epoch=time.monotonic())
        cam.set_aspect(800, 600)
        cam.update(time.monotonic())
        vp = cam.build_view_projection_matrix()   # (4, 4) float32
    """
    eye: Vec3 = (0.0, 1.0, 2.0)
    target: Vec3 = (16.0, -128.0, 16.0)
    up: Vec3 = (0.0, 1.0, 0.0)
    aspect: float = 400.0 / 300.0
    fovy: float = 45.0
    znear: float = 0.1
    zfar: float = 100.0
    epoch: float = field(default_factory=time.monotonic)

    def set_aspect(self, width: float, height: float) -> None:
        if height <= 0:
            raise ValueError("height must be positive")
        self.aspect = width / height

    def position(self, elapsed: float) -> Vec3:
        return orbit_position(elapsed)

    def update(self, now: Optional[float] = None) -> None:
        """按 now - epoch 更新相机位置"""
        if now is None:
            now = time.monotonic()
        self.eye = self.position(now - self.epoch)

    def build_view_projection_matrix(self) -> np.ndarray:
        view = look_at_rh(self.eye, self.target, self.up)
        proj = perspective(self.fovy, self.aspect, self.znear, self.zfar)
        return (OPENGL_TO_WGPU_MATRIX.astype(np.float64) @ proj @ view).astype(np.float32)
