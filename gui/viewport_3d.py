"""
Viewport3D — PyVista 实例预览

渲染器协作方的一个实现：接收实例数组 (INSTANCE_DTYPE) 与相机，
每个实例绘制一个单位立方体。PyVista 为可选依赖。
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

import numpy as np

from core.block_registry import MOSS
from core.camera import Camera
from core.errors import RendererUnavailable
from core.instances import INSTANCE_DTYPE

logger = logging.getLogger(__name__)

BLOCK_COLORS: Dict[int, str] = {
    MOSS: "#a6e3a1",
}
DEFAULT_COLOR = "#89b4fa"


def instance_centers(instances: np.ndarray) -> np.ndarray:
    """实例位置 → 立方体中心 (N, 3) float32"""
    if instances.dtype != INSTANCE_DTYPE:
        raise TypeError(f"expected INSTANCE_DTYPE array, got {instances.dtype}")
    return instances["position"].astype(np.float32) + 0.5


class Viewport3D:
    """
    Usage::

        viewport = Viewport3D(off_screen=True)
        viewport.initialize()                  # PyVista 缺失时抛 RendererUnavailable
        viewport.show_instances(instances, camera)
        viewport.screenshot("preview.png")
    """

    def __init__(self, off_screen: bool = False, window_size=(800, 600)) -> None:
        self.off_screen = off_screen
        self.window_size = tuple(window_size)
        self._pv = None
        self._plotter = None

        try:
            import pyvista as pv
            self._pv = pv
            logger.info("PyVista %s loaded for preview", pv.__version__)
        except ImportError:
            logger.warning("PyVista not installed; preview disabled")

    @property
    def available(self) -> bool:
        return self._pv is not None

    def initialize(self):
        """创建绘图器，返回 PyVista Plotter"""
        if not self.available:
            raise RendererUnavailable("pyvista not installed")
        if self._plotter is None:
            self._plotter = self._pv.Plotter(
                off_screen=self.off_screen, window_size=list(self.window_size),
            )
            self._plotter.set_background("#1e1e2e")
            self._plotter.add_axes()
        return self._plotter

    def show_instances(
        self,
        instances: np.ndarray,
        camera: Optional[Camera] = None,
        max_display: int = 200000,
    ) -> int:
        """
        绘制实例，返回实际绘制数量。
        实例过多时按固定步长降采样。
        """
        plotter = self.initialize()
        pv = self._pv

        if instances.shape[0] == 0:
            logger.warning("No instances to display")
            return 0

        if instances.shape[0] > max_display:
            step = -(-instances.shape[0] // max_display)
            logger.info("Downsampled preview: every %d-th of %d instances", step, instances.shape[0])
            instances = instances[::step]

        cube = pv.Cube(x_length=1.0, y_length=1.0, z_length=1.0)
        for block_id in np.unique(instances["block"]):
            subset = instances[instances["block"] == block_id]
            cloud = pv.PolyData(instance_centers(subset))
            glyphs = cloud.glyph(geom=cube, orient=False, scale=False)
            plotter.add_mesh(glyphs, color=BLOCK_COLORS.get(int(block_id), DEFAULT_COLOR))

        if camera is not None:
            self.set_camera(camera)
        else:
            plotter.reset_camera()
        return int(instances.shape[0])

    def set_camera(self, camera: Camera) -> None:
        if self._plotter is None:
            return
        self._plotter.camera_position = [camera.eye, camera.target, camera.up]
        self._plotter.camera.view_angle = camera.fovy
        self._plotter.camera.clipping_range = (camera.znear, camera.zfar)

    def screenshot(self, path: str) -> None:
        if self._plotter is not None:
            self._plotter.screenshot(path)

    def show(self) -> None:
        if self._plotter is not None:
            self._plotter.show()

    def close(self) -> None:
        if self._plotter is not None:
            self._plotter.close()
            self._plotter = None
