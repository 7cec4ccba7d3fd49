#!/usr/bin/env python3
"""
AnvilView — Minecraft Anvil 存档 → 渲染实例

入口点：加载配置、读取区块、生成实例缓冲，可选 PyVista 预览。
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

# 确保项目根目录在 sys.path
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "settings.yaml"


def setup_logging(level: str = "INFO") -> None:
    """配置日志系统"""
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=log_format,
        datefmt="%H:%M:%S",
    )
    # 降低第三方库日志级别
    for lib in ("pyvista", "vtk", "matplotlib"):
        logging.getLogger(lib).setLevel(logging.WARNING)


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """加载配置文件，不存在时返回空配置"""
    import yaml

    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    return {}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="anvilview",
        description="Load chunks from a Minecraft Anvil world and build render instances",
    )
    parser.add_argument("--config", type=Path, default=None, help="YAML settings file")
    parser.add_argument("--world", default=None, help="World directory, region directory or .mca file")
    parser.add_argument("--center", type=int, nargs=2, metavar=("X", "Z"), default=None,
                        help="Center chunk coordinates")
    parser.add_argument("--radius", type=int, default=None, help="Chunk radius around the center")
    parser.add_argument("--test", action="store_true", help="Use the synthetic test chunk")
    parser.add_argument("--preview", action="store_true", help="Open a PyVista preview")
    parser.add_argument("--screenshot", default=None, help="Render the preview off-screen to this PNG")
    parser.add_argument("--log-level", default=None)
    return parser


def resolve_settings(config: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    """合并 YAML 配置与命令行参数（命令行优先）"""
    world_cfg = config.get("world", {}) or {}
    preview_cfg = config.get("preview", {}) or {}
    center = args.center or world_cfg.get("center", [0, 0])

    return {
        "log_level": args.log_level or config.get("log_level", "INFO"),
        "world_path": args.world or world_cfg.get("path"),
        "center": (int(center[0]), int(center[1])),
        "radius": args.radius if args.radius is not None else int(world_cfg.get("radius", 2)),
        "use_test_chunk": args.test or bool(world_cfg.get("use_test_chunk", False)),
        "preview": args.preview or bool(preview_cfg.get("enabled", False)),
        "screenshot": args.screenshot or preview_cfg.get("screenshot"),
    }


def load_world(settings: Dict[str, Any]):
    from core.world import World, spiral_coords
    from io_formats.storage import RegionStorage

    if settings["use_test_chunk"] or not settings["world_path"]:
        return World.from_test()

    cx, cz = settings["center"]
    coords = spiral_coords(settings["radius"], cx, cz)
    with RegionStorage(settings["world_path"]) as storage:
        return World.from_storage(storage, coords)


def run_preview(instances, settings: Dict[str, Any]) -> None:
    from core.camera import Camera
    from gui.viewport_3d import Viewport3D

    off_screen = bool(settings["screenshot"])
    viewport = Viewport3D(off_screen=off_screen)
    camera = Camera()
    camera.update()
    try:
        viewport.show_instances(instances, camera)
        if off_screen:
            viewport.screenshot(settings["screenshot"])
            logging.getLogger("AnvilView").info("Preview saved: %s", settings["screenshot"])
        else:
            viewport.show()
    finally:
        viewport.close()


def main(argv: Optional[List[str]] = None) -> int:
    """主入口"""
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    settings = resolve_settings(config, args)

    setup_logging(settings["log_level"])
    logger = logging.getLogger("AnvilView")
    logger.info("Starting AnvilView...")

    from core.errors import RendererUnavailable, StorageUnavailable
    from core.instances import flatten, instance_bytes

    try:
        world = load_world(settings)
    except StorageUnavailable as exc:
        logger.error("Cannot open world: %s", exc)
        return 2

    instances = flatten(world)
    logger.info(
        "%d chunks, %d instances (%d bytes)",
        len(world), instances.shape[0], len(instance_bytes(instances)),
    )
    for err in world.report.errors:
        logger.warning("Chunk load error %s", err)

    if settings["preview"] or settings["screenshot"]:
        try:
            run_preview(instances, settings)
        except RendererUnavailable as exc:
            logger.error("Preview unavailable: %s", exc)
            return 3

    return 0


if __name__ == "__main__":
    sys.exit(main())
