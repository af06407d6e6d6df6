"""能力表：常见桌面入口（桌面图标、任务栏）的已知坐标

命中时 Agent 直接点击，不调用决策模型。
坐标基于 1920x1080 的 KDE 桌面。
"""

import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from .errors import ConfigError
from .models import KnownLocation

logger = logging.getLogger(__name__)


def _loc(key: str, x: int, y: int, description: str, action_kind: str = "click") -> KnownLocation:
    return KnownLocation(match_key=key, x=x, y=y, action_kind=action_kind, description=description)


# 顺序有意义：第一个命中的 key 生效（"vlc taskbar" 永远被 "vlc" 抢先）
DEFAULT_LOCATIONS: Tuple[KnownLocation, ...] = (
    # 桌面图标（左上角）
    _loc("vlc", 46, 55, "VLC media player desktop icon"),
    _loc("vlc media player", 46, 55, "VLC media player desktop icon"),
    _loc("media player", 46, 55, "VLC media player desktop icon"),
    _loc("zen browser", 46, 165, "Zen Browser desktop icon"),
    _loc("zenbrowser", 46, 165, "Zen Browser desktop icon"),
    _loc("zen", 46, 165, "Zen Browser desktop icon"),
    _loc("browser", 46, 165, "Zen Browser desktop icon"),
    # 任务栏（底部，y ≈ 740）
    _loc("app menu", 30, 740, "App menu in taskbar"),
    _loc("menu", 30, 740, "App menu in taskbar"),
    _loc("start", 30, 740, "App menu in taskbar"),
    _loc("show desktop", 78, 740, "Show desktop in taskbar"),
    _loc("vlc taskbar", 128, 740, "VLC in taskbar"),
    _loc("settings", 178, 740, "Settings in taskbar"),
    _loc("file manager", 228, 740, "File manager (Dolphin) in taskbar"),
    _loc("files", 228, 740, "File manager (Dolphin) in taskbar"),
    _loc("dolphin", 228, 740, "Dolphin file manager in taskbar"),
    _loc("terminal", 278, 740, "Terminal (Konsole) in taskbar"),
    _loc("konsole", 278, 740, "Konsole terminal in taskbar"),
    _loc("console", 278, 740, "Terminal in taskbar"),
)

_SUPPORTED_KINDS = ("click", "double_click")


class CapabilityRegistry:
    """只读能力表，进程启动时加载一次"""

    def __init__(self, locations: Iterable[KnownLocation] = DEFAULT_LOCATIONS):
        self._locations: Tuple[KnownLocation, ...] = tuple(locations)

    @property
    def locations(self) -> Tuple[KnownLocation, ...]:
        return self._locations

    def lookup(self, task: str) -> Optional[KnownLocation]:
        """大小写不敏感的子串匹配，返回第一个命中项"""
        task_lower = task.lower()
        for location in self._locations:
            if location.match_key.lower() in task_lower:
                return location
        return None

    @classmethod
    def from_file(cls, path: str, base: Iterable[KnownLocation] = DEFAULT_LOCATIONS) -> "CapabilityRegistry":
        """内置表在前，文件中的条目追加在后"""
        extra = load_locations(path)
        logger.info(f"✓ 从 {path} 加载 {len(extra)} 个额外坐标")
        return cls(tuple(base) + tuple(extra))


def load_locations(path: str) -> List[KnownLocation]:
    """
    读取 JSON 列表，每项形如：
        {"match_key": "gimp", "x": 100, "y": 200, "action_kind": "click", "description": "..."}
    """
    try:
        items = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read locations file {path}: {e}") from e

    if not isinstance(items, list):
        raise ConfigError(f"Locations file {path} must contain a JSON list")

    locations = []
    for idx, item in enumerate(items):
        try:
            kind = item.get("action_kind", "click")
            if kind not in _SUPPORTED_KINDS:
                raise ValueError(f"unsupported action_kind {kind!r}")
            locations.append(KnownLocation(
                match_key=str(item["match_key"]).lower(),
                x=int(item["x"]),
                y=int(item["y"]),
                action_kind=kind,
                description=str(item.get("description", item["match_key"])),
            ))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Invalid location #{idx} in {path}: {e}") from e
    return locations
