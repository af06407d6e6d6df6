"""Desktop Agent 包

包含各个模块：
- models: 数据模型
- config: 配置
- registry: 能力表（快速路径）
- grid: 坐标网格
- perception: 感知模块（截图 + 画面变化检测）
- planner: 规划模块（视觉大模型决策）
- controller: 执行模块（动作校验与分发）
- emitter: 设备输入模块
- transport: 远程输入通道
- memory: 记忆模块
- core: 核心 Agent 类
"""

from .config import AgentConfig
from .controller import Controller, describe_action, validate
from .core import DesktopAgent
from .emitter import DeviceInputEmitter
from .grid import GridMapper
from .memory import Memory
from .models import (
    ActionOutcome, Click, DoubleClick, Done, Drag, Fail, HistoryEntry, KeyPress,
    KnownLocation, Move, ProgressEvent, RunResult, RunStatus, Screenshot, Scroll,
    StopToken, TypeText, Wait,
)
from .perception import ChangeDetector, PlaywrightCapture, fingerprint
from .planner import Planner, parse_action
from .registry import CapabilityRegistry
from .transport import PlaywrightTransport, RecordingTransport

__all__ = [
    "AgentConfig",
    "ActionOutcome",
    "CapabilityRegistry",
    "ChangeDetector",
    "Click",
    "Controller",
    "DesktopAgent",
    "DeviceInputEmitter",
    "Done",
    "DoubleClick",
    "Drag",
    "Fail",
    "GridMapper",
    "HistoryEntry",
    "KeyPress",
    "KnownLocation",
    "Memory",
    "Move",
    "Planner",
    "PlaywrightCapture",
    "PlaywrightTransport",
    "ProgressEvent",
    "RecordingTransport",
    "RunResult",
    "RunStatus",
    "Screenshot",
    "Scroll",
    "StopToken",
    "TypeText",
    "Wait",
    "describe_action",
    "fingerprint",
    "parse_action",
    "validate",
]
