"""数据模型定义"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


# ──────────────────────────────────────────────
# 动作（tagged union，每种动作只携带自己需要的字段）
# ──────────────────────────────────────────────

@dataclass
class Click:
    x: Any
    y: Any
    button: str = "left"  # left|middle|right
    tag = "click"


@dataclass
class DoubleClick:
    x: Any
    y: Any
    tag = "double_click"


@dataclass
class Move:
    x: Any
    y: Any
    tag = "move"


@dataclass
class Drag:
    start_x: Any
    start_y: Any
    end_x: Any
    end_y: Any
    tag = "drag"


@dataclass
class Scroll:
    x: Any
    y: Any
    direction: str = "down"  # up|down
    amount: Any = 3
    tag = "scroll"


@dataclass
class TypeText:
    text: Any
    tag = "type"


@dataclass
class KeyPress:
    key: Any
    modifiers: Optional[List[str]] = None
    tag = "key_press"


@dataclass
class Wait:
    duration_ms: Any = 1000
    tag = "wait"


@dataclass
class Screenshot:
    tag = "screenshot"


@dataclass
class Done:
    message: str = "Task completed successfully"
    tag = "done"


@dataclass
class Fail:
    message: str = "Task could not be completed"
    tag = "fail"


@dataclass
class UnknownAction:
    """模型返回了无法识别的 type，原样保留交给 dispatcher 报错"""
    tag: str
    raw: Dict[str, Any] = field(default_factory=dict)


Action = Union[
    Click, DoubleClick, Move, Drag, Scroll, TypeText, KeyPress,
    Wait, Screenshot, Done, Fail, UnknownAction,
]

TERMINAL_ACTIONS = (Done, Fail)


@dataclass
class ActionOutcome:
    """单个动作的执行结果"""
    succeeded: bool
    message: str
    is_terminal: bool = False


@dataclass
class HistoryEntry:
    """一次循环迭代的记录"""
    iteration_index: int
    action: Optional[Action]  # 决策失败时为 None
    outcome_message: str
    succeeded: bool
    screen_changed: bool = False  # 由下一次截图回填
    description: str = ""
    thinking: str = ""


@dataclass(frozen=True)
class KnownLocation:
    """能力表中的一项静态坐标"""
    match_key: str
    x: int
    y: int
    action_kind: str
    description: str


@dataclass
class StagnationCounter:
    consecutive_unchanged_frames: int = 0
    threshold: int = 3

    def observe(self, changed: bool) -> int:
        if changed:
            self.consecutive_unchanged_frames = 0
        else:
            self.consecutive_unchanged_frames += 1
        return self.consecutive_unchanged_frames

    @property
    def warning(self) -> bool:
        return self.consecutive_unchanged_frames >= self.threshold


@dataclass
class StagnationSignal:
    unchanged: bool
    count: int
    warning: bool


@dataclass
class DecisionContext:
    """传给决策模型的上下文"""
    history: List[HistoryEntry]
    iteration_index: int
    max_iterations: int
    stagnation: StagnationSignal


@dataclass
class Decision:
    """决策模型的一次输出"""
    succeeded: bool
    action: Optional[Action] = None
    thinking: str = ""
    error: Optional[str] = None
    rate_limited: bool = False


@dataclass
class CaptureResult:
    succeeded: bool
    frame_path: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ProgressEvent:
    """进度事件：UI / 日志唯一的观察通道"""
    kind: str  # agent_status|agent_iteration|agent_complete|...
    phase: Optional[str]  # capture|think|act|wait|detect|quick
    message: str
    iteration: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)


class RunStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    STOPPED_BY_OPERATOR = "stopped_by_operator"


@dataclass
class RunResult:
    succeeded: bool
    message: str
    iterations_used: int
    history: List[HistoryEntry]
    status: RunStatus
    task: str = ""
    actions_dispatched: int = 0
    decision_failures: int = 0


class StopToken:
    """操作员停止信号：外部任意线程可 set，循环在每轮开始时轮询"""

    def __init__(self):
        self._event = threading.Event()

    def set(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()
