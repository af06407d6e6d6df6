import asyncio
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from desktop_agent.config import AgentConfig
from desktop_agent.controller import Controller
from desktop_agent.core import DesktopAgent
from desktop_agent.emitter import DeviceInputEmitter
from desktop_agent.models import CaptureResult, Decision
from desktop_agent.registry import CapabilityRegistry
from desktop_agent.transport import RecordingTransport


class RecordingSleep:
    """替代 asyncio.sleep：记录时长，不真正等待"""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeCapture:
    """按顺序返回预设的帧，用完后重复最后一帧"""

    def __init__(self, tmp_path: Path, frames: Optional[List[bytes]] = None, fail: bool = False):
        self.tmp_path = tmp_path
        self.frames = list(frames or [b"frame-0"])
        self.fail = fail
        self.calls = 0

    async def capture(self, target_id: str = "default") -> CaptureResult:
        self.calls += 1
        if self.fail:
            return CaptureResult(succeeded=False, error="VM is not running")
        frame = self.frames[min(self.calls - 1, len(self.frames) - 1)]
        path = self.tmp_path / f"{target_id}_{self.calls}.png"
        path.write_bytes(frame)
        return CaptureResult(succeeded=True, frame_path=str(path))


class ScriptedPlanner:
    """按脚本返回 Decision；可选 on_call 钩子用于在调用时制造副作用"""

    def __init__(self, decisions: List, on_call: Optional[Callable[[int], None]] = None):
        self.decisions = list(decisions)
        self.on_call = on_call
        self.calls = []

    async def decide(self, task, frame_bytes, context) -> Decision:
        self.calls.append((task, frame_bytes, context))
        if self.on_call is not None:
            self.on_call(len(self.calls))
        item = self.decisions[min(len(self.calls) - 1, len(self.decisions) - 1)]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, Decision):
            return item
        return Decision(True, action=item, thinking=f"step {len(self.calls)}")


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def controller(transport, sleep):
    return Controller(DeviceInputEmitter(transport, sleep=sleep), sleep=sleep)


@pytest.fixture
def make_agent(tmp_path, controller, sleep):
    def factory(planner, frames=None, capture_fails=False, registry=None, **config):
        capture = FakeCapture(tmp_path, frames, fail=capture_fails)
        agent = DesktopAgent(
            capture,
            planner,
            controller,
            registry or CapabilityRegistry(),
            AgentConfig(**config),
            sleep=sleep,
        )
        agent.fake_capture = capture
        return agent

    return factory
