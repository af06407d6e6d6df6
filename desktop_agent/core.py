"""桌面自动化智能体核心类：截图 → 思考 → 执行 → 循环"""

import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Set

from .config import AgentConfig
from .controller import Controller, describe_action
from .errors import CaptureError, OracleChannelError
from .memory import Memory
from .models import (
    TERMINAL_ACTIONS, Action, ActionOutcome, Click, DecisionContext, DoubleClick, Done,
    KnownLocation, ProgressEvent, RunResult, RunStatus, StagnationSignal, StopToken,
)
from .perception import ChangeDetector
from .planner import Planner
from .registry import CapabilityRegistry

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], Any]


class _Progress:
    """进度通道：尽力投递，回调出错不影响运行"""

    def __init__(self, callback: Optional[ProgressCallback]):
        self.callback = callback
        # 事件循环只弱引用 task，异步回调在完成前由这里持有
        self._pending: Set["asyncio.Future"] = set()

    def emit(self, kind: str, message: str, phase: Optional[str] = None,
             iteration: Optional[int] = None, **data) -> None:
        event = ProgressEvent(kind=kind, phase=phase, message=message, iteration=iteration, data=data)
        logger.info(f"[Agent] {kind}: {message}"[:200])
        if self.callback is None:
            return
        try:
            result = self.callback(event)
            if inspect.isawaitable(result):
                future = asyncio.ensure_future(result)
                self._pending.add(future)
                future.add_done_callback(self._done)
        except Exception as e:
            logger.warning(f"⚠ 进度回调出错（已忽略）: {e}")

    async def drain(self, timeout: float = 5.0) -> None:
        """运行结束前给未完成的异步回调一点时间，超时不等"""
        if self._pending:
            await asyncio.wait(list(self._pending), timeout=timeout)

    def _done(self, future: "asyncio.Future") -> None:
        self._pending.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.warning(f"⚠ 进度回调出错（已忽略）: {future.exception()}")


class _Run:
    """单次运行的全部可变状态，运行结束即丢弃"""

    def __init__(self, task: str, config: AgentConfig, progress: _Progress, stop: StopToken):
        self.task = task
        self.progress = progress
        self.stop = stop
        self.memory = Memory()
        self.detector = ChangeDetector(config.stagnation_threshold, config.fingerprint_sample_chars)
        self.iteration = 0

    def result(self, status: RunStatus, message: str) -> RunResult:
        return RunResult(
            succeeded=status is RunStatus.COMPLETED,
            message=message,
            iterations_used=self.iteration,
            history=self.memory.snapshot(),
            status=status,
            task=self.task,
            actions_dispatched=self.memory.dispatched_count,
            decision_failures=self.memory.failed_decisions,
        )


class DesktopAgent:
    """桌面自动化智能体"""

    def __init__(self, capture, planner: Planner, controller: Controller,
                 registry: Optional[CapabilityRegistry] = None,
                 config: Optional[AgentConfig] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 target_id: str = "default"):
        self.capture = capture
        self.planner = planner
        self.controller = controller
        self.registry = registry or CapabilityRegistry()
        self.config = config or AgentConfig()
        self.sleep = sleep
        self.target_id = target_id

    async def run(self, task: str, emit_progress: Optional[ProgressCallback] = None,
                  stop_token: Optional[StopToken] = None) -> RunResult:
        """
        执行任务：先查能力表走快速路径，否则进入 截图 → 决策 → 执行 主循环。
        只有截图失败、决策通道不可用或内部异常会以 FAILED 结束。
        """
        run = _Run(task, self.config, _Progress(emit_progress), stop_token or StopToken())
        run.progress.emit("agent_start", f"Task: {task}", task=task,
                          max_iterations=self.config.max_iterations)
        try:
            location = self.registry.lookup(task)
            if location is not None:
                return await self._quick_path(run, location)
            return await self._loop(run)
        except (CaptureError, OracleChannelError) as e:
            run.progress.emit("agent_error", str(e), iteration=run.iteration)
            return run.result(RunStatus.FAILED, f"Agent error: {e}")
        except Exception as e:
            logger.exception("❌ Agent 运行出现未处理异常")
            run.progress.emit("agent_error", str(e), iteration=run.iteration)
            return run.result(RunStatus.FAILED, f"Agent error: {e}")
        finally:
            await run.progress.drain()

    async def execute_single_action(self, action: Action) -> ActionOutcome:
        """单独执行一个动作（手动调试用）"""
        return await self.controller.dispatch(action)

    # ──────────────────────────────────────────────
    # 快速路径
    # ──────────────────────────────────────────────

    async def _quick_path(self, run: _Run, location: KnownLocation) -> RunResult:
        progress = run.progress
        progress.emit("agent_status", f"Found known location: {location.description}", phase="quick")
        run.iteration = 1
        progress.emit("agent_iteration", f"Iteration 1/{self.config.max_iterations}", iteration=1)

        # 截图只用于展示，失败不影响快速路径
        await self._observe_quietly(run, "Taking screenshot...")

        if location.action_kind == "double_click":
            action: Action = DoubleClick(location.x, location.y)
        else:
            action = Click(location.x, location.y)
        progress.emit(
            "agent_thinking",
            f'I recognize this task! "{location.match_key}" is at a known location '
            f"({location.x}, {location.y}). I'll click there directly.",
            iteration=1,
        )
        progress.emit("agent_status", f"{describe_action(action)} - {location.description}",
                      phase="act", iteration=1)
        outcome = await self.controller.dispatch(action)
        run.memory.record(1, action, location.description, outcome.message, outcome.succeeded,
                          thinking=f"Used known location for {location.match_key}")
        progress.emit("agent_action_result", outcome.message, iteration=1,
                      description=describe_action(action), success=outcome.succeeded)

        await self.sleep(self.config.quick_path_settle_ms / 1000)
        await self._observe_quietly(run, "Taking verification screenshot...")

        if not outcome.succeeded:
            # 快速路径总是以 Completed 结束，失败只体现在历史和告警里
            progress.emit("agent_warning", f"Action failed: {outcome.message}", iteration=1)

        message = f"Opened {location.match_key} successfully!"
        progress.emit("agent_complete", message, iteration=1)
        return run.result(RunStatus.COMPLETED, message)

    async def _observe_quietly(self, run: _Run, message: str) -> None:
        try:
            frame = await self._capture(run, message)
        except CaptureError as e:
            run.progress.emit("agent_warning", f"Screenshot skipped: {e}", iteration=run.iteration)
            return
        run.memory.mark_screen_changed(run.detector.observe(frame))

    # ──────────────────────────────────────────────
    # 主循环
    # ──────────────────────────────────────────────

    async def _loop(self, run: _Run) -> RunResult:
        cfg = self.config
        progress = run.progress

        while run.iteration < cfg.max_iterations:
            # 0. 停止信号只在每轮开始时检查
            if run.stop.is_set():
                message = "Agent stopped by user"
                progress.emit("agent_stopped", message, iteration=run.iteration)
                return run.result(RunStatus.STOPPED_BY_OPERATOR, message)

            run.iteration += 1
            it = run.iteration
            progress.emit("agent_iteration", f"Iteration {it}/{cfg.max_iterations}", iteration=it)

            # 1. 截图
            frame = await self._capture(run, "Taking screenshot...")

            # 2. 画面变化检测（结果属于上一步动作）
            changed = run.detector.observe(frame)
            run.memory.mark_screen_changed(changed)
            self._report_change(run, changed)

            # 3. 决策
            stagnation = StagnationSignal(
                unchanged=run.detector.unchanged_count > 0,
                count=run.detector.unchanged_count,
                warning=run.detector.stagnating,
            )
            context = DecisionContext(run.memory.snapshot(), it, cfg.max_iterations, stagnation)
            progress.emit("agent_status", "AI analyzing screen...", phase="think", iteration=it)
            decision = await self.planner.decide(run.task, frame, context)

            if not decision.succeeded:
                progress.emit("agent_error", f"AI failed: {decision.error}", iteration=it)
                if decision.rate_limited:
                    backoff = cfg.rate_limit_backoff_ms
                    progress.emit("agent_status", f"Rate limited, waiting {backoff / 1000:g} seconds...",
                                  phase="wait", iteration=it)
                else:
                    backoff = cfg.error_backoff_ms
                await self.sleep(backoff / 1000)
                # 重试同样消耗迭代次数
                run.memory.record_failure(it, decision.error or "unknown decision error")
                continue

            action = decision.action
            progress.emit("agent_thinking", decision.thinking, iteration=it,
                          action=describe_action(action))

            # 4. 终止动作
            if isinstance(action, TERMINAL_ACTIONS):
                if isinstance(action, Done):
                    progress.emit("agent_complete", action.message, iteration=it)
                    return run.result(RunStatus.COMPLETED, action.message)
                progress.emit("agent_failed", action.message, iteration=it)
                return run.result(RunStatus.FAILED, action.message)

            # 5. 执行
            description = describe_action(action)
            progress.emit("agent_status", f"Executing: {description}", phase="act", iteration=it)
            outcome = await self.controller.dispatch(action)
            run.memory.record(it, action, description, outcome.message, outcome.succeeded,
                              thinking=decision.thinking)
            progress.emit("agent_action_result", outcome.message, iteration=it,
                          description=description, success=outcome.succeeded)
            if not outcome.succeeded:
                # 不中断，交给下一轮决策纠正
                progress.emit("agent_warning", f"Action failed: {outcome.message}", iteration=it)

            # 6. 等待界面刷新 + 模型限速
            progress.emit("agent_status", "Waiting for screen to update...", phase="wait", iteration=it)
            await self.sleep(cfg.settle_delay_ms / 1000)
            await self.sleep(cfg.inter_call_delay_ms / 1000)

        message = f"Reached maximum iterations ({cfg.max_iterations}). Task may be incomplete."
        progress.emit("agent_timeout", message, iteration=run.iteration)
        return run.result(RunStatus.TIMED_OUT, message)

    async def _capture(self, run: _Run, message: str) -> bytes:
        run.progress.emit("agent_status", message, phase="capture", iteration=run.iteration)
        result = await self.capture.capture(self.target_id)
        if not result.succeeded:
            raise CaptureError(f"Screenshot failed: {result.error}")
        try:
            frame = Path(result.frame_path).read_bytes()
        except (OSError, TypeError) as e:
            raise CaptureError(f"Screenshot unreadable: {e}") from e
        run.progress.emit("agent_screenshot", result.frame_path, iteration=run.iteration,
                          path=result.frame_path)
        return frame

    def _report_change(self, run: _Run, changed: bool) -> None:
        if run.iteration == 1:
            return
        progress = run.progress
        if changed:
            progress.emit("agent_status", "Screen changed - action was effective!",
                          phase="detect", iteration=run.iteration)
            return
        count = run.detector.unchanged_count
        threshold = run.detector.counter.threshold
        progress.emit("agent_status", f"Screen unchanged ({count}/{threshold})",
                      phase="detect", iteration=run.iteration)
        if run.detector.stagnating:
            progress.emit("agent_warning", "Screen not responding to actions. Trying alternative approach...",
                          iteration=run.iteration)
