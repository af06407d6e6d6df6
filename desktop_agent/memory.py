"""记忆模块：保存本次运行的历史步骤"""

from typing import List, Optional

from .models import Action, HistoryEntry


class Memory:
    """只追加的历史记录，运行结束即丢弃"""

    def __init__(self):
        self.history: List[HistoryEntry] = []

    def record(self, iteration_index: int, action: Optional[Action], description: str,
               outcome_message: str, succeeded: bool, thinking: str = "") -> HistoryEntry:
        """记录单步操作"""
        entry = HistoryEntry(
            iteration_index=iteration_index,
            action=action,
            outcome_message=outcome_message,
            succeeded=succeeded,
            description=description,
            thinking=thinking,
        )
        self.history.append(entry)
        return entry

    def record_failure(self, iteration_index: int, error: str) -> HistoryEntry:
        """决策失败也要留下记录，让模型下一轮看到"""
        return self.record(iteration_index, None, f"Error: {error}", error, succeeded=False)

    def mark_screen_changed(self, changed: bool) -> None:
        """画面变化是上一步动作的结果，只能在本轮截图后回填"""
        if self.history:
            self.history[-1].screen_changed = changed

    @property
    def dispatched_count(self) -> int:
        return sum(1 for entry in self.history if entry.action is not None)

    @property
    def failed_decisions(self) -> int:
        return sum(1 for entry in self.history if entry.action is None)

    def snapshot(self) -> List[HistoryEntry]:
        return list(self.history)


def format_history(history: List[HistoryEntry], last_n: int = 10) -> str:
    """格式化历史记录，给 LLM 看"""
    if not history:
        return "(no previous actions)"

    lines = []
    start = max(len(history) - last_n, 0)
    for idx, rec in enumerate(history[start:], start=start + 1):
        status = "OK" if rec.succeeded else f"FAILED ({rec.outcome_message})"
        changed = "screen changed" if rec.screen_changed else "screen did NOT change"
        lines.append(f"Step {idx}: {rec.description} → {status}, {changed}")

    return "\n".join(lines)
