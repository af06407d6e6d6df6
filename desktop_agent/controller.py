"""执行模块：校验决策模型给出的动作，并交给设备输入层执行"""

import asyncio
import logging
from typing import Awaitable, Callable, List

from .emitter import DeviceInputEmitter, split_combo
from .errors import UnknownActionTag, ValidationError
from .models import (
    Action, ActionOutcome, Click, DoubleClick, Done, Drag, Fail, KeyPress,
    Move, Screenshot, Scroll, TypeText, UnknownAction, Wait,
)
from .transport import BUTTON_LEFT, BUTTON_MIDDLE, BUTTON_RIGHT

logger = logging.getLogger(__name__)

BUTTON_CODES = {"left": BUTTON_LEFT, "middle": BUTTON_MIDDLE, "right": BUTTON_RIGHT}
SCROLL_DIRECTIONS = ("up", "down")


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _require_numbers(tag: str, **values) -> None:
    bad = [name for name, value in values.items() if not _is_number(value)]
    if bad:
        raise ValidationError(bad, f"{tag} requires numeric {', '.join(bad)}")


def validate(action: Action) -> None:
    """校验动作形状；不合法时抛 ValidationError（字段）或 UnknownActionTag"""
    if isinstance(action, (Click, DoubleClick, Move)):
        _require_numbers(action.tag, x=action.x, y=action.y)
        if isinstance(action, Click) and action.button not in BUTTON_CODES:
            raise ValidationError(["button"], f"click button must be one of left, middle, right (got {action.button!r})")
    elif isinstance(action, Drag):
        _require_numbers("drag", start_x=action.start_x, start_y=action.start_y,
                         end_x=action.end_x, end_y=action.end_y)
    elif isinstance(action, Scroll):
        _require_numbers("scroll", x=action.x, y=action.y)
        if action.direction not in SCROLL_DIRECTIONS:
            raise ValidationError(["direction"], f"scroll direction must be up or down (got {action.direction!r})")
        if not isinstance(action.amount, int) or isinstance(action.amount, bool) or action.amount < 1:
            raise ValidationError(["amount"], "scroll amount must be a positive integer")
    elif isinstance(action, TypeText):
        if not isinstance(action.text, str):
            raise ValidationError(["text"], "type action requires text string")
    elif isinstance(action, KeyPress):
        if not isinstance(action.key, str) or not action.key.strip():
            raise ValidationError(["key"], "key_press action requires a non-empty key")
        if action.modifiers is not None and (
                not isinstance(action.modifiers, list)
                or not all(isinstance(m, str) for m in action.modifiers)):
            raise ValidationError(["modifiers"], "key_press modifiers must be a list of key names")
    elif isinstance(action, Wait):
        if not _is_number(action.duration_ms) or action.duration_ms < 0:
            raise ValidationError(["duration_ms"], "wait requires a non-negative duration_ms")
    elif isinstance(action, (Screenshot, Done, Fail)):
        pass
    elif isinstance(action, UnknownAction):
        raise UnknownActionTag(action.tag)
    else:
        raise UnknownActionTag(type(action).__name__)


def describe_action(action: Action) -> str:
    """生成人类可读的动作描述（进度事件、历史记录都用它）"""
    if isinstance(action, Click):
        prefix = "Click" if action.button == "left" else f"{str(action.button).capitalize()}-click"
        return f"{prefix} at ({action.x}, {action.y})"
    if isinstance(action, DoubleClick):
        return f"Double-click at ({action.x}, {action.y})"
    if isinstance(action, Move):
        return f"Move mouse to ({action.x}, {action.y})"
    if isinstance(action, Drag):
        return f"Drag from ({action.start_x}, {action.start_y}) to ({action.end_x}, {action.end_y})"
    if isinstance(action, Scroll):
        return f"Scroll {action.direction} {action.amount} at ({action.x}, {action.y})"
    if isinstance(action, TypeText):
        text = action.text if isinstance(action.text, str) else ""
        return f'Type: "{text[:30]}{"..." if len(text) > 30 else ""}"'
    if isinstance(action, KeyPress):
        mods = "+".join(action.modifiers) + "+" if action.modifiers else ""
        return f"Press key: {mods}{action.key}"
    if isinstance(action, Wait):
        return f"Wait {action.duration_ms}ms"
    if isinstance(action, Screenshot):
        return "Take screenshot"
    if isinstance(action, Done):
        return f"Task completed: {action.message}"
    if isinstance(action, Fail):
        return f"Error: {action.message}"
    if isinstance(action, UnknownAction):
        return f"Unknown action: {action.tag}"
    return f"Unknown action: {type(action).__name__}"


class Controller:
    """执行模块：校验并分发动作，任何错误都变成失败的 ActionOutcome，不向上抛"""

    def __init__(self, emitter: DeviceInputEmitter,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.emitter = emitter
        self.sleep = sleep

    async def dispatch(self, action: Action) -> ActionOutcome:
        try:
            validate(action)
        except (ValidationError, UnknownActionTag) as e:
            logger.warning(f"❌ 动作无效: {e}")
            return ActionOutcome(False, str(e))

        try:
            outcome = await self._route(action)
        except Exception as e:
            logger.exception(f"❌ 执行 {describe_action(action)} 时出错")
            return ActionOutcome(False, f"{action.tag} failed: {e}")

        if outcome.succeeded:
            logger.info(f"✓ {outcome.message}")
        return outcome

    async def _route(self, action: Action) -> ActionOutcome:
        em = self.emitter
        if isinstance(action, Click):
            return await em.click_at(int(action.x), int(action.y), BUTTON_CODES[action.button])
        if isinstance(action, DoubleClick):
            return await em.double_click_at(int(action.x), int(action.y))
        if isinstance(action, Move):
            return await em.move_to(int(action.x), int(action.y))
        if isinstance(action, Drag):
            return await em.drag_from(int(action.start_x), int(action.start_y),
                                      int(action.end_x), int(action.end_y))
        if isinstance(action, Scroll):
            clicks = action.amount if action.direction == "up" else -action.amount
            return await em.scroll_at(int(action.x), int(action.y), clicks)
        if isinstance(action, TypeText):
            return await em.type_string(action.text)
        if isinstance(action, KeyPress):
            return await self._press(action)
        if isinstance(action, Wait):
            await self.sleep(action.duration_ms / 1000)
            return ActionOutcome(True, f"Waited {action.duration_ms}ms")
        if isinstance(action, Screenshot):
            # 每轮开始都会重新截图，这里无需额外操作
            return ActionOutcome(True, "Screenshot will be taken at the start of the next iteration")
        if isinstance(action, Done):
            return ActionOutcome(True, action.message, is_terminal=True)
        if isinstance(action, Fail):
            return ActionOutcome(False, action.message, is_terminal=True)
        raise UnknownActionTag(action.tag)

    async def _press(self, action: KeyPress) -> ActionOutcome:
        modifiers: List[str] = list(action.modifiers or [])
        key = action.key.strip()
        if "+" in key and key != "+":
            combo_mods, key = split_combo(key)
            modifiers += combo_mods
        if modifiers:
            return await self.emitter.press_combo(modifiers, key)
        return await self.emitter.press_key(key)
