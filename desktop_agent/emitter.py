"""设备输入模块：把抽象的鼠标/键盘操作翻译成目标端原语

每个原语都返回 ActionOutcome：要么整体成功，要么失败并附带原因，没有"部分成功"。
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .models import ActionOutcome
from .transport import BUTTON_LEFT, InputTransport

logger = logging.getLogger(__name__)

MODIFIERS = ("ctrl", "shift", "alt", "super")

# 别名 → 规范键名
KEY_TABLE: Dict[str, str] = {
    "enter": "enter", "return": "enter",
    "escape": "escape", "esc": "escape",
    "tab": "tab",
    "backspace": "backspace", "bksp": "backspace", "bsp": "backspace",
    "delete": "delete", "del": "delete",
    "insert": "insert", "ins": "insert",
    "space": "space", "spacebar": "space",
    "up": "up", "arrowup": "up", "arrow_up": "up",
    "down": "down", "arrowdown": "down", "arrow_down": "down",
    "left": "left", "arrowleft": "left", "arrow_left": "left",
    "right": "right", "arrowright": "right", "arrow_right": "right",
    "home": "home", "end": "end",
    "pageup": "pageup", "page_up": "pageup", "pgup": "pageup",
    "pagedown": "pagedown", "page_down": "pagedown", "pgdn": "pagedown",
    "capslock": "capslock", "printscreen": "printscreen", "prtsc": "printscreen",
    "menu": "menu",
    "plus": "+", "minus": "-",
    # 修饰键
    "ctrl": "ctrl", "control": "ctrl", "lctrl": "ctrl",
    "shift": "shift", "lshift": "shift",
    "alt": "alt", "lalt": "alt", "option": "alt",
    "super": "super", "win": "super", "windows": "super", "meta": "super", "cmd": "super",
}
KEY_TABLE.update({f"f{n}": f"f{n}" for n in range(1, 13)})

# 常用组合键
NAMED_COMBOS: Dict[str, Tuple[Tuple[str, ...], str]] = {
    "copy": (("ctrl",), "c"),
    "paste": (("ctrl",), "v"),
    "cut": (("ctrl",), "x"),
    "undo": (("ctrl",), "z"),
    "redo": (("ctrl", "shift"), "z"),
    "select_all": (("ctrl",), "a"),
    "save": (("ctrl",), "s"),
    "find": (("ctrl",), "f"),
    "new_tab": (("ctrl",), "t"),
    "close_tab": (("ctrl",), "w"),
    "close_window": (("alt",), "f4"),
    "switch_window": (("alt",), "tab"),
    "open_terminal": (("ctrl", "alt"), "t"),
}

# 双击前移动后的停顿（秒）
DOUBLE_CLICK_SETTLE = 0.05


def normalize_key(name: str) -> Optional[str]:
    """返回规范键名；单个可打印字符视为字面键；无法识别返回 None"""
    if not isinstance(name, str) or not name:
        return None
    if len(name) == 1 and name.isprintable():
        return name
    return KEY_TABLE.get(name.strip().lower())


def split_combo(key: str) -> Tuple[List[str], str]:
    """"ctrl+shift+t" → (["ctrl", "shift"], "t")；"ctrl++" → (["ctrl"], "+")"""
    parts = [p.strip() for p in key.split("+")]
    if len(parts) >= 2 and parts[-1] == "" and parts[-2] == "":
        # 结尾是字面 "+"
        parts = parts[:-2] + ["+"]
    parts = [p for p in parts if p]
    if not parts:
        return [], key
    return parts[:-1], parts[-1]


class DeviceInputEmitter:
    """设备输入层：只做参数到原语的翻译，不做坐标缩放"""

    def __init__(self, transport: InputTransport,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.transport = transport
        self.sleep = sleep

    async def _run(self, what: str, steps: Sequence[Callable[[], Awaitable[None]]]) -> ActionOutcome:
        try:
            for step in steps:
                await step()
        except Exception as e:
            logger.warning(f"❌ {what} 失败: {e}")
            return ActionOutcome(False, f"{what} failed: {e}")
        return ActionOutcome(True, what)

    async def move_to(self, x: int, y: int) -> ActionOutcome:
        t = self.transport
        return await self._run(f"Moved mouse to ({x}, {y})", [lambda: t.mouse_move(x, y)])

    async def click_at(self, x: int, y: int, button: int = BUTTON_LEFT) -> ActionOutcome:
        t = self.transport
        return await self._run(f"Clicked button {button} at ({x}, {y})", [
            lambda: t.mouse_move(x, y),
            lambda: t.mouse_down(button),
            lambda: t.mouse_up(button),
        ])

    async def double_click_at(self, x: int, y: int) -> ActionOutcome:
        # 真正的双击手势，不是两次单击：部分目标依赖点击间隔识别
        t = self.transport
        return await self._run(f"Double-clicked at ({x}, {y})", [
            lambda: t.mouse_move(x, y),
            lambda: self.sleep(DOUBLE_CLICK_SETTLE),
            lambda: t.mouse_double_click(x, y, BUTTON_LEFT),
        ])

    async def drag_from(self, x1: int, y1: int, x2: int, y2: int) -> ActionOutcome:
        t = self.transport
        what = f"Dragged from ({x1}, {y1}) to ({x2}, {y2})"
        pressed = False
        try:
            await t.mouse_move(x1, y1)
            await t.mouse_down(BUTTON_LEFT)
            pressed = True
            await t.mouse_move(x2, y2)
            pressed = False
            await t.mouse_up(BUTTON_LEFT)
        except Exception as e:
            logger.warning(f"❌ 拖拽失败: {e}")
            if pressed:
                await self._release_quietly(lambda: t.mouse_up(BUTTON_LEFT), "mouse button")
            return ActionOutcome(False, f"{what} failed: {e}")
        return ActionOutcome(True, what)

    async def scroll_at(self, x: int, y: int, clicks: int) -> ActionOutcome:
        t = self.transport
        direction = "up" if clicks > 0 else "down"
        return await self._run(f"Scrolled {direction} {abs(clicks)} at ({x}, {y})", [
            lambda: t.mouse_move(x, y),
            lambda: t.wheel(clicks),
        ])

    async def type_string(self, text: str) -> ActionOutcome:
        if text == "":
            return ActionOutcome(True, "Typed nothing (empty text)")
        preview = text[:30] + ("..." if len(text) > 30 else "")
        t = self.transport
        return await self._run(f'Typed "{preview}"', [lambda: t.type_text(text)])

    async def press_key(self, name: str) -> ActionOutcome:
        """单个命名键，或键表里的常用组合（copy、paste ...）"""
        lowered = name.strip().lower() if isinstance(name, str) else name
        if lowered in NAMED_COMBOS:
            modifiers, key = NAMED_COMBOS[lowered]
            return await self.press_combo(list(modifiers), key)

        key = normalize_key(name)
        if key is None:
            return ActionOutcome(False, f"Unknown key: {name}")
        t = self.transport
        return await self._run(f"Pressed {key}", [
            lambda: t.key_down(key),
            lambda: t.key_up(key),
        ])

    async def press_combo(self, modifiers: List[str], key: str) -> ActionOutcome:
        """
        按下修饰键 → 按下主键 → 松开主键 → 逆序松开修饰键。
        中途失败时，已经按下的修饰键仍会尽力松开，避免卡键。
        """
        resolved_mods = []
        for mod in modifiers:
            canon = normalize_key(mod)
            if canon not in MODIFIERS:
                return ActionOutcome(False, f"Unknown modifier: {mod}")
            if canon not in resolved_mods:
                resolved_mods.append(canon)
        main = normalize_key(key)
        if main is None:
            return ActionOutcome(False, f"Unknown key: {key}")

        combo = "+".join(resolved_mods + [main])
        t = self.transport
        pressed: List[str] = []
        error: Optional[Exception] = None
        try:
            for k in resolved_mods + [main]:
                await t.key_down(k)
                pressed.append(k)
        except Exception as e:
            error = e
            logger.warning(f"❌ 组合键 {combo} 失败: {e}")
        finally:
            # 主键先松开，修饰键按获取的逆序松开
            for k in reversed(pressed):
                try:
                    await t.key_up(k)
                except Exception as e:
                    logger.warning(f"⚠ 松开 {k} 失败: {e}")
                    error = error or e

        if error is not None:
            return ActionOutcome(False, f"Pressed {combo} failed: {error}")
        return ActionOutcome(True, f"Pressed {combo}")

    async def _release_quietly(self, release: Callable[[], Awaitable[None]], what: str) -> None:
        try:
            await release()
        except Exception as e:
            logger.warning(f"⚠ 松开 {what} 失败: {e}")
