"""远程输入通道：把设备层原语发送到目标桌面"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Set, Tuple

from .errors import DeviceError

logger = logging.getLogger(__name__)

# 设备按键码（X11 / VNC 约定）
BUTTON_LEFT = 1
BUTTON_MIDDLE = 2
BUTTON_RIGHT = 3


class InputTransport(ABC):
    """
    目标桌面能理解的最小输入原语。
    坐标均为目标分辨率下的整数像素；key 为 emitter 键表中的规范键名。
    """

    @abstractmethod
    async def mouse_move(self, x: int, y: int) -> None: ...

    @abstractmethod
    async def mouse_down(self, button: int) -> None: ...

    @abstractmethod
    async def mouse_up(self, button: int) -> None: ...

    @abstractmethod
    async def mouse_double_click(self, x: int, y: int, button: int) -> None: ...

    @abstractmethod
    async def wheel(self, clicks: int) -> None:
        """clicks > 0 向上滚动，< 0 向下"""

    @abstractmethod
    async def key_down(self, key: str) -> None: ...

    @abstractmethod
    async def key_up(self, key: str) -> None: ...

    @abstractmethod
    async def type_text(self, text: str) -> None: ...


class RecordingTransport(InputTransport):
    """
    只记录不发送（dry-run）。
    fail_on 中的原语名被调用时抛 DeviceError，用来模拟目标端失败。
    """

    def __init__(self, fail_on: Optional[Set[str]] = None):
        self.calls: List[Tuple] = []
        self.fail_on = set(fail_on or ())

    def _record(self, name: str, *args) -> None:
        self.calls.append((name,) + args)
        if name in self.fail_on or (name, *args) in self.fail_on:
            raise DeviceError(f"{name}{args} rejected by target")
        logger.debug(f"[dry-run] {name}{args}")

    async def mouse_move(self, x, y):
        self._record("mouse_move", x, y)

    async def mouse_down(self, button):
        self._record("mouse_down", button)

    async def mouse_up(self, button):
        self._record("mouse_up", button)

    async def mouse_double_click(self, x, y, button):
        self._record("mouse_double_click", x, y, button)

    async def wheel(self, clicks):
        self._record("wheel", clicks)

    async def key_down(self, key):
        self._record("key_down", key)

    async def key_up(self, key):
        self._record("key_up", key)

    async def type_text(self, text):
        self._record("type_text", text)


# 规范键名 → 浏览器 KeyboardEvent.key
_BROWSER_KEYS = {
    "enter": "Enter",
    "escape": "Escape",
    "tab": "Tab",
    "backspace": "Backspace",
    "delete": "Delete",
    "insert": "Insert",
    "space": "Space",
    "up": "ArrowUp",
    "down": "ArrowDown",
    "left": "ArrowLeft",
    "right": "ArrowRight",
    "home": "Home",
    "end": "End",
    "pageup": "PageUp",
    "pagedown": "PageDown",
    "ctrl": "Control",
    "shift": "Shift",
    "alt": "Alt",
    "super": "Meta",
    "capslock": "CapsLock",
    "printscreen": "PrintScreen",
    "menu": "ContextMenu",
}

_BROWSER_BUTTONS = {BUTTON_LEFT: "left", BUTTON_MIDDLE: "middle", BUTTON_RIGHT: "right"}

# 每个滚轮"格"对应的像素
WHEEL_STEP_PX = 100


class PlaywrightTransport(InputTransport):
    """
    通过浏览器里的远程桌面查看器（noVNC 等）发送输入。
    查看器把 canvas 上的鼠标/键盘事件转发给虚拟机，
    这里只负责把目标分辨率坐标映射到 canvas 在页面中的位置。
    """

    def __init__(self, page, surface_selector: str = "canvas",
                 screen_width: int = 1920, screen_height: int = 1080):
        self.page = page
        self.surface_selector = surface_selector
        self.screen_width = screen_width
        self.screen_height = screen_height
        self._box: Optional[dict] = None

    async def _surface_box(self) -> dict:
        if self._box is None:
            box = await self.page.locator(self.surface_selector).first.bounding_box()
            if box is None:
                raise DeviceError(f"Viewer surface {self.surface_selector!r} is not visible")
            self._box = box
        return self._box

    async def _to_page(self, x: int, y: int) -> Tuple[float, float]:
        box = await self._surface_box()
        return (
            box["x"] + x * box["width"] / self.screen_width,
            box["y"] + y * box["height"] / self.screen_height,
        )

    @staticmethod
    def _button(button: int) -> str:
        try:
            return _BROWSER_BUTTONS[button]
        except KeyError:
            raise DeviceError(f"Unsupported mouse button code: {button}") from None

    @staticmethod
    def _key(key: str) -> str:
        if key in _BROWSER_KEYS:
            return _BROWSER_KEYS[key]
        if key.startswith("f") and key[1:].isdigit():
            return key.upper()
        return key

    async def mouse_move(self, x, y):
        px, py = await self._to_page(x, y)
        await self.page.mouse.move(px, py)

    async def mouse_down(self, button):
        await self.page.mouse.down(button=self._button(button))

    async def mouse_up(self, button):
        await self.page.mouse.up(button=self._button(button))

    async def mouse_double_click(self, x, y, button):
        px, py = await self._to_page(x, y)
        await self.page.mouse.dblclick(px, py, button=self._button(button))

    async def wheel(self, clicks):
        # 浏览器 deltaY > 0 表示向下
        await self.page.mouse.wheel(0, -clicks * WHEEL_STEP_PX)

    async def key_down(self, key):
        await self.page.keyboard.down(self._key(key))

    async def key_up(self, key):
        await self.page.keyboard.up(self._key(key))

    async def type_text(self, text):
        await self.page.keyboard.type(text)
