"""规划模块：把截图 + 历史交给视觉大模型，解析出下一步动作"""

import base64
import json
import logging
import re
from typing import Any, Dict, Optional, Tuple

import openai
from openai import AsyncOpenAI

from .errors import MalformedResponse, OracleChannelError, OracleError, RateLimited
from .grid import GridMapper
from .memory import format_history
from .models import (
    Action, Click, Decision, DecisionContext, DoubleClick, Done, Drag, Fail,
    KeyPress, Move, Screenshot, Scroll, TypeText, UnknownAction, Wait,
)

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)```", re.DOTALL)

SYSTEM_PROMPT = """你是一个桌面自动化智能体，通过截图观察一台远程 Linux 桌面，并用鼠标键盘完成用户的任务。
{grid}
坐标一律使用上述分辨率下的整数像素；也可以用 "grid": "B3" 代替 x/y，表示该格子的中心。

【极其重要的规则】：
1. 每次只输出一个动作。
2. 如果截图显示任务已经完成，立即输出 done。
3. 如果历史中显示画面没有变化，说明上一步无效，换一种做法，不要重复同一个动作。
4. 如果确定任务无法完成，输出 error 并说明原因。

你必须且只能输出 JSON 字符串，格式如下：
{{
  "thinking": "描述你在截图中看到了什么，以及为什么选择这个动作",
  "action": {{"type": "...", ...}}
}}

可用的 action：
  {{"type": "click", "x": 100, "y": 200, "button": "left|right|middle"}}
  {{"type": "double_click", "x": 100, "y": 200}}
  {{"type": "right_click", "x": 100, "y": 200}}
  {{"type": "move", "x": 100, "y": 200}}
  {{"type": "drag", "startX": 10, "startY": 20, "endX": 300, "endY": 400}}
  {{"type": "scroll", "x": 960, "y": 540, "direction": "up|down", "amount": 3}}
  {{"type": "type", "text": "hello"}}
  {{"type": "key_press", "key": "enter"}}   （组合键写成 "ctrl+c"）
  {{"type": "wait", "duration": 1000}}
  {{"type": "done", "message": "完成说明"}}
  {{"type": "error", "message": "无法完成的原因"}}
"""


def _pick(data: Dict[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        if name in data and data[name] is not None:
            return data[name]
    return default


def _coords(data: Dict[str, Any], grid: Optional[GridMapper]) -> Tuple[Any, Any]:
    x, y = data.get("x"), data.get("y")
    if (x is None or y is None) and grid is not None and isinstance(data.get("grid"), str):
        try:
            x, y = grid.grid_to_pixel(data["grid"])
        except ValueError:
            logger.warning(f"⚠ 无效的网格引用: {data['grid']}")
    return x, y


def parse_action(data: Any, grid: Optional[GridMapper] = None) -> Action:
    """把模型输出的 dict 转成 Action；字段内容的合法性留给 controller.validate"""
    if not isinstance(data, dict):
        raise MalformedResponse(f"Action must be an object, got {type(data).__name__}")
    tag = data.get("type")
    if not isinstance(tag, str) or not tag:
        raise MalformedResponse("Action must have a type")
    tag = tag.strip().lower()

    if tag in ("click", "left_click", "right_click", "middle_click"):
        x, y = _coords(data, grid)
        default_button = tag.split("_")[0] if tag != "click" else "left"
        return Click(x, y, button=_pick(data, "button", default=default_button))
    if tag in ("double_click", "doubleclick"):
        return DoubleClick(*_coords(data, grid))
    if tag in ("move", "mouse_move", "hover"):
        return Move(*_coords(data, grid))
    if tag == "drag":
        return Drag(
            _pick(data, "startX", "start_x"),
            _pick(data, "startY", "start_y"),
            _pick(data, "endX", "end_x"),
            _pick(data, "endY", "end_y"),
        )
    if tag == "scroll":
        x, y = _coords(data, grid)
        return Scroll(x, y,
                      direction=str(_pick(data, "direction", default="down")).lower(),
                      amount=_pick(data, "amount", default=3))
    if tag in ("type", "type_text", "write"):
        return TypeText(data.get("text"))
    if tag in ("key_press", "key", "keypress", "hotkey"):
        return KeyPress(_pick(data, "key", "keys"), modifiers=data.get("modifiers"))
    if tag == "wait":
        return Wait(_pick(data, "duration", "durationMs", "duration_ms", default=1000))
    if tag == "screenshot":
        return Screenshot()
    if tag == "done":
        return Done(_pick(data, "message", default="Task completed successfully"))
    if tag in ("error", "fail"):
        return Fail(_pick(data, "message", default="Task could not be completed"))
    return UnknownAction(tag=tag, raw=data)


def parse_decision(content: str, grid: Optional[GridMapper] = None) -> Tuple[Action, str]:
    """解析模型的原始文本输出，返回 (action, thinking)"""
    text = (content or "").strip()
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1).strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"Invalid JSON from model: {e}") from e
    if not isinstance(data, dict):
        raise MalformedResponse("Model output must be a JSON object")

    # 兼容直接返回动作本身（没有外层 action 字段）的情况
    raw_action = data.get("action", data if "type" in data else None)
    if raw_action is None:
        raise MalformedResponse("Model output has no action")
    return parse_action(raw_action, grid), str(data.get("thinking", data.get("thought", "")))


class Planner:
    """决策模块：每次调用最多返回一个动作"""

    def __init__(self, client: AsyncOpenAI, model: str, grid: GridMapper,
                 temperature: float = 0.0, max_tokens: int = 500):
        self.client = client
        self.model = model
        self.grid = grid
        self.temperature = temperature
        self.max_tokens = max_tokens

    def build_messages(self, task: str, frame_bytes: bytes, context: DecisionContext):
        system_prompt = SYSTEM_PROMPT.format(grid=self.grid.describe())

        stagnation = ""
        if context.stagnation.unchanged:
            stagnation = (
                f"\n⚠ The screen has NOT changed for {context.stagnation.count} consecutive "
                f"observation(s). Your previous action probably had no effect."
            )
            if context.stagnation.warning:
                stagnation += " Try a clearly different approach."

        user_prompt = (
            f"Task: {task}\n\n"
            f"Attempt {context.iteration_index}/{context.max_iterations}\n\n"
            f"Previous actions:\n{format_history(context.history)}\n"
            f"{stagnation}\n\n"
            "Look at the screenshot and give the next action."
        )
        image_b64 = base64.b64encode(frame_bytes).decode("ascii")
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": [
                {"type": "text", "text": user_prompt},
                {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{image_b64}"}},
            ]},
        ]

    async def decide(self, task: str, frame_bytes: bytes, context: DecisionContext) -> Decision:
        """
        调用模型并解析动作。
        限流、网络错误、输出格式错误都返回失败的 Decision；
        鉴权 / 权限 / 模型不存在抛 OracleChannelError。
        """
        try:
            output_str = await self._complete(self.build_messages(task, frame_bytes, context))
            action, thinking = parse_decision(output_str, self.grid)
        except OracleChannelError:
            raise
        except OracleError as e:
            logger.warning(f"❌ 决策失败: {e}")
            return Decision(False, error=str(e), rate_limited=isinstance(e, RateLimited))

        logger.info(f"✓ 模型决策: {action.tag}{self._cell(action)}")
        return Decision(True, action=action, thinking=thinking)

    def _cell(self, action: Action) -> str:
        # 只用于日志：附上坐标所在的网格
        x, y = getattr(action, "x", None), getattr(action, "y", None)
        if isinstance(x, (int, float)) and isinstance(y, (int, float)):
            return f" ({x}, {y}) [{self.grid.pixel_to_grid(x, y)}]"
        return ""

    async def _complete(self, messages) -> str:
        """把 openai 的异常翻译成 OracleError 体系"""
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
                messages=messages,
            )
        except openai.RateLimitError as e:
            raise RateLimited(f"Rate limited: {e}") from e
        except (openai.AuthenticationError, openai.PermissionDeniedError, openai.NotFoundError) as e:
            raise OracleChannelError(f"Decision service unavailable: {e}") from e
        except openai.APIError as e:
            raise OracleError(str(e)) from e

        output_str = response.choices[0].message.content if response.choices else ""
        logger.debug(f"模型原始输出: {(output_str or '')[:200]}")
        return output_str
