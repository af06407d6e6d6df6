"""感知模块：截取远程桌面画面，判断画面是否变化"""

import base64
import logging
import time
from pathlib import Path
from typing import Optional

from .models import CaptureResult, StagnationCounter

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_CHARS = 10000


def fingerprint(frame_bytes: bytes, sample_chars: int = DEFAULT_SAMPLE_CHARS) -> int:
    """
    对截图 base64 编码的前 sample_chars 个字符做滚动哈希（h = h*31 + c，32 位有符号）。

    只用于判断"是否相等"，不是感知哈希：变化如果发生在采样前缀之外（或非常小），
    会被漏判为"未变化"。这是有意的精度/开销取舍。
    """
    # base64 每 3 字节输出 4 个字符，只编码需要的前缀
    prefix = frame_bytes[: (sample_chars * 3 + 3) // 4]
    sample = base64.b64encode(prefix)[:sample_chars]
    h = 0
    for c in sample:
        h = (h * 31 + c) & 0xFFFFFFFF
    return h - 0x100000000 if h & 0x80000000 else h


class ChangeDetector:
    """比较相邻两帧的指纹，并维护连续未变化计数"""

    def __init__(self, threshold: int = 3, sample_chars: int = DEFAULT_SAMPLE_CHARS):
        self.sample_chars = sample_chars
        self.counter = StagnationCounter(threshold=threshold)
        self.last_fingerprint: Optional[int] = None

    def observe(self, frame_bytes: bytes) -> bool:
        """返回本帧相对上一帧是否变化；第一帧视为变化"""
        current = fingerprint(frame_bytes, self.sample_chars)
        changed = self.last_fingerprint is None or current != self.last_fingerprint
        self.counter.observe(changed)
        self.last_fingerprint = current
        return changed

    @property
    def unchanged_count(self) -> int:
        return self.counter.consecutive_unchanged_frames

    @property
    def stagnating(self) -> bool:
        return self.counter.warning


class PlaywrightCapture:
    """
    截图协作者：对浏览器中的远程桌面查看器（如 noVNC 的 canvas）截图。
    每次都写一个新文件，不做缓存。
    """

    def __init__(self, page, surface_selector: str = "canvas", frames_dir: str = "screenshots"):
        self.page = page
        self.surface_selector = surface_selector
        self.frames_dir = Path(frames_dir)

    async def capture(self, target_id: str = "default") -> CaptureResult:
        try:
            self.frames_dir.mkdir(parents=True, exist_ok=True)
            path = self.frames_dir / f"{target_id}_{time.time_ns()}.png"
            locator = self.page.locator(self.surface_selector).first
            await locator.screenshot(path=str(path))
            return CaptureResult(succeeded=True, frame_path=str(path))
        except Exception as e:
            logger.error(f"❌ 截图失败: {e}")
            return CaptureResult(succeeded=False, error=str(e))
