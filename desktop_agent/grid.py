"""坐标网格：像素 ↔ 粗粒度网格引用（如 "B3"），用于描述和日志"""

import re
from typing import Tuple

_REF_RE = re.compile(r"^([A-Z])(\d+)$", re.IGNORECASE)


class GridMapper:
    """
    把屏幕均分为 cols × rows 个格子。
    列用字母 A.. 表示，行用 1.. 表示，"A1" 为左上角。
    """

    def __init__(self, width: int = 1920, height: int = 1080, cols: int = 12, rows: int = 8):
        self.width = width
        self.height = height
        self.cols = cols
        self.rows = rows
        self.cell_width = width / cols
        self.cell_height = height / rows

    def grid_to_pixel(self, ref: str) -> Tuple[int, int]:
        """返回格子中心的像素坐标；非法引用抛 ValueError"""
        match = _REF_RE.match(ref.strip())
        if not match:
            raise ValueError(f"Invalid grid reference: {ref!r}")
        col = ord(match.group(1).upper()) - ord("A")
        row = int(match.group(2)) - 1
        if not (0 <= col < self.cols and 0 <= row < self.rows):
            raise ValueError(f"Grid reference out of range: {ref!r}")
        # .5 向上取整
        return (
            int(col * self.cell_width + self.cell_width / 2 + 0.5),
            int(row * self.cell_height + self.cell_height / 2 + 0.5),
        )

    def pixel_to_grid(self, x: int, y: int) -> str:
        # 越界坐标夹到最近的格子
        col = min(max(int(x // self.cell_width), 0), self.cols - 1)
        row = min(max(int(y // self.cell_height), 0), self.rows - 1)
        return f"{chr(ord('A') + col)}{row + 1}"

    def describe(self) -> str:
        last_col = chr(ord("A") + self.cols - 1)
        return (
            f"Screen is {self.width}x{self.height}px, divided into a {self.cols}x{self.rows} grid "
            f"(A-{last_col} columns, 1-{self.rows} rows). "
            f"Each cell is {round(self.cell_width)}x{round(self.cell_height)}px."
        )
