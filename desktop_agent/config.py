"""配置：默认值 + .env / 环境变量覆盖"""

import os
from dataclasses import dataclass, fields
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigError

# 环境变量名 → 字段名
_ENV_FIELDS = {
    "AGENT_MAX_ITERATIONS": "max_iterations",
    "AGENT_SETTLE_DELAY_MS": "settle_delay_ms",
    "AGENT_INTER_CALL_DELAY_MS": "inter_call_delay_ms",
    "AGENT_RATE_LIMIT_BACKOFF_MS": "rate_limit_backoff_ms",
    "AGENT_ERROR_BACKOFF_MS": "error_backoff_ms",
    "AGENT_QUICK_PATH_SETTLE_MS": "quick_path_settle_ms",
    "AGENT_STAGNATION_THRESHOLD": "stagnation_threshold",
    "AGENT_FINGERPRINT_SAMPLE_CHARS": "fingerprint_sample_chars",
    "AGENT_SCREEN_WIDTH": "screen_width",
    "AGENT_SCREEN_HEIGHT": "screen_height",
    "AGENT_GRID_COLS": "grid_cols",
    "AGENT_GRID_ROWS": "grid_rows",
    "OPENAI_MODEL": "model",
    "OPENAI_API_KEY": "api_key",
    "OPENAI_BASE_URL": "base_url",
    "AGENT_REQUEST_TIMEOUT": "request_timeout",
    "AGENT_TEMPERATURE": "temperature",
    "AGENT_MAX_TOKENS": "max_tokens",
    "AGENT_VIEWER_URL": "viewer_url",
    "AGENT_SURFACE_SELECTOR": "surface_selector",
    "AGENT_FRAMES_DIR": "frames_dir",
    "AGENT_HEADLESS": "headless",
    "AGENT_DRY_RUN": "dry_run",
    "AGENT_LOCATIONS_FILE": "locations_file",
    "AGENT_LOG_LEVEL": "log_level",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass
class AgentConfig:
    # 循环控制
    max_iterations: int = 10
    settle_delay_ms: int = 2000  # 动作后等待界面刷新
    inter_call_delay_ms: int = 12000  # 模型限速：5 RPM
    rate_limit_backoff_ms: int = 10000
    error_backoff_ms: int = 2000
    quick_path_settle_ms: int = 2000
    stagnation_threshold: int = 3
    fingerprint_sample_chars: int = 10000

    # 目标屏幕与网格
    screen_width: int = 1920
    screen_height: int = 1080
    grid_cols: int = 12
    grid_rows: int = 8

    # 决策模型
    model: str = "gpt-4o"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    request_timeout: float = 60.0
    temperature: float = 0.0
    max_tokens: int = 500

    # 远程桌面查看器
    viewer_url: str = "http://localhost:6080/vnc.html?autoconnect=true"
    surface_selector: str = "canvas"
    frames_dir: str = "screenshots"
    headless: bool = False
    dry_run: bool = False

    locations_file: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, **overrides) -> "AgentConfig":
        """读取 .env 与环境变量，显式传入的参数优先"""
        load_dotenv()
        types = {f.name: f.type for f in fields(cls)}
        values = {}
        for env_name, field_name in _ENV_FIELDS.items():
            raw = os.environ.get(env_name)
            if raw is None:
                continue
            if types[field_name] is str and not raw.strip():
                # 必填字符串留空时使用默认值；Optional 字段留空表示 None
                continue
            values[field_name] = _coerce(env_name, raw, types[field_name])
        values.update({k: v for k, v in overrides.items() if v is not None})
        config = cls(**values)
        config.validate()
        return config

    def validate(self) -> None:
        if self.max_iterations < 1:
            raise ConfigError("max_iterations must be >= 1")
        if self.stagnation_threshold < 1:
            raise ConfigError("stagnation_threshold must be >= 1")
        if self.screen_width <= 0 or self.screen_height <= 0:
            raise ConfigError("screen size must be positive")
        if self.grid_cols < 1 or self.grid_rows < 1:
            raise ConfigError("grid must have at least one column and one row")
        if not 1 <= self.grid_cols <= 26:
            raise ConfigError("grid_cols must be between 1 and 26 (A-Z)")
        for name in ("settle_delay_ms", "inter_call_delay_ms", "rate_limit_backoff_ms",
                     "error_backoff_ms", "quick_path_settle_ms"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative")


def _coerce(env_name: str, raw: str, type_hint):
    try:
        if type_hint is int:
            return int(raw)
        if type_hint is float:
            return float(raw)
        if type_hint is bool:
            lowered = raw.strip().lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
            raise ValueError(raw)
    except ValueError:
        raise ConfigError(f"Invalid value for {env_name}: {raw!r}") from None
    return raw.strip() or None
