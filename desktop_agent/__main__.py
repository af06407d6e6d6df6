"""
命令行入口：
    python -m desktop_agent "open terminal"
    python -m desktop_agent "打开浏览器并搜索天气" --max-iterations 15 --dry-run

依赖安装：
    pip install -e .
    playwright install chromium
"""

import argparse
import asyncio
import logging
import signal
import sys

from openai import AsyncOpenAI
from playwright.async_api import async_playwright

from .config import AgentConfig
from .controller import Controller
from .core import DesktopAgent
from .emitter import DeviceInputEmitter
from .errors import ConfigError
from .grid import GridMapper
from .models import ProgressEvent, StopToken
from .perception import PlaywrightCapture
from .planner import Planner
from .registry import CapabilityRegistry
from .transport import PlaywrightTransport, RecordingTransport

logger = logging.getLogger("desktop_agent")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="desktop_agent", description="用自然语言操作远程桌面")
    parser.add_argument("task", help="要完成的任务，例如 'open terminal'")
    parser.add_argument("--max-iterations", type=int, default=None)
    parser.add_argument("--viewer-url", default=None, help="远程桌面查看器（noVNC）页面地址")
    parser.add_argument("--model", default=None)
    parser.add_argument("--dry-run", action="store_true", default=None,
                        help="只记录动作，不向目标发送输入")
    parser.add_argument("--headless", action="store_true", default=None)
    return parser.parse_args(argv)


def print_progress(event: ProgressEvent) -> None:
    prefix = f"[{event.iteration}] " if event.iteration else ""
    phase = f"({event.phase}) " if event.phase else ""
    print(f"{prefix}{phase}{event.message}")


async def run_agent(task: str, config: AgentConfig) -> int:
    registry = (CapabilityRegistry.from_file(config.locations_file)
                if config.locations_file else CapabilityRegistry())
    grid = GridMapper(config.screen_width, config.screen_height, config.grid_cols, config.grid_rows)
    client = AsyncOpenAI(api_key=config.api_key, base_url=config.base_url,
                         timeout=config.request_timeout)
    planner = Planner(client, config.model, grid,
                      temperature=config.temperature, max_tokens=config.max_tokens)

    stop = StopToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, stop.set)
    except NotImplementedError:
        # Windows 事件循环不支持，Ctrl+C 直接中断
        pass

    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=config.headless)
        page = await browser.new_page(viewport={"width": config.screen_width, "height": config.screen_height})
        await page.goto(config.viewer_url)
        await page.wait_for_selector(config.surface_selector)

        if config.dry_run:
            transport = RecordingTransport()
        else:
            transport = PlaywrightTransport(page, config.surface_selector,
                                            config.screen_width, config.screen_height)
        controller = Controller(DeviceInputEmitter(transport))
        capture = PlaywrightCapture(page, config.surface_selector, config.frames_dir)

        agent = DesktopAgent(capture, planner, controller, registry, config)
        result = await agent.run(task, print_progress, stop)
        await browser.close()

    status = "✓" if result.succeeded else "❌"
    print(f"\n{status} {result.status.value}: {result.message} "
          f"(共 {result.iterations_used} 轮, 执行 {result.actions_dispatched} 个动作, "
          f"决策失败 {result.decision_failures} 次)")
    return 0 if result.succeeded else 1


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        config = AgentConfig.from_env(
            max_iterations=args.max_iterations,
            viewer_url=args.viewer_url,
            model=args.model,
            dry_run=args.dry_run,
            headless=args.headless,
        )
    except ConfigError as e:
        print(f"配置错误: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if not config.api_key:
        print("请设置环境变量 OPENAI_API_KEY，例如：export OPENAI_API_KEY='sk-...'", file=sys.stderr)
        return 2

    return asyncio.run(run_agent(args.task, config))


if __name__ == "__main__":
    sys.exit(main())
