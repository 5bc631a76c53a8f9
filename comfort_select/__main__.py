"""Command-line entry point: ``python -m comfort_select <command>``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable

from comfort_select.config import Settings, get_settings
from comfort_select.core.cycle import CycleRunner

logger = logging.getLogger("comfort_select")


async def _with_runner(settings: Settings, action: Callable[[CycleRunner], Awaitable[int]]) -> int:
    runner = CycleRunner.from_settings(settings)
    try:
        return await action(runner)
    finally:
        await runner.aclose()


async def _run_once(runner: CycleRunner) -> int:
    record = await runner.run_cycle_once()
    print(record.model_dump_json(indent=2))
    logger.info("Ran one cycle: %s", record.timestamp_utc_iso)
    return 0


async def _print_prompt(runner: CycleRunner) -> int:
    inputs = await runner.gather_inputs()
    for error in inputs.blocking_errors:
        print(f"# input error: {error}", file=sys.stderr)
    print(inputs.build.prompt)
    return 0


async def _init_sheet(runner: CycleRunner) -> int:
    await runner.init_sheet()
    logger.info("Sheet header verified")
    return 0


async def _rebuild_sheet(runner: CycleRunner) -> int:
    rows = await runner.sync_sheet()
    logger.info("Sheet rebuilt from store snapshot (%d rows)", rows)
    return 0


COMMANDS: dict[str, Callable[[CycleRunner], Awaitable[int]]] = {
    "run-once": _run_once,
    "print-prompt": _print_prompt,
    "init-sheet": _init_sheet,
    "rebuild-sheet": _rebuild_sheet,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="comfort_select", description="LLM-curated comfort control loop")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("serve", help="Run the scheduler and HTTP status server")
    sub.add_parser("run-once", help="Run a single cycle and print the record")
    sub.add_parser("print-prompt", help="Render the prompt from live inputs without deciding")
    sub.add_parser("init-sheet", help="Write or verify the spreadsheet header row")
    sub.add_parser("rebuild-sheet", help="Overwrite the spreadsheet from the store")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    if args.command == "serve":
        import uvicorn

        uvicorn.run(
            "comfort_select.api.main:app",
            host=settings.host,
            port=settings.port,
            loop="asyncio",
            log_level="debug" if args.debug or settings.debug else settings.log_level.lower(),
        )
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.debug or settings.debug else settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return asyncio.run(_with_runner(settings, COMMANDS[args.command]))


if __name__ == "__main__":
    sys.exit(main())
