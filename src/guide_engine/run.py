# run.py
# Entry point. Argument parsing and wiring only, no engine logic lives here.
#
#   guide-engine run guide.json --url http://localhost:3000/
#   guide-engine run guide.json --html snapshot.html --env env.json
#
# --url drives a real browser through Playwright. --html is a dry run
# against a captured page. Environment answers come from --env (a JSON
# snapshot) or, when GRAFANA_URL is set, from the live HTTP API.

import argparse
import asyncio
import os
import sys
from pathlib import Path

from pydantic import ValidationError

from guide_engine import display
from guide_engine.analytics import HttpAnalytics
from guide_engine.browser import launch
from guide_engine.config import EngineConfig
from guide_engine.environment import HttpEnvironment, StaticEnvironment
from guide_engine.errors import GuideEngineError
from guide_engine.guide import load_guide
from guide_engine.persistence import InMemoryCompletionStore, JsonFileCompletionStore
from guide_engine.runner import RunStatus
from guide_engine.session import GuideSession
from guide_engine.soup_page import SoupPage


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="guide-engine", description="Run interactive guides against a page.")
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Run every section of a guide in order.")
    run.add_argument("guide", type=Path, help="Guide document (JSON).")
    target = run.add_mutually_exclusive_group(required=True)
    target.add_argument("--url", help="Open this URL in Chromium and drive it.")
    target.add_argument("--html", type=Path, help="Dry run against a saved HTML snapshot.")
    run.add_argument("--env", type=Path, help="Environment snapshot (JSON) for requirement checks.")
    run.add_argument("--store", type=Path, help="Progress file. Omit to keep progress in memory.")
    run.add_argument("--headless", action="store_true", help="Run the browser headless.")
    run.add_argument("--section", help="Run only this section.")
    run.add_argument("--quiet", action="store_true", help="Suppress terminal output.")
    return parser


def _environment(args):
    if args.env is not None:
        return StaticEnvironment.model_validate_json(args.env.read_text(encoding="utf-8"))
    if os.getenv("GRAFANA_URL"):
        return HttpEnvironment()
    return StaticEnvironment()


async def _run_session(args, page, config: EngineConfig) -> bool:
    guide = load_guide(args.guide)
    environment = _environment(args)
    store = JsonFileCompletionStore(args.store) if args.store else InMemoryCompletionStore()
    analytics_sink = HttpAnalytics() if os.getenv("GUIDE_ENGINE_ANALYTICS_URL") else None

    session = GuideSession(guide, page, environment, store, analytics_sink, config)
    try:
        await session.mount()
        if args.section:
            results = [await session.run_section(args.section)]
        else:
            results = await session.run_all()
        return all(r.status is RunStatus.COMPLETED for r in results)
    finally:
        await session.unmount()
        if isinstance(environment, HttpEnvironment):
            await environment.aclose()
        if analytics_sink is not None:
            await analytics_sink.aclose()


async def _run(args) -> bool:
    config = EngineConfig.from_env(**({"quiet": True} if args.quiet else {}))
    if args.html is not None:
        page = SoupPage(args.html.read_text(encoding="utf-8"))
        return await _run_session(args, page, config)

    async with launch(args.url, headless=args.headless) as page:
        return await _run_session(args, page, config)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        ok = asyncio.run(_run(args))
    except (GuideEngineError, ValidationError, OSError, KeyError) as e:
        display.halt(str(e))
        return 2
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
