"""Console entry point for tabpilot."""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv

from tabpilot.src.agent.errors import HostError
from tabpilot.src.agent.executor import ActionExecutor
from tabpilot.src.agent.manager import AgentManager, format_agent_state, get_agent_stats
from tabpilot.src.agent.models import ActionType, AgentStatus, SkillContext
from tabpilot.src.agent.planner import AgentPlanner
from tabpilot.src.agent.replay import ReplayEngine
from tabpilot.src.host.playwright_host import PlaywrightHost
from tabpilot.src.llm import get_oracle_client
from tabpilot.src.skills.puppeteer import puppeteer_to_actions, validate_recording
from tabpilot.src.skills.recorder import RecordingManager
from tabpilot.src.skills.store import SkillNotFoundError, SkillStore
from tabpilot.src.utils.config import AppConfig, load_config

STORE_KINDS = ("skills", "recipes")


def _open_store(config: AppConfig, kind: str = "skills") -> SkillStore:
    return SkillStore(config.data_dir, kind=kind)


async def _run_goal(args: argparse.Namespace, config: AppConfig) -> int:
    if args.headed:
        config.host.headless = False
    oracle = None if args.no_llm else get_oracle_client(config.llm)

    async with PlaywrightHost(config.host) as host:
        tab = await host.create_tab(args.url)
        manager = AgentManager(
            host,
            planner=AgentPlanner(oracle),
            config=config.agent,
        )
        agent_id = manager.create_agent(args.goal, tab.id, max_iterations=args.max_iterations)
        await manager.start_agent(agent_id)
        try:
            state = await manager.wait_for_agent(agent_id)
        finally:
            await manager.cleanup()

        print(format_agent_state(state))
        print(json.dumps(get_agent_stats(state), ensure_ascii=False, indent=2))
        if state.result is not None:
            print(json.dumps(state.result, ensure_ascii=False, indent=2, default=str))
        if state.error:
            print(f"❌ {state.error}")

        if args.save_skill and state.status is AgentStatus.COMPLETED:
            store = _open_store(config)
            skill = store.create_skill_from_agent(state, args.save_skill, start_url=args.url)
            store.save(skill)
            print(f"💾 Saved skill {skill.id} ({len(skill.actions)} actions)")
        return 0 if state.status is AgentStatus.COMPLETED else 1


async def _replay(args: argparse.Namespace, config: AppConfig) -> int:
    store = _open_store(config, "recipes" if args.recipes else "skills")
    skill = store.resolve(args.skill)
    if args.headed:
        config.host.headless = False

    async with PlaywrightHost(config.host) as host:
        tab = await host.create_tab()
        executor = ActionExecutor(host, config.agent)
        engine = ReplayEngine(executor, config.agent)
        if args.url:
            result = await engine.replay(
                skill.actions,
                tab,
                continue_on_error=args.continue_on_error,
                start_url=args.url,
            )
            store.record_usage(skill.id)
        else:
            result = await engine.replay_skill(
                skill,
                tab,
                continue_on_error=args.continue_on_error,
                store=store,
            )

    executed = len(result.executed_results)
    succeeded = sum(1 for r in result.executed_results if r.success)
    print(f"{'✅' if result.success else '❌'} {succeeded}/{executed} actions succeeded in {result.duration_ms}ms")
    if result.error:
        print(f"Last error: {result.error}")
    return 0 if result.success else 1


def _skills(args: argparse.Namespace, config: AppConfig) -> int:
    store = _open_store(config, args.kind)
    command = args.skills_command

    if command == "list":
        skills = store.list()
        if not skills:
            print(f"No {args.kind} saved in {store.directory}")
            return 0
        for skill in skills:
            tags = ", ".join(skill.metadata.tags)
            print(
                f"{skill.id}\t{skill.name}\t{len(skill.actions)} actions\t"
                f"used {skill.metadata.use_count}x" + (f"\t[{tags}]" if tags else "")
            )
        return 0

    if command == "show":
        print(store.export_json(store.resolve(args.skill).id))
        return 0

    if command == "delete":
        skill = store.resolve(args.skill)
        store.delete(skill.id)
        return 0

    if command == "export":
        content = store.export_json(store.resolve(args.skill).id)
        if args.output:
            Path(args.output).write_text(content, encoding="utf-8")
            print(f"Exported to {args.output}")
        else:
            print(content)
        return 0

    if command == "import":
        skill = store.import_json(Path(args.file).read_text(encoding="utf-8"))
        print(f"Imported {skill.id} ({skill.name})")
        return 0

    if command == "stats":
        print(json.dumps(store.stats(), ensure_ascii=False, indent=2))
        return 0

    return 1


def _convert(args: argparse.Namespace, config: AppConfig) -> int:
    recording = json.loads(Path(args.recording).read_text(encoding="utf-8"))
    ok, errors = validate_recording(recording)
    if not ok:
        for error in errors:
            print(f"❌ {error}")
        return 1

    actions = puppeteer_to_actions(recording)
    if not actions:
        print("❌ Recording contains no convertible steps")
        return 1
    start_url = next((a.parameters.url for a in actions if a.type is ActionType.NAVIGATE), None)
    store = _open_store(config, args.kind)
    skill = store.create_skill(
        name=args.name or recording.get("title") or Path(args.recording).stem,
        description=args.description or f"Converted from {Path(args.recording).name}",
        actions=actions,
        tags=args.tag or [],
        context=SkillContext(start_url=start_url) if start_url else None,
    )
    store.save(skill)
    print(f"💾 Converted {len(actions)} actions into {skill.id}")
    return 0


async def _record(args: argparse.Namespace, config: AppConfig) -> int:
    # recording needs a window the user can interact with
    config.host.headless = False
    async with PlaywrightHost(config.host) as host:
        tab = await host.create_tab(args.url)
        recorder = RecordingManager(
            host,
            viewport={"width": config.host.viewport_width, "height": config.host.viewport_height},
        )
        session_id = await recorder.start_recording(tab.id, title=args.name)

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        if args.duration:
            loop.call_later(args.duration, stop.set)
            print(f"🔴 Recording for {args.duration}s...")
        else:
            print("🔴 Recording... press Enter to stop")
            loop.run_in_executor(None, sys.stdin.readline).add_done_callback(lambda _: stop.set())
        recording = await recorder.record_until(session_id, stop)

    if args.output:
        Path(args.output).write_text(
            json.dumps(recording.to_json_dict(), ensure_ascii=False, indent=2), encoding="utf-8"
        )
        print(f"Recording written to {args.output}")
    skill = recorder.save_as_skill(
        session_id,
        _open_store(config, args.kind),
        args.name,
        description=args.description,
        tags=args.tag,
    )
    print(f"💾 Recorded {len(skill.actions)} actions into {skill.id}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tabpilot", description="LLM-driven browser tab agents.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run an agent toward a goal")
    run.add_argument("goal")
    run.add_argument("--url")
    run.add_argument("--max-iterations", type=int)
    run.add_argument("--headed", action="store_true", help="Show the browser window")
    run.add_argument("--save-skill", metavar="NAME", help="Save successful actions as a skill")
    run.add_argument("--no-llm", action="store_true", help="Use the exploration fallback planner")

    replay = subparsers.add_parser("replay", help="Replay a saved skill")
    replay.add_argument("skill", help="Skill id or name")
    replay.add_argument("--url", help="Override the skill's start URL")
    replay.add_argument("--continue-on-error", action="store_true")
    replay.add_argument("--recipes", action="store_true", help="Look the name up in recipes")
    replay.add_argument("--headed", action="store_true")

    skills = subparsers.add_parser("skills", help="Manage saved skills")
    skills.add_argument("--kind", choices=STORE_KINDS, default="skills")
    skills_sub = skills.add_subparsers(dest="skills_command", required=True)
    skills_sub.add_parser("list")
    skills_sub.add_parser("stats")
    show = skills_sub.add_parser("show")
    show.add_argument("skill")
    delete = skills_sub.add_parser("delete")
    delete.add_argument("skill")
    export = skills_sub.add_parser("export")
    export.add_argument("skill")
    export.add_argument("-o", "--output")
    imp = skills_sub.add_parser("import")
    imp.add_argument("file")

    convert = subparsers.add_parser("convert", help="Convert a Chrome Recorder JSON into a skill")
    convert.add_argument("recording")
    convert.add_argument("--name")
    convert.add_argument("--description")
    convert.add_argument("--tag", action="append")
    convert.add_argument("--kind", choices=STORE_KINDS, default="skills")

    record = subparsers.add_parser("record", help="Record manual browser interactions as a skill")
    record.add_argument("name")
    record.add_argument("--url", help="Page to open before recording")
    record.add_argument("--duration", type=float, help="Stop after this many seconds instead of on Enter")
    record.add_argument("--description")
    record.add_argument("--tag", action="append")
    record.add_argument("--kind", choices=STORE_KINDS, default="skills")
    record.add_argument("-o", "--output", help="Also write the Chrome Recorder JSON here")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    config = load_config()

    try:
        if args.command == "run":
            return asyncio.run(_run_goal(args, config))
        if args.command == "replay":
            return asyncio.run(_replay(args, config))
        if args.command == "skills":
            return _skills(args, config)
        if args.command == "convert":
            return _convert(args, config)
        if args.command == "record":
            return asyncio.run(_record(args, config))
    except SkillNotFoundError as exc:
        print(f"❌ {exc}")
        return 1
    except (HostError, ValueError) as exc:
        print(f"❌ {exc}")
        return 1
    return 1


if __name__ == "__main__":
    sys.exit(main())
