"""nexusjobs CLI"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from common.config import load_config
from common.logging import configure_from
from nexusjobs import __version__
from scheduler.exception import SchedulerError


def _print(value: Any) -> None:
    if isinstance(value, BaseModel):
        print(value.model_dump_json(indent=2))
    elif isinstance(value, list):
        print(json.dumps([v.model_dump(mode="json") if isinstance(v, BaseModel) else v for v in value],
                         indent=2, ensure_ascii=False))
    else:
        print(json.dumps(value, indent=2, ensure_ascii=False, default=str))


def _parse_json_arg(raw: str | None) -> dict[str, Any] | None:
    """JSON 문자열 또는 @파일경로"""
    if raw is None:
        return None
    if raw.startswith("@"):
        raw = Path(raw[1:]).read_text(encoding="utf-8")
    value = json.loads(raw)
    if not isinstance(value, dict):
        raise ValueError("JSON argument must be an object")
    return value


async def _run_command(args: argparse.Namespace) -> int:
    from nexusjobs.app import SchedulerApp, install_signal_handlers, load_handlers

    config = load_config(args.config)
    # 관리 명령은 결과 JSON과 섞이지 않도록 텍스트 로그
    configure_from(config, level=args.log_level, json_format=None if args.command == "run" else False)

    load_handlers()
    app = await SchedulerApp.from_config(config)
    service = app.service
    owner = args.owner

    try:
        if args.command == "run":
            stop_event = asyncio.Event()
            install_signal_handlers(stop_event)
            await app.run(stop_event)
        elif args.command == "schedule":
            definition = _parse_json_arg(args.definition)
            definition.setdefault("owner", owner)
            _print(await service.schedule_job(definition))
        elif args.command == "jobs":
            _print(await service.get_scheduled_jobs(None if args.all_owners else owner))
        elif args.command == "history":
            _print(await service.job_history(args.name, args.limit, owner))
        elif args.command == "events":
            _print(await service.job_events(args.name, args.limit, owner))
        elif args.command == "stats":
            _print(await service.get_job_stats(args.name, owner))
        elif args.command == "run-now":
            _print(await service.run_now(args.name, _parse_json_arg(args.params), owner))
        elif args.command == "pause":
            _print(await service.pause_job(args.name, owner, actor="cli"))
        elif args.command == "resume":
            _print(await service.resume_job(args.name, owner, actor="cli"))
        elif args.command == "cancel":
            _print(await service.cancel_job(args.name, args.reason, owner, actor="cli"))
        elif args.command == "delete":
            _print({"deleted": await service.delete_job(args.name, owner)})
        elif args.command == "cleanup":
            _print({"deleted": await service.cleanup_finished_jobs(args.days)})
    except SchedulerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await app.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nexusjobs",
        description="nexusjobs - asyncio 기반 잡 스케줄링/실행 엔진"
    )
    parser.add_argument("-c", "--config", default=None, help="설정 디렉터리 (default: ./config)")
    parser.add_argument("-o", "--owner", default="default", help="잡 owner (default: default)")
    parser.add_argument("--log-level", default=None, help="로그 레벨")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("run", help="Dispatcher 실행 (SIGINT/SIGTERM으로 종료)")

    schedule_parser = subparsers.add_parser("schedule", help="잡 등록/수정")
    schedule_parser.add_argument("definition", help="잡 정의 JSON 또는 @파일경로")

    jobs_parser = subparsers.add_parser("jobs", help="잡 목록")
    jobs_parser.add_argument("--all-owners", action="store_true", help="모든 owner의 잡")

    for name, help_text, default_limit in (("history", "실행 이력", 20), ("events", "라이프사이클 이벤트", 50)):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("name", help="잡 이름")
        sub.add_argument("-n", "--limit", type=int, default=default_limit)

    stats_parser = subparsers.add_parser("stats", help="실행 통계")
    stats_parser.add_argument("name", help="잡 이름")

    run_now_parser = subparsers.add_parser("run-now", help="즉시 실행")
    run_now_parser.add_argument("name", help="잡 이름")
    run_now_parser.add_argument("--params", default=None, help="덮어쓸 파라미터 JSON 또는 @파일경로")

    for name, help_text in (("pause", "일시정지"), ("resume", "재개"), ("delete", "삭제")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("name", help="잡 이름")

    cancel_parser = subparsers.add_parser("cancel", help="취소")
    cancel_parser.add_argument("name", help="잡 이름")
    cancel_parser.add_argument("--reason", default=None, help="취소 사유")

    cleanup_parser = subparsers.add_parser("cleanup", help="오래된 종료 잡 정리")
    cleanup_parser.add_argument("--days", type=int, default=30, help="보관 일수 (default: 30)")

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    try:
        exit_code = asyncio.run(_run_command(args))
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        exit_code = 0
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
