from __future__ import annotations

import argparse
import asyncio
import os
import signal
import sys
from contextlib import suppress
from pathlib import Path
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from deploy_checks.config import VerifierConfig, load_config
from deploy_checks.errors import SessionConfigError
from deploy_checks.log import configure_logging
from deploy_checks.notify import ReportNotifier, ReportSink, TelegramNotifier, deliver_report
from deploy_checks.report import format_report_text
from deploy_checks.rounds import RoundResult, SessionState
from deploy_checks.session import PollingSession
from deploy_checks.sinks import JsonReportSink, MarkdownReportSink
from deploy_checks.telegram import TelegramConfig

logger = structlog.get_logger("deploy-verify")

EXIT_SUCCEEDED = 0
EXIT_EXHAUSTED = 1
EXIT_CONFIG_ERROR = 2
EXIT_ABORTED = 3

EXIT_CODES = {
    SessionState.SUCCEEDED: EXIT_SUCCEEDED,
    SessionState.EXHAUSTED: EXIT_EXHAUSTED,
    SessionState.ABORTED: EXIT_ABORTED,
}


def _print_round(round_result: RoundResult, max_attempts: int) -> None:
    total = len(round_result)
    percent = int(round(round_result.success_rate * 100))
    states = ", ".join(f"{r.target.label}={r.state.label}" for r in round_result)
    print(
        f"[{round_result.attempt}/{max_attempts}] {round_result.healthy_count}/{total} healthy ({percent}%): {states}",
        file=sys.stderr,
        flush=True,
    )


def apply_overrides(config: VerifierConfig, args: argparse.Namespace) -> VerifierConfig:
    data: dict[str, Any] = config.model_dump()
    if args.base_url:
        data["base_url"] = args.base_url
    if args.targets:
        data["targets"] = list(args.targets)
    if args.max_attempts is not None:
        data["max_attempts"] = args.max_attempts
    if args.once:
        data["max_attempts"] = 1
    if args.interval is not None:
        data["interval_seconds"] = args.interval
    if args.timeout is not None:
        data["timeout_seconds"] = args.timeout
    if args.report_dir:
        data["reports_directory"] = args.report_dir
    if args.markdown:
        data["write_markdown"] = True
    if args.no_telegram:
        data["telegram"]["enabled"] = False
    if args.log_level:
        data["log_level"] = args.log_level
    return VerifierConfig(**data)


async def run_session(
    config: VerifierConfig,
    *,
    write_artifacts: bool = True,
    json_only: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    async with httpx.AsyncClient(transport=transport) as client:
        session = PollingSession(
            config.probe_targets(),
            max_attempts=config.max_attempts,
            interval_seconds=config.interval_seconds,
            timeout_seconds=config.timeout_seconds,
            snippet_chars=config.snippet_chars,
            client=client,
            on_round=lambda r: _print_round(r, config.max_attempts),
        )

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            # Not available on every platform / outside the main thread.
            with suppress(NotImplementedError, RuntimeError, ValueError):
                loop.add_signal_handler(sig, session.cancel)
        try:
            report = await session.run()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                with suppress(NotImplementedError, RuntimeError, ValueError):
                    loop.remove_signal_handler(sig)

        sinks: list[ReportSink] = []
        if write_artifacts:
            sinks.append(JsonReportSink(config.reports_directory))
            if config.write_markdown:
                sinks.append(MarkdownReportSink(config.reports_directory))

        notifiers: list[ReportNotifier] = []
        if config.telegram.configured:
            notifiers.append(
                TelegramNotifier(
                    client,
                    TelegramConfig(bot_token=str(config.telegram.bot_token), chat_id=str(config.telegram.chat_id)),
                )
            )
        elif config.telegram.enabled:
            logger.info("Telegram not configured; skipping chat notification")

        delivery = await deliver_report(report, notifiers=notifiers, sinks=sinks)

    if not json_only:
        print(format_report_text(report))
        print()
    print(report.to_json())
    for path in delivery.artifacts:
        print(f"Report saved: {path}", file=sys.stderr)

    return EXIT_CODES[report.terminal_state]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deploy-verify",
        description="Poll a deployed service until its endpoints verify as healthy",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a verification session to completion")
    run.add_argument(
        "--config",
        default=os.getenv("DEPLOY_VERIFY_CONFIG", str(Path(__file__).with_name("config.yaml"))),
        help="Path to YAML config",
    )
    run.add_argument("--base-url", help="Service root URL (overrides config)")
    run.add_argument(
        "--target",
        dest="targets",
        action="append",
        metavar="PATH",
        help="Endpoint path to probe; repeatable, replaces configured targets",
    )
    run.add_argument("--max-attempts", type=int, help="Rounds before giving up")
    run.add_argument("--interval", type=float, help="Seconds between rounds")
    run.add_argument("--timeout", type=float, help="Per-probe timeout in seconds")
    run.add_argument("--once", action="store_true", help="Run a single round and exit")
    run.add_argument("--report-dir", help="Directory for report artifacts")
    run.add_argument("--markdown", action="store_true", help="Also write a markdown report")
    run.add_argument("--no-artifacts", action="store_true", help="Do not write report files")
    run.add_argument("--no-telegram", action="store_true", help="Skip the Telegram notification")
    run.add_argument("--json", action="store_true", help="Print only the JSON report to stdout")
    run.add_argument("--log-level", default=None, help="Logging level (INFO, WARNING, ...)")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = apply_overrides(load_config(args.config), args)
    except (ValidationError, ValueError, OSError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    configure_logging(config.log_level)
    try:
        return asyncio.run(
            run_session(config, write_artifacts=not args.no_artifacts, json_only=args.json)
        )
    except SessionConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
