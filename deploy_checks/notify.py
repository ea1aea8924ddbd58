from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Protocol, Sequence

import httpx
import structlog

from .report import Report, report_text_sections
from .telegram import TELEGRAM_MAX_MESSAGE_LEN, TelegramConfig, redact_telegram_response, send_telegram_message

logger = structlog.get_logger(__name__)


class ReportNotifier(Protocol):
    async def notify(self, report: Report) -> bool: ...


class ReportSink(Protocol):
    def write(self, report: Report) -> Path: ...


def pack_report_messages(sections: Sequence[str], *, max_len: int = TELEGRAM_MAX_MESSAGE_LEN) -> list[str]:
    """Group report sections into chat messages of at most ``max_len`` characters.

    Sections are kept whole and separated by a blank line while they fit. A
    section too large for one message (usually a long endpoint list) is broken
    between its lines, and only a single line longer than ``max_len`` is cut.
    """
    max_len = max(1, int(max_len))
    messages: list[str] = []

    def add(piece: str, sep: str) -> None:
        if messages and len(messages[-1]) + len(sep) + len(piece) <= max_len:
            messages[-1] += sep + piece
        else:
            messages.append(piece)

    for section in sections:
        section = section.strip()
        if not section:
            continue
        if len(section) <= max_len:
            add(section, "\n\n")
            continue
        sep = "\n\n"
        for line in section.splitlines():
            if not line.strip():
                continue
            for start in range(0, len(line), max_len):
                add(line[start : start + max_len], sep)
                sep = "\n"
    return messages


class TelegramNotifier:
    """Posts the human-readable report to a Telegram chat, one message per packed chunk."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: TelegramConfig,
        *,
        max_len: int = TELEGRAM_MAX_MESSAGE_LEN,
    ):
        self.client = client
        self.config = config
        self.max_len = max_len

    async def notify(self, report: Report) -> bool:
        messages = pack_report_messages(report_text_sections(report), max_len=self.max_len)
        failed: list[str] = []
        for index, text in enumerate(messages, start=1):
            ok, response = await send_telegram_message(self.client, self.config, text)
            if not ok:
                failed.append(f"{index}/{len(messages)} {redact_telegram_response(response)}")
        if failed:
            logger.warning("Telegram report failed", parts=len(messages), failed=failed)
            return False
        logger.info("Telegram report sent", parts=len(messages))
        return True


@dataclass
class DeliverySummary:
    notified: int = 0
    notify_failures: int = 0
    artifacts: list[Path] = field(default_factory=list)
    sink_failures: int = 0

    @property
    def ok(self) -> bool:
        return self.notify_failures == 0 and self.sink_failures == 0


async def deliver_report(
    report: Report,
    *,
    notifiers: Iterable[ReportNotifier] = (),
    sinks: Iterable[ReportSink] = (),
) -> DeliverySummary:
    """Hand the finished report to every collaborator; one failing collaborator never blocks the rest."""
    summary = DeliverySummary()

    for sink in sinks:
        try:
            summary.artifacts.append(sink.write(report))
        except OSError as e:
            summary.sink_failures += 1
            logger.error("Report sink failed", sink=type(sink).__name__, error=f"{type(e).__name__}: {e}")

    for notifier in notifiers:
        try:
            ok = await notifier.notify(report)
        except httpx.HTTPError as e:
            ok = False
            logger.error("Report notifier failed", notifier=type(notifier).__name__, error=type(e).__name__)
        if ok:
            summary.notified += 1
        else:
            summary.notify_failures += 1

    return summary
