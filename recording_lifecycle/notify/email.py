"""Plain-text operator notifications.

Message builders return ``(subject, body)``; a Notifier delivers them.
ResendNotifier sends through the Resend email API.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime

import resend

from recording_lifecycle.constants import HIGH_PRIORITY_ISSUES
from recording_lifecycle.results import (
    CombinedRecoveryResult,
    DetectionResult,
    RecoveryResult,
)
from recording_lifecycle.utils.clock import format_ledger_timestamp, now_utc
from recording_lifecycle.utils.errors import ConfigurationError, NotificationError

logger = logging.getLogger(__name__)

SYSTEM_NAME = "顧客会話自動文字起こしシステム"
PARTIAL_FAILURE_SUBJECT = f"{SYSTEM_NAME} - 重要な見逃しエラー検知・復旧完了"
RECOVERY_SUBJECT = f"{SYSTEM_NAME} - 自動復旧処理結果"


class Notifier(ABC):
    @abstractmethod
    def send(self, recipient: str, subject: str, body: str) -> None:
        """Deliver one message.

        Raises:
            NotificationError: If delivery fails.
        """


class ResendNotifier(Notifier):
    """Sends plain-text email through Resend.

    Reads configuration from environment variables:
        RESEND_API_KEY, NOTIFY_FROM
    """

    def __init__(self, api_key: str | None = None, sender: str | None = None) -> None:
        self.api_key = api_key or os.environ.get("RESEND_API_KEY", "")
        self.sender = sender or os.environ.get("NOTIFY_FROM", "")
        if not self.api_key:
            raise ConfigurationError(
                "RESEND_API_KEY is required", setting="RESEND_API_KEY"
            )
        if not self.sender:
            raise ConfigurationError("NOTIFY_FROM is required", setting="NOTIFY_FROM")

    def send(self, recipient: str, subject: str, body: str) -> None:
        resend.api_key = self.api_key
        try:
            resend.Emails.send(
                {
                    "from": self.sender,
                    "to": [recipient],
                    "subject": subject,
                    "text": body,
                }
            )
        except Exception as exc:
            raise NotificationError(
                f"Failed to send '{subject}': {exc}", recipient=recipient
            ) from exc
        logger.info("Sent notification '%s' to %s", subject, recipient)


def notify_admins(
    notifier: Notifier | None, recipients: list[str], subject: str, body: str
) -> int:
    """Send one message per recipient; failures are logged and skipped.

    Returns:
        Number of messages delivered.
    """
    if notifier is None or not recipients:
        logger.info("No notifier or recipients configured, skipping '%s'", subject)
        return 0
    sent = 0
    for recipient in recipients:
        try:
            notifier.send(recipient, subject, body)
            sent += 1
        except NotificationError as exc:
            logger.error("%s", exc, extra={"error": str(exc)})
    return sent


def build_partial_failure_email(
    result: DetectionResult, tz_name: str, now: datetime | None = None
) -> tuple[str, str]:
    detected_at = format_ledger_timestamp(now or now_utc(), tz_name)
    high_priority = [d for d in result.details if d.issue in HIGH_PRIORITY_ISSUES]

    lines = [
        "重要な見逃しエラーの検知・復旧処理の結果をお知らせします",
        "",
        "検知サマリー:",
        f"検査対象レコード数: {result.inspected}件",
        f"見逃しエラー検知: {result.detected}件",
        f"重要な見逃しエラー: {len(high_priority)}件",
        f"復旧失敗: {result.failed}件",
        f"検知時刻: {detected_at}",
        "",
    ]
    if result.details:
        lines.append("検知された問題の詳細:")
        for number, detail in enumerate(result.details, start=1):
            lines.append(f"{number}. Record ID: {detail.record_id}")
            lines.append(f"   問題の種類: {detail.issue}")
            lines.append(f"   復旧状況: {detail.message}")
            moved = "成功" if detail.file_found else "ファイル未発見"
            lines.append(f"   ファイル移動: {moved}")
            lines.append("")
    lines.extend(
        [
            "復旧処理について:",
            "- 検知されたレコードのステータスは「ERROR_DETECTED」に更新されました",
            "- 対応するファイルはエラーフォルダに移動されました",
            "- これらのファイルは自動復旧機能により再処理されます",
        ]
    )
    return PARTIAL_FAILURE_SUBJECT, "\n".join(lines)


def build_recovery_email(
    run: CombinedRecoveryResult, tz_name: str, now: datetime | None = None
) -> tuple[str, str]:
    finished_at = format_ledger_timestamp(now or now_utc(), tz_name)
    lines = [
        "自動復旧処理の結果をお知らせします",
        f"実行時刻: {finished_at}",
        "",
    ]
    for step in run.steps:
        lines.append(step.message)
        if isinstance(step, RecoveryResult):
            for detail in step.details:
                if detail.status == "skipped":
                    continue
                lines.append(
                    f"  - {detail.name} ({detail.record_id}): "
                    f"{detail.status} {detail.message}"
                )
        lines.append("")
    if run.error:
        lines.append(f"エラー: {run.error}")
    return RECOVERY_SUBJECT, "\n".join(lines).rstrip() + "\n"
