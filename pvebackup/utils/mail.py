"""
Failure notification through the local sendmail.

Delivery is best-effort: failures are logged and never raised.
"""

import logging
import socket
from datetime import datetime
from typing import List, Optional


logger = logging.getLogger(__name__)


class MailNotifier:
    """Sends plain-text mails via 'sendmail <recipient>'."""

    def __init__(self, runner, recipient: str = 'root',
                 hostname: Optional[str] = None, enabled: bool = True):
        """
        Initialize notifier.

        Args:
            runner: Command runner (see pvebackup.backup.commands)
            recipient: Mail recipient
            hostname: Host name used in sender and subject (default: this host)
            enabled: False disables delivery (sendmail not available)
        """
        self.runner = runner
        self.recipient = recipient
        self.hostname = hostname or socket.gethostname()
        self.enabled = enabled

    def build_message(self, subject: str, body: str) -> str:
        headers = [
            f"From: PVE Backup <root@{self.hostname}>",
            f"To: {self.recipient}",
            f"Subject: {subject}",
            "Content-Type: text/plain; charset=UTF-8",
        ]
        return '\n'.join(headers) + '\n\n' + body + '\n'

    def send(self, subject: str, body: str) -> bool:
        """
        Send a mail.

        Returns:
            True if sendmail accepted the message
        """
        if not self.enabled:
            logger.info("Notifications disabled, not sending mail")
            return False

        completed = self.runner.run(
            ['sendmail', self.recipient],
            input=self.build_message(subject, body)
        )
        if completed.returncode != 0:
            logger.warning(f"Failed to send notification mail (exit {completed.returncode})")
            return False
        return True

    def send_failure(self, error: str, log_lines: List[str],
                     failed_jobs: Optional[List[str]] = None) -> bool:
        """
        Send the backup failure report.

        Args:
            error: Failure cause
            log_lines: Recent log lines for context
            failed_jobs: Workloads that could not be dumped, if any
        """
        subject = f"[BACKUP ERROR] {self.hostname} - Offsite backup failed"
        lines = [
            "=== PVE Offsite Backup Error Report ===",
            "",
            f"Host:      {self.hostname}",
            f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
            f"Error:     {error}",
        ]
        if failed_jobs:
            lines.append(f"Failed:    {', '.join(failed_jobs)}")
        lines.extend(["", "=== Last Log Entries ===", ""])
        lines.extend(log_lines)
        body = '\n'.join(lines)
        return self.send(subject, body)
