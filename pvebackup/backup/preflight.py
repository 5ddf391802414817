"""
Preflight checks run before any workload is touched.
"""

import logging
import os
from dataclasses import dataclass

from pvebackup.config import BackupSettings
from .commands import CommandRunner
from .errors import PreflightFailure
from .transfer import RcloneRemote, TransferError


logger = logging.getLogger(__name__)

# Program -> install hint
REQUIRED_TOOLS = {
    'vzdump': 'vzdump not installed (is this a Proxmox VE node?)',
    'qm': 'qm not installed (is this a Proxmox VE node?)',
    'pct': 'pct not installed (is this a Proxmox VE node?)',
    'openssl': 'openssl not installed',
    'rclone': 'rclone not installed (apt install rclone)',
}

NOTIFY_TOOL = 'sendmail'


@dataclass
class PreflightReport:
    """Result of a successful preflight."""
    notifications_enabled: bool = True


class PreflightValidator:
    """
    Verifies key material, tools, storage mount and remote reachability.
    """

    def __init__(self, settings: BackupSettings, runner: CommandRunner, remote: RcloneRemote):
        self.settings = settings
        self.runner = runner
        self.remote = remote

    def check_keyfile(self):
        keyfile = self.settings.encryption_keyfile
        if not os.path.isfile(keyfile):
            raise PreflightFailure(
                f"Encryption keyfile not found: {keyfile}\n"
                f"Create it with: echo 'YOUR_PASSWORD' > {keyfile} && chmod 600 {keyfile}"
            )
        if not os.access(keyfile, os.R_OK):
            raise PreflightFailure(f"Encryption keyfile not readable: {keyfile}")

    def check_tools(self):
        for program, hint in REQUIRED_TOOLS.items():
            if not self.runner.which(program):
                raise PreflightFailure(hint)

    def check_notifications(self) -> bool:
        if not self.runner.which(NOTIFY_TOOL):
            logger.warning(f"  WARNING: {NOTIFY_TOOL} not found, error notifications disabled")
            return False
        return True

    def check_mount(self):
        mountpoint = self.settings.nas_mountpoint
        if mountpoint and not os.path.ismount(mountpoint):
            raise PreflightFailure(f"NAS not mounted: {mountpoint}")

    def check_remote(self):
        logger.info("  Testing rclone connection...")
        try:
            self.remote.test_connection()
        except TransferError as e:
            raise PreflightFailure(str(e))

    def validate(self) -> PreflightReport:
        """
        Run all checks.

        Returns:
            PreflightReport

        Raises:
            PreflightFailure: On the first failed check
        """
        self.check_keyfile()
        self.check_tools()
        notifications_enabled = self.check_notifications()
        self.check_mount()
        self.check_remote()
        logger.info("  ✓ All checks passed")
        return PreflightReport(notifications_enabled=notifications_enabled)
