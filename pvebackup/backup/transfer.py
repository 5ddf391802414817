"""
rclone transfer handler.

Wraps the rclone operations the pipeline needs against a configured remote
(SFTP, WebDAV, S3, ...):
- bulk copy of the intermediate storage into a snapshot directory
- listing snapshot directories
- recursive deletion of a snapshot directory
- connectivity test
"""

import logging
from typing import List, Optional

from .commands import CommandRunner, describe_failure, log_output


logger = logging.getLogger(__name__)


class TransferError(Exception):
    """Raised when an rclone operation fails."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode


class RcloneRemote:
    """
    Handler for a remote path managed by rclone.

    Snapshot sets are stored as {remote}/{YYYY-MM-DD_HH-MM}/.
    """

    def __init__(self, runner: CommandRunner, remote: str, transfers: int = 4,
                 stats_interval: str = '60s', log_file: Optional[str] = None):
        """
        Initialize rclone handler.

        Args:
            runner: Command runner
            remote: rclone remote path, e.g. 'myremote:/path/to/backup'
            transfers: Number of parallel transfer streams
            stats_interval: Progress reporting interval
            log_file: File rclone appends its progress log to
        """
        self.runner = runner
        self.remote = remote.rstrip('/')
        self.transfers = transfers
        self.stats_interval = stats_interval
        self.log_file = log_file

    @property
    def remote_base(self) -> str:
        return self.remote.split(':', 1)[0]

    def snapshot_path(self, name: str) -> str:
        return f"{self.remote}/{name}"

    def copy_directory(self, local_dir: str, name: str, exclude: str = '*.log'):
        """
        Copy a local directory tree into a snapshot directory.

        Args:
            local_dir: Local directory to copy
            name: Snapshot directory name on the remote
            exclude: Pattern of files to skip

        Raises:
            TransferError: If rclone exits non-zero
        """
        args = [
            'rclone', 'copy', f"{local_dir.rstrip('/')}/", f"{self.snapshot_path(name)}/",
            f'--transfers={self.transfers}',
            f'--stats={self.stats_interval}',
            '--stats-log-level=NOTICE',
            '--stats-one-line',
            '--log-level=NOTICE',
            f'--exclude={exclude}',
        ]
        if self.log_file:
            args.append(f'--log-file={self.log_file}')

        completed = self.runner.run(args)
        log_output(completed)
        if completed.returncode != 0:
            raise TransferError(
                f"rclone copy failed ({describe_failure(completed)})",
                returncode=completed.returncode
            )

    def list_directories(self) -> List[str]:
        """
        List directory names directly under the remote path.

        Raises:
            TransferError: If listing fails
        """
        completed = self.runner.run(['rclone', 'lsf', '--dirs-only', f"{self.remote}/"])
        if completed.returncode != 0:
            raise TransferError(
                f"rclone lsf failed ({describe_failure(completed)})",
                returncode=completed.returncode
            )

        names = []
        for line in (completed.stdout or '').splitlines():
            name = line.strip().rstrip('/')
            if name:
                names.append(name)
        return names

    def purge(self, name: str):
        """
        Delete a snapshot directory recursively.

        Raises:
            TransferError: If deletion fails
        """
        completed = self.runner.run(['rclone', 'purge', f"{self.snapshot_path(name)}/"])
        log_output(completed)
        if completed.returncode != 0:
            raise TransferError(
                f"rclone purge failed for {name} ({describe_failure(completed)})",
                returncode=completed.returncode
            )

    def test_connection(self) -> bool:
        """
        Test that the remote answers a lightweight listing call.

        Returns:
            True if connection is successful

        Raises:
            TransferError: If the remote cannot be listed
        """
        completed = self.runner.run(['rclone', 'lsd', f"{self.remote_base}:/"])
        if completed.returncode != 0:
            raise TransferError(
                f"rclone connection failed for remote: {self.remote_base} ({describe_failure(completed)})",
                returncode=completed.returncode
            )
        return True
