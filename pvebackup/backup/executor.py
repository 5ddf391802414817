"""
Backup executor - orchestrates the offsite backup pipeline.

Workflow:
1. Preflight checks (key file, tools, NAS mount, remote)
2. vzdump all VMs/CTs into intermediate storage
3. Encrypt every dump, removing the plaintext
4. Upload intermediate storage to {remote}/{YYYY-MM-DD_HH-MM}
5. Apply GFS retention on the remote
6. Clear intermediate storage

Any fatal failure goes through a single handler: log the cause, notify
with recent log context, clear intermediate storage (except for preflight
failures), and report a non-zero exit code.
"""

import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pvebackup.config import BackupSettings
from pvebackup.models import SNAPSHOT_NAME_FORMAT, RetentionSummary, WorkloadJob
from pvebackup.utils.formatting import format_duration, format_gib
from pvebackup.utils.lock import LockError, RunLock
from pvebackup.utils.logbuffer import RecentLogBuffer
from pvebackup.utils.mail import MailNotifier
from .commands import CommandRunner
from .dump import DumpStage
from .encryption import EncryptStage, collect_artifacts
from .errors import BackupError, DumpFailure, PreflightFailure, RunInterrupted, UploadFailure
from .inventory import discover_workloads
from .preflight import PreflightValidator
from .retention import RetentionManager
from .transfer import RcloneRemote, TransferError


logger = logging.getLogger(__name__)

RULE = '━' * 60


class PipelineState(str, Enum):
    IDLE = 'idle'
    PREFLIGHT = 'preflight'
    DUMPING = 'dumping'
    ENCRYPTING = 'encrypting'
    UPLOADING = 'uploading'
    RETAINING = 'retaining'
    DONE = 'done'
    FAILED = 'failed'


@dataclass
class RunReport:
    """Outcome of one pipeline run."""
    snapshot_name: str
    started_at: datetime
    state: PipelineState = PipelineState.IDLE
    failed_state: Optional[PipelineState] = None
    completed_at: Optional[datetime] = None
    workload_count: int = 0
    artifact_count: int = 0
    total_bytes: int = 0
    upload_seconds: float = 0.0
    retention: Optional[RetentionSummary] = None
    error_message: Optional[str] = None
    failed_jobs: List[WorkloadJob] = field(default_factory=list)
    interrupted: bool = False
    logs: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state == PipelineState.DONE

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1


class BackupExecutor:
    """
    Drives Preflight -> Dump -> Encrypt -> Upload -> Retain.
    """

    def __init__(self, settings: BackupSettings, runner: Optional[CommandRunner] = None,
                 notifier: Optional[MailNotifier] = None, hostname: Optional[str] = None):
        """
        Initialize backup executor.

        Args:
            settings: Run configuration
            runner: Command runner for external tools
            notifier: Failure notifier (default: sendmail to NOTIFY_RECIPIENT)
            hostname: Host name for notifications
        """
        self.settings = settings
        self.runner = runner or CommandRunner()
        self.notifier = notifier or MailNotifier(
            self.runner, recipient=settings.notify_recipient, hostname=hostname
        )
        self.remote = RcloneRemote(
            self.runner,
            settings.rclone_remote,
            transfers=settings.rclone_transfers,
            stats_interval=settings.rclone_stats_interval,
            log_file=settings.log_file,
        )
        self.state = PipelineState.IDLE
        self.report = None
        self._log_buffer = None

    def execute(self) -> RunReport:
        """
        Execute one backup run.

        Returns:
            RunReport; exit_code is 0 only if every stage completed
        """
        started_at = datetime.now()
        started = time.monotonic()
        self.report = RunReport(
            snapshot_name=started_at.strftime(SNAPSHOT_NAME_FORMAT),
            started_at=started_at
        )

        package_logger = logging.getLogger('pvebackup')
        self._log_buffer = RecentLogBuffer(capacity=self.settings.notify_log_lines)
        package_logger.addHandler(self._log_buffer)

        lock = RunLock(self.settings.lock_file) if self.settings.lock_file else None

        try:
            logger.info("╔══════════════════════════════════════════════════════════════╗")
            logger.info("║          PVE Offsite Backup started")
            logger.info(f"║          Host: {self.notifier.hostname}")
            logger.info("╚══════════════════════════════════════════════════════════════╝")

            self._transition(PipelineState.PREFLIGHT)
            if lock:
                try:
                    lock.acquire()
                except LockError as e:
                    raise PreflightFailure(str(e))
            self._preflight()

            self._transition(PipelineState.DUMPING)
            self._dump()

            self._transition(PipelineState.ENCRYPTING)
            self._encrypt()

            self._transition(PipelineState.UPLOADING)
            self._upload()

            self._transition(PipelineState.RETAINING)
            self._retain()

            # Intermediate storage never accumulates across successful runs
            self._clear_intermediate_storage()
            self._transition(PipelineState.DONE)
            self._log_summary(time.monotonic() - started)

        except DumpFailure as e:
            self.report.failed_jobs = list(e.failed_jobs)
            self._fail(str(e))
        except RunInterrupted as e:
            self.report.interrupted = True
            self._fail(str(e))
        except BackupError as e:
            self._fail(str(e))
        except KeyboardInterrupt:
            self.report.interrupted = True
            self._fail("Backup interrupted")
        except Exception as e:
            logger.exception("Unexpected error during backup run")
            self._fail(f"Script terminated unexpectedly: {e}")

        finally:
            self.report.completed_at = datetime.now()
            self.report.logs = self._log_buffer.lines
            package_logger.removeHandler(self._log_buffer)
            if lock:
                lock.release()

        return self.report

    def _transition(self, state: PipelineState):
        logger.debug(f"Pipeline state: {self.state.value} -> {state.value}")
        self.state = state
        self.report.state = state

    def _stage_banner(self, title: str):
        logger.info("")
        logger.info(RULE)
        logger.info(f"▶ {title}")
        logger.info(RULE)

    def _preflight(self):
        logger.info("▶ Preflight checks...")
        validator = PreflightValidator(self.settings, self.runner, self.remote)
        report = validator.validate()
        self.notifier.enabled = self.notifier.enabled and report.notifications_enabled

        try:
            os.makedirs(self.settings.backup_dir, exist_ok=True)
        except OSError as e:
            raise PreflightFailure(f"Cannot create backup directory {self.settings.backup_dir}: {e}")

    def _dump(self):
        self._stage_banner("Step 1/4: vzdump - Backup all VMs/CTs")
        jobs = discover_workloads(self.runner)
        self.report.workload_count = len(jobs)
        result = DumpStage(self.settings, self.runner).run(jobs)
        self.report.artifact_count = len(result.artifacts)

    def _encrypt(self):
        self._stage_banner("Step 2/4: AES-256 Encryption")
        artifacts = collect_artifacts(self.settings.backup_dir)
        result = EncryptStage(self.settings, self.runner).run(artifacts)
        self.report.artifact_count = len(result.artifacts)
        self.report.total_bytes = result.total_bytes

    def _upload(self):
        self._stage_banner(f"Step 3/4: Upload via rclone ({self.settings.rclone_transfers} streams)")
        name = self.report.snapshot_name
        logger.info(f"  Target: {self.remote.snapshot_path(name)}")
        logger.info(f"  Uploading... (progress every {self.settings.rclone_stats_interval} in log)")

        started = time.monotonic()
        try:
            self.remote.copy_directory(self.settings.backup_dir, name)
        except TransferError as e:
            elapsed = time.monotonic() - started
            raise UploadFailure(
                f"rclone upload failed (exit: {e.returncode}) after {format_duration(elapsed, with_seconds=False)}"
            )
        self.report.upload_seconds = time.monotonic() - started
        logger.info(f"  ✓ Upload completed in {format_duration(self.report.upload_seconds)}")

    def _retain(self):
        policy = self.settings.retention
        self._stage_banner(
            f"Step 4/4: GFS Retention ({policy.daily_keep}D / {policy.weekly_keep}W / {policy.monthly_keep}M)"
        )
        manager = RetentionManager(self.remote, policy)
        self.report.retention = manager.enforce(self.report.started_at.date())

    def _clear_intermediate_storage(self):
        """Delete the contents of intermediate storage, keeping the directory."""
        backup_dir = self.settings.backup_dir
        if not os.path.isdir(backup_dir):
            return

        logger.info("  Cleaning up intermediate storage...")
        for entry in os.scandir(backup_dir):
            try:
                if entry.is_dir(follow_symlinks=False):
                    shutil.rmtree(entry.path)
                else:
                    os.remove(entry.path)
            except OSError as e:
                logger.warning(f"  Failed to remove {entry.path}: {e}")
        logger.info("  ✓ Cleaned up")

    def _fail(self, message: str):
        """Single failure path for every fatal error."""
        failed_state = self.state
        self.report.failed_state = failed_state
        self.report.error_message = message
        logger.error(f"ERROR: {message}")

        try:
            self.notifier.send_failure(
                message,
                self._log_buffer.lines,
                failed_jobs=[str(job) for job in self.report.failed_jobs]
            )
        except Exception as e:
            logger.warning(f"Failed to send failure notification: {e}")

        # Preflight failures have created nothing; another run may own the storage
        if failed_state not in (PipelineState.IDLE, PipelineState.PREFLIGHT):
            try:
                self._clear_intermediate_storage()
            except OSError as e:
                logger.warning(f"Failed to clean up intermediate storage: {e}")

        self._transition(PipelineState.FAILED)

    def _log_summary(self, total_seconds: float):
        report = self.report
        logger.info("")
        logger.info("╔══════════════════════════════════════════════════════════════╗")
        logger.info("║          ✓ BACKUP SUCCESSFUL")
        logger.info("╠══════════════════════════════════════════════════════════════╣")
        logger.info(f"║  VMs/CTs:    {report.workload_count} backed up")
        logger.info(f"║  Size:       {format_gib(report.total_bytes)} GiB")
        logger.info(f"║  Target:     {report.snapshot_name}")
        logger.info(f"║  Upload:     {format_duration(report.upload_seconds)}")
        logger.info(f"║  Total:      {format_duration(total_seconds, with_seconds=False)}")
        logger.info("╚══════════════════════════════════════════════════════════════╝")


def run_backup(settings: BackupSettings, runner: Optional[CommandRunner] = None) -> RunReport:
    """
    Execute one backup run with the given settings.

    Args:
        settings: Run configuration
        runner: Optional command runner

    Returns:
        RunReport with execution results
    """
    executor = BackupExecutor(settings, runner=runner)
    return executor.execute()
