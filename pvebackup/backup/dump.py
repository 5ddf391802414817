"""
Dump stage - vzdump every workload into intermediate storage.

Every job is attempted even when earlier jobs fail; the stage fails after
the full pass if any job failed.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from typing import List, Set

from pvebackup.config import BackupSettings
from pvebackup.models import BackupArtifact, WorkloadJob
from pvebackup.utils.formatting import log_progress
from .commands import CommandRunner, describe_failure, log_output
from .errors import DumpFailure


logger = logging.getLogger(__name__)


@dataclass
class DumpResult:
    """Outcome of a full dump pass."""
    attempted: int = 0
    artifacts: List[BackupArtifact] = field(default_factory=list)
    failed_jobs: List[WorkloadJob] = field(default_factory=list)


def _snapshot_files(directory: str) -> Set[str]:
    return {
        entry.name for entry in os.scandir(directory)
        if entry.is_file(follow_symlinks=False)
    }


class DumpStage:
    """
    Runs vzdump per workload in snapshot mode with the configured compression.
    """

    def __init__(self, settings: BackupSettings, runner: CommandRunner):
        self.settings = settings
        self.runner = runner

    def build_command(self, job: WorkloadJob) -> List[str]:
        return [
            'vzdump', str(job.id),
            '--dumpdir', self.settings.backup_dir,
            '--compress', self.settings.dump_compress,
            '--mode', self.settings.dump_mode,
            '--quiet', '1',
        ]

    def run(self, jobs: List[WorkloadJob]) -> DumpResult:
        """
        Dump all jobs.

        Args:
            jobs: Workloads sorted by id

        Returns:
            DumpResult with the artifacts produced

        Raises:
            DumpFailure: If no jobs were given, or after the full pass if any
                job failed
        """
        if not jobs:
            raise DumpFailure("No VMs or containers found!")

        total = len(jobs)
        logger.info(f"  Found: {total} VMs/CTs (IDs: {' '.join(str(job.id) for job in jobs)})")

        result = DumpResult()

        for index, job in enumerate(jobs, start=1):
            log_progress(logger, index, total, "  vzdump")
            logger.info(f"  → Backing up {job.kind.name} {job}...")

            before = _snapshot_files(self.settings.backup_dir)
            started = time.monotonic()
            completed = self.runner.run(self.build_command(job))
            elapsed = int(time.monotonic() - started)
            log_output(completed)
            result.attempted += 1

            if completed.returncode != 0:
                logger.error(f"  ✗ {job.kind.name} {job} FAILED ({describe_failure(completed)})")
                result.failed_jobs.append(job)
                continue

            produced = sorted(_snapshot_files(self.settings.backup_dir) - before)
            for name in produced:
                if name.endswith('.log'):
                    continue
                path = os.path.join(self.settings.backup_dir, name)
                result.artifacts.append(BackupArtifact(path=path, size_bytes=os.path.getsize(path)))

            logger.info(f"  ✓ {job.kind.name} {job} done ({elapsed}s)")

        if result.failed_jobs:
            raise DumpFailure(
                f"vzdump failed for {len(result.failed_jobs)} of {total} VM(s)",
                failed_jobs=result.failed_jobs
            )

        logger.info(f"  ✓ All {total} VMs backed up successfully")
        return result
