"""
Encrypt stage - openssl AES-256 encryption of every dumped artifact.

Fail-fast: the first failure aborts the stage so plaintext never sits next
to partially encrypted output without the run aborting.

Restore:
    openssl enc -aes-256-cbc -d -pbkdf2 -in backup.vma.zst.enc -out backup.vma.zst \
        -pass file:/root/.backup-encryption-key
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List

from pvebackup.config import BackupSettings
from pvebackup.models import BackupArtifact
from pvebackup.utils.formatting import format_gib, log_progress
from .commands import CommandRunner, describe_failure
from .errors import EncryptionFailure


logger = logging.getLogger(__name__)

ENCRYPTED_SUFFIX = '.enc'
LOG_SUFFIX = '.log'


@dataclass
class EncryptResult:
    """Encrypted artifacts and the aggregate plaintext size."""
    artifacts: List[BackupArtifact] = field(default_factory=list)
    total_bytes: int = 0


def collect_artifacts(directory: str) -> List[BackupArtifact]:
    """
    Collect plaintext artifacts directly under a directory.

    Skips subdirectories, ciphertext and log files.

    Args:
        directory: Intermediate storage directory

    Returns:
        Artifacts sorted by path
    """
    artifacts = []
    for entry in sorted(os.scandir(directory), key=lambda e: e.name):
        if not entry.is_file(follow_symlinks=False):
            continue
        if entry.name.endswith(ENCRYPTED_SUFFIX) or entry.name.endswith(LOG_SUFFIX):
            continue
        artifacts.append(BackupArtifact(path=entry.path, size_bytes=entry.stat().st_size))
    return artifacts


class EncryptStage:
    """Encrypts artifacts in place using the configured key file."""

    def __init__(self, settings: BackupSettings, runner: CommandRunner):
        self.settings = settings
        self.runner = runner

    def build_command(self, source: str, target: str) -> List[str]:
        return [
            'openssl', 'enc', '-aes-256-cbc', '-salt', '-pbkdf2',
            '-in', source,
            '-out', target,
            '-pass', f'file:{self.settings.encryption_keyfile}',
        ]

    def encrypt(self, artifact: BackupArtifact):
        """
        Encrypt one artifact and remove its plaintext.

        Mutates the artifact: path points at the ciphertext afterwards.

        Raises:
            EncryptionFailure: If openssl fails or the plaintext cannot be removed
        """
        filename = os.path.basename(artifact.path)
        target = artifact.path + ENCRYPTED_SUFFIX

        completed = self.runner.run(self.build_command(artifact.path, target))
        if completed.returncode != 0:
            raise EncryptionFailure(f"Encryption failed: {filename} ({describe_failure(completed)})")

        try:
            os.remove(artifact.path)
        except OSError as e:
            raise EncryptionFailure(f"Failed to remove plaintext {filename}: {e}")

        artifact.path = target
        artifact.encrypted = True
        if os.path.exists(target):
            artifact.size_bytes = os.path.getsize(target)

    def run(self, artifacts: List[BackupArtifact]) -> EncryptResult:
        """
        Encrypt all artifacts in order.

        Raises:
            EncryptionFailure: On the first artifact that fails
        """
        result = EncryptResult()
        total = len(artifacts)

        for index, artifact in enumerate(artifacts, start=1):
            result.total_bytes += artifact.size_bytes
            log_progress(logger, index, total, "  Encryption")
            logger.info(f"  → {os.path.basename(artifact.path)} ({format_gib(artifact.size_bytes)} GiB)...")

            self.encrypt(artifact)
            result.artifacts.append(artifact)
            logger.info("  ✓ Encrypted")

        logger.info(f"  ✓ {total} files encrypted ({format_gib(result.total_bytes)} GiB)")
        return result
