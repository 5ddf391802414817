"""
Backup module for pve-offsite-backup.

This module handles the offsite backup pipeline including:
- Preflight checks
- Workload inventory and vzdump
- Encryption
- rclone upload
- GFS retention enforcement
"""

from .executor import BackupExecutor, RunReport, PipelineState, run_backup
from .preflight import PreflightValidator
from .dump import DumpStage
from .encryption import EncryptStage
from .transfer import RcloneRemote
from .retention import RetentionManager, classify

__all__ = [
    'BackupExecutor',
    'RunReport',
    'PipelineState',
    'run_backup',
    'PreflightValidator',
    'DumpStage',
    'EncryptStage',
    'RcloneRemote',
    'RetentionManager',
    'classify'
]
