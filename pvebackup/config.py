import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from pvebackup.models import RetentionPolicy


class Config:
    """Base configuration"""

    # Intermediate storage (local/NAS staging area before upload)
    BACKUP_DIR = os.environ.get('BACKUP_DIR') or '/mnt/pve/backup-nas/vzdump-offsite'

    # NAS mount check path (empty string skips the mount check)
    NAS_MOUNTPOINT = os.environ.get('NAS_MOUNTPOINT', '/mnt/pve/backup-nas')

    # rclone remote path, configured beforehand with 'rclone config'
    RCLONE_REMOTE = os.environ.get('RCLONE_REMOTE') or 'offsite:/pve-backup'
    RCLONE_TRANSFERS = os.environ.get('RCLONE_TRANSFERS', '4')
    RCLONE_STATS_INTERVAL = os.environ.get('RCLONE_STATS_INTERVAL') or '60s'

    # Passphrase file handed to openssl
    ENCRYPTION_KEYFILE = os.environ.get('ENCRYPTION_KEYFILE') or '/root/.backup-encryption-key'

    # vzdump
    DUMP_COMPRESS = os.environ.get('DUMP_COMPRESS') or 'zstd'
    DUMP_MODE = os.environ.get('DUMP_MODE') or 'snapshot'

    # GFS retention (Grandfather-Father-Son)
    GFS_DAILY = os.environ.get('GFS_DAILY', '7')
    GFS_WEEKLY = os.environ.get('GFS_WEEKLY', '4')
    GFS_MONTHLY = os.environ.get('GFS_MONTHLY', '12')
    GFS_WEEKLY_DOW = os.environ.get('GFS_WEEKLY_DOW', '0')  # 0=Sunday ... 6=Saturday
    GFS_MONTHLY_DOM = os.environ.get('GFS_MONTHLY_DOM', '1')

    # Logging
    LOG_FILE = os.environ.get('LOG_FILE') or '/var/log/pve-backup-offsite.log'
    LOG_MAX_BYTES = os.environ.get('LOG_MAX_BYTES', '10485760')  # 10MB
    LOG_BACKUP_COUNT = os.environ.get('LOG_BACKUP_COUNT', '1')

    # Failure notifications
    NOTIFY_RECIPIENT = os.environ.get('NOTIFY_RECIPIENT') or 'root'
    NOTIFY_LOG_LINES = os.environ.get('NOTIFY_LOG_LINES', '50')

    # Single-run lock
    LOCK_FILE = os.environ.get('LOCK_FILE') or '/run/lock/pve-backup-offsite.lock'

    # Scheduler
    SCHEDULE_CRON = os.environ.get('SCHEDULE_CRON') or '0 1 * * *'
    SCHEDULER_TIMEZONE = os.environ.get('SCHEDULER_TIMEZONE') or None  # None: local timezone


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Keep everything below a local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    BACKUP_DIR = os.path.join(DATA_DIR, 'staging')
    NAS_MOUNTPOINT = ''
    LOG_FILE = os.path.join(DATA_DIR, 'logs', 'pve-backup-offsite.log')
    LOCK_FILE = os.path.join(DATA_DIR, 'pve-backup-offsite.lock')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


def config_int(mapping: Mapping[str, Any], key: str, default: Optional[int] = None) -> int:
    """
    Read an integer setting. Environment values arrive as strings.

    Raises:
        KeyError: If the key is missing and no default is given
        ValueError: If the value is not an integer
    """
    value = mapping[key] if default is None else mapping.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be an integer, got {value!r}")


@dataclass(frozen=True)
class BackupSettings:
    """
    Immutable run configuration.

    Built once per command from the application config and passed to every
    component explicitly.
    """

    backup_dir: str
    rclone_remote: str
    encryption_keyfile: str
    log_file: str
    rclone_transfers: int
    retention: RetentionPolicy
    nas_mountpoint: Optional[str] = None
    rclone_stats_interval: str = '60s'
    dump_compress: str = 'zstd'
    dump_mode: str = 'snapshot'
    notify_recipient: str = 'root'
    notify_log_lines: int = 50
    lock_file: Optional[str] = None

    def __post_init__(self):
        if not self.backup_dir:
            raise ValueError("BACKUP_DIR must be set")
        if ':' not in self.rclone_remote:
            raise ValueError(
                f"Invalid RCLONE_REMOTE: {self.rclone_remote!r}. "
                f"Expected '<remote>:<path>'"
            )
        if self.rclone_transfers < 1:
            raise ValueError(f"RCLONE_TRANSFERS must be at least 1, got {self.rclone_transfers}")
        if self.notify_log_lines < 0:
            raise ValueError(f"NOTIFY_LOG_LINES must be non-negative, got {self.notify_log_lines}")

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> 'BackupSettings':
        """
        Build settings from a Flask config (or any upper-case keyed mapping).

        Args:
            mapping: Configuration mapping

        Returns:
            BackupSettings instance

        Raises:
            ValueError: If a value is missing or invalid
        """
        try:
            retention = RetentionPolicy(
                daily_keep=config_int(mapping, 'GFS_DAILY'),
                weekly_keep=config_int(mapping, 'GFS_WEEKLY'),
                monthly_keep=config_int(mapping, 'GFS_MONTHLY'),
                weekly_day_of_week=config_int(mapping, 'GFS_WEEKLY_DOW'),
                monthly_day_of_month=config_int(mapping, 'GFS_MONTHLY_DOM'),
            )
            return cls(
                backup_dir=str(mapping['BACKUP_DIR']),
                rclone_remote=str(mapping['RCLONE_REMOTE']).rstrip('/'),
                encryption_keyfile=str(mapping['ENCRYPTION_KEYFILE']),
                log_file=str(mapping['LOG_FILE']),
                rclone_transfers=config_int(mapping, 'RCLONE_TRANSFERS'),
                retention=retention,
                nas_mountpoint=mapping.get('NAS_MOUNTPOINT') or None,
                rclone_stats_interval=str(mapping.get('RCLONE_STATS_INTERVAL', '60s')),
                dump_compress=str(mapping.get('DUMP_COMPRESS', 'zstd')),
                dump_mode=str(mapping.get('DUMP_MODE', 'snapshot')),
                notify_recipient=str(mapping.get('NOTIFY_RECIPIENT', 'root')),
                notify_log_lines=config_int(mapping, 'NOTIFY_LOG_LINES', 50),
                lock_file=mapping.get('LOCK_FILE') or None,
            )
        except KeyError as e:
            raise ValueError(f"Missing configuration value: {e.args[0]}")
