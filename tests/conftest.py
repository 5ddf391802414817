"""
Shared pytest fixtures for pve-offsite-backup tests.

This module provides fixtures for:
- Flask app and CLI test runner
- Immutable run settings backed by temporary directories
- A fake command runner simulating qm, pct, vzdump, openssl, rclone and sendmail
- Snapshot set builders for retention tests
"""

import logging
import os
import signal
import subprocess
from datetime import date, timedelta

import pytest

from pvebackup import create_app
from pvebackup.config import BackupSettings
from pvebackup.models import RemoteSnapshotSet, RetentionPolicy


class FakeCommandRunner:
    """
    Simulates the external tools against the local filesystem.

    vzdump writes archive and log files into the dump directory, openssl
    writes '<file>.enc', 'rclone copy' records uploaded file names as a new
    remote directory, and sendmail stores the messages it was fed.
    """

    def __init__(self):
        self.calls = []
        self.vms = {100: 'web', 101: 'db'}
        self.containers = {200: 'dns'}
        self.failing_dumps = set()
        self.failing_encryptions = set()
        self.failing_purges = set()
        self.missing_programs = set()
        self.remote_dirs = []
        self.uploaded = {}
        self.mails = []
        self.copy_returncode = 0
        self.lsd_returncode = 0
        self.lsf_returncode = 0
        self.sendmail_returncode = 0
        self.terminate_during_encryption = False

    def which(self, program):
        if program in self.missing_programs:
            return None
        return f'/usr/bin/{program}'

    def run(self, args, input=None, timeout=None):
        self.calls.append(list(args))
        handler = getattr(self, f'_run_{args[0]}')
        returncode, stdout, stderr = handler(args, input)
        return subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr=stderr)

    def calls_for(self, program, subcommand=None):
        return [
            call for call in self.calls
            if call[0] == program and (subcommand is None or call[1] == subcommand)
        ]

    def _run_qm(self, args, input):
        if args[1] == 'list':
            lines = ['      VMID NAME                 STATUS     MEM(MB)    BOOTDISK(GB) PID']
            for vmid, name in self.vms.items():
                lines.append(f'{vmid:>10} {name:<20} running    2048              32.00 1{vmid}')
            return 0, '\n'.join(lines) + '\n', ''
        vmid = int(args[2])
        if vmid not in self.vms:
            return 2, '', f"Configuration file 'nodes/pve/qemu-server/{vmid}.conf' does not exist"
        return 0, f'boot: order=scsi0\ncores: 2\nname: {self.vms[vmid]}\n', ''

    def _run_pct(self, args, input):
        if args[1] == 'list':
            lines = ['VMID       Status     Lock         Name']
            for ctid, name in self.containers.items():
                lines.append(f'{ctid:<10} running                 {name}')
            return 0, '\n'.join(lines) + '\n', ''
        ctid = int(args[2])
        if ctid not in self.containers:
            return 2, '', f"Configuration file 'nodes/pve/lxc/{ctid}.conf' does not exist"
        return 0, f'arch: amd64\nhostname: {self.containers[ctid]}\n', ''

    def _run_vzdump(self, args, input):
        vmid = int(args[1])
        dumpdir = args[args.index('--dumpdir') + 1]
        if vmid in self.failing_dumps:
            return 255, '', f'ERROR: Backup of VM {vmid} failed - unable to create snapshot'

        kind, extension = ('qemu', 'vma.zst') if vmid in self.vms else ('lxc', 'tar.zst')
        base = os.path.join(dumpdir, f'vzdump-{kind}-{vmid}-2026_10_19-01_00_00')
        with open(f'{base}.{extension}', 'wb') as f:
            f.write(b'x' * vmid)
        with open(f'{base}.log', 'w') as f:
            f.write(f'INFO: Finished Backup of VM {vmid}\n')
        return 0, f'INFO: starting new backup job: vzdump {vmid}\nINFO: Finished Backup of VM {vmid}\n', ''

    def _run_openssl(self, args, input):
        source = args[args.index('-in') + 1]
        target = args[args.index('-out') + 1]
        if self.terminate_during_encryption:
            # Delivered to this process as if an operator stopped the run
            os.kill(os.getpid(), signal.SIGTERM)
        if os.path.basename(source) in self.failing_encryptions:
            with open(target, 'wb') as f:
                f.write(b'Salted__')
            return 1, '', 'error writing output file'
        with open(source, 'rb') as src, open(target, 'wb') as dst:
            dst.write(b'Salted__' + src.read())
        return 0, '', ''

    def _run_rclone(self, args, input):
        subcommand = args[1]
        if subcommand == 'lsd':
            return self.lsd_returncode, '          -1 2026-01-01 00:00:00        -1 pve\n', ''
        if subcommand == 'lsf':
            if self.lsf_returncode != 0:
                return self.lsf_returncode, '', "Failed to lsf: directory not found"
            return 0, ''.join(f'{name}/\n' for name in self.remote_dirs), ''
        if subcommand == 'copy':
            if self.copy_returncode != 0:
                return self.copy_returncode, '', 'Failed to copy: connection reset'
            source = args[2]
            name = args[3].rstrip('/').rsplit('/', 1)[-1]
            self.uploaded[name] = sorted(
                entry for entry in os.listdir(source) if not entry.endswith('.log')
            )
            self.remote_dirs.append(name)
            return 0, '', ''
        if subcommand == 'purge':
            name = args[2].rstrip('/').rsplit('/', 1)[-1]
            if name in self.failing_purges:
                return 1, '', f'Failed to purge: {name}: permission denied'
            self.remote_dirs.remove(name)
            return 0, '', ''
        raise AssertionError(f'Unexpected rclone call: {args}')

    def _run_sendmail(self, args, input):
        self.mails.append(input)
        return self.sendmail_returncode, '', ''


@pytest.fixture(autouse=True)
def package_log_level(caplog):
    """Capture INFO logs from the package regardless of root logger level."""
    caplog.set_level(logging.INFO, logger='pvebackup')


@pytest.fixture
def fake_runner():
    """Fake command runner with two VMs and one container."""
    return FakeCommandRunner()


@pytest.fixture
def keyfile(tmp_path):
    """Encryption passphrase file."""
    path = tmp_path / 'backup-encryption-key'
    path.write_text('correct horse battery staple\n')
    path.chmod(0o600)
    return path


@pytest.fixture
def backup_dir(tmp_path):
    """Intermediate storage directory."""
    path = tmp_path / 'staging'
    path.mkdir()
    return path


@pytest.fixture
def settings(tmp_path, keyfile, backup_dir):
    """
    Run settings with GFS policy 7 daily / 4 weekly (Sunday) / 12 monthly (1st).
    """
    return BackupSettings(
        backup_dir=str(backup_dir),
        rclone_remote='offsite:/pve',
        encryption_keyfile=str(keyfile),
        log_file=str(tmp_path / 'logs' / 'pve-backup-offsite.log'),
        rclone_transfers=4,
        retention=RetentionPolicy(
            daily_keep=7,
            weekly_keep=4,
            monthly_keep=12,
            weekly_day_of_week=0,
            monthly_day_of_month=1
        ),
        lock_file=str(tmp_path / 'pve-backup-offsite.lock'),
    )


@pytest.fixture
def app(tmp_path, keyfile, backup_dir):
    """
    Create Flask app with test configuration.
    """
    app = create_app('development', overrides={
        'TESTING': True,
        'BACKUP_DIR': str(backup_dir),
        'NAS_MOUNTPOINT': '',
        'RCLONE_REMOTE': 'offsite:/pve',
        'ENCRYPTION_KEYFILE': str(keyfile),
        'LOG_FILE': str(tmp_path / 'logs' / 'pve-backup-offsite.log'),
        'LOCK_FILE': str(tmp_path / 'pve-backup-offsite.lock'),
    })

    yield app

    # Detach handlers pointing into tmp_path
    package_logger = logging.getLogger('pvebackup')
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def runner(app):
    """Flask CLI test runner."""
    return app.test_cli_runner()


def daily_snapshots(first: date, last: date, time_part: str = '01-00'):
    """Snapshot sets for every day from first to last inclusive."""
    snapshots = []
    day = first
    while day <= last:
        snapshots.append(RemoteSnapshotSet.from_name(f"{day.isoformat()}_{time_part}"))
        day += timedelta(days=1)
    return snapshots


@pytest.fixture
def make_daily_snapshots():
    """Factory for consecutive daily snapshot sets."""
    return daily_snapshots
