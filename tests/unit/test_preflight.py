"""
Unit tests for preflight checks (pvebackup/backup/preflight.py).
"""

import os
from dataclasses import replace
from unittest.mock import patch

import pytest

from pvebackup.backup.errors import PreflightFailure
from pvebackup.backup.preflight import PreflightValidator
from pvebackup.backup.transfer import RcloneRemote


@pytest.fixture
def validator(settings, fake_runner):
    return PreflightValidator(settings, fake_runner, RcloneRemote(fake_runner, settings.rclone_remote))


class TestPreflightValidator:
    """Test PreflightValidator."""

    def test_validate_ok(self, validator, fake_runner):
        """Test all checks pass."""
        report = validator.validate()

        assert report.notifications_enabled
        assert fake_runner.calls_for('rclone', 'lsd') == [['rclone', 'lsd', 'offsite:/']]

    def test_missing_keyfile(self, validator, keyfile, fake_runner):
        """Test a missing key file fails before anything else runs."""
        keyfile.unlink()

        with pytest.raises(PreflightFailure, match='Encryption keyfile not found'):
            validator.validate()

        assert fake_runner.calls == []

    @pytest.mark.skipif(os.geteuid() == 0, reason='root can read any file')
    def test_unreadable_keyfile(self, validator, keyfile):
        """Test an unreadable key file fails."""
        keyfile.chmod(0o000)

        with pytest.raises(PreflightFailure, match='not readable'):
            validator.validate()

    @pytest.mark.parametrize('program', ['vzdump', 'qm', 'pct', 'openssl', 'rclone'])
    def test_missing_required_tool(self, validator, fake_runner, program):
        """Test each required tool is checked."""
        fake_runner.missing_programs = {program}

        with pytest.raises(PreflightFailure, match=f'{program} not installed'):
            validator.validate()

    def test_missing_sendmail_only_warns(self, validator, fake_runner, caplog):
        """Test missing sendmail disables notifications without failing."""
        fake_runner.missing_programs = {'sendmail'}

        report = validator.validate()

        assert not report.notifications_enabled
        assert 'sendmail not found' in caplog.text

    @patch('pvebackup.backup.preflight.os.path.ismount')
    def test_nas_not_mounted(self, mock_ismount, settings, fake_runner):
        """Test the NAS mount check."""
        mock_ismount.return_value = False
        settings = replace(settings, nas_mountpoint='/mnt/pve/backup-nas')
        validator = PreflightValidator(settings, fake_runner, RcloneRemote(fake_runner, settings.rclone_remote))

        with pytest.raises(PreflightFailure, match='NAS not mounted: /mnt/pve/backup-nas'):
            validator.validate()

        mock_ismount.assert_called_once_with('/mnt/pve/backup-nas')
        assert fake_runner.calls_for('rclone') == []

    @patch('pvebackup.backup.preflight.os.path.ismount')
    def test_nas_mounted(self, mock_ismount, settings, fake_runner):
        """Test a mounted NAS passes."""
        mock_ismount.return_value = True
        settings = replace(settings, nas_mountpoint='/mnt/pve/backup-nas')
        validator = PreflightValidator(settings, fake_runner, RcloneRemote(fake_runner, settings.rclone_remote))

        assert validator.validate().notifications_enabled

    def test_remote_unreachable(self, validator, fake_runner):
        """Test an unreachable remote fails preflight."""
        fake_runner.lsd_returncode = 1

        with pytest.raises(PreflightFailure, match='rclone connection failed'):
            validator.validate()
