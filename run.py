#!/usr/bin/env python3
"""
Command-line runner

Usage:
    ./run.py backup run
    ./run.py backup check
    ./run.py backup plan [--date YYYY-MM-DD]
    ./run.py backup schedule

Cron example:
    0 1 * * * /usr/local/bin/pve-backup-offsite backup run
"""
from flask.cli import FlaskGroup

from pvebackup import create_app


cli = FlaskGroup(create_app=create_app, add_default_commands=False)


if __name__ == '__main__':
    cli()
