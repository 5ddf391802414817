"""
Workload inventory.

Enumerates Proxmox VMs (qm) and containers (pct) and merges them into a
single list of WorkloadJob sorted by numeric id.
"""

import logging
from typing import List

from pvebackup.models import WorkloadJob, WorkloadKind
from .commands import CommandRunner


logger = logging.getLogger(__name__)

# Inventory program and the config key holding the guest's display name
_KIND_TOOLS = {
    WorkloadKind.VM: ('qm', 'name'),
    WorkloadKind.CONTAINER: ('pct', 'hostname'),
}


def list_guest_ids(runner: CommandRunner, kind: WorkloadKind) -> List[int]:
    """
    List guest ids of one kind.

    A failing inventory command yields an empty list; the dump stage treats
    an empty merged inventory as fatal.

    Args:
        runner: Command runner
        kind: VM or container

    Returns:
        Guest ids in the order reported by the tool
    """
    program, _ = _KIND_TOOLS[kind]
    result = runner.run([program, 'list'])

    if result.returncode != 0:
        logger.warning(f"'{program} list' failed (exit {result.returncode}), assuming no guests")
        return []

    ids = []
    # First line is the column header
    for line in (result.stdout or '').splitlines()[1:]:
        fields = line.split()
        if fields and fields[0].isdigit():
            ids.append(int(fields[0]))
    return ids


def resolve_display_name(runner: CommandRunner, guest_id: int, kind: WorkloadKind) -> str:
    """
    Look up the guest's name from its configuration.

    Returns:
        The configured name, or 'unknown'
    """
    program, key = _KIND_TOOLS[kind]
    result = runner.run([program, 'config', str(guest_id)])

    if result.returncode == 0:
        for line in (result.stdout or '').splitlines():
            if line.startswith(f'{key}:'):
                name = line.split(':', 1)[1].strip()
                if name:
                    return name
    return 'unknown'


def discover_workloads(runner: CommandRunner) -> List[WorkloadJob]:
    """
    Enumerate all VMs and containers.

    Args:
        runner: Command runner

    Returns:
        WorkloadJob list sorted numerically by id
    """
    jobs = {}
    for kind in (WorkloadKind.VM, WorkloadKind.CONTAINER):
        for guest_id in list_guest_ids(runner, kind):
            if guest_id in jobs:
                logger.warning(f"Guest id {guest_id} reported by more than one inventory, keeping first")
                continue
            jobs[guest_id] = WorkloadJob(
                id=guest_id,
                display_name=resolve_display_name(runner, guest_id, kind),
                kind=kind,
            )

    return [jobs[guest_id] for guest_id in sorted(jobs)]
