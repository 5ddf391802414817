"""
GFS (Grandfather-Father-Son) retention for remote snapshot sets.

classify() is a pure function: it walks the snapshot sets newest first and
applies three independent rules, each capped by its own counter:

- Son (daily):          date >= today - daily_keep days
- Father (weekly):      date on the weekly day and >= today - weekly_keep weeks
- Grandfather (monthly): date on the monthly day and >= today - monthly_keep months

A set may match several tiers at once and then counts against each of
their caps. Since counters only grow up to their caps while walking newest
first, each rule keeps its N most recent candidates, not one set per
calendar day/week/month.

RetentionManager applies a classification to the remote: every set not
matched by any tier is purged. Deletion is best-effort.
"""

import calendar
import logging
from datetime import date, timedelta
from typing import Iterable, List

from pvebackup.models import (
    RemoteSnapshotSet,
    RetentionDecision,
    RetentionPlan,
    RetentionPolicy,
    RetentionSummary,
    Tier,
)
from .errors import RetentionDeletionFailure
from .transfer import RcloneRemote, TransferError


logger = logging.getLogger(__name__)


def subtract_days(day: date, days: int) -> date:
    """Subtract days, saturating at date.min."""
    try:
        return day - timedelta(days=days)
    except OverflowError:
        return date.min


def subtract_months(day: date, months: int) -> date:
    """
    Subtract calendar months.

    The day is clamped to the last day of the target month
    (2026-03-31 minus 1 month is 2026-02-28). Saturates at date.min.
    """
    month_index = day.year * 12 + (day.month - 1) - months
    year, month_zero = divmod(month_index, 12)
    if year < date.min.year:
        return date.min
    month = month_zero + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def day_of_week(day: date) -> int:
    """Day of week with 0=Sunday ... 6=Saturday."""
    return (day.weekday() + 1) % 7


def parse_snapshot_names(names: Iterable[str]) -> List[RemoteSnapshotSet]:
    """
    Turn remote directory names into snapshot sets.

    Names that do not start with a valid calendar date are dropped.
    """
    snapshots = []
    for name in names:
        snapshot = RemoteSnapshotSet.from_name(name)
        if snapshot is None:
            logger.debug(f"Ignoring remote entry without leading date: {name}")
            continue
        snapshots.append(snapshot)
    return snapshots


def classify(snapshots: Iterable[RemoteSnapshotSet], policy: RetentionPolicy,
             today: date) -> RetentionPlan:
    """
    Partition snapshot sets into keep/delete.

    Args:
        snapshots: Snapshot sets in any order
        policy: Retention policy
        today: Run date used for the cutoffs

    Returns:
        RetentionPlan with one decision per set, newest first
    """
    daily_cutoff = subtract_days(today, policy.daily_keep)
    weekly_cutoff = subtract_days(today, policy.weekly_keep * 7)
    monthly_cutoff = subtract_months(today, policy.monthly_keep)

    plan = RetentionPlan()
    counts = plan.tier_counts

    for snapshot in sorted(snapshots, key=lambda s: s.name, reverse=True):
        matched = set()

        if snapshot.date >= daily_cutoff and counts[Tier.SON] < policy.cap(Tier.SON):
            matched.add(Tier.SON)
            counts[Tier.SON] += 1

        if (day_of_week(snapshot.date) == policy.weekly_day_of_week
                and snapshot.date >= weekly_cutoff
                and counts[Tier.FATHER] < policy.cap(Tier.FATHER)):
            matched.add(Tier.FATHER)
            counts[Tier.FATHER] += 1

        if (snapshot.date.day == policy.monthly_day_of_month
                and snapshot.date >= monthly_cutoff
                and counts[Tier.GRANDFATHER] < policy.cap(Tier.GRANDFATHER)):
            matched.add(Tier.GRANDFATHER)
            counts[Tier.GRANDFATHER] += 1

        plan.decisions.append(RetentionDecision(snapshot=snapshot, matched_tiers=frozenset(matched)))

    return plan


class RetentionManager:
    """
    Enforces the GFS policy on an rclone remote.
    """

    def __init__(self, remote: RcloneRemote, policy: RetentionPolicy):
        """
        Initialize retention manager.

        Args:
            remote: rclone remote holding the snapshot sets
            policy: Retention policy
        """
        self.remote = remote
        self.policy = policy

    def plan(self, today: date) -> RetentionPlan:
        """
        List the remote and classify its snapshot sets without deleting.

        Raises:
            TransferError: If the remote cannot be listed
        """
        snapshots = parse_snapshot_names(self.remote.list_directories())
        return classify(snapshots, self.policy, today)

    def delete(self, snapshot: RemoteSnapshotSet):
        """
        Purge one snapshot set.

        Raises:
            RetentionDeletionFailure: If rclone fails
        """
        try:
            self.remote.purge(snapshot.name)
        except TransferError as e:
            raise RetentionDeletionFailure(f"Failed to delete {snapshot.name}: {e}")

    def enforce(self, today: date) -> RetentionSummary:
        """
        Classify and prune the remote.

        Never raises for listing or deletion failures: they are logged and
        reflected in the summary.

        Args:
            today: Run date used for the cutoffs

        Returns:
            RetentionSummary with kept/deleted/failed tallies
        """
        summary = RetentionSummary()

        try:
            plan = self.plan(today)
        except TransferError as e:
            logger.warning(f"  Failed to list remote snapshot sets, skipping retention: {e}")
            return summary

        summary.found = len(plan.decisions)
        summary.tier_counts = dict(plan.tier_counts)
        logger.info(f"  Found: {summary.found} backups on remote")

        for decision in plan.decisions:
            if decision.keep:
                summary.kept += 1
                logger.info(f"  ✓ Keep: {decision.snapshot.name} [{decision.reason}]")

        for snapshot in plan.deleted:
            logger.info(f"  → Delete: {snapshot.name}")
            try:
                self.delete(snapshot)
                summary.deleted += 1
            except RetentionDeletionFailure as e:
                logger.warning(f"  ✗ {e}")
                summary.failed_deletions.append(snapshot.name)

        logger.info(f"  ✓ GFS Retention: {summary.kept} kept, {summary.deleted} deleted")
        if summary.failed_deletions:
            logger.warning(f"    {len(summary.failed_deletions)} deletion(s) failed: "
                           f"{', '.join(summary.failed_deletions)}")
        logger.info(
            f"    Son: {summary.tier_counts[Tier.SON]}/{self.policy.cap(Tier.SON)} | "
            f"Father: {summary.tier_counts[Tier.FATHER]}/{self.policy.cap(Tier.FATHER)} | "
            f"Grandfather: {summary.tier_counts[Tier.GRANDFATHER]}/{self.policy.cap(Tier.GRANDFATHER)}"
        )
        return summary
