"""
Data model for offsite backup runs.

Workloads and artifacts live for a single run; remote snapshot sets are the
only durable record of what has been retained.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional


SNAPSHOT_NAME_FORMAT = '%Y-%m-%d_%H-%M'

_LEADING_DATE = re.compile(r'^(\d{4}-\d{2}-\d{2})')


class WorkloadKind(str, Enum):
    """Kind of Proxmox guest."""
    VM = 'qemu'
    CONTAINER = 'lxc'


@dataclass(frozen=True)
class WorkloadJob:
    """A VM or container to dump in this run."""
    id: int
    display_name: str
    kind: WorkloadKind

    def __str__(self):
        return f"{self.id} ({self.display_name})"


@dataclass
class BackupArtifact:
    """A file in intermediate storage produced by the dump stage."""
    path: str
    size_bytes: int
    encrypted: bool = False


@dataclass(frozen=True)
class RemoteSnapshotSet:
    """One completed upload batch stored as a remote directory."""
    name: str
    date: date

    @classmethod
    def from_name(cls, name: str) -> Optional['RemoteSnapshotSet']:
        """
        Parse a remote directory name.

        Args:
            name: Directory name, e.g. '2026-01-04_01-00'

        Returns:
            RemoteSnapshotSet, or None if the name does not start with a
            valid calendar date
        """
        match = _LEADING_DATE.match(name)
        if not match:
            return None
        try:
            parsed = datetime.strptime(match.group(1), '%Y-%m-%d').date()
        except ValueError:
            return None
        return cls(name=name, date=parsed)


class Tier(str, Enum):
    """GFS retention tier."""
    SON = 'son'
    FATHER = 'father'
    GRANDFATHER = 'grandfather'

    @property
    def label(self) -> str:
        return {
            Tier.SON: 'Son (daily)',
            Tier.FATHER: 'Father (weekly)',
            Tier.GRANDFATHER: 'Grandfather (monthly)',
        }[self]


@dataclass(frozen=True)
class RetentionPolicy:
    """
    GFS retention configuration.

    Attributes:
        daily_keep: Son, keep up to N sets from the last N days
        weekly_keep: Father, keep up to N sets on the weekly day within N weeks
        monthly_keep: Grandfather, keep up to N sets on the monthly day within N months
        weekly_day_of_week: 0=Sunday, 1=Monday, ..., 6=Saturday
        monthly_day_of_month: 1-31
    """
    daily_keep: int = 7
    weekly_keep: int = 4
    monthly_keep: int = 12
    weekly_day_of_week: int = 0
    monthly_day_of_month: int = 1

    def __post_init__(self):
        for name in ('daily_keep', 'weekly_keep', 'monthly_keep'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")
        if not 0 <= self.weekly_day_of_week <= 6:
            raise ValueError(
                f"weekly_day_of_week must be between 0 and 6, got {self.weekly_day_of_week}"
            )
        if not 1 <= self.monthly_day_of_month <= 31:
            raise ValueError(
                f"monthly_day_of_month must be between 1 and 31, got {self.monthly_day_of_month}"
            )

    def cap(self, tier: Tier) -> int:
        return {
            Tier.SON: self.daily_keep,
            Tier.FATHER: self.weekly_keep,
            Tier.GRANDFATHER: self.monthly_keep,
        }[tier]


@dataclass(frozen=True)
class RetentionDecision:
    """Classifier output for one snapshot set."""
    snapshot: RemoteSnapshotSet
    matched_tiers: FrozenSet[Tier] = frozenset()

    @property
    def keep(self) -> bool:
        return bool(self.matched_tiers)

    @property
    def reason(self) -> str:
        ordered = [tier for tier in Tier if tier in self.matched_tiers]
        return ', '.join(tier.label for tier in ordered)


@dataclass
class RetentionPlan:
    """Ordered decisions (newest first) with per-tier accounting."""
    decisions: List[RetentionDecision] = field(default_factory=list)
    tier_counts: Dict[Tier, int] = field(default_factory=lambda: {tier: 0 for tier in Tier})

    @property
    def kept(self) -> List[RemoteSnapshotSet]:
        return [d.snapshot for d in self.decisions if d.keep]

    @property
    def deleted(self) -> List[RemoteSnapshotSet]:
        return [d.snapshot for d in self.decisions if not d.keep]


@dataclass
class RetentionSummary:
    """Outcome of the retain stage."""
    found: int = 0
    kept: int = 0
    deleted: int = 0
    failed_deletions: List[str] = field(default_factory=list)
    tier_counts: Dict[Tier, int] = field(default_factory=lambda: {tier: 0 for tier in Tier})
