"""
Retention management for docka-backup.

``decide()`` is a pure function over the remote backup set: given the same
set, bounds and ``now`` it always returns the same keep/delete split.
``RetentionManager`` executes a decision against the remote store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from itertools import accumulate
from typing import Dict, Iterable, List, Optional, Sequence

from ..helpers.errors import DockaBackupError
from ..helpers.logging import get_logger
from ..types import Archive, RemoteBackupSet, RetentionDecision

logger = get_logger(__name__)


def _utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def decide(
    remote_set: RemoteBackupSet,
    count_bound: Optional[int] = None,
    age_bound_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> RetentionDecision:
    """
    Split the remote set into archives to keep and archives to delete.

    Rules, applied in order:

    1. The newest archive is always kept.
    2. With ``age_bound_days``, archives created at or before
       ``now - age_bound_days`` are deleted.
    3. With ``count_bound``, if more than ``count_bound`` archives survive the
       age rule they are thinned down to exactly ``count_bound`` using
       age-weighted selection (see :func:`_thin`).

    With both bounds unset everything is kept.

    Args:
        remote_set: Archives currently on the server
        count_bound: Maximum number of archives to keep (>= 1)
        age_bound_days: Maximum age in days (>= 1)
        now: Reference time, defaults to the current UTC time

    Returns:
        RetentionDecision; ``keep`` and ``delete`` are ordered oldest first
    """
    archives = list(remote_set)
    if not archives:
        return RetentionDecision()
    if count_bound is None and age_bound_days is None:
        return RetentionDecision(keep=tuple(archives))
    if count_bound is not None and count_bound < 1:
        raise ValueError("count_bound must be >= 1")
    if age_bound_days is not None and age_bound_days < 1:
        raise ValueError("age_bound_days must be >= 1")

    newest = archives[-1]
    candidates = archives
    if age_bound_days is not None:
        cutoff = _utc(now or datetime.now(timezone.utc)) - timedelta(days=age_bound_days)
        candidates = [a for a in archives if a is newest or _utc(a.created_at) > cutoff]

    if count_bound is not None and len(candidates) > count_bound:
        ranked = list(reversed(candidates))
        kept = set(id(a) for a in _thin(ranked, count_bound))
        candidates = [a for a in candidates if id(a) in kept]

    keep_ids = set(id(a) for a in candidates)
    return RetentionDecision(
        keep=tuple(a for a in archives if id(a) in keep_ids),
        delete=tuple(a for a in archives if id(a) not in keep_ids),
    )


def _thin(ranked: Sequence[Archive], count: int) -> List[Archive]:
    """
    Pick ``count`` archives from ``ranked`` (newest first).

    Rank ``r`` gets weight ``1 / (r + 1)``. The newest is always picked; the
    remaining ``count - 1`` picks sit at equal steps along the cumulative
    weight between the newest and the total, so the last pick is always the
    oldest archive and kept snapshots get sparser with age. A pick that would
    land on an already used rank moves to the next free one.
    """
    n = len(ranked)
    if count >= n:
        return list(ranked)

    cumulative = list(accumulate(1.0 / (rank + 1) for rank in range(n)))
    first, total = cumulative[0], cumulative[-1]
    steps = count - 1

    picks = [0]
    last = 0
    for j in range(1, steps + 1):
        threshold = first + (total - first) * j / steps
        rank = next(
            (r for r, weight in enumerate(cumulative) if weight >= threshold - 1e-12),
            n - 1,
        )
        rank = max(rank, last + 1)
        # leave room for the picks still to come
        rank = min(rank, n - 1 - (steps - j))
        picks.append(rank)
        last = rank
    return [ranked[r] for r in picks]


@dataclass
class PruneResult:
    """Outcome of executing one retention decision."""

    decision: RetentionDecision
    deleted: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed


class RetentionManager:
    """Applies a RetentionPolicy to the archives on the remote server."""

    def __init__(self, transport, count_bound: Optional[int] = None,
                 age_bound_days: Optional[int] = None):
        """
        Args:
            transport: RemoteTransport used for deletions
            count_bound: BACKUP_RETENTION_COUNT
            age_bound_days: BACKUP_RETENTION_PERIOD_IN_DAYS
        """
        self.transport = transport
        self.count_bound = count_bound
        self.age_bound_days = age_bound_days

    @classmethod
    def from_policy(cls, transport, policy) -> RetentionManager:
        return cls(transport, count_bound=policy.count, age_bound_days=policy.period_days)

    @property
    def enabled(self) -> bool:
        return self.count_bound is not None or self.age_bound_days is not None

    def plan(self, remote_set: RemoteBackupSet, protected: Iterable[str] = (),
             now: Optional[datetime] = None) -> RetentionDecision:
        """Decide, then move ``protected`` archives back into the keep set."""
        decision = decide(remote_set, self.count_bound, self.age_bound_days, now=now)
        pinned = set(protected)
        if not pinned or not any(a.file_name in pinned for a in decision.delete):
            return decision

        keep_names = {a.file_name for a in decision.keep} | pinned
        for name in sorted(pinned & {a.file_name for a in decision.delete}):
            logger.info(f"Keeping protected backup {name}")
        return RetentionDecision(
            keep=tuple(a for a in remote_set if a.file_name in keep_names),
            delete=tuple(a for a in remote_set if a.file_name not in keep_names),
        )

    def prune(self, remote_set: RemoteBackupSet, protected: Iterable[str] = (),
              now: Optional[datetime] = None, dry_run: bool = False) -> PruneResult:
        """
        Delete what the policy does not keep.

        Deletions run one after another. A failed deletion is logged and
        recorded; the remaining deletions still run.

        Args:
            remote_set: Listing taken once for this run
            protected: File names that must survive regardless of the policy
            now: Reference time for the age rule
            dry_run: Only report what would be deleted

        Returns:
            PruneResult with deleted names and per-archive failures
        """
        decision = self.plan(remote_set, protected=protected, now=now)
        result = PruneResult(decision=decision)

        if not decision.delete:
            logger.info(f"Retention: keeping all {len(decision.keep)} backup(s)")
            return result

        logger.info(
            f"Retention: keeping {len(decision.keep)}, deleting {len(decision.delete)} backup(s)",
            extra={"dry_run": dry_run},
        )
        for archive in decision.delete:
            if dry_run:
                logger.info(f"Would delete {archive.file_name}")
                continue
            try:
                self.transport.delete(archive.file_name)
            except DockaBackupError as e:
                logger.error(f"Failed to delete {archive.file_name}: {e}")
                result.failed[archive.file_name] = str(e)
                continue
            result.deleted.append(archive.file_name)
            logger.info(f"Deleted old backup {archive.file_name}")
        return result
