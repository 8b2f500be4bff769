"""
Unit tests for retention policy management (backup_agent/backup/retention.py).

Tests the tiered classifier and RetentionManager for pruning the artifact
directory.
"""

import os
import random
from datetime import datetime, timedelta
from unittest.mock import patch

from freezegun import freeze_time

from backup_agent.backup.naming import format_name, week_key
from backup_agent.backup.retention import (
    RetentionManager,
    classify,
    retention_cutoffs,
    select_representatives
)
from backup_agent.backup.storage import LocalStorage
from backup_agent.errors import CleanupError
from backup_agent.models import Artifact
from backup_agent.settings import RetentionPolicy


NOW = datetime(2024, 3, 13, 12, 0, 0)  # a Wednesday


def artifact(timestamp: datetime, extension: str = 'tar.gz') -> Artifact:
    name = format_name(timestamp, extension)
    return Artifact(name=name, path=f"/backups/{name}", timestamp=timestamp)


class TestCutoffs:
    """Test cutoff computation."""

    def test_retention_cutoffs(self):
        daily, weekly, monthly = retention_cutoffs(RetentionPolicy(7, 4, 6), NOW)

        assert daily == NOW - timedelta(days=7)
        assert weekly == NOW - timedelta(days=28)
        # Fixed 30-day months
        assert monthly == NOW - timedelta(days=180)


class TestSelectRepresentatives:
    """Test latest-per-partition selection."""

    def test_latest_in_week_wins(self):
        monday = artifact(datetime(2024, 3, 11, 4, 0))
        wednesday = artifact(datetime(2024, 3, 13, 4, 0))
        sunday = artifact(datetime(2024, 3, 17, 4, 0))

        reps = select_representatives([wednesday, sunday, monday], week_key)

        assert reps == {(2024, 11): sunday}

    def test_exactly_one_representative_per_week(self):
        artifacts = [artifact(datetime(2024, 1, 1, 4, 0) + timedelta(hours=7 * i)) for i in range(200)]

        reps = select_representatives(artifacts, week_key)

        weeks = {week_key(a.timestamp) for a in artifacts}
        assert set(reps) == weeks
        for week, rep in reps.items():
            members = [a for a in artifacts if week_key(a.timestamp) == week]
            assert rep.timestamp == max(a.timestamp for a in members)

    def test_tie_break_on_name(self):
        timestamp = datetime(2024, 3, 12, 4, 0)
        gz = artifact(timestamp, 'tar.gz')
        zipped = artifact(timestamp, 'zip')

        reps = select_representatives([zipped, gz], week_key)
        reps_reversed = select_representatives([gz, zipped], week_key)

        assert reps[(2024, 11)] is zipped
        assert reps_reversed[(2024, 11)] is zipped


class TestClassify:
    """Test keep-set computation."""

    def test_empty_set(self):
        assert classify([], RetentionPolicy(), NOW) == frozenset()

    def test_daily_window_keeps_seven_most_recent(self):
        artifacts = [artifact(NOW - timedelta(days=k, hours=1)) for k in range(10)]
        policy = RetentionPolicy(keep_daily=7, keep_weekly=0, keep_monthly=0)

        keep = classify(artifacts, policy, NOW)

        assert keep == frozenset(artifacts[:7])

    def test_daily_cutoff_is_inclusive(self):
        on_cutoff = artifact(NOW - timedelta(days=7))
        policy = RetentionPolicy(keep_daily=7, keep_weekly=0, keep_monthly=0)

        assert on_cutoff in classify([on_cutoff], policy, NOW)

    def test_weekly_window_keeps_latest_per_week(self):
        # One artifact per week for ten weeks, all outside the daily window
        artifacts = [artifact(NOW - timedelta(days=7 * k - 5)) for k in range(1, 11)]
        policy = RetentionPolicy(keep_daily=1, keep_weekly=4, keep_monthly=0)

        keep = classify(artifacts, policy, NOW)

        assert keep == frozenset(artifacts[:4])

    def test_weekly_window_drops_earlier_artifacts_of_same_week(self):
        latest = artifact(datetime(2024, 3, 4, 12, 0))  # Monday
        earlier = artifact(datetime(2024, 3, 4, 11, 0))
        policy = RetentionPolicy(keep_daily=1, keep_weekly=4, keep_monthly=0)

        keep = classify([latest, earlier], policy, NOW)

        assert keep == frozenset([latest])

    def test_monthly_window_keeps_latest_per_month(self):
        start = datetime(2023, 11, 1, 4, 0)
        artifacts = [artifact(start + timedelta(days=d)) for d in range((NOW - start).days)]
        policy = RetentionPolicy(keep_daily=0, keep_weekly=0, keep_monthly=3)

        keep = classify(artifacts, policy, NOW)

        assert sorted(a.timestamp for a in keep) == [
            datetime(2023, 12, 31, 4, 0),
            datetime(2024, 1, 31, 4, 0),
            datetime(2024, 2, 29, 4, 0),
            datetime(2024, 3, 12, 4, 0),
        ]

    def test_month_representative_outside_monthly_window_is_dropped(self):
        old = artifact(datetime(2023, 6, 30, 4, 0))
        policy = RetentionPolicy(keep_daily=7, keep_weekly=4, keep_monthly=6)

        assert classify([old], policy, NOW) == frozenset()

    def test_tiers_combine(self):
        policy = RetentionPolicy(keep_daily=7, keep_weekly=4, keep_monthly=6)
        recent = artifact(NOW - timedelta(days=1))
        weekly_rep = artifact(datetime(2024, 2, 25, 4, 0))  # Sunday, 17 days back
        weekly_other = artifact(datetime(2024, 2, 24, 4, 0))
        monthly_rep = artifact(datetime(2023, 12, 31, 4, 0))
        monthly_other = artifact(datetime(2023, 12, 30, 4, 0))

        keep = classify(
            [recent, weekly_rep, weekly_other, monthly_rep, monthly_other],
            policy,
            NOW
        )

        assert keep == frozenset([recent, weekly_rep, monthly_rep])

    def test_zero_policy_keeps_nothing_older_than_now(self):
        artifacts = [artifact(NOW - timedelta(days=k)) for k in range(1, 5)]

        assert classify(artifacts, RetentionPolicy(0, 0, 0), NOW) == frozenset()

    def test_idempotent(self):
        rng = random.Random(1234)
        for _ in range(50):
            timestamps = {
                NOW - timedelta(minutes=rng.randint(0, 400 * 24 * 60))
                for _ in range(rng.randint(0, 80))
            }
            artifacts = [artifact(ts.replace(second=0)) for ts in timestamps]
            policy = RetentionPolicy(rng.randint(0, 10), rng.randint(0, 8), rng.randint(0, 12))

            keep = classify(artifacts, policy, NOW)

            assert classify(keep, policy, NOW) == keep

    def test_recent_artifacts_always_kept(self):
        rng = random.Random(99)
        for _ in range(50):
            artifacts = [
                artifact(NOW - timedelta(hours=rng.randint(0, 60 * 24)))
                for _ in range(rng.randint(1, 60))
            ]
            policy = RetentionPolicy(rng.randint(0, 14), rng.randint(0, 8), rng.randint(0, 12))
            daily_cutoff = NOW - timedelta(days=policy.keep_daily)

            keep = classify(artifacts, policy, NOW)

            for a in artifacts:
                if a.timestamp >= daily_cutoff:
                    assert a in keep


class TestRetentionManager:
    """Test pruning of the artifact directory."""

    def test_prune_deletes_outside_keep_set(self, backup_dir, make_artifact):
        paths = [make_artifact(NOW - timedelta(days=k, hours=1)) for k in range(10)]
        manager = RetentionManager(LocalStorage(str(backup_dir)), RetentionPolicy(7, 0, 0))

        result = manager.prune(now=NOW)

        assert len(result.kept) == 7
        assert len(result.deleted) == 3
        assert all(p.exists() for p in paths[:7])
        assert not any(p.exists() for p in paths[7:])

    def test_prune_ignores_foreign_files(self, backup_dir, make_artifact):
        make_artifact(NOW - timedelta(days=400))
        stray = backup_dir / 'stray.txt'
        stray.write_text('hands off')
        partial = backup_dir / (format_name(NOW - timedelta(days=400)) + '.partial')
        partial.write_text('half written')

        manager = RetentionManager(LocalStorage(str(backup_dir)), RetentionPolicy())
        result = manager.prune(now=NOW)

        assert len(result.deleted) == 1
        assert sorted(result.ignored) == sorted(['stray.txt', partial.name])
        assert stray.exists()
        assert partial.exists()

    def test_prune_twice_deletes_nothing_second_time(self, backup_dir, make_artifact):
        start = datetime(2023, 6, 1, 4, 0)
        for d in range((NOW - start).days):
            make_artifact(start + timedelta(days=d))
        manager = RetentionManager(LocalStorage(str(backup_dir)), RetentionPolicy())

        first = manager.prune(now=NOW)
        second = manager.prune(now=NOW)

        assert first.deleted
        assert second.deleted == []
        assert [a.name for a in second.kept] == [a.name for a in first.kept]

    def test_prune_dry_run(self, backup_dir, make_artifact):
        old = make_artifact(NOW - timedelta(days=400))
        manager = RetentionManager(LocalStorage(str(backup_dir)), RetentionPolicy())

        result = manager.prune(now=NOW, dry_run=True)

        assert [a.name for a in result.deleted] == [old.name]
        assert old.exists()

    def test_prune_delete_failure_is_not_fatal(self, backup_dir, make_artifact):
        first = make_artifact(NOW - timedelta(days=400))
        second = make_artifact(NOW - timedelta(days=401))
        storage = LocalStorage(str(backup_dir))
        manager = RetentionManager(storage, RetentionPolicy())

        original_delete = storage.delete

        def flaky_delete(path):
            if os.path.basename(path) == second.name:
                raise CleanupError("Permission denied")
            original_delete(path)

        with patch.object(storage, 'delete', side_effect=flaky_delete):
            result = manager.prune(now=NOW)

        assert [a.name for a in result.deleted] == [first.name]
        assert [a.name for a in result.failed] == [second.name]
        assert result.errors == ["Permission denied"]
        assert second.exists()

    @freeze_time("2024-03-13 12:00:00")
    def test_prune_defaults_to_current_time(self, backup_dir, make_artifact):
        recent = make_artifact(datetime(2024, 3, 12, 4, 0))
        old = make_artifact(datetime(2023, 1, 1, 4, 0))
        manager = RetentionManager(LocalStorage(str(backup_dir)), RetentionPolicy())

        manager.prune()

        assert recent.exists()
        assert not old.exists()

    def test_scan_sorted_oldest_first(self, backup_dir, make_artifact):
        make_artifact(datetime(2024, 3, 12, 4, 0), size=10)
        make_artifact(datetime(2024, 3, 10, 4, 0), size=20)
        manager = RetentionManager(LocalStorage(str(backup_dir)), RetentionPolicy())

        artifacts, ignored = manager.scan()

        assert [a.timestamp.day for a in artifacts] == [10, 12]
        assert [a.size for a in artifacts] == [20, 10]
        assert ignored == []
