"""
Unit tests for conflict resolution
"""

import pytest
from datetime import datetime, timedelta, timezone
from models.base import ConflictPolicy
from sync.conflict import Side, resolve_conflict

OLDER = datetime(2024, 1, 1, 10, 0, 0)
NEWER = OLDER + timedelta(minutes=5)


@pytest.mark.parametrize("local_ts,remote_ts", [
    (OLDER, NEWER),
    (NEWER, OLDER),
    (None, None),
])
def test_fixed_policies_ignore_timestamps(local_ts, remote_ts):
    assert resolve_conflict(local_ts, remote_ts, ConflictPolicy.LOCAL_WINS).winner == Side.LOCAL
    assert resolve_conflict(local_ts, remote_ts, ConflictPolicy.EXTERNAL_WINS).winner == Side.EXTERNAL


def test_newest_wins_picks_newer_remote():
    resolution = resolve_conflict(OLDER, NEWER, ConflictPolicy.NEWEST_WINS)
    assert resolution.winner == Side.EXTERNAL
    assert resolution.apply_external is True


def test_newest_wins_keeps_newer_local():
    assert resolve_conflict(NEWER, OLDER, ConflictPolicy.NEWEST_WINS).winner == Side.LOCAL


def test_newest_wins_tie_goes_local():
    assert resolve_conflict(OLDER, OLDER, ConflictPolicy.NEWEST_WINS).winner == Side.LOCAL


def test_missing_timestamp_is_oldest():
    assert resolve_conflict(None, OLDER, ConflictPolicy.NEWEST_WINS).winner == Side.EXTERNAL
    assert resolve_conflict(OLDER, None, ConflictPolicy.NEWEST_WINS).winner == Side.LOCAL


def test_aware_and_naive_timestamps_compare():
    aware_newer = NEWER.replace(tzinfo=timezone.utc)
    assert resolve_conflict(OLDER, aware_newer, ConflictPolicy.NEWEST_WINS).winner == Side.EXTERNAL


def test_manual_flag_flags_diverged_copies():
    resolution = resolve_conflict(OLDER, NEWER, ConflictPolicy.MANUAL_FLAG)
    assert resolution.flagged is True
    assert resolution.apply_external is False


def test_manual_flag_equal_timestamps_not_flagged():
    resolution = resolve_conflict(OLDER, OLDER, ConflictPolicy.MANUAL_FLAG)
    assert resolution.flagged is False
    assert resolution.winner == Side.LOCAL


def test_policy_accepts_string():
    assert resolve_conflict(OLDER, NEWER, "external_wins").winner == Side.EXTERNAL
