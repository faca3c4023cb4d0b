"""
Conflict resolution between the local and platform copies of a record
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import enum

from core.clock import as_naive_utc
from models.base import ConflictPolicy


class Side(str, enum.Enum):
    LOCAL = "local"
    EXTERNAL = "external"


@dataclass(frozen=True)
class ConflictResolution:
    """
    winner: the side whose version is kept
    flagged: True when the record needs operator review (manual policy);
        in that case neither side is applied
    """
    winner: Side
    flagged: bool = False
    reason: str = ""

    @property
    def apply_external(self) -> bool:
        return self.winner == Side.EXTERNAL and not self.flagged


def resolve_conflict(
    local_ts: Optional[datetime],
    remote_ts: Optional[datetime],
    policy: ConflictPolicy
) -> ConflictResolution:
    """
    Decide which version wins. Pure and defined for every input.

    A missing timestamp counts as older than any present one. Equal
    timestamps resolve to the local copy.
    """
    policy = ConflictPolicy(policy)
    local_ts = as_naive_utc(local_ts)
    remote_ts = as_naive_utc(remote_ts)

    if policy == ConflictPolicy.LOCAL_WINS:
        return ConflictResolution(Side.LOCAL, reason="local copy always wins")

    if policy == ConflictPolicy.EXTERNAL_WINS:
        return ConflictResolution(Side.EXTERNAL, reason="platform copy always wins")

    remote_newer = remote_ts is not None and (local_ts is None or remote_ts > local_ts)

    if policy == ConflictPolicy.NEWEST_WINS:
        if remote_newer:
            return ConflictResolution(Side.EXTERNAL, reason="platform copy is newer")
        return ConflictResolution(Side.LOCAL, reason="local copy is newer or equal")

    # MANUAL_FLAG
    if local_ts == remote_ts:
        return ConflictResolution(Side.LOCAL, reason="copies carry the same timestamp")
    return ConflictResolution(Side.LOCAL, flagged=True, reason="diverged copies need review")
