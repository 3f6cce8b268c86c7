"""Live minute derived from the stored kickoff timestamps."""
from __future__ import annotations

from typing import Optional

from shared.models.enums import MatchStatus

HALF_LENGTH_MIN = 45
# First-half kickoff to second-half kickoff: 45 minutes played plus a 15 minute break
SECOND_HALF_OFFSET_S = (45 + 15) * 60


def estimate_second_half_kickoff(first_half_kickoff_ts: Optional[int]) -> Optional[int]:
    if first_half_kickoff_ts is None:
        return None
    return first_half_kickoff_ts + SECOND_HALF_OFFSET_S


def _elapsed_minutes(now: int, since: int) -> int:
    return (now - since) // 60 + 1


def calculate_minute(
    status_id: Optional[int],
    now: int,
    first_half_kickoff_ts: Optional[int] = None,
    second_half_kickoff_ts: Optional[int] = None,
    overtime_kickoff_ts: Optional[int] = None,
    existing_minute: Optional[int] = None,
) -> Optional[int]:
    """
    Minute shown for a match at `now` (epoch seconds).

    First half counts up from its kickoff and is clamped at 45; half time is 45;
    the second half counts from its kickoff (or an estimate from the first) and
    never shows less than 46; overtime counts on from 90. Penalties, full time,
    delays and interruptions keep the last minute shown. Anything else has no minute.
    """
    if status_id is None:
        return None

    if status_id == MatchStatus.FIRST_HALF:
        if first_half_kickoff_ts is None:
            return None
        return max(1, min(_elapsed_minutes(now, first_half_kickoff_ts), HALF_LENGTH_MIN))

    if status_id == MatchStatus.HALF_TIME:
        return HALF_LENGTH_MIN

    if status_id == MatchStatus.SECOND_HALF:
        kickoff = second_half_kickoff_ts or estimate_second_half_kickoff(first_half_kickoff_ts)
        if kickoff is None:
            return None
        return max(HALF_LENGTH_MIN + _elapsed_minutes(now, kickoff), HALF_LENGTH_MIN + 1)

    if status_id == MatchStatus.OVERTIME:
        if overtime_kickoff_ts is None:
            return None
        return 90 + max(1, _elapsed_minutes(now, overtime_kickoff_ts))

    if status_id in (
        MatchStatus.PENALTIES,
        MatchStatus.ENDED,
        MatchStatus.DELAYED,
        MatchStatus.INTERRUPTED,
    ):
        return existing_minute

    return None
