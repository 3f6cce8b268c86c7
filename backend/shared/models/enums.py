"""Domain enumerations for matchsync."""
from __future__ import annotations

from enum import Enum, IntEnum


class MatchStatus(IntEnum):
    """TheSports football match status codes."""
    ABNORMAL = 0
    NOT_STARTED = 1
    FIRST_HALF = 2
    HALF_TIME = 3
    SECOND_HALF = 4
    OVERTIME = 5
    OVERTIME_LEGACY = 6
    PENALTIES = 7
    ENDED = 8
    DELAYED = 9
    INTERRUPTED = 10
    CUT_IN_HALF = 11
    CANCELLED = 12
    TO_BE_DETERMINED = 13

    @classmethod
    def label(cls, value: int | None) -> str:
        """Readable name for logs; unknown provider codes are kept as numbers."""
        if value is None:
            return "none"
        try:
            return cls(value).name.lower()
        except ValueError:
            return str(value)


LIVE_STATUSES = frozenset(
    {
        MatchStatus.FIRST_HALF,
        MatchStatus.HALF_TIME,
        MatchStatus.SECOND_HALF,
        MatchStatus.OVERTIME,
        MatchStatus.PENALTIES,
    }
)


class Endpoint(str, Enum):
    DETAIL_LIVE = "/match/detail_live"
    DIARY = "/match/diary"
    LIVE_HISTORY = "/match/live/history"
    TREND_DETAIL = "/match/trend/detail"
    PLAYER_STATS = "/match/player_stats/detail"
    TABLE_LIVE = "/table/live"
    DATA_UPDATE = "/data/update"
    LINEUP_DETAIL = "/match/lineup/detail"


class Dataset(str, Enum):
    """Derived post-match datasets, each persisted exactly once."""
    STATISTICS = "statistics"
    INCIDENTS = "incidents"
    TREND = "trend"
    PLAYER_STATS = "player_stats"
    STANDINGS = "standings"


class DatasetOutcome(str, Enum):
    SAVED = "saved"
    PRESENT = "present"
    EMPTY = "empty"
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def is_done(self) -> bool:
        return self in (DatasetOutcome.SAVED, DatasetOutcome.PRESENT, DatasetOutcome.SKIPPED)


class CandidateKind(str, Enum):
    """Why the watchdog picked a match."""
    SHOULD_BE_LIVE = "should_be_live"
    STALE_LIVE = "stale_live"
