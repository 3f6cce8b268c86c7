"""
Decoding of TheSports payloads at the client boundary.

The provider wraps data in `{code, results, err}` but the shape of `results`
varies by endpoint and plan: a list of entries, a map of lists, a map keyed by
match id, or a single object (sometimes under `result` or `data`). Everything
here locates entries by explicit id and never falls back to "the first one".
"""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from shared.models.domain import Lineup, MatchSnapshot, ScheduledMatch
from shared.utils.logging import get_logger

logger = get_logger(__name__)

_ID_FIELDS = ("id", "match_id", "external_id")

# Positions inside the TheSports `score` array and its per-team sub-arrays
_SCORE_STATUS = 1
_SCORE_HOME = 2
_SCORE_AWAY = 3
_SCORE_KICKOFF = 4
_TEAM_REGULAR = 0
_TEAM_RED = 2
_TEAM_YELLOW = 3
_TEAM_CORNERS = 4


# ── Scalars ─────────────────────────────────────────────────────────────
def as_int(value: Any) -> Optional[int]:
    """Coerce a provider scalar to int; booleans, NaN and junk become None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def _positive(value: Any) -> Optional[int]:
    n = as_int(value)
    return n if n is not None and n > 0 else None


def _first(*values: Any) -> Optional[int]:
    for value in values:
        n = as_int(value)
        if n is not None:
            return n
    return None


def _first_list(obj: dict[str, Any], *keys: str) -> Optional[list[Any]]:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, list):
            return value
    return None


def _at(seq: Any, index: int) -> Any:
    if isinstance(seq, list) and len(seq) > index:
        return seq[index]
    return None


# ── Containers ──────────────────────────────────────────────────────────
def unwrap(payload: Any) -> Any:
    """Return the data part of a response: `results`, else `result`, else `data`."""
    if not isinstance(payload, dict):
        return payload
    for key in ("results", "result", "data"):
        if payload.get(key) is not None:
            return payload[key]
    return payload


def _has_id(item: Any, external_id: str) -> bool:
    if not isinstance(item, dict):
        return False
    return any(
        item.get(field) is not None and str(item.get(field)) == external_id
        for field in _ID_FIELDS
    )


def _find_in_list(items: list[Any], external_id: str) -> Optional[dict[str, Any]]:
    for item in items:
        if _has_id(item, external_id):
            return item
    return None


def find_match_entry(payload: Any, external_id: str) -> Optional[dict[str, Any]]:
    """
    Locate the entry for `external_id` in any of the provider's result shapes.
    Returns None when the match is absent.
    """
    external_id = str(external_id)
    container = unwrap(payload)

    if isinstance(container, list):
        return _find_in_list(container, external_id)
    if not isinstance(container, dict):
        return None

    # A single entry: it either names this match or another one
    if any(container.get(field) is not None for field in _ID_FIELDS):
        return container if _has_id(container, external_id) else None

    keyed = container.get(external_id)
    if isinstance(keyed, dict):
        return keyed
    if isinstance(keyed, list):
        return _find_in_list(keyed, external_id)

    # A lone object that names no id at all is taken as the requested match
    if "score" in container or "status_id" in container or "status" in container:
        return container

    # Map of lists, e.g. {"1": [...]} or {"matches": [...]}
    for items in container.values():
        if isinstance(items, list):
            found = _find_in_list(items, external_id)
            if found is not None:
                return found
    return None


def iter_entries(payload: Any) -> Iterator[dict[str, Any]]:
    """Yield every dict entry from a list or map-of-lists result."""
    container = unwrap(payload)
    if isinstance(container, list):
        yield from (item for item in container if isinstance(item, dict))
    elif isinstance(container, dict):
        lists = [v for v in container.values() if isinstance(v, list)]
        if not lists:
            yield container
        for items in lists:
            yield from (item for item in items if isinstance(item, dict))


# ── /match/detail_live ──────────────────────────────────────────────────
def extract_snapshot(entry: dict[str, Any], external_id: str) -> MatchSnapshot:
    """Decode one detail_live entry, flat fields or the `score` array."""
    nested = entry.get("match") if isinstance(entry.get("match"), dict) else {}
    score = entry.get("score")
    score_array = score if isinstance(score, list) else None
    score_map = score if isinstance(score, dict) else {}

    home_scores = _at(score_array, _SCORE_HOME)
    away_scores = _at(score_array, _SCORE_AWAY)

    status_id = as_int(_at(score_array, _SCORE_STATUS))
    if status_id is None:
        status_id = _first(
            entry.get("status_id"),
            entry.get("status"),
            nested.get("status_id"),
            nested.get("status"),
        )

    home_score = _first(
        _at(home_scores, _TEAM_REGULAR),
        entry.get("home_score"),
        entry.get("home_score_display"),
        score_map.get("home"),
        nested.get("home_score"),
    )
    away_score = _first(
        _at(away_scores, _TEAM_REGULAR),
        entry.get("away_score"),
        entry.get("away_score_display"),
        score_map.get("away"),
        nested.get("away_score"),
    )

    kickoff_ts = _positive(_at(score_array, _SCORE_KICKOFF))
    if kickoff_ts is None:
        kickoff_ts = _positive(
            _first(
                entry.get("live_kickoff_time"),
                entry.get("liveKickoffTime"),
                nested.get("live_kickoff_time"),
            )
        )

    update_time = _positive(
        _first(
            entry.get("update_time"),
            entry.get("updateTime"),
            entry.get("updated_at"),
            nested.get("update_time"),
        )
    )

    minute = _first(
        entry.get("minute"),
        entry.get("match_minute"),
        nested.get("minute"),
        nested.get("match_minute"),
    )
    if minute is not None and minute < 0:
        minute = None

    return MatchSnapshot(
        external_id=str(external_id),
        status_id=status_id,
        home_score=home_score,
        away_score=away_score,
        home_red_cards=_first(_at(home_scores, _TEAM_RED), entry.get("home_red_cards")),
        away_red_cards=_first(_at(away_scores, _TEAM_RED), entry.get("away_red_cards")),
        home_yellow_cards=_first(_at(home_scores, _TEAM_YELLOW), entry.get("home_yellow_cards")),
        away_yellow_cards=_first(_at(away_scores, _TEAM_YELLOW), entry.get("away_yellow_cards")),
        home_corners=_first(_at(home_scores, _TEAM_CORNERS), entry.get("home_corners")),
        away_corners=_first(_at(away_scores, _TEAM_CORNERS), entry.get("away_corners")),
        kickoff_ts=kickoff_ts,
        update_time=update_time,
        minute=minute,
    )


def decode_detail_live(payload: Any, external_id: str) -> Optional[MatchSnapshot]:
    entry = find_match_entry(payload, external_id)
    if entry is None:
        container = unwrap(payload)
        logger.warning(
            "detail_live_match_absent",
            external_id=external_id,
            results_type=type(container).__name__,
            results_len=len(container) if isinstance(container, (list, dict)) else None,
        )
        return None
    return extract_snapshot(entry, external_id)


# ── /match/diary ────────────────────────────────────────────────────────
def diary_date(ts: float) -> str:
    """Format an epoch as the diary's `date` parameter (YYYYMMDD, UTC)."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y%m%d")


def parse_diary(payload: Any) -> list[ScheduledMatch]:
    """Decode diary entries; entries without an id or kickoff time are dropped."""
    matches: list[ScheduledMatch] = []
    for entry in iter_entries(payload):
        external_id = entry.get("id") or entry.get("match_id")
        match_time = _positive(entry.get("match_time"))
        if not external_id or match_time is None:
            continue
        status_id = as_int(entry.get("status_id"))
        if status_id is None:
            status_id = as_int(_at(entry.get("score"), _SCORE_STATUS))

        def _opt(key: str) -> Optional[str]:
            value = entry.get(key)
            return str(value) if value not in (None, "") else None

        matches.append(
            ScheduledMatch(
                external_id=str(external_id),
                match_time=match_time,
                status_id=status_id if status_id is not None else 1,
                season_id=_opt("season_id"),
                competition_id=_opt("competition_id"),
                home_team_id=_opt("home_team_id"),
                away_team_id=_opt("away_team_id"),
            )
        )
    return matches


# ── Post-match datasets ─────────────────────────────────────────────────
def extract_history(payload: Any, external_id: str) -> tuple[Optional[list[Any]], Optional[list[Any]]]:
    """Return `(stats, incidents)` from /match/live/history; None for each absent part."""
    entry = find_match_entry(payload, external_id)
    if entry is None:
        container = unwrap(payload)
        # A history response for a single match may carry no id at all
        if isinstance(container, dict) and ("stats" in container or "incidents" in container):
            entry = container
        else:
            return None, None
    stats = _first_list(entry, "stats", "statistics")
    incidents = _first_list(entry, "incidents", "events")
    return stats or None, incidents or None


def extract_trend(payload: Any) -> Optional[Any]:
    """Return the trend object from /match/trend/detail, None when empty."""
    if isinstance(payload, dict) and payload.get("trend"):
        return payload["trend"]
    container = unwrap(payload)
    if isinstance(container, list):
        container = container[0] if len(container) == 1 else container
    if isinstance(container, dict):
        trend = container.get("trend", container)
        return trend or None
    return container or None


def extract_player_stats(payload: Any) -> Optional[list[Any]]:
    container = unwrap(payload)
    if isinstance(container, list) and container:
        return container
    return None


def extract_season_table(payload: Any, season_id: str) -> Optional[dict[str, Any]]:
    """Pick the /table/live entry for `season_id`; other seasons are never substituted."""
    for entry in iter_entries(payload):
        if str(entry.get("season_id", "")) == str(season_id):
            return entry
    return None


# ── /data/update ────────────────────────────────────────────────────────
# Update times at or above this are milliseconds (2000-01-01 in ms)
_MS_THRESHOLD = 946_684_800_000


def _update_time(item: dict[str, Any]) -> Optional[int]:
    value = _positive(
        _first(item.get("update_time"), item.get("updateTime"), item.get("ut"), item.get("timestamp"))
    )
    if value is not None and value >= _MS_THRESHOLD:
        return value // 1000
    return value


def parse_data_update(payload: Any) -> dict[str, Optional[int]]:
    """
    Decode /data/update into `{match_id: update_time}`, in first-seen order.

    Accepts `results` as a list, or as a map of lists keyed by sport
    (`{"1": [...]}` for football), plus the older top-level
    `changed_matches` list. Items are entries with `match_id`/`id` and an
    optional update time, or bare ids. A match listed twice keeps its
    newest update time; matches without one map to None.
    """
    changed: dict[str, Optional[int]] = {}
    if not isinstance(payload, dict):
        return changed

    groups: list[Any] = []
    for key in ("changed_matches", "changed_match_ids", "matches"):
        if isinstance(payload.get(key), list):
            groups.append(payload[key])
            break
    results = payload.get("results")
    if isinstance(results, list):
        groups.append(results)
    elif isinstance(results, dict):
        groups.extend(v for v in results.values() if isinstance(v, list))

    for items in groups:
        for item in items:
            if isinstance(item, (str, int)) and not isinstance(item, bool):
                match_id, update_time = str(item), None
            elif isinstance(item, dict):
                raw_id = item.get("match_id")
                if raw_id is None:
                    raw_id = item.get("id")
                if raw_id in (None, ""):
                    continue
                match_id, update_time = str(raw_id), _update_time(item)
            else:
                continue
            previous = changed.get(match_id)
            if previous is None or (update_time is not None and update_time > previous):
                changed[match_id] = update_time
            else:
                changed.setdefault(match_id, None)
    return changed


# ── /match/lineup/detail ────────────────────────────────────────────────
def extract_lineup(payload: Any, external_id: str) -> Optional[Lineup]:
    """Return the match's lineups, None when neither side has players yet."""
    entry = find_match_entry(payload, external_id)
    if entry is None:
        container = unwrap(payload)
        # Single-match responses usually name no id
        if isinstance(container, dict) and ("home" in container or "away" in container):
            entry = container
        else:
            return None

    home = _first_list(entry, "home", "home_lineup") or []
    away = _first_list(entry, "away", "away_lineup") or []
    if not home and not away:
        return None

    def _formation(key: str) -> Optional[str]:
        value = entry.get(key)
        return str(value) if value not in (None, "") else None

    return Lineup(
        home=home,
        away=away,
        home_formation=_formation("home_formation"),
        away_formation=_formation("away_formation"),
    )
