"""
Overlap matching over participant availabilities.

Pure functions: given every participant's availability windows, find the
periods in which several of them are free at once. A match covers a
period of at least MIN_OVERLAP_MINUTES. Its score is the share of the
participants who submitted availabilities that can attend, so a perfect
match (score 100) suits everyone and a partial match leaves some out.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, time
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple
from uuid import UUID

MIN_OVERLAP_MINUTES = 30
MAX_MATCHES = 10


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def _clock(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


@dataclass(frozen=True)
class AvailabilityWindow:
    user_id: UUID
    day: date
    start_time: time
    end_time: time

    @classmethod
    def from_row(cls, row: Any) -> "AvailabilityWindow":
        return cls(row.user_id, row.available_date, row.start_time, row.end_time)

    @property
    def span(self) -> Tuple[int, int]:
        return _minutes(self.start_time), _minutes(self.end_time)


@dataclass(frozen=True)
class MatchedSlot:
    day: date
    start_time: time
    end_time: time
    participant_ids: FrozenSet[UUID]
    missing_ids: FrozenSet[UUID]
    score: float

    @property
    def duration_minutes(self) -> int:
        return _minutes(self.end_time) - _minutes(self.start_time)

    @property
    def is_perfect(self) -> bool:
        return not self.missing_ids


@dataclass(frozen=True)
class AvailabilityConflict:
    """Two windows of the same participant that overlap on one day."""

    user_id: UUID
    day: date
    first: AvailabilityWindow
    second: AvailabilityWindow


@dataclass
class MatchingResult:
    perfect: List[MatchedSlot] = field(default_factory=list)
    partial: List[MatchedSlot] = field(default_factory=list)
    conflicts: List[AvailabilityConflict] = field(default_factory=list)
    statistics: Dict[str, Any] = field(default_factory=dict)

    @property
    def best(self) -> Optional[MatchedSlot]:
        if self.perfect:
            return self.perfect[0]
        return self.partial[0] if self.partial else None


def _overlap(a: Tuple[int, int], b: Tuple[int, int]) -> Optional[Tuple[int, int]]:
    start, end = max(a[0], b[0]), min(a[1], b[1])
    if end - start < MIN_OVERLAP_MINUTES:
        return None
    return start, end


def _grow(
    seed: Tuple[int, int],
    members: FrozenSet[UUID],
    windows: List[AvailabilityWindow],
) -> Tuple[Tuple[int, int], FrozenSet[UUID]]:
    """Greedily add every other participant that still overlaps long enough."""
    span, joined = seed, set(members)
    for window in windows:
        if window.user_id in joined:
            continue
        narrowed = _overlap(span, window.span)
        if narrowed is not None:
            span = narrowed
            joined.add(window.user_id)
    return span, frozenset(joined)


def _candidates_for_day(
    day: date, windows: List[AvailabilityWindow], everyone: FrozenSet[UUID]
) -> List[MatchedSlot]:
    seen = set()
    candidates = []
    for i, first in enumerate(windows):
        for second in windows[i + 1:]:
            if first.user_id == second.user_id:
                continue
            seed = _overlap(first.span, second.span)
            if seed is None:
                continue
            span, members = _grow(seed, frozenset({first.user_id, second.user_id}), windows)
            key = (span, members)
            if key in seen:
                continue
            seen.add(key)
            candidates.append(
                MatchedSlot(
                    day=day,
                    start_time=_clock(span[0]),
                    end_time=_clock(span[1]),
                    participant_ids=members,
                    missing_ids=everyone - members,
                    score=round(len(members) / len(everyone) * 100, 1),
                )
            )
    return candidates


def _ranking(slot: MatchedSlot):
    return (-slot.score, -slot.duration_minutes, slot.day, slot.start_time)


def find_conflicts(windows: Iterable[AvailabilityWindow]) -> List[AvailabilityConflict]:
    by_user_day: Dict[Tuple[UUID, date], List[AvailabilityWindow]] = defaultdict(list)
    for window in windows:
        by_user_day[(window.user_id, window.day)].append(window)

    conflicts = []
    for (user_id, day), own in by_user_day.items():
        own.sort(key=lambda w: w.start_time)
        for i, first in enumerate(own):
            for second in own[i + 1:]:
                if second.span[0] < first.span[1]:
                    conflicts.append(AvailabilityConflict(user_id, day, first, second))
    return conflicts


def match_availabilities(
    windows: Iterable[AvailabilityWindow], limit: int = MAX_MATCHES
) -> MatchingResult:
    """
    Find common free periods.

    Perfect matches are every period all participants share. For a day
    without a perfect match the best partial period of that day is kept.
    Both lists are ordered by score then duration and capped at `limit`.
    """
    windows = sorted(windows, key=lambda w: (w.day, w.start_time, w.end_time, str(w.user_id)))
    everyone = frozenset(w.user_id for w in windows)

    by_day: Dict[date, List[AvailabilityWindow]] = defaultdict(list)
    for window in windows:
        by_day[window.day].append(window)

    perfect: List[MatchedSlot] = []
    partial: List[MatchedSlot] = []
    if len(everyone) >= 2:
        for day, day_windows in sorted(by_day.items()):
            candidates = _candidates_for_day(day, day_windows, everyone)
            complete = [slot for slot in candidates if slot.is_perfect]
            if complete:
                perfect.extend(complete)
            elif candidates:
                partial.append(min(candidates, key=_ranking))

    perfect.sort(key=_ranking)
    partial.sort(key=_ranking)
    conflicts = find_conflicts(windows)

    return MatchingResult(
        perfect=perfect[:limit],
        partial=partial[:limit],
        conflicts=conflicts,
        statistics={
            "participants": len(everyone),
            "availabilities": len(windows),
            "days": len(by_day),
            "perfect_matches": len(perfect),
            "partial_matches": len(partial),
            "conflicts": len(conflicts),
        },
    )
