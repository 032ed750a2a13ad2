"""
Participant availability schemas.
"""
from datetime import date, time
from typing import List, Optional
from uuid import UUID

from pydantic import Field

from api.schemas.intervention import TimeSlotProposal
from core.schema_base import HTTPSchemaModel
from services.availability_matcher import MatchedSlot, MatchingResult


class AvailabilitiesRequest(HTTPSchemaModel):
    """Full replacement of the caller's availabilities; an empty list clears them."""
    availabilities: List[TimeSlotProposal] = Field(default_factory=list)


class AvailabilityRead(HTTPSchemaModel):
    id: UUID
    user_id: UUID
    available_date: date
    start_time: time
    end_time: time


class AvailabilityListRead(HTTPSchemaModel):
    own: List[AvailabilityRead]
    participants: List[AvailabilityRead]


class MatchedSlotRead(HTTPSchemaModel):
    date: date
    start_time: time
    end_time: time
    duration_minutes: int
    score: float
    participant_ids: List[UUID]
    missing_ids: List[UUID]

    @classmethod
    def from_match(cls, slot: MatchedSlot) -> "MatchedSlotRead":
        return cls(
            date=slot.day,
            start_time=slot.start_time,
            end_time=slot.end_time,
            duration_minutes=slot.duration_minutes,
            score=slot.score,
            participant_ids=sorted(slot.participant_ids, key=str),
            missing_ids=sorted(slot.missing_ids, key=str),
        )


class AvailabilityConflictRead(HTTPSchemaModel):
    user_id: UUID
    date: date
    first_start: time
    first_end: time
    second_start: time
    second_end: time


class MatchStatisticsRead(HTTPSchemaModel):
    participants: int
    availabilities: int
    days: int
    perfect_matches: int
    partial_matches: int
    conflicts: int


class AvailabilityMatchRead(HTTPSchemaModel):
    """Common free periods of the participants, best first."""
    perfect_matches: List[MatchedSlotRead]
    partial_matches: List[MatchedSlotRead]
    best_match: Optional[MatchedSlotRead] = None
    conflicts: List[AvailabilityConflictRead]
    statistics: MatchStatisticsRead

    @classmethod
    def from_result(cls, result: MatchingResult) -> "AvailabilityMatchRead":
        return cls(
            perfect_matches=[MatchedSlotRead.from_match(s) for s in result.perfect],
            partial_matches=[MatchedSlotRead.from_match(s) for s in result.partial],
            best_match=MatchedSlotRead.from_match(result.best) if result.best else None,
            conflicts=[
                AvailabilityConflictRead(
                    user_id=c.user_id,
                    date=c.day,
                    first_start=c.first.start_time,
                    first_end=c.first.end_time,
                    second_start=c.second.start_time,
                    second_end=c.second.end_time,
                )
                for c in result.conflicts
            ],
            statistics=MatchStatisticsRead(**result.statistics),
        )
