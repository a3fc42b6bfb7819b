from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ParticipationState(str, Enum):
    JOINED = "joined"
    THINKING = "thinking"
    SKIPPED = "skipped"


class MessageHandle(BaseModel):
    """One rendered copy of a ride: a chat message, optionally inside a forum thread."""
    chat_id: int
    message_id: int
    thread_id: Optional[int] = None

    class Config:
        frozen = True

    def same_place(self, chat_id: int, thread_id: Optional[int]) -> bool:
        return self.chat_id == chat_id and self.thread_id == thread_id


class ParticipantInfo(BaseModel):
    user_id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class ParticipantRecord(ParticipantInfo):
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ParticipationRecord(BaseModel):
    joined: List[ParticipantRecord] = Field(default_factory=list)
    thinking: List[ParticipantRecord] = Field(default_factory=list)
    skipped: List[ParticipantRecord] = Field(default_factory=list)

    def state_of(self, user_id: int) -> Optional[ParticipationState]:
        for state in ParticipationState:
            if any(p.user_id == user_id for p in getattr(self, state.value)):
                return state
        return None


class RideRecord(BaseModel):
    id: str
    title: str
    category: str
    organizer: Optional[str] = None
    date: datetime
    meeting_point: Optional[str] = None
    route_link: Optional[str] = None
    distance: Optional[float] = None
    duration: Optional[int] = None
    speed_min: Optional[float] = None
    speed_max: Optional[float] = None
    additional_info: Optional[str] = None
    cancelled: bool = False
    created_by: int
    updated_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    messages: List[MessageHandle] = Field(default_factory=list)
    participation: ParticipationRecord = Field(default_factory=ParticipationRecord)

    class Config:
        from_attributes = True


class RideList(BaseModel):
    rides: List[RideRecord]
    total: int


class SyncResult(BaseModel):
    success: bool = True
    updated_count: int = 0
    removed_count: int = 0
