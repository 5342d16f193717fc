import uuid
from datetime import datetime
from typing import Literal
from pydantic import BaseModel, Field
from bookworm.models import CallProvider, CallStatus, MatchStatus, ParticipantRole


class BookSummaryResponse(BaseModel):
    title: str
    author: str
    cover_url: str | None = None
    progress: int | None = None

    class Config:
        from_attributes = True


class ProfileResponse(BaseModel):
    id: uuid.UUID
    name: str | None = None
    image: str | None = None
    bio: str | None = None
    score: int
    books_read_this_year: int = 0
    shared_books: list[BookSummaryResponse] = []
    shared_authors: list[str] = []
    shared_genres: list[str] = []
    currently_reading: list[BookSummaryResponse] = []
    favorite_genres: list[str] = []

    class Config:
        from_attributes = True


class CandidateListResponse(BaseModel):
    profiles: list[ProfileResponse]
    # None for readers without a daily cap
    remaining_today: int | None = None


class MatchActionRequest(BaseModel):
    receiver_id: uuid.UUID
    action: Literal["like", "pass"]
    message: str | None = Field(default=None, max_length=2000)
    book_context: str | None = Field(default=None, max_length=1000)


class MatchResponse(BaseModel):
    id: uuid.UUID
    sender_id: uuid.UUID
    receiver_id: uuid.UUID
    status: MatchStatus
    message: str | None = None
    book_context: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class MatchActionResponse(BaseModel):
    match: MatchResponse
    is_mutual: bool


class UserSummary(BaseModel):
    id: uuid.UUID
    name: str | None = None
    image: str | None = None
    bio: str | None = None

    class Config:
        from_attributes = True


class ConnectionResponse(BaseModel):
    match_id: uuid.UUID
    user: UserSummary
    book_context: str | None = None
    message: str | None = None
    matched_at: datetime

    class Config:
        from_attributes = True


class ConnectionListResponse(BaseModel):
    connections: list[ConnectionResponse]


class CallStartRequest(BaseModel):
    provider: str | None = None


class CallParticipantResponse(BaseModel):
    user_id: uuid.UUID
    role: ParticipantRole
    joined_at: datetime

    class Config:
        from_attributes = True


class CallSessionResponse(BaseModel):
    id: uuid.UUID
    space_id: uuid.UUID
    provider: CallProvider
    provider_room_id: str
    status: CallStatus
    started_at: datetime | None = None
    ended_at: datetime | None = None
    duration_sec: int | None = None
    max_participants: int
    created_at: datetime
    participants: list[CallParticipantResponse] = []

    class Config:
        from_attributes = True


class CallSessionEnvelope(BaseModel):
    session: CallSessionResponse


class CallTokenResponse(BaseModel):
    provider: CallProvider
    room_id: str
    token: str
    uid: str
    expires_at: datetime

    class Config:
        from_attributes = True
