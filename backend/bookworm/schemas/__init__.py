from bookworm.schemas.schemas import (
    BookSummaryResponse, ProfileResponse, CandidateListResponse,
    MatchActionRequest, MatchResponse, MatchActionResponse,
    UserSummary, ConnectionResponse, ConnectionListResponse,
    CallStartRequest, CallParticipantResponse, CallSessionResponse, CallSessionEnvelope,
    CallTokenResponse
)

__all__ = [
    "BookSummaryResponse", "ProfileResponse", "CandidateListResponse",
    "MatchActionRequest", "MatchResponse", "MatchActionResponse",
    "UserSummary", "ConnectionResponse", "ConnectionListResponse",
    "CallStartRequest", "CallParticipantResponse", "CallSessionResponse", "CallSessionEnvelope",
    "CallTokenResponse"
]
