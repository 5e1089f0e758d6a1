from .auth import UserCreate, UserLogin, UserResponse, TokenResponse, RefreshRequest
from .threads import MediaPayload, TokenUpsert, ScheduleRequest, DisconnectRequest

__all__ = [
    "UserCreate", "UserLogin", "UserResponse", "TokenResponse", "RefreshRequest",
    "MediaPayload", "TokenUpsert", "ScheduleRequest", "DisconnectRequest",
]
