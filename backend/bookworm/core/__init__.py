from bookworm.core.config import Settings, get_settings
from bookworm.core.database import Base, get_db, async_session_maker, engine
from bookworm.core.security import create_access_token, decode_token, bearer_matches

__all__ = [
    "Settings",
    "get_settings",
    "Base",
    "get_db",
    "async_session_maker",
    "engine",
    "create_access_token",
    "decode_token",
    "bearer_matches",
]
