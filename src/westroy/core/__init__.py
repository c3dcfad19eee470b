from westroy.core.config import settings
from westroy.core.database import Base, async_session_maker, engine, get_db
from westroy.core.redis import close_redis, get_redis_pool
from westroy.core.security import (
    create_access_token,
    decode_access_token,
    get_password_hash,
    verify_password,
)

__all__ = [
    "settings",
    "Base",
    "engine",
    "async_session_maker",
    "get_db",
    "get_redis_pool",
    "close_redis",
    "verify_password",
    "get_password_hash",
    "create_access_token",
    "decode_access_token",
]
