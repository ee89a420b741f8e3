import time
from typing import Mapping, Optional

import jwt
from starlette.requests import cookie_parser

from backend import RedisBackend
from constants import JWT_SECRET_KEY, JWT_ALGORITHM, JWT_COOKIE_NAME
from errors import Unauthorized
from room_ids import is_valid_user_id
from logging_config import get_logger

logger = get_logger(__name__)


def issue_token(user_id: str, expires_in: int = 7 * 24 * 3600, secret: str = JWT_SECRET_KEY) -> str:
    """Sign a session token the same way the login endpoint does."""
    now = int(time.time())
    return jwt.encode({"userId": user_id, "iat": now, "exp": now + expires_in}, secret, algorithm=JWT_ALGORITHM)


class Authenticator:
    """Resolves the session cookie of a handshake to a stored user."""

    def __init__(self, backend: RedisBackend, secret: str = JWT_SECRET_KEY, cookie_name: str = JWT_COOKIE_NAME):
        self.backend = backend
        self.secret = secret
        self.cookie_name = cookie_name

    def extract_token(self, headers: Mapping[str, str]) -> Optional[str]:
        cookie_header = headers.get("cookie")
        if not cookie_header:
            return None
        return cookie_parser(cookie_header).get(self.cookie_name) or None

    def decode(self, token: str) -> str:
        try:
            claims = jwt.decode(token, self.secret, algorithms=[JWT_ALGORITHM])
        except jwt.ExpiredSignatureError:
            raise Unauthorized("Unauthorized - Token expired")
        except jwt.InvalidTokenError:
            raise Unauthorized("Unauthorized - Invalid token")
        user_id = claims.get("userId")
        if not is_valid_user_id(user_id):
            raise Unauthorized("Unauthorized - Invalid token")
        return user_id

    async def authenticate(self, headers: Mapping[str, str]) -> dict:
        """Return the user owning the handshake's credential or raise Unauthorized."""
        token = self.extract_token(headers)
        if not token:
            raise Unauthorized("Unauthorized - No token provided")
        user_id = self.decode(token)
        try:
            user = await self.backend.get_user(user_id)
        except Exception as e:
            logger.error(f"User lookup failed during authentication for {user_id}: {e}", exc_info=True)
            raise Unauthorized()
        if not user:
            raise Unauthorized("Unauthorized - User not found")
        return user
