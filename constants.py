import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_DB = int(os.getenv("REDIS_DB", 0))

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_COOKIE_NAME = os.getenv("JWT_COOKIE_NAME", "jwt")

# Data URL length ceiling enforced by the relay (~730KB of raw image).
MAX_IMAGE_CHARS = int(os.getenv("MAX_IMAGE_CHARS", 1_000_000))
MAX_TEXT_LENGTH = int(os.getenv("MAX_TEXT_LENGTH", 2000))

HISTORY_PAGE_SIZE = int(os.getenv("HISTORY_PAGE_SIZE", 50))
HISTORY_MAX_PAGE_SIZE = 200

ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:5173").split(",") if o.strip()]

# Client side
CLIENT_TIMEOUT_SECONDS = float(os.getenv("CLIENT_TIMEOUT_SECONDS", 20))
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", 700 * 1024))
