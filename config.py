import os
from typing import List


def normalize_cors_origins(origins_str: str) -> List[str]:
    """
    Normalize a comma-separated string of CORS origins.

    Handles:
    - Trim whitespace from each origin
    - Remove surrounding quotes (" and ')
    - Remove trailing slashes (/)
    - Filter out empty entries

    Args:
        origins_str: Comma-separated string of origins

    Returns:
        List of normalized, non-empty origins
    """
    if not origins_str:
        return []

    normalized = []
    for origin in origins_str.split(","):
        origin = origin.strip()

        if (origin.startswith('"') and origin.endswith('"')) or \
           (origin.startswith("'") and origin.endswith("'")):
            origin = origin[1:-1]

        origin = origin.strip().rstrip("/")

        if origin:
            normalized.append(origin)

    return normalized


class Config:
    # --- DATABASE ---
    DATABASE_URL = os.getenv("DATABASE_URL")

    # --- GOOGLE OAUTH (organization-linked Drive accounts) ---
    GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
    GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
    GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI")
    GOOGLE_TOKEN_URL = os.getenv("GOOGLE_TOKEN_URL", "https://oauth2.googleapis.com/token")
    GOOGLE_AUTH_URL = os.getenv("GOOGLE_AUTH_URL", "https://accounts.google.com/o/oauth2/v2/auth")
    GOOGLE_USERINFO_URL = os.getenv("GOOGLE_USERINFO_URL", "https://www.googleapis.com/oauth2/v2/userinfo")

    # Refresh the access token when it expires within this many seconds
    TOKEN_REFRESH_MARGIN_SECONDS = int(os.getenv("TOKEN_REFRESH_MARGIN_SECONDS", "60"))
    HTTP_TIMEOUT_SECONDS = int(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

    # --- DRIVE ---
    DRIVE_ROOT_FOLDER_NAME = os.getenv("DRIVE_ROOT_FOLDER_NAME", "_app_storage")
    USE_MOCK_DRIVE = os.getenv("USE_MOCK_DRIVE", "false").lower() == "true"
    MOCK_DRIVE_DB_FILE = os.getenv("MOCK_DRIVE_DB_FILE", "mock_drive_db.json")

    # Browser destination after the OAuth consent round trip
    APP_ORIGIN = os.getenv("APP_ORIGIN", "http://localhost:5173")

    # --- REDIS CACHE ---
    REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
    REDIS_CACHE_ENABLED = os.getenv("REDIS_CACHE_ENABLED", "false").lower() == "true"
    REDIS_DEFAULT_TTL = int(os.getenv("REDIS_DEFAULT_TTL", "180"))

    # --- CORS ---
    _DEFAULT_CORS_ORIGINS = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ]
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", ",".join(_DEFAULT_CORS_ORIGINS))
    CORS_ORIGIN_REGEX = os.getenv("CORS_ORIGIN_REGEX", None)

    # --- SUPABASE JWT AUTH ---
    SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET", None)

config = Config()
