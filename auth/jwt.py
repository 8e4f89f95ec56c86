import jwt
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any

from config import config

logger = logging.getLogger("toolboard_drive.auth.jwt")

@dataclass
class UserContext:
    id: str
    role: str
    email: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

def verify_supabase_jwt(token: str) -> UserContext:
    """
    Verifies a Supabase JWT token and returns the user context.

    Args:
        token: The JWT token string (without 'Bearer ' prefix)

    Returns:
        UserContext: user id (the `sub` claim), role, email and merged metadata.

    Raises:
        jwt.ExpiredSignatureError: If the token has expired.
        jwt.InvalidTokenError: If the token is invalid (bad signature, missing sub,
                               or SUPABASE_JWT_SECRET is not configured).
    """
    secret = config.SUPABASE_JWT_SECRET
    if not secret:
        logger.error("SUPABASE_JWT_SECRET is not configured; rejecting bearer token")
        raise jwt.InvalidTokenError("JWT authentication is not configured")

    try:
        # Supabase uses HS256 by default
        payload = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            options={"verify_aud": False}  # Supabase aud is usually 'authenticated', but can vary.
        )
    except jwt.ExpiredSignatureError as e:
        logger.warning(f"JWT Error: Token has expired. Details: {e}")
        raise
    except jwt.InvalidTokenError as e:
        logger.warning(f"JWT Error: Invalid token. Details: {e}")
        raise

    user_id = payload.get("sub")
    if not user_id:
        raise jwt.InvalidTokenError("Token missing 'sub' claim")

    role = payload.get("role", "authenticated")
    email = payload.get("email")
    metadata = {**payload.get("app_metadata", {}), **payload.get("user_metadata", {})}

    return UserContext(
        id=user_id,
        role=role,
        email=email,
        metadata=metadata
    )
