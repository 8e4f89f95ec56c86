from dataclasses import dataclass
from typing import Optional

import jwt
import logging
from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

import models
from auth.jwt import UserContext, verify_supabase_jwt
from database import get_db

logger = logging.getLogger("toolboard_drive.auth")

ADMIN_ROLE = "admin"


@dataclass
class OrgContext:
    user: UserContext
    organization_id: str


async def get_current_user(authorization: Optional[str] = Header(None)) -> UserContext:
    """
    Dependency to get the current user from 'Authorization: Bearer <token>'.
    There is no header-based fallback: anything but a valid bearer token is a 401.
    """
    if not authorization:
        raise HTTPException(status_code=401, detail="Unauthorized")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        return verify_supabase_jwt(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.InvalidTokenError as e:
        logger.info(f"JWT validation failed: {e}")
        raise HTTPException(status_code=401, detail="Unauthorized")


def get_user_org_id(db: Session, user_id: str) -> Optional[str]:
    profile = db.query(models.Profile).filter(models.Profile.id == user_id).first()
    return profile.organization_id if profile else None


def is_org_admin(db: Session, user_id: str, org_id: str) -> bool:
    role = (
        db.query(models.UserRole)
        .filter(
            models.UserRole.user_id == user_id,
            models.UserRole.organization_id == org_id,
            models.UserRole.role == ADMIN_ROLE,
        )
        .first()
    )
    return role is not None


async def get_org_context(
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> OrgContext:
    """Resolve the caller's organization from their profile."""
    org_id = get_user_org_id(db, current_user.id)
    if not org_id:
        raise HTTPException(status_code=400, detail="No organization found")
    return OrgContext(user=current_user, organization_id=org_id)


async def require_org_admin(
    org: OrgContext = Depends(get_org_context),
    db: Session = Depends(get_db),
) -> OrgContext:
    """
    Dependency that requires the caller to be an admin of their organization.
    Use for every operation that touches the organization's Drive account.
    """
    if not is_org_admin(db, org.user.id, org.organization_id):
        logger.warning(
            "Access denied: user is not an organization admin",
            extra={"user_id": org.user.id, "organization_id": org.organization_id},
        )
        raise HTTPException(status_code=403, detail="Admin access required")
    return org
