"""
OAuth token lifecycle for organization-linked Google Drive accounts.

- TokenManager.ensure_valid_access_token(integration) refreshes the access token
  when it is missing an expiry or expires within the refresh margin, and
  persists the new token on the integration record.
- GoogleOAuthClient covers the consent round trip (authorization URL, code
  exchange, connected account email); the consent state is a signed JWT
  so a callback can only connect the organization that started the flow.
"""
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import jwt
import requests
from sqlalchemy.orm import Session

import models
from config import config
from services.errors import MissingRefreshTokenError, TokenRefreshError
from utils.prometheus import DRIVE_TOKEN_REFRESHES_TOTAL

logger = logging.getLogger("toolboard_drive.oauth")

DRIVE_SCOPES = [
    "https://www.googleapis.com/auth/drive",
    "https://www.googleapis.com/auth/userinfo.email",
]

STATE_AUDIENCE = "toolboard-drive-oauth-state"
STATE_TTL_SECONDS = 600


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _response_body(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


class TokenManager:
    def __init__(
        self,
        db: Session,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        token_url: Optional[str] = None,
        refresh_margin_seconds: Optional[int] = None,
        timeout: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.client_id = client_id or config.GOOGLE_CLIENT_ID
        self.client_secret = client_secret or config.GOOGLE_CLIENT_SECRET
        self.token_url = token_url or config.GOOGLE_TOKEN_URL
        self.refresh_margin = timedelta(
            seconds=config.TOKEN_REFRESH_MARGIN_SECONDS if refresh_margin_seconds is None else refresh_margin_seconds
        )
        self.timeout = timeout or config.HTTP_TIMEOUT_SECONDS
        self.clock = clock

    def needs_refresh(self, integration: models.OrganizationIntegration) -> bool:
        expires_at = as_utc(integration.token_expires_at)
        if expires_at is None or not integration.access_token:
            return True
        return expires_at <= self.clock() + self.refresh_margin

    def ensure_valid_access_token(self, integration: models.OrganizationIntegration) -> str:
        """
        Return an access token that is valid for at least the refresh margin.

        Raises:
            MissingRefreshTokenError: the integration has no refresh token (reconnect required)
            TokenRefreshError: the provider rejected the refresh
        """
        if not self.needs_refresh(integration):
            return integration.access_token

        if not integration.refresh_token:
            raise MissingRefreshTokenError()

        logger.info(
            "Refreshing Drive access token",
            extra={"organization_id": integration.organization_id, "integration_id": integration.id},
        )
        resp = requests.post(
            self.token_url,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": integration.refresh_token,
                "grant_type": "refresh_token",
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=self.timeout,
        )
        body = _response_body(resp)
        if not resp.ok or not isinstance(body, dict) or not body.get("access_token"):
            logger.error(
                "Drive token refresh failed",
                extra={"organization_id": integration.organization_id, "status": resp.status_code},
            )
            DRIVE_TOKEN_REFRESHES_TOTAL.labels(status="error").inc()
            raise TokenRefreshError(f"Token refresh failed: {json.dumps(body, default=str)}", details=body)

        integration.access_token = body["access_token"]
        integration.token_expires_at = self.clock() + timedelta(seconds=int(body.get("expires_in", 3600)))
        if body.get("refresh_token"):
            integration.refresh_token = body["refresh_token"]
        self.db.commit()
        DRIVE_TOKEN_REFRESHES_TOTAL.labels(status="success").inc()

        return integration.access_token


def _state_key(key: Optional[str] = None) -> str:
    key = key or config.SUPABASE_JWT_SECRET or config.GOOGLE_CLIENT_SECRET
    if not key:
        raise ValueError("No signing key configured for the OAuth state")
    return key


def encode_state(
    org_id: str,
    origin: Optional[str] = None,
    key: Optional[str] = None,
    ttl_seconds: int = STATE_TTL_SECONDS,
    clock: Callable[[], datetime] = _utcnow,
) -> str:
    """Signed, short-lived consent state binding the callback to the organization that started it."""
    now = clock()
    payload = {
        "org_id": org_id,
        "aud": STATE_AUDIENCE,
        "iat": now,
        "exp": now + timedelta(seconds=ttl_seconds),
    }
    if origin:
        payload["origin"] = origin
    return jwt.encode(payload, _state_key(key), algorithm="HS256")


def decode_state(state: str, key: Optional[str] = None) -> Dict[str, Any]:
    """Verify the consent state; raises ValueError when it is forged, expired or malformed."""
    try:
        payload = jwt.decode(state, _state_key(key), algorithms=["HS256"], audience=STATE_AUDIENCE)
    except jwt.InvalidTokenError as e:
        raise ValueError(f"Invalid OAuth state: {e}") from e
    if not payload.get("org_id"):
        raise ValueError("Invalid OAuth state: missing org_id")
    decoded = {"org_id": payload["org_id"]}
    if payload.get("origin"):
        decoded["origin"] = payload["origin"]
    return decoded


class GoogleOAuthClient:
    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.client_id = client_id or config.GOOGLE_CLIENT_ID
        self.client_secret = client_secret or config.GOOGLE_CLIENT_SECRET
        self.redirect_uri = redirect_uri or config.GOOGLE_REDIRECT_URI
        self.timeout = timeout or config.HTTP_TIMEOUT_SECONDS

    def build_authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(DRIVE_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{config.GOOGLE_AUTH_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> Dict[str, Any]:
        resp = requests.post(
            config.GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=self.timeout,
        )
        body = _response_body(resp)
        if not resp.ok or not isinstance(body, dict) or not body.get("access_token"):
            raise TokenRefreshError(f"Token exchange failed: {json.dumps(body, default=str)}", details=body)
        return body

    def fetch_user_email(self, access_token: str) -> Optional[str]:
        resp = requests.get(
            config.GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=self.timeout,
        )
        if not resp.ok:
            logger.warning("Could not read connected account email", extra={"status": resp.status_code})
            return None
        body = _response_body(resp)
        return body.get("email") if isinstance(body, dict) else None


def connect_integration(
    db: Session,
    org_id: str,
    tokens: Dict[str, Any],
    email: Optional[str] = None,
    clock: Callable[[], datetime] = _utcnow,
) -> models.OrganizationIntegration:
    """
    Create or update the organization's Drive integration after consent.

    Raises MissingRefreshTokenError, leaving the record untouched, when neither
    the provider nor the existing record supplies a refresh token.
    """
    now = clock()
    expires_in = tokens.get("expires_in")
    integration = (
        db.query(models.OrganizationIntegration)
        .filter(
            models.OrganizationIntegration.organization_id == org_id,
            models.OrganizationIntegration.provider == "google_drive",
        )
        .first()
    )
    if not tokens.get("refresh_token") and not (integration is not None and integration.refresh_token):
        raise MissingRefreshTokenError("Google did not return a refresh token. Please reconnect Google Drive.")
    if integration is None:
        integration = models.OrganizationIntegration(organization_id=org_id, provider="google_drive")
        db.add(integration)

    integration.access_token = tokens["access_token"]
    # Google only returns a refresh token on first consent; keep the old one otherwise
    if tokens.get("refresh_token"):
        integration.refresh_token = tokens["refresh_token"]
    integration.token_expires_at = now + timedelta(seconds=int(expires_in)) if expires_in else None
    integration.connected_email = email
    integration.connected_at = now
    integration.status = "connected"
    db.commit()
    db.refresh(integration)
    return integration
