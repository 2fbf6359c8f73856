"""Service-account credential exchange for Google Cloud APIs."""

import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Optional

import httpx
import jwt

from .errors import MissingCredentials, UpstreamAuthError

logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME = 3600  # seconds


@dataclass(frozen=True)
class ServiceAccount:
    client_email: str
    private_key: str
    project_id: str
    private_key_id: Optional[str] = None
    token_uri: str = TOKEN_URL


def load_service_account(raw: Optional[str] = None) -> ServiceAccount:
    """Read the service-account JSON from ``GOOGLE_CLOUD_KEY``."""
    raw = raw if raw is not None else os.getenv("GOOGLE_CLOUD_KEY", "")
    if not raw.strip():
        raise MissingCredentials("Missing Google Cloud credentials")

    try:
        data = json.loads(raw)
        return ServiceAccount(
            client_email=data["client_email"],
            private_key=data["private_key"],
            project_id=data["project_id"],
            private_key_id=data.get("private_key_id"),
            token_uri=data.get("token_uri") or TOKEN_URL,
        )
    except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as exc:
        raise MissingCredentials(f"Malformed Google Cloud credentials: {exc}") from exc


def build_assertion(account: ServiceAccount, now: Optional[int] = None) -> str:
    now = int(time.time()) if now is None else now
    payload = {
        "iss": account.client_email,
        "sub": account.client_email,
        "aud": account.token_uri,
        "iat": now,
        "exp": now + ASSERTION_LIFETIME,
        "scope": CLOUD_PLATFORM_SCOPE,
    }
    headers = {"kid": account.private_key_id} if account.private_key_id else None
    try:
        return jwt.encode(payload, account.private_key, algorithm="RS256", headers=headers)
    except (ValueError, TypeError, jwt.PyJWTError) as exc:
        raise UpstreamAuthError(f"Could not sign token assertion: {exc}") from exc


async def exchange_token(client: httpx.AsyncClient, account: ServiceAccount) -> str:
    """Trade a signed assertion for a short-lived access token."""
    assertion = build_assertion(account)
    try:
        response = await client.post(
            account.token_uri,
            data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
        )
    except httpx.HTTPError as exc:
        raise UpstreamAuthError(f"Failed to get access token: {exc}") from exc

    if response.is_error:
        logger.error("Token error (%d): %s", response.status_code, response.text)
        raise UpstreamAuthError("Failed to get access token")

    try:
        token = response.json()["access_token"]
    except (KeyError, TypeError, ValueError) as exc:
        raise UpstreamAuthError("Token response did not include an access token") from exc
    if not token:
        raise UpstreamAuthError("Token response did not include an access token")
    return token
