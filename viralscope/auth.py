"""Bearer-token owner resolution and the password sign-in provider."""

import logging
import os
from dataclasses import dataclass
from typing import Optional

import httpx
import jwt

from .errors import AuthRequired, UpstreamAuthError

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"
AUTH_TIMEOUT = 15.0


@dataclass(frozen=True)
class SessionContext:
    """The signed-in user for one request. Re-resolved on every request."""

    access_token: str
    user_id: str
    email: Optional[str] = None


def _truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def decode_claims(token: str) -> Optional[dict]:
    """Decode ``token`` under the configured verification policy.

    With ``AUTH_JWT_SECRET`` set the HS256 signature, expiry and audience are
    checked. Without it, tokens are only trusted when
    ``AUTH_ALLOW_UNVERIFIED_TOKENS`` is on, which is meant for local use.
    """
    secret = os.getenv("AUTH_JWT_SECRET", "")
    try:
        if secret:
            audience = os.getenv("AUTH_JWT_AUDIENCE", "authenticated")
            return jwt.decode(
                token,
                secret,
                algorithms=["HS256"],
                audience=audience or None,
                options={"verify_aud": bool(audience)},
            )
        if _truthy(os.getenv("AUTH_ALLOW_UNVERIFIED_TOKENS")):
            logger.warning("Trusting bearer token without signature verification")
            return jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as exc:
        logger.info("Ignoring bearer token: %s", exc)
        return None

    logger.info("Ignoring bearer token: AUTH_JWT_SECRET is not configured")
    return None


def session_from_token(token: Optional[str]) -> Optional[SessionContext]:
    if not token:
        return None
    claims = decode_claims(token)
    if not claims:
        return None
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        return None
    email = claims.get("email")
    return SessionContext(
        access_token=token,
        user_id=subject,
        email=email if isinstance(email, str) and email else None,
    )


def resolve_owner(token: Optional[str]) -> Optional[str]:
    session = session_from_token(token)
    return session.user_id if session else None


class AuthProvider:
    """Password sign-in against a GoTrue-compatible auth server."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or os.getenv("AUTH_URL", "")).rstrip("/")
        self.api_key = api_key if api_key is not None else os.getenv("AUTH_ANON_KEY", "")
        self._transport = transport

    async def _post(self, path: str, payload: dict) -> dict:
        if not self.base_url:
            raise UpstreamAuthError("AUTH_URL is not configured.")

        async with httpx.AsyncClient(
            timeout=AUTH_TIMEOUT, transport=self._transport
        ) as client:
            try:
                response = await client.post(
                    f"{self.base_url}{path}",
                    json=payload,
                    headers={"apikey": self.api_key},
                )
            except httpx.HTTPError as exc:
                raise UpstreamAuthError(f"Auth server unreachable: {exc!r}") from exc

        if response.status_code in (400, 401, 422):
            try:
                body = response.json()
                msg = body.get("error_description") or body.get("msg") or body.get("message")
            except ValueError:
                msg = None
            raise AuthRequired(msg or "Invalid email or password.")
        if response.is_error:
            raise UpstreamAuthError(f"Auth server error ({response.status_code})")
        return response.json()

    @staticmethod
    def _session_from_body(body: dict) -> Optional[SessionContext]:
        token = body.get("access_token")
        user = body.get("user") or {}
        if not token or not user.get("id"):
            return None
        return SessionContext(access_token=token, user_id=user["id"], email=user.get("email"))

    async def sign_in(self, email: str, password: str) -> SessionContext:
        body = await self._post(
            "/auth/v1/token?grant_type=password",
            {"email": email, "password": password},
        )
        session = self._session_from_body(body)
        if session is None:
            raise UpstreamAuthError("Auth server returned no session.")
        return session

    async def sign_up(self, email: str, password: str) -> Optional[SessionContext]:
        """Register a user. Returns None when email confirmation is pending."""
        body = await self._post("/auth/v1/signup", {"email": email, "password": password})
        return self._session_from_body(body)
