from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any

import httpx
import jwt
from jwt import PyJWKClient

from .config import settings
from ..models.exceptions import UnauthorizedException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    user_id: str
    email: str


def extract_bearer_token(authorization: Optional[str]) -> str:
    """Return the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        raise UnauthorizedException("Missing session token.")
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedException("Missing session token.")
    return token.strip()


class IdentityVerifier:
    """Resolves a bearer token to the identity provider's user.

    Three verification modes, in order of preference:

    - shared secret (HS256), the identity provider's JWT signing secret
    - JWKS (RS256/ES256) with cached signing keys
    - remote check against the provider's ``/auth/v1/user`` endpoint

    Every failure surfaces as ``UnauthorizedException``; nothing is retried.
    """

    def __init__(
        self,
        shared_secret: Optional[str] = None,
        jwks_url: Optional[str] = None,
        identity_url: Optional[str] = None,
        api_key: Optional[str] = None,
        audience: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.shared_secret = shared_secret
        self.jwks_url = jwks_url
        self.identity_url = identity_url.rstrip("/") if identity_url else None
        self.api_key = api_key
        self.audience = audience
        self.timeout = timeout
        self._transport = transport
        self._jwks_client: Optional[PyJWKClient] = None
        self._jwks_cache_time = 300  # 5 minutes cache

    @classmethod
    def from_settings(cls) -> "IdentityVerifier":
        return cls(
            shared_secret=settings.jwt_shared_secret,
            jwks_url=settings.auth_jwks_url,
            identity_url=settings.identity_url,
            api_key=settings.identity_api_key,
            audience=settings.jwt_audience,
            timeout=settings.identity_timeout,
        )

    def _get_jwks_client(self) -> PyJWKClient:
        if not self._jwks_client:
            self._jwks_client = PyJWKClient(
                self.jwks_url,
                cache_keys=True,
                lifespan=self._jwks_cache_time
            )
        return self._jwks_client

    async def verify(self, token: str) -> AuthenticatedUser:
        if not token:
            raise UnauthorizedException("Missing session token.")

        if self.shared_secret:
            claims = self._decode(token, self.shared_secret, ["HS256"])
            return self._user_from_claims(claims)

        if self.jwks_url:
            try:
                jwks_client = self._get_jwks_client()
                # Key fetch is blocking and cached by PyJWKClient
                signing_key = await asyncio.to_thread(jwks_client.get_signing_key_from_jwt, token)
            except jwt.PyJWTError as e:
                logger.warning(f"JWKS key lookup failed: {e}")
                raise UnauthorizedException("Invalid or expired session.")
            claims = self._decode(token, signing_key.key, ["RS256", "ES256"])
            return self._user_from_claims(claims)

        if self.identity_url:
            return await self._verify_remote(token)

        logger.error("No token verification method configured")
        raise UnauthorizedException("Token verification not configured")

    def _decode(self, token: str, key: Any, algorithms: list) -> Dict[str, Any]:
        try:
            return jwt.decode(
                token,
                key,
                algorithms=algorithms,
                options={
                    "verify_signature": True,
                    "verify_exp": True,
                    "verify_aud": bool(self.audience)
                },
                audience=self.audience if self.audience else None
            )
        except jwt.ExpiredSignatureError:
            raise UnauthorizedException("Session has expired.")
        except jwt.InvalidAudienceError:
            raise UnauthorizedException("Invalid token audience.")
        except jwt.InvalidTokenError as e:
            logger.warning(f"JWT validation failed: {str(e)}")
            raise UnauthorizedException("Invalid or expired session.")

    async def _verify_remote(self, token: str) -> AuthenticatedUser:
        headers = {"Authorization": f"Bearer {token}"}
        if self.api_key:
            headers["apikey"] = self.api_key
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(f"{self.identity_url}/auth/v1/user", headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"Identity provider unreachable: {e}")
            raise UnauthorizedException("Invalid or expired session.")

        if resp.status_code != 200:
            logger.info(f"Identity provider rejected token: {resp.status_code}")
            raise UnauthorizedException("Invalid or expired session.")
        try:
            body = resp.json()
        except ValueError:
            raise UnauthorizedException("Invalid or expired session.")

        user_id = body.get("id") if isinstance(body, dict) else None
        if not user_id:
            raise UnauthorizedException("Invalid or expired session.")
        return AuthenticatedUser(user_id=str(user_id), email=body.get("email") or "")

    @staticmethod
    def _user_from_claims(claims: Dict[str, Any]) -> AuthenticatedUser:
        user_id = claims.get("sub")
        if not user_id:
            raise UnauthorizedException("Token has no subject.")
        return AuthenticatedUser(user_id=str(user_id), email=claims.get("email") or "")
