"""
Authentication and authorization helpers.

Clients authenticate with Firebase ID tokens sent as
``Authorization: Bearer <token>``.  Tokens are RS256 JWTs signed by
Google; the signing certificates are published at a well-known URL,
fetched with ``httpx`` and cached in process.  When a token names a key
ID missing from the cache the certificates are fetched once more,
since Google rotates them every few hours.  Signature, audience,
issuer and expiry are verified with ``python-jose``.

On the first authenticated request a local ``users`` row is created
for the Firebase UID.  Route dependencies receive a plain dict
describing the caller::

    {"user_id": 7, "uid": "firebase-uid", "email": "...", "role": "guest"}
"""

import hmac
import logging
from typing import Any, Callable, Dict, Optional

import httpx
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import settings
from .db import get_connection
from ..utils.dates import now_timestamp

logger = logging.getLogger(__name__)

GOOGLE_CERTS_URL = (
    "https://www.googleapis.com/robot/v1/metadata/x509/securetoken@system.gserviceaccount.com"
)

ROLES = ("guest", "host", "admin")

_cached_certs: Optional[Dict[str, str]] = None


class InvalidTokenError(ValueError):
    """The presented ID token is malformed, expired or not ours."""


async def get_google_certificates(force_refresh: bool = False) -> Dict[str, str]:
    """Return Google's token-signing certificates keyed by key ID."""
    global _cached_certs
    if _cached_certs and not force_refresh:
        return _cached_certs
    async with httpx.AsyncClient(timeout=10) as client:
        response = await client.get(GOOGLE_CERTS_URL)
        response.raise_for_status()
        _cached_certs = response.json()
    logger.info("Fetched %d Google signing certificates", len(_cached_certs))
    return _cached_certs


async def verify_firebase_token(token: str) -> Dict[str, Any]:
    """Verify a Firebase ID token and return its claims.

    Raises ``InvalidTokenError`` when verification fails and
    ``RuntimeError`` when no Firebase project is configured.
    """
    project_id = settings.firebase_project_id
    if not project_id:
        raise RuntimeError("FIREBASE_PROJECT_ID is not configured")

    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise InvalidTokenError("Malformed token") from exc
    if header.get("alg") != "RS256":
        raise InvalidTokenError("Invalid token algorithm")
    kid = header.get("kid")
    if not kid:
        raise InvalidTokenError("Token missing key ID")

    certs = await get_google_certificates()
    if kid not in certs:
        logger.warning("Key ID %s not in cached certificates, refreshing", kid)
        certs = await get_google_certificates(force_refresh=True)
        if kid not in certs:
            raise InvalidTokenError("Unknown signing key")

    try:
        claims = jwt.decode(
            token,
            certs[kid],
            algorithms=["RS256"],
            audience=project_id,
            issuer=f"https://securetoken.google.com/{project_id}",
        )
    except JWTError as exc:
        raise InvalidTokenError(str(exc)) from exc

    if not claims.get("sub"):
        raise InvalidTokenError("Token has no subject")
    return claims


def _provision_user(claims: Dict[str, Any]) -> Dict[str, Any]:
    """Find or create the local user row for a verified token."""
    uid = claims["sub"]
    email = claims.get("email")
    conn = get_connection()
    try:
        cursor = conn.cursor()
        row = cursor.execute(
            "SELECT id, email, role, status FROM users WHERE firebase_uid = ?", (uid,)
        ).fetchone()
        if row is None:
            cursor.execute(
                """
                INSERT OR IGNORE INTO users (firebase_uid, email, full_name, photo_url)
                VALUES (?, ?, ?, ?)
                """,
                (uid, email, claims.get("name"), claims.get("picture")),
            )
            conn.commit()
            row = cursor.execute(
                "SELECT id, email, role, status FROM users WHERE firebase_uid = ?", (uid,)
            ).fetchone()
            logger.info("Provisioned user %s for uid %s", row["id"], uid)
        elif email and row["email"] != email:
            cursor.execute(
                "UPDATE users SET email = ?, updated_at = ? WHERE id = ?",
                (email, now_timestamp(), row["id"]),
            )
            conn.commit()
        return dict(row)
    finally:
        conn.close()


security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Dict[str, Any]:
    """Dependency that authenticates the request and returns the caller."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        claims = await verify_firebase_token(credentials.credentials)
    except InvalidTokenError as exc:
        logger.info("Rejected ID token: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except RuntimeError as exc:
        logger.error("Authentication unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication is not configured",
        )
    except httpx.HTTPError as exc:
        logger.error("Could not fetch Google certificates: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Unable to verify token",
        )

    user = _provision_user(claims)
    if user["status"] != "active":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account suspended")

    role = user["role"]
    # Admins can also be granted through a Firebase custom claim.
    if claims.get("admin") is True:
        role = "admin"
    return {
        "user_id": user["id"],
        "uid": claims["sub"],
        "email": claims.get("email") or user["email"],
        "email_verified": bool(claims.get("email_verified")),
        "name": claims.get("name"),
        "role": role,
    }


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[Dict[str, Any]]:
    """Like ``get_current_user`` but returns ``None`` for anonymous requests."""
    if credentials is None:
        return None
    return await get_current_user(credentials)


def require_roles(*roles: str) -> Callable[..., Dict[str, Any]]:
    """Dependency factory restricting a route to the given roles.

    Use as ``Depends(require_roles("admin"))``.  Callers with any other
    role receive 403.
    """

    def _role_dependency(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if current_user.get("role") not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return _role_dependency


def require_cron_secret(request: Request) -> None:
    """Authorize scheduler calls carrying ``Authorization: Bearer <CRON_SECRET>``."""
    if not settings.cron_secret:
        logger.error("Cron endpoint called but CRON_SECRET is not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Cron secret not configured",
        )
    header = request.headers.get("Authorization", "")
    expected = f"Bearer {settings.cron_secret}"
    if not hmac.compare_digest(header.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
