"""
Authentication utilities for Supabase JWT verification.

The frontend signs in with Supabase and sends the JWT in the Authorization
header. This module verifies the JWT; ``helpdesk.api.deps`` then resolves the
subject against the local user directory to build a Principal.
"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from typing import Optional
import requests
from helpdesk.core.config import settings
from helpdesk.models.enums import Role

# Security scheme for Bearer token
security = HTTPBearer()


class Principal:
    """Authenticated caller as seen by the triage engine."""
    def __init__(self, user_id: str, role, status: str = "active", email: Optional[str] = None):
        self.id = user_id
        self.role = Role.parse(role)
        self.status = status
        self.email = email

    @property
    def is_staff(self) -> bool:
        return self.role.is_staff

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @classmethod
    def from_user(cls, user) -> "Principal":
        return cls(user_id=user.id, role=user.role, status=user.status, email=user.email)

    def __repr__(self) -> str:
        return f"Principal(id={self.id!r}, role={self.role.value!r}, status={self.status!r})"


# Cache for JWKS keys (to avoid fetching on every request)
_jwks_cache = None


def get_supabase_jwks():
    """
    Fetch Supabase's JSON Web Key Set (JWKS) for JWT verification.

    Returns:
        dict: JWKS containing public keys for token verification
    """
    global _jwks_cache

    if _jwks_cache is not None:
        return _jwks_cache

    try:
        jwks_url = f"{settings.SUPABASE_URL}/auth/v1/.well-known/jwks.json"
        response = requests.get(jwks_url, timeout=10)
        response.raise_for_status()
        _jwks_cache = response.json()
        return _jwks_cache
    except requests.RequestException as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Failed to fetch JWKS from Supabase: {str(e)}",
        )


def verify_token(token: str) -> dict:
    """
    Verify Supabase JWT token and return decoded payload.

    Supabase signs with ES256 on newer projects and RS256 on older ones;
    python-jose picks the key from the JWKS using the token's 'kid' header.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        jwks = get_supabase_jwks()
        payload = jwt.decode(
            token,
            jwks,
            algorithms=["ES256", "RS256"],
            audience="authenticated",
            options={"verify_aud": True}
        )
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication credentials: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_token_subject(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> str:
    """
    FastAPI dependency returning the verified token's subject (user id).

    Raises:
        HTTPException: If token is missing, invalid, expired or has no subject
    """
    payload = verify_token(credentials.credentials)

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate user",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
