"""
Authentication Utility - JWT and Password handling.

Provides:
- Password hashing with bcrypt
- JWT token creation/verification ({sub: user_id, role})
- Invitation tokens for account activation
- FastAPI dependencies for protected routes (role, company membership,
  validated company)
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import List, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.core.config import get_settings
from app.db.postgres import execute_raw_sql

logger = logging.getLogger(__name__)

settings = get_settings()

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Bearer token extractors
bearer_scheme = HTTPBearer()


def hash_password(password: str) -> str:
    """Hash password with bcrypt."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against hash."""
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token."""
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Optional[dict]:
    """Decode and verify JWT token."""
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def generate_invitation_token() -> str:
    return secrets.token_urlsafe(32)


def get_user_memberships(user_id: str) -> List[dict]:
    """Active company memberships of a user, with the company's validation status."""
    return execute_raw_sql("""
        SELECT cm.company_id, cm.role_in_company, cm.is_primary,
               c.name AS company_name, c.status AS company_status
        FROM company_memberships cm
        JOIN companies c ON c.id = cm.company_id
        WHERE cm.user_id = :user_id AND cm.removed_at IS NULL
        ORDER BY cm.is_primary DESC, cm.created_at ASC
    """, {"user_id": user_id})


def load_user(user_id: str) -> Optional[dict]:
    users = execute_raw_sql("""
        SELECT id, email, name, role, phone, city, latitude, longitude,
               verified, is_active, deleted_at, created_at
        FROM users WHERE id = :id
    """, {"id": user_id})
    if not users:
        return None
    user = users[0]
    user["memberships"] = get_user_memberships(user_id) if user["role"] == "RECRUITER" else []
    return user


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> dict:
    """
    FastAPI dependency - Get current authenticated user.

    Usage:
        @router.get("/protected")
        async def route(user: dict = Depends(get_current_user)):
            return user
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Token invalide ou expiré",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_token(credentials.credentials)
    if not payload:
        raise credentials_exception

    user_id = payload.get("sub")
    if not user_id:
        raise credentials_exception

    user = load_user(user_id)
    if not user or user["deleted_at"] is not None:
        raise credentials_exception

    if not user["is_active"]:
        raise HTTPException(status_code=403, detail="Compte non activé")

    return user


def require_role(*roles: str):
    """
    Dependency factory - restrict a route to the given roles.

    Usage:
        @router.get("/admin/x")
        async def route(user: dict = Depends(require_role("ADMIN"))):
    """
    async def role_checker(user: dict = Depends(get_current_user)) -> dict:
        if user["role"] not in roles:
            raise HTTPException(status_code=403, detail="Accès non autorisé pour ce rôle")
        return user
    return role_checker


def has_company_access(user: dict, company_id: str) -> bool:
    if user["role"] == "ADMIN":
        return True
    return any(str(m["company_id"]) == str(company_id) for m in user.get("memberships", []))


async def require_company_access(company_id: str, user: dict = Depends(get_current_user)) -> dict:
    """Dependency - the user must belong to the company in the path (admins always pass)."""
    if not has_company_access(user, company_id):
        raise HTTPException(status_code=403, detail="Vous n'avez pas accès à cette entreprise")
    return user


def company_validation_state(memberships: List[dict]) -> str:
    """'verified', 'pending', 'rejected' or 'none' for a recruiter's companies."""
    statuses = {m["company_status"] for m in memberships}
    if "VERIFIED" in statuses:
        return "verified"
    if "PENDING" in statuses:
        return "pending"
    if "REJECTED" in statuses:
        return "rejected"
    return "none"


VALIDATION_MESSAGES = {
    "pending": "Votre entreprise est en cours de validation par un administrateur",
    "rejected": "La validation de votre entreprise a été refusée",
    "none": "Aucune entreprise associée à votre compte",
}


async def require_validated_company(user: dict = Depends(require_role("RECRUITER"))) -> dict:
    """Dependency - recruiter with at least one VERIFIED company; sets user['company_id']."""
    state = company_validation_state(user["memberships"])
    if state != "verified":
        raise HTTPException(
            status_code=403,
            detail={"message": VALIDATION_MESSAGES[state], "status": state}
        )

    verified = [m for m in user["memberships"] if m["company_status"] == "VERIFIED"]
    user["company_id"] = verified[0]["company_id"]
    return user
