"""
Authentication Routes

POST /auth/register - Register (inactive account, no password yet)
POST /auth/set-password - Activate account with invitation token
POST /auth/login - Login and get JWT token
GET /auth/verify - Current user with company memberships
"""

import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, HTTPException, Depends
from sqlalchemy import text

from app.core.config import get_settings
from app.db.postgres import get_db_session, execute_raw_sql
from app.core.auth import (
    hash_password, verify_password, create_access_token, generate_invitation_token,
    get_current_user, get_user_memberships
)
from app.services.company_service import get_or_create_company, create_membership
from app.schemas.schemas import (
    RegisterRequest, SetPasswordRequest, LoginRequest, RegisterResponse, TokenResponse, MessageResponse
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

settings = get_settings()


def public_user(user: dict) -> dict:
    return {k: v for k, v in user.items() if k not in ("password_hash", "deleted_at")}


@router.post("/register", response_model=RegisterResponse, status_code=201)
async def register(request: RegisterRequest):
    """
    Register a new user account.

    The account stays inactive until a password is set with the
    invitation token (valid 24h). Recruiters are attached to their
    company, created PENDING if its domain is unknown.
    """
    if request.role.value == "RECRUITER" and not request.company:
        raise HTTPException(status_code=400, detail="Les informations de l'entreprise sont requises")

    token = generate_invitation_token()
    expires_at = datetime.utcnow() + timedelta(hours=settings.invitation_expire_hours)

    with get_db_session() as db:
        existing = db.execute(
            text("SELECT id FROM users WHERE email = :email"),
            {"email": request.email.lower()}
        ).fetchone()
        if existing:
            raise HTTPException(status_code=409, detail="Un compte existe déjà avec cet email")

        user_id = db.execute(
            text("""
                INSERT INTO users (role, name, email, phone, city, verified, is_active)
                VALUES (:role, :name, :email, :phone, :city, FALSE, FALSE)
                RETURNING id
            """),
            {
                "role": request.role.value, "name": request.name, "email": request.email.lower(),
                "phone": request.phone, "city": request.city
            }
        ).scalar()

        if request.role.value == "RECRUITER":
            company = get_or_create_company(
                db, request.company.name, request.company.domain, request.company.siren,
                request.company.sector, request.company.size
            )
            create_membership(db, user_id, company["id"], role="ADMIN_RH", is_primary=True)
        else:
            db.execute(
                text("""
                    INSERT INTO candidate_profiles (user_id, mobility_km, preferred_contracts)
                    VALUES (:user_id, 25, '{}')
                """),
                {"user_id": user_id}
            )

        db.execute(
            text("""
                INSERT INTO user_invitations (user_id, token, expires_at)
                VALUES (:user_id, :token, :expires_at)
            """),
            {"user_id": user_id, "token": token, "expires_at": expires_at}
        )

    logger.info("User registered: %s (%s)", request.email, request.role.value)
    return RegisterResponse(
        message="Inscription réussie. Définissez votre mot de passe pour activer votre compte.",
        user_id=str(user_id),
        invitation_token=token,
        expires_at=expires_at
    )


@router.post("/set-password", response_model=MessageResponse)
async def set_password(request: SetPasswordRequest):
    """Set the password from an invitation token and activate the account."""
    invitations = execute_raw_sql("""
        SELECT ui.id, ui.user_id, ui.used_at, ui.expires_at < NOW() AS expired, u.is_active
        FROM user_invitations ui
        JOIN users u ON u.id = ui.user_id
        WHERE ui.token = :token
    """, {"token": request.token})

    if not invitations:
        raise HTTPException(status_code=400, detail="Token d'invitation invalide")
    invitation = invitations[0]

    if invitation["used_at"] is not None:
        raise HTTPException(status_code=400, detail="Ce lien d'activation a déjà été utilisé")
    if invitation["expired"]:
        raise HTTPException(status_code=400, detail="Ce lien d'activation a expiré")
    if invitation["is_active"]:
        raise HTTPException(status_code=400, detail="Ce compte est déjà activé")

    with get_db_session() as db:
        db.execute(
            text("""
                UPDATE users SET password_hash = :hash, is_active = TRUE, verified = TRUE, updated_at = NOW()
                WHERE id = :user_id
            """),
            {"hash": hash_password(request.password), "user_id": invitation["user_id"]}
        )
        db.execute(
            text("UPDATE user_invitations SET used_at = NOW() WHERE id = :id"),
            {"id": invitation["id"]}
        )

    return MessageResponse(message="Mot de passe défini, votre compte est activé")


@router.post("/login", response_model=TokenResponse)
async def login(request: LoginRequest):
    """
    Login and receive JWT access token.

    Include token in requests: Authorization: Bearer <token>
    """
    users = execute_raw_sql("""
        SELECT id, role, name, email, password_hash, verified, is_active, city, deleted_at
        FROM users WHERE email = :email
    """, {"email": request.email.lower()})

    if not users or users[0]["deleted_at"] is not None:
        raise HTTPException(status_code=401, detail="Email ou mot de passe incorrect")
    user = users[0]

    if not user["is_active"]:
        raise HTTPException(status_code=403, detail="Votre compte n'est pas encore activé")
    if not user["password_hash"]:
        raise HTTPException(status_code=403, detail="Votre mot de passe n'est pas encore défini")

    if not verify_password(request.password, user["password_hash"]):
        raise HTTPException(status_code=401, detail="Email ou mot de passe incorrect")

    token = create_access_token(data={"sub": str(user["id"]), "role": user["role"]})
    user_info = public_user(user)
    user_info["memberships"] = get_user_memberships(user["id"]) if user["role"] == "RECRUITER" else []

    return TokenResponse(access_token=token, user=user_info)


@router.get("/verify")
async def verify(user: dict = Depends(get_current_user)):
    """Get current authenticated user's info."""
    return {"valid": True, "user": public_user(user)}
