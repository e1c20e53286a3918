"""
Pydantic Schemas - Request/Response Validation

All API request and response schemas in one file for simplicity.
"""

from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, List, Any, Dict
from datetime import date, datetime
from enum import Enum


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, Enum):
    candidate = "CANDIDATE"
    recruiter = "RECRUITER"
    admin = "ADMIN"


class CompanyStatus(str, Enum):
    pending = "PENDING"
    verified = "VERIFIED"
    rejected = "REJECTED"


class MembershipRole(str, Enum):
    admin_rh = "ADMIN_RH"
    rh_user = "RH_USER"


class ContractType(str, Enum):
    cdi = "CDI"
    cdd = "CDD"
    stage = "STAGE"
    alternance = "ALTERNANCE"
    interim = "INTERIM"
    freelance = "FREELANCE"
    temps_partiel = "TEMPS_PARTIEL"
    temps_plein = "TEMPS_PLEIN"
    other = "OTHER"


class OfferStatus(str, Enum):
    active = "ACTIVE"
    archived = "ARCHIVED"
    expired = "EXPIRED"


class OfferAdminStatus(str, Enum):
    pending = "PENDING"
    approved = "APPROVED"
    rejected = "REJECTED"
    flagged = "FLAGGED"


class OfferSource(str, Enum):
    internal = "INTERNAL"
    external = "EXTERNAL"


class ApplicationStatus(str, Enum):
    envoye = "ENVOYE"
    en_attente = "EN_ATTENTE"
    entretien = "ENTRETIEN"
    refus = "REFUS"
    embauche = "EMBAUCHE"


class ApplicationEventType(str, Enum):
    status_change = "STATUS_CHANGE"
    note_added = "NOTE_ADDED"


class NotificationType(str, Enum):
    new_match = "NEW_MATCH"
    status_change = "STATUS_CHANGE"
    weekly_digest = "WEEKLY_DIGEST"
    profile_hint = "PROFILE_HINT"
    admin_alert = "ADMIN_ALERT"
    company_approved = "COMPANY_APPROVED"
    company_rejected = "COMPANY_REJECTED"
    company_contest = "COMPANY_CONTEST"


class ApplicationSort(str, Enum):
    score_desc = "score_desc"
    score_asc = "score_asc"
    date_desc = "date_desc"
    date_asc = "date_asc"
    status = "status"


class ModerationAction(str, Enum):
    approve = "approve"
    reject = "reject"
    flag = "flag"


class AdminOfferAction(str, Enum):
    archive = "archive"
    delete = "delete"


# ============================================================
# AUTH SCHEMAS
# ============================================================

class CompanyInfo(BaseModel):
    name: str = Field(..., min_length=2, max_length=200)
    domain: Optional[str] = None
    siren: Optional[str] = Field(None, pattern=r"^\d{9}$")
    sector: Optional[str] = None
    size: Optional[str] = None

class RegisterRequest(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=2, max_length=100)
    role: UserRole = UserRole.candidate
    phone: Optional[str] = None
    city: Optional[str] = None
    company: Optional[CompanyInfo] = None

    @field_validator("role")
    @classmethod
    def no_admin_self_registration(cls, v):
        if v == UserRole.admin:
            raise ValueError("Inscription administrateur interdite")
        return v

class SetPasswordRequest(BaseModel):
    token: str
    password: str = Field(..., min_length=6)

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class RegisterResponse(BaseModel):
    message: str
    user_id: str
    invitation_token: str
    expires_at: datetime

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


# ============================================================
# CANDIDATE SCHEMAS
# ============================================================

class CandidateProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    phone: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    title: Optional[str] = None
    summary: Optional[str] = None
    experience_years: Optional[int] = Field(None, ge=0, le=50)
    mobility_km: Optional[int] = Field(None, ge=0, le=1000)
    preferred_contracts: Optional[List[ContractType]] = None

class EducationCreate(BaseModel):
    school: str = Field(..., min_length=2)
    degree: Optional[str] = None
    field: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    description: Optional[str] = None

class EducationUpdate(BaseModel):
    school: Optional[str] = None
    degree: Optional[str] = None
    field: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    description: Optional[str] = None

class ExperienceCreate(BaseModel):
    company: Optional[str] = None
    role_title: str = Field(..., min_length=2)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    description: Optional[str] = None

class ExperienceUpdate(BaseModel):
    company: Optional[str] = None
    role_title: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    description: Optional[str] = None

class CandidateSkillItem(BaseModel):
    skill_id: str
    level: int = Field(3, ge=1, le=5)
    years_experience: Optional[int] = Field(None, ge=0)

class CandidateSkillsReplace(BaseModel):
    skills: List[CandidateSkillItem]

class CandidateSkillAdd(BaseModel):
    skill_id: Optional[str] = None
    name: Optional[str] = None
    level: int = Field(3, ge=1, le=5)
    years_experience: Optional[int] = Field(None, ge=0)

class CandidateSkillLevelUpdate(BaseModel):
    level: int = Field(..., ge=1, le=5)
    years_experience: Optional[int] = Field(None, ge=0)

class CoverLetterRequest(BaseModel):
    offer_id: str
    custom_message: Optional[str] = Field(None, max_length=2000)


# ============================================================
# CV ANALYSIS SCHEMAS
# ============================================================

class CVPersonalInfo(BaseModel):
    name: Optional[str] = None
    title: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None

class CVSkill(BaseModel):
    name: str
    category: Optional[str] = None
    level: Optional[str] = None

class CVExperience(BaseModel):
    company: Optional[str] = None
    position: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    description: Optional[str] = None

class CVEducation(BaseModel):
    school: Optional[str] = None
    degree: Optional[str] = None
    field: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    description: Optional[str] = None

class CVProfileSave(BaseModel):
    """Analysis result, possibly edited by the candidate before saving."""
    personal_info: Optional[CVPersonalInfo] = None
    professional_summary: Optional[str] = None
    experience_years: Optional[int] = Field(None, ge=0, le=50)
    skills: Optional[List[CVSkill]] = None
    experiences: Optional[List[CVExperience]] = None
    educations: Optional[List[CVEducation]] = None


# ============================================================
# COMPANY SCHEMAS
# ============================================================

class CompanyUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=200)
    siren: Optional[str] = Field(None, pattern=r"^\d{9}$")
    sector: Optional[str] = None
    size: Optional[str] = None
    logo_url: Optional[str] = None
    description: Optional[str] = None

class ContestRejectionRequest(BaseModel):
    message: str = Field(..., min_length=10, max_length=2000)

class CompanyStatusUpdate(BaseModel):
    status: CompanyStatus
    reason: Optional[str] = None

class CompanyDecision(BaseModel):
    reason: Optional[str] = None

class CompanyRejectRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=2000)

class CompanySuspendRequest(BaseModel):
    suspend: bool = True
    reason: Optional[str] = None


# ============================================================
# OFFER SCHEMAS
# ============================================================

class OfferSkillInput(BaseModel):
    skill_id: str
    is_required: bool = False

class OfferCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=200)
    description: str = Field(..., min_length=10)
    city: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    contract_type: ContractType = ContractType.cdi
    experience_min: int = Field(0, ge=0, le=50)
    salary_min: Optional[float] = Field(None, ge=0)
    salary_max: Optional[float] = Field(None, ge=0)
    skills: List[OfferSkillInput] = []

class OfferUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=3, max_length=200)
    description: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    contract_type: Optional[ContractType] = None
    experience_min: Optional[int] = Field(None, ge=0, le=50)
    salary_min: Optional[float] = Field(None, ge=0)
    salary_max: Optional[float] = Field(None, ge=0)
    skills: Optional[List[OfferSkillInput]] = None

class OfferAnalyzeRequest(BaseModel):
    text: str = Field(..., min_length=1)
    title: str = ""

class PremiumRequest(BaseModel):
    duration_days: int = Field(30, ge=1, le=365)

class OfferModerationRequest(BaseModel):
    action: AdminOfferAction
    reason: Optional[str] = None

class OfferStatusAction(BaseModel):
    action: ModerationAction
    reason: Optional[str] = None


# ============================================================
# APPLICATION SCHEMAS
# ============================================================

class ApplicationCreate(BaseModel):
    offer_id: str
    custom_message: Optional[str] = Field(None, max_length=5000)

class ApplicationStatusUpdate(BaseModel):
    status: ApplicationStatus
    note: Optional[str] = None

class ApplicationNote(BaseModel):
    note: str

    @field_validator("note")
    @classmethod
    def note_not_blank(cls, v):
        if not v.strip():
            raise ValueError("La note ne peut pas être vide")
        return v.strip()


# ============================================================
# SKILL SCHEMAS
# ============================================================

class SkillCreate(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=100)
    category: Optional[str] = None

class SkillUpdate(BaseModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=100)
    category: Optional[str] = None

class SkillMergeRequest(BaseModel):
    source_skill_ids: List[str] = Field(..., min_length=1)
    target_skill_id: str
    new_display_name: Optional[str] = None

    @field_validator("source_skill_ids")
    @classmethod
    def sources_are_distinct(cls, v):
        return list(dict.fromkeys(v))

class SkillExtractRequest(BaseModel):
    description: str
    title: str = ""


# ============================================================
# NOTIFICATION SCHEMAS
# ============================================================

class NotificationCreate(BaseModel):
    user_id: Optional[str] = None
    type: NotificationType
    payload: Dict[str, Any] = {}

class NotificationPreferencesUpdate(BaseModel):
    offers_min_score: Optional[int] = Field(None, ge=0, le=100)
    enable_email: Optional[bool] = None
    enable_in_app: Optional[bool] = None
    enable_sms: Optional[bool] = None
    digest_daily: Optional[bool] = None


# ============================================================
# GENERIC SCHEMAS
# ============================================================

class MessageResponse(BaseModel):
    message: str
    success: bool = True

class ErrorResponse(BaseModel):
    detail: str
