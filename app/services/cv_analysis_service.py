"""
CV Analysis Service

1. Structured extraction of a CV's text: the AI client when configured,
   otherwise (or when the provider fails) a keyword heuristic built on
   the skills parser plus email / phone patterns
2. Validation of the extracted JSON (same shape whatever the source)
3. Saving a reviewed analysis into the candidate profile: profile fields,
   experiences, educations and skills (resolved against the referential)
"""

import logging
import re
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import text

from app.db.postgres import get_db_session
from app.services.ai_client import AIClient, AIServiceError, get_ai_client
from app.services.skills_parsing_service import SkillsParser, get_skills_parser
from app.services.skills_service import resolve_skill_id

logger = logging.getLogger(__name__)

MIN_CV_TEXT_LENGTH = 50
DEFAULT_SKILL_CATEGORY = "technique"
DEFAULT_SKILL_LEVEL = "intermédiaire"

EMAIL_PATTERN = re.compile(r"[\w.-]+@[\w.-]+\.\w+")
PHONE_PATTERN = re.compile(r"(?:\+33\s?|0)[1-9](?:[\s.-]?\d{2}){4}")
EXPERIENCE_PATTERN = re.compile(r"(\d{1,2})\s*(?:\+\s*)?(?:ans|années?)\s+d['’]exp", re.IGNORECASE)

SKILL_LEVELS = {
    "débutant": 1, "beginner": 1, "novice": 1,
    "intermédiaire": 2, "intermediate": 2, "moyen": 2,
    "confirmé": 3, "confirmed": 3, "bon": 3,
    "avancé": 4, "advanced": 4, "expert": 4,
    "maître": 5, "master": 5, "expert+": 5,
}
DEFAULT_LEVEL_VALUE = 3

ONGOING = {"en cours", "présent", "present", "aujourd'hui", "actuel"}


# ============================================================
# NORMALIZATION HELPERS
# ============================================================

def convert_skill_level(level: Optional[str]) -> int:
    """'débutant' -> 1 ... 'maître' -> 5; unknown or missing -> 3."""
    if not level:
        return DEFAULT_LEVEL_VALUE
    return SKILL_LEVELS.get(str(level).strip().lower(), DEFAULT_LEVEL_VALUE)


def normalize_date(value: Optional[str]) -> Optional[str]:
    """
    CV dates to ISO dates: '2021' -> '2021-01-01', '2021-03' -> '2021-03-01'.
    Ongoing markers ('En cours') and unparseable values give None.
    """
    if not value:
        return None
    value = str(value).strip()
    if value.lower() in ONGOING:
        return None

    if re.fullmatch(r"\d{4}", value):
        value = f"{value}-01-01"
    elif re.fullmatch(r"\d{4}-\d{2}", value):
        value = f"{value}-01"

    try:
        return date.fromisoformat(value[:10]).isoformat()
    except ValueError:
        pass
    for fmt in ("%m/%Y", "%d/%m/%Y"):
        try:
            return datetime.strptime(value, fmt).date().isoformat()
        except ValueError:
            continue
    logger.debug("Unrecognized CV date: %s", value)
    return None


def _text(value) -> str:
    return str(value).strip() if value is not None else ""


def _optional_text(value) -> Optional[str]:
    return _text(value) or None


def validate_and_clean(data: dict) -> dict:
    """
    Validate and sanitize an extracted CV.
    Ensures every field exists with the right type; missing skill category and
    level default to 'technique' / 'intermédiaire'.
    """
    personal = data.get("personal_info") if isinstance(data.get("personal_info"), dict) else {}

    try:
        experience_years = max(0, min(50, int(float(data.get("experience_years") or 0))))
    except (ValueError, TypeError):
        experience_years = 0

    skills = []
    for skill in data.get("skills") or []:
        if isinstance(skill, str):
            skill = {"name": skill}
        if not isinstance(skill, dict) or not _text(skill.get("name")):
            continue
        skills.append({
            "name": _text(skill["name"]),
            "category": _text(skill.get("category")) or DEFAULT_SKILL_CATEGORY,
            "level": _text(skill.get("level")) or DEFAULT_SKILL_LEVEL,
        })

    experiences = [
        {
            "company": _text(exp.get("company")),
            "position": _text(exp.get("position")),
            "start_date": _optional_text(exp.get("start_date")),
            "end_date": _optional_text(exp.get("end_date")),
            "description": _text(exp.get("description")),
        }
        for exp in data.get("experiences") or [] if isinstance(exp, dict)
    ]

    educations = [
        {
            "school": _text(edu.get("school")),
            "degree": _text(edu.get("degree")),
            "field": _text(edu.get("field")),
            "start_date": _optional_text(edu.get("start_date")),
            "end_date": _optional_text(edu.get("end_date")),
            "description": _text(edu.get("description")),
        }
        for edu in data.get("educations") or [] if isinstance(edu, dict)
    ]

    return {
        "personal_info": {
            key: _optional_text(personal.get(key)) for key in ("name", "title", "email", "phone", "location")
        },
        "professional_summary": _optional_text(data.get("professional_summary")),
        "experience_years": experience_years,
        "skills": skills,
        "experiences": experiences,
        "educations": educations,
    }


# ============================================================
# ANALYSIS
# ============================================================

def heuristic_analysis(cv_text: str, parser: Optional[SkillsParser] = None) -> dict:
    """Keyword extraction used when no AI provider is available."""
    parser = parser or get_skills_parser()
    email = EMAIL_PATTERN.search(cv_text)
    phone = PHONE_PATTERN.search(cv_text)
    years = EXPERIENCE_PATTERN.search(cv_text)

    skills = [
        {"name": s["display_name"], "category": s.get("category"), "level": None}
        for s in parser.parse_skills_from_description(cv_text)
    ]
    return validate_and_clean({
        "personal_info": {
            "email": email.group(0) if email else None,
            "phone": phone.group(0) if phone else None,
        },
        "experience_years": years.group(1) if years else 0,
        "skills": skills,
    })


def analyze_cv_content(cv_text: str, ai_client: Optional[AIClient] = None,
                       parser: Optional[SkillsParser] = None) -> dict:
    """
    Analyze a CV's text. The result carries `source`: 'ai' or 'heuristic'.
    Raises ValueError when the text is too short to analyze.
    """
    cv_text = (cv_text or "").strip()
    if len(cv_text) < MIN_CV_TEXT_LENGTH:
        raise ValueError("Le contenu du CV est trop court pour être analysé")

    ai_client = ai_client or get_ai_client()
    if ai_client.is_configured():
        try:
            result = validate_and_clean(ai_client.analyze_cv(cv_text))
            result["source"] = "ai"
            logger.info(
                "CV analyzed by AI: %s skills, %s experiences, %s educations",
                len(result["skills"]), len(result["experiences"]), len(result["educations"])
            )
            return result
        except AIServiceError as e:
            logger.warning("AI CV analysis failed, falling back to keywords: %s", e)

    result = heuristic_analysis(cv_text, parser)
    result["source"] = "heuristic"
    return result


# ============================================================
# SAVE TO PROFILE
# ============================================================

def _insert_experiences(db, user_id, experiences: List[dict]) -> int:
    added = 0
    for exp in experiences:
        if not exp.get("company") or not exp.get("position"):
            continue
        db.execute(text("""
            INSERT INTO experiences (user_id, company, role_title, start_date, end_date, description)
            VALUES (:user_id, :company, :role_title, :start_date, :end_date, :description)
        """), {
            "user_id": user_id,
            "company": exp["company"],
            "role_title": exp["position"],
            "start_date": normalize_date(exp.get("start_date")),
            "end_date": normalize_date(exp.get("end_date")),
            "description": exp.get("description") or None,
        })
        added += 1
    return added


def _insert_educations(db, user_id, educations: List[dict]) -> int:
    added = 0
    for edu in educations:
        if not edu.get("school"):
            continue
        db.execute(text("""
            INSERT INTO educations (user_id, school, degree, field, start_date, end_date, description)
            VALUES (:user_id, :school, :degree, :field, :start_date, :end_date, :description)
        """), {
            "user_id": user_id,
            "school": edu["school"],
            "degree": edu.get("degree") or None,
            "field": edu.get("field") or None,
            "start_date": normalize_date(edu.get("start_date")),
            "end_date": normalize_date(edu.get("end_date")),
            "description": edu.get("description") or None,
        })
        added += 1
    return added


def _add_skills(db, user_id, skills: List[dict]) -> dict:
    counts = {"added": 0, "skipped": 0}
    for skill in skills:
        try:
            skill_id = resolve_skill_id(db, skill["name"], skill.get("category"))
        except ValueError:
            counts["skipped"] += 1
            continue
        inserted = db.execute(text("""
            INSERT INTO candidate_skills (user_id, skill_id, level)
            VALUES (:user_id, :skill_id, :level)
            ON CONFLICT (user_id, skill_id) DO NOTHING
            RETURNING skill_id
        """), {"user_id": user_id, "skill_id": skill_id, "level": convert_skill_level(skill.get("level"))}).fetchone()
        counts["added" if inserted else "skipped"] += 1
    return counts


def save_profile(user_id: str, data: dict) -> dict:
    """
    Write a reviewed analysis into the candidate profile, in one transaction.
    Skills already on the profile are left untouched.
    Raises ValueError when there is nothing to save.
    """
    personal = data.get("personal_info") or {}
    skills = data.get("skills") or []
    experiences = data.get("experiences") or []
    educations = data.get("educations") or []

    profile_updates = {}
    if personal.get("title"):
        profile_updates["title"] = personal["title"]
    if data.get("professional_summary"):
        profile_updates["summary"] = data["professional_summary"]
    if data.get("experience_years") is not None:
        profile_updates["experience_years"] = data["experience_years"]

    if not profile_updates and not skills and not experiences and not educations:
        raise ValueError("Aucune donnée à sauvegarder")

    with get_db_session() as db:
        db.execute(text("""
            INSERT INTO candidate_profiles (user_id, mobility_km, preferred_contracts)
            VALUES (:user_id, 25, '{}')
            ON CONFLICT (user_id) DO NOTHING
        """), {"user_id": user_id})

        if profile_updates:
            assignments = ", ".join(f"{field} = :{field}" for field in profile_updates)
            db.execute(
                text(f"UPDATE candidate_profiles SET {assignments}, updated_at = NOW() WHERE user_id = :user_id"),
                {**profile_updates, "user_id": user_id}
            )

        experiences_added = _insert_experiences(db, user_id, experiences)
        educations_added = _insert_educations(db, user_id, educations)
        skill_counts = _add_skills(db, user_id, skills)

    logger.info(
        "CV analysis saved for %s: %s experiences, %s educations, %s skills",
        user_id, experiences_added, educations_added, skill_counts["added"]
    )
    return {
        "profile_updated": bool(profile_updates),
        "experiences_added": experiences_added,
        "educations_added": educations_added,
        "skills_added": skill_counts["added"],
        "skills_skipped": skill_counts["skipped"],
    }
