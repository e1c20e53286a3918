"""
Application Routes

POST /applications/apply - Apply to an offer (candidate only)
GET /applications/my-applications - Candidate's applications
GET /applications/{application_id}/events - Application history
PATCH /applications/{application_id}/status - Change application status
POST /applications/{application_id}/notes - Add a note to the history
"""

import logging

from fastapi import APIRouter, HTTPException, Depends
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.db.postgres import execute_raw_sql
from app.core.auth import get_current_user, require_role, has_company_access
from app.core.errors import pg_error_code, UNIQUE_VIOLATION
from app.services.matching_service import (
    get_matching_service, load_candidate_for_matching, load_offer_for_matching, record_match_trace
)
from app.services.notification_service import create_notification
from app.schemas.schemas import ApplicationCreate, ApplicationStatusUpdate, ApplicationNote

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/applications", tags=["Applications"])

ALLOWED_TRANSITIONS = {
    "CANDIDATE": {"EN_ATTENTE"},
    "RECRUITER": {"EN_ATTENTE", "ENTRETIEN", "REFUS", "EMBAUCHE"},
    "ADMIN": {"EN_ATTENTE", "ENTRETIEN", "REFUS", "EMBAUCHE"},
}

DUPLICATE_APPLICATION = "Vous avez déjà postulé à cette offre"


def can_access_application(user: dict, application: dict) -> bool:
    """Owner candidate, a recruiter of the offer's company, or an admin."""
    if user["role"] == "ADMIN":
        return True
    if user["role"] == "CANDIDATE":
        return str(application["candidate_id"]) == str(user["id"])
    if user["role"] == "RECRUITER":
        return has_company_access(user, application["company_id"])
    return False


def get_accessible_application(application_id: str, user: dict) -> dict:
    applications = execute_raw_sql("""
        SELECT a.id, a.offer_id, a.candidate_id, a.status, o.company_id, o.title AS offer_title
        FROM applications a
        JOIN job_offers o ON o.id = a.offer_id
        WHERE a.id = :id
    """, {"id": application_id})
    if not applications:
        raise HTTPException(status_code=404, detail="Candidature non trouvée")
    if not can_access_application(user, applications[0]):
        raise HTTPException(status_code=403, detail="Accès non autorisé")
    return applications[0]


def add_event(application_id, event_type: str, actor_id, old_status=None, new_status=None, note=None) -> dict:
    rows = execute_raw_sql("""
        INSERT INTO application_events (application_id, event_type, old_status, new_status, note, actor_user_id)
        VALUES (:application_id, :event_type, :old_status, :new_status, :note, :actor)
        RETURNING id, application_id, event_type, old_status, new_status, note, actor_user_id, created_at
    """, {
        "application_id": application_id, "event_type": event_type, "old_status": old_status,
        "new_status": new_status, "note": note, "actor": actor_id
    })
    return rows[0]


@router.post("/apply", status_code=201)
async def apply(request: ApplicationCreate, user: dict = Depends(require_role("CANDIDATE"))):
    """
    Apply to an active offer.

    The matching score is computed at apply time and stored with the
    application; a match trace keeps the inputs for audit.
    """
    offer = load_offer_for_matching(request.offer_id)
    if not offer or offer["status"] != "ACTIVE":
        raise HTTPException(status_code=404, detail="Offre non trouvée ou inactive")

    existing = execute_raw_sql(
        "SELECT id FROM applications WHERE offer_id = :offer_id AND candidate_id = :candidate_id",
        {"offer_id": request.offer_id, "candidate_id": user["id"]}
    )
    if existing:
        raise HTTPException(status_code=409, detail=DUPLICATE_APPLICATION)

    candidate = load_candidate_for_matching(user["id"])
    result = get_matching_service().calculate_matching_score(candidate, offer)

    try:
        rows = execute_raw_sql("""
            INSERT INTO applications (offer_id, candidate_id, status, score, explanation, custom_message)
            VALUES (:offer_id, :candidate_id, 'ENVOYE', :score, :explanation, :custom_message)
            RETURNING id, offer_id, candidate_id, status, score, explanation, custom_message, created_at
        """, {
            "offer_id": request.offer_id, "candidate_id": user["id"], "score": result["score"],
            "explanation": result["explanation"], "custom_message": request.custom_message
        })
    except IntegrityError as e:
        if pg_error_code(e) == UNIQUE_VIOLATION:
            raise HTTPException(status_code=409, detail=DUPLICATE_APPLICATION)
        raise
    application = rows[0]

    try:
        record_match_trace(result, request.offer_id, user["id"], application["id"])
    except SQLAlchemyError as e:
        logger.error("Match trace not recorded for application %s: %s", application["id"], e)

    add_event(
        application["id"], "STATUS_CHANGE", user["id"], new_status="ENVOYE",
        note=request.custom_message or "Candidature envoyée automatiquement"
    )
    logger.info("Application %s created (score %s)", application["id"], result["score"])

    return {
        "message": "Candidature envoyée avec succès",
        "application": {
            **application,
            "offer_title": offer["title"],
            "matching_score": result["score"],
            "matched_skills": result["matched_skills"],
            "missing_skills": result["missing_skills"],
            "distance_km": result["distance_km"]
        }
    }


@router.get("/my-applications")
async def my_applications(user: dict = Depends(require_role("CANDIDATE"))):
    applications = execute_raw_sql("""
        SELECT a.id, a.offer_id, a.status, a.score, a.explanation, a.custom_message,
               a.created_at, a.updated_at,
               o.title AS offer_title, o.city, o.contract_type, o.salary_min, o.salary_max, o.currency,
               c.name AS company_name, c.logo_url AS company_logo_url
        FROM applications a
        JOIN job_offers o ON o.id = a.offer_id
        JOIN companies c ON c.id = o.company_id
        WHERE a.candidate_id = :user_id
        ORDER BY a.created_at DESC
    """, {"user_id": user["id"]})
    return {"applications": applications}


@router.get("/{application_id}/events")
async def get_events(application_id: str, user: dict = Depends(get_current_user)):
    get_accessible_application(application_id, user)
    events = execute_raw_sql("""
        SELECT e.id, e.event_type, e.old_status, e.new_status, e.note, e.created_at,
               e.actor_user_id, u.name AS actor_name, u.role AS actor_role
        FROM application_events e
        LEFT JOIN users u ON u.id = e.actor_user_id
        WHERE e.application_id = :id
        ORDER BY e.created_at ASC
    """, {"id": application_id})
    return {"events": events}


@router.patch("/{application_id}/status")
async def update_status(application_id: str, request: ApplicationStatusUpdate,
                        user: dict = Depends(get_current_user)):
    """
    Change an application's status.

    Candidates may only set EN_ATTENTE; recruiters and admins may set
    EN_ATTENTE, ENTRETIEN, REFUS or EMBAUCHE. The candidate is notified
    when someone else changes the status.
    """
    application = get_accessible_application(application_id, user)

    new_status = request.status.value
    if new_status not in ALLOWED_TRANSITIONS.get(user["role"], set()):
        raise HTTPException(status_code=403, detail="Transition de statut non autorisée")

    old_status = application["status"]
    updated = execute_raw_sql("""
        UPDATE applications SET status = :status, updated_at = NOW()
        WHERE id = :id
        RETURNING id, offer_id, candidate_id, status, score, updated_at
    """, {"id": application_id, "status": new_status})

    add_event(application_id, "STATUS_CHANGE", user["id"], old_status, new_status, request.note)

    if user["role"] in ("RECRUITER", "ADMIN"):
        create_notification(application["candidate_id"], "STATUS_CHANGE", {
            "application_id": str(application_id),
            "offer_id": str(application["offer_id"]),
            "offer_title": application["offer_title"],
            "old_status": old_status,
            "new_status": new_status
        })

    return {"message": "Statut mis à jour avec succès", "application": updated[0]}


@router.post("/{application_id}/notes", status_code=201)
async def add_note(application_id: str, request: ApplicationNote, user: dict = Depends(get_current_user)):
    get_accessible_application(application_id, user)
    event = add_event(application_id, "NOTE_ADDED", user["id"], note=request.note)
    return {"message": "Note ajoutée avec succès", "event": event}
