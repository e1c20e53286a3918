"""
Company Service

Companies are created PENDING when a recruiter registers and become
visible to recruiters' offer publishing only once an admin sets them
VERIFIED. Suspending a company sets it back to REJECTED.
"""

import json
import logging
import re
from typing import Optional, List

from sqlalchemy import text

from app.db.postgres import execute_raw_sql
from app.services.notification_service import create_notification

logger = logging.getLogger(__name__)

COMPANY_COLUMNS = """
    c.id, c.name, c.siren, c.domain, c.sector, c.size, c.logo_url, c.description,
    c.status, c.validation_reason, c.validated_at, c.created_at, c.updated_at
"""


def default_domain(name: str) -> str:
    """'Acme Corp' -> 'acme-corp.com'"""
    slug = re.sub(r"\s+", "-", name.strip().lower())
    return f"{slug}.com"


def get_or_create_company(db, name: str, domain: Optional[str] = None, siren: Optional[str] = None,
                          sector: Optional[str] = None, size: Optional[str] = None) -> dict:
    """Find a company by domain or create it PENDING. Runs inside the caller's session."""
    domain = (domain or default_domain(name)).lower()
    existing = db.execute(
        text("SELECT id, name, status FROM companies WHERE domain = :domain"),
        {"domain": domain}
    ).mappings().fetchone()
    if existing:
        return dict(existing)

    created = db.execute(
        text("""
            INSERT INTO companies (name, domain, siren, sector, size, status)
            VALUES (:name, :domain, :siren, :sector, :size, 'PENDING')
            RETURNING id, name, status
        """),
        {"name": name, "domain": domain, "siren": siren, "sector": sector, "size": size}
    ).mappings().fetchone()
    logger.info("Company created (pending validation): %s <%s>", name, domain)
    return dict(created)


def create_membership(db, user_id: str, company_id: str, role: str = "ADMIN_RH", is_primary: bool = True) -> None:
    db.execute(
        text("""
            INSERT INTO company_memberships (user_id, company_id, role_in_company, is_primary, accepted_at)
            VALUES (:user_id, :company_id, :role, :is_primary, NOW())
            ON CONFLICT (user_id, company_id) DO UPDATE SET removed_at = NULL
        """),
        {"user_id": user_id, "company_id": company_id, "role": role, "is_primary": is_primary}
    )


def get_company(company_id: str) -> Optional[dict]:
    rows = execute_raw_sql(f"SELECT {COMPANY_COLUMNS} FROM companies c WHERE c.id = :id", {"id": company_id})
    return rows[0] if rows else None


def get_user_companies(user_id: str) -> List[dict]:
    return execute_raw_sql(f"""
        SELECT {COMPANY_COLUMNS}, cm.role_in_company, cm.is_primary
        FROM company_memberships cm
        JOIN companies c ON c.id = cm.company_id
        WHERE cm.user_id = :user_id AND cm.removed_at IS NULL
        ORDER BY cm.is_primary DESC, c.name
    """, {"user_id": user_id})


def get_company_recruiters(company_id: str) -> List[dict]:
    return execute_raw_sql("""
        SELECT u.id, u.name, u.email, u.phone, cm.role_in_company, cm.is_primary
        FROM company_memberships cm
        JOIN users u ON u.id = cm.user_id
        WHERE cm.company_id = :company_id AND cm.removed_at IS NULL AND u.deleted_at IS NULL
        ORDER BY cm.is_primary DESC
    """, {"company_id": company_id})


def update_company(company_id: str, changes: dict) -> Optional[dict]:
    updates = []
    params = {"id": company_id}
    for field, value in changes.items():
        if value is not None:
            updates.append(f"{field} = :{field}")
            params[field] = value
    if not updates:
        return get_company(company_id)

    updates.append("updated_at = NOW()")
    rows = execute_raw_sql(f"""
        UPDATE companies c SET {', '.join(updates)}
        WHERE c.id = :id
        RETURNING {COMPANY_COLUMNS}
    """, params)
    return rows[0] if rows else None


def log_admin_action(actor_id: Optional[str], entity_type: str, entity_id: Optional[str],
                     action: str, details: Optional[dict] = None) -> None:
    execute_raw_sql("""
        INSERT INTO audit_logs (actor_user_id, entity_type, entity_id, action, details)
        VALUES (:actor, :entity_type, :entity_id, :action, CAST(:details AS jsonb))
        RETURNING id
    """, {
        "actor": actor_id, "entity_type": entity_type, "entity_id": entity_id,
        "action": action, "details": json.dumps(details or {}, default=str)
    })


def set_company_status(company_id: str, status: str, reason: Optional[str] = None,
                       actor_id: Optional[str] = None, notify: bool = True,
                       action: Optional[str] = None) -> Optional[dict]:
    """
    Move a company to VERIFIED or REJECTED, write an audit log entry and
    notify its recruiters in-app. Returns None if the company does not exist.
    """
    if status not in ("VERIFIED", "REJECTED"):
        raise ValueError(f"Statut d'entreprise invalide: {status}")

    rows = execute_raw_sql(f"""
        UPDATE companies c SET
            status = :status,
            validation_reason = :reason,
            validated_at = CASE WHEN :status = 'VERIFIED' THEN NOW() ELSE c.validated_at END,
            updated_at = NOW()
        WHERE c.id = :id
        RETURNING {COMPANY_COLUMNS}
    """, {"id": company_id, "status": status, "reason": reason})
    if not rows:
        return None
    company = rows[0]

    log_admin_action(actor_id, "company", company_id, action or f"STATUS_{status}", {"reason": reason})
    logger.info("Company %s set to %s", company_id, status)

    if notify:
        type_ = "COMPANY_APPROVED" if status == "VERIFIED" else "COMPANY_REJECTED"
        for recruiter in get_company_recruiters(company_id):
            create_notification(recruiter["id"], type_, {
                "company_id": str(company_id),
                "company_name": company["name"],
                "reason": reason
            })
    return company


def get_pending_companies(limit: int = 20, offset: int = 0) -> List[dict]:
    return execute_raw_sql(f"""
        SELECT {COMPANY_COLUMNS}
        FROM companies c
        WHERE c.status = 'PENDING'
        ORDER BY c.created_at ASC
        LIMIT :limit OFFSET :offset
    """, {"limit": limit, "offset": offset})


def get_company_stats() -> dict:
    rows = execute_raw_sql("""
        SELECT COUNT(*) AS total,
               COUNT(*) FILTER (WHERE status = 'VERIFIED') AS verified,
               COUNT(*) FILTER (WHERE status = 'PENDING') AS pending,
               COUNT(*) FILTER (WHERE status = 'REJECTED') AS rejected
        FROM companies
    """)
    return rows[0]


def list_companies(search: Optional[str] = None, status: Optional[str] = None,
                   limit: int = 20, offset: int = 0) -> dict:
    where = ["1 = 1"]
    params = {"limit": limit, "offset": offset}
    if search:
        where.append("(c.name ILIKE :search OR c.domain ILIKE :search)")
        params["search"] = f"%{search}%"
    if status:
        where.append("c.status = :status")
        params["status"] = status

    clause = " AND ".join(where)
    companies = execute_raw_sql(f"""
        SELECT {COMPANY_COLUMNS},
               (SELECT COUNT(*) FROM job_offers o WHERE o.company_id = c.id) AS offers_count
        FROM companies c
        WHERE {clause}
        ORDER BY c.created_at DESC
        LIMIT :limit OFFSET :offset
    """, params)
    total = execute_raw_sql(f"SELECT COUNT(*) AS total FROM companies c WHERE {clause}", params)[0]["total"]
    return {"companies": companies, "total": total}
