"""
Skills Service

Two concerns:
- Analysis: turn a pasted job offer or a description into a skills
  breakdown (required / optional, confidence, per-category summary)
- Referential: search, create, seed, merge and audit the skills table
"""

import logging
import unicodedata
import re
from typing import List, Dict, Optional

from sqlalchemy import text

from app.db.postgres import get_db_session, execute_raw_sql
from app.services.skills_parsing_service import SKILLS_KEYWORDS, get_skills_parser

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Autre"

# Skills outside the parsing dictionary that the referential still offers
EXTRA_SKILLS = [
    ("ruby", "Ruby", "Développement"),
    ("swift", "Swift", "Développement"),
    ("kotlin", "Kotlin", "Développement"),
    ("dart", "Dart", "Développement"),
    ("svelte", "Svelte", "Développement Web"),
    ("django", "Django", "Développement Backend"),
    ("flask", "Flask", "Développement Backend"),
    ("laravel", "Laravel", "Développement Backend"),
    ("rails", "Ruby on Rails", "Développement Backend"),
    ("sqlite", "SQLite", "Base de données"),
    ("terraform", "Terraform", "DevOps"),
    ("ansible", "Ansible", "DevOps"),
    ("ci-cd", "CI/CD", "DevOps"),
    ("bash", "Bash", "Système"),
    ("nginx", "Nginx", "Système"),
    ("apache", "Apache", "Système"),
    ("html", "HTML", "Développement Web"),
    ("css", "CSS", "Développement Web"),
    ("sass", "Sass", "Développement Web"),
    ("tailwindcss", "Tailwind CSS", "Développement Web"),
    ("bootstrap", "Bootstrap", "Développement Web"),
    ("figma", "Figma", "Design"),
    ("adobe-xd", "Adobe XD", "Design"),
    ("gestion-projet", "Gestion de projet", "Compétences transversales"),
    ("communication", "Communication", "Compétences transversales"),
    ("travail-equipe", "Travail en équipe", "Compétences transversales"),
    ("leadership", "Leadership", "Compétences transversales"),
    ("problem-solving", "Résolution de problèmes", "Compétences transversales"),
    ("anglais", "Anglais", "Langues"),
    ("espagnol", "Espagnol", "Langues"),
    ("allemand", "Allemand", "Langues"),
]


def slugify(value: str) -> str:
    """'Développement Web' -> 'developpement-web', 'F#' -> 'fsharp'"""
    lowered = value.lower().replace("#", "sharp").replace("+", "plus")
    normalized = unicodedata.normalize("NFD", lowered)
    without_accents = "".join(c for c in normalized if unicodedata.category(c) != "Mn")
    slug = re.sub(r"[^a-z0-9]", "-", without_accents)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def predefined_skills() -> List[dict]:
    """Referential seed: every dictionary skill (one per slug) plus EXTRA_SKILLS."""
    seen = {}
    for info in SKILLS_KEYWORDS.values():
        seen.setdefault(info["slug"], {
            "slug": info["slug"], "display_name": info["display_name"], "category": info["category"]
        })
    for slug, display_name, category in EXTRA_SKILLS:
        seen.setdefault(slug, {"slug": slug, "display_name": display_name, "category": category})
    return list(seen.values())


def canonical_skill(name: str) -> dict:
    """
    Slug, display name and category for a free-text skill name.
    Dictionary keywords win: 'c#' -> csharp, 'node.js' -> nodejs.
    """
    name = name.strip()
    info = SKILLS_KEYWORDS.get(name.lower())
    if info:
        return {"slug": info["slug"], "display_name": info["display_name"], "category": info["category"]}
    return {"slug": slugify(name), "display_name": name, "category": DEFAULT_CATEGORY}


def resolve_skill_id(db, name: str, category: Optional[str] = None):
    """
    Id of the referential skill matching a free-text name, by slug or by
    case-insensitive display name. The skill is created only when
    nothing matches.
    """
    skill = canonical_skill(name)
    if not skill["slug"]:
        raise ValueError("Nom de compétence invalide")

    params = {"slug": skill["slug"], "name": skill["display_name"]}
    skill_id = db.execute(text("""
        SELECT id FROM skills
        WHERE slug = :slug OR lower(display_name) = lower(:name)
        ORDER BY (slug = :slug) DESC
        LIMIT 1
    """), params).scalar()
    if skill_id:
        return skill_id

    skill_id = db.execute(text("""
        INSERT INTO skills (slug, display_name, category)
        VALUES (:slug, :name, :category)
        ON CONFLICT (slug) DO UPDATE SET slug = EXCLUDED.slug
        RETURNING id
    """), {**params, "category": category or skill["category"]}).scalar()
    logger.info("Skill created from free text: %s (%s)", skill["display_name"], skill["slug"])
    return skill_id


# ============================================================
# ANALYSIS
# ============================================================

def _is_critical(skill: dict) -> bool:
    return skill["weight"] >= 3 or skill["is_required"]


def calculate_parsing_confidence(skills: List[dict], text_value: str) -> float:
    if not text_value:
        return 0.0
    ratio = len(skills) / (len(text_value) / 100)
    return min(1.0, max(0.3, ratio))


def extract_skills_for_matching(description: str, title: str = "") -> dict:
    skills = get_skills_parser().parse_skills_from_description(description or "", title or "")

    return {
        "required_skills": [s["slug"] for s in skills if _is_critical(s)],
        "optional_skills": [s["slug"] for s in skills if not _is_critical(s)],
        "skills_detail": [
            {
                "skill": s["slug"],
                "name": s["display_name"],
                "category": s["category"],
                "required": _is_critical(s),
                "weight": s["weight"]
            }
            for s in skills
        ],
        "total_skills_count": len(skills),
        "parsing_confidence": calculate_parsing_confidence(skills, description or "")
    }


def analyze_pasted_offer(text_value: str, title: str = "") -> dict:
    """Breakdown of a job offer pasted by a candidate."""
    skills = get_skills_parser().parse_skills_from_description(text_value, title)
    required = [s for s in skills if _is_critical(s)]
    optional = [s for s in skills if not _is_critical(s)]
    confidence = calculate_parsing_confidence(skills, text_value)

    summary: Dict[str, int] = {}
    for s in skills:
        summary[s["category"]] = summary.get(s["category"], 0) + 1

    word_count = len(text_value.split(" "))
    explanation = (
        f"Cette offre contient {len(skills)} compétences détectées avec {round(confidence * 100)}% de confiance. "
        f"{len(required)} compétences sont obligatoires et {len(optional)} sont souhaitées."
    )

    return {
        "detected_skills": (
            [{"name": s["display_name"], "slug": s["slug"], "category": s["category"], "importance": "Obligatoire"}
             for s in required] +
            [{"name": s["display_name"], "slug": s["slug"], "category": s["category"], "importance": "Souhaité"}
             for s in optional]
        ),
        "explanation": explanation,
        "confidence": confidence,
        "skills_summary": summary,
        "extraction_quality": {
            "skills_count": len(skills),
            "text_length": len(text_value),
            "skills_density": len(skills) / (word_count / 100) if word_count else 0,
            "categories_covered": len(summary)
        }
    }


# ============================================================
# REFERENTIAL
# ============================================================

def search_skills(query: str, limit: int = 20) -> List[dict]:
    if not query or len(query.strip()) < 2:
        raise ValueError("La recherche doit contenir au moins 2 caractères")
    pattern = f"%{query.strip()}%"
    return execute_raw_sql("""
        SELECT id, slug, display_name, category
        FROM skills
        WHERE slug ILIKE :pattern OR display_name ILIKE :pattern
        ORDER BY display_name
        LIMIT :limit
    """, {"pattern": pattern, "limit": limit})


def get_all_skills() -> List[dict]:
    return execute_raw_sql("SELECT id, slug, display_name, category FROM skills ORDER BY display_name")


def get_top_skills(limit: int = 20) -> List[dict]:
    """Skills ranked by the number of offers using them."""
    return execute_raw_sql("""
        SELECT s.id, s.slug, s.display_name, s.category,
               COUNT(jos.id) AS offers_count,
               COUNT(jos.id) FILTER (WHERE jos.is_required) AS required_count
        FROM skills s
        JOIN job_offer_skills jos ON jos.skill_id = s.id
        GROUP BY s.id
        ORDER BY offers_count DESC, s.display_name
        LIMIT :limit
    """, {"limit": limit})


def get_skill(skill_id: str) -> Optional[dict]:
    rows = execute_raw_sql(
        "SELECT id, slug, display_name, category, created_at FROM skills WHERE id = :id",
        {"id": skill_id}
    )
    return rows[0] if rows else None


def create_skill(display_name: str, category: Optional[str] = None) -> dict:
    """Insert a skill. A duplicate slug surfaces as IntegrityError (23505)."""
    display_name = display_name.strip()
    slug = slugify(display_name)
    if not slug:
        raise ValueError("Nom de compétence invalide")
    rows = execute_raw_sql("""
        INSERT INTO skills (slug, display_name, category)
        VALUES (:slug, :display_name, :category)
        RETURNING id, slug, display_name, category, created_at
    """, {"slug": slug, "display_name": display_name, "category": category})
    logger.info("Skill created: %s (%s)", display_name, slug)
    return rows[0]


def update_skill(skill_id: str, display_name: Optional[str] = None, category: Optional[str] = None) -> Optional[dict]:
    updates = []
    params = {"id": skill_id}
    if display_name is not None:
        updates.append("display_name = :display_name")
        updates.append("slug = :slug")
        params["display_name"] = display_name.strip()
        params["slug"] = slugify(display_name)
    if category is not None:
        updates.append("category = :category")
        params["category"] = category or None
    if not updates:
        return get_skill(skill_id)

    rows = execute_raw_sql(f"""
        UPDATE skills SET {', '.join(updates)}
        WHERE id = :id
        RETURNING id, slug, display_name, category, created_at
    """, params)
    return rows[0] if rows else None


def get_skill_usage_counts(skill_id: str) -> dict:
    rows = execute_raw_sql("""
        SELECT
            (SELECT COUNT(*) FROM candidate_skills WHERE skill_id = :id) AS candidates,
            (SELECT COUNT(*) FROM job_offer_skills WHERE skill_id = :id) AS offers
    """, {"id": skill_id})
    return rows[0]


def delete_skill(skill_id: str) -> None:
    """Raises ValueError when the skill is still referenced."""
    usage = get_skill_usage_counts(skill_id)
    if usage["candidates"] or usage["offers"]:
        raise ValueError("Impossible de supprimer une compétence utilisée dans des profils ou offres")
    execute_raw_sql("DELETE FROM skills WHERE id = :id RETURNING id", {"id": skill_id})


def merge_skills(source_ids: List[str], target_id: str, new_display_name: Optional[str] = None) -> int:
    """
    Repoint candidate and offer references from source skills to the
    target, then delete the sources. Rows that would duplicate an
    existing (owner, target) pair are dropped.
    """
    source_ids = list(dict.fromkeys(source_ids))
    if target_id in source_ids:
        raise ValueError("La compétence cible ne peut pas être une source")

    with get_db_session() as db:
        params = {"sources": source_ids, "target": target_id}
        found = db.execute(
            text("SELECT COUNT(*) FROM skills WHERE id = ANY(CAST(:sources AS uuid[])) OR id = :target"),
            params
        ).scalar()
        if found != len(source_ids) + 1:
            raise LookupError("Une ou plusieurs compétences non trouvées")

        db.execute(text("""
            DELETE FROM candidate_skills cs
            WHERE cs.skill_id = ANY(CAST(:sources AS uuid[]))
              AND EXISTS (SELECT 1 FROM candidate_skills t WHERE t.user_id = cs.user_id AND t.skill_id = :target)
        """), params)
        db.execute(text("""
            UPDATE candidate_skills SET skill_id = :target
            WHERE id IN (
                SELECT DISTINCT ON (user_id) id FROM candidate_skills
                WHERE skill_id = ANY(CAST(:sources AS uuid[]))
                ORDER BY user_id, level DESC
            )
        """), params)

        db.execute(text("""
            DELETE FROM job_offer_skills jos
            WHERE jos.skill_id = ANY(CAST(:sources AS uuid[]))
              AND EXISTS (SELECT 1 FROM job_offer_skills t WHERE t.job_offer_id = jos.job_offer_id AND t.skill_id = :target)
        """), params)
        db.execute(text("""
            UPDATE job_offer_skills SET skill_id = :target
            WHERE id IN (
                SELECT DISTINCT ON (job_offer_id) id FROM job_offer_skills
                WHERE skill_id = ANY(CAST(:sources AS uuid[]))
                ORDER BY job_offer_id, weight DESC
            )
        """), params)

        # Leftover source rows were duplicates within the same owner; cascade removes them
        db.execute(text("DELETE FROM skills WHERE id = ANY(CAST(:sources AS uuid[]))"), params)

        if new_display_name:
            db.execute(
                text("UPDATE skills SET display_name = :name, slug = :slug WHERE id = :target"),
                {"name": new_display_name.strip(), "slug": slugify(new_display_name), "target": target_id}
            )

    logger.info("Merged skills %s into %s", source_ids, target_id)
    return len(source_ids)


def get_skill_categories() -> List[dict]:
    return execute_raw_sql("""
        SELECT COALESCE(category, :default) AS category, COUNT(*) AS skills_count
        FROM skills
        GROUP BY COALESCE(category, :default)
        ORDER BY category
    """, {"default": DEFAULT_CATEGORY})


def get_skills_stats() -> dict:
    rows = execute_raw_sql("""
        SELECT
            (SELECT COUNT(*) FROM skills) AS total_skills,
            (SELECT COUNT(DISTINCT category) FROM skills) AS categories,
            (SELECT COUNT(DISTINCT skill_id) FROM candidate_skills) AS used_by_candidates,
            (SELECT COUNT(DISTINCT skill_id) FROM job_offer_skills) AS used_by_offers,
            (SELECT COUNT(*) FROM skills s
             WHERE NOT EXISTS (SELECT 1 FROM candidate_skills cs WHERE cs.skill_id = s.id)
               AND NOT EXISTS (SELECT 1 FROM job_offer_skills jos WHERE jos.skill_id = s.id)) AS unused
    """)
    stats = rows[0]
    stats["top_skills"] = get_top_skills(10)
    return stats


def list_skills_admin(search: Optional[str] = None, category: Optional[str] = None,
                      limit: int = 50, offset: int = 0) -> dict:
    """Paged referential with usage counts."""
    where = "WHERE 1 = 1"
    params = {"limit": limit, "offset": offset}
    if search:
        where += " AND (s.display_name ILIKE :search OR s.slug ILIKE :search)"
        params["search"] = f"%{search}%"
    if category:
        where += " AND s.category = :category"
        params["category"] = category

    skills = execute_raw_sql(f"""
        SELECT s.id, s.slug, s.display_name, s.category, s.created_at,
               (SELECT COUNT(*) FROM candidate_skills cs WHERE cs.skill_id = s.id) AS candidates_count,
               (SELECT COUNT(*) FROM job_offer_skills jos WHERE jos.skill_id = s.id) AS offers_count
        FROM skills s
        {where}
        ORDER BY s.display_name
        LIMIT :limit OFFSET :offset
    """, params)
    total = execute_raw_sql(f"SELECT COUNT(*) AS total FROM skills s {where}", params)[0]["total"]
    return {"skills": skills, "total": total}


def find_duplicate_skills() -> List[List[dict]]:
    """Groups of skills whose display names are equal once lowercased and trimmed."""
    skills = execute_raw_sql("SELECT id, slug, display_name FROM skills ORDER BY display_name")
    groups: Dict[str, List[dict]] = {}
    for skill in skills:
        groups.setdefault(skill["display_name"].lower().strip(), []).append(skill)
    return [group for group in groups.values() if len(group) > 1]


def seed_skills() -> int:
    """Insert the predefined referential; existing slugs are left untouched."""
    inserted = 0
    with get_db_session() as db:
        for skill in predefined_skills():
            result = db.execute(
                text("""
                    INSERT INTO skills (slug, display_name, category)
                    VALUES (:slug, :display_name, :category)
                    ON CONFLICT (slug) DO NOTHING
                """),
                skill
            )
            inserted += result.rowcount
    logger.info("Skills referential seeded: %d new skill(s)", inserted)
    return inserted
