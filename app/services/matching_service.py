"""
Matching Service

PURPOSE:
Score how well a candidate fits a job offer (0-100) and explain the
score in one French sentence.

HOW IT WORKS:
1. Hard filter: contract type not accepted by the candidate -> score 0
2. Distance: beyond the candidate's mobility the score is multiplied
   down (never below 0.2, never eliminatory)
3. Skills (60%): required skills weigh 3, optional 1; each missing
   required skill costs 15% (max 60%)
4. Experience (30%): floor of 0.3 when under-experienced
5. Bonus (10%): same city, similar job title

Inputs are plain dicts loaded per request (see load_candidate_for_matching
and load_offer_for_matching). The inputs hash changes every hour so a
trace can be tied back to the data it was computed from.
"""

import hashlib
import json
import logging
import math
import time
from typing import List, Dict, Optional

from app.db.postgres import execute_raw_sql

logger = logging.getLogger(__name__)

SKILLS_WEIGHT = 0.6
EXPERIENCE_WEIGHT = 0.3
BONUS_WEIGHT = 0.1

REQUIRED_SKILL_WEIGHT = 3
OPTIONAL_SKILL_WEIGHT = 1
MISSING_REQUIRED_PENALTY = 0.15
MAX_MISSING_PENALTY = 0.6

DEFAULT_MOBILITY_KM = 50
EARTH_RADIUS_KM = 6371


# ============================================================
# GEOMETRY & TEXT HELPERS
# ============================================================

def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in km."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (math.sin(d_lat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(d_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def title_similarity(text1: str, text2: str) -> float:
    """Jaccard similarity of the lowercased word sets."""
    words1 = set(text1.lower().split())
    words2 = set(text2.lower().split())
    union = words1 | words2
    if not union:
        return 0.0
    return len(words1 & words2) / len(union)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _plural(count: int, word: str) -> str:
    return f"{word}s" if count > 1 else word


def _has_coordinates(entity: dict) -> bool:
    return entity.get("latitude") is not None and entity.get("longitude") is not None


# ============================================================
# MATCHING SERVICE
# ============================================================

class MatchingService:
    """
    Heuristic candidate/offer scoring.

    candidate = {
        "user": {"id", "name", "city", "latitude", "longitude"},
        "title", "experience_years", "mobility_km", "preferred_contracts",
        "candidate_skills": [{"skill": {"id", "slug", "display_name"}, "level"}]
    }
    offer = {
        "id", "title", "city", "latitude", "longitude", "contract_type",
        "experience_min",
        "job_offer_skills": [{"is_required", "weight", "skill": {...}}]
    }
    """

    def calculate_matching_score(self, candidate: dict, offer: dict) -> dict:
        hard = self.check_hard_filters(candidate, offer)
        inputs_hash = self.generate_inputs_hash(candidate, offer)

        if hard["score"] == 0:
            return {
                "score": 0,
                "explanation": hard["explanation"],
                "matched_skills": [],
                "missing_skills": [],
                "distance_km": hard["distance_km"],
                "hard_filters": hard["filters"],
                "inputs_hash": inputs_hash
            }

        skills = self.calculate_skills_match(candidate, offer)
        experience = self.calculate_experience_match(candidate, offer)
        bonus = self.calculate_bonus(candidate, offer)

        raw_score = (SKILLS_WEIGHT * skills["score"] +
                     EXPERIENCE_WEIGHT * experience["score"] +
                     BONUS_WEIGHT * bonus["score"])
        score = max(0, min(100, round_half_up(100 * raw_score * hard["multiplier"])))

        return {
            "score": score,
            "explanation": self.generate_explanation(score, skills, hard, candidate, offer),
            "matched_skills": skills["matched"],
            "missing_skills": skills["missing"],
            "distance_km": hard["distance_km"],
            "hard_filters": hard["filters"],
            "inputs_hash": inputs_hash
        }

    def check_hard_filters(self, candidate: dict, offer: dict) -> dict:
        filters = {}
        multiplier = 1.0
        distance_km = None

        contract_type = offer.get("contract_type")
        preferred = candidate.get("preferred_contracts") or []
        if contract_type and preferred:
            compatible = contract_type in preferred
            filters["contract_compatible"] = compatible
            if not compatible:
                return {
                    "score": 0,
                    "explanation": f"Type de contrat incompatible : {contract_type} non accepté",
                    "filters": filters,
                    "multiplier": 0,
                    "distance_km": None
                }

        user = candidate.get("user") or {}
        if _has_coordinates(user) and _has_coordinates(offer):
            distance_km = haversine_distance(
                float(user["latitude"]), float(user["longitude"]),
                float(offer["latitude"]), float(offer["longitude"])
            )
            max_distance = candidate.get("mobility_km") or DEFAULT_MOBILITY_KM
            filters["distance_km"] = distance_km
            filters["max_distance_km"] = max_distance

            if distance_km > max_distance:
                penalty = min(0.8, (distance_km - max_distance) / max_distance)
                multiplier = max(0.2, 1 - penalty)

        return {
            "score": 1,
            "explanation": "Critères durs respectés",
            "filters": filters,
            "multiplier": multiplier,
            "distance_km": distance_km
        }

    @staticmethod
    def skills_match(candidate_skill: dict, offer_skill: dict) -> bool:
        """Same id, same slug, same name, or one name containing the other."""
        if not candidate_skill or not offer_skill:
            return False
        if candidate_skill.get("id") is not None and str(candidate_skill.get("id")) == str(offer_skill.get("id")):
            return True
        if candidate_skill.get("slug") and candidate_skill.get("slug") == offer_skill.get("slug"):
            return True

        candidate_name = (candidate_skill.get("display_name") or "").lower().strip()
        offer_name = (offer_skill.get("display_name") or "").lower().strip()
        if not candidate_name or not offer_name:
            return False
        # "java" also matches "java ee"
        return candidate_name == offer_name or candidate_name in offer_name or offer_name in candidate_name

    def calculate_skills_match(self, candidate: dict, offer: dict) -> dict:
        candidate_skills = candidate.get("candidate_skills") or []
        offer_skills = offer.get("job_offer_skills") or []

        if not offer_skills:
            return {"score": 0.5, "matched": [], "missing": [], "required_missing": 0}

        matched = []
        missing = []
        total_weight = 0
        matched_weight = 0
        required_missing = 0

        for offer_skill in offer_skills:
            required = bool(offer_skill.get("is_required"))
            weight = REQUIRED_SKILL_WEIGHT if required else OPTIONAL_SKILL_WEIGHT
            total_weight += weight
            skill = offer_skill.get("skill") or {}

            found = next(
                (cs for cs in candidate_skills if self.skills_match(cs.get("skill"), skill)),
                None
            )
            if found:
                matched.append({"skill": skill.get("display_name"), "level": found.get("level"), "required": required})
                matched_weight += weight
            else:
                missing.append({"skill": skill.get("display_name"), "required": required})
                if required:
                    required_missing += 1

        score = matched_weight / total_weight if total_weight else 0.0
        if required_missing:
            score *= 1 - min(MAX_MISSING_PENALTY, required_missing * MISSING_REQUIRED_PENALTY)

        return {"score": max(0.0, score), "matched": matched, "missing": missing, "required_missing": required_missing}

    def calculate_experience_match(self, candidate: dict, offer: dict) -> dict:
        candidate_exp = candidate.get("experience_years") or 0
        required_exp = offer.get("experience_min") or 0

        if required_exp == 0 or candidate_exp >= required_exp:
            return {"score": 1.0, "gap": 0}

        penalty = (required_exp - candidate_exp) / required_exp
        return {"score": max(0.3, 1.0 - penalty), "gap": required_exp - candidate_exp}

    def calculate_bonus(self, candidate: dict, offer: dict) -> dict:
        bonus = 0.5
        details = []

        city = (candidate.get("user") or {}).get("city")
        if city and offer.get("city") and city.lower() == offer["city"].lower():
            bonus += 0.3
            details.append("Même ville")

        if candidate.get("title") and offer.get("title"):
            if title_similarity(candidate["title"], offer["title"]) > 0.5:
                bonus += 0.2
                details.append("Titre de poste similaire")

        return {"score": min(1.0, bonus), "details": details}

    def generate_explanation(self, score: int, skills: dict, hard: dict, candidate: dict, offer: dict) -> str:
        """
        "Score 72 : vous correspondez sur 4 compétences (Java, Spring, Docker...),
        mais il manque Kubernetes et vous êtes éloigné de 20 km."
        """
        positives = []
        negatives = []

        matched = skills["matched"]
        missing = skills["missing"]

        if not matched and not missing:
            positives.append(
                "cette offre n'a pas de compétences techniques définies, score basé sur l'expérience"
            )
        elif matched:
            count = len(matched)
            names = [m["skill"] for m in matched[:3] if m["skill"]]
            label = f"vous correspondez sur {count} {_plural(count, 'compétence')}"
            if names:
                label += f" ({', '.join(names)}{'...' if count > 3 else ''})"
            positives.append(label)
        else:
            negatives.append("aucune compétence correspondante")

        required_missing = [m for m in missing if m["required"]]
        if required_missing:
            names = [m["skill"] for m in required_missing[:2] if m["skill"]]
            if names:
                text = f"il manque {' et '.join(names)}"
                more = len(required_missing) - len(names)
                if more > 0:
                    text += f" (et {more} {_plural(more, 'autre')})"
                negatives.append(text)

        if hard["distance_km"] is not None:
            negatives.append(f"vous êtes éloigné de {round_half_up(hard['distance_km'])} km")

        candidate_exp = candidate.get("experience_years") or 0
        required_exp = offer.get("experience_min") or 0
        if required_exp > 0 and candidate_exp < required_exp:
            gap = required_exp - candidate_exp
            negatives.append(f"{gap} {_plural(gap, 'an')} d'expérience en moins que requis")

        if not positives and not negatives:
            return f"Score {score} : profil général compatible avec l'offre."

        if positives and negatives:
            body = f"{', '.join(positives)}, mais {' et '.join(negatives)}"
        elif positives:
            body = ", ".join(positives)
        else:
            body = ", ".join(negatives)
        return f"Score {score} : {body}."

    def generate_inputs_hash(self, candidate: dict, offer: dict) -> str:
        inputs = {
            "candidate_id": str((candidate.get("user") or {}).get("id")),
            "offer_id": str(offer.get("id")),
            "candidate_skills": sorted(str((cs.get("skill") or {}).get("id")) for cs in candidate.get("candidate_skills") or []),
            "offer_skills": sorted(str((os_.get("skill") or {}).get("id")) for os_ in offer.get("job_offer_skills") or []),
            "experience_years": candidate.get("experience_years"),
            "experience_min": offer.get("experience_min"),
            "mobility_km": candidate.get("mobility_km"),
            "timestamp": int(time.time() // 3600)
        }
        return hashlib.md5(json.dumps(inputs, sort_keys=True).encode()).hexdigest()

    def score_offers_for_candidate(self, candidate: dict, offers: List[dict]) -> List[dict]:
        """Attach matching_score / matching_explanation to each offer dict."""
        for offer in offers:
            try:
                result = self.calculate_matching_score(candidate, offer)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Matching failed for offer %s: %s", offer.get("id"), e)
                offer["matching_score"] = None
                offer["matching_explanation"] = None
                continue
            offer["matching_score"] = result["score"]
            offer["matching_explanation"] = result["explanation"]
        return offers


# ============================================================
# LOADERS
# ============================================================

def _skill_entry(row: dict) -> dict:
    return {"id": row["skill_id"], "slug": row["slug"], "display_name": row["display_name"]}


def load_candidate_for_matching(user_id: str) -> Optional[dict]:
    """Build the candidate dict used by the matcher, or None if the user is unknown."""
    rows = execute_raw_sql("""
        SELECT u.id, u.name, u.city, u.latitude, u.longitude,
               cp.title, cp.experience_years, cp.mobility_km, cp.preferred_contracts
        FROM users u
        LEFT JOIN candidate_profiles cp ON cp.user_id = u.id
        WHERE u.id = :user_id
    """, {"user_id": user_id})
    if not rows:
        return None
    row = rows[0]

    skills = execute_raw_sql("""
        SELECT cs.skill_id, cs.level, s.slug, s.display_name
        FROM candidate_skills cs
        JOIN skills s ON s.id = cs.skill_id
        WHERE cs.user_id = :user_id
    """, {"user_id": user_id})

    return {
        "user": {
            "id": row["id"], "name": row["name"], "city": row["city"],
            "latitude": row["latitude"], "longitude": row["longitude"]
        },
        "title": row["title"],
        "experience_years": row["experience_years"] or 0,
        "mobility_km": row["mobility_km"],
        "preferred_contracts": list(row["preferred_contracts"] or []),
        "candidate_skills": [{"skill": _skill_entry(s), "level": s["level"]} for s in skills]
    }


def attach_offer_skills(offers: List[dict]) -> List[dict]:
    """Load job_offer_skills for a batch of offer dicts in one query."""
    if not offers:
        return offers
    rows = execute_raw_sql("""
        SELECT jos.job_offer_id, jos.skill_id, jos.is_required, jos.weight,
               s.slug, s.display_name, s.category
        FROM job_offer_skills jos
        JOIN skills s ON s.id = jos.skill_id
        WHERE jos.job_offer_id = ANY(CAST(:ids AS uuid[]))
    """, {"ids": [str(o["id"]) for o in offers]})

    by_offer: Dict[str, list] = {}
    for r in rows:
        by_offer.setdefault(str(r["job_offer_id"]), []).append({
            "is_required": r["is_required"],
            "weight": r["weight"],
            "skill": {**_skill_entry(r), "category": r["category"]}
        })
    for offer in offers:
        offer["job_offer_skills"] = by_offer.get(str(offer["id"]), [])
    return offers


def load_offer_for_matching(offer_id: str) -> Optional[dict]:
    rows = execute_raw_sql("""
        SELECT id, company_id, title, city, latitude, longitude, contract_type, experience_min, status
        FROM job_offers WHERE id = :offer_id
    """, {"offer_id": offer_id})
    if not rows:
        return None
    return attach_offer_skills([rows[0]])[0]


def record_match_trace(result: dict, offer_id: str, candidate_id: str,
                       application_id: Optional[str] = None) -> None:
    execute_raw_sql("""
        INSERT INTO match_traces (application_id, offer_id, candidate_id, inputs_hash, score,
                                  matched_skills, missing_skills, distance_km, hard_filters, explanation)
        VALUES (:application_id, :offer_id, :candidate_id, :inputs_hash, :score,
                CAST(:matched AS jsonb), CAST(:missing AS jsonb), :distance_km,
                CAST(:hard_filters AS jsonb), :explanation)
    """, {
        "application_id": application_id,
        "offer_id": offer_id,
        "candidate_id": candidate_id,
        "inputs_hash": result["inputs_hash"],
        "score": result["score"],
        "matched": json.dumps(result["matched_skills"]),
        "missing": json.dumps(result["missing_skills"]),
        "distance_km": result["distance_km"],
        "hard_filters": json.dumps(result["hard_filters"]),
        "explanation": result["explanation"]
    })


# ============================================================
# CONVENIENCE FUNCTIONS
# ============================================================

_matching_service: Optional[MatchingService] = None


def get_matching_service() -> MatchingService:
    """Get matching service singleton."""
    global _matching_service
    if _matching_service is None:
        _matching_service = MatchingService()
    return _matching_service


def calculate_matching_score(candidate: dict, offer: dict) -> dict:
    return get_matching_service().calculate_matching_score(candidate, offer)


def score_offers_for_candidate(candidate: dict, offers: List[dict]) -> List[dict]:
    return get_matching_service().score_offers_for_candidate(candidate, offers)
