"""
Unit tests for the matching heuristics (no database).
"""

import pytest

from app.services.matching_service import (
    MatchingService,
    haversine_distance,
    title_similarity,
    round_half_up,
)

PARIS = (48.8566, 2.3522)
LYON = (45.7640, 4.8357)


def skill(id_, name):
    return {"id": id_, "slug": name.lower(), "display_name": name}


def make_candidate(skills=(), experience_years=3, preferred=None, coords=None, city=None,
                   mobility_km=50, title=None):
    user = {"id": "cand-1", "name": "Alice", "city": city, "latitude": None, "longitude": None}
    if coords:
        user["latitude"], user["longitude"] = coords
    return {
        "user": user,
        "title": title,
        "experience_years": experience_years,
        "mobility_km": mobility_km,
        "preferred_contracts": preferred or [],
        "candidate_skills": [{"skill": s, "level": 4} for s in skills],
    }


def make_offer(required=(), optional=(), contract_type="CDI", experience_min=0, coords=None,
               city=None, title="Développeur Backend"):
    offer = {
        "id": "offer-1", "title": title, "city": city, "latitude": None, "longitude": None,
        "contract_type": contract_type, "experience_min": experience_min,
        "job_offer_skills": (
            [{"is_required": True, "weight": 3, "skill": s} for s in required] +
            [{"is_required": False, "weight": 1, "skill": s} for s in optional]
        ),
    }
    if coords:
        offer["latitude"], offer["longitude"] = coords
    return offer


JAVA = skill("s-java", "Java")
SPRING = skill("s-spring", "Spring")
DOCKER = skill("s-docker", "Docker")
PYTHON = skill("s-python", "Python")


@pytest.fixture
def service():
    return MatchingService()


def test_haversine_paris_lyon():
    distance = haversine_distance(*PARIS, *LYON)
    assert 380 < distance < 400


def test_haversine_same_point_is_zero():
    assert haversine_distance(*PARIS, *PARIS) == pytest.approx(0.0)


def test_title_similarity():
    assert title_similarity("Développeur Java", "développeur java") == 1.0
    assert title_similarity("Développeur Java", "Chef de projet") == 0.0
    assert title_similarity("", "") == 0.0


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(0.5) == 1
    assert round_half_up(86.43) == 86


def test_full_match_without_location(service):
    result = service.calculate_matching_score(
        make_candidate([JAVA, SPRING]), make_offer(required=[JAVA, SPRING])
    )
    assert result["score"] == 95
    assert result["missing_skills"] == []
    assert result["distance_km"] is None
    assert result["explanation"] == "Score 95 : vous correspondez sur 2 compétences (Java, Spring)."


def test_weighted_skills(service):
    # 6 of 7 weight points: Docker (optional) is missing
    result = service.calculate_matching_score(
        make_candidate([JAVA, SPRING]), make_offer(required=[JAVA, SPRING], optional=[DOCKER])
    )
    assert result["score"] == 86
    assert result["missing_skills"] == [{"skill": "Docker", "required": False}]


def test_missing_required_skill_lowers_score(service):
    full = service.calculate_matching_score(make_candidate([JAVA, PYTHON]), make_offer(required=[JAVA, PYTHON]))
    partial = service.calculate_matching_score(make_candidate([JAVA]), make_offer(required=[JAVA, PYTHON]))

    assert partial["score"] < full["score"]
    assert {"skill": "Python", "required": True} in partial["missing_skills"]
    assert "il manque Python" in partial["explanation"]


def test_contract_mismatch_gives_zero(service):
    result = service.calculate_matching_score(
        make_candidate([JAVA], preferred=["CDI"]), make_offer(required=[JAVA], contract_type="CDD")
    )
    assert result["score"] == 0
    assert result["explanation"] == "Type de contrat incompatible : CDD non accepté"
    assert result["hard_filters"] == {"contract_compatible": False}


def test_no_preferred_contracts_accepts_everything(service):
    result = service.calculate_matching_score(
        make_candidate([JAVA]), make_offer(required=[JAVA], contract_type="STAGE")
    )
    assert result["score"] > 0


def test_distance_beyond_mobility_is_penalized(service):
    near = service.calculate_matching_score(
        make_candidate([JAVA], coords=PARIS), make_offer(required=[JAVA], coords=PARIS)
    )
    far = service.calculate_matching_score(
        make_candidate([JAVA], coords=PARIS), make_offer(required=[JAVA], coords=LYON)
    )
    assert near["score"] == 95
    # multiplier floors at 0.2
    assert far["score"] == 19
    assert "vous êtes éloigné de" in far["explanation"]
    assert far["hard_filters"]["max_distance_km"] == 50


def test_offer_without_skills(service):
    result = service.calculate_matching_score(make_candidate([JAVA]), make_offer())
    assert result["score"] == 65
    assert "pas de compétences techniques définies" in result["explanation"]


def test_experience_gap(service):
    result = service.calculate_matching_score(
        make_candidate([JAVA], experience_years=2), make_offer(required=[JAVA], experience_min=5)
    )
    # experience score 0.4
    assert result["score"] == 77
    assert "3 ans d'expérience en moins que requis" in result["explanation"]


def test_same_city_and_similar_title_bonus(service):
    result = service.calculate_matching_score(
        make_candidate([JAVA], city="Paris", title="Développeur Backend"),
        make_offer(required=[JAVA], city="paris", title="Développeur Backend")
    )
    assert result["score"] == 100


def test_skills_match_by_name_containment():
    assert MatchingService.skills_match({"display_name": "Java"}, {"display_name": "Java EE"})
    assert MatchingService.skills_match({"id": 1, "slug": "x"}, {"id": "1", "slug": "y"})
    assert not MatchingService.skills_match({"display_name": "Go"}, {"display_name": "Rust"})
    assert not MatchingService.skills_match(None, {"display_name": "Rust"})


def test_score_offers_for_candidate_annotates_each_offer(service):
    offers = [make_offer(required=[JAVA]), make_offer(required=[PYTHON])]
    service.score_offers_for_candidate(make_candidate([JAVA]), offers)

    assert offers[0]["matching_score"] > offers[1]["matching_score"]
    assert offers[1]["matching_explanation"].startswith("Score ")


def test_inputs_hash_changes_with_skills(service):
    offer = make_offer(required=[JAVA])
    first = service.generate_inputs_hash(make_candidate([JAVA]), offer)
    second = service.generate_inputs_hash(make_candidate([JAVA, SPRING]), offer)
    assert first != second
