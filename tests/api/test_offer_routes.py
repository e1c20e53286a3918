from unittest.mock import patch

import pytest

ROUTES = "app.api.routes.offer_routes"

OFFERS = [
    {"id": "offer-1", "title": "Développeur Python", "company_id": "c-1"},
    {"id": "offer-2", "title": "Chef de projet", "company_id": "c-1"},
]


def fake_scores(user, offers):
    for offer, score in zip(offers, (80, 40)):
        offer["matching_score"] = score
        offer["matching_explanation"] = f"Score {score} : ..."
    return offers


@pytest.fixture
def search_db(sql_responder):
    responder = sql_responder(
        ("COUNT(*) AS total", [{"total": 2}]),
        ("SELECT", lambda p: [dict(o) for o in OFFERS]),
    )
    with patch(f"{ROUTES}.execute_raw_sql", side_effect=responder) as mock_sql, \
            patch(f"{ROUTES}.attach_offer_skills", side_effect=lambda offers: offers):
        yield mock_sql


def test_search_requires_authentication(client):
    assert client.get("/api/offers/search").status_code in (401, 403)


def test_search_scores_offers_for_candidates(client, login_as, candidate_user, search_db):
    login_as(candidate_user)
    with patch(f"{ROUTES}.score_for_candidate", side_effect=fake_scores):
        response = client.get("/api/offers/search", params={"minScore": 50})

    assert response.status_code == 200
    body = response.json()
    assert [o["id"] for o in body["data"]] == ["offer-1"]
    # total counts the whole result set, minScore only filters the page
    assert body["pagination"] == {"page": 1, "limit": 20, "total": 2, "total_pages": 1}


def test_search_min_score_applies_to_computed_scores(client, login_as, candidate_user, sql_responder):
    login_as(candidate_user)
    offers = [
        {"id": "offer-cdi", "title": "Développeur", "company_id": "c-1", "contract_type": "CDI"},
        {"id": "offer-cdd", "title": "Développeur", "company_id": "c-1", "contract_type": "CDD"},
    ]
    responder = sql_responder(
        ("COUNT(*) AS total", [{"total": 2}]),
        ("SELECT", lambda p: [dict(o) for o in offers]),
    )
    candidate = {"user": {"id": candidate_user["id"]}, "experience_years": 0,
                 "preferred_contracts": ["CDI"], "candidate_skills": []}
    with patch(f"{ROUTES}.execute_raw_sql", side_effect=responder), \
            patch(f"{ROUTES}.attach_offer_skills", side_effect=lambda rows: rows), \
            patch(f"{ROUTES}.load_candidate_for_matching", return_value=candidate):
        body = client.get("/api/offers/search", params={"minScore": 60}).json()

    # the CDD offer scores 0 for a CDI-only candidate and is dropped after scoring
    assert [(o["id"], o["matching_score"]) for o in body["data"]] == [("offer-cdi", 65)]
    assert body["pagination"]["total"] == 2


def test_search_filters_and_visibility(client, login_as, recruiter_user, search_db):
    login_as(recruiter_user)
    with patch(f"{ROUTES}.score_for_candidate") as score:
        response = client.get("/api/offers/search", params={
            "contract_type": "CDI", "experience_min": 3, "salary_min": 40000, "page": 2, "limit": 10
        })

    assert response.status_code == 200
    score.assert_not_called()
    sql, params = search_db.call_args_list[1].args
    assert "o.admin_status = 'APPROVED'" in sql
    assert "INTERVAL '90 days'" in sql
    assert "o.premium_until DESC NULLS LAST" in sql
    assert params["contract_type"] == "CDI"
    assert params["experience_min"] == 3
    assert params["offset"] == 10


def test_search_limit_is_capped(client, login_as, candidate_user):
    login_as(candidate_user)
    assert client.get("/api/offers/search", params={"limit": 51}).status_code == 400


def test_get_offer_not_found(client, login_as, candidate_user):
    login_as(candidate_user)
    with patch(f"{ROUTES}.execute_raw_sql", return_value=[]):
        assert client.get("/api/offers/offer-404").status_code == 404


def test_analyze_offer(client, login_as, candidate_user):
    login_as(candidate_user)
    response = client.post("/api/offers/analyze", json={"text": "Maîtrise de Docker obligatoire."})
    assert response.status_code == 200
    assert response.json()["detected_skills"][0]["name"] == "Docker"


def test_create_offer_requires_verified_company(client, login_as, pending_recruiter_user):
    login_as(pending_recruiter_user)
    response = client.post("/api/offers", json={"title": "Développeur", "description": "Une belle mission."})
    assert response.status_code == 403
    assert response.json()["detail"]["status"] == "pending"


def test_create_offer_is_pending_moderation(client, login_as, recruiter_user, fake_db):
    login_as(recruiter_user)
    created = {"id": "offer-9", "company_id": recruiter_user["memberships"][0]["company_id"],
               "title": "Développeur", "status": "ACTIVE", "admin_status": "PENDING", "source": "INTERNAL",
               "published_at": None}
    fake_db.session.execute.return_value.mappings.return_value.fetchone.return_value = created

    with patch(f"{ROUTES}.get_db_session", return_value=fake_db.context):
        response = client.post("/api/offers", json={
            "title": "Développeur", "description": "Une belle mission.",
            "skills": [{"skill_id": "s-1", "is_required": True}, {"skill_id": "s-2"}]
        })

    assert response.status_code == 201
    assert response.json()["offer"]["admin_status"] == "PENDING"
    skill_params = [c.args[1] for c in fake_db.session.execute.call_args_list[1:]]
    assert [p["weight"] for p in skill_params] == [3, 1]


def test_candidate_cannot_create_offer(client, login_as, candidate_user):
    login_as(candidate_user)
    response = client.post("/api/offers", json={"title": "Développeur", "description": "Une belle mission."})
    assert response.status_code == 403


def test_update_offer_of_other_company(client, login_as, recruiter_user):
    login_as(recruiter_user)
    with patch(f"{ROUTES}.execute_raw_sql", return_value=[{"id": "offer-1", "company_id": "other", "status": "ACTIVE"}]):
        response = client.put("/api/offers/offer-1", json={"title": "Nouveau titre"})
    assert response.status_code == 403


def test_archive_offer(client, login_as, recruiter_user):
    login_as(recruiter_user)
    company_id = recruiter_user["memberships"][0]["company_id"]
    with patch(f"{ROUTES}.execute_raw_sql",
               return_value=[{"id": "offer-1", "company_id": company_id, "status": "ACTIVE"}]) as mock_sql:
        response = client.patch("/api/offers/offer-1/archive")

    assert response.status_code == 200
    assert "status = 'ARCHIVED'" in mock_sql.call_args_list[1].args[0]
