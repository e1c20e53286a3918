from datetime import datetime
from unittest.mock import patch

ROUTES = "app.api.routes.recruiter_routes"
COMPANY_ID = "cccccccc-cccc-cccc-cccc-cccccccccccc"


def test_dashboard_pending_company(client, login_as, pending_recruiter_user):
    login_as(pending_recruiter_user)
    response = client.get("/api/recruiter/dashboard")

    assert response.status_code == 403
    detail = response.json()["detail"]
    assert detail["requires_validation"] is True
    assert detail["status"] == "pending"


def test_dashboard_rejected_company(client, login_as, recruiter_user):
    recruiter_user["memberships"][0]["company_status"] = "REJECTED"
    login_as(recruiter_user)
    assert client.get("/api/recruiter/dashboard").json()["detail"]["status"] == "rejected"


def test_dashboard(client, login_as, recruiter_user, sql_responder):
    login_as(recruiter_user)
    responder = sql_responder(
        ("FROM applications a", [{"total": 3, "pending": 1, "in_progress": 1, "interviews": 1, "hired": 0, "rejected": 0}]),
        ("FROM job_offers", [{"total": 2, "active": 2, "archived": 0, "expired": 0}]),
    )
    with patch(f"{ROUTES}.execute_raw_sql", side_effect=responder) as mock_sql:
        response = client.get("/api/recruiter/dashboard")

    assert response.status_code == 200
    stats = response.json()["stats"]
    assert stats["offers"]["active"] == 2
    assert stats["applications"]["total"] == 3
    assert stats["companies"][0]["name"] == "Acme"
    assert mock_sql.call_args_list[0].args[1] == {"ids": [COMPANY_ID]}


def test_validation_check(client, login_as, recruiter_user, pending_recruiter_user):
    login_as(recruiter_user)
    assert client.get("/api/recruiter/validation-check").json()["status"] == "validated"
    login_as(pending_recruiter_user)
    assert client.get("/api/recruiter/validation-check").status_code == 403


def test_company_offers_of_other_company(client, login_as, recruiter_user):
    login_as(recruiter_user)
    assert client.get("/api/recruiter/companies/other-company/offers").status_code == 403


def test_offer_applications_sorted_by_score(client, login_as, recruiter_user, sql_responder):
    login_as(recruiter_user)
    responder = sql_responder(
        ("FROM job_offers WHERE id", [{"id": "offer-1", "company_id": COMPANY_ID, "title": "Dev", "premium_until": None}]),
        ("COUNT(*) AS total", [{"total": 1}]),
        ("FROM applications a", [{"id": "app-1", "score": 80}]),
    )
    with patch(f"{ROUTES}.execute_raw_sql", side_effect=responder) as mock_sql:
        response = client.get("/api/recruiter/offers/offer-1/applications", params={"sort": "score_asc"})

    assert response.status_code == 200
    assert response.json()["pagination"]["total"] == 1
    assert "ORDER BY a.score ASC NULLS LAST" in mock_sql.call_args_list[2].args[0]


def test_premium_defaults_to_30_days(client, login_as, recruiter_user, sql_responder):
    login_as(recruiter_user)
    responder = sql_responder(
        ("SELECT id, company_id", [{"id": "offer-1", "company_id": COMPANY_ID, "title": "Dev", "premium_until": None}]),
        ("UPDATE job_offers", lambda p: [{"id": "offer-1", "title": "Dev", "premium_until": p["premium_until"]}]),
    )
    with patch(f"{ROUTES}.execute_raw_sql", side_effect=responder) as mock_sql:
        response = client.patch("/api/recruiter/offers/offer-1/premium")

    assert response.status_code == 200
    premium_until = mock_sql.call_args_list[1].args[1]["premium_until"]
    assert 29 <= (premium_until - datetime.utcnow()).days <= 30


def test_premium_on_foreign_offer(client, login_as, recruiter_user):
    login_as(recruiter_user)
    with patch(f"{ROUTES}.execute_raw_sql",
               return_value=[{"id": "offer-1", "company_id": "other", "title": "Dev", "premium_until": None}]):
        response = client.patch("/api/recruiter/offers/offer-1/premium", json={"duration_days": 7})
    assert response.status_code == 403


def test_company_applications_are_rescored(client, login_as, recruiter_user, sql_responder):
    login_as(recruiter_user)
    responder = sql_responder(
        ("COUNT(*) AS total", [{"total": 1}]),
        ("FROM applications a", [{"id": "app-1", "offer_id": "offer-1", "candidate_id": "cand-1",
                                   "score": 10, "explanation": "old"}]),
        ("FROM job_offers WHERE id = ANY", [{"id": "offer-1", "contract_type": "CDI"}]),
    )
    candidate = {"user": {"id": "cand-1"}, "experience_years": 0, "candidate_skills": []}
    with patch(f"{ROUTES}.execute_raw_sql", side_effect=responder), \
            patch(f"{ROUTES}.attach_offer_skills", side_effect=lambda rows: rows), \
            patch(f"{ROUTES}.load_candidate_for_matching", return_value=candidate):
        response = client.get(f"/api/recruiter/companies/{COMPANY_ID}/applications")

    application = response.json()["data"][0]
    assert application["score"] == 65
    assert application["explanation"].startswith("Score 65")


def test_csv_export(client, login_as, recruiter_user):
    login_as(recruiter_user)
    rows = [{
        "id": "app-1", "status": "ENTRETIEN", "score": 72,
        "created_at": datetime(2024, 3, 5), "updated_at": None,
        "offer_title": "Développeur Python", "contract_type": "CDI",
        "name": 'Alice "Ali" Martin', "email": "alice@example.com", "phone": None, "city": "Paris",
        "candidate_title": None, "experience_years": None,
    }]
    with patch(f"{ROUTES}.execute_raw_sql", return_value=rows):
        response = client.get(f"/api/recruiter/companies/{COMPANY_ID}/applications/export")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "candidatures.csv" in response.headers["content-disposition"]
    text = response.content.decode("utf-8")
    assert text.startswith("\ufeff")
    header, line = text.lstrip("\ufeff").strip().split("\n")
    assert header.startswith('"ID","Candidat","Email"')
    assert '"Alice ""Ali"" Martin"' in line
    assert '"05/03/2024"' in line
    assert line.endswith('"72","05/03/2024",""')


def test_csv_export_other_company(client, login_as, recruiter_user):
    login_as(recruiter_user)
    assert client.get("/api/recruiter/companies/other/applications/export").status_code == 403
