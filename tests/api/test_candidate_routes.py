from unittest.mock import patch

import pytest

from app.services.ai_client import AIServiceError, AINotConfiguredError

ROUTES = "app.api.routes.candidate_routes"


@pytest.fixture
def candidate(login_as, candidate_user):
    return login_as(candidate_user)


def test_profile_is_candidate_only(client, login_as, recruiter_user):
    login_as(recruiter_user)
    assert client.get("/api/candidate/profile").status_code == 403


def test_get_profile(client, candidate, sql_responder):
    responder = sql_responder(
        ("INSERT INTO candidate_profiles", []),
        ("FROM users u", [{"id": candidate["id"], "name": "Alice", "title": "Développeuse"}]),
        ("FROM educations", [{"id": "edu-1", "school": "INSA"}]),
        ("FROM experiences", []),
        ("FROM candidate_skills", [{"skill_id": "s-1", "level": 4, "display_name": "Python"}]),
    )
    with patch(f"{ROUTES}.execute_raw_sql", side_effect=responder) as mock_sql:
        response = client.get("/api/candidate/profile")

    assert response.status_code == 200
    body = response.json()
    assert body["educations"][0]["school"] == "INSA"
    assert body["skills"][0]["display_name"] == "Python"
    assert "ON CONFLICT (user_id) DO NOTHING" in mock_sql.call_args_list[0].args[0]


def test_update_profile(client, candidate, fake_db):
    with patch(f"{ROUTES}.execute_raw_sql", return_value=[]), \
            patch(f"{ROUTES}.get_db_session", return_value=fake_db.context):
        response = client.put("/api/candidate/profile", json={
            "city": "Lyon", "mobility_km": 40, "preferred_contracts": ["CDI", "FREELANCE"]
        })

    assert response.status_code == 200
    user_sql, params = fake_db.session.execute.call_args_list[0].args
    assert "UPDATE users SET city = :city" in str(user_sql)
    profile_sql, _ = fake_db.session.execute.call_args_list[1].args
    assert "mobility_km = :mobility_km" in str(profile_sql)
    assert params["preferred_contracts"] == ["CDI", "FREELANCE"]


def test_update_profile_without_fields(client, candidate):
    assert client.put("/api/candidate/profile", json={}).status_code == 400


def test_update_unknown_education(client, candidate):
    with patch(f"{ROUTES}.execute_raw_sql", return_value=[]):
        response = client.put("/api/candidate/educations/edu-404", json={"degree": "Master"})
    assert response.status_code == 404


def test_add_experience(client, candidate):
    row = {"id": "exp-1", "role_title": "Développeuse", "company": "Acme"}
    with patch(f"{ROUTES}.execute_raw_sql", return_value=[row]):
        response = client.post("/api/candidate/experiences", json={"role_title": "Développeuse", "company": "Acme"})
    assert response.status_code == 201


def test_add_skill_needs_id_or_name(client, candidate):
    assert client.post("/api/candidate/skills", json={"level": 3}).status_code == 400


def test_add_unknown_skill_id(client, candidate, fake_db):
    fake_db.session.execute.return_value.fetchone.return_value = None
    with patch(f"{ROUTES}.get_db_session", return_value=fake_db.context):
        response = client.post("/api/candidate/skills", json={"skill_id": "s-404"})
    assert response.status_code == 404


def test_add_skill_by_name_creates_it(client, candidate, fake_db):
    # lookup finds nothing, then the insert returns the new id
    fake_db.session.execute.return_value.scalar.side_effect = [None, "s-new"]
    fake_db.session.execute.return_value.fetchone.return_value = None
    with patch(f"{ROUTES}.get_db_session", return_value=fake_db.context):
        response = client.post("/api/candidate/skills", json={"name": " Terraform ", "level": 4})

    assert response.status_code == 201
    assert response.json()["skill_id"] == "s-new"
    lookup, create = fake_db.session.execute.call_args_list[:2]
    assert "lower(display_name) = lower(:name)" in str(lookup.args[0])
    assert "INSERT INTO skills" in str(create.args[0])
    assert create.args[1]["slug"] == "terraform"
    assert create.args[1]["name"] == "Terraform"
    assert create.args[1]["category"] == "Autre"


@pytest.mark.parametrize("name, slug, display_name", [
    ("C#", "csharp", "C#"),
    ("c++", "cpp", "C++"),
    ("Node.js", "nodejs", "Node.js"),
])
def test_add_skill_by_name_reuses_referential_skill(client, candidate, fake_db, name, slug, display_name):
    fake_db.session.execute.return_value.scalar.return_value = f"s-{slug}"
    fake_db.session.execute.return_value.fetchone.return_value = None
    with patch(f"{ROUTES}.get_db_session", return_value=fake_db.context):
        response = client.post("/api/candidate/skills", json={"name": name})

    assert response.status_code == 201
    assert response.json()["skill_id"] == f"s-{slug}"
    lookup = fake_db.session.execute.call_args_list[0]
    assert lookup.args[1] == {"slug": slug, "name": display_name}
    executed = [str(call.args[0]) for call in fake_db.session.execute.call_args_list]
    assert not any("INSERT INTO skills" in sql for sql in executed)


def test_add_skill_with_unusable_name(client, candidate, fake_db):
    with patch(f"{ROUTES}.get_db_session", return_value=fake_db.context):
        response = client.post("/api/candidate/skills", json={"name": "!!"})
    assert response.status_code == 400


def test_add_skill_twice(client, candidate, fake_db):
    fake_db.session.execute.return_value.fetchone.return_value = (1,)
    with patch(f"{ROUTES}.get_db_session", return_value=fake_db.context):
        response = client.post("/api/candidate/skills", json={"skill_id": "s-1"})
    assert response.status_code == 409


def test_skill_level_out_of_range(client, candidate):
    assert client.put("/api/candidate/skills/s-1", json={"level": 6}).status_code == 400


def test_remove_missing_skill(client, candidate):
    with patch(f"{ROUTES}.execute_raw_sql", return_value=[]):
        assert client.delete("/api/candidate/skills/s-1").status_code == 404


def test_save_unknown_offer(client, candidate):
    with patch(f"{ROUTES}.execute_raw_sql", return_value=[]):
        assert client.post("/api/candidate/saved-offers/offer-404").status_code == 404


def test_save_offer(client, candidate):
    with patch(f"{ROUTES}.execute_raw_sql", return_value=[{"id": "offer-1"}]) as mock_sql:
        response = client.post("/api/candidate/saved-offers/offer-1")
    assert response.status_code == 201
    assert "ON CONFLICT DO NOTHING" in mock_sql.call_args_list[1].args[0]


PROFILE_ROWS = (
    ("INSERT INTO candidate_profiles", []),
    ("FROM users u", [{"id": "cand", "name": "Alice", "title": "Développeuse"}]),
    ("FROM educations", []),
    ("FROM experiences", []),
    ("FROM candidate_skills", [{"skill_id": "s-1", "level": 4, "display_name": "Python"}]),
)


def test_generate_cv(client, candidate, sql_responder):
    with patch(f"{ROUTES}.execute_raw_sql", side_effect=sql_responder(*PROFILE_ROWS)), \
            patch(f"{ROUTES}.get_ai_client") as get_client:
        get_client.return_value.generate_cv_content.return_value = "RÉSUMÉ PROFESSIONNEL: ..."
        response = client.post("/api/candidate/cv/generate")

    assert response.status_code == 200
    assert response.json()["content"] == "RÉSUMÉ PROFESSIONNEL: ..."
    profile = get_client.return_value.generate_cv_content.call_args.args[0]
    assert profile["skills"][0]["display_name"] == "Python"


def test_generate_cv_without_ai_provider(client, candidate, sql_responder):
    with patch(f"{ROUTES}.execute_raw_sql", side_effect=sql_responder(*PROFILE_ROWS)), \
            patch(f"{ROUTES}.get_ai_client") as get_client:
        get_client.return_value.generate_cv_content.side_effect = AINotConfiguredError("Service IA non configuré")
        response = client.post("/api/candidate/cv/generate")
    assert response.status_code == 503


def test_generate_cv_provider_failure(client, candidate, sql_responder):
    with patch(f"{ROUTES}.execute_raw_sql", side_effect=sql_responder(*PROFILE_ROWS)), \
            patch(f"{ROUTES}.get_ai_client") as get_client:
        get_client.return_value.generate_cv_content.side_effect = AIServiceError("Réponse vide du service IA")
        response = client.post("/api/candidate/cv/generate")
    assert response.status_code == 502


def test_generate_cover_letter(client, candidate, sql_responder):
    responder = sql_responder(
        ("FROM job_offers o", [{"id": "offer-1", "title": "Développeur Backend", "company_name": "Acme"}]),
        ("FROM job_offer_skills", [{"display_name": "Python"}, {"display_name": "SQL"}]),
        *PROFILE_ROWS,
    )
    with patch(f"{ROUTES}.execute_raw_sql", side_effect=responder), \
            patch(f"{ROUTES}.get_ai_client") as get_client:
        get_client.return_value.generate_cover_letter_content.return_value = "Madame, Monsieur, ..."
        response = client.post("/api/candidate/lm/generate",
                               json={"offer_id": "offer-1", "custom_message": "Disponible en septembre."})

    assert response.status_code == 200
    assert response.json()["offer_id"] == "offer-1"
    profile, offer, message = get_client.return_value.generate_cover_letter_content.call_args.args
    assert offer["required_skills"] == ["Python", "SQL"]
    assert profile["name"] == "Alice"
    assert message == "Disponible en septembre."


def test_generate_cover_letter_unknown_offer(client, candidate):
    with patch(f"{ROUTES}.execute_raw_sql", return_value=[]), \
            patch(f"{ROUTES}.get_ai_client") as get_client:
        response = client.post("/api/candidate/lm/generate", json={"offer_id": "offer-404"})
    assert response.status_code == 404
    get_client.return_value.generate_cover_letter_content.assert_not_called()
