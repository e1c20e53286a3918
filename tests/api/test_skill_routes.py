from unittest.mock import patch

SERVICE = "app.api.routes.skill_routes.skills_service"


def test_search_too_short(client, login_as, candidate_user):
    login_as(candidate_user)
    assert client.get("/api/skills/search", params={"q": "j"}).status_code == 400


def test_search(client, login_as, candidate_user):
    login_as(candidate_user)
    with patch("app.services.skills_service.execute_raw_sql", return_value=[{"id": "s-1", "display_name": "Java"}]):
        response = client.get("/api/skills/search", params={"q": "jav"})
    assert response.json() == {"skills": [{"id": "s-1", "display_name": "Java"}]}


def test_create_skill_name_too_short(client, login_as, recruiter_user):
    login_as(recruiter_user)
    assert client.post("/api/skills", json={"display_name": " a "}).status_code == 400


def test_create_skill(client, login_as, recruiter_user):
    login_as(recruiter_user)
    with patch(f"{SERVICE}.create_skill", return_value={"id": "s-9", "slug": "terraform"}) as create:
        response = client.post("/api/skills", json={"display_name": "Terraform", "category": "DevOps"})
    assert response.status_code == 201
    create.assert_called_once_with("Terraform", "DevOps")


def test_extract(client, login_as, recruiter_user):
    login_as(recruiter_user)
    response = client.post("/api/skills/extract", json={"description": "Java indispensable, Jira apprécié."})
    body = response.json()
    assert "java" in body["required_skills"]
    assert "jira" in body["optional_skills"]
