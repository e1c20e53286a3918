import pytest
from unittest.mock import patch

from app.services import skills_service
from app.services.skills_service import (
    slugify, predefined_skills, analyze_pasted_offer, extract_skills_for_matching,
    calculate_parsing_confidence, search_skills, delete_skill, merge_skills, find_duplicate_skills,
    canonical_skill, resolve_skill_id
)


def test_slugify():
    assert slugify("Développement Web") == "developpement-web"
    assert slugify("Node.js") == "node-js"
    assert slugify("  Power  BI ") == "power-bi"
    assert slugify("F#") == "fsharp"
    assert slugify("C#") != slugify("C++")


def test_predefined_skills_have_unique_slugs():
    skills = predefined_skills()
    slugs = [s["slug"] for s in skills]
    assert len(slugs) == len(set(slugs))
    assert "react" in slugs


def test_parsing_confidence_bounds():
    assert calculate_parsing_confidence([], "") == 0.0
    assert calculate_parsing_confidence([], "x" * 500) == 0.3
    assert calculate_parsing_confidence([{}] * 10, "x" * 100) == 1.0


def test_analyze_pasted_offer():
    result = analyze_pasted_offer("Développeur Python, maîtrise de Docker obligatoire. Scrum souhaité.")
    importance = {s["name"]: s["importance"] for s in result["detected_skills"]}

    assert importance["Python"] == "Obligatoire"
    assert importance["Docker"] == "Obligatoire"
    assert importance["Scrum"] == "Souhaité"
    assert result["explanation"].startswith("Cette offre contient 3 compétences détectées")
    assert result["extraction_quality"]["skills_count"] == 3
    assert result["skills_summary"]["Méthodologie"] == 1


def test_extract_skills_for_matching_splits_required_and_optional():
    result = extract_skills_for_matching("Jira apprécié, Kanban apprécié, Java indispensable.")
    assert "java" in result["required_skills"]
    assert "jira" in result["optional_skills"]
    assert result["total_skills_count"] == len(result["skills_detail"])


def test_search_skills_requires_two_characters():
    with pytest.raises(ValueError):
        search_skills("a")


def test_search_skills_uses_ilike_pattern():
    with patch("app.services.skills_service.execute_raw_sql", return_value=[]) as mock_sql:
        search_skills(" rea ", limit=5)
    params = mock_sql.call_args.args[1]
    assert params == {"pattern": "%rea%", "limit": 5}


def test_delete_skill_refuses_used_skill():
    with patch.object(skills_service, "get_skill_usage_counts", return_value={"candidates": 2, "offers": 0}), \
            patch("app.services.skills_service.execute_raw_sql") as mock_sql:
        with pytest.raises(ValueError):
            delete_skill("s-1")
    mock_sql.assert_not_called()


def test_merge_refuses_target_among_sources():
    with pytest.raises(ValueError):
        merge_skills(["s-1", "s-2"], "s-2")


def test_find_duplicate_skills():
    rows = [
        {"id": 1, "slug": "react", "display_name": "React"},
        {"id": 2, "slug": "react-2", "display_name": "react "},
        {"id": 3, "slug": "vue-js", "display_name": "Vue.js"},
    ]
    with patch("app.services.skills_service.execute_raw_sql", return_value=rows):
        groups = find_duplicate_skills()
    assert groups == [[rows[0], rows[1]]]


def test_merge_ignores_repeated_sources(fake_db):
    fake_db.session.execute.return_value.scalar.return_value = 2
    with patch("app.services.skills_service.get_db_session", return_value=fake_db.context):
        merged = merge_skills(["s-1", "s-3", "s-1"], "s-2")

    assert merged == 2
    assert fake_db.session.execute.call_args_list[0].args[1]["sources"] == ["s-1", "s-3"]


def test_canonical_skill_prefers_dictionary_entries():
    assert canonical_skill(" C# ")["slug"] == "csharp"
    assert canonical_skill("C++")["slug"] == "cpp"
    assert canonical_skill("node.js") == {"slug": "nodejs", "display_name": "Node.js",
                                          "category": "Développement Backend"}
    assert canonical_skill("Elixir") == {"slug": "elixir", "display_name": "Elixir", "category": "Autre"}


def test_resolve_skill_id_returns_existing_skill(fake_db):
    fake_db.session.execute.return_value.scalar.return_value = "s-csharp"

    assert resolve_skill_id(fake_db.session, "C#") == "s-csharp"
    assert fake_db.session.execute.call_count == 1


def test_resolve_skill_id_creates_unknown_skill(fake_db):
    fake_db.session.execute.return_value.scalar.side_effect = [None, "s-new"]

    assert resolve_skill_id(fake_db.session, "F#", category="Développement") == "s-new"
    insert_params = fake_db.session.execute.call_args_list[1].args[1]
    assert insert_params == {"slug": "fsharp", "name": "F#", "category": "Développement"}


def test_resolve_skill_id_rejects_empty_slug(fake_db):
    with pytest.raises(ValueError):
        resolve_skill_id(fake_db.session, "--")
    fake_db.session.execute.assert_not_called()
