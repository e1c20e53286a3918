"""
AI client tests. The OpenAI SDK client is replaced by a mock, no network.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from openai import OpenAIError

from app.services.ai_client import AIClient, AIServiceError, AINotConfiguredError


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def sdk():
    return MagicMock()


@pytest.fixture
def ai(sdk):
    return AIClient(client=sdk, model="test-model")


def sent_prompt(sdk):
    return sdk.chat.completions.create.call_args.kwargs["messages"][1]["content"]


def test_not_configured_without_key():
    client = AIClient(api_key="")
    assert client.is_configured() is False
    with pytest.raises(AINotConfiguredError):
        client.generate_cv_content({})


def test_generate_cv_content(ai, sdk):
    sdk.chat.completions.create.return_value = completion("  RÉSUMÉ PROFESSIONNEL:\nDéveloppeuse...  ")
    profile = {
        "name": "Alice Martin", "title": "Développeuse Python", "experience_years": 4, "city": "Paris",
        "skills": [{"display_name": "Python"}, {"display_name": "Docker"}],
        "experiences": [{"role_title": "Développeuse", "company": "Acme", "start_date": "2021-01-01"}],
        "educations": [],
    }

    assert ai.generate_cv_content(profile) == "RÉSUMÉ PROFESSIONNEL:\nDéveloppeuse..."
    kwargs = sdk.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "test-model"
    assert kwargs["max_tokens"] == 1500
    prompt = sent_prompt(sdk)
    assert "- Python\n- Docker" in prompt
    assert "Développeuse chez Acme (2021-01-01 - En cours)" in prompt
    assert "Aucune formation renseignée" in prompt


def test_generate_cover_letter_content(ai, sdk):
    sdk.chat.completions.create.return_value = completion("Madame, Monsieur, ...")
    offer = {"title": "Développeur Backend", "company_name": "Acme", "required_skills": ["Python", "SQL"]}

    ai.generate_cover_letter_content({"name": "Alice"}, offer, "Je connais bien vos produits.")

    prompt = sent_prompt(sdk)
    assert "Entreprise: Acme" in prompt
    assert "Compétences requises: Python, SQL" in prompt
    assert "Je connais bien vos produits." in prompt
    assert sdk.chat.completions.create.call_args.kwargs["max_tokens"] == 1000


def test_provider_error_is_wrapped(ai, sdk):
    sdk.chat.completions.create.side_effect = OpenAIError("quota exceeded")
    with pytest.raises(AIServiceError) as exc:
        ai.generate_cv_content({})
    assert not isinstance(exc.value, AINotConfiguredError)


def test_empty_response_is_an_error(ai, sdk):
    sdk.chat.completions.create.return_value = completion(None)
    with pytest.raises(AIServiceError):
        ai.generate_cv_content({})


def test_analyze_cv_strips_markdown_fence(ai, sdk):
    sdk.chat.completions.create.return_value = completion('```json\n{"experience_years": 3}\n```')

    assert ai.analyze_cv("Alice Martin, développeuse Python depuis 3 ans") == {"experience_years": 3}
    assert sdk.chat.completions.create.call_args.kwargs["temperature"] == 0.1


@pytest.mark.parametrize("content", ["pas du json", "[1, 2]"])
def test_analyze_cv_rejects_non_object(ai, sdk, content):
    sdk.chat.completions.create.return_value = completion(content)
    with pytest.raises(AIServiceError):
        ai.analyze_cv("...")
