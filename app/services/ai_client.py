"""
AI Client

Text generation through an OpenAI-compatible API (DeepSeek by default),
so we use the openai library with a custom base_url.

AI is used ONLY for:
- CV and cover letter drafts (free French text, returned to the candidate)
- CV analysis (text -> strict JSON, reviewed by the candidate before saving)

Nothing generated here is written to the database directly.
"""

import json
import logging
from typing import Optional

from openai import OpenAI, OpenAIError

from app.core.config import get_settings

logger = logging.getLogger(__name__)


class AIServiceError(Exception):
    """The AI provider call failed or returned something unusable."""


class AINotConfiguredError(AIServiceError):
    """No API key: AI features are disabled."""


CV_SYSTEM_PROMPT = (
    "Tu es un expert en rédaction de CV qui aide les candidats "
    "à créer des CV professionnels et attractifs."
)

COVER_LETTER_SYSTEM_PROMPT = (
    "Tu es un expert en rédaction de lettres de motivation qui aide les candidats "
    "à créer des lettres personnalisées et convaincantes."
)

CV_ANALYSIS_SYSTEM_PROMPT = (
    "Tu es un expert en analyse de CV. "
    "Tu extrais les informations de manière précise et structurée."
)

CV_ANALYSIS_FORMAT = """{
  "personal_info": {"name": "string", "title": "string", "email": "string", "phone": "string", "location": "string"},
  "professional_summary": "Résumé professionnel en 2-3 phrases",
  "experience_years": 0,
  "skills": [{"name": "string", "category": "technique|métier|soft_skill", "level": "débutant|intermédiaire|avancé|expert"}],
  "experiences": [{"company": "string", "position": "string", "start_date": "YYYY-MM ou YYYY",
                   "end_date": "YYYY-MM, YYYY ou 'En cours'", "description": "string"}],
  "educations": [{"school": "string", "degree": "string", "field": "string",
                  "start_date": "YYYY", "end_date": "YYYY", "description": "string"}]
}"""


def _lines(items, render, empty: str) -> str:
    rendered = [f"- {render(item)}" for item in items or []]
    return "\n".join(rendered) if rendered else empty


class AIClient:
    """
    Wrapper around the chat completions API.

    `client` can be injected (tests); otherwise one is built from settings
    when an API key is present.
    """

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None,
                 model: Optional[str] = None, client=None):
        settings = get_settings()
        api_key = api_key if api_key is not None else settings.ai_api_key
        self.model = model or settings.ai_model
        self.client = client
        if self.client is None and api_key:
            self.client = OpenAI(api_key=api_key, base_url=base_url or settings.ai_base_url)

    def is_configured(self) -> bool:
        return self.client is not None

    def _call_api(self, system_prompt: str, user_content: str,
                  max_tokens: int = 1000, temperature: float = 0.7) -> str:
        """Single chat completion. Returns the raw text response."""
        if not self.is_configured():
            raise AINotConfiguredError("Service IA non configuré")
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_content}
                ],
                max_tokens=max_tokens,
                temperature=temperature
            )
        except OpenAIError as e:
            logger.error("AI completion failed: %s", e)
            raise AIServiceError("Erreur lors de l'appel au service IA") from e
        content = response.choices[0].message.content
        if not content or not content.strip():
            raise AIServiceError("Réponse vide du service IA")
        return content.strip()

    @staticmethod
    def _extract_json(text: str) -> dict:
        """
        Extract JSON from an API response.
        Handles models that wrap the JSON in markdown code blocks.
        """
        text = text.strip()
        if text.startswith("```json"):
            text = text[7:]
        if text.startswith("```"):
            text = text[3:]
        if text.endswith("```"):
            text = text[:-3]
        try:
            data = json.loads(text.strip())
        except json.JSONDecodeError as e:
            raise AIServiceError("Réponse IA invalide") from e
        if not isinstance(data, dict):
            raise AIServiceError("Réponse IA invalide")
        return data

    # --------------------------------------------------------
    # Documents
    # --------------------------------------------------------

    def generate_cv_content(self, profile: dict) -> str:
        """
        CV draft from a full candidate profile (the GET /candidate/profile shape:
        user and profile fields plus educations, experiences, skills).
        """
        skills = _lines(profile.get("skills"), lambda s: s.get("display_name") or "Compétence",
                        "Aucune compétence renseignée")
        educations = _lines(
            profile.get("educations"),
            lambda e: (f"{e.get('degree') or 'Formation'} en {e.get('field') or 'Domaine non spécifié'}, "
                       f"{e.get('school') or 'Établissement'} "
                       f"({e.get('start_date') or 'Date non spécifiée'} - {e.get('end_date') or 'En cours'})"),
            "Aucune formation renseignée"
        )
        experiences = _lines(
            profile.get("experiences"),
            lambda e: (f"{e.get('role_title') or 'Poste'} chez {e.get('company') or 'Entreprise'} "
                       f"({e.get('start_date') or 'Date non spécifiée'} - {e.get('end_date') or 'En cours'}): "
                       f"{e.get('description') or 'Pas de description'}"),
            "Aucune expérience renseignée"
        )

        prompt = f"""Génère un CV professionnel et attractif en français pour ce candidat.

INFORMATIONS DU CANDIDAT:
Nom: {profile.get('name') or 'Candidat'}
Email: {profile.get('email') or 'Non renseigné'}
Téléphone: {profile.get('phone') or 'Non renseigné'}
Titre recherché: {profile.get('title') or 'Non spécifié'}
Résumé: {profile.get('summary') or 'Aucun résumé fourni'}
Années d'expérience: {profile.get('experience_years') or 0}
Localisation: {profile.get('city') or 'Non spécifiée'}

COMPÉTENCES:
{skills}

FORMATIONS:
{educations}

EXPÉRIENCES:
{experiences}

INSTRUCTIONS:
1. Crée un résumé professionnel accrocheur de 3-4 lignes
2. Organise les compétences par catégories pertinentes
3. Reformule les expériences pour mettre en valeur les réalisations
4. Garde un ton professionnel mais moderne
5. Retourne uniquement le contenu textuel, pas de formatage HTML

Format de réponse:
RÉSUMÉ PROFESSIONNEL:
COMPÉTENCES:
EXPÉRIENCES PROFESSIONNELLES:
FORMATIONS:"""

        return self._call_api(CV_SYSTEM_PROMPT, prompt, max_tokens=1500)

    def generate_cover_letter_content(self, profile: dict, offer: dict,
                                      custom_message: Optional[str] = None) -> str:
        """Cover letter body (3-4 paragraphs, no header or signature) for one offer."""
        required = ", ".join(offer.get("required_skills") or []) or "Non spécifiées"

        prompt = f"""Génère une lettre de motivation personnalisée et convaincante en français.

INFORMATIONS DU CANDIDAT:
Nom: {profile.get('name') or 'Candidat'}
Titre recherché: {profile.get('title') or 'Non spécifié'}
Résumé: {profile.get('summary') or 'Aucun résumé fourni'}
Années d'expérience: {profile.get('experience_years') or 0}
Localisation: {profile.get('city') or 'Non spécifiée'}

OFFRE D'EMPLOI:
Titre: {offer.get('title') or 'Poste'}
Entreprise: {offer.get('company_name') or 'Non spécifiée'}
Description: {offer.get('description') or 'Non fournie'}
Compétences requises: {required}
Localisation: {offer.get('city') or 'Non spécifiée'}

MESSAGE PERSONNALISÉ DU CANDIDAT:
{custom_message or 'Aucun message personnalisé'}

INSTRUCTIONS:
1. Crée une lettre de motivation de 3-4 paragraphes
2. Commence par une accroche qui montre l'intérêt pour l'entreprise et le poste
3. Mets en avant les compétences et expériences pertinentes pour ce poste
4. Intègre le message personnalisé du candidat s'il y en a un
5. Termine par une formule de politesse et une demande d'entretien
6. Retourne uniquement le contenu de la lettre, sans en-tête ni signature"""

        return self._call_api(COVER_LETTER_SYSTEM_PROMPT, prompt, max_tokens=1000)

    # --------------------------------------------------------
    # CV analysis
    # --------------------------------------------------------

    def analyze_cv(self, cv_text: str) -> dict:
        """Structured extraction of a CV. Returns the raw (unvalidated) JSON object."""
        prompt = f"""Analyse ce CV et extrais les informations au format JSON strict :

{CV_ANALYSIS_FORMAT}

IMPORTANT:
- Réponds UNIQUEMENT avec le JSON, sans texte avant ou après
- Si une information n'est pas trouvée, utilise null
- N'invente pas d'informations

CV à analyser :
{cv_text}"""

        response = self._call_api(CV_ANALYSIS_SYSTEM_PROMPT, prompt, max_tokens=2000, temperature=0.1)
        return self._extract_json(response)


# Singleton instance
_ai_client: Optional[AIClient] = None


def get_ai_client() -> AIClient:
    global _ai_client
    if _ai_client is None:
        _ai_client = AIClient()
    return _ai_client
