"""
France Travail API Client

Pulls job offers from the France Travail "Offres d'emploi v2" API and
maps them to job_offers rows.

Auth is OAuth2 client credentials; the access token is cached until
five minutes before it expires.
"""

import hashlib
import logging
import re
import time
from datetime import datetime
from typing import Optional, Dict, Any

import httpx

from app.core.config import get_settings

logger = logging.getLogger(__name__)

BASE_URL = "https://api.francetravail.io"
TOKEN_URL = "https://entreprise.francetravail.fr/connexion/oauth2/access_token?realm=/partenaire"
SCOPE = "api_offresdemploiv2 o2dsoffre"
SEARCH_PATH = "/partenaire/offresdemploi/v2/offres/search"
OFFER_PATH = "/partenaire/offresdemploi/v2/offres/{offer_id}"

TOKEN_SAFETY_MARGIN = 300

DEFAULT_SEARCH_PARAMS = {
    "range": "0-149",
    "sort": "0",            # 0 relevance, 1 creation date, 2 update date
    "domaine": "M18",       # M18 = IT
    "typeContrat": "CDI,CDD,MIS",
    "experienceExigee": "D,S,E",
}

CONTRACT_TYPES = {
    "CDI": "CDI",
    "CDD": "CDD",
    "MIS": "INTERIM",
    "SAI": "ALTERNANCE",
    "APP": "ALTERNANCE",
    "PRO": "ALTERNANCE",
    "LIB": "FREELANCE",
}

# D beginner, S experienced, E expert
EXPERIENCE_LEVELS = {"D": 0, "S": 2, "E": 5}


class FranceTravailError(Exception):
    """Authentication or API failure."""


# ============================================================
# NORMALIZATION
# ============================================================

def map_contract_type(code: Optional[str]) -> str:
    return CONTRACT_TYPES.get(code, "CDD")


def map_experience_level(code: Optional[str]) -> int:
    return EXPERIENCE_LEVELS.get(code, 0)


def extract_salary(label: Optional[str]) -> Dict[str, Optional[int]]:
    """'Annuel de 35000 Euros à 45000 Euros' -> {'min': 35000, 'max': 45000}"""
    if not label:
        return {"min": None, "max": None}
    numbers = re.findall(r"\d+", label)
    if not numbers:
        return {"min": None, "max": None}
    if len(numbers) == 1:
        value = int(numbers[0])
        return {"min": value, "max": value}
    return {"min": int(numbers[0]), "max": int(numbers[1])}


def generate_dedup_hash(raw: dict) -> str:
    title = (raw.get("intitule") or "").lower().strip()
    company = ((raw.get("entreprise") or {}).get("nom") or "unknown").lower().strip()
    location = ((raw.get("lieuTravail") or {}).get("libelle") or "unknown").lower().strip()
    offer_id = raw.get("id") or ""
    key = f"{title}|{company}|{location}|{offer_id}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def normalize_offer(raw: dict) -> dict:
    """Map a raw France Travail offer to a job_offers row (without company_id)."""
    location = raw.get("lieuTravail") or {}
    salary = extract_salary((raw.get("salaire") or {}).get("libelle"))

    return {
        "title": raw.get("intitule") or "Offre sans titre",
        "description": raw.get("description") or "",
        "city": location.get("libelle"),
        "latitude": location.get("latitude"),
        "longitude": location.get("longitude"),
        "contract_type": map_contract_type(raw.get("typeContrat")),
        "experience_min": map_experience_level(raw.get("experienceExige")),
        "salary_min": salary["min"],
        "salary_max": salary["max"],
        "currency": "EUR",
        "source": "EXTERNAL",
        "source_url": (raw.get("origineOffre") or {}).get("urlOrigine"),
        "status": "ACTIVE",
        "admin_status": "PENDING",
        "published_at": raw.get("dateCreation") or datetime.utcnow().isoformat(),
        "dedup_hash": generate_dedup_hash(raw),
        "france_travail_id": raw.get("id"),
        "france_travail_data": raw,
    }


# ============================================================
# CLIENT
# ============================================================

class FranceTravailClient:
    """
    Async client for the France Travail offers API.

    Usage:
        client = get_france_travail_client()
        data = await client.search_offers({"domaine": "M18"})
        for raw in data.get("resultats", []):
            row = normalize_offer(raw)
    """

    def __init__(self, client_id: str = None, client_secret: str = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 30):
        settings = get_settings()
        self.client_id = client_id if client_id is not None else settings.france_travail_client_id
        self.client_secret = client_secret if client_secret is not None else settings.france_travail_client_secret
        self.transport = transport
        self.timeout = timeout
        self.access_token: Optional[str] = None
        self.token_expiry: float = 0

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=self.timeout)

    async def get_access_token(self) -> str:
        if self.access_token and time.time() < self.token_expiry:
            return self.access_token

        logger.info("Requesting a new France Travail access token")
        try:
            async with self._client() as client:
                response = await client.post(
                    TOKEN_URL,
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "scope": SCOPE,
                    },
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("France Travail token request failed: %s", e)
            raise FranceTravailError("Impossible d'obtenir le token d'accès France Travail") from e

        if "access_token" not in payload:
            raise FranceTravailError("Réponse d'authentification France Travail invalide")

        self.access_token = payload["access_token"]
        self.token_expiry = time.time() + int(payload.get("expires_in", 0)) - TOKEN_SAFETY_MARGIN
        return self.access_token

    async def _get(self, path: str, params: Optional[dict] = None) -> Any:
        token = await self.get_access_token()
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{BASE_URL}{path}",
                    params=params,
                    headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("France Travail request %s failed: %s", path, e)
            raise FranceTravailError(f"Erreur API France Travail: {e}") from e

        # 204 = no offer for these criteria
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def search_offers(self, filters: Optional[dict] = None) -> dict:
        params = {**DEFAULT_SEARCH_PARAMS, **(filters or {})}
        data = await self._get(SEARCH_PATH, params)
        logger.info("France Travail search returned %d offer(s)", len(data.get("resultats", []) or []))
        return data

    async def get_offer_details(self, offer_id: str) -> dict:
        return await self._get(OFFER_PATH.format(offer_id=offer_id))


_client: Optional[FranceTravailClient] = None


def get_france_travail_client() -> FranceTravailClient:
    """Get France Travail client singleton (keeps the token cache)."""
    global _client
    if _client is None:
        _client = FranceTravailClient()
    return _client
