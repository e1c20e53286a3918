import httpx
import pytest

from app.services.france_travail_client import (
    FranceTravailClient, FranceTravailError, normalize_offer, extract_salary,
    generate_dedup_hash, map_contract_type, map_experience_level
)

RAW_OFFER = {
    "id": "182XKPL",
    "intitule": "Développeur Java H/F",
    "description": "Vous développerez des API Spring Boot.",
    "dateCreation": "2024-03-01T10:00:00.000Z",
    "lieuTravail": {"libelle": "69 - LYON 03", "latitude": 45.76, "longitude": 4.85},
    "entreprise": {"nom": "ACME"},
    "typeContrat": "MIS",
    "experienceExige": "S",
    "salaire": {"libelle": "Annuel de 35000 Euros à 45000 Euros"},
    "origineOffre": {"urlOrigine": "https://candidat.francetravail.fr/offres/recherche/detail/182XKPL"},
}


def test_map_contract_type():
    assert map_contract_type("CDI") == "CDI"
    assert map_contract_type("MIS") == "INTERIM"
    assert map_contract_type("APP") == "ALTERNANCE"
    assert map_contract_type("XYZ") == "CDD"
    assert map_contract_type(None) == "CDD"


def test_map_experience_level():
    assert map_experience_level("D") == 0
    assert map_experience_level("E") == 5
    assert map_experience_level(None) == 0


def test_extract_salary():
    assert extract_salary("Annuel de 35000 Euros à 45000 Euros") == {"min": 35000, "max": 45000}
    assert extract_salary("Mensuel de 2500 Euros") == {"min": 2500, "max": 2500}
    assert extract_salary("Selon profil") == {"min": None, "max": None}
    assert extract_salary(None) == {"min": None, "max": None}


def test_normalize_offer():
    offer = normalize_offer(RAW_OFFER)

    assert offer["title"] == "Développeur Java H/F"
    assert offer["city"] == "69 - LYON 03"
    assert offer["contract_type"] == "INTERIM"
    assert offer["experience_min"] == 2
    assert (offer["salary_min"], offer["salary_max"]) == (35000, 45000)
    assert offer["source"] == "EXTERNAL"
    assert offer["status"] == "ACTIVE"
    assert offer["admin_status"] == "PENDING"
    assert offer["france_travail_id"] == "182XKPL"
    assert offer["france_travail_data"] is RAW_OFFER
    assert offer["source_url"].endswith("182XKPL")


def test_normalize_offer_defaults():
    offer = normalize_offer({"id": "1"})
    assert offer["title"] == "Offre sans titre"
    assert offer["description"] == ""
    assert offer["published_at"]


def test_dedup_hash_is_stable_and_case_insensitive():
    upper = {**RAW_OFFER, "intitule": RAW_OFFER["intitule"].upper()}
    assert generate_dedup_hash(RAW_OFFER) == generate_dedup_hash(upper)
    assert generate_dedup_hash(RAW_OFFER) != generate_dedup_hash({**RAW_OFFER, "id": "OTHER"})
    assert len(generate_dedup_hash(RAW_OFFER)) == 64


def make_client(handler):
    return FranceTravailClient("client-id", "secret", transport=httpx.MockTransport(handler))


async def test_token_is_cached_between_calls():
    calls = {"token": 0, "search": 0}

    def handler(request: httpx.Request):
        if request.method == "POST":
            calls["token"] += 1
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 1499})
        calls["search"] += 1
        assert request.headers["Authorization"] == "Bearer tok"
        assert request.url.params["domaine"] == "M18"
        return httpx.Response(206, json={"resultats": [RAW_OFFER]})

    client = make_client(handler)
    first = await client.search_offers({"domaine": "M18"})
    await client.search_offers()

    assert first["resultats"][0]["id"] == "182XKPL"
    assert calls == {"token": 1, "search": 2}


async def test_no_content_returns_empty_dict():
    def handler(request: httpx.Request):
        if request.method == "POST":
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 1499})
        return httpx.Response(204)

    assert await make_client(handler).search_offers() == {}


async def test_token_failure_raises():
    def handler(request: httpx.Request):
        return httpx.Response(401, json={"error": "invalid_client"})

    with pytest.raises(FranceTravailError):
        await make_client(handler).get_access_token()


async def test_token_response_without_access_token_raises():
    def handler(request: httpx.Request):
        return httpx.Response(200, json={"token_type": "Bearer"})

    with pytest.raises(FranceTravailError):
        await make_client(handler).get_access_token()


async def test_api_error_raises():
    def handler(request: httpx.Request):
        if request.method == "POST":
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 1499})
        return httpx.Response(500)

    with pytest.raises(FranceTravailError):
        await make_client(handler).get_offer_details("182XKPL")
