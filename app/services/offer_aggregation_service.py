"""
Offer Aggregation Service

Periodically imports France Travail offers into job_offers:
1. Get (or create) the virtual "France Travail" company
2. Search each domain, newest first
3. Normalize, deduplicate on dedup_hash, insert as EXTERNAL / PENDING
   (an admin approves them before they are visible)
4. Attach skills: parsed from the text plus the API's own "competences"
5. Record run counters in sync_stats

Runs in a single asyncio task; is_running prevents overlapping syncs.
"""

import asyncio
import json
import logging
import time
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from app.core.config import get_settings
from app.core.errors import pg_error_code, pg_constraint_name, UNIQUE_VIOLATION
from app.db.postgres import execute_raw_sql
from app.services.france_travail_client import (
    FranceTravailClient, get_france_travail_client, normalize_offer
)
from app.services.skills_parsing_service import SkillsParser, get_skills_parser
from app.services.skills_service import slugify

logger = logging.getLogger(__name__)

FRANCE_TRAVAIL_COMPANY = {
    "name": "France Travail",
    "domain": "francetravail.io",
    "sector": "Services publics",
}

SYNC_DOMAINS = ["M18"]  # IT & telecoms
SYNC_CONTRACT_TYPES = "CDI,CDD,MIS,SAI"
SOURCE_NAME = "FRANCE_TRAVAIL"


class SyncAlreadyRunningError(Exception):
    """A France Travail sync is already in progress."""


class OfferAggregationService:

    def __init__(self, client: Optional[FranceTravailClient] = None,
                 parser: Optional[SkillsParser] = None,
                 domains: Optional[List[str]] = None):
        settings = get_settings()
        self.client = client or get_france_travail_client()
        self.parser = parser or get_skills_parser()
        self.domains = domains or list(SYNC_DOMAINS)
        self.enabled = settings.france_travail_sync_enabled
        self.sync_interval_hours = settings.france_travail_sync_interval_hours
        self.max_offers_per_sync = settings.france_travail_max_offers_per_sync
        self.domain_pause_seconds = 1.0
        self.is_running = False
        self.last_sync_time: Optional[datetime] = None
        self._task: Optional[asyncio.Task] = None

    # --------------------------------------------------------
    # Scheduling
    # --------------------------------------------------------

    def start_auto_sync(self) -> bool:
        """Start the background loop (sync now, then every interval). Must run inside an event loop."""
        if not self.enabled:
            logger.info("France Travail sync disabled")
            return False
        if self._task and not self._task.done():
            logger.warning("France Travail auto sync already started")
            return False

        logger.info("Starting France Travail auto sync (every %sh)", self.sync_interval_hours)
        self._task = asyncio.create_task(self._run_loop())
        return True

    async def stop_auto_sync(self) -> None:
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("France Travail auto sync stopped")

    async def _run_loop(self):
        while True:
            try:
                await self.sync_offers()
            except Exception:
                logger.exception("France Travail sync failed")
            await asyncio.sleep(self.sync_interval_hours * 3600)

    # --------------------------------------------------------
    # Sync
    # --------------------------------------------------------

    async def sync_offers(self) -> Optional[dict]:
        """Run one sync. Returns the recorded stats, or None if a sync was already running."""
        if self.is_running:
            logger.info("France Travail sync already running, skipped")
            return None

        self.is_running = True
        logger.info("France Travail sync started")
        start = time.monotonic()
        totals = {"processed": 0, "created": 0, "skipped": 0, "errors": 0}

        try:
            company_id = await asyncio.to_thread(self.get_or_create_company)
            per_domain = int(min(self.max_offers_per_sync / len(self.domains), 149))

            for domain in self.domains:
                try:
                    result = await self.client.search_offers({
                        "domaine": domain,
                        "range": f"0-{per_domain}",
                        "sort": "1",
                        "typeContrat": SYNC_CONTRACT_TYPES,
                    })
                    offers = result.get("resultats") or []
                    if offers:
                        counts = await asyncio.to_thread(self.process_offers, offers, company_id)
                        for key in totals:
                            totals[key] += counts[key]
                    await asyncio.sleep(self.domain_pause_seconds)
                except Exception:
                    logger.exception("France Travail sync failed for domain %s", domain)
                    totals["errors"] += 1

            stats = {**totals, "duration": int((time.monotonic() - start) * 1000), "source": SOURCE_NAME}
            self.last_sync_time = datetime.utcnow()
            logger.info(
                "France Travail sync done in %sms: %s processed, %s created, %s skipped, %s error(s)",
                stats["duration"], stats["processed"], stats["created"], stats["skipped"], stats["errors"]
            )
            await asyncio.to_thread(self.save_sync_stats, stats)
            return stats
        finally:
            self.is_running = False

    def get_or_create_company(self) -> str:
        rows = execute_raw_sql(
            "SELECT id FROM companies WHERE domain = :domain",
            {"domain": FRANCE_TRAVAIL_COMPANY["domain"]}
        )
        if rows:
            return rows[0]["id"]

        rows = execute_raw_sql("""
            INSERT INTO companies (name, domain, status, sector, validated_at)
            VALUES (:name, :domain, 'VERIFIED', :sector, NOW())
            ON CONFLICT (domain) DO UPDATE SET name = EXCLUDED.name
            RETURNING id
        """, FRANCE_TRAVAIL_COMPANY)
        logger.info("France Travail company created: %s", rows[0]["id"])
        return rows[0]["id"]

    def process_offers(self, offers: List[dict], company_id: str) -> dict:
        counts = {"processed": 0, "created": 0, "skipped": 0, "errors": 0}

        for raw in offers:
            counts["processed"] += 1
            try:
                offer = normalize_offer(raw)
                offer["company_id"] = company_id

                existing = execute_raw_sql(
                    "SELECT id FROM job_offers WHERE dedup_hash = :hash",
                    {"hash": offer["dedup_hash"]}
                )
                if existing:
                    counts["skipped"] += 1
                    continue

                offer_id = self.insert_offer(offer)
                if offer_id is None:
                    counts["skipped"] += 1
                    continue
            except Exception:
                logger.exception("Failed to import France Travail offer %s", raw.get("id"))
                counts["errors"] += 1
                continue

            # The offer exists from here on, skills are best effort
            counts["created"] += 1
            try:
                self.extract_and_associate_skills(raw, offer_id)
            except Exception:
                logger.exception("Skills not associated to imported offer %s", offer_id)

        return counts

    def insert_offer(self, offer: dict) -> Optional[str]:
        """Insert a normalized offer. Returns None when it lost a dedup race."""
        params = {**offer, "france_travail_data": json.dumps(offer["france_travail_data"])}
        try:
            rows = execute_raw_sql("""
                INSERT INTO job_offers (
                    company_id, title, description, city, latitude, longitude, contract_type,
                    experience_min, salary_min, salary_max, currency, source, source_url,
                    status, admin_status, published_at, dedup_hash, france_travail_id, france_travail_data
                ) VALUES (
                    :company_id, :title, :description, :city, :latitude, :longitude, :contract_type,
                    :experience_min, :salary_min, :salary_max, :currency, :source, :source_url,
                    :status, :admin_status, :published_at, :dedup_hash, :france_travail_id,
                    CAST(:france_travail_data AS jsonb)
                )
                RETURNING id
            """, params)
        except IntegrityError as e:
            if pg_error_code(e) == UNIQUE_VIOLATION and pg_constraint_name(e) in (None, "unique_dedup_hash"):
                logger.info("Duplicate offer ignored on insert: %s", offer["title"])
                return None
            raise
        return rows[0]["id"]

    def collect_skills(self, raw: dict) -> List[dict]:
        """Parsed skills plus the API's 'competences' (exigence E = required)."""
        skills = self.parser.parse_skills_from_description(raw.get("description") or "", raw.get("intitule") or "")
        for competence in raw.get("competences") or []:
            label = competence.get("libelle")
            if not label:
                continue
            required = competence.get("exigence") == "E"
            skills.append({
                "slug": slugify(label),
                "display_name": label,
                "category": "France Travail",
                "is_required": required,
                "weight": 3 if required else 1,
            })
        return skills

    def extract_and_associate_skills(self, raw: dict, offer_id: str) -> int:
        matched = self.parser.match_skills_to_database(self.collect_skills(raw))
        if not matched:
            logger.info("No referential skill found for offer %s", offer_id)
            return 0
        return self.parser.update_offer_skills(offer_id, matched)

    def save_sync_stats(self, stats: dict) -> None:
        execute_raw_sql("""
            INSERT INTO sync_stats (source, processed, created, skipped, errors, duration, sync_date)
            VALUES (:source, :processed, :created, :skipped, :errors, :duration, NOW())
            RETURNING id
        """, stats)

    # --------------------------------------------------------
    # Admin helpers
    # --------------------------------------------------------

    def get_sync_stats(self, limit: int = 10) -> List[dict]:
        return execute_raw_sql("""
            SELECT id, source, processed, created, skipped, errors, duration, sync_date
            FROM sync_stats
            ORDER BY sync_date DESC
            LIMIT :limit
        """, {"limit": limit})

    async def manual_sync(self) -> dict:
        if self.is_running:
            raise SyncAlreadyRunningError("Une synchronisation est déjà en cours")

        logger.info("Manual France Travail sync requested")
        stats = await self.sync_offers()
        return {
            "success": True,
            "message": "Synchronisation terminée",
            "last_sync_time": self.last_sync_time,
            "stats": stats
        }

    def get_status(self) -> dict:
        return {
            "enabled": self.enabled,
            "is_running": self.is_running,
            "last_sync_time": self.last_sync_time,
            "sync_interval_hours": self.sync_interval_hours,
            "max_offers_per_sync": self.max_offers_per_sync
        }


_aggregation_service: Optional[OfferAggregationService] = None


def get_offer_aggregation_service() -> OfferAggregationService:
    global _aggregation_service
    if _aggregation_service is None:
        _aggregation_service = OfferAggregationService()
    return _aggregation_service
