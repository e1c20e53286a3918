"""
Skills Parsing Service

PURPOSE:
Detect technical skills in free-text job descriptions using a keyword
dictionary, decide whether each one is required or optional, and link
the result to the skills referential.

HOW IT WORKS:
1. Search "description title" (lowercased) for every keyword with a
   word-boundary regex ("java" does not match "javascript")
2. C# / C++ only count in a software development context
3. Required: keyword in the title, or a required indicator nearby
   ("obligatoire", "maîtrise"...) without an optional one ("souhaité",
   "un plus"...), or else a major skill by default
4. Required skills have their weight doubled
5. One entry per slug, sorted by weight (descending)
"""

import logging
import re
from typing import List, Dict, Optional

from sqlalchemy import text

from app.db.postgres import get_db_session, execute_raw_sql

logger = logging.getLogger(__name__)


# ============================================================
# KEYWORD DICTIONARY
# ============================================================

def _skill(slug: str, display_name: str, category: str, weight: int) -> dict:
    return {"slug": slug, "display_name": display_name, "category": category, "weight": weight}


SKILLS_KEYWORDS: Dict[str, dict] = {
    # Languages
    "java": _skill("java", "Java", "Développement", 3),
    "javascript": _skill("javascript", "JavaScript", "Développement Web", 3),
    "typescript": _skill("typescript", "TypeScript", "Développement Web", 3),
    "python": _skill("python", "Python", "Développement", 3),
    "php": _skill("php", "PHP", "Développement Web", 3),
    "c#": _skill("csharp", "C#", "Développement", 3),
    "c++": _skill("cpp", "C++", "Développement", 3),
    "go": _skill("go", "Go", "Développement", 2),
    "rust": _skill("rust", "Rust", "Développement", 2),

    # Java frameworks
    "spring": _skill("spring", "Spring", "Framework Java", 3),
    "spring boot": _skill("spring-boot", "Spring Boot", "Framework Java", 3),
    "hibernate": _skill("hibernate", "Hibernate", "Framework Java", 2),
    "quarkus": _skill("quarkus", "Quarkus", "Framework Java", 2),
    "jakarta ee": _skill("jakarta-ee", "Jakarta EE", "Framework Java", 2),
    "java ee": _skill("java-ee", "Java EE", "Framework Java", 2),

    # Front end
    "react": _skill("react", "React", "Développement Web", 3),
    "react.js": _skill("react", "React", "Développement Web", 3),
    "vue": _skill("vue-js", "Vue.js", "Développement Web", 3),
    "vue.js": _skill("vue-js", "Vue.js", "Développement Web", 3),
    "angular": _skill("angular", "Angular", "Développement Web", 3),
    "next.js": _skill("nextjs", "Next.js", "Développement Web", 2),
    "nuxt.js": _skill("nuxtjs", "Nuxt.js", "Développement Web", 2),

    # Back end
    "node.js": _skill("nodejs", "Node.js", "Développement Backend", 3),
    "nodejs": _skill("nodejs", "Node.js", "Développement Backend", 3),
    "node js": _skill("nodejs", "Node.js", "Développement Backend", 3),
    "express": _skill("express", "Express.js", "Développement Backend", 2),
    "nestjs": _skill("nestjs", "NestJS", "Développement Backend", 2),

    # Databases
    "postgresql": _skill("postgresql", "PostgreSQL", "Base de données", 3),
    "mysql": _skill("mysql", "MySQL", "Base de données", 3),
    "mongodb": _skill("mongodb", "MongoDB", "Base de données", 2),
    "redis": _skill("redis", "Redis", "Base de données", 2),
    "elasticsearch": _skill("elasticsearch", "Elasticsearch", "Base de données", 2),

    # DevOps
    "docker": _skill("docker", "Docker", "DevOps", 3),
    "kubernetes": _skill("kubernetes", "Kubernetes", "DevOps", 2),
    "jenkins": _skill("jenkins", "Jenkins", "DevOps", 2),
    "gitlab ci": _skill("gitlab-ci", "GitLab CI", "DevOps", 2),
    "github actions": _skill("github-actions", "GitHub Actions", "DevOps", 2),

    # Cloud
    "aws": _skill("aws", "AWS", "Cloud", 2),
    "azure": _skill("azure", "Azure", "Cloud", 2),
    "gcp": _skill("gcp", "Google Cloud Platform", "Cloud", 2),

    # Methods
    "agile": _skill("agile", "Agile", "Méthodologie", 1),
    "scrum": _skill("scrum", "Scrum", "Méthodologie", 1),
    "kanban": _skill("kanban", "Kanban", "Méthodologie", 1),
    "clean code": _skill("clean-code", "Clean Code", "Méthodologie", 1),
    "tdd": _skill("tdd", "TDD", "Méthodologie", 1),

    # Tools
    "git": _skill("git", "Git", "Outils", 2),
    "jira": _skill("jira", "Jira", "Outils", 1),
    "confluence": _skill("confluence", "Confluence", "Outils", 1),

    # BI
    "power bi": _skill("power-bi", "Power BI", "Business Intelligence", 2),
    "tableau": _skill("tableau", "Tableau", "Business Intelligence", 2),
    "qlik": _skill("qlik", "Qlik", "Business Intelligence", 2),
    "excel": _skill("excel", "Excel", "Bureautique", 1),

    # Systems & network
    "windows": _skill("windows", "Windows", "Système", 1),
    "linux": _skill("linux", "Linux", "Système", 2),
    "vmware": _skill("vmware", "VMware", "Virtualisation", 2),
    "hyper-v": _skill("hyper-v", "Hyper-V", "Virtualisation", 2),
    "vpn": _skill("vpn", "VPN", "Réseau", 1),
    "vlan": _skill("vlan", "VLAN", "Réseau", 1),
    "zabbix": _skill("zabbix", "Zabbix", "Supervision", 1),
    "prtg": _skill("prtg", "PRTG", "Supervision", 1),
    "centreon": _skill("centreon", "Centreon", "Supervision", 1),
}

REQUIRED_INDICATORS = [
    "obligatoire", "requis", "indispensable", "nécessaire", "maîtrise",
    "expertise", "expérience en", "connaissance approfondie",
]

OPTIONAL_INDICATORS = [
    "souhaité", "apprécié", "un plus", "bonus", "idéalement", "de préférence",
]

MAJOR_SKILLS = {"java", "javascript", "typescript", "python", "react", "angular", "vue.js", "spring"}

# C# / C++ appear in non-IT text ("C++" grades, "C#" music keys)
DEV_CONTEXT_KEYWORDS = ["développ", "develop", "programm", "logiciel", "software", ".net", "code"]
DEV_CONTEXT_ONLY = {"c#", "c++"}

CONTEXT_WINDOW = 50
DEV_CONTEXT_WINDOW = 100


def keyword_pattern(keyword: str) -> re.Pattern:
    """Word-boundary regex that tolerates '#', '+' and '.' inside keywords."""
    return re.compile(r"(?<![\w#+.])" + re.escape(keyword) + r"(?![\w#+])")


_PATTERNS = {keyword: keyword_pattern(keyword) for keyword in SKILLS_KEYWORDS}


class SkillsParser:
    """Keyword based skill extraction from job descriptions."""

    def __init__(self, keywords: Optional[Dict[str, dict]] = None):
        self.keywords = keywords or SKILLS_KEYWORDS
        self.patterns = _PATTERNS if keywords is None else {k: keyword_pattern(k) for k in self.keywords}

    def parse_skills_from_description(self, description: str, title: str = "") -> List[dict]:
        """
        Returns one dict per detected skill:
            {slug, display_name, category, keyword, is_required, weight}
        """
        title = title or ""
        text_lower = f"{description or ''} {title}".lower()
        found: Dict[str, dict] = {}

        for keyword, info in self.keywords.items():
            match = self.patterns[keyword].search(text_lower)
            if not match:
                continue

            if keyword in DEV_CONTEXT_ONLY and not self.has_dev_context(text_lower, match.start(), match.end()):
                logger.debug("Ignoring %s outside a development context", keyword)
                continue

            is_required = self.is_skill_required(keyword, text_lower, title, match.start())
            skill = {
                **info,
                "keyword": keyword,
                "is_required": is_required,
                "weight": info["weight"] * 2 if is_required else info["weight"],
            }

            # Several keywords map to one slug: keep the strongest
            previous = found.get(skill["slug"])
            if previous is None or skill["weight"] > previous["weight"]:
                found[skill["slug"]] = skill

        return sorted(found.values(), key=lambda s: s["weight"], reverse=True)

    @staticmethod
    def has_dev_context(text_lower: str, start: int, end: int) -> bool:
        window = text_lower[max(0, start - DEV_CONTEXT_WINDOW):end + DEV_CONTEXT_WINDOW]
        return any(word in window for word in DEV_CONTEXT_KEYWORDS)

    def is_skill_required(self, keyword: str, text_lower: str, title: str, position: Optional[int] = None) -> bool:
        if title and self.patterns[keyword].search(title.lower()):
            return True

        if position is None:
            match = self.patterns[keyword].search(text_lower)
            if not match:
                return False
            position = match.start()

        start = max(0, position - CONTEXT_WINDOW)
        end = min(len(text_lower), position + len(keyword) + CONTEXT_WINDOW)
        context = text_lower[start:end]

        has_required = any(indicator in context for indicator in REQUIRED_INDICATORS)
        has_optional = any(indicator in context for indicator in OPTIONAL_INDICATORS)

        if has_required and not has_optional:
            return True
        if has_optional:
            return False
        return keyword in MAJOR_SKILLS

    # --------------------------------------------------------
    # Database helpers
    # --------------------------------------------------------

    def match_skills_to_database(self, parsed_skills: List[dict]) -> List[dict]:
        """Resolve parsed skills to referential rows; unknown skills are skipped."""
        matched = []
        for parsed in parsed_skills:
            rows = execute_raw_sql("""
                SELECT id, slug, display_name, category
                FROM skills
                WHERE slug = :slug OR lower(display_name) = lower(:name)
                ORDER BY (slug = :slug) DESC
                LIMIT 1
            """, {"slug": parsed["slug"], "name": parsed["display_name"]})

            if not rows:
                logger.warning("Skill not found in referential: %s (%s)", parsed["display_name"], parsed["slug"])
                continue

            existing = rows[0]
            matched.append({
                "skill_id": existing["id"],
                "is_required": parsed["is_required"],
                "weight": parsed["weight"],
                "skill": existing
            })
        return matched

    def update_offer_skills(self, offer_id: str, skills: List[dict]) -> int:
        """Replace the skills of an offer. Returns the number of rows inserted."""
        # Same skill twice would violate UNIQUE(job_offer_id, skill_id)
        unique = {}
        for s in skills:
            key = str(s["skill_id"])
            if key not in unique or s["weight"] > unique[key]["weight"]:
                unique[key] = s

        with get_db_session() as db:
            db.execute(text("DELETE FROM job_offer_skills WHERE job_offer_id = :offer_id"), {"offer_id": offer_id})
            for s in unique.values():
                db.execute(
                    text("""
                        INSERT INTO job_offer_skills (job_offer_id, skill_id, is_required, weight)
                        VALUES (:offer_id, :skill_id, :is_required, :weight)
                    """),
                    {"offer_id": offer_id, "skill_id": s["skill_id"],
                     "is_required": s["is_required"], "weight": s["weight"]}
                )

        logger.info("%d skill(s) attached to offer %s", len(unique), offer_id)
        return len(unique)


# ============================================================
# CONVENIENCE FUNCTIONS
# ============================================================

_parser: Optional[SkillsParser] = None


def get_skills_parser() -> SkillsParser:
    """Get skills parser singleton."""
    global _parser
    if _parser is None:
        _parser = SkillsParser()
    return _parser


def parse_skills_from_description(description: str, title: str = "") -> List[dict]:
    return get_skills_parser().parse_skills_from_description(description, title)
