"""
CareerBoost
Recruiting marketplace backend: candidates search and apply to offers,
recruiters publish offers and review applicants, admins moderate.

Architecture:
- PostgreSQL: all relational data (users, companies, offers, applications)
- Matching: weighted heuristic score computed per request
- France Travail: external job board polled in the background
"""

__version__ = "1.0.0"
