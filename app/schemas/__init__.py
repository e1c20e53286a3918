"""
Schemas module - Request/Response schemas for API endpoints.

All schemas live in app.schemas.schemas:
- Enums mirroring the database CHECK constraints
- Request schemas (what API accepts)
- Response schemas (what API returns)
"""
