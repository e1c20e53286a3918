"""
Exception handlers - maps database and validation errors to JSON responses.

IntegrityError is mapped by PostgreSQL error code:
    23505 unique_violation      -> 409
    23503 foreign_key_violation -> 400
    23514 check_violation       -> 400
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
CHECK_VIOLATION = "23514"

INTEGRITY_ERRORS = {
    UNIQUE_VIOLATION: (409, "Cette ressource existe déjà"),
    FOREIGN_KEY_VIOLATION: (400, "Référence invalide"),
    CHECK_VIOLATION: (400, "Contrainte de validation non respectée"),
}


def pg_error_code(exc: Exception) -> Optional[str]:
    """PostgreSQL SQLSTATE of a wrapped driver error, if any."""
    orig = getattr(exc, "orig", None)
    return getattr(orig, "pgcode", None)


def pg_constraint_name(exc: Exception) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    diag = getattr(orig, "diag", None)
    return getattr(diag, "constraint_name", None)


async def integrity_error_handler(request: Request, exc: IntegrityError):
    code = pg_error_code(exc)
    status_code, message = INTEGRITY_ERRORS.get(code, (400, "Violation de contrainte"))
    logger.warning("Integrity error %s on %s %s", code, request.method, request.url.path)
    return JSONResponse(status_code=status_code, content={"detail": message, "code": code})


async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Erreur de base de données"})


async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", [])), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": "Données invalides", "errors": details})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
