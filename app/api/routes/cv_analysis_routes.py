"""
CV Analysis Routes (role CANDIDATE)

POST /cv-analysis/upload-and-analyze - Extract and analyze an uploaded CV (PDF/DOCX/TXT)
POST /cv-analysis/save-profile - Save a reviewed analysis into the profile
GET /cv-analysis/supported-formats - Accepted formats and size limit
"""

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Depends, UploadFile, File

from app.core.auth import require_role
from app.services.cv_analysis_service import analyze_cv_content, save_profile
from app.services.document_parsing_service import (
    DocumentParsingError, UnsupportedDocumentError, MAX_FILE_SIZE_BYTES, MAX_FILE_SIZE_MB,
    extract_text, clean_extracted_text, get_text_stats, get_supported_formats
)
from app.schemas.schemas import CVProfileSave

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cv-analysis", tags=["CV Analysis"])

candidate_only = require_role("CANDIDATE")

PREVIEW_LENGTH = 500


@router.post("/upload-and-analyze")
async def upload_and_analyze(
    cv: UploadFile = File(..., description="CV file (PDF, DOCX, or TXT)"),
    user: dict = Depends(candidate_only)
):
    """
    Upload and analyze a CV.

    Process:
    1. Extract text from the file (in memory, the file is not kept)
    2. AI (or keyword) analysis into personal info, summary, skills,
       experiences and educations
    3. Return the analysis for review; nothing is saved until save-profile
    """
    if not cv.filename:
        raise HTTPException(status_code=400, detail="Aucun fichier fourni")

    content = await cv.read()
    if len(content) > MAX_FILE_SIZE_BYTES:
        raise HTTPException(status_code=413, detail=f"Fichier trop volumineux (maximum {MAX_FILE_SIZE_MB}MB)")

    try:
        raw_text = extract_text(content, cv.filename)
    except UnsupportedDocumentError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DocumentParsingError as e:
        raise HTTPException(status_code=422, detail=str(e))

    cv_text = clean_extracted_text(raw_text)
    try:
        analysis = await asyncio.to_thread(analyze_cv_content, cv_text)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    logger.info("CV analyzed for %s (%s, %s bytes)", user["id"], analysis["source"], len(content))
    preview = cv_text[:PREVIEW_LENGTH] + ("..." if len(cv_text) > PREVIEW_LENGTH else "")
    return {
        "success": True,
        "message": "CV analysé avec succès",
        "data": {
            "original_name": cv.filename,
            "file_size": len(content),
            "text_stats": get_text_stats(raw_text),
            "analysis": analysis,
            "extracted_text": preview
        }
    }


@router.post("/save-profile")
async def save_analysis_to_profile(data: CVProfileSave, user: dict = Depends(candidate_only)):
    """Write the (possibly edited) analysis into the profile. Existing entries are kept."""
    try:
        result = save_profile(user["id"], data.model_dump(exclude_none=True))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "message": "Profil mis à jour avec succès", "data": result}


@router.get("/supported-formats")
async def supported_formats():
    return {"success": True, "data": get_supported_formats()}
