from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel

from ..config import settings
from ..dependencies.auth import AuthContext, require_auth
from ..services.llm_extract import AIConfigurationError, extract_document_fields
from ..services.metrics import record_ocr_scan
from ..services.ocr import OCRError, process_document
from .documents import read_upload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ocr"])

SCAN_CONTENT_TYPES = {
    "application/pdf",
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/tiff",
    "image/bmp",
}


class ProcessDocumentRequest(BaseModel):
    text: Optional[str] = None


def _read_side(file: UploadFile) -> tuple[bytes, str]:
    content_type = (file.content_type or "application/octet-stream").lower()
    if content_type not in SCAN_CONTENT_TYPES:
        raise HTTPException(status_code=400, detail="Unsupported file type.")
    data = read_upload(file, settings.max_upload_bytes)
    if not data:
        raise HTTPException(status_code=400, detail="Empty file")
    return data, content_type


@router.post("/ocr/scan")
def scan_document(
    file: UploadFile = File(...),
    back: Optional[UploadFile] = File(default=None),
    context: AuthContext = Depends(require_auth),
):
    front_bytes, front_type = _read_side(file)
    back_bytes, back_type = (None, None)
    if back is not None and back.filename:
        back_bytes, back_type = _read_side(back)

    try:
        data, confidence = process_document(
            front_bytes,
            back_bytes,
            front_type=front_type,
            back_type=back_type,
        )
    except OCRError as exc:
        record_ocr_scan("failed")
        logger.warning("OCR failed: user_id=%s error=%s", context.user.id, exc)
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    record_ocr_scan("success" if data.raw_text.strip() else "empty")
    return {"data": data.to_dict(), "confidence": confidence}


@router.post("/process-document")
def process_text(
    payload: ProcessDocumentRequest,
    context: AuthContext = Depends(require_auth),
):
    text = (payload.text or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="Text is required")

    try:
        fields = extract_document_fields(text)
    except AIConfigurationError as exc:
        raise HTTPException(status_code=503, detail="AI service not configured") from exc
    except Exception as exc:  # provider errors surface as a generic failure
        logger.exception("AI document processing failed: user_id=%s", context.user.id)
        raise HTTPException(status_code=500, detail="Failed to process document") from exc

    return {"data": fields.model_dump()}
