"""
Document Routes

Upload, list, update, share, analyze and delete the caller's compliance
documents. Files live in the `documents` storage bucket; metadata lives in
the `documents` table.
"""

import re
import time
import logging
from typing import List, Dict, Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Query, UploadFile
from pydantic import BaseModel

from complio import chatbot_agent
from complio.auth_permissions import (
    AuthContext, get_auth_context, rate_limit,
    validate_file_upload, DOCUMENT_FILE_TYPES, MAX_DOCUMENT_SIZE_MB
)
from complio.calendar_sync import sync_document_to_calendar, to_event_date
from complio.document_analyzer import analyze_document
from complio.router_utils import require_supabase, first_row, utc_now_iso, backend_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/documents", tags=["documents"])

STORAGE_BUCKET = "documents"
SIGNED_URL_TTL_SECONDS = 3600
MAX_FILES_PER_UPLOAD = 10

UPDATABLE_FIELDS = ("category", "tags", "expiration_date", "description", "linked_deadline_id")
NULLABLE_WHEN_EMPTY = ("expiration_date", "linked_deadline_id")


# =============================================================================
# REQUEST MODELS
# =============================================================================

class DocumentUpdateRequest(BaseModel):
    documentId: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    expiration_date: Optional[str] = None
    description: Optional[str] = None
    linked_deadline_id: Optional[str] = None


class DocumentShareRequest(BaseModel):
    documentId: Optional[str] = None
    userIds: Optional[Any] = None


class DocumentAnalyzeRequest(BaseModel):
    documentId: Optional[str] = None


# =============================================================================
# HELPERS
# =============================================================================

def _sanitize_filename(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.-]", "_", name or "file")


def _signed_url(supabase, file_path: str) -> Optional[str]:
    try:
        signed = supabase.storage.from_(STORAGE_BUCKET).create_signed_url(file_path, SIGNED_URL_TTL_SECONDS)
    except Exception as e:
        logger.warning(f"[Documents] Signed URL failed for {file_path}: {e}")
        return None
    if not signed:
        return None
    return signed.get("signedURL") or signed.get("signedUrl")


def _get_owned_document(supabase, document_id: str, user_id: str, columns: str = "*") -> dict:
    try:
        result = supabase.table("documents")\
            .select(columns)\
            .eq("id", document_id)\
            .eq("user_id", user_id)\
            .limit(1)\
            .execute()
    except Exception as e:
        raise backend_error(f"[Documents] Error fetching document {document_id}", e, "Failed to fetch document")

    document = first_row(result)
    if not document:
        raise HTTPException(status_code=404, detail="Document not found or unauthorized")
    return document


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("")
async def list_documents(auth: AuthContext = Depends(get_auth_context)):
    """List the caller's documents, newest first, with 1-hour download links."""
    supabase = require_supabase()

    try:
        result = supabase.table("documents")\
            .select("*")\
            .eq("user_id", auth.user_id)\
            .order("uploaded_at", desc=True)\
            .execute()
    except Exception as e:
        raise backend_error("[Documents] Error fetching documents", e, "Failed to fetch documents")

    documents = []
    for doc in result.data or []:
        documents.append({**doc, "downloadUrl": _signed_url(supabase, doc.get("file_path"))})

    return {"documents": documents}


@router.delete("")
async def delete_document(
    id: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context)
):
    """Delete a document's stored file and metadata row."""
    if not id:
        raise HTTPException(status_code=400, detail="Document ID is required")

    supabase = require_supabase()
    document = _get_owned_document(supabase, id, auth.user_id, "id, file_path")

    try:
        supabase.storage.from_(STORAGE_BUCKET).remove([document["file_path"]])
    except Exception as e:
        logger.error(f"[Documents] Error deleting {document['file_path']} from storage: {e}")

    try:
        supabase.table("documents")\
            .delete()\
            .eq("id", id)\
            .eq("user_id", auth.user_id)\
            .execute()
    except Exception as e:
        raise backend_error(f"[Documents] Error deleting document {id}", e, "Failed to delete document")

    logger.info(f"[Documents] user={auth.user_id} deleted {id}")
    return {"success": True}


@router.post("/upload")
async def upload_documents(
    files: List[UploadFile] = File(default=[]),
    auth: AuthContext = Depends(get_auth_context)
):
    """Upload up to 10 files. Each file succeeds or fails independently."""
    if not files:
        raise HTTPException(status_code=400, detail="No files provided")
    if len(files) > MAX_FILES_PER_UPLOAD:
        raise HTTPException(status_code=400, detail=f"Maximum {MAX_FILES_PER_UPLOAD} files allowed")

    supabase = require_supabase()
    bucket = supabase.storage.from_(STORAGE_BUCKET)
    results: List[Dict[str, Any]] = []

    for upload in files:
        filename = upload.filename or "file"
        contents = await upload.read()

        validation = validate_file_upload(filename, upload.content_type, len(contents), DOCUMENT_FILE_TYPES, MAX_DOCUMENT_SIZE_MB)
        if not validation["valid"]:
            results.append({"filename": filename, "success": False, "error": "; ".join(validation["errors"])})
            continue

        file_path = f"{auth.user_id}/{int(time.time() * 1000)}-{_sanitize_filename(filename)}"

        try:
            stored = bucket.upload(file_path, contents, {"content-type": upload.content_type, "upsert": "false"})
        except Exception as e:
            logger.error(f"[Documents] Storage upload failed for {file_path}: {e}")
            results.append({"filename": filename, "success": False, "error": str(e)})
            continue

        stored_path = getattr(stored, "path", None) or file_path

        try:
            inserted = supabase.table("documents").insert({
                "user_id": auth.user_id,
                "filename": filename,
                "file_path": stored_path,
                "file_size": len(contents),
                "file_type": upload.content_type,
            }).execute()
        except Exception as e:
            logger.error(f"[Documents] Metadata insert failed for {file_path}: {e}")
            try:
                bucket.remove([file_path])
            except Exception as cleanup_error:
                logger.error(f"[Documents] Cleanup of {file_path} failed: {cleanup_error}")
            results.append({"filename": filename, "success": False, "error": str(e)})
            continue

        results.append({"filename": filename, "success": True, "document": first_row(inserted)})

    succeeded = sum(1 for r in results if r["success"])
    failed = len(results) - succeeded
    message = f"Uploaded {succeeded} file(s) successfully"
    if failed:
        message += f", {failed} failed"

    logger.info(f"[Documents] user={auth.user_id} upload: {succeeded} ok, {failed} failed")
    return {"message": message, "results": results}


@router.patch("/update")
async def update_document(
    body: DocumentUpdateRequest,
    background_tasks: BackgroundTasks,
    auth: AuthContext = Depends(get_auth_context)
):
    """Update document metadata; a changed expiration date is synced to the calendar."""
    if not body.documentId:
        raise HTTPException(status_code=400, detail="Document ID is required")

    supabase = require_supabase()
    document = _get_owned_document(
        supabase, body.documentId, auth.user_id,
        "id, user_id, filename, expiration_date, calendar_event_id"
    )

    provided = body.model_dump(exclude_unset=True)
    update_data: Dict[str, Any] = {"updated_at": utc_now_iso()}
    for field in UPDATABLE_FIELDS:
        if field in provided:
            value = provided[field]
            update_data[field] = (value or None) if field in NULLABLE_WHEN_EMPTY else value

    try:
        supabase.table("documents")\
            .update(update_data)\
            .eq("id", body.documentId)\
            .execute()
    except Exception as e:
        raise backend_error(f"[Documents] Error updating document {body.documentId}", e, "Failed to update document")

    if "expiration_date" in update_data:
        new_date = update_data["expiration_date"]
        if to_event_date(new_date) != to_event_date(document.get("expiration_date")):
            background_tasks.add_task(
                sync_document_to_calendar,
                auth.user_id,
                body.documentId,
                document.get("filename"),
                new_date,
                document.get("calendar_event_id"),
            )

    return {"success": True}


@router.post("/share")
async def share_document(
    body: DocumentShareRequest,
    auth: AuthContext = Depends(get_auth_context)
):
    """Replace the list of users a document is shared with."""
    if not body.documentId:
        raise HTTPException(status_code=400, detail="Document ID is required")
    if not isinstance(body.userIds, list):
        raise HTTPException(status_code=400, detail="User IDs must be an array")

    supabase = require_supabase()
    _get_owned_document(supabase, body.documentId, auth.user_id, "id")

    try:
        supabase.table("documents")\
            .update({"shared_with": body.userIds})\
            .eq("id", body.documentId)\
            .execute()
    except Exception as e:
        raise backend_error(f"[Documents] Error sharing document {body.documentId}", e, "Failed to share document")

    return {"success": True}


@router.post("/analyze")
@rate_limit("document_analysis")
async def analyze_stored_document(
    body: DocumentAnalyzeRequest,
    auth: AuthContext = Depends(get_auth_context)
):
    """Classify a document with the model and store the result on the row."""
    if not body.documentId:
        raise HTTPException(status_code=400, detail="Document ID is required")

    supabase = require_supabase()
    document = _get_owned_document(supabase, body.documentId, auth.user_id)

    if not chatbot_agent.is_configured():
        raise HTTPException(status_code=500, detail="AI service not configured")

    try:
        content = supabase.storage.from_(STORAGE_BUCKET).download(document["file_path"])
    except Exception as e:
        raise backend_error(f"[Documents] Download failed for {document['file_path']}", e, "Failed to download document")

    try:
        analysis = analyze_document(content, document.get("file_type") or "", document.get("filename") or "")
    except chatbot_agent.AIServiceError as e:
        raise backend_error(f"[Documents] Analysis failed for {body.documentId}", e, "Failed to analyze document")

    try:
        supabase.table("documents")\
            .update(analysis)\
            .eq("id", body.documentId)\
            .execute()
    except Exception as e:
        raise backend_error(f"[Documents] Error saving analysis for {body.documentId}", e, "Failed to save analysis to database")

    logger.info(f"[Documents] user={auth.user_id} analyzed {body.documentId} as {analysis['category']}")
    return {
        "success": True,
        "analysis": {**analysis, "summary": analysis["summary"] or analysis["description"]},
    }
