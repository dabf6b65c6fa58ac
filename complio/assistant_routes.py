"""
Assistant Routes

Small-business chat assistant and the document tag-suggestion endpoint.
"""

import logging
from typing import List, Dict, Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from complio.auth_permissions import AuthContext, get_auth_context, rate_limit
from complio.chatbot_agent import get_chat_response, AIServiceError
from complio.document_analyzer import suggest_tags
from complio.schemas import ChatMessage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["assistant"])


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================

class AssistantRequest(BaseModel):
    messages: Optional[List[ChatMessage]] = None
    prompt: Optional[str] = None
    system: Optional[str] = None
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    model: Optional[str] = None


class AssistantResponse(BaseModel):
    message: str
    usage: Optional[Dict[str, Any]] = None


class TaggingRequest(BaseModel):
    document: Optional[str] = None
    tags: Optional[List[str]] = None
    maxTags: Optional[int] = None


class TaggingResponse(BaseModel):
    tags: List[str]
    reason: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/assistant", response_model=AssistantResponse)
@rate_limit("assistant")
async def chat_with_assistant(
    body: AssistantRequest,
    auth: AuthContext = Depends(get_auth_context)
):
    """Answer a chat conversation or a single prompt."""
    if body.messages:
        messages = [m.model_dump() for m in body.messages]
    elif body.prompt:
        messages = [{"role": "user", "content": body.prompt}]
    else:
        raise HTTPException(status_code=400, detail="messages or prompt is required")

    try:
        text, usage = get_chat_response(
            messages,
            system_prompt=body.system,
            temperature=body.temperature,
            model=body.model,
        )
    except AIServiceError as e:
        logger.error(f"[Assistant] user={auth.user_id} failed: {e}")
        raise HTTPException(status_code=500, detail="Assistant error")

    return AssistantResponse(message=text, usage=usage)


@router.post("/reminders", response_model=TaggingResponse)
@rate_limit("tagging")
async def tag_document(
    body: TaggingRequest,
    auth: AuthContext = Depends(get_auth_context)
):
    """Suggest tags for a document, chosen only from the supplied list."""
    if not body.tags:
        raise HTTPException(status_code=400, detail="tags array is required")
    if not body.document:
        raise HTTPException(status_code=400, detail="document text is required")

    max_tags = body.maxTags if body.maxTags and body.maxTags > 0 else 5

    try:
        result = suggest_tags(body.document, body.tags, max_tags)
    except AIServiceError as e:
        logger.error(f"[Tagging] user={auth.user_id} failed: {e}")
        raise HTTPException(status_code=500, detail="Tagging error")

    return result
