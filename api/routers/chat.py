from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..dependencies.auth import AuthContext, require_auth
from ..services import assistant
from ..services.llm_extract import AIConfigurationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


class ChatTurn(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    message: str = ""
    conversation_history: list[ChatTurn] = Field(default_factory=list)


@router.get("")
def chat_status():
    if assistant.is_configured():
        return {"status": "ready", "message": "Chat assistant is available"}
    return {"status": "not_configured", "message": "Chat assistant is not configured"}


@router.post("")
def send_message(payload: ChatRequest, context: AuthContext = Depends(require_auth)):
    message = payload.message.strip()
    if not message:
        raise HTTPException(status_code=400, detail="Message is required")

    history = [turn.model_dump() for turn in payload.conversation_history]
    try:
        reply = assistant.answer(message, history)
    except AIConfigurationError as exc:
        raise HTTPException(status_code=503, detail="AI service not configured") from exc
    except Exception as exc:  # provider errors surface as a generic failure
        logger.exception("Chat request failed: user_id=%s", context.user.id)
        raise HTTPException(status_code=500, detail="Failed to get response") from exc

    return {"response": reply.response, "is_out_of_scope": reply.is_out_of_scope}
