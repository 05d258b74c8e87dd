from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..dependencies.auth import AuthContext, require_auth
from ..dependencies.db import get_db
from ..models.documents import Document
from ..services.document_filters import reminder_documents
from ..services.documents import serialize_document

router = APIRouter(prefix="/reminders", tags=["reminders"])


@router.get("")
def list_reminders(
    filter: str = Query(default="all", pattern="^(all|expired|expiring_soon)$"),
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    owned = db.query(Document).filter(Document.user_id == context.user.id).all()
    attention = reminder_documents(owned, "all")
    expired = reminder_documents(attention, "expired")
    selected = attention if filter == "all" else reminder_documents(attention, filter)

    return {
        "filter": filter,
        "counts": {
            "total": len(attention),
            "expired": len(expired),
            "expiring_soon": len(attention) - len(expired),
        },
        "items": [serialize_document(doc) for doc in selected],
    }
