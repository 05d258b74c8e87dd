from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..dependencies.auth import AuthContext, require_auth
from ..dependencies.db import get_db
from ..models.documents import Document
from ..models.events import Event
from ..services.analytics import EVENT_ACTIONS, build_analytics

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("")
def get_analytics(
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    documents = db.query(Document).filter(Document.user_id == context.user.id).all()
    events = (
        db.query(Event)
        .filter(Event.user_id == context.user.id, Event.type.in_(list(EVENT_ACTIONS)))
        .order_by(Event.at.desc())
        .limit(20)
        .all()
    )
    return build_analytics(documents, events).to_dict()
