from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from services.storefront.app.db.deps import get_db
from services.storefront.app.models.cart import CartOut
from services.storefront.app.models.session import (
    AuthRequest,
    AuthResponse,
    SessionCreateRequest,
    SessionOut,
)
from services.storefront.app.routers.errors import get_session_or_404, raise_checkout_http_error
from services.storefront.app.services import journal
from services.storefront.app.services.marketplace_factory import get_shared_backend
from services.storefront.app.services.store import SessionRecord, store
from services.storefront.app.settings import Settings
from sqlalchemy.orm import Session

router = APIRouter()


def _session_out(session: SessionRecord) -> SessionOut:
    flow = session.flow
    return SessionOut(
        session_id=session.session_id,
        stage=flow.stage.value,
        authenticated=flow.tokens.get() is not None,
        cart=CartOut.from_store(flow.cart),
    )


@router.post("/v1/sessions", response_model=SessionOut)
def create_session(payload: SessionCreateRequest, db: Session = Depends(get_db)) -> SessionOut:
    try:
        backend = get_shared_backend()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    session = store.create(backend, Settings.from_env(), token=payload.token)
    journal.record(db, session)
    return _session_out(session)


@router.get("/v1/sessions/{session_id}", response_model=SessionOut)
def get_session(session_id: str) -> SessionOut:
    return _session_out(get_session_or_404(session_id))


@router.post("/v1/sessions/{session_id}/auth", response_model=AuthResponse)
async def authenticate(
    session_id: str, payload: AuthRequest, db: Session = Depends(get_db)
) -> AuthResponse:
    session = get_session_or_404(session_id)
    flow = session.flow

    try:
        handoff = await flow.authenticate(payload.token)
    except Exception as e:
        journal.record(db, session)
        raise_checkout_http_error(e)

    journal.record(db, session)
    return AuthResponse(
        session_id=session_id,
        stage=flow.stage.value,
        authenticated=flow.tokens.get() is not None,
        replayed=handoff is not None,
        cart_id=flow.cart.cart_id,
    )


@router.delete("/v1/sessions/{session_id}/auth", response_model=SessionOut)
def logout(session_id: str) -> SessionOut:
    session = get_session_or_404(session_id)
    session.flow.tokens.clear()
    session.flow.pending.discard()
    return _session_out(session)
