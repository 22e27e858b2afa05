from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from packages.shared.schemas.events import EventV1
from services.storefront.app.db.deps import get_db
from services.storefront.app.db.models import CheckoutSession, EventLog, OrderReceipt
from services.storefront.app.models.events import CheckoutSessionOut, OrderReceiptOut
from sqlalchemy.orm import Session

router = APIRouter()


@router.get("/v1/sessions/{session_id}/events", response_model=list[EventV1])
def list_events(session_id: str, db: Session = Depends(get_db)) -> list[EventV1]:
    if db.get(CheckoutSession, session_id) is None:
        raise HTTPException(status_code=404, detail="Checkout session not found")

    rows = (
        db.query(EventLog)
        .filter(EventLog.session_id == session_id)
        .order_by(EventLog.created_at.asc())
        .limit(500)
        .all()
    )

    return [
        EventV1(
            id=row.id,
            session_id=row.session_id,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            event_type=row.event_type,
            payload=row.event_payload_json,
            created_at=row.created_at.isoformat(),
        )
        for row in rows
    ]


@router.get("/v1/checkout-sessions", response_model=list[CheckoutSessionOut])
def list_checkout_sessions(db: Session = Depends(get_db)) -> list[CheckoutSessionOut]:
    rows = db.query(CheckoutSession).order_by(CheckoutSession.updated_at.desc()).limit(200).all()
    return [
        CheckoutSessionOut(
            session_id=row.id,
            backend_vendor=row.backend_vendor,
            stage=row.stage,
            cart_id=row.cart_id,
            created_at=row.created_at.isoformat(),
            updated_at=row.updated_at.isoformat(),
        )
        for row in rows
    ]


@router.get("/v1/sessions/{session_id}/receipts", response_model=list[OrderReceiptOut])
def list_receipts(session_id: str, db: Session = Depends(get_db)) -> list[OrderReceiptOut]:
    receipts = (
        db.query(OrderReceipt)
        .filter(OrderReceipt.session_id == session_id)
        .order_by(OrderReceipt.created_at.desc())
        .all()
    )

    return [
        OrderReceiptOut(
            id=r.id,
            order_id=r.order_id,
            order_number=r.order_number,
            payment_method=r.payment_method,
            total_amount=r.total_amount,
            references=r.references_json or {},
            created_at=r.created_at.isoformat(),
        )
        for r in receipts
    ]
