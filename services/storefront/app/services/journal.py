"""Writes a session's checkout progress to the database.

Routers call `record` after every flow operation, whether it succeeded or raised, so the
event log also captures failed attempts.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from packages.shared.schemas.events import EventTypeV1
from services.storefront.app.db.models import CheckoutSession, EventLog, OrderReceipt
from services.storefront.app.services.store import SessionRecord
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_RECEIPT_EVENTS = frozenset({EventTypeV1.ORDER_CREATED, EventTypeV1.PAYMENT_COMPLETED})


def record(db: Session, session: SessionRecord) -> None:
    flow = session.flow
    now = datetime.now(timezone.utc)

    row = db.get(CheckoutSession, session.session_id)
    if row is None:
        row = CheckoutSession(
            id=session.session_id,
            backend_vendor=session.vendor,
            stage=flow.stage.value,
            created_at=session.created_at,
        )
        db.add(row)
    row.stage = flow.stage.value
    row.cart_id = flow.cart.cart_id if flow.cart.cart_id is not None else row.cart_id
    row.updated_at = now
    # Events reference the session row.
    db.flush()

    for offset, event in enumerate(flow.drain_events()):
        # Distinct timestamps keep the log ordered within one call.
        created_at = now + timedelta(microseconds=offset)
        db.add(
            EventLog(
                id=uuid4().hex,
                session_id=session.session_id,
                entity_type=event.entity_type.value,
                entity_id=event.entity_id,
                event_type=event.event_type.value,
                event_payload_json=event.payload,
                created_at=created_at,
            )
        )
        if event.event_type in _RECEIPT_EVENTS and flow.confirmation is not None:
            view = flow.confirmation
            db.add(
                OrderReceipt(
                    id=uuid4().hex,
                    session_id=session.session_id,
                    order_id=view.order_id,
                    order_number=view.order_number,
                    payment_method=view.payment_method,
                    total_amount=view.total,
                    references_json=dict(view.references),
                    created_at=created_at,
                )
            )

    db.commit()
    logger.debug("Recorded checkout session %s at %s", session.session_id, row.stage)
