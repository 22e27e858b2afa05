from __future__ import annotations

import os

from services.storefront.app.db.database import get_engine
from services.storefront.app.db.models import Base
from services.storefront.app.settings import _parse_bool


def init_db() -> None:
    if not _parse_bool(os.getenv("STOREFRONT_DB_AUTO_CREATE", "true")):
        return

    engine = get_engine()
    Base.metadata.create_all(bind=engine)
