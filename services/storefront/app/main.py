"""Storefront checkout service entrypoint."""

import logging

from fastapi import FastAPI

from services.storefront.app.db.init_db import init_db
from services.storefront.app.routers.cart import router as cart_router
from services.storefront.app.routers.checkout import router as checkout_router
from services.storefront.app.routers.events import router as events_router
from services.storefront.app.routers.orders import router as orders_router
from services.storefront.app.routers.sessions import router as sessions_router
from services.storefront.app.services.marketplace_factory import close_shared_backend
from services.storefront.app.settings import Settings

logging.basicConfig(
    level=Settings.from_env().log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = FastAPI(title="Storefront API")

app.include_router(sessions_router)
app.include_router(cart_router)
app.include_router(checkout_router)
app.include_router(orders_router)
app.include_router(events_router)


@app.on_event("startup")
def _startup() -> None:
    init_db()


@app.on_event("shutdown")
async def _shutdown() -> None:
    await close_shared_backend()


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
