from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from services.storefront.app.models.cart import CartOut


class SessionCreateRequest(BaseModel):
    token: str | None = None


class SessionOut(BaseModel):
    session_id: str
    stage: str
    authenticated: bool
    cart: CartOut


class AuthRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(..., min_length=1)


class AuthResponse(BaseModel):
    session_id: str
    stage: str
    authenticated: bool
    # True when a held delivery submit was replayed and accepted.
    replayed: bool
    cart_id: int | None = None
