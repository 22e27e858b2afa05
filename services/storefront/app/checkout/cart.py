from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal

from services.storefront.app.checkout.auth import TokenStore
from services.storefront.app.checkout.errors import (
    AuthRequiredError,
    CartCreationError,
    CartSyncError,
)
from services.storefront.app.services.marketplace_base import (
    MarketplaceBackend,
    MarketplaceBackendError,
    MarketplaceHTTPError,
)

logger = logging.getLogger(__name__)

DEFAULT_SHIPPING_FEE = Decimal("100")


@dataclass(frozen=True, slots=True)
class Product:
    id: int
    name: str
    price: Decimal
    image: str | None = None


@dataclass(slots=True)
class CartItem:
    id: int
    name: str
    price: Decimal
    quantity: int
    image: str | None = None
    # Line id on the backend cart and the quantity it last acknowledged.
    backend_item_id: int | None = None
    synced_quantity: int = 0

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True, slots=True)
class CartSnapshot:
    items: tuple[CartItem, ...]
    cart_id: int | None
    sub_total: Decimal
    shipping: Decimal
    total: Decimal
    item_count: int
    distinct_item_count: int


class CartStore:
    """Client-side cart for one checkout session.

    Mutations are local and synchronous. The backend cart is created lazily the first time
    an id is needed, and the id is cached until `clear_cart()`. Local edits are mirrored
    onto it by `create_cart_on_backend()` and `sync_to_backend()`. Totals are always
    computed from the current items.
    """

    def __init__(
        self,
        backend: MarketplaceBackend,
        tokens: TokenStore,
        *,
        shipping_fee: Decimal = DEFAULT_SHIPPING_FEE,
    ) -> None:
        self._backend = backend
        self._tokens = tokens
        self._shipping_fee = shipping_fee
        self._items: dict[int, CartItem] = {}
        self._cart_id: int | None = None
        # Backend line ids whose local item was removed but not yet deleted remotely.
        self._removed: list[int] = []
        self._create_lock = asyncio.Lock()

    @property
    def items(self) -> list[CartItem]:
        return list(self._items.values())

    @property
    def cart_id(self) -> int | None:
        return self._cart_id

    def is_empty(self) -> bool:
        return not self._items

    @property
    def in_sync(self) -> bool:
        if self._removed:
            return False
        return all(
            item.backend_item_id is not None and item.synced_quantity == item.quantity
            for item in self._items.values()
        )

    def add_to_cart(self, product: Product, quantity: int = 1) -> CartItem:
        if quantity < 1:
            raise ValueError("quantity must be >= 1")
        price = Decimal(str(product.price))
        if price < 0:
            raise ValueError("price must be >= 0")

        existing = self._items.get(product.id)
        if existing is not None:
            existing.quantity += quantity
            return existing

        item = CartItem(
            id=product.id,
            name=product.name,
            price=price,
            quantity=quantity,
            image=product.image,
        )
        self._items[product.id] = item
        return item

    def update_quantity(self, item_id: int, quantity: int) -> None:
        if quantity <= 0:
            self.remove_item(item_id)
            return

        item = self._items.get(item_id)
        if item is not None:
            item.quantity = quantity

    def remove_item(self, item_id: int) -> None:
        item = self._items.pop(item_id, None)
        if item is not None and item.backend_item_id is not None:
            self._removed.append(item.backend_item_id)

    def clear_cart(self) -> None:
        self._items.clear()
        self._removed.clear()
        self._cart_id = None

    async def create_cart_on_backend(self) -> int:
        """Return the backend cart id, creating the cart and pushing pending edits first."""
        if self._cart_id is not None and self.in_sync:
            return self._cart_id

        async with self._create_lock:
            # A concurrent caller may have done the work while we waited.
            if self._cart_id is not None and self.in_sync:
                return self._cart_id

            token = self._tokens.get()
            if not token:
                raise AuthRequiredError()

            if self._cart_id is None:
                try:
                    cart_id = await self._backend.create_cart(token)
                except MarketplaceHTTPError as e:
                    if e.status_code in (401, 403):
                        raise AuthRequiredError() from e
                    logger.warning("Cart creation failed: %s", e)
                    raise CartCreationError(e.detail()) from e
                except MarketplaceBackendError as e:
                    logger.warning("Cart creation failed: %s", e)
                    raise CartCreationError() from e

                self._cart_id = cart_id
                logger.info("Backend cart %s created", cart_id)

            cart_id = self._cart_id
            await self._push(token, cart_id)
            return cart_id

    async def sync_to_backend(self) -> None:
        """Mirror local edits onto an existing backend cart. No-op before the cart exists."""
        if self._cart_id is None or self.in_sync:
            return

        async with self._create_lock:
            if self._cart_id is None or self.in_sync:
                return
            token = self._tokens.get()
            if not token:
                raise AuthRequiredError()
            await self._push(token, self._cart_id)

    async def restore_from_backend(self) -> bool:
        """Replace local items with the buyer's open backend cart.

        Returns False when the buyer has no open cart; local items are then left alone.
        """
        token = self._tokens.get()
        if not token:
            raise AuthRequiredError()

        async with self._create_lock:
            try:
                remote = await self._backend.get_my_cart(token)
            except MarketplaceHTTPError as e:
                if e.status_code == 404:
                    return False
                if e.status_code in (401, 403):
                    raise AuthRequiredError() from e
                logger.warning("Cart restore failed: %s", e)
                raise CartSyncError(e.detail() or "Failed to load your cart") from e
            except MarketplaceBackendError as e:
                logger.warning("Cart restore failed: %s", e)
                raise CartSyncError("Failed to load your cart") from e

            self._items = {
                line.product: CartItem(
                    id=line.product,
                    name=line.display_name,
                    price=line.unit_price if line.unit_price is not None else Decimal("0"),
                    quantity=line.quantity,
                    backend_item_id=line.id,
                    synced_quantity=line.quantity,
                )
                for line in remote.items
            }
            self._removed.clear()
            self._cart_id = remote.id
            logger.info("Backend cart %s restored with %d lines", remote.id, len(self._items))
            return True

    async def _push(self, token: str, cart_id: int) -> None:
        try:
            while self._removed:
                try:
                    await self._backend.delete_cart_item(token, cart_id, self._removed[0])
                except MarketplaceHTTPError as e:
                    # Already gone remotely.
                    if e.status_code != 404:
                        raise
                self._removed.pop(0)

            for item in list(self._items.values()):
                quantity = item.quantity
                if item.backend_item_id is None:
                    item.backend_item_id = await self._backend.add_cart_item(
                        token, cart_id, item.id, quantity
                    )
                    item.synced_quantity = quantity
                    if self._items.get(item.id) is not item:
                        # Removed locally while the add was in flight.
                        self._removed.append(item.backend_item_id)
                elif item.synced_quantity != quantity:
                    await self._backend.update_cart_item(
                        token, cart_id, item.backend_item_id, quantity
                    )
                    item.synced_quantity = quantity
        except MarketplaceHTTPError as e:
            if e.status_code in (401, 403):
                raise AuthRequiredError() from e
            logger.warning("Cart %s sync failed: %s", cart_id, e)
            raise CartSyncError(e.detail()) from e
        except MarketplaceBackendError as e:
            logger.warning("Cart %s sync failed: %s", cart_id, e)
            raise CartSyncError() from e

    @property
    def sub_total(self) -> Decimal:
        return sum((item.line_total for item in self._items.values()), Decimal("0"))

    @property
    def shipping(self) -> Decimal:
        return self._shipping_fee if self._items else Decimal("0")

    @property
    def total(self) -> Decimal:
        return self.sub_total + self.shipping

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self._items.values())

    @property
    def distinct_item_count(self) -> int:
        return len(self._items)

    def snapshot(self) -> CartSnapshot:
        return CartSnapshot(
            items=tuple(
                CartItem(id=i.id, name=i.name, price=i.price, quantity=i.quantity, image=i.image)
                for i in self._items.values()
            ),
            cart_id=self._cart_id,
            sub_total=self.sub_total,
            shipping=self.shipping,
            total=self.total,
            item_count=self.item_count,
            distinct_item_count=self.distinct_item_count,
        )
