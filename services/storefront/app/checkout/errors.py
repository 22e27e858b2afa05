from __future__ import annotations


class CheckoutError(Exception):
    """Base class for checkout errors surfaced to the buyer."""


class AuthRequiredError(CheckoutError):
    def __init__(self, message: str = "Authentication required. Please log in.") -> None:
        super().__init__(message)


class EmptyCartError(CheckoutError):
    def __init__(self) -> None:
        super().__init__("Your cart is empty. Add items before checking out.")


class CartMissingError(CheckoutError):
    def __init__(self) -> None:
        super().__init__("Cart not found. Please re-enter your delivery details.")


class CartCreationError(CheckoutError):
    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or "Failed to create cart")
        self.detail = detail


class DeliveryValidationError(CheckoutError):
    def __init__(self, field_errors: dict[str, str]) -> None:
        super().__init__("; ".join(f"{k}: {v}" for k, v in field_errors.items()))
        self.field_errors = field_errors


class PaymentSelectionError(CheckoutError):
    """The buyer has to finish choosing a payment method first."""


class PaymentInitiationError(CheckoutError):
    """The gateway was unreachable or rejected the initiation. No order was created."""


class SubmissionInProgressError(CheckoutError):
    def __init__(self) -> None:
        super().__init__("A payment is already being processed")


class OrderValidationError(CheckoutError):
    def __init__(self, message: str, field_errors: dict | None = None) -> None:
        super().__init__(message)
        self.field_errors = field_errors or {}


class OrderCreationError(CheckoutError):
    pass


class CheckoutStateError(CheckoutError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move checkout from {current} to {target}")
        self.current = current
        self.target = target


class OrderLookupError(CheckoutError):
    """Reading an existing order or the order history failed."""


class CartSyncError(CheckoutError):
    """Local cart edits could not be mirrored onto the backend cart."""

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or "Failed to update your cart")
        self.detail = detail


class PaymentVerificationError(CheckoutError):
    def __init__(self) -> None:
        super().__init__("We could not verify your payment yet. Please try again in a moment.")


class DeliverySyncError(CheckoutError):
    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or "Failed to save your delivery location")
        self.detail = detail
