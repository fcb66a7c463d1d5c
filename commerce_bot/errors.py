"""Error taxonomy shared by the chat flows, adapters and the Flow endpoint."""


class CommerceError(Exception):
    """Base class for expected, user-recoverable commerce failures."""


class EmptyCartError(CommerceError):
    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class InvalidCartTotalError(CommerceError):
    def __init__(self, total=None):
        self.total = total
        super().__init__(f"Cart total is invalid: {total}")


class ProductNotFoundError(CommerceError):
    def __init__(self, retailer_id: str):
        self.retailer_id = retailer_id
        super().__init__(f"Product {retailer_id} was not found in the catalog")


class ProductUnavailableError(CommerceError):
    def __init__(self, retailer_id: str, availability: str):
        self.retailer_id = retailer_id
        self.availability = availability
        super().__init__(f"Product {retailer_id} is {availability}")


class CatalogError(CommerceError):
    """Catalog API failed or returned an unusable product."""

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class InvalidPriceError(CatalogError):
    """The catalog knows the product but its price is missing or unusable."""


class PaymentError(CommerceError):
    """Payment gateway rejected or failed a request."""


class WhatsAppAPIError(CommerceError):
    """WhatsApp Cloud API returned a non-2xx response."""

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


# ============================================================
# FLOW ENDPOINT ERRORS
# ============================================================
class FlowEndpointError(Exception):
    """Fatal error for a single Flow request, carrying the HTTP status to return.

    421 tells the WhatsApp client to re-fetch the public key and retry.
    """

    status_code = 421

    def __init__(self, message: str, status_code: int = None):
        if status_code is not None:
            self.status_code = status_code
        self.message = message
        super().__init__(message)


class FlowDecryptionFailed(FlowEndpointError):
    pass


class FlowEncryptionFailed(FlowEndpointError):
    pass


class FlowKeyError(FlowEndpointError):
    """No usable private key could be resolved."""
