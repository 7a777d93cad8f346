class StorefrontError(Exception):
    """Base class for errors shown to shoppers and staff."""


class ValidationError(StorefrontError):
    pass


class CheckoutError(StorefrontError):
    pass


class PaymentError(StorefrontError):
    """The payment gateway refused or could not create a checkout session."""
