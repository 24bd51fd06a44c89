# core/errors.py
"""
Failure taxonomy shared by services, jobs and routers.

Interactive endpoints surface these to the caller; background jobs log them
per item and carry on with the rest of the batch.
"""


class PaycollectError(Exception):
    """Base class for every domain failure."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(PaycollectError):
    status_code = 422


class NotFound(PaycollectError):
    status_code = 404


class GatewayError(PaycollectError):
    """The payment gateway rejected a call or could not be reached."""

    status_code = 502


class NotifyError(PaycollectError):
    status_code = 502


class SignatureError(PaycollectError):
    """Webhook payload failed signature verification. No state was touched."""

    status_code = 400


class DuplicatePayment(PaycollectError):
    """The checkout session is already recorded. Treated as success."""


class LeaseHeld(PaycollectError):
    """Another batch for the same operation is still in flight."""

    status_code = 409
