"""Error taxonomy shared by the payment services and the HTTP layer.

Services raise these; ``payflow.main`` turns them into JSON responses with the
matching status code.
"""
from typing import Any


class PaymentFlowError(Exception):
    status_code = 500

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(PaymentFlowError):
    status_code = 400


class SignatureMismatch(ValidationError):
    """Bad signature on an inbound notification. Treated as a security event."""


class Unauthorized(PaymentFlowError):
    status_code = 401


class Forbidden(PaymentFlowError):
    status_code = 403


class NotFound(PaymentFlowError):
    status_code = 404


class Conflict(PaymentFlowError):
    status_code = 409


class InvalidTransition(Conflict):
    pass


class ConfigurationError(PaymentFlowError):
    status_code = 500


class UpstreamError(PaymentFlowError):
    """The gateway failed or answered with something we cannot use.

    ``raw_body`` is kept for the audit trail. It never contains our credentials.
    """

    status_code = 502

    def __init__(self, message: str, *, gateway_status: int | None = None, raw_body: Any = None, **context: Any):
        super().__init__(message, **context)
        self.gateway_status = gateway_status
        self.raw_body = raw_body
