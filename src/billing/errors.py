"""Billing error taxonomy.

Gateway declines are not errors: they come back as ``ChargeResult`` values.
The exceptions below are faults (the gateway could not be reached) or
rejections of inbound webhook deliveries.
"""


class BillingError(Exception):
    """Base class for billing faults."""


class TransientGatewayError(BillingError):
    """Timeout, connection failure or 5xx from the payment gateway."""


class WebhookRejected(BillingError):
    """An inbound webhook delivery that must not be processed."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MalformedWebhook(WebhookRejected):
    """Body is not JSON or lacks eventType/timestamp/data, or is unsigned."""

    status_code = 400


class InvalidWebhookSignature(WebhookRejected):
    """Signature does not match the shared secret, or no secret is configured."""

    status_code = 401
