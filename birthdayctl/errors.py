class ValidationError(ValueError):
    """Malformed input (timezone, date, email...). Surfaced to the caller, never retried."""


class StoreError(RuntimeError):
    """The job store could not complete a read or write."""


class DeliveryError(RuntimeError):
    """The mail transport failed to send a message."""
