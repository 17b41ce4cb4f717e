class BookingError(Exception):
    """Base class for every error raised by the booking core."""

    status_code = 500

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(BookingError):
    """Bad client input. The message is safe to return verbatim."""

    status_code = 400


class InvalidBookingError(ValidationError):
    pass


class NotFoundError(BookingError):
    status_code = 404


class InvalidStateError(BookingError):
    status_code = 409


class PaymentProviderError(BookingError):
    status_code = 502


class PersistenceError(BookingError):
    status_code = 503


class EmailDeliveryError(BookingError):
    pass


class WebhookSignatureError(BookingError):
    status_code = 400
