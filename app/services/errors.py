# app/services/errors.py
#
# Domain exceptions raised by the service layer.
# Routes translate these into HTTP responses; the scheduler logs and counts them.


class ServiceError(Exception):
    """Base class for service-layer failures."""


class ConsentRequiredError(ServiceError):
    """The user has not granted data-processing consent (or does not exist)."""


class PersistenceError(ServiceError):
    """A database operation failed and was rolled back."""


class InsightGenerationError(ServiceError):
    """The text-generation service could not be reached or returned an error."""


class PushDeliveryError(ServiceError):
    """A push notification could not be delivered to a device token."""
