"""Exceptions raised by the ride offer protocol."""


class RideOfferError(Exception):
    """Base exception for ride offer and negotiation errors."""


class InvalidStateTransition(RideOfferError):
    """Raised when a ride status change violates the state machine."""


class RideNotFound(RideOfferError):
    """Raised when a ride document does not exist."""


class IdentityNotFound(RideOfferError):
    """Raised when a passenger or driver record does not exist."""


class OfferUnavailable(RideOfferError):
    """Raised when a conditional write loses its race (ride taken, cancelled or changed)."""


class ValidationFailed(RideOfferError):
    """Raised when input is rejected before any store call."""


class InvalidFare(ValidationFailed):
    """Raised when a fare falls outside the allowed bounds."""


class InvalidRating(ValidationFailed):
    """Raised when a rating is outside 1..5."""


class UnknownCancellationReason(ValidationFailed):
    """Raised when a cancellation code is not configured."""


class ExternalServiceError(RideOfferError):
    """Raised when the arbitration or sentiment collaborator fails."""
