"""
Custom exceptions for the scheduling service.
"""


class SRSException(Exception):
    """Base exception for all scheduling service exceptions."""

    code = "srs_error"


class ValidationError(SRSException):
    """Raised when request validation fails."""

    code = "validation_error"


class NotFoundError(SRSException):
    """Raised when a requested resource is not found."""

    code = "not_found"

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(f"{resource} not found: {resource_id}")
        self.resource = resource
        self.resource_id = resource_id


class CardNotFoundError(NotFoundError):
    def __init__(self, card_id: str) -> None:
        super().__init__("Card", card_id)


class ConflictError(SRSException):
    """Raised when a write conflicts with the current state of a record."""

    code = "conflict"


class StaleCardError(ConflictError):
    """Raised when a card changed between read and write."""

    def __init__(self, card_id: str, expected_version: int) -> None:
        super().__init__(f"Card {card_id} was modified concurrently (expected version {expected_version})")
        self.card_id = card_id
        self.expected_version = expected_version


class CardSuspendedError(ConflictError):
    def __init__(self, card_id: str) -> None:
        super().__init__(f"Card {card_id} is suspended")
        self.card_id = card_id
