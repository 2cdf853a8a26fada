"""
Exceptions raised by the booking engine.

Expected business outcomes (policy rejections, sold-out dates) are not
exceptions; see ``outcomes.py``. What lives here is bad input, missing or
foreign records, broken invariants and retryable database contention.
"""


class BookingEngineError(Exception):
    """Base class for every error the engine raises on purpose."""


class BookingValidationError(BookingEngineError):
    """Input is malformed or violates a configuration constraint."""


class NotFoundError(BookingEngineError):
    pass


class PermissionDeniedError(BookingEngineError):
    pass


class DuplicateWaitlistEntry(BookingEngineError):
    pass


class BookingIntegrityError(BookingEngineError):
    """
    A broken invariant. Never corrected silently: the operation halts,
    the transaction rolls back and the error is surfaced as a 500.
    """


class LedgerIntegrityError(BookingIntegrityError):
    pass


class InvalidTransition(BookingIntegrityError):
    def __init__(self, entity: str, entity_id, current, requested):
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"{entity} {entity_id} cannot move from {getattr(current, 'value', current)} "
            f"to {getattr(requested, 'value', requested)}"
        )


class TransientError(BookingEngineError):
    """Serialization failure or deadlock that survived the retry budget."""
