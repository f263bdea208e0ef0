"""
Exceptions raised by the persistence layer.

A missing record is never an exception here: the legacy key-value store
returns ``None`` and the document store substitutes a default entity.
An empty selective update is logged and ignored rather than raised.
"""


class LedgerError(Exception):
    """Base class for all ledgerbot persistence errors."""


class InvariantViolation(LedgerError):
    """An entity was used in a way its contract forbids."""


class BackendUnavailable(LedgerError):
    """A backing store could not be reached or a connection could not be acquired."""

    def __init__(self, backend: str, detail: str):
        self.backend = backend
        self.detail = detail
        super().__init__(f"{backend} unavailable: {detail}")


class UnknownEntityKind(LedgerError):
    """No constructor is registered for the requested entity kind."""


class DeliveryFailure(LedgerError):
    """A scheduled item could not be delivered to its owner."""

    def __init__(self, owner_id: str, detail: str):
        self.owner_id = owner_id
        self.detail = detail
        super().__init__(f"Could not deliver to {owner_id}: {detail}")
