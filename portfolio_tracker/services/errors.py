"""
Error taxonomy for the ledger core.

Routes and callers branch on these types; none of them is retried here.
"""
from __future__ import annotations


class LedgerError(Exception):
    """Base class for every error raised by the ledger core."""


class LedgerValidationError(LedgerError):
    """Input rejected before any write was attempted."""


class NotFoundOrUnauthorized(LedgerError):
    """The target row is missing or belongs to another owner.

    Both cases share one type and one message so callers cannot use them to
    discover other owners' ids.
    """

    def __init__(self, entity: str, entity_id: int | None = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found or unauthorized")


class PersistenceFailure(LedgerError):
    """A storage round trip failed."""


class StaleStateError(LedgerError):
    """A recompute target disappeared between the write and the re-read."""


class NoActiveOwner(LedgerError):
    def __init__(self) -> None:
        super().__init__("No owner is active")
