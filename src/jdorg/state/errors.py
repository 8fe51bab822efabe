"""Data store errors."""


class StateError(Exception):
    """Base exception for data store operations."""


class MissingStateError(StateError):
    """Raised when a store document is expected but absent."""


class RecordNotFoundError(StateError, LookupError):
    """Raised when an id does not reference an existing record."""

    def __init__(self, table: str, record_id: int) -> None:
        super().__init__(f"No {table} record with id {record_id}.")
        self.table = table
        self.record_id = record_id


class InvalidInputError(StateError, ValueError):
    """Raised when input fails validation at a store boundary.

    Covers unknown enumeration values, malformed rule patterns, and
    disallowed state transitions.
    """
