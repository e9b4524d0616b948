"""Errors raised by the storage layer."""


class StorageError(Exception):
    """Raised when the store cannot complete a read or write."""


class TransactionClaimConflictError(StorageError):
    """Raised when a transaction is already claimed by another aggregation."""

    def __init__(self, aggregation_id: str, conflicts: dict[str, str]) -> None:
        self.aggregation_id = aggregation_id
        self.conflicts = conflicts
        listed = ", ".join(f"{tx} -> {owner}" for tx, owner in sorted(conflicts.items()))
        super().__init__(f"cannot claim for {aggregation_id}: already claimed ({listed})")
