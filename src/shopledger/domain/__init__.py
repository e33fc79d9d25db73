from .models import User, Entry, Wholesaler, Transaction
from .errors import ValidationError, NotFoundError, AuthorizationError, StoreError, SnapshotError

__all__ = [
    "User",
    "Entry",
    "Wholesaler",
    "Transaction",
    "ValidationError",
    "NotFoundError",
    "AuthorizationError",
    "StoreError",
    "SnapshotError",
]
