# messenger/
# │
# ├── exceptions/
# │   ├── __init__.py
# │   ├── base.py                    # Store-level errors (RepositoryError, DuplicateError, ...)
# │   ├── integrity_classifier.py    # SQL-level / DB-specific classification
# │   ├── mapper.py                  # Map SQL-level errors to store-level errors
# │   └── client.py                  # Client-side taxonomy (gateway, queries, surfaces)

from .base import (
    RepositoryError,
    NotFoundError,
    DuplicateError,
    InvalidFieldError,
    InvalidInputError,
    UnauthenticatedError,
)
from .client import (
    MessagingError,
    NotAuthenticatedError,
    EmptyMessageError,
    TransientFetchError,
    SendFailedError,
    ResolveFailedError,
    RealtimeDisconnected,
)

__all__ = [
    "RepositoryError",
    "NotFoundError",
    "DuplicateError",
    "InvalidFieldError",
    "InvalidInputError",
    "UnauthenticatedError",
    "MessagingError",
    "NotAuthenticatedError",
    "EmptyMessageError",
    "TransientFetchError",
    "SendFailedError",
    "ResolveFailedError",
    "RealtimeDisconnected",
]
