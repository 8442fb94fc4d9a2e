"""
Viewer identity for client-side messaging.

`viewer_id` is None when nobody is signed in; messaging surfaces then render
nothing and issue no store calls.
"""

from typing import Protocol
from uuid import UUID


class SessionProvider(Protocol):
    @property
    def viewer_id(self) -> UUID | None: ...


class StaticSession:
    """A session whose viewer is set explicitly (tests, the demo app)."""

    def __init__(self, viewer_id: UUID | None = None):
        self._viewer_id = viewer_id

    @property
    def viewer_id(self) -> UUID | None:
        return self._viewer_id

    @property
    def is_authenticated(self) -> bool:
        return self._viewer_id is not None

    def sign_in(self, viewer_id: UUID) -> None:
        self._viewer_id = viewer_id

    def sign_out(self) -> None:
        self._viewer_id = None
