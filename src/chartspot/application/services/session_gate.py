"""Session gate - "last request wins" for overlapping refreshes.

Hey future me - a user can hit refresh while the previous refresh is still
enriching. We do NOT cancel the old one (its lookups still warm the metadata
cache, which is useful). Instead every refresh gets a token, and every write
to shared state goes through apply(token, ...). Only the newest token gets
through; everything from older sessions is logged and dropped.

begin() stamps the token SYNCHRONOUSLY, before the caller awaits anything.
That's what makes "the one started last wins" hold even when the older
refresh's network calls come back later.
"""

import logging
import uuid
from collections.abc import Callable

logger = logging.getLogger(__name__)


class SessionGate:
    """Tracks the current session token and filters stale writes."""

    def __init__(self) -> None:
        self._current: str | None = None

    @property
    def current(self) -> str | None:
        return self._current

    def begin(self) -> str:
        """Start a new session; all older tokens become stale."""
        token = str(uuid.uuid4())
        self._current = token
        logger.debug("Session %s started", token)
        return token

    def is_current(self, token: str) -> bool:
        return token == self._current

    def apply(self, token: str, fn: Callable[[], None], *, stage: str) -> bool:
        """Run fn only if token is still the current session.

        Returns:
            True if fn ran, False if the results were discarded
        """
        if not self.is_current(token):
            logger.info("Session %s is stale, discarding %s results", token, stage)
            return False
        fn()
        return True
