"""Generation tokens: the last request for a subject wins, not the last response."""

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from treninfo.core.errors import TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RefreshCoordinator:
    """Tracks the latest issued token and in-flight task per subject.

    A subject is anything a caller refreshes independently, such as a
    tracking key or a search query. One coordinator is owned by the
    application and shared by whoever refreshes those subjects. Tokens are
    unique across subjects, so a subject's entry is dropped as soon as
    nothing is in flight for it.
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._tokens: dict[str, int] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def issue(self, subject: str) -> int:
        token = next(self._counter)
        self._tokens[subject] = token
        return token

    def is_current(self, subject: str, token: int) -> bool:
        return self._tokens.get(subject) == token

    def cancel(self, subject: str) -> None:
        """Invalidate and stop whatever is in flight for ``subject``, then forget it."""
        self._tokens.pop(subject, None)
        task = self._tasks.pop(subject, None)
        if task is not None and not task.done():
            task.cancel()

    async def run(self, subject: str, factory: Callable[[], Awaitable[T]]) -> T | None:
        """Run ``factory()`` as the newest request for ``subject``.

        Any previous in-flight request for the subject is cancelled; its
        caller gets ``TransportError(cancelled=True)``. A result that comes
        back after a newer token was issued is discarded and None returned.
        """
        previous = self._tasks.get(subject)
        if previous is not None and not previous.done():
            previous.cancel()

        token = self.issue(subject)
        task = asyncio.ensure_future(factory())
        self._tasks[subject] = task
        try:
            result = await task
        except asyncio.CancelledError:
            if self.is_current(subject, token):
                raise
            raise TransportError(f"Request for {subject} was superseded", cancelled=True) from None
        finally:
            current = self.is_current(subject, token)
            if self._tasks.get(subject) is task:
                del self._tasks[subject]
                if current:
                    del self._tokens[subject]

        if not current:
            logger.debug("Discarding stale result for %s (token %d)", subject, token)
            return None
        return result
