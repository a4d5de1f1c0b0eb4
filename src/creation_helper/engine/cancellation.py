"""Own the active request id and tear it down on abort or disposal."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Protocol

from ..events import Unlisten
from .stream import StreamCorrelator

logger = logging.getLogger(__name__)


class CancelsSessions(Protocol):
    async def cancel(self, session_id: str) -> None:
        ...


class CancellationController:
    """Hold the in-flight request and cancel it cooperatively.

    Aborting never waits for the backend: the subscription is dropped, the
    cancellation call is scheduled in the background and local buffers are
    cleared immediately.
    """

    def __init__(self, backend: CancelsSessions, correlator: StreamCorrelator) -> None:
        self._backend = backend
        self._correlator = correlator
        self._session_id: str | None = None
        self._request_id: str | None = None
        self._teardown: Unlisten | None = None
        self._aborted: set[str] = set()
        self._pending_cancels: set[asyncio.Task[None]] = set()

    @property
    def request_id(self) -> str | None:
        return self._request_id

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def is_active(self) -> bool:
        return self._request_id is not None

    def arm(self, session_id: str) -> str:
        """Start tracking a fresh request for ``session_id``."""

        self._drop_subscription()
        request_id = str(uuid.uuid4())
        self._teardown = self._correlator.subscribe(session_id, request_id)
        self._session_id = session_id
        self._request_id = request_id
        return request_id

    def release(self, request_id: str) -> None:
        """Tear down after ``request_id``'s round trip resolved."""

        if request_id != self._request_id:
            return
        self._drop_subscription()
        self._request_id = None
        self._session_id = None

    def was_aborted(self, request_id: str) -> bool:
        """Return whether ``request_id`` was aborted, forgetting it afterwards."""

        try:
            self._aborted.remove(request_id)
        except KeyError:
            return False
        return True

    def abort(self) -> asyncio.Task[None] | None:
        """Abort the in-flight request; returns the scheduled backend cancel."""

        request_id, session_id = self._request_id, self._session_id
        if request_id is None or session_id is None:
            return None

        self._aborted.add(request_id)
        self._correlator.unsubscribe()
        task = self.cancel_session(session_id)
        self._drop_subscription()
        self._request_id = None
        self._session_id = None
        logger.info("Aborted request %s for session %s", request_id, session_id)
        return task

    def cancel_session(self, session_id: str) -> asyncio.Task[None]:
        """Schedule a best-effort backend cancellation for ``session_id``."""

        task = asyncio.create_task(self._cancel_backend(session_id))
        self._pending_cancels.add(task)
        task.add_done_callback(self._pending_cancels.discard)
        return task

    def dispose(self) -> asyncio.Task[None] | None:
        """Release everything; invoked on session switch and engine disposal."""

        task = self.abort()
        self._correlator.reset()
        return task

    async def wait_for_pending(self, timeout: float = 2.0) -> None:
        pending = list(self._pending_cancels)
        if not pending:
            return
        try:
            await asyncio.wait_for(asyncio.gather(*pending), timeout=timeout)
        except Exception as exc:
            logger.warning("Pending cancellations did not finish: %s", exc)

    async def _cancel_backend(self, session_id: str) -> None:
        try:
            await self._backend.cancel(session_id)
        except Exception as exc:
            logger.warning("Cancel request for session %s failed: %s", session_id, exc)

    def _drop_subscription(self) -> None:
        teardown, self._teardown = self._teardown, None
        if teardown is None:
            return
        try:
            teardown()
        except Exception as exc:  # pragma: no cover
            logger.warning("Stream teardown failed: %s", exc)


__all__ = ["CancellationController", "CancelsSessions"]
