"""Per-call context threaded from the transport into every orchestration call."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from threading import Event

from .errors import CancelledError, DeadlineExceededError


@dataclass(slots=True)
class CallContext:
    """Deadline, cancellation signal and caller metadata for one inbound call.

    ``deadline`` is a ``time.monotonic()`` timestamp; ``None`` means unbounded.
    """

    tenant_id: str
    deadline: float | None = None
    cancelled: Event = field(default_factory=Event)
    peer: str | None = None
    method: str | None = None

    @classmethod
    def with_timeout(
        cls,
        tenant_id: str,
        timeout_seconds: float | None,
        *,
        peer: str | None = None,
        method: str | None = None,
    ) -> "CallContext":
        """Build a context whose deadline lies ``timeout_seconds`` from now."""
        deadline = None
        if timeout_seconds is not None:
            deadline = time.monotonic() + timeout_seconds
        return cls(tenant_id=tenant_id, deadline=deadline, peer=peer, method=method)

    def cancel(self) -> None:
        self.cancelled.set()

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or ``None`` when unbounded."""
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def ensure_active(self) -> None:
        """Raise when the call was cancelled or its deadline has already passed."""
        if self.cancelled.is_set():
            raise CancelledError()
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise DeadlineExceededError()
