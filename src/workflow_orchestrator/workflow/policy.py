"""Caller-supplied run policy and cancellation."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from workflow_orchestrator.errors import RunCancelledError

if TYPE_CHECKING:
    from workflow_orchestrator.orchestrator.config import OrchestratorSettings


class GatingErrorPolicy(str, Enum):
    """What a condition that fails to compile or evaluate means for the run."""

    FAIL_CLOSED = "fail_closed"  # abort the run
    FAIL_OPEN = "fail_open"  # treat the node as skipped and continue


@dataclass(frozen=True, slots=True)
class RunPolicy:
    gating_errors: GatingErrorPolicy = GatingErrorPolicy.FAIL_CLOSED
    tolerate_handler_failures: bool = False
    timeout_seconds: float | None = None

    @classmethod
    def from_settings(cls, settings: OrchestratorSettings) -> RunPolicy:
        timeout = settings.run_timeout_seconds
        return cls(
            gating_errors=settings.gating_error_policy,
            tolerate_handler_failures=settings.tolerate_handler_failures,
            timeout_seconds=timeout if timeout > 0 else None,
        )


class CancelToken:
    """Cooperative cancellation shared between a run and its handlers.

    A token is cancelled explicitly via :meth:`cancel` or implicitly once its
    deadline passes.
    """

    def __init__(self, *, timeout_seconds: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = None if timeout_seconds is None else time.monotonic() + timeout_seconds
        self._reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self._expired()

    @property
    def reason(self) -> str:
        if self._event.is_set():
            return self._reason
        if self._expired():
            return "deadline exceeded"
        return ""

    def remaining(self) -> float | None:
        """Seconds until the deadline, or ``None`` when there is none."""

        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return ``True`` early if cancelled."""

        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        return self._event.wait(seconds) or self.cancelled

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RunCancelledError(self.reason)

    def _expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline
