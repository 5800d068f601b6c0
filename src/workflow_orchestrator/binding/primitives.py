"""Thread-safe building blocks for deferred construction.

Constructors never run while a lock is held. A constructor that reaches back
into the primitive building it gets an error instead of a deadlock.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from workflow_orchestrator.errors import BindingError, NotReadyError

logger = logging.getLogger(__name__)

SlotFactory = Callable[[Any], Any]


class Once:
    """Run a constructor at most once successfully; later callers reuse the result.

    A constructor that raises leaves the primitive unset, so the next caller
    tries again. Callers on other threads wait for a running constructor;
    the constructing thread itself may not re-enter.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._done = False
        self._value: Any = None
        self._owner: int | None = None

    @property
    def done(self) -> bool:
        return self._done

    @property
    def value(self) -> Any:
        if not self._done:
            raise RuntimeError("Once has not completed")
        return self._value

    @property
    def running_in_current_thread(self) -> bool:
        return self._owner == threading.get_ident()

    def do(self, fn: Callable[[], Any]) -> Any:
        """Return the stored value, running ``fn`` first if nothing succeeded yet.

        Raises:
            RuntimeError: If called again from inside ``fn``.
        """

        if self._done:
            return self._value
        me = threading.get_ident()
        with self._cond:
            while not self._done and self._owner is not None:
                if self._owner == me:
                    raise RuntimeError("Once.do re-entered from its own constructor")
                self._cond.wait()
            if self._done:
                return self._value
            self._owner = me

        try:
            value = fn()
        except BaseException:
            with self._cond:
                self._owner = None
                self._cond.notify_all()
            raise

        with self._cond:
            self._value = value
            self._done = True
            self._owner = None
            self._cond.notify_all()
        return value


class DeferredRegistry:
    """Pending construction requests keyed by slot ID, drained exactly once.

    One lock guards the pending queue, the resolved flag and the results.
    Factories run outside it: a ``get`` for a slot still being built raises
    :class:`NotReadyError`, and a concurrent ``resolve`` waits for the drain.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._drained = threading.Condition(self._lock)
        self._pending: dict[str, SlotFactory] = {}
        self._building: set[str] = set()
        self._results: dict[str, Any] = {}
        self._failures: dict[str, BaseException] = {}
        self._drainer: int | None = None
        self._resolved = False

    @property
    def resolved(self) -> bool:
        with self._lock:
            return self._resolved

    def request(self, slot: str, factory: SlotFactory) -> None:
        """Queue ``factory`` to build ``slot`` once dependencies are provided.

        Raises:
            ValueError: If ``slot`` is already requested.
            RuntimeError: If the registry was already drained.
        """

        with self._lock:
            if self._resolved or self._drainer is not None:
                raise RuntimeError(f"Registry already resolved; cannot request {slot}")
            if slot in self._pending:
                raise ValueError(f"Slot already requested: {slot}")
            self._pending[slot] = factory

    def resolve(self, dependencies: Any) -> None:
        """Drain every pending request. Later calls are no-ops.

        A call racing the drain on another thread returns once the drain is
        over; a call made from inside a factory returns at once.

        Raises:
            BindingError: If any factory failed. Successful slots stay available.
        """

        me = threading.get_ident()
        with self._lock:
            if self._resolved:
                return
            if self._drainer is not None:
                if self._drainer != me:
                    while not self._resolved:
                        self._drained.wait()
                return
            self._drainer = me
            pending = list(self._pending.items())
            self._pending.clear()
            self._building.update(slot for slot, _ in pending)

        failures: dict[str, BaseException] = {}
        try:
            for slot, factory in pending:
                try:
                    instance = factory(dependencies)
                except Exception as e:
                    logger.exception("Deferred construction failed", extra={"slot": slot})
                    failures[slot] = e
                    with self._lock:
                        self._failures[slot] = e
                        self._building.discard(slot)
                    continue
                with self._lock:
                    self._results[slot] = instance
                    self._building.discard(slot)
                logger.info("Deferred construction resolved", extra={"slot": slot})
        finally:
            with self._lock:
                self._building.clear()
                self._resolved = True
                self._drainer = None
                self._drained.notify_all()

        if failures:
            raise BindingError(failures)

    def has(self, slot: str) -> bool:
        with self._lock:
            return slot in self._results

    def get(self, slot: str) -> Any:
        """Return the instance built for ``slot``.

        Raises:
            NotReadyError: Before resolution, while the slot is being built, or
                if it failed to build.
            KeyError: If ``slot`` was never requested.
        """

        with self._lock:
            if slot in self._results:
                return self._results[slot]
            if slot in self._failures:
                raise NotReadyError(slot, f"construction failed: {self._failures[slot]}")
            if slot in self._building:
                raise NotReadyError(slot, "construction in progress")
            if slot in self._pending:
                raise NotReadyError(slot)
        raise KeyError(slot)
