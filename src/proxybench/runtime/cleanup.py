from __future__ import annotations

import logging
import signal
import threading
from typing import Any, Callable, List, Tuple

log = logging.getLogger("proxybench.cleanup")

TEARDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


class Cleanup:
    """Once-only LIFO cleanup registry used as a context manager.

    Actions run on every exit path: normal completion, exceptions and
    operator aborts. A failing action is logged and the remaining ones
    still run; nothing raised here ever replaces the primary outcome.
    """

    def __init__(self) -> None:
        self._actions: List[Tuple[str, Callable[[], Any]]] = []
        self._lock = threading.Lock()
        self._done = False
        self._previous_handlers: dict[int, Any] = {}

    def register(self, name: str, action: Callable[[], Any]) -> None:
        with self._lock:
            if self._done:
                raise RuntimeError("cleanup already ran")
            self._actions.append((name, action))

    @property
    def done(self) -> bool:
        return self._done

    def run(self) -> None:
        with self._lock:
            if self._done:
                return
            self._done = True
            actions = list(reversed(self._actions))
            self._actions.clear()
        for name, action in actions:
            log.debug("cleanup: %s", name)
            try:
                action()
            except BaseException as exc:  # noqa: BLE001
                # an interrupt inside one step must not skip the remaining ones
                log.debug("cleanup step %s failed: %r", name, exc)

    def install_signal_handlers(self) -> None:
        def _handle_signal(signum, _frame) -> None:  # type: ignore[no-untyped-def]
            log.info("received signal %s, aborting", signum)
            raise KeyboardInterrupt

        self._previous_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, _handle_signal)
        self._previous_handlers[signal.SIGHUP] = signal.signal(signal.SIGHUP, _handle_signal)

    def restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def __enter__(self) -> "Cleanup":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        # ignore interrupts and termination requests while tearing down so cleanup finishes
        in_main = threading.current_thread() is threading.main_thread()
        masked: dict[int, Any] = {}
        if in_main:
            for signum in TEARDOWN_SIGNALS:
                masked[signum] = signal.signal(signum, signal.SIG_IGN)
        try:
            self.run()
        finally:
            if in_main:
                for signum, handler in masked.items():
                    signal.signal(signum, handler)
                self.restore_signal_handlers()
        return False
