"""Cancellation contexts shared between a server and the applications it runs."""

from __future__ import annotations

import functools
import threading
from typing import Callable


class ContextError(Exception):
    """Base class for the reasons a context can finish."""


class Cancelled(ContextError):
    """The context was cancelled explicitly or by its parent."""

    def __init__(self, message: str = "context canceled") -> None:
        super().__init__(message)


class DeadlineExceeded(ContextError):
    """The context's timeout elapsed."""

    def __init__(self, message: str = "context deadline exceeded") -> None:
        super().__init__(message)


class Context:
    """A thread-safe cancellation signal with an optional parent and timeout.

    A context finishes when it is cancelled, when its timeout elapses, or when
    its parent finishes; it then keeps the first reason it finished for.
    """

    def __init__(self, parent: Context | None = None, timeout: float | None = None) -> None:
        self._lock = threading.Lock()
        self._finished = threading.Event()
        self._error: ContextError | None = None
        self._listeners: dict[object, Callable[[], None]] = {}
        self._timer: threading.Timer | None = None
        self._detach: Callable[[], None] | None = None
        self._parent = parent

        if parent is not None:
            self._detach = parent._subscribe(self._propagate)

        if timeout is not None and not self._finished.is_set():
            if timeout <= 0:
                self._finish(DeadlineExceeded())
            else:
                timer = threading.Timer(timeout, self._expire)
                timer.daemon = True
                with self._lock:
                    if self._error is None:
                        self._timer = timer
                        timer.start()

    def __enter__(self) -> Context:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cancel()

    def cancel(self) -> None:
        """Finish the context as cancelled; later calls have no effect."""
        self._finish(Cancelled())

    def done(self) -> bool:
        """Return True once the context has finished."""
        return self._finished.is_set()

    def error(self) -> ContextError | None:
        """Return why the context finished, or None while it is still live."""
        with self._lock:
            return self._error

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the context finishes or ``timeout`` seconds pass.

        Returns True if the context has finished.
        """
        return self._finished.wait(timeout)

    def _expire(self) -> None:
        self._finish(DeadlineExceeded())

    def _propagate(self) -> None:
        parent_error = self._parent.error() if self._parent is not None else None
        self._finish(type(parent_error)() if parent_error is not None else Cancelled())

    def _subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Call ``callback`` once the context finishes; return a detach function."""
        with self._lock:
            if self._error is None:
                token = object()
                self._listeners[token] = callback
                return functools.partial(self._unsubscribe, token)
        callback()
        return lambda: None

    def _unsubscribe(self, token: object) -> None:
        with self._lock:
            self._listeners.pop(token, None)

    def _finish(self, error: ContextError) -> None:
        with self._lock:
            if self._error is not None:
                return
            self._error = error
            listeners = list(self._listeners.values())
            self._listeners.clear()
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        self._finished.set()
        if self._detach is not None:
            self._detach()
            self._detach = None
        for callback in listeners:
            callback()


def background() -> Context:
    """Return a fresh root context that only finishes when cancelled."""
    return Context()


def with_cancel(parent: Context) -> Context:
    """Return a child of ``parent`` that can be cancelled on its own."""
    return Context(parent)


def with_timeout(parent: Context, seconds: float) -> Context:
    """Return a child of ``parent`` that finishes after ``seconds``."""
    return Context(parent, seconds)