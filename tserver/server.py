"""A server that runs several applications with lifecycle hooks and signals."""

from __future__ import annotations

import logging
import signal
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, Protocol, runtime_checkable

from .context import Context, background, with_cancel, with_timeout

logger = logging.getLogger(__name__)

SIGNAL_STOP_TIMEOUT = 30.0


@runtime_checkable
class App(Protocol):
    """An application managed by a :class:`Server`."""

    def run(self, ctx: Context) -> Any:
        """Run until ``ctx`` finishes; raise to report a failure."""

    def shutdown(self, ctx: Context) -> Any:
        """Release resources, finishing within the time ``ctx`` allows."""


@runtime_checkable
class Hook(Protocol):
    """A step run when the server starts or stops."""

    def run(self, ctx: Context) -> Any:
        """Perform the hook's work; raise to report a failure."""


class HookFunc:
    """Adapts a plain callable taking a context into a :class:`Hook`."""

    def __init__(self, func: Callable[[Context], Any]) -> None:
        self.func = func

    def run(self, ctx: Context) -> Any:
        return self.func(ctx)

    __call__ = run


class StartHookError(RuntimeError):
    """A start hook failed, so the server did not start."""

    def __init__(self, index: int, cause: BaseException) -> None:
        super().__init__(f"start hook {index} failed: {cause}")
        self.index = index
        self.cause = cause


class Server:
    """Runs applications concurrently and shuts them down gracefully."""

    def __init__(self, ctx: Context | None = None, apps: Iterable[App] = ()) -> None:
        self._ctx = with_cancel(ctx if ctx is not None else background())
        self._apps: list[App] = list(apps)
        self._start_hooks: list[Hook] = []
        self._stop_hooks: list[Hook] = []
        self._stop_signals: list[signal.Signals] = [signal.SIGINT, signal.SIGTERM]
        self._previous_handlers: dict[int, Any] = {}
        self._running = False
        self._done = Context()
        self._lock = threading.Lock()
        logger.info("Server created successfully")

    def start(self) -> None:
        """Run the start hooks, then launch every application in its own thread.

        Raises StartHookError if a start hook fails. Starting a running
        server does nothing.
        """
        with self._lock:
            if self._running:
                logger.warning("Server is already running")
                return

            logger.info("Starting server...")
            total_hooks = len(self._start_hooks)
            for index, hook in enumerate(self._start_hooks, 1):
                logger.info("Executing start hook %d/%d", index, total_hooks)
                try:
                    hook.run(self._ctx)
                except Exception as exc:
                    logger.error("Start hook %d failed: %s", index, exc)
                    raise StartHookError(index, exc) from exc

            self._install_signal_handlers()

            apps = list(self._apps)
            if apps:
                logger.info("Starting %d application(s)...", len(apps))
                for index, app in enumerate(apps, 1):
                    threading.Thread(
                        target=self._run_app,
                        args=(index, len(apps), app),
                        name=f"tserver-app-{index}",
                        daemon=True,
                    ).start()

            self._running = True
        logger.info("Server started successfully")

    def stop(self, ctx: Context | None = None) -> None:
        """Shut down every application, run the stop hooks and finish the server.

        Failures are logged and never interrupt the shutdown. Stopping a
        server that is not running does nothing.
        """
        if ctx is None:
            ctx = background()
        with self._lock:
            if not self._running:
                logger.warning("Server is not running")
                return

            logger.info("Stopping server...")
            apps = list(self._apps)
            if apps:
                logger.info("Shutting down %d application(s)...", len(apps))
                with ThreadPoolExecutor(
                    max_workers=len(apps), thread_name_prefix="tserver-shutdown"
                ) as pool:
                    for index, app in enumerate(apps, 1):
                        pool.submit(self._shutdown_app, index, len(apps), app, ctx)

            total_hooks = len(self._stop_hooks)
            for index, hook in enumerate(self._stop_hooks, 1):
                logger.info("Executing stop hook %d/%d", index, total_hooks)
                try:
                    hook.run(ctx)
                except Exception as exc:
                    logger.error("Stop hook %d failed: %s", index, exc)

            self._running = False
            self._done.cancel()
            self._ctx.cancel()
            self._restore_signal_handlers()
        logger.info("Server stopped successfully")

    def wait(self, ctx: Context | None = None) -> None:
        """Block until the server stops.

        Raises the context error if ``ctx`` or the server's own context
        finishes first.
        """
        if ctx is None:
            ctx = background()
        wake = threading.Event()
        detachers = [source._subscribe(wake.set) for source in (self._done, ctx, self._ctx)]
        try:
            wake.wait()
        finally:
            for detach in detachers:
                detach()

        if self._done.done():
            return
        for source in (ctx, self._ctx):
            error = source.error()
            if error is not None:
                raise type(error)()

    def add_start_hook(self, *hooks: Hook) -> None:
        """Append hooks run, in order, before applications start."""
        with self._lock:
            self._start_hooks.extend(hooks)
            logger.info(
                "Added %d start hook(s), total: %d", len(hooks), len(self._start_hooks)
            )

    def add_stop_hook(self, *hooks: Hook) -> None:
        """Append hooks run, in order, after applications shut down."""
        with self._lock:
            self._stop_hooks.extend(hooks)
            logger.info(
                "Added %d stop hook(s), total: %d", len(hooks), len(self._stop_hooks)
            )

    def add_stop_signal(self, *signals: signal.Signals) -> None:
        """Add OS signals that trigger a graceful stop once the server starts."""
        with self._lock:
            self._stop_signals.extend(signals)
            logger.info(
                "Added %d stop signal(s), total: %d", len(signals), len(self._stop_signals)
            )

    def add_app(self, *apps: App) -> None:
        """Add applications; those added after start are not launched."""
        with self._lock:
            self._apps.extend(apps)
            logger.info("Added %d application(s), total: %d", len(apps), len(self._apps))

    @property
    def apps(self) -> list[App]:
        """A copy of the managed applications."""
        with self._lock:
            return list(self._apps)

    @property
    def is_running(self) -> bool:
        """Whether the server has started and not yet stopped."""
        with self._lock:
            return self._running

    def _run_app(self, index: int, total: int, app: App) -> None:
        logger.info("Starting application %d/%d...", index, total)
        try:
            app.run(self._ctx)
        except Exception as exc:
            logger.error("Application %d error: %s", index, exc)

    @staticmethod
    def _shutdown_app(index: int, total: int, app: App, ctx: Context) -> None:
        logger.info("Shutting down application %d/%d...", index, total)
        try:
            app.shutdown(ctx)
        except Exception as exc:
            logger.error("Application %d shutdown error: %s", index, exc)

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            logger.warning("Signal handling is only available from the main thread")
            return
        for sig in dict.fromkeys(self._stop_signals):
            try:
                previous = signal.signal(sig, self._on_signal)
            except (ValueError, OSError) as exc:
                logger.error("Cannot handle signal %s: %s", sig, exc)
                continue
            self._previous_handlers.setdefault(int(sig), previous)

    def _restore_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        for sig, previous in self._previous_handlers.items():
            if signal.getsignal(sig) == self._on_signal:
                signal.signal(sig, previous if previous is not None else signal.SIG_DFL)
        self._previous_handlers.clear()

    def _on_signal(self, signum: int, frame: Any) -> None:
        if self._ctx.done():
            self._forward_signal(signum, frame)
            return
        logger.info("Received signal: %s", signal.Signals(signum).name)
        threading.Thread(target=self._stop_on_signal, name="tserver-signal", daemon=True).start()

    def _stop_on_signal(self) -> None:
        with with_timeout(background(), SIGNAL_STOP_TIMEOUT) as ctx:
            try:
                self.stop(ctx)
            except Exception as exc:
                logger.error("Failed to stop server gracefully: %s", exc)

    def _forward_signal(self, signum: int, frame: Any) -> None:
        previous = self._previous_handlers.get(signum, signal.SIG_DFL)
        if callable(previous):
            previous(signum, frame)
        elif previous == signal.SIG_DFL:
            signal.signal(signum, signal.SIG_DFL)
            signal.raise_signal(signum)