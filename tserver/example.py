"""A demonstration server running a web server, workers, a database and a scheduler."""

from __future__ import annotations

import argparse
import logging
import random
import threading
import time
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Sequence

from .context import Cancelled, Context, ContextError, background
from .server import HookFunc, Server

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULER_PERIOD = 3.0


def _context_error(ctx: Context) -> ContextError:
    error = ctx.error()
    return type(error)() if error is not None else Cancelled()


def _format_seconds(seconds: float) -> str:
    return f"{seconds:g}s"


def _split_address(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ValueError(f"address {addr!r} is missing a port")
    try:
        port_number = int(port)
    except ValueError:
        raise ValueError(f"address {addr!r} has an invalid port") from None
    return host.strip("[]"), port_number


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self) -> None:
        if self.path.split("?", 1)[0] == "/health":
            body = "OK"
        else:
            now = datetime.now(timezone.utc).astimezone().isoformat(timespec="seconds")
            body = f"Hello from Web Server! Time: {now.replace('+00:00', 'Z')}"
        payload = body.encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, format: str, *args: object) -> None:
        logger.debug("[WEB] " + format, *args)


class WebServerApp:
    """A small HTTP server answering on ``/`` and ``/health``."""

    def __init__(self, addr: str) -> None:
        self.addr = addr
        self._server: ThreadingHTTPServer | None = None
        self._lock = threading.Lock()

    def run(self, ctx: Context) -> None:
        """Serve HTTP until ``ctx`` finishes, then raise its error."""
        host, port = _split_address(self.addr)
        logger.info("[WEB] Starting HTTP server on %s", self.addr)
        try:
            server = ThreadingHTTPServer((host, port), _Handler)
        except OSError as exc:
            logger.error("[WEB] HTTP server error: %s", exc)
            raise
        server.daemon_threads = True
        threading.Thread(
            target=server.serve_forever, name="web-server", daemon=True
        ).start()
        with self._lock:
            self._server = server

        ctx.wait()
        logger.info("[WEB] Context cancelled, stopping HTTP server...")
        raise _context_error(ctx)

    def shutdown(self, ctx: Context) -> None:
        """Stop serving and close the listening socket."""
        with self._lock:
            server, self._server = self._server, None
        if server is None:
            return
        logger.info("[WEB] Shutting down HTTP server...")
        server.shutdown()
        server.server_close()


class WorkerApp:
    """A background worker doing a short piece of work at a fixed interval."""

    def __init__(self, name: str, interval: float) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval

    def run(self, ctx: Context) -> None:
        """Work once per interval until ``ctx`` finishes, then raise its error."""
        logger.info(
            "[%s] Starting background worker (interval: %s)",
            self.name,
            _format_seconds(self.interval),
        )
        next_tick = time.monotonic() + self.interval
        while True:
            if ctx.wait(max(0.0, next_tick - time.monotonic())):
                logger.info("[%s] Context cancelled, stopping worker...", self.name)
                raise _context_error(ctx)
            work = random.randrange(100) / 1000
            logger.info(
                "[%s] Performing work (duration: %s)...", self.name, _format_seconds(work)
            )
            time.sleep(work)
            logger.info("[%s] Work completed", self.name)
            next_tick = max(next_tick + self.interval, time.monotonic())

    def shutdown(self, ctx: Context) -> None:
        logger.info("[%s] Worker shutdown completed", self.name)


class DatabaseApp:
    """A simulated database connection held open while the server runs."""

    def __init__(self, connection_string: str) -> None:
        self.connection_string = connection_string
        self.connected = False

    def run(self, ctx: Context) -> None:
        """Connect, then hold the connection until ``ctx`` finishes."""
        logger.info("[DB] Connecting to database: %s", self.connection_string)
        time.sleep(0.5)
        self.connected = True
        logger.info("[DB] Database connection established")

        ctx.wait()
        logger.info("[DB] Context cancelled, closing database connection...")
        raise _context_error(ctx)

    def shutdown(self, ctx: Context) -> None:
        """Close the connection if one is open."""
        if not self.connected:
            return
        logger.info("[DB] Closing database connection...")
        time.sleep(0.2)
        self.connected = False
        logger.info("[DB] Database connection closed")


class SchedulerApp:
    """Runs named tasks in turn, one each period."""

    def __init__(self, tasks: Sequence[str], period: float = DEFAULT_SCHEDULER_PERIOD) -> None:
        if period <= 0:
            raise ValueError("period must be positive")
        self.tasks = list(tasks)
        self.period = period

    def run(self, ctx: Context) -> None:
        """Execute the next task each period until ``ctx`` finishes."""
        logger.info("[SCHEDULER] Starting task scheduler with %d tasks", len(self.tasks))
        executed = 0
        next_tick = time.monotonic() + self.period
        while True:
            if ctx.wait(max(0.0, next_tick - time.monotonic())):
                logger.info("[SCHEDULER] Context cancelled, stopping scheduler...")
                raise _context_error(ctx)
            if self.tasks:
                task = self.tasks[executed % len(self.tasks)]
                logger.info("[SCHEDULER] Executing task: %s", task)
                time.sleep(random.randrange(500) / 1000)
                logger.info("[SCHEDULER] Task completed: %s", task)
                executed += 1
            next_tick = max(next_tick + self.period, time.monotonic())

    def shutdown(self, ctx: Context) -> None:
        logger.info("[SCHEDULER] Scheduler shutdown completed")


def _pause(message_before: str, message_after: str, seconds: float) -> HookFunc:
    def hook(ctx: Context) -> None:
        logger.info(message_before)
        time.sleep(seconds)
        logger.info(message_after)

    return HookFunc(hook)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the demonstration server until a stop signal arrives."""
    parser = argparse.ArgumentParser(
        prog="tserver-example", description="Run several demonstration applications."
    )
    parser.add_argument("--addr", default=":8080", help="address for the web server")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    apps = [
        WebServerApp(args.addr),
        WorkerApp("WORKER-1", 2.0),
        WorkerApp("WORKER-2", 5.0),
        DatabaseApp("postgresql://localhost:5432/mydb"),
        SchedulerApp(
            [
                "cleanup-temp-files",
                "send-email-notifications",
                "update-statistics",
                "backup-database",
            ]
        ),
    ]
    server = Server(background(), apps)

    server.add_start_hook(
        _pause(
            "[STARTUP] Initializing application resources...",
            "[STARTUP] Application resources initialized",
            0.1,
        )
    )
    server.add_start_hook(
        _pause(
            "[STARTUP] Loading configuration...",
            "[STARTUP] Configuration loaded successfully",
            0.05,
        )
    )
    server.add_stop_hook(
        _pause(
            "[SHUTDOWN] Saving application state...",
            "[SHUTDOWN] Application state saved",
            0.1,
        )
    )
    server.add_stop_hook(
        _pause(
            "[SHUTDOWN] Cleaning up temporary resources...",
            "[SHUTDOWN] Temporary resources cleaned up",
            0.05,
        )
    )

    logger.info("Starting tserver with multiple applications...")
    server.start()

    host, port = _split_address(args.addr)
    base = f"http://{host or 'localhost'}:{port}"
    logger.info("Server started successfully!")
    logger.info("Try visiting: %s", base)
    logger.info("Health check: %s/health", base)
    logger.info("Press Ctrl+C to gracefully stop the server")

    try:
        server.wait(background())
    except ContextError as exc:
        logger.info("Server wait error: %s", exc)

    logger.info("Server stopped gracefully")
    return 0