# tserver

`tserver` runs several long-lived applications side by side in one process
and manages their lifecycle:

- start hooks run one after another before any application starts
- each application's `run` method is started in its own background thread
- SIGINT and SIGTERM trigger a graceful stop, and you can add more signals
- on stop, every application's `shutdown` method is called concurrently, then
  the stop hooks run in order
- `wait` blocks until the server has stopped, with a deadline you control

It has no dependencies outside the standard library.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Contexts

Cancellation and deadlines are carried by `tserver.context.Context` objects:

- `background()` returns a new root context. It finishes only when you call
  its `cancel()`.
- `with_cancel(parent)` returns a child context that you can cancel on its own.
- `with_timeout(parent, seconds)` returns a child context that finishes by
  itself once `seconds` have passed.

`Context(parent=None, timeout=None)` can also be built directly. A child
finishes when its parent does, and takes over the parent's reason.

- `done()` reports whether the context has finished.
- `wait(timeout=None)` blocks until it finishes or the timeout passes, and
  returns `True` if it has finished.
- `error()` gives the reason, or `None` while the context is live: an instance
  of `Cancelled` or `DeadlineExceeded`, both subclasses of `ContextError`.
  Only the first reason is kept.
- `cancel()` can be called any number of times. Used in a `with` block, a
  context is cancelled when the block ends.

## Applications and hooks

An application is any object with two methods, as described by the protocol
`tserver.server.App`:

- `run(ctx)` does the application's work and returns once `ctx` finishes.
- `shutdown(ctx)` releases the application's resources and should finish
  before `ctx` runs out.

Exceptions raised by `run` or `shutdown` are logged. They do not stop the
server or the other applications.

A hook is any object with a `run(ctx)` method (`tserver.server.Hook`). To use
a plain function as a hook, wrap it in `HookFunc`; the wrapper can also be
called directly.

- If a start hook raises, `start()` raises `StartHookError` (with `index`,
  counted from 1, and `cause`), and the server is not marked as running.
- If a stop hook raises, the error is logged and the remaining stop hooks
  still run.

## Usage

```python
from tserver.context import background, with_timeout
from tserver.server import HookFunc, Server


class Worker:
    def run(self, ctx):
        while not ctx.wait(1.0):
            pass

    def shutdown(self, ctx):
        print("worker closed")


server = Server(background(), apps=[Worker()])

server.add_start_hook(HookFunc(lambda ctx: print("initialising resources")))
server.add_stop_hook(HookFunc(lambda ctx: print("cleaning up")))

server.start()

# Blocks until the server stops, for example after Ctrl+C.
server.wait(background())
```

To stop the server from code, pass `stop` a context that limits how long the
shutdown may take:

```python
server.stop(with_timeout(background(), 5.0))
```

Calling `start` on a running server, or `stop` on one that is not running,
does nothing apart from logging a warning.

`wait(ctx)` returns once the server has stopped. If `ctx` finishes first, it
raises that context's error, for example `DeadlineExceeded`. If the context
the server was created with is cancelled, it raises `Cancelled`.

Applications and hooks can be added at any time with `add_app`,
`add_start_hook` and `add_stop_hook`. An application added after the server
has started is not started. The `apps` property returns a copy of the managed
applications and `is_running` tells whether the server is running.

Extra shutdown signals are added with `add_stop_signal`. Signal handlers are
installed by `start()` only when it is called from the main thread, and the
previous handlers are put back by `stop()`. When a stop signal arrives, the
server stops itself with a 30-second shutdown deadline; a signal that arrives
after that is passed on to the handler that was there before.

The server reports its progress through the standard `logging` module, under
the `tserver.server` logger. Nothing is shown unless logging is configured.

## Example program

`tserver.example` runs several demonstration applications together:

- `WebServerApp`, a small HTTP server that answers `OK` on `/health` and a
  greeting with the current time on any other path
- two `WorkerApp` instances doing a short piece of work every 2 and 5 seconds
- `DatabaseApp`, a simulated database connection
- `SchedulerApp`, which runs named tasks in turn, one every 3 seconds

Run it with:

```
tserver-example
```

The `--addr` option sets the web server's address (default `:8080`, all
interfaces). Press Ctrl+C to stop it gracefully.

## What it does not do

The demonstration applications are samples only: `DatabaseApp` never opens a
real connection, and the workers and scheduler only sleep for a random moment
and log what they did. The HTTP server in the example serves fixed text and is
not meant for real use.