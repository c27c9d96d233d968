import logging
import signal
import threading
import time

import pytest

from tserver.context import (
    Cancelled,
    Context,
    DeadlineExceeded,
    background,
    with_cancel,
    with_timeout,
)
from tserver.server import App, Hook, HookFunc, Server, StartHookError


class FakeApp:
    def __init__(self, name, run_duration=0.0, run_error=None, shutdown_error=None):
        self.name = name
        self.run_duration = run_duration
        self.run_error = run_error
        self.shutdown_error = shutdown_error
        self.run_called = threading.Event()
        self.run_returned = threading.Event()
        self.shutdown_called = threading.Event()
        self.run_ctx = None
        self.shutdown_ctx = None

    def run(self, ctx):
        self.run_ctx = ctx
        self.run_called.set()
        ctx.wait(self.run_duration or None)
        self.run_returned.set()
        if self.run_error is not None:
            raise self.run_error

    def shutdown(self, ctx):
        self.shutdown_ctx = ctx
        self.shutdown_called.set()
        if self.shutdown_error is not None:
            raise self.shutdown_error


class FakeHook:
    def __init__(self, name, error=None):
        self.name = name
        self.error = error
        self.executed = False

    def run(self, ctx):
        self.executed = True
        if self.error is not None:
            raise self.error


def stop_ctx():
    return with_timeout(background(), 5)


def test_new_server():
    server = Server(background())
    assert server.is_running is False
    assert server.apps == []


def test_new_server_with_app():
    app = FakeApp("test-app", 0.1)
    server = Server(background(), [app])
    assert server.apps == [app]


def test_new_server_with_apps():
    apps = [FakeApp("app1", 0.1), FakeApp("app2", 0.1), FakeApp("app3", 0.1)]
    server = Server(background(), apps)
    assert len(server.apps) == 3


def test_apps_returns_copy():
    server = Server(background(), [FakeApp("app1")])
    server.apps.append(FakeApp("app2"))
    assert len(server.apps) == 1


def test_fakes_satisfy_protocols():
    app = FakeApp("a")
    server = Server(background(), [app])
    assert server.apps == [app]
    assert all(isinstance(managed, App) for managed in server.apps)
    assert isinstance(FakeHook("h"), Hook)
    assert isinstance(HookFunc(lambda ctx: None), Hook)


def test_server_start_stop():
    app = FakeApp("test-app")
    server = Server(background(), [app])
    server.start()
    assert server.is_running is True
    assert app.run_called.wait(1) is True

    server.stop(stop_ctx())
    assert server.is_running is False
    assert app.shutdown_called.is_set() is True
    assert app.run_returned.wait(1) is True


def test_shutdown_receives_stop_context():
    app = FakeApp("test-app")
    server = Server(background(), [app])
    server.start()
    ctx = stop_ctx()
    server.stop(ctx)
    assert app.shutdown_ctx is ctx


def test_server_multiple_apps():
    apps = [FakeApp("app1"), FakeApp("app2"), FakeApp("app3")]
    server = Server(background(), apps)
    server.start()
    assert all(app.run_called.wait(1) for app in apps)

    server.stop(stop_ctx())
    assert all(app.shutdown_called.is_set() for app in apps)


def test_server_start_hooks():
    server = Server(background())
    hook1 = FakeHook("start-hook-1")
    hook2 = FakeHook("start-hook-2")
    server.add_start_hook(hook1, hook2)
    server.start()
    assert hook1.executed is True
    assert hook2.executed is True
    server.stop(stop_ctx())


def test_server_stop_hooks():
    server = Server(background())
    hook1 = FakeHook("stop-hook-1")
    hook2 = FakeHook("stop-hook-2")
    server.add_stop_hook(hook1, hook2)
    server.start()
    assert hook1.executed is False
    server.stop(stop_ctx())
    assert hook1.executed is True
    assert hook2.executed is True


def test_server_start_hook_failure():
    server = Server(background())
    hook1 = FakeHook("good-hook")
    hook2 = FakeHook("bad-hook", RuntimeError("hook failed"))
    server.add_start_hook(hook1, hook2)

    with pytest.raises(StartHookError) as info:
        server.start()
    assert str(info.value) == "start hook 2 failed: hook failed"
    assert info.value.index == 2
    assert server.is_running is False
    assert hook1.executed is True
    assert hook2.executed is True


def test_server_add_app():
    server = Server(background(), [FakeApp("app1", 0.1)])
    assert len(server.apps) == 1
    server.add_app(FakeApp("app2", 0.1), FakeApp("app3", 0.1))
    assert len(server.apps) == 3


def test_server_wait():
    server = Server(background(), [FakeApp("test-app")])
    server.start()

    def stop_later():
        time.sleep(0.1)
        server.stop(stop_ctx())

    threading.Thread(target=stop_later).start()
    assert server.wait(with_timeout(background(), 10)) is None
    assert server.is_running is False


def test_server_wait_after_stop_returns_at_once():
    server = Server(background())
    server.start()
    server.stop(stop_ctx())
    assert server.wait(with_timeout(background(), 1)) is None


def test_server_wait_with_context_timeout():
    server = Server(background(), [FakeApp("test-app")])
    server.start()
    with pytest.raises(DeadlineExceeded):
        server.wait(with_timeout(background(), 0.05))
    assert server.is_running is True
    server.stop(stop_ctx())


def test_server_wait_with_server_context_cancel():
    parent = with_cancel(background())
    app = FakeApp("test-app")
    server = Server(parent, [app])
    server.start()
    threading.Timer(0.1, parent.cancel).start()
    with pytest.raises(Cancelled):
        server.wait(with_timeout(background(), 10))
    assert app.run_returned.wait(1) is True


def test_server_is_running():
    server = Server(background())
    assert server.is_running is False
    server.start()
    assert server.is_running is True
    server.stop(stop_ctx())
    assert server.is_running is False


def test_server_double_start():
    hook = FakeHook("start")
    calls = []
    server = Server(background())
    server.add_start_hook(HookFunc(lambda ctx: calls.append("start")))
    server.start()
    server.start()
    assert calls == ["start"]
    assert server.is_running is True
    server.stop(stop_ctx())
    assert hook.executed is False


def test_server_double_stop():
    calls = []
    server = Server(background())
    server.add_stop_hook(HookFunc(lambda ctx: calls.append("stop")))
    server.start()
    ctx = stop_ctx()
    server.stop(ctx)
    server.stop(ctx)
    assert calls == ["stop"]
    assert server.is_running is False


def test_hook_func():
    executed = []
    hook = HookFunc(lambda ctx: executed.append(ctx))
    ctx = background()
    hook.run(ctx)
    assert executed == [ctx]


def test_hook_func_with_error():
    expected = RuntimeError("hook error")

    def failing(ctx):
        raise expected

    with pytest.raises(RuntimeError) as info:
        HookFunc(failing).run(background())
    assert info.value is expected


def test_server_with_app_errors(caplog):
    good_app = FakeApp("good-app")
    run_error_app = FakeApp("run-error-app", 0.1, run_error=RuntimeError("run error"))
    shutdown_error_app = FakeApp("shutdown-error-app", shutdown_error=RuntimeError("shutdown error"))
    server = Server(background(), [good_app, run_error_app, shutdown_error_app])

    with caplog.at_level(logging.ERROR, logger="tserver.server"):
        server.start()
        assert run_error_app.run_returned.wait(2) is True
        time.sleep(0.05)
        server.stop(stop_ctx())

    assert good_app.run_called.is_set() is True
    assert good_app.shutdown_called.is_set() is True
    assert run_error_app.run_called.is_set() is True
    assert shutdown_error_app.run_called.is_set() is True
    assert shutdown_error_app.shutdown_called.is_set() is True
    assert "Application 2 error: run error" in caplog.messages
    assert "Application 3 shutdown error: shutdown error" in caplog.messages


def test_server_stop_hook_errors():
    server = Server(background())
    good_hook1 = FakeHook("good-hook-1")
    error_hook = FakeHook("error-hook", RuntimeError("hook error"))
    good_hook2 = FakeHook("good-hook-2")
    server.add_stop_hook(good_hook1, error_hook, good_hook2)
    server.start()
    server.stop(stop_ctx())
    assert [good_hook1.executed, error_hook.executed, good_hook2.executed] == [True, True, True]
    assert server.is_running is False


def test_hooks_run_in_order_around_apps():
    events = []
    app = FakeApp("app")
    server = Server(background(), [app])
    server.add_start_hook(HookFunc(lambda ctx: events.append("Initializing resources...")))
    server.add_stop_hook(HookFunc(lambda ctx: events.append("Cleaning up resources...")))
    server.start()
    server.stop(stop_ctx())
    assert events == ["Initializing resources...", "Cleaning up resources..."]


def test_apps_see_server_context():
    app = FakeApp("app")
    server = Server(background(), [app])
    server.start()
    assert app.run_called.wait(1) is True
    assert isinstance(app.run_ctx, Context)
    assert app.run_ctx.done() is False
    server.stop(stop_ctx())
    assert isinstance(app.run_ctx.error(), Cancelled)


def test_stop_restores_signal_handler():
    before = signal.getsignal(signal.SIGINT)
    server = Server(background())
    server.start()
    assert server.is_running is True
    assert signal.getsignal(signal.SIGINT) != before
    server.stop(stop_ctx())
    assert server.is_running is False
    assert signal.getsignal(signal.SIGINT) == before


def test_stop_signal_stops_server():
    original = signal.getsignal(signal.SIGTERM)
    server = Server(background())
    server.start()
    try:
        signal.raise_signal(signal.SIGTERM)
        assert server.wait(with_timeout(background(), 5)) is None
        assert server.is_running is False
    finally:
        signal.signal(signal.SIGTERM, original)


def test_added_stop_signal_stops_server():
    original = signal.getsignal(signal.SIGABRT)
    server = Server(background())
    server.add_stop_signal(signal.SIGABRT)
    server.start()
    try:
        signal.raise_signal(signal.SIGABRT)
        assert server.wait(with_timeout(background(), 5)) is None
        assert server.is_running is False
    finally:
        signal.signal(signal.SIGABRT, original)