"""Tests for the interpreter excepthook integration."""

import io
import sys
import threading
from collections.abc import Iterator

import pytest

import tracefold.hooks
from tracefold.api import render
from tracefold.config import RenderConfig, Style
from tracefold.hooks import excepthook_installed, install_excepthook, is_installed, uninstall_excepthook


@pytest.fixture(autouse=True)
def restore_hooks() -> Iterator[None]:
    excepthook, threading_hook = sys.excepthook, threading.excepthook
    yield
    uninstall_excepthook()
    sys.excepthook, threading.excepthook = excepthook, threading_hook


def _raised() -> ValueError:
    try:
        raise ValueError("uncaught")
    except ValueError as exc:
        return exc


def test_install_and_uninstall_restore_previous_hooks() -> None:
    previous = sys.excepthook
    install_excepthook()
    assert is_installed()
    assert sys.excepthook is not previous
    uninstall_excepthook()
    assert not is_installed()
    assert sys.excepthook is previous
    uninstall_excepthook()


def test_reinstall_keeps_original_hooks() -> None:
    previous = sys.excepthook
    install_excepthook()
    install_excepthook(RenderConfig(style=Style.CANONICAL))
    uninstall_excepthook()
    assert sys.excepthook is previous


def test_excepthook_renders_to_file() -> None:
    stream = io.StringIO()
    exc = _raised()
    with excepthook_installed(RenderConfig(style=Style.CANONICAL), stream):
        assert is_installed()
        sys.excepthook(type(exc), exc, exc.__traceback__)
    assert not is_installed()
    assert stream.getvalue() == render(exc, RenderConfig(style=Style.CANONICAL))


def test_excepthook_falls_back_when_rendering_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[BaseException] = []
    monkeypatch.setattr(sys, "excepthook", lambda exc_type, exc, tb: calls.append(exc))

    def broken(*args: object, **kwargs: object) -> None:
        raise RuntimeError("renderer broke")

    monkeypatch.setattr(tracefold.hooks, "print_exception", broken)
    exc = _raised()
    with excepthook_installed(file=io.StringIO()):
        sys.excepthook(type(exc), exc, exc.__traceback__)
    assert calls == [exc]


def test_thread_exceptions_are_rendered() -> None:
    stream = io.StringIO()

    def target() -> None:
        raise KeyError("in thread")

    with excepthook_installed(file=stream):
        thread = threading.Thread(target=target, name="worker-1")
        thread.start()
        thread.join()

    output = stream.getvalue()
    assert output.startswith("Exception in thread worker-1:\nKeyError: 'in thread'\n")
    assert ";->target()F  [test_hooks.py:" in output
