"""Interpreter hooks: render uncaught exceptions through tracefold."""

from __future__ import annotations

import sys
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Generator, TextIO

from loguru import logger

from tracefold.api import print_exception
from tracefold.config import RenderConfig

logger = logger.bind(component="tracefold.hooks")


@dataclass
class _Installed:
    config: RenderConfig | None
    file: TextIO | None
    previous_excepthook: Callable[..., Any]
    previous_threading_hook: Callable[..., Any]
    excepthook: Callable[..., Any]
    threading_hook: Callable[..., Any]


_installed: _Installed | None = None
_lock = threading.Lock()


def _render_or_fallback(exc: BaseException, fallback: Callable[[], Any], state: _Installed) -> None:
    try:
        print_exception(exc, state.file, state.config)
    except Exception:
        logger.exception("tracefold failed to render {}; using the previous hook", type(exc).__name__)
        fallback()


def install_excepthook(config: RenderConfig | None = None, file: TextIO | None = None) -> None:
    """Route ``sys.excepthook`` and ``threading.excepthook`` through the renderer.

    ``config`` defaults to the process-wide default at the time each exception
    is rendered. Installing twice replaces the first installation's settings.
    """
    global _installed
    with _lock:
        if _installed is not None:
            previous_excepthook = _installed.previous_excepthook
            previous_threading_hook = _installed.previous_threading_hook
        else:
            previous_excepthook = sys.excepthook
            previous_threading_hook = threading.excepthook

        def excepthook(exc_type: type[BaseException], exc: BaseException, tb: Any) -> None:
            if exc is None:
                previous_excepthook(exc_type, exc, tb)
                return
            if exc.__traceback__ is None and tb is not None:
                exc = exc.with_traceback(tb)
            _render_or_fallback(exc, lambda: previous_excepthook(exc_type, exc, tb), state)

        def threading_hook(args: threading.ExceptHookArgs) -> None:
            exc = args.exc_value
            if exc is None or args.exc_type is SystemExit:
                previous_threading_hook(args)
                return
            thread_name = args.thread.name if args.thread is not None else threading.get_ident()
            stream = state.file if state.file is not None else sys.stderr
            if stream is not None:
                stream.write(f"Exception in thread {thread_name}:\n")
            _render_or_fallback(exc, lambda: previous_threading_hook(args), state)

        state = _Installed(
            config=config,
            file=file,
            previous_excepthook=previous_excepthook,
            previous_threading_hook=previous_threading_hook,
            excepthook=excepthook,
            threading_hook=threading_hook,
        )
        sys.excepthook = excepthook
        threading.excepthook = threading_hook
        _installed = state
        logger.debug("excepthook installed")


def uninstall_excepthook() -> None:
    """Restore the hooks that were active before ``install_excepthook``."""
    global _installed
    with _lock:
        state = _installed
        if state is None:
            return
        if sys.excepthook is state.excepthook:
            sys.excepthook = state.previous_excepthook
        else:
            logger.warning("sys.excepthook was replaced after install; leaving it in place")
        if threading.excepthook is state.threading_hook:
            threading.excepthook = state.previous_threading_hook
        else:
            logger.warning("threading.excepthook was replaced after install; leaving it in place")
        _installed = None
        logger.debug("excepthook uninstalled")


def is_installed() -> bool:
    return _installed is not None


@contextmanager
def excepthook_installed(
    config: RenderConfig | None = None, file: TextIO | None = None
) -> Generator[None, None, None]:
    """Install the hooks for the duration of a ``with`` block."""
    install_excepthook(config, file)
    try:
        yield
    finally:
        uninstall_excepthook()


__all__ = [
    "excepthook_installed",
    "install_excepthook",
    "is_installed",
    "uninstall_excepthook",
]
